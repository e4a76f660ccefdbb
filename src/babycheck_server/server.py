"""FastAPI application proxying BabyCheck chat turns to Ollama."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from . import __version__
from .chat import DEFAULT_CONVERSATION_ID, ChatService, InvalidMessageError
from .config import load_config
from .llm import BackendError, CompletionBackend, create_from_config as create_backend
from .memory import ConversationStore, create_from_config as create_store
from .models import DEFAULT_SYSTEM_PROMPT

logger = logging.getLogger(__name__)


# -----------------------------
# Pydantic request/response
# -----------------------------
class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Optional so a missing message gets the same 400 as a blank one.
    message: Optional[str] = None
    conversation_id: Optional[str] = Field(
        default=None, alias="conversationId", description="Conversation namespace/key."
    )
    model: Optional[str] = Field(default=None, description="Ollama model name.")


class ChatResponse(BaseModel):
    response: str
    conversationId: str
    timelineEvent: Optional[Dict[str, Any]] = None


# -----------------------------
# Utilities
# -----------------------------
def _get_system_prompt(cfg: Dict[str, Any]) -> str:
    sys_prompt = cfg.get("prompt", {}).get("system_prompt") or DEFAULT_SYSTEM_PROMPT
    return str(sys_prompt)


def _mount_frontend(app: FastAPI, static_dir: Path) -> None:
    """Serve the built SPA; unknown paths fall back to index.html."""
    root = static_dir.resolve()
    index = root / "index.html"

    @app.get("/{full_path:path}", include_in_schema=False)
    def frontend(full_path: str) -> FileResponse:
        if full_path.startswith("api/"):
            raise HTTPException(status_code=404, detail="Not Found")
        candidate = (root / full_path).resolve()
        if full_path and candidate.is_file() and root in candidate.parents:
            return FileResponse(candidate)
        if not index.is_file():
            raise HTTPException(status_code=404, detail="Not Found")
        return FileResponse(index)


# -----------------------------
# App factory
# -----------------------------
def create_app(
    config_path: Optional[str] = None,
    backend: Optional[CompletionBackend] = None,
    store: Optional[ConversationStore] = None,
) -> FastAPI:
    cfg = load_config(config_path)
    server_cfg = cfg.get("server", {})
    conv_cfg = cfg.get("conversation", {})

    # Services
    if backend is None:
        backend = create_backend(cfg)
    if store is None:
        store = create_store(cfg, _get_system_prompt(cfg))
    default_model = (
        getattr(backend, "default_model", None)
        or cfg.get("ollama", {}).get("default_model")
        or "llama3.2"
    )
    service = ChatService(
        store,
        backend,
        default_conversation_id=conv_cfg.get("default_id") or DEFAULT_CONVERSATION_ID,
        default_model=default_model,
        scanner=cfg.get("timeline", {}).get("scanner") or "regex",
    )

    app = FastAPI(title="BabyCheck AI Server", version=__version__)
    app.state.service = service
    app.add_middleware(
        CORSMiddleware,
        allow_origins=server_cfg.get("cors_origins") or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.post("/api/chat", response_model=ChatResponse)
    def chat(req: ChatRequest):
        try:
            result = service.handle(req.message, req.conversation_id, req.model)
        except InvalidMessageError as e:
            return JSONResponse(status_code=400, content={"error": str(e)})
        except BackendError as e:
            return JSONResponse(
                status_code=502,
                content={"error": "Failed to get response from AI", "details": str(e)},
            )
        return ChatResponse(**result.to_dict())

    @app.delete("/api/chat/{conversation_id}")
    def clear_conversation(conversation_id: str) -> Dict[str, str]:
        service.clear(conversation_id)
        return {"message": "Conversation history cleared"}

    @app.get("/api/health")
    def health() -> Dict[str, str]:
        connected = backend.is_available()
        return {"status": "ok", "ollama": "connected" if connected else "disconnected"}

    @app.get("/api/models")
    def models():
        try:
            return backend.list_models()
        except BackendError as e:
            logger.error("Failed to fetch models: %s", e)
            return JSONResponse(
                status_code=500,
                content={"error": "Failed to fetch models", "details": str(e)},
            )

    static_dir = server_cfg.get("static_dir")
    if static_dir and Path(static_dir).is_dir():
        _mount_frontend(app, Path(static_dir))
    elif static_dir:
        logger.info("Static frontend dir not found: %s", static_dir)

    return app
