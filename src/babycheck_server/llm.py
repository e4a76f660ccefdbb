"""HTTP client for a local Ollama server with chat-style helpers."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence, Union

import httpx

from .models import Message, as_wire

logger = logging.getLogger(__name__)


# -----------------------------
# Types & defaults
# -----------------------------

DEFAULT_BASE_URL = "http://localhost:11434"
DEFAULT_MODEL = "llama3.2"
DEFAULT_TIMEOUT = 120.0


class BackendError(RuntimeError):
    """The completion backend could not be reached or answered badly."""

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class CompletionBackend(Protocol):
    def chat(self, messages: Sequence[Message], model: Optional[str] = None) -> str: ...

    def list_models(self) -> Dict[str, Any]: ...

    def is_available(self) -> bool: ...


MessageLike = Union[Message, Dict[str, str]]


def _wire_messages(messages: Sequence[MessageLike]) -> List[Dict[str, str]]:
    out: List[Dict[str, str]] = []
    for m in messages:
        if isinstance(m, Message):
            out.extend(as_wire([m]))
        else:
            out.append({"role": m["role"], "content": m["content"]})
    return out


# -----------------------------
# Ollama wrapper
# -----------------------------

class OllamaClient:
    """Thin wrapper around the Ollama REST API (``/api/chat``, ``/api/tags``)."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        default_model: str = DEFAULT_MODEL,
        timeout: Optional[float] = DEFAULT_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        """
        Parameters
        ----------
        base_url : str
            Root URL of the Ollama server.
        default_model : str
            Model used when a request does not name one.
        timeout : float | None
            Seconds before an outbound call is abandoned. ``None`` waits
            forever, so a hung backend hangs the chat turn with it.
        transport : httpx.BaseTransport | None
            Injected transport (tests use ``httpx.MockTransport``).
        """
        self.base_url = base_url.rstrip("/")
        self.default_model = default_model
        self.timeout = httpx.Timeout(timeout)
        self._transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
            headers={"Content-Type": "application/json"},
        )

    # -------------------------
    # Chat completion
    # -------------------------
    def chat(self, messages: Sequence[MessageLike], model: Optional[str] = None) -> str:
        """Send the full history and return the assistant reply text.

        One attempt only; retrying is the caller's business.
        """
        payload = {
            "model": model or self.default_model,
            "messages": _wire_messages(messages),
            "stream": False,
        }
        try:
            with self._client() as client:
                r = client.post("/api/chat", json=payload)
                r.raise_for_status()
                data = r.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error("Ollama chat returned %s: %s", status, e.response.reason_phrase)
            raise BackendError(f"Ollama API error: {e.response.reason_phrase or status}", status=status) from e
        except httpx.HTTPError as e:
            logger.error("Ollama chat request failed: %s", e)
            raise BackendError(f"Ollama API unreachable: {e}") from e
        except ValueError as e:
            raise BackendError(f"Ollama returned invalid JSON: {e}") from e

        try:
            content = data["message"]["content"]
        except (KeyError, TypeError) as e:
            raise BackendError("Ollama response has no message content") from e
        if not isinstance(content, str):
            raise BackendError("Ollama message content is not text")
        return content

    # -------------------------
    # Model listing / liveness
    # -------------------------
    def list_models(self) -> Dict[str, Any]:
        """Return the raw ``/api/tags`` payload."""
        try:
            with self._client() as client:
                r = client.get("/api/tags")
                r.raise_for_status()
                return r.json()
        except httpx.HTTPStatusError as e:
            raise BackendError(str(e), status=e.response.status_code) from e
        except (httpx.HTTPError, ValueError) as e:
            raise BackendError(str(e)) from e

    def is_available(self) -> bool:
        """True if Ollama answers ``/api/tags`` with a success status."""
        try:
            with self._client() as client:
                return client.get("/api/tags").is_success
        except httpx.HTTPError as e:
            logger.debug("Ollama liveness probe failed: %s", e)
            return False


# -----------------------------
# Convenience factory
# -----------------------------

def create_from_config(cfg: Dict[str, Any]) -> OllamaClient:
    """Create OllamaClient from a config dict (e.g., loaded YAML)."""
    ollama_cfg = (cfg or {}).get("ollama", {}) if isinstance(cfg, dict) else {}
    timeout = ollama_cfg.get("timeout", DEFAULT_TIMEOUT)
    return OllamaClient(
        str(ollama_cfg.get("base_url") or DEFAULT_BASE_URL),
        default_model=str(ollama_cfg.get("default_model") or DEFAULT_MODEL),
        timeout=float(timeout) if timeout is not None else None,
    )
