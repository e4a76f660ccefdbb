"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

# Ensure src/ is on the import path (for local imports without installing as package)
SRC_PATH = Path(__file__).resolve().parent.parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from babycheck_server.llm import BackendError  # noqa: E402
from babycheck_server.memory import ConversationStore  # noqa: E402


class FakeBackend:
    """Spy backend that records every call and replays canned replies."""

    def __init__(self, replies: Optional[List[str]] = None, *, fail: bool = False, available: bool = True):
        self.replies = list(replies or ["ok"])
        self.fail = fail
        self.available = available
        self.default_model = "llama3.2"
        self.calls: List[Dict[str, Any]] = []

    def chat(self, messages, model=None) -> str:
        self.calls.append({"messages": [m.model_dump() for m in messages], "model": model})
        if self.fail:
            raise BackendError("Ollama API error: Service Unavailable", status=503)
        if len(self.replies) > 1:
            return self.replies.pop(0)
        return self.replies[0]

    def list_models(self) -> Dict[str, Any]:
        if self.fail:
            raise BackendError("connection refused")
        return {"models": [{"name": "llama3.2:latest"}]}

    def is_available(self) -> bool:
        return self.available


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Return the root directory of the project."""
    return Path(__file__).resolve().parent.parent


@pytest.fixture(scope="session")
def config_path(project_root: Path) -> Path:
    """Shipped config/default.yaml."""
    return project_root / "config" / "default.yaml"


@pytest.fixture
def missing_config(tmp_path: Path) -> str:
    """A config path that does not exist, so built-in defaults apply."""
    return str(tmp_path / "absent.yaml")


@pytest.fixture
def store() -> ConversationStore:
    return ConversationStore("SYSTEM")


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch):
    """Ensure tests run with a clean environment (no leftover vars)."""
    import os

    monkeypatch.delenv("BABYCHECK_CONFIG", raising=False)
    for var in list(os.environ):
        if var.startswith("BABYCHECK__"):
            monkeypatch.delenv(var, raising=False)
    yield
