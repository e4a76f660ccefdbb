"""One chat turn: history bookkeeping, backend call and event extraction."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .llm import BackendError, CompletionBackend, DEFAULT_MODEL
from .memory import ConversationStore
from .models import ASSISTANT_ROLE, USER_ROLE, Message, TimelineEvent
from .timeline import SCANNERS, extract_timeline_event

logger = logging.getLogger(__name__)

DEFAULT_CONVERSATION_ID = "default"


class InvalidMessageError(ValueError):
    """The inbound chat message is missing or blank."""


@dataclass
class ChatResult:
    response: str
    conversation_id: str
    timeline_event: Optional[TimelineEvent] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "response": self.response,
            "conversationId": self.conversation_id,
            "timelineEvent": self.timeline_event.to_dict() if self.timeline_event else None,
        }


class ChatService:
    """Runs chat turns against a completion backend.

    A turn holds its conversation's lock from the user append until the
    trim, so overlapping requests on one id are applied one after another.
    """

    def __init__(
        self,
        store: ConversationStore,
        backend: CompletionBackend,
        *,
        default_conversation_id: str = DEFAULT_CONVERSATION_ID,
        default_model: str = DEFAULT_MODEL,
        scanner: str = "regex",
    ) -> None:
        if scanner not in SCANNERS:
            raise ValueError(f"Unknown timeline scanner {scanner!r}; expected one of {SCANNERS}")
        self.store = store
        self.backend = backend
        self.default_conversation_id = default_conversation_id
        self.default_model = default_model
        self.scanner = scanner

    def handle(
        self,
        message: Optional[str],
        conversation_id: Optional[str] = None,
        model: Optional[str] = None,
    ) -> ChatResult:
        """Process one user message.

        Raises
        ------
        InvalidMessageError
            ``message`` is missing or whitespace only. Nothing is stored and
            the backend is not called.
        BackendError
            The completion call failed. The user message stays in history so
            a retry carries the same context; no assistant message is added.
        """
        if message is None or not str(message).strip():
            raise InvalidMessageError("Message is required")

        cid = conversation_id or self.default_conversation_id
        model_name = model or self.default_model

        with self.store.lock(cid):
            history = self.store.get_or_create(cid)
            self.store.append(cid, Message(role=USER_ROLE, content=message))

            try:
                raw = self.backend.chat(list(history), model_name)
            except BackendError:
                logger.error("Chat turn failed for conversation %r (model %s)", cid, model_name)
                raise

            cleaned, event = extract_timeline_event(raw, scanner=self.scanner)
            self.store.append(cid, Message(role=ASSISTANT_ROLE, content=cleaned))
            self.store.trim(cid)

        if event is not None:
            logger.info("Extracted timeline event %s for conversation %r", event.id, cid)
        return ChatResult(response=cleaned, conversation_id=cid, timeline_event=event)

    def clear(self, conversation_id: str) -> None:
        self.store.clear(conversation_id)
