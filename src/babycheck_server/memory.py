"""In-process conversation memory keyed by conversation id (thread-safe)."""
from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from .models import SYSTEM_ROLE, Message

logger = logging.getLogger(__name__)


@dataclass
class TrimPolicy:
    """Controls how a conversation's history is bounded."""
    max_messages: int = 21          # 1 system message + 20 turns
    trim_count: int = 2             # drop the oldest user/assistant pair
    max_conversations: Optional[int] = None  # LRU cap on stored ids; None = unbounded


@dataclass
class _TurnLock:
    lock: threading.RLock = field(default_factory=threading.RLock)
    users: int = 0  # threads holding or waiting on ``lock``


# -----------------------------
# ConversationStore
# -----------------------------
class ConversationStore:
    """Map of conversation id -> ordered message list.

    Every conversation starts with the system instruction at index 0 and that
    message is never trimmed. Nothing survives a process restart.

    The map itself is guarded by one lock; turns on a single conversation are
    serialised through :meth:`lock`, so two requests for the same id never
    interleave their append/trim steps while different ids run in parallel.
    """

    def __init__(
        self,
        system_prompt: str,
        *,
        max_messages: int = 21,
        trim_count: int = 2,
        max_conversations: Optional[int] = None,
    ) -> None:
        if max_messages < 1:
            raise ValueError("max_messages must be at least 1")
        if trim_count < 1:
            raise ValueError("trim_count must be at least 1")
        self.system_prompt = system_prompt
        self.policy = TrimPolicy(
            max_messages=max_messages,
            trim_count=trim_count,
            max_conversations=max_conversations or None,
        )
        self._conversations: "OrderedDict[str, List[Message]]" = OrderedDict()
        self._turn_locks: Dict[str, _TurnLock] = {}
        self._lock = threading.RLock()

    # --------- core API ----------
    def get_or_create(self, conversation_id: str) -> List[Message]:
        """Return the live history for ``conversation_id``, creating it if needed.

        The list is returned by reference; callers mutating it are seen by
        every later call with the same id.
        """
        with self._lock:
            history = self._conversations.get(conversation_id)
            if history is None:
                history = [Message(role=SYSTEM_ROLE, content=self.system_prompt)]
                self._conversations[conversation_id] = history
                self._evict_if_needed(keep=conversation_id)
            else:
                self._conversations.move_to_end(conversation_id)
            return history

    def append(self, conversation_id: str, message: Message) -> None:
        with self._lock:
            self.get_or_create(conversation_id).append(message)

    def trim(self, conversation_id: str) -> int:
        """Drop the oldest pair after the system message once over the cap.

        A failed turn leaves an unanswered user message behind, so the pair
        drop repeats until the history fits again. Returns the number of
        messages removed.
        """
        removed = 0
        with self._lock:
            history = self._conversations.get(conversation_id)
            if history is None:
                return 0
            while len(history) > self.policy.max_messages and len(history) > 1:
                chunk = history[1 : 1 + self.policy.trim_count]
                del history[1 : 1 + self.policy.trim_count]
                removed += len(chunk)
        return removed

    def clear(self, conversation_id: str) -> bool:
        """Delete a conversation. Unknown ids are a no-op."""
        with self.lock(conversation_id):
            with self._lock:
                existed = self._conversations.pop(conversation_id, None) is not None
        if existed:
            logger.info("Cleared conversation %r", conversation_id)
        return existed

    @contextmanager
    def lock(self, conversation_id: str) -> Iterator[None]:
        """Hold the per-conversation lock for the duration of a turn.

        The lock entry lives only while some thread holds or waits on it.
        """
        with self._lock:
            entry = self._turn_locks.get(conversation_id)
            if entry is None:
                entry = self._turn_locks[conversation_id] = _TurnLock()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._lock:
                entry.users -= 1
                if entry.users == 0:
                    del self._turn_locks[conversation_id]

    def active_locks(self) -> int:
        """Number of conversations with a turn in progress or queued."""
        with self._lock:
            return len(self._turn_locks)

    # --------- convenience ----------
    def history(self, conversation_id: str) -> List[Message]:
        """Snapshot copy of a conversation (empty list if unknown)."""
        with self._lock:
            return list(self._conversations.get(conversation_id, []))

    def conversation_ids(self) -> List[str]:
        with self._lock:
            return list(self._conversations.keys())

    def __contains__(self, conversation_id: Any) -> bool:
        with self._lock:
            return conversation_id in self._conversations

    def __len__(self) -> int:
        with self._lock:
            return len(self._conversations)

    # --------- internals ----------
    def _evict_if_needed(self, *, keep: str) -> None:
        cap = self.policy.max_conversations
        if cap is None:
            return
        while len(self._conversations) > cap:
            oldest = next(iter(self._conversations))
            if oldest == keep:
                break
            del self._conversations[oldest]
            logger.info("Evicted least recently used conversation %r", oldest)


def create_from_config(cfg: Dict[str, Any], system_prompt: str) -> ConversationStore:
    """Create a ConversationStore from the ``conversation`` config section."""
    conv_cfg = (cfg or {}).get("conversation", {}) if isinstance(cfg, dict) else {}
    max_conversations = conv_cfg.get("max_conversations")
    return ConversationStore(
        system_prompt,
        max_messages=int(conv_cfg.get("max_messages", 21)),
        trim_count=int(conv_cfg.get("trim_count", 2)),
        max_conversations=int(max_conversations) if max_conversations else None,
    )
