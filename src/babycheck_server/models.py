"""Message and timeline event types shared by the store, extractor and server."""
from __future__ import annotations

from typing import Any, Dict, List, Literal

from pydantic import BaseModel, ConfigDict

SYSTEM_ROLE = "system"
USER_ROLE = "user"
ASSISTANT_ROLE = "assistant"

Role = Literal["system", "user", "assistant"]

DEFAULT_SYSTEM_PROMPT = """
You are BabyCheck AI. When a user messages you about their baby's health, milestones, or symptoms,
always generate a timeline event if applicable. The timeline event must be in the following JSON format:

TIMELINE_EVENT: {
  "id": "<unique-id>",
  "title": "<short title of event>",
  "description": "<detailed description>",
  "date": "<YYYY-MM-DD HH:mm>",
  "tags": ["tag1","tag2"],
  "severity": "low|medium|high"
}

Only include TIMELINE_EVENT if the message relates to the baby's health or milestones.
Otherwise, just respond normally.
"""


class Message(BaseModel):
    role: Role
    content: str


class TimelineEvent(BaseModel):
    """A health or milestone record parsed out of a model reply.

    Only ``id`` is guaranteed. The other fields are whatever the model wrote:
    dates, tags and severities are not checked, and unknown keys are kept.
    """

    model_config = ConfigDict(extra="allow")

    id: str
    title: Any = None
    description: Any = None
    date: Any = None
    tags: Any = None
    severity: Any = None

    def to_dict(self) -> Dict[str, Any]:
        """Return the keys the model actually produced, plus ``id``."""
        data = self.model_dump(exclude_unset=True)
        data.update(self.model_extra or {})
        return data


def as_wire(messages: List[Message]) -> List[Dict[str, str]]:
    """Render messages to the ``{role, content}`` dicts chat backends expect."""
    return [m.model_dump() for m in messages]
