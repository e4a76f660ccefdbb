"""Pull a ``TIMELINE_EVENT: {...}`` record out of free-form model output.

Two scanners find the JSON span after the marker:

``regex``
    Non-greedy ``\\{[\\s\\S]*?\\}``: stops at the first ``}``. A closing brace
    inside a string value or a nested object truncates the capture, which
    then fails to parse and the reply is returned untouched. This is the
    default and matches what the frontend has always received.

``braces``
    Walks the text counting brace depth while skipping quoted strings, so the
    capture is the first complete JSON object after the marker.

Either way, a span that does not parse never costs the user their answer:
the original text comes back unchanged with no event.
"""
from __future__ import annotations

import json
import logging
import re
import uuid
from typing import Any, Callable, Dict, Optional, Tuple

from pydantic import ValidationError

from .models import TimelineEvent

logger = logging.getLogger(__name__)

MARKER = "TIMELINE_EVENT:"
SCANNERS = ("regex", "braces")

_REGEX_EVENT = re.compile(r"TIMELINE_EVENT:\s*(\{[\s\S]*?\})")
_MARKER_PREFIX = re.compile(r"TIMELINE_EVENT:\s*")
# Template placeholders echoed back from the system prompt, e.g. "<unique-id>".
_PLACEHOLDER_ID = re.compile(r"^<[^<>]*>$")


def _new_id() -> str:
    return str(uuid.uuid4())


def _reject_constant(name: str) -> Any:
    # NaN and Infinity are Python extensions, not JSON.
    raise ValueError(f"Invalid JSON constant {name!r}")


# -----------------------------
# Span location
# -----------------------------
def _find_regex(text: str) -> Optional[Tuple[int, int, str]]:
    m = _REGEX_EVENT.search(text)
    if not m:
        return None
    return m.start(), m.end(), m.group(1)


def _scan_object(text: str, start: int) -> Optional[int]:
    """Return the index just past the object opening at ``text[start]``."""
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i + 1
    return None


def _find_braces(text: str) -> Optional[Tuple[int, int, str]]:
    for m in _MARKER_PREFIX.finditer(text):
        open_at = m.end()
        if open_at >= len(text) or text[open_at] != "{":
            continue
        end = _scan_object(text, open_at)
        if end is None:
            return None
        return m.start(), end, text[open_at:end]
    return None


_FINDERS = {"regex": _find_regex, "braces": _find_braces}


# -----------------------------
# Public API
# -----------------------------
def resolve_event_id(raw_id: Any, id_factory: Callable[[], str] = _new_id) -> str:
    """Keep a usable model-supplied id, otherwise mint a new one."""
    if isinstance(raw_id, str):
        candidate = raw_id.strip()
        if candidate and not _PLACEHOLDER_ID.match(candidate):
            return candidate
    return id_factory()


def extract_timeline_event(
    text: str,
    *,
    scanner: str = "regex",
    id_factory: Optional[Callable[[], str]] = None,
) -> Tuple[str, Optional[TimelineEvent]]:
    """Split ``text`` into (cleaned reply, event or None).

    Parameters
    ----------
    text : str
        Raw completion text.
    scanner : str
        ``"regex"`` or ``"braces"``; see the module docstring.
    id_factory : callable | None
        Produces ids for events without a usable one. Defaults to UUID4.

    Returns
    -------
    tuple[str, TimelineEvent | None]
        With an event, the matched ``TIMELINE_EVENT: {...}`` span is removed
        and the remainder stripped. Without one, ``text`` is returned as is.
    """
    try:
        finder = _FINDERS[scanner]
    except KeyError:
        raise ValueError(f"Unknown timeline scanner {scanner!r}; expected one of {SCANNERS}")

    found = finder(text)
    if found is None:
        return text, None
    start, end, span = found

    try:
        payload = json.loads(span, parse_constant=_reject_constant)
    except ValueError as e:
        logger.warning("Failed to parse timeline event: %s", e)
        return text, None
    if not isinstance(payload, dict):
        logger.warning("Timeline event is not a JSON object: %r", type(payload).__name__)
        return text, None

    data: Dict[str, Any] = dict(payload)
    data["id"] = resolve_event_id(data.get("id"), id_factory or _new_id)
    try:
        event = TimelineEvent(**data)
    except (TypeError, ValidationError) as e:
        logger.warning("Failed to build timeline event: %s", e)
        return text, None

    cleaned = (text[:start] + text[end:]).strip()
    return cleaned, event
