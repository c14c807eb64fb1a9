"""
Transcript normalization for provider call reports

The provider reports conversation turns in several shapes: bare strings,
role/message objects and objects whose content is a list of text parts.
Each raw item is classified into one of the item types below and then
normalized to a TranscriptEntry; items with no text are dropped.
"""
import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Tuple, Union

from scheduling.models import TranscriptEntry

logger = logging.getLogger("transcript-normalizer")

ROLE_ALIASES = {
    "bot": "assistant",
    "ai": "assistant",
    "agent": "assistant",
    "assistant": "assistant",
    "customer": "user",
    "patient": "user",
    "user": "user",
}

# Prompt and tool plumbing, not part of the conversation
SKIPPED_ROLES = frozenset({"system", "tool", "tool_calls", "tool_call_result", "function"})

_SPEAKER_PREFIX = re.compile(r"^\s*([A-Za-z][A-Za-z _-]{0,20}):\s*(.*)$")


@dataclass(frozen=True)
class PlainTextItem:
    """A bare transcript line, optionally prefixed with 'Speaker:'"""
    text: str


@dataclass(frozen=True)
class RoleMessageItem:
    """A turn with a role and a single text message"""
    role: str
    message: str
    time: Optional[float] = None


@dataclass(frozen=True)
class ContentPartsItem:
    """A turn whose content is a list of text parts"""
    role: str
    parts: Tuple[str, ...]
    time: Optional[float] = None


TranscriptItem = Union[PlainTextItem, RoleMessageItem, ContentPartsItem]


def _offset_seconds(raw: dict) -> Optional[float]:
    value = raw.get("secondsFromStart")
    if value is None:
        value = raw.get("time")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _part_text(part: Any) -> Optional[str]:
    if isinstance(part, str):
        return part
    if isinstance(part, dict) and isinstance(part.get("text"), str):
        return part["text"]
    return None


def classify_transcript_item(raw: Any) -> Optional[TranscriptItem]:
    """
    Classify a raw provider transcript item

    Returns:
        The matching item type, or None when the shape is not recognized
    """
    if isinstance(raw, str):
        return PlainTextItem(text=raw)

    if not isinstance(raw, dict):
        return None

    role = raw.get("role") if isinstance(raw.get("role"), str) else "unknown"
    time = _offset_seconds(raw)

    message = raw.get("message")
    if isinstance(message, str):
        return RoleMessageItem(role=role, message=message, time=time)

    content = raw.get("content")
    if isinstance(content, str):
        return RoleMessageItem(role=role, message=content, time=time)
    if isinstance(content, list):
        parts = tuple(text for text in (_part_text(part) for part in content) if text)
        return ContentPartsItem(role=role, parts=parts, time=time)

    return None


def normalize_role(role: str) -> str:
    cleaned = (role or "").strip().lower()
    return ROLE_ALIASES.get(cleaned, cleaned or "unknown")


def normalize_item(item: TranscriptItem) -> Optional[TranscriptEntry]:
    """Map a classified item to a TranscriptEntry, None when it carries no text"""
    if isinstance(item, PlainTextItem):
        match = _SPEAKER_PREFIX.match(item.text)
        if match:
            role, message = match.group(1), match.group(2)
        else:
            role, message = "unknown", item.text
        time = None
    elif isinstance(item, RoleMessageItem):
        role, message, time = item.role, item.message, item.time
    elif isinstance(item, ContentPartsItem):
        role, message, time = item.role, " ".join(p.strip() for p in item.parts), item.time
    else:
        return None

    role = normalize_role(role)
    message = (message or "").strip()
    if not message or role in SKIPPED_ROLES:
        return None
    return TranscriptEntry(role=role, message=message, time=time)


def normalize_transcript(raw_items: Optional[Iterable[Any]]) -> List[TranscriptEntry]:
    """
    Normalize a provider message list into ordered transcript entries

    Args:
        raw_items: Provider messages in any supported shape

    Returns:
        Entries in provider order, unrecognized and empty items dropped
    """
    entries = []
    dropped = 0
    for raw in raw_items or []:
        item = classify_transcript_item(raw)
        entry = normalize_item(item) if item is not None else None
        if entry is None:
            dropped += 1
            continue
        entries.append(entry)

    if dropped:
        logger.debug(f"Dropped {dropped} transcript items without text")
    return entries


def split_transcript_text(transcript: Optional[str]) -> List[str]:
    """Split a flat provider transcript into its non-empty lines"""
    if not transcript:
        return []
    return [line for line in transcript.splitlines() if line.strip()]


def format_transcript_line(entry: TranscriptEntry) -> str:
    line = f"{entry.role.upper()}: {entry.message}"
    if entry.time is not None:
        return f"[{entry.time:.1f}s] {line}"
    return line


def format_transcript(entries: Iterable[TranscriptEntry]) -> str:
    """Human-readable transcript, one turn per line"""
    return "\n".join(format_transcript_line(entry) for entry in entries)
