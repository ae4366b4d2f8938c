"""Plain-text rendering of chat transcripts and session labels."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime

from .models import ChatMessage, ChatSession

SESSION_LABEL_MAX_CHARS = 42


def format_timestamp_short(value: datetime, *, now: datetime | None = None) -> str:
    """Local time for transcript metadata; includes the date if not today."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    local_dt = value.astimezone()
    now_local = (now or datetime.now(UTC)).astimezone()
    time_str = local_dt.strftime("%I:%M %p").lstrip("0")
    if local_dt.date() == now_local.date():
        return time_str
    return f"{local_dt.strftime('%b')} {local_dt.day}, {time_str}"


def message_lines(message: ChatMessage, *, now: datetime | None = None) -> list[str]:
    """Render one message into transcript lines."""
    role = "You" if message.is_user else "Assistant"
    return [
        f"{role} | {format_timestamp_short(message.timestamp, now=now)}",
        message.text,
        "",
    ]


def render_transcript(messages: Iterable[ChatMessage], *, now: datetime | None = None) -> str:
    lines: list[str] = []
    for message in messages:
        lines.extend(message_lines(message, now=now))
    return "\n".join(lines).strip()


def session_label(session: ChatSession) -> str:
    title = session.title
    if len(title) <= SESSION_LABEL_MAX_CHARS:
        return title
    return f"{title[: SESSION_LABEL_MAX_CHARS - 3]}..."
