"""Reduce a conversation to the text that fits a provider's context budget."""

from __future__ import annotations

from typing import Any, Sequence

from ..providers.types import message_text

Message = dict[str, Any]

DEFAULT_MAX_CHARS_PER_MESSAGE = 4000
DEFAULT_MIN_TAIL_MESSAGES = 8


def filter_to_text_parts(
    messages: Sequence[Message],
    max_chars_per_message: int = DEFAULT_MAX_CHARS_PER_MESSAGE,
) -> list[Message]:
    """Keep only capped text parts and drop messages left without any."""

    filtered: list[Message] = []
    for message in messages:
        parts = message.get("parts")
        if not isinstance(parts, list):
            continue
        text_parts = [
            {**part, "text": str(part.get("text") or "")[:max_chars_per_message]}
            for part in parts
            if isinstance(part, dict) and part.get("type") == "text"
        ]
        if text_parts:
            filtered.append({**message, "parts": text_parts})
    return filtered


def trim_by_char_budget(
    messages: Sequence[Message],
    max_chars: int,
    min_tail_messages: int = DEFAULT_MIN_TAIL_MESSAGES,
) -> list[Message]:
    """
    Trim ``messages`` so their combined text length fits ``max_chars``.

    The first system message is always kept and counted. The most recent
    ``min_tail_messages`` are tried first, newest to oldest, stopping at the
    first that does not fit. Older messages are then prepended, newest to
    oldest, until one does not fit. Order is preserved with the system
    message leading.
    """

    if not messages:
        return []

    system = next((m for m in messages if m.get("role") == "system"), None)
    others = [m for m in messages if m is not system]
    system_size = len(message_text(system)) if system is not None else 0

    tail_count = min(max(min_tail_messages, 0), len(others))
    tail = others[len(others) - tail_count :]
    head = others[: len(others) - tail_count]

    kept: list[Message] = []
    used = system_size
    for message in reversed(tail):
        size = len(message_text(message))
        if used + size > max_chars:
            break
        kept.append(message)
        used += size

    for message in reversed(head):
        size = len(message_text(message))
        if used + size > max_chars:
            break
        kept.append(message)
        used += size

    kept.reverse()
    return ([system] if system is not None else []) + kept


def prepare_context(
    messages: Sequence[Message],
    max_chars: int,
    *,
    max_chars_per_message: int = DEFAULT_MAX_CHARS_PER_MESSAGE,
    min_tail_messages: int = DEFAULT_MIN_TAIL_MESSAGES,
) -> list[Message]:
    """Filter to text parts, then trim to the character budget."""

    return trim_by_char_budget(
        filter_to_text_parts(messages, max_chars_per_message),
        max_chars,
        min_tail_messages,
    )


__all__ = [
    "DEFAULT_MAX_CHARS_PER_MESSAGE",
    "DEFAULT_MIN_TAIL_MESSAGES",
    "filter_to_text_parts",
    "prepare_context",
    "trim_by_char_budget",
]
