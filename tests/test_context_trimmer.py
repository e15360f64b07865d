from __future__ import annotations

from typing import Any

import pytest

from chat_backend.chat.context import (
    filter_to_text_parts,
    prepare_context,
    trim_by_char_budget,
)
from chat_backend.providers.types import message_text

from conftest import text_message


def _total_chars(messages: list[dict[str, Any]]) -> int:
    return sum(len(message_text(message)) for message in messages)


def _history(count: int, size: int = 10) -> list[dict[str, Any]]:
    roles = ("user", "assistant")
    return [
        text_message(f"m{index}", roles[index % 2], "x" * size)
        for index in range(count)
    ]


def test_empty_history_returns_empty() -> None:
    assert trim_by_char_budget([], 100) == []
    assert prepare_context([], 100) == []


def test_history_within_budget_is_unchanged() -> None:
    history = _history(5)

    assert trim_by_char_budget(history, 1000) == history


@pytest.mark.parametrize("budget", [0, 5, 25, 55, 99, 150])
def test_budget_is_never_exceeded(budget: int) -> None:
    history = _history(12)

    trimmed = trim_by_char_budget(history, budget)

    assert _total_chars(trimmed) <= budget


def test_order_is_preserved_and_newest_kept() -> None:
    history = _history(10)

    trimmed = trim_by_char_budget(history, 45)

    assert [m["id"] for m in trimmed] == ["m6", "m7", "m8", "m9"]


def test_system_message_is_kept_and_counted() -> None:
    system = text_message("sys", "system", "s" * 20)
    history = [system, *_history(6)]

    trimmed = trim_by_char_budget(history, 45)

    assert trimmed[0] is system
    assert [m["id"] for m in trimmed[1:]] == ["m4", "m5"]
    assert _total_chars(trimmed) <= 45


def test_budget_smaller_than_system_still_returns_system() -> None:
    system = text_message("sys", "system", "s" * 50)
    history = [system, *_history(3)]

    assert trim_by_char_budget(history, 10) == [system]


def test_tail_stops_at_first_message_that_does_not_fit() -> None:
    history = [
        text_message("old", "user", "a" * 5),
        text_message("big", "assistant", "b" * 100),
        text_message("new", "user", "c" * 5),
    ]

    trimmed = trim_by_char_budget(history, 50)

    # "old" fits on its own but lies beyond the message that overflowed.
    assert [m["id"] for m in trimmed] == ["new"]


def test_head_walk_stops_at_first_overflow() -> None:
    history = [
        text_message("h0", "user", "a" * 5),
        text_message("h1", "assistant", "b" * 100),
        text_message("h2", "user", "c" * 5),
        text_message("t0", "assistant", "d" * 5),
    ]

    trimmed = trim_by_char_budget(history, 30, min_tail_messages=1)

    assert [m["id"] for m in trimmed] == ["h2", "t0"]


def test_trimming_is_idempotent() -> None:
    history = [text_message("sys", "system", "rules"), *_history(20, size=13)]

    once = trim_by_char_budget(history, 120)
    twice = trim_by_char_budget(once, 120)

    assert once == twice


def test_filter_caps_text_parts_and_drops_non_text_messages() -> None:
    image_only = {
        "id": "img",
        "role": "user",
        "parts": [{"type": "file", "url": "https://example.com/cat.png"}],
    }
    mixed = {
        "id": "mixed",
        "role": "user",
        "parts": [
            {"type": "text", "text": "y" * 50},
            {"type": "file", "url": "https://example.com/dog.png"},
        ],
    }

    filtered = filter_to_text_parts([image_only, mixed], max_chars_per_message=10)

    assert [m["id"] for m in filtered] == ["mixed"]
    assert filtered[0]["parts"] == [{"type": "text", "text": "y" * 10}]
    # Inputs are not mutated.
    assert len(mixed["parts"]) == 2


def test_prepare_context_filters_before_trimming() -> None:
    history = [
        text_message("a", "user", "z" * 30),
        {"id": "tool", "role": "assistant", "parts": [{"type": "tool-call"}]},
        text_message("b", "assistant", "ok"),
    ]

    context = prepare_context(history, 100, max_chars_per_message=20)

    assert [m["id"] for m in context] == ["a", "b"]
    assert _total_chars(context) == 22
