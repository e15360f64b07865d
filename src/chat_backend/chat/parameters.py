"""Normalize stored model parameters and merge them with request overrides."""

from __future__ import annotations

from dataclasses import fields, replace
from typing import Any, Callable, Mapping, Sequence

from ..providers.types import GenerationParams, message_text


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _as_int(value: Any) -> int | None:
    number = _as_float(value)
    return None if number is None else int(number)


def _as_stop(value: Any) -> tuple[str, ...] | None:
    if isinstance(value, str):
        return (value,) if value else None
    if isinstance(value, (list, tuple)):
        items = tuple(str(item) for item in value if isinstance(item, str) and item)
        return items or None
    return None


def _as_text(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _as_tool_choice(value: Any) -> Any:
    if isinstance(value, str) and value in {"auto", "none", "required"}:
        return value
    if isinstance(value, Mapping) and value.get("type") == "tool":
        name = value.get("toolName")
        if isinstance(name, str) and name:
            return {"type": "tool", "toolName": name}
    return None


# field -> (accepted stored keys in priority order, coercion)
PARAM_ALIASES: dict[str, tuple[tuple[str, ...], Callable[[Any], Any]]] = {
    "temperature": (("temperature",), _as_float),
    "top_p": (("topP", "top_p"), _as_float),
    "top_k": (("topK", "top_k"), _as_int),
    "seed": (("seed",), _as_int),
    "presence_penalty": (("presencePenalty", "presence_penalty"), _as_float),
    "frequency_penalty": (("frequencyPenalty", "frequency_penalty"), _as_float),
    "max_output_tokens": (("maxOutputTokens", "max_output_tokens"), _as_int),
    "tool_choice": (("toolChoice", "tool_choice"), _as_tool_choice),
    "stop_sequences": (("stopSequences", "stop_sequences", "stop"), _as_stop),
    "system": (("systemPrompt", "system_prompt"), _as_text),
}


def normalize_model_params(
    raw: Mapping[str, Any] | None,
    meta: Mapping[str, Any] | None = None,
) -> GenerationParams:
    """Read a stored parameter record through the alias table."""

    raw = raw or {}
    values: dict[str, Any] = {}
    for name, (keys, coerce) in PARAM_ALIASES.items():
        for key in keys:
            if raw.get(key) is not None:
                values[name] = coerce(raw[key])
                break

    if values.get("system") is None and meta:
        details = meta.get("details")
        legacy = meta.get("system_prompt") or (
            details.get("system_prompt") if isinstance(details, Mapping) else None
        )
        values["system"] = _as_text(legacy)

    return GenerationParams(**values)


def merge_generation_params(
    request: GenerationParams, defaults: GenerationParams
) -> GenerationParams:
    """Left-biased merge: each request field wins when set, else the default."""

    merged = {
        field.name: (
            getattr(request, field.name)
            if getattr(request, field.name) is not None
            else getattr(defaults, field.name)
        )
        for field in fields(GenerationParams)
    }
    return GenerationParams(**merged)


def has_system_message(messages: Sequence[Mapping[str, Any]]) -> bool:
    """Return True when any system message carries non-blank text."""

    return any(
        message.get("role") == "system" and message_text(message).strip()
        for message in messages
    )


def compose_system_prompt(base: str | None, guidance: Sequence[str]) -> str | None:
    sections = [text.strip() for text in (base, *guidance) if text and text.strip()]
    return "\n\n".join(sections) or None


def finalize_system_param(
    params: GenerationParams,
    messages: Sequence[Mapping[str, Any]],
    guidance: Sequence[str] = (),
) -> GenerationParams:
    """Drop the system field when the history already carries a system message."""

    if has_system_message(messages):
        return replace(params, system=None)
    return replace(params, system=compose_system_prompt(params.system, guidance))


__all__ = [
    "PARAM_ALIASES",
    "compose_system_prompt",
    "finalize_system_param",
    "has_system_message",
    "merge_generation_params",
    "normalize_model_params",
]
