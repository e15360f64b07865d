"""Commit a finished turn to the chat store."""

from __future__ import annotations

import copy
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence, Union

from ..errors import ChatNotFound, PersistenceError
from ..protocols import ChatStore
from ..repository import Message
from .model_resolution import ModelDescriptor

logger = logging.getLogger(__name__)


class PersistStrategy(str, enum.Enum):
    REPLACE_LAST = "replace_last_assistant"
    APPEND_FROM_TRIMMED = "append_from_trimmed"


@dataclass(frozen=True)
class Append:
    """Append one message to the end of the list."""

    message: Message


@dataclass(frozen=True)
class PatchLastMetadata:
    """Merge fields into the metadata of the last message, if it is an assistant reply."""

    fields: Mapping[str, Any] = field(default_factory=dict)


Mutation = Union[Append, PatchLastMetadata]


def descriptor_patch(descriptor: ModelDescriptor) -> PatchLastMetadata:
    return PatchLastMetadata(
        fields={
            "model": descriptor.as_metadata(),
            "assistantDisplayName": descriptor.name,
            "assistantImageUrl": descriptor.profile_image_url,
        }
    )


def apply_mutations(
    base: Sequence[Message], mutations: Sequence[Mutation]
) -> list[Message]:
    """Return a new message list with ``mutations`` applied in order."""

    result = [dict(message) for message in base]
    for mutation in mutations:
        if isinstance(mutation, Append):
            result.append(copy.deepcopy(mutation.message))
        elif isinstance(mutation, PatchLastMetadata):
            if not result or result[-1].get("role") != "assistant":
                continue
            last = result[-1]
            metadata = dict(last.get("metadata") or {})
            for key, value in mutation.fields.items():
                if value is None:
                    metadata.pop(key, None)
                else:
                    metadata[key] = value
            result[-1] = {**last, "metadata": metadata}
        else:  # pragma: no cover - exhaustive over Mutation
            raise TypeError(f"Unknown mutation {mutation!r}")
    return result


def last_assistant(messages: Sequence[Message]) -> Message | None:
    for message in reversed(messages):
        if message.get("role") == "assistant":
            return message
    return None


def plan_replace_last(
    streamed: Sequence[Message], descriptor: ModelDescriptor | None
) -> tuple[list[Message], list[Mutation]]:
    """Write the streamed array back, patching a trailing assistant reply."""

    mutations: list[Mutation] = []
    if descriptor is not None:
        mutations.append(descriptor_patch(descriptor))
    return list(streamed), mutations


def plan_append_from_trimmed(
    canonical: Sequence[Message],
    streamed: Sequence[Message],
    descriptor: ModelDescriptor | None,
) -> tuple[list[Message], list[Mutation]]:
    """Append the streamed reply onto the untrimmed history."""

    reply = last_assistant(streamed)
    if reply is None:
        return list(canonical), []
    mutations: list[Mutation] = [Append(reply)]
    if descriptor is not None:
        mutations.append(descriptor_patch(descriptor))
    return list(canonical), mutations


class PersistenceWriter:
    """Apply a persistence strategy and overwrite the chat's message list."""

    def __init__(self, store: ChatStore) -> None:
        self._store = store

    async def persist(
        self,
        *,
        chat_id: str,
        user_id: str,
        strategy: PersistStrategy,
        streamed: Sequence[Message],
        descriptor: ModelDescriptor | None,
        canonical: Sequence[Message] | None = None,
    ) -> list[Message]:
        if strategy is PersistStrategy.APPEND_FROM_TRIMMED:
            if canonical is None:
                raise ValueError("append_from_trimmed requires the canonical history")
            base, mutations = plan_append_from_trimmed(canonical, streamed, descriptor)
        else:
            base, mutations = plan_replace_last(streamed, descriptor)

        messages = apply_mutations(base, mutations)
        try:
            await self._store.save_chat(chat_id, user_id, messages)
        except ChatNotFound as exc:
            raise PersistenceError(f"Chat {chat_id} disappeared before saving") from exc
        except Exception as exc:
            logger.exception("Failed to persist chat %s", chat_id)
            raise PersistenceError(f"Failed to save chat {chat_id}: {exc}") from exc

        logger.debug(
            "Persisted chat %s with %d messages (%s)",
            chat_id,
            len(messages),
            strategy.value,
        )
        return messages


__all__ = [
    "Append",
    "Mutation",
    "PatchLastMetadata",
    "PersistStrategy",
    "PersistenceWriter",
    "apply_mutations",
    "descriptor_patch",
    "last_assistant",
    "plan_append_from_trimmed",
    "plan_replace_last",
]
