"""Resolve the model that answers a turn and the provider handle serving it."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from ..errors import PermissionDenied
from ..protocols import ModelRegistry, PermissionService
from ..providers.router import ProviderRouter
from ..providers.types import ModelHandle, ProviderConnections, ProviderResolution
from ..repository import ModelRecord

logger = logging.getLogger(__name__)

# Meta keys holding the context window, in priority order.
_CONTEXT_KEYS = ("context_window", "contextWindow", "context", "max_context")
_DETAIL_CONTEXT_KEYS = ("context_window", "context")


@dataclass(frozen=True)
class ModelDescriptor:
    """Model identity snapshot embedded in message metadata."""

    id: str
    name: str
    profile_image_url: str | None = None

    def as_metadata(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"id": self.id, "name": self.name}
        if self.profile_image_url is not None:
            payload["profile_image_url"] = self.profile_image_url
        return payload

    @classmethod
    def from_record(cls, record: ModelRecord) -> "ModelDescriptor":
        image = record.meta.get("profile_image_url")
        return cls(
            id=record.id,
            name=record.name,
            profile_image_url=image if isinstance(image, str) and image else None,
        )

    @classmethod
    def from_metadata(cls, value: Any) -> "ModelDescriptor | None":
        if not isinstance(value, Mapping):
            return None
        model_id, name = value.get("id"), value.get("name")
        if not isinstance(model_id, str) or not isinstance(name, str):
            return None
        if not model_id or not name:
            return None
        image = value.get("profile_image_url")
        return cls(
            id=model_id,
            name=name,
            profile_image_url=image if isinstance(image, str) and image else None,
        )


def _positive_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)) and value > 0:
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        number = int(value.strip())
        return number or None
    return None


def context_window_from_meta(meta: Mapping[str, Any] | None) -> int | None:
    """Return the first usable context-window size declared in model meta."""

    if not meta:
        return None
    for key in _CONTEXT_KEYS:
        tokens = _positive_int(meta.get(key))
        if tokens is not None:
            return tokens
    details = meta.get("details")
    if isinstance(details, Mapping):
        for key in _DETAIL_CONTEXT_KEYS:
            tokens = _positive_int(details.get(key))
            if tokens is not None:
                return tokens
    return None


def descriptor_from_history(
    messages: Sequence[Mapping[str, Any]],
) -> ModelDescriptor | None:
    """Find the newest user message whose metadata names a model."""

    for message in reversed(messages):
        if message.get("role") != "user":
            continue
        metadata = message.get("metadata")
        if isinstance(metadata, Mapping):
            descriptor = ModelDescriptor.from_metadata(metadata.get("model"))
            if descriptor is not None:
                return descriptor
    return None


@dataclass(frozen=True)
class ModelResolution:
    descriptor: ModelDescriptor
    model_name: str
    context_window_tokens: int | None
    provider: ProviderResolution
    handle: ModelHandle
    record: ModelRecord | None = None

    @property
    def provider_model_id(self) -> str:
        return self.provider.provider_model_id


class ModelResolver:
    """Pick a model descriptor by falling through the documented steps."""

    def __init__(
        self,
        models: ModelRegistry,
        permissions: PermissionService,
        router: ProviderRouter,
        *,
        default_model: str,
    ) -> None:
        self._models = models
        self._permissions = permissions
        self._router = router
        self._default_model = default_model

    async def _readable_record(
        self, user_id: str, model_id: str
    ) -> ModelRecord | None:
        if not await self._permissions.can_read_model(user_id, model_id):
            raise PermissionDenied(f"User {user_id} cannot read model {model_id}")
        record = await self._models.find_model_by_id(model_id)
        if record is None:
            logger.info("Model %s not found; falling back", model_id)
        return record

    async def resolve(
        self,
        user_id: str,
        model_id: str | None,
        messages: Sequence[Mapping[str, Any]],
        connections: ProviderConnections,
    ) -> ModelResolution:
        """Resolve the descriptor and provider; only routing failures raise."""

        descriptor: ModelDescriptor | None = None
        record: ModelRecord | None = None
        context_tokens: int | None = None

        if model_id:
            try:
                record = await self._readable_record(user_id, model_id)
            except PermissionDenied as exc:
                logger.info("%s; falling back", exc.detail)
            if record is not None:
                descriptor = ModelDescriptor.from_record(record)
                context_tokens = context_window_from_meta(record.meta)

        if descriptor is None:
            descriptor = descriptor_from_history(messages)
            if descriptor is not None:
                candidate = await self._models.find_model_by_id(descriptor.id)
                if candidate is not None and await self._permissions.can_read_model(
                    user_id, candidate.id
                ):
                    record = candidate
                    context_tokens = context_window_from_meta(candidate.meta)

        if descriptor is None:
            record = await self._models.find_model_by_name(
                user_id, self._default_model
            )
            if record is not None:
                descriptor = ModelDescriptor.from_record(record)
                context_tokens = context_window_from_meta(record.meta)

        if descriptor is None:
            descriptor = ModelDescriptor(
                id=self._default_model, name=self._default_model
            )

        model_name = descriptor.name
        provider = await self._router.resolve(model_id or model_name, connections)
        return ModelResolution(
            descriptor=descriptor,
            model_name=model_name,
            context_window_tokens=context_tokens,
            provider=provider,
            handle=provider.get_model_handle(provider.provider_model_id),
            record=record,
        )


__all__ = [
    "ModelDescriptor",
    "ModelResolution",
    "ModelResolver",
    "context_window_from_meta",
    "descriptor_from_history",
]
