"""Assistant message identifiers and metadata stamping."""

from __future__ import annotations

import time
import uuid
from typing import Any

from ..model_resolution import ModelDescriptor


def new_message_id() -> str:
    return f"msg_{uuid.uuid4().hex}"


def build_start_metadata(
    descriptor: ModelDescriptor | None, *, now_ms: int | None = None
) -> dict[str, Any]:
    """Metadata stamped on the assistant message when streaming starts."""

    metadata: dict[str, Any] = {
        "createdAt": now_ms if now_ms is not None else int(time.time() * 1000)
    }
    if descriptor is None:
        return metadata
    metadata["model"] = descriptor.as_metadata()
    metadata["assistantDisplayName"] = descriptor.name
    if descriptor.profile_image_url:
        metadata["assistantImageUrl"] = descriptor.profile_image_url
    return metadata


def build_finish_metadata(total_tokens: int | None) -> dict[str, Any]:
    if total_tokens is None:
        return {}
    return {"totalTokens": total_tokens}


__all__ = ["build_finish_metadata", "build_start_metadata", "new_message_id"]
