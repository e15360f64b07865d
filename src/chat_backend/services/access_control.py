"""Model read permissions."""

from __future__ import annotations

from typing import Any, Mapping

from ..repository import ChatRepository


def _ids(value: Any) -> set[str]:
    if not isinstance(value, list):
        return set()
    return {item for item in value if isinstance(item, str)}


class ModelAccessService:
    """Decide whether a user may read a model record."""

    def __init__(self, repository: ChatRepository) -> None:
        self._repository = repository

    async def can_read_model(self, user_id: str, model_id: str) -> bool:
        record = await self._repository.find_model_by_id(model_id)
        if record is None:
            return False

        role = await self._repository.get_user_role(user_id)
        if role is not None and role.lower() == "admin":
            return True
        if record.user_id == user_id:
            return True

        access = record.access_control or {}
        read = access.get("read")
        if not isinstance(read, Mapping):
            return False
        if user_id in _ids(read.get("user_ids")):
            return True
        group_ids = _ids(read.get("group_ids"))
        if not group_ids:
            return False
        return bool(group_ids & await self._repository.get_user_groups(user_id))


__all__ = ["ModelAccessService"]
