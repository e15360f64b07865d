"""Write per-turn conversation snapshots to date-foldered log files."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ..logging_handlers import dated_log_path


class ConversationLogWriter:
    """Persist a JSON snapshot of every completed turn when enabled."""

    def __init__(self, base_dir: Path, *, min_level: int | None) -> None:
        self._base_dir = base_dir.resolve()
        self._min_level = min_level

    @property
    def enabled(self) -> bool:
        return self._min_level is not None and self._min_level <= logging.INFO

    async def write(
        self,
        *,
        chat_id: str,
        user_id: str,
        model: dict[str, Any],
        strategy: str,
        conversation: list[dict[str, Any]],
    ) -> Path | None:
        """Append a snapshot of the persisted conversation; returns the file path."""

        # Snapshots are INFO-level events.
        if not self.enabled:
            return None

        now = datetime.now(timezone.utc)
        entry = {
            "type": "turn_snapshot",
            "logged_at": now.isoformat(),
            "chat_id": chat_id,
            "user_id": user_id,
            "model": model,
            "strategy": strategy,
            "message_count": len(conversation),
            "conversation": conversation,
        }
        safe_chat_id = chat_id.replace("/", "_")
        log_path = dated_log_path(
            self._base_dir, "chat", moment=now, suffix=safe_chat_id
        )

        delimiter = "=" * 80
        rendered = json.dumps(entry, ensure_ascii=False, indent=2)
        header = now.strftime("%Y-%m-%d %H:%M:%S UTC")
        payload = f"{header}\n{delimiter}\n{rendered}\n{delimiter}\n"

        await asyncio.to_thread(self._append_entry, log_path, payload)
        return log_path

    def _append_entry(self, path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as handle:
            handle.write(content)


__all__ = ["ConversationLogWriter"]
