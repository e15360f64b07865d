"""Pooled HTTP transport shared by the provider clients."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class PooledHttpClient:
    """Base class handing out one ``httpx.AsyncClient`` per base URL and timeout."""

    _client_lock: asyncio.Lock = asyncio.Lock()
    _client_pool: dict[tuple[str, float], httpx.AsyncClient] = {}

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = float(timeout)
        self._http_client = http_client

    @property
    def base_url(self) -> str:
        return self._base_url

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is not None:
            return self._http_client

        key = (self._base_url, self._timeout)
        pool = PooledHttpClient._client_pool
        client = pool.get(key)
        if client is not None:
            return client

        async with PooledHttpClient._client_lock:
            client = pool.get(key)
            if client is None:
                client = httpx.AsyncClient(
                    timeout=httpx.Timeout(self._timeout, connect=10.0),
                    limits=httpx.Limits(
                        max_connections=50,
                        max_keepalive_connections=20,
                    ),
                    http2=True,
                )
                pool[key] = client
        return client

    @classmethod
    async def aclose_shared(cls) -> None:
        async with PooledHttpClient._client_lock:
            clients = list(PooledHttpClient._client_pool.values())
            PooledHttpClient._client_pool.clear()
        for client in clients:
            try:
                await client.aclose()
            except httpx.HTTPError as exc:  # pragma: no cover - best effort cleanup
                logger.debug("Ignoring error while closing HTTP client: %s", exc)

    @staticmethod
    def _extract_error_detail(raw: bytes, provider: str) -> Any:
        if not raw:
            return f"{provider} returned an empty error response."
        text = raw.decode("utf-8", errors="ignore")
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            return text
        if isinstance(payload, dict):
            return payload.get("error") or payload
        return payload


__all__ = ["PooledHttpClient"]
