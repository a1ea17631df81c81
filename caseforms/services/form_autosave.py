from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Protocol

import redis
import redis.asyncio as aioredis

from caseforms.core.config import settings
from caseforms.services.form_uploads import PendingFile

_LOG = logging.getLogger("caseforms.autosave")

ANONYMOUS_IDENTITY = "anonymous"


def autosave_key(slug: str, identity: str | None) -> str:
    return f"form_autosave:{slug}:{str(identity or '').strip() or ANONYMOUS_IDENTITY}"


def snapshot_data(data: dict[str, Any]) -> dict[str, Any]:
    # Staged file bytes never go into a snapshot.
    return {key: value for key, value in data.items() if not isinstance(value, PendingFile)}


class DraftStore(Protocol):
    async def get(self, key: str) -> dict[str, Any] | None:
        ...

    async def set(self, key: str, snapshot: dict[str, Any]) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...


class InMemoryDraftStore:
    def __init__(self):
        self._data: dict[str, str] = {}

    async def get(self, key: str) -> dict[str, Any] | None:
        raw = self._data.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, snapshot: dict[str, Any]) -> None:
        self._data[key] = json.dumps(snapshot, ensure_ascii=False, default=str)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class RedisDraftStore:
    def __init__(self, client: aioredis.Redis, *, ttl_seconds: int | None = None):
        self.client = client
        self.ttl_seconds = int(ttl_seconds if ttl_seconds is not None else settings.AUTOSAVE_TTL_SECONDS)

    async def get(self, key: str) -> dict[str, Any] | None:
        raw = await self.client.get(key)
        if raw is None:
            return None
        data = json.loads(raw)
        return data if isinstance(data, dict) else None

    async def set(self, key: str, snapshot: dict[str, Any]) -> None:
        payload = json.dumps(snapshot, ensure_ascii=False, default=str)
        await self.client.set(key, payload, ex=max(self.ttl_seconds, 1))

    async def delete(self, key: str) -> None:
        await self.client.delete(key)


_cached_store: DraftStore | None = None


def build_draft_store() -> DraftStore:
    try:
        client = redis.Redis.from_url(
            settings.REDIS_URL,
            socket_timeout=0.4,
            socket_connect_timeout=0.4,
        )
        client.ping()
        client.close()
        return RedisDraftStore(aioredis.Redis.from_url(settings.REDIS_URL, decode_responses=True))
    except Exception:
        _LOG.warning("Redis draft store unavailable; fallback to in-memory draft store")
        return InMemoryDraftStore()


def get_draft_store() -> DraftStore:
    global _cached_store
    if _cached_store is None:
        _cached_store = build_draft_store()
    return _cached_store


def reset_draft_store_for_tests() -> None:
    global _cached_store
    _cached_store = None


class AutosaveScheduler:
    """Debounced snapshot writer.

    Every :meth:`schedule` call restarts the quiet period; only the newest
    snapshot is written once it elapses. Without a running event loop the
    snapshot stays pending until :meth:`flush`.
    """

    def __init__(self, store: DraftStore, key: str, *, delay: float | None = None):
        self.store = store
        self.key = key
        self.delay = float(delay if delay is not None else settings.AUTOSAVE_DEBOUNCE_SECONDS)
        self._pending: dict[str, Any] | None = None
        self._task: asyncio.Task | None = None
        self.writes = 0

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def schedule(self, snapshot: dict[str, Any]) -> None:
        self._pending = snapshot_data(snapshot)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._cancel_task()
        self._task = loop.create_task(self._write_after_delay())

    async def _write_after_delay(self) -> None:
        await asyncio.sleep(self.delay)
        await self._write_pending()

    async def _write_pending(self) -> None:
        snapshot, self._pending = self._pending, None
        if snapshot is None:
            return
        try:
            await self.store.set(self.key, snapshot)
            self.writes += 1
        except Exception:
            _LOG.warning("autosave write failed key=%s", self.key, exc_info=True)

    def _cancel_task(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def flush(self) -> None:
        self._cancel_task()
        await self._write_pending()

    def cancel(self) -> None:
        self._cancel_task()
        self._pending = None

    async def clear(self) -> None:
        self.cancel()
        await self.store.delete(self.key)
