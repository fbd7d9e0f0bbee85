from __future__ import annotations

import asyncio
import json
import logging
import threading
from typing import Any, Dict, Iterable, Optional, Protocol, Union

from portal.core.errors import StorageError
from portal.core.session.keys import StorageKey
from portal.core.trace import current_trace_id


KeyLike = Union[StorageKey, str]


class KeyValueBackend(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str, *, trace_id: str = ...) -> None: ...

    def delete(self, key: str, *, trace_id: str = ...) -> None: ...


class MemoryBackend:
    """Process-local backend. Nothing survives a restart; used for tests and `--ephemeral`."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str, *, trace_id: str = "memory") -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str, *, trace_id: str = "memory") -> None:
        with self._lock:
            self._data.pop(key, None)

    def snapshot(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._data)


def _key(key: KeyLike) -> str:
    return key.value if isinstance(key, StorageKey) else str(key)


class CredentialStore:
    """
    Async string key/value access over a blocking backend.

    Reads never raise: a failing backend is logged and the value reported
    absent. Writes raise `StorageError` and the caller decides whether the
    failure is fatal for its flow.
    """

    def __init__(self, backend: KeyValueBackend, *, logger: Optional[logging.Logger] = None):
        self.backend = backend
        self.logger = logger or logging.getLogger("portal.session.store")

    async def get(self, key: KeyLike) -> Optional[str]:
        k = _key(key)
        try:
            value = await asyncio.to_thread(self.backend.get, k)
        except Exception as e:  # noqa: BLE001
            self.logger.warning(f"Credential store read failed for {k}: {type(e).__name__}")
            return None
        if value is not None and not isinstance(value, str):
            self.logger.warning(f"Credential store returned non-string value for {k}; ignoring")
            return None
        return value

    async def set(self, key: KeyLike, value: str) -> None:
        k = _key(key)
        trace_id = current_trace_id("store") or "store"
        try:
            await asyncio.to_thread(self._backend_set, k, str(value), trace_id)
        except Exception as e:  # noqa: BLE001
            self.logger.error(f"Credential store write failed for {k}: {type(e).__name__}")
            raise StorageError(key=k, error=type(e).__name__) from e

    async def remove(self, key: KeyLike) -> None:
        k = _key(key)
        trace_id = current_trace_id("store") or "store"
        try:
            await asyncio.to_thread(self._backend_delete, k, trace_id)
        except Exception as e:  # noqa: BLE001
            self.logger.error(f"Credential store delete failed for {k}: {type(e).__name__}")
            raise StorageError(key=k, error=type(e).__name__) from e

    async def remove_many(self, keys: Iterable[KeyLike]) -> None:
        """Attempt every key; raise once at the end if any removal failed."""
        failed = []
        for key in keys:
            try:
                await self.remove(key)
            except StorageError:
                failed.append(_key(key))
        if failed:
            raise StorageError(keys=failed)

    # ---------- typed helpers ----------
    async def get_bool(self, key: KeyLike) -> bool:
        return (await self.get(key)) == "true"

    async def set_bool(self, key: KeyLike, value: bool) -> None:
        await self.set(key, "true" if value else "false")

    async def get_json(self, key: KeyLike) -> Optional[Any]:
        raw = await self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            self.logger.warning(f"Credential store value for {_key(key)} is not valid JSON; ignoring")
            return None

    async def set_json(self, key: KeyLike, value: Any) -> None:
        await self.set(key, json.dumps(value, ensure_ascii=False, sort_keys=True))

    def _backend_set(self, key: str, value: str, trace_id: str) -> None:
        self.backend.set(key, value, trace_id=trace_id)

    def _backend_delete(self, key: str, trace_id: str) -> None:
        self.backend.delete(key, trace_id=trace_id)
