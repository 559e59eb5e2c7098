"""
Session Store - caches session ids per ``(endpoint, credential)`` pair.

Sessions are advisory: a stale id only costs one failed call, so the
backing file is read-merge-write with last writer wins, and any problem
reading or writing it degrades to "acquire every time" instead of
failing the caller.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Dict, Optional, Protocol

from pydantic import ValidationError

from zsearch.bridge.schema import SESSION_TTL_MS, SessionRecord, now_ms

logger = logging.getLogger(__name__)


class Acquirer(Protocol):
    async def acquire(self, endpoint: str, credential: str) -> str: ...


class SessionBackend(ABC):
    """Storage for session records. Implementations must never raise."""

    @abstractmethod
    def load(self) -> Dict[str, SessionRecord]:
        pass

    @abstractmethod
    def save(self, records: Dict[str, SessionRecord]) -> None:
        pass


class MemorySessionBackend(SessionBackend):
    """In-process backend, used by tests and short-lived embeddings."""

    def __init__(self, records: Optional[Dict[str, SessionRecord]] = None):
        self.records: Dict[str, SessionRecord] = dict(records or {})
        self.saves = 0

    def load(self) -> Dict[str, SessionRecord]:
        return dict(self.records)

    def save(self, records: Dict[str, SessionRecord]) -> None:
        self.saves += 1
        self.records = dict(records)


class FileSessionBackend(SessionBackend):
    """
    JSON file backend::

        {"sessions": {"<endpoint>|<credential>":
            {"sessionId": ..., "endpoint": ..., "createdAt": ..., "expiresAt": ...}}}
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Dict[str, SessionRecord]:
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as exc:
            logger.debug("Ignoring unreadable session cache %s: %s", self.path, exc)
            return {}

        sessions = data.get("sessions") if isinstance(data, dict) else None
        if not isinstance(sessions, dict):
            return {}

        records: Dict[str, SessionRecord] = {}
        for key, raw in sessions.items():
            try:
                records[key] = SessionRecord.model_validate(raw)
            except ValidationError:
                continue
        return records

    def save(self, records: Dict[str, SessionRecord]) -> None:
        payload = {"sessions": {key: record.to_wire() for key, record in records.items()}}
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
        except OSError as exc:
            logger.debug("Could not persist session cache %s: %s", self.path, exc)


class SessionStore:
    """
    Hands out session ids, acquiring new ones only on a miss or expiry.

    Within one process, lookups for the same key are serialised so that
    concurrent callers share a single acquisition; different keys never
    wait on each other.
    """

    def __init__(
        self,
        acquirer: Acquirer,
        backend: Optional[SessionBackend] = None,
        ttl_ms: int = SESSION_TTL_MS,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.acquirer = acquirer
        self.backend = backend or MemorySessionBackend()
        self.ttl_ms = ttl_ms
        self._clock = clock or now_ms
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    @staticmethod
    def cache_key(endpoint: str, credential: str) -> str:
        return f"{endpoint}|{credential}"

    async def acquire_session(self, endpoint: str, credential: str) -> str:
        key = self.cache_key(endpoint, credential)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                return await self._acquire_locked(key, endpoint, credential)
        finally:
            # Drop the lock once nobody holds or waits on it.
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    async def _acquire_locked(self, key: str, endpoint: str, credential: str) -> str:
        records = await asyncio.to_thread(self.backend.load)
        cached = records.get(key)
        if cached is not None and cached.is_valid(self._clock()):
            logger.debug("Reusing cached session for %s", endpoint)
            return cached.session_id

        session_id = await self.acquirer.acquire(endpoint, credential)

        created = self._clock()
        record = SessionRecord(
            session_id=session_id,
            endpoint=endpoint,
            created_at=created,
            expires_at=created + self.ttl_ms,
        )
        # Re-read so records written by other keys meanwhile survive.
        records = await asyncio.to_thread(self.backend.load)
        records[key] = record
        await asyncio.to_thread(self.backend.save, records)
        return session_id

    async def clear_sessions(self) -> None:
        await asyncio.to_thread(self.backend.save, {})

    async def clear_expired_sessions(self) -> None:
        records = await asyncio.to_thread(self.backend.load)
        now = self._clock()
        live = {key: record for key, record in records.items() if record.is_valid(now)}
        await asyncio.to_thread(self.backend.save, live)
