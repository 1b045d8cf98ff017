# src/pipeline/sessions.py — v1
"""Session registry: scan sessions and the single active scan lock.

Sessions are persisted as remote documents (visible to every participant)
and mirrored in the local cache. The lock is one remote document naming the
holder and its last heartbeat; a lock whose heartbeat is older than the stale
threshold may be force-cleared by any caller.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import string
from typing import Any, Callable

from pydantic import ValidationError

from mediaindex.cache.base_cache_store import SESSIONS, BaseCacheStore
from mediaindex.core.errors import MalformedRecord
from mediaindex.core.models import Session, SessionLock, SessionStatus, now_ms
from mediaindex.storage import layout
from mediaindex.storage.base_blob_store import BaseBlobStore

logger = logging.getLogger(__name__)

# Stages during which a second active session conflicts with the lock holder.
CONFLICTING_STAGES = frozenset({"checking_discovery", "crawling", "scanning", "uploading"})

_ID_ALPHABET = string.ascii_lowercase + string.digits


def new_session_id(timestamp_ms: int) -> str:
    """``<epoch ms>_<9 random chars>``."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"{timestamp_ms}_{suffix}"


def merge_progress(primary: dict[str, Any], secondary: dict[str, Any]) -> dict[str, Any]:
    """Fold secondary progress into primary; numeric counters keep the maximum."""
    merged = dict(primary)
    for key, value in secondary.items():
        current = merged.get(key)
        if (
            isinstance(current, (int, float)) and not isinstance(current, bool)
            and isinstance(value, (int, float)) and not isinstance(value, bool)
        ):
            merged[key] = max(current, value)
        elif current is None:
            merged[key] = value
    return merged


class SessionRegistry:
    """Create, heartbeat, lock and expire scan sessions."""

    def __init__(
        self,
        store: BaseBlobStore,
        cache: BaseCacheStore,
        root: str,
        stale_threshold_ms: int = 300_000,
        max_age_ms: int = 86_400_000,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._store = store
        self._cache = cache
        self._root = root
        self._stale_threshold_ms = stale_threshold_ms
        self._max_age_ms = max_age_ms
        self._clock = clock
        self._lock = asyncio.Lock()

    # --- Session records ---

    async def create_session(self, user_id: str = "anonymous", browser_id: str | None = None) -> Session:
        now = self._clock()
        session = Session(
            session_id=new_session_id(now),
            user_id=user_id,
            browser_id=browser_id or secrets.token_hex(6),
            last_heartbeat=now,
            created_at=now,
        )
        await self._save(session)
        logger.info("Created session %s for user %s", session.session_id, user_id)
        return session

    async def get_session(self, session_id: str) -> Session | None:
        """Remote document first, local cache as fallback."""
        path = layout.session_path(self._root, session_id)
        try:
            data = await self._store.read_blob(path)
        except MalformedRecord as e:
            logger.warning("Malformed session document %s: %s", session_id, e.reason)
            data = None
        if data is None:
            data = await self._cache.get(SESSIONS, session_id)
        if data is None:
            return None
        try:
            return Session.model_validate(data)
        except ValidationError:
            logger.warning("Invalid session record %s", session_id)
            return None

    async def _save(self, session: Session) -> None:
        wire = session.to_wire()
        await self._store.write_blob(layout.session_path(self._root, session.session_id), wire)
        await self._cache.put(SESSIONS, session.session_id, wire)

    async def _update(self, session_id: str, **changes: Any) -> Session | None:
        session = await self.get_session(session_id)
        if session is None:
            logger.warning("Session %s not found", session_id)
            return None
        session = session.model_copy(update=changes)
        await self._save(session)
        return session

    async def list_sessions(self) -> list[Session]:
        sessions: list[Session] = []
        for entry in await self._store.list(layout.sessions_dir(self._root)):
            if entry.ext != "json" or not entry.name.startswith("session-"):
                continue
            session = await self.get_session(entry.name[len("session-"):])
            if session is not None:
                sessions.append(session)
        return sessions

    # --- Liveness ---

    def is_stale(self, last_heartbeat: int, now: int | None = None) -> bool:
        now = self._clock() if now is None else now
        return now - last_heartbeat > self._stale_threshold_ms

    async def active_sessions(self) -> list[Session]:
        """Sessions with status active and a fresh heartbeat."""
        now = self._clock()
        return [
            s for s in await self.list_sessions()
            if s.status == "active" and not self.is_stale(s.last_heartbeat, now)
        ]

    async def heartbeat(
        self,
        session_id: str,
        progress: dict[str, Any] | None = None,
        stage: str | None = None,
    ) -> Session | None:
        """Refresh liveness of a session (and of its lock) and merge progress."""
        async with self._lock:
            now = self._clock()
            session = await self.get_session(session_id)
            if session is None:
                return None
            changes: dict[str, Any] = {
                "last_heartbeat": now,
                "progress": {**session.progress, **(progress or {})},
            }
            if stage is not None:
                changes["current_stage"] = stage
            session = session.model_copy(update=changes)
            await self._save(session)

            lock = await self.current_lock()
            if lock is not None and lock.session_id == session_id:
                await self._write_lock(lock.model_copy(update={"last_heartbeat": now}))
            return session

    # --- Lock ---

    async def current_lock(self) -> SessionLock | None:
        try:
            data = await self._store.read_blob(layout.lock_path(self._root))
        except MalformedRecord as e:
            logger.warning("Malformed scan lock treated as free: %s", e.reason)
            return None
        if data is None:
            return None
        try:
            return SessionLock.model_validate(data)
        except ValidationError:
            logger.warning("Invalid scan lock treated as free")
            return None

    async def _write_lock(self, lock: SessionLock) -> None:
        await self._store.write_blob(layout.lock_path(self._root), lock.to_wire())

    async def acquire(self, session_id: str) -> bool:
        """Take the scan lock for ``session_id``.

        Returns False when another session holds the lock with a fresh
        heartbeat. A stale holder is force-cleared and marked interrupted.
        Re-acquiring a lock already held refreshes it.
        """
        async with self._lock:
            now = self._clock()
            lock = await self.current_lock()
            acquired_at = now

            if lock is not None and lock.session_id == session_id:
                acquired_at = lock.acquired_at
            elif lock is not None:
                holder = await self.get_session(lock.session_id)
                holder_done = holder is not None and holder.is_terminal
                if not holder_done and not self.is_stale(lock.last_heartbeat, now):
                    logger.info(
                        "Session %s denied: lock held by %s", session_id, lock.session_id
                    )
                    return False
                if not holder_done:
                    logger.warning(
                        "Force-clearing stale lock of session %s (heartbeat %ds old)",
                        lock.session_id, (now - lock.last_heartbeat) // 1000,
                    )
                    await self._update(lock.session_id, status="interrupted", ended_at=now)

            await self._write_lock(
                SessionLock(session_id=session_id, acquired_at=acquired_at, last_heartbeat=now)
            )
            await self._update(session_id, status="active", last_heartbeat=now)
            logger.info("Session %s acquired scan lock", session_id)
            return True

    async def release(self, session_id: str, terminal_status: SessionStatus = "completed") -> None:
        """Mark the session terminal and clear the lock if it holds it."""
        async with self._lock:
            now = self._clock()
            await self._update(
                session_id, status=terminal_status, ended_at=now, last_heartbeat=now
            )
            lock = await self.current_lock()
            if lock is not None and lock.session_id == session_id:
                await self._store.delete(layout.lock_path(self._root))
                logger.info("Session %s released scan lock (%s)", session_id, terminal_status)

    async def pause(self, session_id: str) -> Session | None:
        return await self._update(session_id, status="paused")

    async def resume(self, session_id: str) -> Session | None:
        return await self._update(session_id, status="active", last_heartbeat=self._clock())

    # --- Conflicts ---

    async def find_conflicting(self, session_id: str) -> list[Session]:
        """Other fresh active sessions currently in a pipeline stage."""
        return [
            s for s in await self.active_sessions()
            if s.session_id != session_id and s.current_stage in CONFLICTING_STAGES
        ]

    async def coordinate(self, primary_id: str, secondary_id: str) -> Session | None:
        """Merge the secondary's progress into the primary and pause the secondary."""
        primary = await self.get_session(primary_id)
        secondary = await self.get_session(secondary_id)
        if primary is None or secondary is None:
            return None
        await self._update(
            primary_id, progress=merge_progress(primary.progress, secondary.progress)
        )
        paused = await self._update(
            secondary_id, status="paused", coordinated_with=primary_id
        )
        logger.info("Session %s paused in favour of %s", secondary_id, primary_id)
        return paused

    async def resolve_conflicts(self, session_id: str) -> list[str]:
        """Coordinate every conflicting session into ``session_id``."""
        paused: list[str] = []
        for other in await self.find_conflicting(session_id):
            if await self.coordinate(session_id, other.session_id) is not None:
                paused.append(other.session_id)
        return paused

    # --- Housekeeping ---

    async def cleanup_stale_sessions(self) -> int:
        """Mark active sessions with an expired heartbeat as interrupted."""
        now = self._clock()
        count = 0
        for session in await self.list_sessions():
            if session.status == "active" and self.is_stale(session.last_heartbeat, now):
                await self._update(session.session_id, status="interrupted", ended_at=now)
                count += 1
        if count:
            logger.info("Interrupted %d stale sessions", count)
        return count

    async def cleanup_old_sessions(self) -> int:
        """Delete terminal sessions and sessions older than the max age."""
        now = self._clock()
        lock = await self.current_lock()
        holder = lock.session_id if lock is not None else None
        removed = 0
        for session in await self.list_sessions():
            if session.session_id == holder:
                continue
            if session.is_terminal or now - session.created_at > self._max_age_ms:
                await self._store.delete(layout.session_path(self._root, session.session_id))
                await self._cache.delete(SESSIONS, session.session_id)
                removed += 1
        if removed:
            logger.info("Removed %d old session documents", removed)
        return removed
