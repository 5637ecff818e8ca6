"""Per-principal session state store.

Each principal owns at most one state entry (a JSON-compatible blob such as a
cart). Writers for the same principal are serialized by a per-key lock;
different principals never contend except for the brief lookup of their lock
in the registry. Lock waits are bounded and time out with
:class:`StoreUnavailableError` instead of hanging the request.
"""
import copy
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tokencart.errors import StoreUnavailableError
from tokencart.models.session_entry import SessionEntry
from tokencart.utils.logger import logger

State = Any
Mutator = Callable[[State], State]


@dataclass(frozen=True)
class StateSnapshot:
    """A copy of one principal's state as of ``touched_at`` (epoch seconds)."""

    principal_id: str
    state: State
    touched_at: float


# ---------------------------------------------------------------------------
# Keyed locks
# ---------------------------------------------------------------------------

class _KeyLock:
    __slots__ = ("lock", "retired")

    def __init__(self):
        self.lock = threading.Lock()
        self.retired = False


class KeyedLocks:
    """One lock per key, created on demand.

    A lock is *retired* when its entry is removed; a thread that was queued on
    a retired lock re-resolves the key and queues on the new lock, so removal
    can never let two writers into the same key at once.
    """

    def __init__(self, timeout: float):
        self.timeout = timeout
        self._locks: Dict[str, _KeyLock] = {}
        self._guard = threading.Lock()

    def _resolve(self, key: str, create: bool = True) -> Optional[_KeyLock]:
        with self._guard:
            key_lock = self._locks.get(key)
            if key_lock is None and create:
                key_lock = self._locks[key] = _KeyLock()
            return key_lock

    @contextmanager
    def hold(self, key: str, create: bool = True) -> Iterator[Optional[_KeyLock]]:
        """Hold the lock for ``key``, waiting at most ``timeout`` seconds.

        With ``create=False`` a key that has no lock yields None without
        registering one; readers use this so lookups of absent keys leave no
        trace in the registry.
        """
        deadline = time.monotonic() + self.timeout
        while True:
            key_lock = self._resolve(key, create)
            if key_lock is None:
                yield None
                return
            remaining = deadline - time.monotonic()
            if remaining <= 0 or not key_lock.lock.acquire(timeout=remaining):
                raise StoreUnavailableError(f"timed out after {self.timeout}s waiting for session entry")
            if not key_lock.retired:
                break
            key_lock.lock.release()
        try:
            yield key_lock
        finally:
            key_lock.lock.release()

    @contextmanager
    def try_hold(self, key: str) -> Iterator[Optional[_KeyLock]]:
        """Like :meth:`hold` but never waits; yields None if the key is busy."""
        key_lock = self._resolve(key)
        if not key_lock.lock.acquire(blocking=False):
            yield None
            return
        try:
            yield None if key_lock.retired else key_lock
        finally:
            key_lock.lock.release()

    def retire(self, key: str, key_lock: _KeyLock) -> None:
        """Drop the lock for ``key``. The caller must be holding it."""
        key_lock.retired = True
        with self._guard:
            if self._locks.get(key) is key_lock:
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


# ---------------------------------------------------------------------------
# Store interface
# ---------------------------------------------------------------------------

class SessionStore(ABC):
    """Maps a principal id to its mutable state."""

    def __init__(
        self,
        lock_timeout: float = 5.0,
        default_factory: Callable[[], State] = dict,
        clock: Callable[[], float] = time.time,
    ):
        self.default_factory = default_factory
        self._locks = KeyedLocks(lock_timeout)
        self._clock = clock

    @abstractmethod
    def get(self, principal_id: str) -> Optional[StateSnapshot]:
        """Current state, or None if the principal has none yet."""

    @abstractmethod
    def upsert(self, principal_id: str, mutator: Mutator) -> StateSnapshot:
        """Atomically apply ``mutator`` to the current (or default) state.

        ``mutator`` receives a private copy and returns the new state. If it
        raises, nothing is written. Once this returns the write is committed.
        """

    @abstractmethod
    def clear(self, principal_id: str) -> bool:
        """Remove the principal's entry; True if one existed."""

    @abstractmethod
    def expire_older_than(self, ttl: float) -> int:
        """Remove entries untouched for more than ``ttl`` seconds; return how many.

        Entries that are being mutated at the time of the sweep are skipped.
        """

    def ping(self) -> None:
        """Raise :class:`StoreUnavailableError` if the backend cannot be reached."""


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------

@dataclass
class _Entry:
    state: State
    touched_at: float


class InMemorySessionStore(SessionStore):
    """Process-local store. State dies with the process."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._entries: Dict[str, _Entry] = {}

    def get(self, principal_id: str) -> Optional[StateSnapshot]:
        # every entry has a registered lock, so no lock means no entry
        with self._locks.hold(principal_id, create=False) as key_lock:
            entry = self._entries.get(principal_id) if key_lock is not None else None
            if entry is None:
                return None
            return StateSnapshot(principal_id, copy.deepcopy(entry.state), entry.touched_at)

    def upsert(self, principal_id: str, mutator: Mutator) -> StateSnapshot:
        with self._locks.hold(principal_id) as key_lock:
            entry = self._entries.get(principal_id)
            current = copy.deepcopy(entry.state) if entry else self.default_factory()
            try:
                new_state = mutator(current)
            except Exception:
                if entry is None:
                    self._locks.retire(principal_id, key_lock)
                raise
            touched_at = self._clock()
            self._entries[principal_id] = _Entry(new_state, touched_at)
            return StateSnapshot(principal_id, copy.deepcopy(new_state), touched_at)

    def clear(self, principal_id: str) -> bool:
        with self._locks.hold(principal_id) as key_lock:
            existed = self._entries.pop(principal_id, None) is not None
            self._locks.retire(principal_id, key_lock)
        return existed

    def expire_older_than(self, ttl: float) -> int:
        cutoff = self._clock() - ttl
        candidates: List[str] = [pid for pid, entry in dict(self._entries).items() if entry.touched_at < cutoff]

        removed = 0
        for principal_id in candidates:
            with self._locks.try_hold(principal_id) as key_lock:
                if key_lock is None:
                    continue
                entry = self._entries.get(principal_id)
                if entry is None or entry.touched_at >= cutoff:
                    continue
                del self._entries[principal_id]
                self._locks.retire(principal_id, key_lock)
                removed += 1
        return removed

    def __len__(self) -> int:
        return len(self._entries)


# ---------------------------------------------------------------------------
# Database backend
# ---------------------------------------------------------------------------

def _to_naive_utc(timestamp: float) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).replace(tzinfo=None)


def _to_epoch(value: datetime) -> float:
    return value.replace(tzinfo=timezone.utc).timestamp()


class SqlSessionStore(SessionStore):
    """Store backed by the ``session_entries`` table.

    In-process writers are serialized with keyed locks; the row is also read
    ``FOR UPDATE`` so writers in other processes serialize on databases that
    support row locks.
    """

    def __init__(self, session_factory: Callable[[], Session], *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._session_factory = session_factory

    def get(self, principal_id: str) -> Optional[StateSnapshot]:
        with self._session_factory() as db:
            try:
                row = db.query(SessionEntry).filter(SessionEntry.principal_id == principal_id).first()
            except SQLAlchemyError as exc:
                raise StoreUnavailableError("session store unavailable") from exc
            if row is None:
                return None
            return StateSnapshot(principal_id, copy.deepcopy(row.state), _to_epoch(row.touched_at))

    def upsert(self, principal_id: str, mutator: Mutator) -> StateSnapshot:
        with self._locks.hold(principal_id):
            with self._session_factory() as db:
                try:
                    row = (
                        db.query(SessionEntry)
                        .filter(SessionEntry.principal_id == principal_id)
                        .with_for_update()
                        .first()
                    )
                    current = copy.deepcopy(row.state) if row else self.default_factory()
                    new_state = mutator(current)
                    touched_at = self._clock()
                    if row is None:
                        db.add(SessionEntry(
                            principal_id=principal_id,
                            state=new_state,
                            touched_at=_to_naive_utc(touched_at),
                        ))
                    else:
                        row.state = new_state
                        row.touched_at = _to_naive_utc(touched_at)
                    db.commit()
                except SQLAlchemyError as exc:
                    db.rollback()
                    raise StoreUnavailableError("session store unavailable") from exc
                except Exception:
                    db.rollback()
                    raise
        return StateSnapshot(principal_id, copy.deepcopy(new_state), touched_at)

    def clear(self, principal_id: str) -> bool:
        with self._locks.hold(principal_id) as key_lock:
            with self._session_factory() as db:
                try:
                    removed = (
                        db.query(SessionEntry)
                        .filter(SessionEntry.principal_id == principal_id)
                        .delete(synchronize_session=False)
                    )
                    db.commit()
                except SQLAlchemyError as exc:
                    db.rollback()
                    raise StoreUnavailableError("session store unavailable") from exc
            self._locks.retire(principal_id, key_lock)
        return removed > 0

    def expire_older_than(self, ttl: float) -> int:
        cutoff = _to_naive_utc(self._clock() - ttl)
        with self._session_factory() as db:
            try:
                candidates = [
                    pid for (pid,) in
                    db.query(SessionEntry.principal_id).filter(SessionEntry.touched_at < cutoff).all()
                ]
            except SQLAlchemyError as exc:
                raise StoreUnavailableError("session store unavailable") from exc

        removed = 0
        for principal_id in candidates:
            with self._locks.try_hold(principal_id) as key_lock:
                if key_lock is None:
                    continue
                with self._session_factory() as db:
                    try:
                        deleted = (
                            db.query(SessionEntry)
                            .filter(SessionEntry.principal_id == principal_id, SessionEntry.touched_at < cutoff)
                            .delete(synchronize_session=False)
                        )
                        db.commit()
                    except SQLAlchemyError as exc:
                        db.rollback()
                        logger.warning(
                            f"Expiry sweep failed for {principal_id}: {exc}",
                            extra={"principal_id": principal_id, "action": "expire_sessions"},
                        )
                        continue
                if deleted:
                    self._locks.retire(principal_id, key_lock)
                    removed += 1
        return removed

    def ping(self) -> None:
        with self._session_factory() as db:
            try:
                db.execute(text("SELECT 1"))
            except SQLAlchemyError as exc:
                raise StoreUnavailableError("session store unavailable") from exc
