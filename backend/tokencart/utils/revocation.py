"""Revocation set - token ids invalidated before their natural expiry"""
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, Dict

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from tokencart.errors import StoreUnavailableError
from tokencart.models.revoked_token import RevokedToken


def _to_naive_utc(timestamp: float) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).replace(tzinfo=None)


class RevocationList(ABC):
    """A set of revoked ``jti`` values, each kept until its token's ``exp``."""

    @abstractmethod
    def add(self, token_id: str, expires_at: int) -> bool:
        """Record ``token_id`` as revoked. Idempotent.

        Returns True only for the call that actually recorded it, so callers
        can use it as an atomic claim on a token.
        """

    @abstractmethod
    def contains(self, token_id: str) -> bool:
        """True if ``token_id`` has been revoked and not yet pruned."""

    @abstractmethod
    def prune(self, now: float) -> int:
        """Drop records whose token expired at or before ``now``; return how many."""


class InMemoryRevocationList(RevocationList):
    """Process-local revocation set.

    Lookups read the dict without locking; only writers take the lock.
    """

    def __init__(self):
        self._revoked: Dict[str, int] = {}
        self._lock = threading.Lock()

    def add(self, token_id: str, expires_at: int) -> bool:
        with self._lock:
            if token_id in self._revoked:
                return False
            self._revoked[token_id] = expires_at
            return True

    def contains(self, token_id: str) -> bool:
        return token_id in self._revoked

    def prune(self, now: float) -> int:
        with self._lock:
            expired = [jti for jti, exp in self._revoked.items() if exp <= now]
            for jti in expired:
                del self._revoked[jti]
        return len(expired)

    def __len__(self) -> int:
        return len(self._revoked)


class SqlRevocationList(RevocationList):
    """Revocation set persisted in the ``revoked_tokens`` table."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def add(self, token_id: str, expires_at: int) -> bool:
        with self._session_factory() as db:
            try:
                if db.query(RevokedToken.id).filter(RevokedToken.jti == token_id).first():
                    return False
                db.add(RevokedToken(jti=token_id, expires_at=_to_naive_utc(expires_at)))
                db.commit()
            except IntegrityError:
                # a concurrent revoke of the same jti won the insert
                db.rollback()
                return False
            except SQLAlchemyError as exc:
                db.rollback()
                raise StoreUnavailableError("revocation store unavailable") from exc
            return True

    def contains(self, token_id: str) -> bool:
        with self._session_factory() as db:
            try:
                row = db.query(RevokedToken.id).filter(RevokedToken.jti == token_id).first()
            except SQLAlchemyError as exc:
                raise StoreUnavailableError("revocation store unavailable") from exc
            return row is not None

    def prune(self, now: float) -> int:
        with self._session_factory() as db:
            try:
                removed = (
                    db.query(RevokedToken)
                    .filter(RevokedToken.expires_at <= _to_naive_utc(now))
                    .delete(synchronize_session=False)
                )
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                raise StoreUnavailableError("revocation store unavailable") from exc
            return removed
