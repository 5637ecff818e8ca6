"""Service container - the explicitly constructed objects the API depends on.

Built once in the application lifespan and stored on ``app.state.services``;
handlers reach it through :func:`tokencart.api.deps.get_services`.
"""
import asyncio
import time
from dataclasses import dataclass
from typing import Callable

from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from tokencart.config import Settings
from tokencart.errors import StoreUnavailableError
from tokencart.utils.cart import empty_cart
from tokencart.utils.jwt_utils import TokenAuthority
from tokencart.utils.logger import logger
from tokencart.utils.passwords import CredentialHasher
from tokencart.utils.policy import AccessPolicy
from tokencart.utils.revocation import InMemoryRevocationList, RevocationList, SqlRevocationList
from tokencart.utils.session_store import InMemorySessionStore, SessionStore, SqlSessionStore


@dataclass
class Services:
    hasher: CredentialHasher
    tokens: TokenAuthority
    sessions: SessionStore
    policy: AccessPolicy
    settings: Settings

    def sweep(self) -> None:
        """Expire idle session entries and prune naturally-expired revocations."""
        expired = self.sessions.expire_older_than(self.settings.SESSION_TTL_SECONDS)
        pruned = self.tokens.prune_revocations()
        if expired or pruned:
            logger.info(
                f"Sweep removed {expired} idle session(s), pruned {pruned} revocation(s)",
                extra={"action": "sweep"},
            )


def build_services(
    settings: Settings,
    session_factory: Callable[[], Session],
    clock: Callable[[], float] = time.time,
) -> Services:
    """Wire the authority, stores and policy from settings.

    Raises:
        KeyUnavailableError: the signing key cannot be loaded.
    """
    if settings.STORE_BACKEND == "database":
        revocations: RevocationList = SqlRevocationList(session_factory)
        sessions: SessionStore = SqlSessionStore(
            session_factory,
            lock_timeout=settings.STORE_TIMEOUT_SECONDS,
            default_factory=empty_cart,
            clock=clock,
        )
    else:
        revocations = InMemoryRevocationList()
        sessions = InMemorySessionStore(
            lock_timeout=settings.STORE_TIMEOUT_SECONDS,
            default_factory=empty_cart,
            clock=clock,
        )

    return Services(
        hasher=CredentialHasher(rounds=settings.BCRYPT_ROUNDS),
        tokens=TokenAuthority.from_settings(settings, revocations, clock=clock),
        sessions=sessions,
        policy=AccessPolicy(),
        settings=settings,
    )


async def run_sweeper(services: Services, interval: float) -> None:
    """Periodically run :meth:`Services.sweep` off the event loop until cancelled."""
    while True:
        await asyncio.sleep(interval)
        try:
            await run_in_threadpool(services.sweep)
        except StoreUnavailableError as exc:
            logger.warning(f"Sweep skipped, store unavailable: {exc}", extra={"action": "sweep"})
