"""Periodic cleanup of idle sessions and expired login throttle state.

``Housekeeper.run`` is registered as an app background task: it sleeps
for ``interval_seconds``, sweeps, and repeats until the lifespan ends.
A failed sweep is logged and retried on the next tick.
"""

import logging
import time
from collections.abc import Callable

import anyio

from gatehouse.config import AppConfig
from gatehouse.data.errors import DataError
from gatehouse.errors import ThrottleStoreError
from gatehouse.security.throttle import LoginThrottle
from gatehouse.sessions.store import SessionStore

logger = logging.getLogger("gatehouse.server")


def session_retention_seconds(config: AppConfig) -> int:
    """How long an untouched session is kept before the sweep drops it.

    The idle timeout when one is set (the middleware rejects anything
    older anyway); otherwise the GC horizon, stretched to the cookie
    lifetime so a persistent cookie never outlives its session early.
    """
    if config.session_idle_timeout_seconds is not None:
        return config.session_idle_timeout_seconds
    return max(config.session_gc_max_idle_seconds, config.session_lifetime_seconds or 0)


class Housekeeper:
    __slots__ = ("_clock", "_interval", "_session_retention", "_sessions", "_throttle")

    def __init__(
        self,
        sessions: SessionStore,
        throttle: LoginThrottle,
        *,
        session_retention_seconds: int,
        interval_seconds: int = 300,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._sessions = sessions
        self._throttle = throttle
        self._session_retention = session_retention_seconds
        self._interval = interval_seconds
        self._clock = clock

    async def sweep(self) -> tuple[int, int]:
        """Run one sweep; returns ``(sessions removed, throttle keys removed)``."""
        try:
            sessions = await self._sessions.purge_idle(self._clock() - self._session_retention)
        except DataError as exc:
            logger.warning("Could not purge idle sessions: %s", exc)
            sessions = 0
        try:
            throttle_keys = await self._throttle.purge()
        except ThrottleStoreError as exc:
            logger.warning("Could not purge login throttle state: %s", exc)
            throttle_keys = 0
        if sessions or throttle_keys:
            logger.info(
                "Housekeeping removed %d idle sessions and %d throttle entries",
                sessions,
                throttle_keys,
            )
        return sessions, throttle_keys

    async def run(self) -> None:
        while True:
            await anyio.sleep(self._interval)
            await self.sweep()
