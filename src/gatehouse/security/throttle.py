"""Adaptive login throttling.

Every attempt is tracked under three independent keys: the identity,
the caller's network origin, and the identity/origin pair. A lockout
on any of them blocks the attempt. Counting is a sliding window over
failure timestamps, not a fixed bucket.

A successful login clears the identity and pair keys only. The origin
key keeps counting, so one good login from a shared address does not
lift a lockout earned there by guessing other identities.

State lives in a ``KeyedAtomicStore``; every update is one atomic
``mutate`` per key, so concurrent failures never lose increments.
Keys whose window has passed and whose lockout has ended carry no
information; ``purge()`` deletes them, and ``record_failure`` runs it
every ``purge_every`` calls so abandoned keys do not pile up.
"""

import hashlib
import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from gatehouse.errors import ThrottleStoreError
from gatehouse.security.throttle_stores import KeyedAtomicStore, StateDict

logger = logging.getLogger("gatehouse.security")

MIN_WINDOW_SECONDS = 60
MIN_MAX_ATTEMPTS = 3
MIN_LOCKOUT_SECONDS = 60


@dataclass(frozen=True, slots=True)
class ThrottleConfig:
    """Login throttle policy.

    Values below the floors (60s window, 3 attempts, 60s lockout) are
    raised to the floor. ``fail_open`` decides what an unreachable
    store means: ``True`` lets the attempt through with a warning,
    ``False`` reports every caller as locked out.
    """

    window_seconds: int = 900
    max_attempts: int = 5
    lockout_seconds: int = 900
    fail_open: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "window_seconds", max(MIN_WINDOW_SECONDS, int(self.window_seconds)))
        object.__setattr__(self, "max_attempts", max(MIN_MAX_ATTEMPTS, int(self.max_attempts)))
        object.__setattr__(
            self, "lockout_seconds", max(MIN_LOCKOUT_SECONDS, int(self.lockout_seconds))
        )


@dataclass(frozen=True, slots=True)
class ThrottleState:
    """Failure history for one key: attempt timestamps and the lockout end."""

    attempts: tuple[float, ...] = field(default_factory=tuple)
    blocked_until: float = 0.0

    def to_dict(self) -> StateDict:
        return {"attempts": list(self.attempts), "blocked_until": self.blocked_until}

    @classmethod
    def from_dict(cls, raw: StateDict | None) -> "ThrottleState":
        """Decode stored state, ignoring anything malformed."""
        if not raw:
            return cls()
        attempts = raw.get("attempts", ())
        if not isinstance(attempts, list | tuple):
            attempts = ()
        return cls(
            attempts=tuple(float(ts) for ts in attempts if _is_number(ts)),
            blocked_until=float(raw["blocked_until"]) if _is_number(raw.get("blocked_until")) else 0.0,
        )

    def record(self, now: float, config: ThrottleConfig) -> "ThrottleState":
        """The state after one more failure at *now*."""
        cutoff = now - config.window_seconds
        attempts = (*(ts for ts in self.attempts if ts >= cutoff), now)
        blocked_until = self.blocked_until
        if len(attempts) >= config.max_attempts:
            blocked_until = max(blocked_until, now + config.lockout_seconds)
        return ThrottleState(attempts=attempts, blocked_until=blocked_until)

    def is_expired(self, now: float, config: ThrottleConfig) -> bool:
        """True when no attempt is inside the window and no lockout is active.

        An expired state decides nothing a missing one would not.
        """
        cutoff = now - config.window_seconds
        return self.blocked_until <= now and all(ts < cutoff for ts in self.attempts)


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


@dataclass(frozen=True, slots=True)
class ThrottleKeys:
    identity: str
    origin: str
    combo: str

    def all(self) -> tuple[str, str, str]:
        return (self.identity, self.origin, self.combo)


def _digest(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


class LoginThrottle:
    """Sliding-window failure counter with lockout across three keys."""

    __slots__ = ("_clock", "_config", "_failures_since_purge", "_purge_every", "_store")

    def __init__(
        self,
        store: KeyedAtomicStore,
        config: ThrottleConfig | None = None,
        *,
        clock: Callable[[], float] = time.time,
        purge_every: int = 100,
    ) -> None:
        self._store = store
        self._config = config or ThrottleConfig()
        self._clock = clock
        self._purge_every = purge_every
        self._failures_since_purge = 0

    @property
    def config(self) -> ThrottleConfig:
        return self._config

    @staticmethod
    def keys(identity: str, origin: str) -> ThrottleKeys:
        ident = identity.strip().lower()
        addr = origin.strip()
        return ThrottleKeys(
            identity=_digest(f"identity:{ident}"),
            origin=_digest(f"origin:{addr}"),
            combo=_digest(f"combo:{ident}|{addr}"),
        )

    async def blocked_until(self, identity: str, origin: str) -> float | None:
        """The latest active lockout end across all three keys, or ``None``.

        Read-only: never changes stored state.
        """
        now = self._clock()
        try:
            latest = 0.0
            for key in self.keys(identity, origin).all():
                state = ThrottleState.from_dict(await self._store.read(key))
                latest = max(latest, state.blocked_until)
        except ThrottleStoreError as exc:
            if self._config.fail_open:
                logger.warning("Login throttle store unavailable, allowing attempt: %s", exc)
                return None
            logger.warning("Login throttle store unavailable, refusing attempt: %s", exc)
            return now + self._config.lockout_seconds
        return latest if latest > now else None

    async def record_failure(self, identity: str, origin: str) -> None:
        now = self._clock()
        config = self._config

        def bump(current: StateDict | None) -> StateDict:
            return ThrottleState.from_dict(current).record(now, config).to_dict()

        keys = self.keys(identity, origin)
        try:
            for key in keys.all():
                updated = ThrottleState.from_dict(await self._store.mutate(key, bump))
                if updated.blocked_until > now and len(updated.attempts) == config.max_attempts:
                    logger.info(
                        "Login lockout engaged for key %s until %.0f",
                        key[:12],
                        updated.blocked_until,
                    )
        except ThrottleStoreError as exc:
            logger.warning("Could not record failed login attempt: %s", exc)

        self._failures_since_purge += 1
        if self._purge_every > 0 and self._failures_since_purge >= self._purge_every:
            self._failures_since_purge = 0
            try:
                await self.purge()
            except ThrottleStoreError as exc:
                logger.warning("Could not purge login throttle state: %s", exc)

    async def clear(self, identity: str, origin: str) -> None:
        """Forget the identity and pair history after a successful login."""
        keys = self.keys(identity, origin)
        try:
            await self._store.delete(keys.identity)
            await self._store.delete(keys.combo)
        except ThrottleStoreError as exc:
            logger.warning("Could not clear login throttle state: %s", exc)

    async def purge(self) -> int:
        """Delete every expired key from the store; returns how many went.

        Raises ``ThrottleStoreError`` when the store is unavailable.
        """
        now = self._clock()
        config = self._config

        def is_stale(raw: StateDict) -> bool:
            return ThrottleState.from_dict(raw).is_expired(now, config)

        removed = await self._store.purge(is_stale)
        if removed:
            logger.debug("Purged %d expired login throttle entries", removed)
        return removed

    def retry_after(self, blocked_until: float) -> int:
        """Whole seconds until *blocked_until*, never less than one."""
        return max(1, math.ceil(blocked_until - self._clock()))
