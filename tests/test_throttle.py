"""Tests for the three-key sliding-window login throttle."""

import logging

import pytest

from gatehouse.errors import ThrottleStoreError
from gatehouse.security.throttle import (
    LoginThrottle,
    ThrottleConfig,
    ThrottleState,
)
from gatehouse.security.throttle_stores import MemoryThrottleStore

from conftest import FakeClock


class FailingStore:
    """A store whose backend is unreachable."""

    async def read(self, key):
        raise ThrottleStoreError("disk unavailable")

    async def mutate(self, key, fn):
        raise ThrottleStoreError("disk unavailable")

    async def delete(self, key):
        raise ThrottleStoreError("disk unavailable")

    async def purge(self, is_stale):
        raise ThrottleStoreError("disk unavailable")


@pytest.fixture
def store() -> MemoryThrottleStore:
    return MemoryThrottleStore()


@pytest.fixture
def throttle(store, clock) -> LoginThrottle:
    return LoginThrottle(
        store,
        ThrottleConfig(window_seconds=900, max_attempts=5, lockout_seconds=900),
        clock=clock,
    )


async def _fail(throttle: LoginThrottle, times: int, identity: str = "u", origin: str = "o") -> None:
    for _ in range(times):
        await throttle.record_failure(identity, origin)


async def _any_key_stored(store: MemoryThrottleStore, identity: str, origin: str) -> bool:
    for key in LoginThrottle.keys(identity, origin).all():
        if await store.read(key) is not None:
            return True
    return False


class TestConfig:
    def test_defaults(self) -> None:
        config = ThrottleConfig()
        assert (config.window_seconds, config.max_attempts, config.lockout_seconds) == (900, 5, 900)
        assert config.fail_open is True

    def test_floors(self) -> None:
        config = ThrottleConfig(window_seconds=5, max_attempts=1, lockout_seconds=0)
        assert config.window_seconds == 60
        assert config.max_attempts == 3
        assert config.lockout_seconds == 60

    def test_values_above_floor_kept(self) -> None:
        config = ThrottleConfig(window_seconds=120, max_attempts=10, lockout_seconds=3600)
        assert (config.window_seconds, config.max_attempts, config.lockout_seconds) == (120, 10, 3600)


class TestState:
    def test_from_dict_tolerates_garbage(self) -> None:
        state = ThrottleState.from_dict({"attempts": ["x", 1.0, True, 2], "blocked_until": "soon"})
        assert state.attempts == (1.0, 2.0)
        assert state.blocked_until == 0.0

    def test_from_dict_empty(self) -> None:
        assert ThrottleState.from_dict(None) == ThrottleState()

    def test_record_prunes_outside_window(self) -> None:
        config = ThrottleConfig(window_seconds=60)
        state = ThrottleState(attempts=(0.0, 50.0, 100.0))
        assert state.record(120.0, config).attempts == (100.0, 120.0)

    def test_blocked_until_never_moves_backwards(self) -> None:
        config = ThrottleConfig(max_attempts=3, lockout_seconds=60)
        state = ThrottleState(attempts=(9.0, 9.5), blocked_until=10_000.0)
        assert state.record(10.0, config).blocked_until == 10_000.0

    def test_expired_once_window_and_lockout_pass(self) -> None:
        config = ThrottleConfig(window_seconds=60, lockout_seconds=60)
        state = ThrottleState(attempts=(100.0,), blocked_until=150.0)
        assert not state.is_expired(140.0, config)
        assert not state.is_expired(155.0, config)
        assert state.is_expired(161.0, config)

    def test_active_lockout_is_not_expired(self) -> None:
        config = ThrottleConfig(window_seconds=60, lockout_seconds=600)
        state = ThrottleState(attempts=(0.0,), blocked_until=600.0)
        assert not state.is_expired(300.0, config)


class TestLockout:
    async def test_fifth_failure_locks(self, throttle, clock) -> None:
        await _fail(throttle, 4)
        assert await throttle.blocked_until("u", "o") is None

        await _fail(throttle, 1)
        until = await throttle.blocked_until("u", "o")
        assert until == pytest.approx(clock() + 900)
        assert throttle.retry_after(until) == 900

    async def test_lockout_expires(self, throttle, clock) -> None:
        await _fail(throttle, 5)
        clock.advance(899)
        assert await throttle.blocked_until("u", "o") is not None
        clock.advance(2)
        assert await throttle.blocked_until("u", "o") is None

    async def test_sliding_window(self, throttle, clock) -> None:
        await _fail(throttle, 4)
        clock.advance(901)
        # The first four have slid out of the window
        await _fail(throttle, 4)
        assert await throttle.blocked_until("u", "o") is None
        await _fail(throttle, 1)
        assert await throttle.blocked_until("u", "o") is not None

    async def test_identity_key_blocks_other_origins(self, throttle) -> None:
        for n in range(5):
            await throttle.record_failure("u", f"10.0.0.{n}")
        assert await throttle.blocked_until("u", "10.9.9.9") is not None

    async def test_origin_key_blocks_other_identities(self, throttle) -> None:
        for n in range(5):
            await throttle.record_failure(f"user{n}@example.com", "o")
        assert await throttle.blocked_until("someone-else", "o") is not None
        assert await throttle.blocked_until("someone-else", "o2") is None

    async def test_identity_is_normalized(self, throttle) -> None:
        await _fail(throttle, 5, identity="  U@Example.COM ")
        assert await throttle.blocked_until("u@example.com", "o") is not None

    async def test_retry_after_floor(self, throttle, clock) -> None:
        assert throttle.retry_after(clock() + 0.2) == 1
        assert throttle.retry_after(clock() - 10) == 1

    async def test_keys_are_opaque(self) -> None:
        keys = LoginThrottle.keys("alice@example.com", "10.0.0.1")
        assert len(set(keys.all())) == 3
        assert all("alice" not in key for key in keys.all())


class TestIdempotence:
    async def test_blocked_until_does_not_mutate(self, throttle, store) -> None:
        await _fail(throttle, 5)
        snapshot = {key: await store.read(key) for key in LoginThrottle.keys("u", "o").all()}
        first = await throttle.blocked_until("u", "o")
        second = await throttle.blocked_until("u", "o")
        assert first == second
        assert {key: await store.read(key) for key in snapshot} == snapshot

    async def test_blocked_until_creates_nothing(self, throttle, store) -> None:
        assert await throttle.blocked_until("u", "o") is None
        assert len(store) == 0


class TestClear:
    async def test_success_elsewhere_keeps_origin_lock(self, throttle, store) -> None:
        await _fail(throttle, 5, identity="u", origin="o")
        await throttle.clear("u", "o2")

        keys = LoginThrottle.keys("u", "o")
        assert await store.read(keys.identity) is None
        assert await store.read(keys.origin) is not None
        # Another identity arriving from the locked origin is still refused
        assert await throttle.blocked_until("v", "o") is not None
        # u from a fresh origin is free again
        assert await throttle.blocked_until("u", "o3") is None

    async def test_clear_drops_combo(self, throttle, store) -> None:
        await _fail(throttle, 2, identity="u", origin="o2")
        await throttle.clear("u", "o2")
        keys = LoginThrottle.keys("u", "o2")
        assert await store.read(keys.combo) is None
        assert await store.read(keys.identity) is None
        assert (await store.read(keys.origin))["attempts"]


class TestPurge:
    async def test_expired_keys_are_removed(self, throttle, store, clock) -> None:
        await _fail(throttle, 2, identity="ghost-1")
        await _fail(throttle, 2, identity="ghost-2")
        assert len(store) == 5
        clock.advance(901)
        assert await throttle.purge() == 5
        assert len(store) == 0

    async def test_live_window_and_lockout_survive(self, store, clock) -> None:
        throttle = LoginThrottle(
            store, ThrottleConfig(window_seconds=60, lockout_seconds=900), clock=clock
        )
        await _fail(throttle, 5, identity="locked")
        clock.advance(300)
        await _fail(throttle, 1, identity="recent", origin="elsewhere")
        clock.advance(30)
        # "locked" is past its window but still inside its lockout
        assert await throttle.purge() == 0
        assert await throttle.blocked_until("locked", "o") is not None
        clock.advance(600)
        assert await throttle.purge() == 6
        assert len(store) == 0

    async def test_purge_does_not_change_decisions(self, throttle, clock) -> None:
        await _fail(throttle, 4)
        clock.advance(901)
        await throttle.purge()
        await _fail(throttle, 1)
        assert await throttle.blocked_until("u", "o") is None

    async def test_record_failure_purges_periodically(self, store, clock) -> None:
        throttle = LoginThrottle(store, clock=clock, purge_every=3)
        await throttle.record_failure("old", "o")
        clock.advance(2000)
        await throttle.record_failure("new-1", "p")
        assert await _any_key_stored(store, "old", "o")
        await throttle.record_failure("new-2", "p")
        assert not await _any_key_stored(store, "old", "o")
        assert len(store) == 5

    async def test_rotating_identities_stay_bounded(self, store, clock) -> None:
        throttle = LoginThrottle(store, clock=clock, purge_every=50)
        for n in range(500):
            await throttle.record_failure(f"user-{n}@example.com", f"203.0.113.{n % 250}")
            clock.advance(30)
        # 900s window at one failure per 30s: about 30 identities are live
        assert len(store) < 300

    async def test_blocked_until_never_purges(self, throttle, store, clock) -> None:
        await _fail(throttle, 1)
        clock.advance(2000)
        assert await throttle.blocked_until("u", "o") is None
        assert len(store) == 3


class TestStoreFailure:
    async def test_fail_open(self, clock, caplog) -> None:
        throttle = LoginThrottle(FailingStore(), clock=clock)
        with caplog.at_level(logging.WARNING, logger="gatehouse.security"):
            assert await throttle.blocked_until("u", "o") is None
        assert "allowing attempt" in caplog.text

    async def test_fail_closed(self, clock) -> None:
        throttle = LoginThrottle(FailingStore(), ThrottleConfig(fail_open=False), clock=clock)
        until = await throttle.blocked_until("u", "o")
        assert until == clock() + 900

    async def test_record_and_clear_swallow_store_errors(self, clock, caplog) -> None:
        throttle = LoginThrottle(FailingStore(), clock=clock)
        with caplog.at_level(logging.WARNING, logger="gatehouse.security"):
            await throttle.record_failure("u", "o")
            await throttle.clear("u", "o")
        assert "Could not record" in caplog.text
        assert "Could not clear" in caplog.text

    async def test_periodic_purge_failure_is_logged(self, clock, caplog) -> None:
        throttle = LoginThrottle(FailingStore(), clock=clock, purge_every=1)
        with caplog.at_level(logging.WARNING, logger="gatehouse.security"):
            await throttle.record_failure("u", "o")
        assert "Could not purge" in caplog.text


class TestLogging:
    async def test_lockout_logged_once_per_key(self, store, caplog) -> None:
        throttle = LoginThrottle(store, ThrottleConfig(max_attempts=3), clock=FakeClock())
        with caplog.at_level(logging.INFO, logger="gatehouse.security"):
            await _fail(throttle, 4)
        engaged = [r for r in caplog.records if "lockout engaged" in r.getMessage()]
        assert len(engaged) == 3
