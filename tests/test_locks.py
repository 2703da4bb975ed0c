from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from app.core.exceptions import Busy, LeaseLost, NotOwner
from app.models.sync_lock import SyncLock
from app.services.sync.locks import SyncLockManager, resource_key_for

KEY = resource_key_for("orders")


@pytest.fixture
def locks(session_factory, clock):
    return SyncLockManager(session_factory, lease=timedelta(minutes=5), clock=clock)


def test_resource_key_for_collection():
    assert resource_key_for("orders") == "nuvemshop-orders-sync"


def test_acquire_then_busy(locks, clock):
    token = locks.acquire(KEY)
    assert token

    with pytest.raises(Busy) as exc_info:
        locks.acquire(KEY)
    assert exc_info.value.resource_key == KEY
    assert exc_info.value.expires_at == clock() + timedelta(minutes=5)


def test_release_requires_owner(locks):
    token = locks.acquire(KEY)

    with pytest.raises(NotOwner):
        locks.release(KEY, "someone-else")

    locks.release(KEY, token)
    assert locks.get(KEY) is None

    with pytest.raises(NotOwner):
        locks.release(KEY, token)


def test_release_then_reacquire(locks):
    first = locks.acquire(KEY)
    locks.release(KEY, first)
    second = locks.acquire(KEY)
    assert second != first


def test_expired_lease_is_taken_over(locks, clock):
    stale_token = locks.acquire(KEY)
    clock.advance(minutes=6)

    assert locks.get(KEY) is None
    new_token = locks.acquire(KEY)
    assert new_token != stale_token

    # Бывший владелец больше не может снять блокировку
    with pytest.raises(NotOwner):
        locks.release(KEY, stale_token)
    assert locks.get(KEY).owner_token == new_token


def test_lease_boundary_is_still_held(locks, clock):
    locks.acquire(KEY)
    clock.advance(minutes=5)
    with pytest.raises(Busy):
        locks.acquire(KEY)


def test_custom_lease_duration(locks, clock):
    locks.acquire(KEY, lease_duration=timedelta(seconds=30))
    clock.advance(seconds=31)
    assert locks.acquire(KEY)


def test_force_reset(locks):
    locks.acquire(KEY)
    assert locks.force_reset(KEY, actor="ops@example.com") is True
    assert locks.get(KEY) is None
    assert locks.force_reset(KEY, actor="ops@example.com") is False
    assert locks.acquire(KEY)


def test_locks_are_per_resource(locks):
    locks.acquire(resource_key_for("orders"))
    assert locks.acquire(resource_key_for("products"))


def test_sweep_expired(locks, clock, session_factory):
    locks.acquire(resource_key_for("orders"))
    clock.advance(minutes=10)
    locks.acquire(resource_key_for("products"))

    assert locks.sweep_expired() == 1
    with session_factory() as session:
        assert session.get(SyncLock, resource_key_for("orders")) is None
        assert session.get(SyncLock, resource_key_for("products")) is not None


def test_concurrent_acquire_has_single_winner(locks):
    def attempt(_):
        try:
            return locks.acquire(KEY)
        except Busy:
            return None

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(attempt, range(8)))

    winners = [token for token in results if token]
    assert len(winners) == 1
    assert locks.get(KEY).owner_token == winners[0]


def test_extend_keeps_lease_alive(locks, clock):
    token = locks.acquire(KEY)
    clock.advance(minutes=4)
    assert locks.extend(KEY, token) == clock() + timedelta(minutes=5)

    clock.advance(minutes=4)
    with pytest.raises(Busy):
        locks.acquire(KEY)
    assert locks.get(KEY).owner_token == token


def test_extend_fails_after_expiry(locks, clock):
    token = locks.acquire(KEY)
    clock.advance(minutes=6)
    with pytest.raises(LeaseLost):
        locks.extend(KEY, token)


def test_extend_fails_after_takeover(locks, clock):
    stale_token = locks.acquire(KEY)
    clock.advance(minutes=6)
    new_token = locks.acquire(KEY)

    with pytest.raises(LeaseLost):
        locks.extend(KEY, stale_token)
    assert locks.get(KEY).owner_token == new_token
    assert locks.extend(KEY, new_token) == clock() + timedelta(minutes=5)
