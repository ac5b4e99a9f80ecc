"""tests/test_locks.py — Redis key locks shared by the scheduler, the Celery task
and ride assignment."""
import fakeredis
import pytest

from ride_planner.state.locks import OPTIMIZER_LOCK, LockTimeoutError, RedisLock


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(decode_responses=True)


def test_second_holder_is_refused(redis_client):
    first = RedisLock(redis_client, OPTIMIZER_LOCK)
    second = RedisLock(redis_client, OPTIMIZER_LOCK)

    assert first.try_acquire() is True
    assert second.try_acquire() is False

    first.release()
    assert second.try_acquire() is True


def test_lock_key_expires(redis_client):
    lock = RedisLock(redis_client, "assign", ttl_seconds=30)
    lock.try_acquire()

    assert redis_client.get("lock:assign") is not None
    assert 0 < redis_client.ttl("lock:assign") <= 30


def test_release_leaves_foreign_claim_alone(redis_client):
    lock = RedisLock(redis_client, OPTIMIZER_LOCK)
    lock.try_acquire()
    # Our claim expired and another process took the key
    redis_client.set("lock:optimizer", "someone-else")

    lock.release()

    assert redis_client.get("lock:optimizer") == "someone-else"


def test_hold_releases_on_exit(redis_client):
    lock = RedisLock(redis_client, OPTIMIZER_LOCK)
    with lock.hold(blocking_timeout=1):
        assert redis_client.exists("lock:optimizer")
    assert not redis_client.exists("lock:optimizer")


def test_hold_releases_on_error(redis_client):
    lock = RedisLock(redis_client, OPTIMIZER_LOCK)
    with pytest.raises(RuntimeError):
        with lock.hold(blocking_timeout=1):
            raise RuntimeError("boom")
    assert not redis_client.exists("lock:optimizer")


def test_hold_times_out_while_held_elsewhere(redis_client):
    RedisLock(redis_client, OPTIMIZER_LOCK).try_acquire()
    waiting = RedisLock(redis_client, OPTIMIZER_LOCK, poll_seconds=0.01)

    with pytest.raises(LockTimeoutError):
        with waiting.hold(blocking_timeout=0.05):
            pass


@pytest.mark.asyncio
async def test_hold_async_waits_then_times_out(redis_client):
    RedisLock(redis_client, OPTIMIZER_LOCK).try_acquire()
    waiting = RedisLock(redis_client, OPTIMIZER_LOCK, poll_seconds=0.01)

    with pytest.raises(LockTimeoutError):
        async with waiting.hold_async(blocking_timeout=0.05):
            pass


@pytest.mark.asyncio
async def test_hold_async_acquires_free_lock(redis_client):
    lock = RedisLock(redis_client, OPTIMIZER_LOCK)
    async with lock.hold_async(blocking_timeout=1):
        assert redis_client.exists("lock:optimizer")
    assert not redis_client.exists("lock:optimizer")
