from datetime import datetime, timedelta, timezone

import pytest

from connections.in_memory_store import InMemoryJobStore


class FakeClock:
    def __init__(self):
        self.now = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemoryJobStore(clock=clock)


@pytest.mark.asyncio
async def test_put_and_get(store):
    await store.put("job:1", "hello")

    assert await store.get("job:1") == "hello"
    assert await store.get("job:2") is None


@pytest.mark.asyncio
async def test_value_expires_after_ttl(store, clock):
    await store.put("job:1", "hello", ttl=timedelta(days=7))

    clock.advance(days=6, hours=23)
    assert await store.get("job:1") == "hello"

    clock.advance(hours=1)
    assert await store.get("job:1") is None
    assert "job:1" not in store.data


@pytest.mark.asyncio
async def test_update_keeps_existing_ttl(store, clock):
    await store.put("job:1", "a", ttl=timedelta(hours=1))

    clock.advance(minutes=30)
    assert await store.update("job:1", lambda current: current + "b") == "ab"

    clock.advance(minutes=31)
    assert await store.get("job:1") is None


@pytest.mark.asyncio
async def test_update_of_missing_key_sees_none(store):
    seen = []

    def mutate(current):
        seen.append(current)
        return "[]"

    await store.update("queue", mutate)

    assert seen == [None]
    assert await store.get("queue") == "[]"


@pytest.mark.asyncio
async def test_failing_mutation_leaves_value_untouched(store):
    await store.put("job:1", "original")

    def mutate(current):
        raise RuntimeError("rejected")

    with pytest.raises(RuntimeError):
        await store.update("job:1", mutate)

    assert await store.get("job:1") == "original"
