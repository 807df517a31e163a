"""
Tests for session checkpoint stores.
"""
import fakeredis
import pytest

from docsearch_agent.memory import InMemoryCheckpointStore, RedisCheckpointStore
from docsearch_agent.state import merge_state, new_state


@pytest.fixture
def redis_store():
    client = fakeredis.FakeRedis(decode_responses=True)
    yield RedisCheckpointStore(client=client)
    client.flushall()


def finished_state():
    return merge_state(
        new_state("What tours are available in Valencia?"),
        {
            "documents": ["[Document 1] (Source: docs/valencia.md)\nWalking tours."],
            "retrieval_count": 1,
            "answer": "Walking tours run daily.",
            "iterations": 1,
            "conversation_history": [
                {"role": "user", "content": "What tours are available in Valencia?"},
                {"role": "assistant", "content": "Walking tours run daily."},
            ],
        },
    )


@pytest.mark.asyncio
async def test_redis_round_trip(redis_store):
    state = finished_state()

    await redis_store.save("user-1", state)
    loaded = await redis_store.load("user-1")

    assert loaded == state


@pytest.mark.asyncio
async def test_redis_missing_session(redis_store):
    assert await redis_store.load("nobody") is None


@pytest.mark.asyncio
async def test_redis_last_writer_wins(redis_store):
    first = finished_state()
    second = merge_state(first, {"answer": "Bike tours too."})

    await redis_store.save("user-1", first)
    await redis_store.save("user-1", second)

    assert (await redis_store.load("user-1"))["answer"] == "Bike tours too."


@pytest.mark.asyncio
async def test_redis_keys_are_per_session(redis_store):
    await redis_store.save("a", finished_state())

    assert redis_store.client.exists("checkpoint:a") == 1
    assert redis_store.client.ttl("checkpoint:a") == -1
    assert await redis_store.load("b") is None


@pytest.mark.asyncio
async def test_redis_clear(redis_store):
    await redis_store.save("a", finished_state())

    await redis_store.clear("a")

    assert await redis_store.load("a") is None


@pytest.mark.asyncio
async def test_in_memory_store_returns_copies():
    store = InMemoryCheckpointStore()
    state = finished_state()
    await store.save("s", state)

    loaded = await store.load("s")
    loaded["conversation_history"].append({"role": "user", "content": "more"})

    assert len((await store.load("s"))["conversation_history"]) == 2
