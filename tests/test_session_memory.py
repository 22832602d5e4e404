import asyncio

from app.services.memory.session_memory import SessionMemoryStore, session_key


def test_session_key_defaults_to_anonymous():
    assert session_key(1) == ("1", "anonymous")
    assert session_key("1", 42) == ("1", "42")


def test_memory_is_created_lazily():
    store = SessionMemoryStore(max_sessions=10)
    assert len(store) == 0
    assert store.peek(1, "u") is None

    async def touch():
        async with store.session(1, "u") as memory:
            memory.used_story_ids.add(105)

    asyncio.run(touch())

    assert len(store) == 1
    assert store.peek(1, "u").used_story_ids == {105}


def test_keys_are_isolated():
    store = SessionMemoryStore(max_sessions=10)

    async def touch():
        async with store.session(1, "a") as memory:
            memory.used_story_ids.add(1)
        async with store.session(1, "b") as memory:
            assert memory.used_story_ids == set()
        async with store.session(2, "a") as memory:
            assert memory.used_story_ids == set()

    asyncio.run(touch())
    assert len(store) == 3


def test_least_recently_used_entry_is_evicted():
    store = SessionMemoryStore(max_sessions=2)

    async def fill():
        async with store.session(1, "a"):
            pass
        async with store.session(1, "b"):
            pass
        async with store.session(1, "a"):
            pass
        async with store.session(1, "c"):
            pass

    asyncio.run(fill())

    assert len(store) == 2
    assert store.peek(1, "b") is None
    assert store.peek(1, "a") is not None
    assert store.peek(1, "c") is not None


def test_entry_in_use_is_not_evicted():
    store = SessionMemoryStore(max_sessions=1)

    async def overlap():
        async with store.session(1, "a"):
            async with store.session(1, "b"):
                pass

    asyncio.run(overlap())
    assert store.peek(1, "a") is not None
    assert store.peek(1, "b") is not None


def test_explicit_evict():
    store = SessionMemoryStore(max_sessions=10)

    async def touch():
        async with store.session(1):
            pass

    asyncio.run(touch())
    store.evict(1)
    assert len(store) == 0


def test_same_key_turns_are_serialized():
    store = SessionMemoryStore(max_sessions=10)
    events = []

    async def turn(name):
        async with store.session(1, "u"):
            events.append(f"start-{name}")
            await asyncio.sleep(0.01)
            events.append(f"end-{name}")

    async def both():
        await asyncio.gather(turn("first"), turn("second"))

    asyncio.run(both())
    assert events == ["start-first", "end-first", "start-second", "end-second"]


def test_different_keys_run_in_parallel():
    store = SessionMemoryStore(max_sessions=10)

    async def both():
        released = asyncio.Event()

        async def waiter():
            async with store.session(1, "a"):
                await asyncio.wait_for(released.wait(), timeout=1)

        async def releaser():
            async with store.session(1, "b"):
                released.set()

        await asyncio.gather(waiter(), releaser())

    asyncio.run(both())


def test_explicit_zero_limits_are_kept(boss_story):
    store = SessionMemoryStore(max_sessions=0, max_tones=0)
    assert store.max_sessions == 0

    async def touch():
        async with store.session(1, "a"):
            pass
        async with store.session(1, "b") as memory:
            memory.record_story(boss_story)

    asyncio.run(touch())

    assert store.peek(1, "a") is None
    assert store.peek(1, "b").recent_emotional_tones == []
    assert store.peek(1, "b").used_story_ids == {boss_story.id}
