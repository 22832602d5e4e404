import asyncio

from app.config import config
from app.errors import ConfigLoadError, GenerationError
from app.services.llm.prompt_builder import NO_STORY_NOTE
from app.services.mentor.mentor_service import MentorService, to_turns
from app.services.mentor.orchestrator import FALLBACK_REPLY
from app.services.stores.stores import ConfigStore, InMemoryStoryStore, StoryStore, load_stores

BOSS_MESSAGE = "My boss yelled at me today"
CLEAN = (
    "When I was in the Navy my chief yelled at me in front of the whole crew. "
    "I went back the next morning and asked him to teach me."
)


class UnreachableConfigStore(ConfigStore):
    async def get_semantic_config(self, persona_name, organization_id=None):
        raise ConfigLoadError("config database unreachable")

    async def get_persona_identity(self, persona_id):
        raise ConfigLoadError("config database unreachable")


class UnreachableStoryStore(StoryStore):
    async def get_life_stories(self, persona_id):
        raise ConfigLoadError("story database unreachable")


def _bundled_service(provider):
    config_store, story_store = load_stores(config["data_path"])
    return MentorService(config_store, story_store, provider)


def test_boss_message_draws_on_chief_story_and_rewrites_cliche(scripted_provider):
    provider = scripted_provider(["Stay strong. Everything happens for a reason.", CLEAN])
    service = _bundled_service(provider)

    reply = asyncio.run(service.respond(1, BOSS_MESSAGE))

    assert reply == CLEAN
    assert len(provider.calls) == 2
    prompt = provider.calls[0]["system_prompt"]
    assert prompt.startswith("You are Elder Thomas, a Navy veteran")
    assert '"The Chief Who Yelled"' in prompt
    assert "A harsh boss can still teach you something if you go back and ask." in prompt
    assert "The Fishing Lesson" not in prompt


def test_organization_override_replaces_identity(scripted_provider):
    provider = scripted_provider([CLEAN])
    service = _bundled_service(provider)

    asyncio.run(service.respond(2, BOSS_MESSAGE, organization_id=7))

    prompt = provider.calls[0]["system_prompt"]
    assert prompt.startswith("You are David. Talk like you're on the porch")
    assert "former pastor" not in prompt


def test_unreachable_stores_degrade_to_generic_identity(scripted_provider):
    provider = scripted_provider([CLEAN])
    service = MentorService(UnreachableConfigStore(), UnreachableStoryStore(), provider)

    reply = asyncio.run(service.respond(1, BOSS_MESSAGE))

    assert reply == CLEAN
    prompt = provider.calls[0]["system_prompt"]
    assert prompt.startswith("You are Mentor, an AI mentor.")
    assert NO_STORY_NOTE in prompt


def test_missing_config_keeps_static_identity(scripted_provider, elder_thomas, boss_story):
    provider = scripted_provider([CLEAN])

    class NoConfigStore(ConfigStore):
        async def get_semantic_config(self, persona_name, organization_id=None):
            raise ConfigLoadError("timeout")

        async def get_persona_identity(self, persona_id):
            return elder_thomas

    service = MentorService(NoConfigStore(), InMemoryStoryStore([boss_story]), provider)
    asyncio.run(service.respond(1, BOSS_MESSAGE))

    prompt = provider.calls[0]["system_prompt"]
    assert prompt.startswith(elder_thomas.core_identity)
    assert "COMMUNICATION STYLE" not in prompt
    assert boss_story.title in prompt


def test_unknown_persona_gets_generic_identity(scripted_provider, stores):
    provider = scripted_provider([CLEAN])
    service = MentorService(*stores, provider)

    asyncio.run(service.respond(99, "Hello"))

    assert provider.calls[0]["system_prompt"].startswith("You are Mentor, an AI mentor.")


def test_generation_failures_surface_as_fallback(scripted_provider, stores):
    timeout = GenerationError("timeout", retryable=True)
    provider = scripted_provider([timeout, timeout, timeout])
    service = MentorService(*stores, provider)

    assert asyncio.run(service.respond(1, BOSS_MESSAGE)) == FALLBACK_REPLY
    assert len(provider.calls) == 3


def test_history_dicts_are_filtered_and_trimmed(scripted_provider, stores):
    provider = scripted_provider([CLEAN])
    service = MentorService(*stores, provider)
    history = [{"role": "system", "content": "ignored"}] + [
        {"role": "user" if i % 2 == 0 else "assistant", "content": f"turn {i}"}
        for i in range(14)
    ]

    asyncio.run(service.respond(1, BOSS_MESSAGE, history=history))

    sent = provider.calls[0]["history"]
    assert len(sent) == 10
    assert sent[0].content == "turn 4"
    assert sent[-1].content == "turn 13"


def test_to_turns_drops_empty_and_unknown_roles():
    turns = to_turns([
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": ""},
        {"role": "tool", "content": "x"},
    ])
    assert [(t.role, t.content) for t in turns] == [("user", "hi")]


def test_respond_stream_yields_deltas_then_final(scripted_provider, stores):
    service = MentorService(*stores, scripted_provider([CLEAN]))

    async def collect():
        return [c async for c in service.respond_stream(1, BOSS_MESSAGE)]

    chunks = asyncio.run(collect())

    assert all(not c.is_final for c in chunks[:-1])
    assert "".join(c.text_delta for c in chunks[:-1]) == CLEAN
    assert chunks[-1].is_final
    assert chunks[-1].text == CLEAN


def test_story_is_not_reused_in_the_same_session(scripted_provider, stores, boss_story):
    provider = scripted_provider([CLEAN, CLEAN])
    service = MentorService(*stores, provider)

    async def two_turns():
        await service.respond(1, BOSS_MESSAGE, user_id="u-1")
        await service.respond(1, BOSS_MESSAGE, user_id="u-1")

    asyncio.run(two_turns())

    assert boss_story.title in provider.calls[0]["system_prompt"]
    second = provider.calls[1]["system_prompt"]
    assert boss_story.title not in second
    assert NO_STORY_NOTE in second
    assert service.memory_store.peek(1, "u-1").used_story_ids == {boss_story.id}


def test_sessions_for_different_users_are_independent(scripted_provider, stores, boss_story):
    provider = scripted_provider([CLEAN, CLEAN])
    service = MentorService(*stores, provider)

    async def two_users():
        await service.respond(1, BOSS_MESSAGE, user_id="u-1")
        await service.respond(1, BOSS_MESSAGE, user_id="u-2")

    asyncio.run(two_users())

    assert boss_story.title in provider.calls[1]["system_prompt"]


def test_backend_errors_from_stores_degrade_the_turn(scripted_provider):
    class DownConfigStore(ConfigStore):
        async def get_semantic_config(self, persona_name, organization_id=None):
            raise ConnectionError("db down")

        async def get_persona_identity(self, persona_id):
            raise ConnectionError("db down")

    class DownStoryStore(StoryStore):
        async def get_life_stories(self, persona_id):
            raise ConnectionError("db down")

    provider = scripted_provider([CLEAN, CLEAN])
    service = MentorService(DownConfigStore(), DownStoryStore(), provider)

    assert asyncio.run(service.respond(1, "hello")) == CLEAN

    async def collect():
        return [c async for c in service.respond_stream(1, "hello", user_id="u-2")]

    assert asyncio.run(collect())[-1].text == CLEAN
    prompt = provider.calls[0]["system_prompt"]
    assert prompt.startswith("You are Mentor, an AI mentor.")
    assert NO_STORY_NOTE in prompt
