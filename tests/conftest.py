import re
from types import SimpleNamespace

import pytest

from app.errors import GenerationError
from app.models import LifeStory, PersonaIdentity, SemanticConfig, StreamChunk
from app.services.stores.stores import InMemoryConfigStore, InMemoryStoryStore


class ScriptedProvider:
    """Stands in for LLMProvider: returns (or raises) scripted outputs in order."""

    def __init__(self, outputs):
        self.outputs = list(outputs)
        self.calls = []

    def _next(self, kind, system_prompt, history, user_message, temperature, max_tokens):
        self.calls.append({
            "kind": kind,
            "system_prompt": system_prompt,
            "history": list(history),
            "user_message": user_message,
            "temperature": temperature,
            "max_tokens": max_tokens,
        })
        if not self.outputs:
            raise GenerationError("script exhausted", retryable=False)
        item = self.outputs.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def generate(self, system_prompt, history, user_message, temperature=None, max_tokens=None):
        return self._next("generate", system_prompt, history, user_message, temperature, max_tokens)

    async def generate_stream(self, system_prompt, history, user_message, temperature=None, max_tokens=None):
        text = self._next("stream", system_prompt, history, user_message, temperature, max_tokens)
        for piece in re.findall(r"\S+\s*", text):
            yield StreamChunk(text_delta=piece)
        yield StreamChunk(text_delta="", is_final=True)


class FakeStream:
    def __init__(self, parts):
        self.parts = parts
        self.closed = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for part in self.parts:
            yield SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=part))])

    async def close(self):
        self.closed = True


class FakeCompletions:
    """Mimics ``client.chat.completions`` of the OpenAI SDK."""

    def __init__(self, content="", parts=None, error=None, delay=0.0):
        self.content = content
        self.parts = parts or []
        self.error = error
        self.delay = delay
        self.requests = []
        self.stream = None

    async def create(self, **kwargs):
        import asyncio

        self.requests.append(kwargs)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if kwargs.get("stream"):
            self.stream = FakeStream(self.parts)
            return self.stream
        return SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=self.content))]
        )


def fake_openai_client(completions):
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


# ─── Fixtures ────────────────────────────────────────────────

@pytest.fixture
def scripted_provider():
    return ScriptedProvider


@pytest.fixture
def fake_completions():
    return FakeCompletions


@pytest.fixture
def openai_client_for():
    return fake_openai_client


@pytest.fixture
def elder_thomas():
    return PersonaIdentity(
        id=1,
        name="Elder Thomas",
        core_identity="You are Elder Thomas, a Navy veteran and father of five.",
        expertise="Recovery, Fatherhood",
    )


@pytest.fixture
def boss_story():
    return LifeStory(
        id=105,
        persona_id=1,
        category="career",
        title="The Chief Who Yelled",
        story="My first chief yelled at me in front of the whole crew. I went back the next morning and asked him to teach me.",
        lesson="A harsh boss can still teach you something if you go back and ask.",
        keywords=("boss", "yelled", "navy"),
        emotional_tone="honest",
    )


@pytest.fixture
def fishing_story():
    return LifeStory(
        id=102,
        persona_id=1,
        category="Relationship with Father",
        title="The Fishing Lesson",
        story="Dad took me fishing when I was twelve and we sat for hours without a bite.",
        lesson="Patience is finding value in the quiet moments.",
        keywords=("patience", "fishing", "waiting"),
        emotional_tone="reflective",
    )


@pytest.fixture
def thomas_config():
    return SemanticConfig(
        persona_name="Elder Thomas",
        communication_style="Few but meaningful words",
        decision_making="Slow to judge",
        mentoring="Teaches through stories",
        common_phrases=["Experience is a hard teacher, but a thorough one"],
        core_values=["integrity", "patience"],
    )


@pytest.fixture
def stores(elder_thomas, boss_story, thomas_config):
    return (
        InMemoryConfigStore(personas=[elder_thomas], configs=[thomas_config]),
        InMemoryStoryStore([boss_story]),
    )
