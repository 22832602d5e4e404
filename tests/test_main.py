import asyncio

import pytest

import main
from app.models import StreamChunk
from app.services.memory.conversation_memory import ConversationMemory


class RecordingHandler:
    def __init__(self):
        self.events = []

    async def send_thinking(self, ws):
        self.events.append(("thinking",))

    async def send_delta(self, ws, text):
        self.events.append(("delta", text))

    async def send_response(self, ws, text, revised=False):
        self.events.append(("response", text, revised))

    async def send_error(self, ws, message):
        self.events.append(("error", message))


class StubMentor:
    def __init__(self, fail=False):
        self.fail = fail

    async def respond_stream(self, persona_id, user_message, history, **kwargs):
        yield StreamChunk(text_delta="I remember ")
        if self.fail:
            raise RuntimeError("store driver crashed")
        yield StreamChunk(text_delta="", is_final=True, text="I remember that day.", revised=True)


@pytest.fixture
def app_globals(monkeypatch):
    handler = RecordingHandler()
    conversations = ConversationMemory(max_messages=10)
    conversations.create_session("s1")
    monkeypatch.setattr(main, "ws_handler", handler)
    monkeypatch.setattr(main, "conversations", conversations)
    return handler, conversations


def test_turn_sends_deltas_then_response(app_globals, monkeypatch):
    handler, conversations = app_globals
    monkeypatch.setattr(main, "mentor", StubMentor())

    asyncio.run(main.process_user_message(None, "s1", {"personaId": 1, "message": "hi"}))

    assert handler.events == [
        ("thinking",),
        ("delta", "I remember "),
        ("response", "I remember that day.", True),
    ]
    assert [t.content for t in conversations.get_history("s1")] == ["hi", "I remember that day."]


def test_failed_turn_reports_error_to_client(app_globals, monkeypatch):
    handler, conversations = app_globals
    monkeypatch.setattr(main, "mentor", StubMentor(fail=True))

    asyncio.run(main.process_user_message(None, "s1", {"personaId": 1, "message": "hi"}))

    assert handler.events[-1][0] == "error"
    assert not any(e[0] == "response" for e in handler.events)
    assert conversations.get_history("s1") == []


def test_message_without_persona_is_rejected(app_globals, monkeypatch):
    handler, _ = app_globals
    monkeypatch.setattr(main, "mentor", StubMentor())

    asyncio.run(main.process_user_message(None, "s1", {"message": "hi"}))

    assert handler.events == [("error", "A chat message needs 'personaId' and 'message'.")]
