"""
Mentor Service

The caller-facing entry point: load the persona, its semantic config and
life stories, pick stories for this message, then hand the turn to the
rewrite orchestrator.

Store failures never fail the turn, whatever the backend raises. A missing
config means the persona's static identity is used, missing stories mean no
stories, and an unknown persona gets a minimal generic identity. Generation
failures only ever reach the caller as the fallback reply.
"""

import logging
from contextlib import aclosing
from typing import AsyncGenerator, List, Optional, Sequence

from app.config import config
from app.models import (
    DEFAULT_USER_CONTEXT,
    ConversationTurn,
    GenerationRequest,
    LifeStory,
    PersonaId,
    PersonaIdentity,
    SemanticConfig,
    SessionMemory,
    StreamChunk,
)
from app.services.memory.session_memory import SessionMemoryStore
from app.services.mentor.orchestrator import RewriteOrchestrator
from app.services.stores.stores import ConfigStore, StoryStore
from app.services.stories.story_ranker import rank_stories

logger = logging.getLogger(__name__)


def to_turns(history: Sequence) -> List[ConversationTurn]:
    """Accept ConversationTurns or {"role", "content"} dicts; keep user/assistant only."""
    turns = []
    for item in history or ():
        if isinstance(item, ConversationTurn):
            turn = item
        else:
            turn = ConversationTurn(role=item.get("role", ""), content=item.get("content", ""))
        if turn.role in ("user", "assistant") and turn.content:
            turns.append(turn)
    return turns


class MentorService:
    def __init__(
        self,
        config_store: ConfigStore,
        story_store: StoryStore,
        provider,
        memory_store: Optional[SessionMemoryStore] = None,
        orchestrator: Optional[RewriteOrchestrator] = None,
    ):
        self.config_store = config_store
        self.story_store = story_store
        self.memory_store = memory_store or SessionMemoryStore()
        self.orchestrator = orchestrator or RewriteOrchestrator(provider)
        self.history_window = config["mentor"]["history_window"]
        self.story_limit = config["mentor"]["story_limit"]

    # ─── Public API ──────────────────────────────────────────

    async def respond(
        self,
        persona_id: PersonaId,
        user_message: str,
        history: Sequence = (),
        organization_id: Optional[int] = None,
        user_context: Optional[str] = None,
        user_id=None,
    ) -> str:
        """Generate the mentor's reply. Always returns a non-empty string."""
        reply = None
        async with aclosing(self.respond_stream(
            persona_id, user_message, history,
            organization_id=organization_id, user_context=user_context,
            user_id=user_id, stream=False,
        )) as chunks:
            async for chunk in chunks:
                if chunk.is_final:
                    reply = chunk.text
        return reply

    async def respond_stream(
        self,
        persona_id: PersonaId,
        user_message: str,
        history: Sequence = (),
        organization_id: Optional[int] = None,
        user_context: Optional[str] = None,
        user_id=None,
        stream: bool = True,
    ) -> AsyncGenerator[StreamChunk, None]:
        """
        Yield draft deltas as they arrive, then one final chunk whose
        ``text`` is the accepted reply.
        """
        logger.info('👤 [Mentor] %s ← "%s"', persona_id, user_message[:80])
        async with self.memory_store.session(persona_id, user_id) as memory:
            request = await self._build_request(
                persona_id, user_message, history, organization_id, user_context, memory,
            )
            async with aclosing(self.orchestrator.run(request, memory=memory, stream=stream)) as chunks:
                async for chunk in chunks:
                    yield chunk

    # ─── Request assembly ────────────────────────────────────

    async def _build_request(
        self,
        persona_id: PersonaId,
        user_message: str,
        history: Sequence,
        organization_id: Optional[int],
        user_context: Optional[str],
        memory: SessionMemory,
    ) -> GenerationRequest:
        persona = await self._load_persona(persona_id)
        semantic_config = await self._load_semantic_config(persona, organization_id)
        stories = await self._load_stories(persona_id)
        ranked = rank_stories(user_message, stories, memory, self.story_limit)

        return GenerationRequest(
            persona=persona,
            semantic_config=semantic_config,
            stories=ranked,
            user_message=user_message,
            history=to_turns(history)[-self.history_window:],
            user_context=user_context or DEFAULT_USER_CONTEXT,
        )

    async def _load_persona(self, persona_id: PersonaId) -> PersonaIdentity:
        try:
            return await self.config_store.get_persona_identity(persona_id)
        except Exception as e:
            logger.warning(
                "⚠️ [Mentor] Persona %s unavailable, using generic identity: %r", persona_id, e,
            )
            return PersonaIdentity(id=persona_id, name="Mentor")

    async def _load_semantic_config(
        self, persona: PersonaIdentity, organization_id: Optional[int]
    ) -> Optional[SemanticConfig]:
        try:
            semantic_config = await self.config_store.get_semantic_config(persona.name, organization_id)
        except Exception as e:
            logger.warning("⚠️ [Mentor] Semantic config for %s unavailable: %r", persona.name, e)
            return None
        logger.info(
            "🧩 [Mentor] Semantic config for %s: %s",
            persona.name, "found" if semantic_config else "using fallback",
        )
        return semantic_config

    async def _load_stories(self, persona_id: PersonaId) -> List[LifeStory]:
        try:
            return await self.story_store.get_life_stories(persona_id)
        except Exception as e:
            logger.warning("⚠️ [Mentor] Life stories for %s unavailable: %r", persona_id, e)
            return []
