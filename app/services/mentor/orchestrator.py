"""
Rewrite Orchestrator

Drives one mentor turn through compose → generate → audit, and when the
draft is flagged, through a bounded rewrite/escalation sequence:

  DRAFTING → AUDITED → ACCEPTED
                     ↘ FLAGGED → REWRITING → RE_AUDITED → ACCEPTED
                                                        ↘ ESCALATED → ACCEPTED
  (no text at all)  → FINAL_FALLBACK → DONE

Every state is handled by one transition method that returns the next
state. LLM calls only happen in DRAFTING, REWRITING and ESCALATED, and each
of them checks the call budget first, so a turn never makes more than
``max_calls`` provider requests.
"""

import logging
import time
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncGenerator, List, Optional

from app.config import config
from app.errors import GenerationError
from app.models import (
    AuditVerdict,
    ConversationTurn,
    GenerationRequest,
    SessionMemory,
    StreamChunk,
)
from app.services.audit.quality_audit import AuditContext, run_audit
from app.services.llm.prompt_builder import build_system_prompt
from app.services.stories.story_ranker import find_referenced_stories

logger = logging.getLogger(__name__)

FALLBACK_REPLY = "I'm having trouble collecting my thoughts, can we try again in a moment?"

REWRITE_INSTRUCTION = (
    "Rewrite your last reply so it follows the rules above. "
    "Reply with the rewritten message only."
)


def escalation_prompt(persona_name: str) -> str:
    return (
        f"You are {persona_name}. Stay completely in character as {persona_name}; "
        "never mention being an AI.\n"
        "- Reply in ONE sentence only.\n"
        '- Open with "I remember" or "When I".\n'
        "- Talk plainly and casually, like a person on a front porch.\n"
        "- No advice lists, no questions, no clichés."
    )


class TurnState(Enum):
    DRAFTING = "drafting"
    AUDITED = "audited"
    FLAGGED = "flagged"
    REWRITING = "rewriting"
    RE_AUDITED = "re_audited"
    ESCALATED = "escalated"
    ACCEPTED = "accepted"
    FINAL_FALLBACK = "final_fallback"
    DONE = "done"


@dataclass
class Turn:
    request: GenerationRequest
    memory: Optional[SessionMemory] = None
    state: TurnState = TurnState.DRAFTING
    calls: int = 0
    system_prompt: str = ""
    draft: Optional[str] = None
    rewrite: Optional[str] = None
    first_verdict: Optional[AuditVerdict] = None
    second_verdict: Optional[AuditVerdict] = None
    draft_error: Optional[GenerationError] = None
    best: Optional[str] = None
    reply: Optional[str] = None
    streamed: str = ""
    path: List[TurnState] = field(default_factory=list)


class RewriteOrchestrator:
    def __init__(self, provider, max_calls: Optional[int] = None):
        mentor_cfg = config["mentor"]
        self.provider = provider
        self.max_calls = max_calls if max_calls is not None else mentor_cfg["max_llm_calls"]
        self.rewrite_temperature = mentor_cfg["rewrite_temperature"]
        self.rewrite_max_tokens = mentor_cfg["rewrite_max_tokens"]
        self.escalation_temperature = mentor_cfg["escalation_temperature"]
        self.escalation_max_tokens = mentor_cfg["escalation_max_tokens"]

        self._transitions = {
            TurnState.DRAFTING: self._drafting,
            TurnState.AUDITED: self._audited,
            TurnState.FLAGGED: self._flagged,
            TurnState.REWRITING: self._rewriting,
            TurnState.RE_AUDITED: self._re_audited,
            TurnState.ESCALATED: self._escalated,
            TurnState.ACCEPTED: self._accepted,
            TurnState.FINAL_FALLBACK: self._final_fallback,
        }

    # ─── Entry points ────────────────────────────────────────

    async def run(
        self,
        request: GenerationRequest,
        memory: Optional[SessionMemory] = None,
        stream: bool = False,
    ) -> AsyncGenerator[StreamChunk, None]:
        """
        Run one turn. With ``stream=True`` the draft's deltas are yielded as
        they arrive. The last chunk is always final and carries the reply in
        ``text``; ``revised`` is set when that reply differs from what was
        streamed.
        """
        turn = Turn(request=request, memory=memory)
        started = time.perf_counter()

        while turn.state is not TurnState.DONE:
            turn.path.append(turn.state)
            if turn.state is TurnState.DRAFTING and not self._budget_left(turn):
                next_state = self._settle(turn)
            elif turn.state is TurnState.DRAFTING and stream:
                async with aclosing(self._stream_draft(turn)) as chunks:
                    async for chunk in chunks:
                        turn.streamed += chunk.text_delta
                        yield chunk
                next_state = self._after_draft(turn)
            else:
                next_state = await self._transitions[turn.state](turn)
            logger.debug("[Mentor] %s → %s", turn.state.value, next_state.value)
            turn.state = next_state

        logger.info(
            "🧭 [Mentor] Turn done in %dms | calls=%d | path=%s",
            round((time.perf_counter() - started) * 1000),
            turn.calls,
            " → ".join(s.value for s in turn.path),
        )
        yield StreamChunk(
            text_delta="",
            is_final=True,
            text=turn.reply,
            revised=stream and turn.reply != turn.streamed,
        )

    async def respond(self, request: GenerationRequest, memory: Optional[SessionMemory] = None) -> str:
        reply = FALLBACK_REPLY
        async for chunk in self.run(request, memory=memory):
            if chunk.is_final:
                reply = chunk.text
        return reply

    # ─── Helpers ─────────────────────────────────────────────

    def _audit(self, turn: Turn, text: str) -> AuditVerdict:
        return run_audit(text, AuditContext(
            user_message=turn.request.user_message,
            previous_assistant_text=turn.request.previous_assistant_text,
            persona_name=turn.request.persona.name,
        ))

    def _budget_left(self, turn: Turn) -> bool:
        return turn.calls < self.max_calls

    def _after_failure(self, turn: Turn, err: GenerationError, retry_state: TurnState) -> TurnState:
        if err.retryable and self._budget_left(turn):
            logger.warning(
                "⚠️ [Mentor] %s call failed (%s), retrying (%d/%d calls used)",
                retry_state.value, err, turn.calls, self.max_calls,
            )
            return retry_state
        return self._settle(turn)

    def _settle(self, turn: Turn) -> TurnState:
        """Out of budget or options: keep the best text so far, if any."""
        if turn.best:
            turn.reply = turn.best
            return TurnState.ACCEPTED
        return TurnState.FINAL_FALLBACK

    def _compose(self, turn: Turn) -> str:
        if not turn.system_prompt:
            req = turn.request
            turn.system_prompt = build_system_prompt(
                req.persona, req.semantic_config, req.stories,
                user_message=req.user_message, user_context=req.user_context,
            )
        return turn.system_prompt

    # ─── Transitions ─────────────────────────────────────────

    async def _drafting(self, turn: Turn) -> TurnState:
        req = turn.request
        system_prompt = self._compose(turn)
        turn.calls += 1
        try:
            turn.draft = await self.provider.generate(system_prompt, req.history, req.user_message)
            turn.draft_error = None
        except GenerationError as e:
            turn.draft_error = e
        return self._after_draft(turn)

    async def _stream_draft(self, turn: Turn) -> AsyncGenerator[StreamChunk, None]:
        req = turn.request
        system_prompt = self._compose(turn)
        turn.calls += 1
        text = ""
        deltas = self.provider.generate_stream(system_prompt, req.history, req.user_message)
        try:
            async with aclosing(deltas):
                async for chunk in deltas:
                    if chunk.is_final:
                        break
                    text += chunk.text_delta
                    yield chunk
            if not text.strip():
                raise GenerationError("Streamed draft was blank", retryable=True)
            turn.draft = text
            turn.draft_error = None
        except GenerationError as e:
            turn.draft_error = e

    def _after_draft(self, turn: Turn) -> TurnState:
        if turn.draft_error is not None:
            return self._after_failure(turn, turn.draft_error, TurnState.DRAFTING)
        turn.best = turn.draft
        return TurnState.AUDITED

    async def _audited(self, turn: Turn) -> TurnState:
        turn.first_verdict = self._audit(turn, turn.draft)
        if not turn.first_verdict.flagged:
            turn.reply = turn.draft
            return TurnState.ACCEPTED
        return TurnState.FLAGGED

    async def _flagged(self, turn: Turn) -> TurnState:
        if not self._budget_left(turn):
            return self._settle(turn)
        return TurnState.REWRITING

    async def _rewriting(self, turn: Turn) -> TurnState:
        req = turn.request
        history = [
            *req.history,
            ConversationTurn(role="user", content=req.user_message),
            ConversationTurn(role="assistant", content=turn.draft),
        ]
        turn.calls += 1
        try:
            turn.rewrite = await self.provider.generate(
                turn.first_verdict.rewrite_directive,
                history,
                REWRITE_INSTRUCTION,
                temperature=self.rewrite_temperature,
                max_tokens=self.rewrite_max_tokens,
            )
        except GenerationError as e:
            return self._after_failure(turn, e, TurnState.REWRITING)
        return TurnState.RE_AUDITED

    async def _re_audited(self, turn: Turn) -> TurnState:
        turn.second_verdict = self._audit(turn, turn.rewrite)
        if (
            not turn.second_verdict.flagged
            or len(turn.second_verdict.issues) < len(turn.first_verdict.issues)
        ):
            turn.reply = turn.rewrite
            return TurnState.ACCEPTED
        return TurnState.ESCALATED

    async def _escalated(self, turn: Turn) -> TurnState:
        if not self._budget_left(turn):
            return self._settle(turn)
        req = turn.request
        turn.calls += 1
        try:
            # Last resort: returned as-is, never audited
            turn.reply = await self.provider.generate(
                escalation_prompt(req.persona.name),
                req.history,
                req.user_message,
                temperature=self.escalation_temperature,
                max_tokens=self.escalation_max_tokens,
            )
        except GenerationError as e:
            return self._after_failure(turn, e, TurnState.ESCALATED)
        return TurnState.ACCEPTED

    async def _accepted(self, turn: Turn) -> TurnState:
        if turn.memory is not None and turn.request.stories:
            for story in find_referenced_stories(turn.reply, turn.request.stories):
                turn.memory.record_story(story)
                logger.info('📚 [Mentor] Recorded story use: "%s"', story.title)
        return TurnState.DONE

    async def _final_fallback(self, turn: Turn) -> TurnState:
        logger.error("❌ [Mentor] No usable reply after %d calls, sending fallback", turn.calls)
        turn.reply = FALLBACK_REPLY
        return TurnState.DONE
