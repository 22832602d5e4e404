"""
LLM Provider Service (Multi-Provider)

Supports OpenAI, Grok (X.AI), Groq and Anthropic for mentor replies.
OpenAI, Grok & Groq use the OpenAI-compatible SDK; Anthropic uses its own SDK.
Supports both whole-response and streaming generation.

Each public call is exactly one provider request: the SDK's own retries are
switched off and failures surface as GenerationError so the caller can count
attempts against its budget.
"""

import asyncio
import logging
from typing import AsyncGenerator, List, Optional

import openai
from openai import AsyncOpenAI

from app.config import api_key_for, config
from app.errors import GenerationError
from app.models import ConversationTurn, StreamChunk

logger = logging.getLogger(__name__)

_OPENAI_COMPATIBLE = ("openai", "grok", "groq")

_OPENAI_RETRYABLE = (
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)


class LLMProvider:
    """
    Unified completion generator.

    Provider is selected via ``config["llm"]["provider"]``:
        - ``"openai"`` / ``"grok"`` / ``"groq"`` → OpenAI-compatible API
        - ``"anthropic"``                      → Anthropic Messages API

    Clients can be injected (tests, custom transports); otherwise they are
    built from config.
    """

    def __init__(
        self,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        openai_client=None,
        anthropic_client=None,
        timeout: Optional[float] = None,
    ):
        llm_cfg = config["llm"]
        self.provider = (provider or llm_cfg.get("provider", "openai")).lower()
        self.model = model or llm_cfg["model"]
        self.temperature = llm_cfg["temperature"]
        self.max_tokens = llm_cfg["max_tokens"]
        self.timeout = timeout if timeout is not None else llm_cfg["timeout_sec"]
        self.history_window = config["mentor"]["history_window"]

        # ── Initialise the right client ──────────────────────
        if self.provider in _OPENAI_COMPATIBLE:
            if openai_client is None:
                kwargs = {"api_key": api_key_for(self.provider), "max_retries": 0}
                base_url = llm_cfg.get("base_url")
                if base_url:
                    kwargs["base_url"] = base_url
                openai_client = AsyncOpenAI(**kwargs)
            self.openai_client = openai_client
            self.anthropic_client = None
            self._retryable = _OPENAI_RETRYABLE
        elif self.provider == "anthropic":
            try:
                import anthropic
            except ImportError:
                raise ImportError(
                    "Anthropic provider selected but 'anthropic' package is not installed.\n"
                    "Install it with: pip install 'mentor-voice[anthropic]'"
                )
            if anthropic_client is None:
                anthropic_client = anthropic.AsyncAnthropic(
                    api_key=api_key_for("anthropic"), max_retries=0,
                )
            self.anthropic_client = anthropic_client
            self.openai_client = None
            self._retryable = (
                anthropic.APITimeoutError,
                anthropic.APIConnectionError,
                anthropic.RateLimitError,
                anthropic.InternalServerError,
            )
        else:
            raise ValueError(f"Unsupported LLM provider: {self.provider}")

        logger.info(
            "✅ [LLM] Initialized with %s (%s)",
            self.provider.upper(), self.model,
        )

    # ─────────────────────────────────────────────────────────
    # Public API (provider-agnostic)
    # ─────────────────────────────────────────────────────────

    def build_messages(
        self,
        system_prompt: str,
        history: List[ConversationTurn],
        user_message: str,
    ) -> List[dict]:
        """[system, ...last N history turns, user]."""
        recent = history[-self.history_window:] if self.history_window else []
        return [
            {"role": "system", "content": system_prompt},
            *(turn.to_message() for turn in recent),
            {"role": "user", "content": user_message},
        ]

    async def generate(
        self,
        system_prompt: str,
        history: List[ConversationTurn],
        user_message: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """Generate a complete response with a single provider call."""
        messages = self.build_messages(system_prompt, history, user_message)
        temp = self.temperature if temperature is None else temperature
        limit = self.max_tokens if max_tokens is None else max_tokens

        if self.provider in _OPENAI_COMPATIBLE:
            call = self._openai_generate(messages, temp, limit)
        else:
            call = self._anthropic_generate(messages, temp, limit)

        try:
            content = await asyncio.wait_for(call, timeout=self.timeout)
        except GenerationError:
            raise
        except Exception as exc:
            raise self._to_generation_error(exc) from exc

        if not content or not content.strip():
            raise GenerationError("LLM returned empty response", retryable=True)
        logger.info('🤖 [LLM] Response: "%s..."', content[:80])
        return content

    async def generate_stream(
        self,
        system_prompt: str,
        history: List[ConversationTurn],
        user_message: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> AsyncGenerator[StreamChunk, None]:
        """
        Stream a response delta-by-delta, ending with an empty final chunk.

        The per-call timeout applies to each wait for the next delta. If the
        consumer stops iterating (e.g. its task is cancelled), the provider
        stream is closed.
        """
        messages = self.build_messages(system_prompt, history, user_message)
        temp = self.temperature if temperature is None else temperature
        limit = self.max_tokens if max_tokens is None else max_tokens

        if self.provider in _OPENAI_COMPATIBLE:
            deltas = self._openai_stream(messages, temp, limit)
        else:
            deltas = self._anthropic_stream(messages, temp, limit)

        collected = ""
        try:
            while True:
                try:
                    delta = await asyncio.wait_for(deltas.__anext__(), timeout=self.timeout)
                except StopAsyncIteration:
                    break
                except GenerationError:
                    raise
                except Exception as exc:
                    raise self._to_generation_error(exc) from exc
                if delta:
                    collected += delta
                    yield StreamChunk(text_delta=delta)
        finally:
            await deltas.aclose()

        if not collected.strip():
            raise GenerationError("LLM stream produced no content", retryable=True)
        yield StreamChunk(text_delta="", is_final=True)

    def _to_generation_error(self, exc: Exception) -> GenerationError:
        if isinstance(exc, asyncio.TimeoutError):
            logger.warning("⚠️ [LLM] Call timed out after %.1fs", self.timeout)
            return GenerationError(f"LLM call timed out after {self.timeout}s", retryable=True)
        retryable = isinstance(exc, self._retryable) or isinstance(
            exc, (AttributeError, IndexError, KeyError, TypeError)
        )
        logger.error("❌ [LLM] %s call failed (retryable=%s): %s", self.provider, retryable, exc)
        return GenerationError(str(exc) or exc.__class__.__name__, retryable=retryable)

    # ─────────────────────────────────────────────────────────
    # OpenAI-compatible backend (OpenAI + Grok + Groq)
    # ─────────────────────────────────────────────────────────

    async def _openai_generate(self, messages: List[dict], temperature: float, max_tokens: int) -> str:
        response = await self.openai_client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            stream=False,
        )
        return response.choices[0].message.content or ""

    async def _openai_stream(
        self, messages: List[dict], temperature: float, max_tokens: int
    ) -> AsyncGenerator[str, None]:
        stream = await self.openai_client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            stream=True,
        )
        try:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                content = chunk.choices[0].delta.content
                if content:
                    yield content
        finally:
            await stream.close()

    # ─────────────────────────────────────────────────────────
    # Anthropic backend
    # ─────────────────────────────────────────────────────────

    async def _anthropic_generate(self, messages: List[dict], temperature: float, max_tokens: int) -> str:
        # Anthropic uses 'system' as a top-level param, not a message
        system, turns = self._to_anthropic_messages(messages)
        response = await self.anthropic_client.messages.create(
            model=self.model,
            system=system,
            messages=turns,
            temperature=temperature,
            max_tokens=max_tokens,
        )
        return "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )

    async def _anthropic_stream(
        self, messages: List[dict], temperature: float, max_tokens: int
    ) -> AsyncGenerator[str, None]:
        system, turns = self._to_anthropic_messages(messages)
        async with self.anthropic_client.messages.stream(
            model=self.model,
            system=system,
            messages=turns,
            temperature=temperature,
            max_tokens=max_tokens,
        ) as stream:
            async for text in stream.text_stream:
                yield text

    @staticmethod
    def _to_anthropic_messages(messages: List[dict]):
        """
        Split out the system prompt and make the remaining turns valid for
        Anthropic: first turn from 'user', consecutive same-role turns merged.
        """
        system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
        turns: List[dict] = []
        for m in messages:
            if m["role"] not in ("user", "assistant"):
                continue
            if turns and turns[-1]["role"] == m["role"]:
                turns[-1] = {"role": m["role"], "content": f"{turns[-1]['content']}\n\n{m['content']}"}
            else:
                turns.append({"role": m["role"], "content": m["content"]})
        if not turns or turns[0]["role"] != "user":
            turns.insert(0, {"role": "user", "content": "(continuing conversation)"})
        return system, turns
