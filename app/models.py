"""
Data model for the mentor response pipeline.

Personas, semantic configs and life stories are owned by external stores and
are read-only here. Session memory and generation requests live only for the
duration of the process / a single turn.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Union

PersonaId = Union[int, str]

DEFAULT_USER_CONTEXT = "This person is seeking guidance and wisdom."


@dataclass(frozen=True)
class PersonaIdentity:
    id: PersonaId
    name: str
    core_identity: str = ""
    expertise: str = ""


# ─── Semantic configuration ──────────────────────────────────

@dataclass(frozen=True)
class PromptOverride:
    """A custom prompt that replaces the persona's static identity block."""
    text: str


@dataclass(frozen=True)
class StructuredIdentity:
    """No override: the persona's own identity block is the base."""


IdentitySource = Union[PromptOverride, StructuredIdentity]


def identity_source_from(custom_prompt: Optional[str]) -> IdentitySource:
    if custom_prompt and custom_prompt.strip():
        return PromptOverride(custom_prompt.strip())
    return StructuredIdentity()


@dataclass
class SemanticConfig:
    persona_name: str
    organization_id: Optional[int] = None
    identity_source: IdentitySource = field(default_factory=StructuredIdentity)
    communication_style: str = ""
    decision_making: str = ""
    mentoring: str = ""
    common_phrases: List[str] = field(default_factory=list)
    core_values: List[str] = field(default_factory=list)
    detailed_background: str = ""
    context_awareness_rules: str = ""
    personality_consistency_rules: str = ""
    conversation_flow_patterns: str = ""
    is_active: bool = True

    @classmethod
    def from_record(cls, record: dict) -> "SemanticConfig":
        """Build a config from a camelCase or snake_case storage record."""

        def pick(snake, camel, default=None):
            if snake in record:
                return record[snake]
            return record.get(camel, default)

        return cls(
            persona_name=pick("persona_name", "mentorName", ""),
            organization_id=pick("organization_id", "organizationId"),
            identity_source=identity_source_from(pick("custom_prompt", "customPrompt")),
            communication_style=pick("communication_style", "communicationStyle") or "",
            decision_making=pick("decision_making", "decisionMaking") or "",
            mentoring=pick("mentoring", "mentoring") or "",
            common_phrases=list(pick("common_phrases", "commonPhrases") or []),
            core_values=list(pick("core_values", "coreValues") or []),
            detailed_background=pick("detailed_background", "detailedBackground") or "",
            context_awareness_rules=pick("context_awareness_rules", "contextAwarenessRules") or "",
            personality_consistency_rules=(
                pick("personality_consistency_rules", "personalityConsistencyRules") or ""
            ),
            conversation_flow_patterns=(
                pick("conversation_flow_patterns", "conversationFlowPatterns") or ""
            ),
            is_active=bool(pick("is_active", "isActive", True)),
        )


# ─── Stories & memory ────────────────────────────────────────

@dataclass(frozen=True)
class LifeStory:
    id: int
    persona_id: PersonaId
    category: str
    title: str
    story: str
    lesson: str
    keywords: tuple = ()
    emotional_tone: str = "reflective"
    is_active: bool = True


@dataclass
class SessionMemory:
    """Short-term story memory for one (persona, user) pair."""

    used_story_ids: set = field(default_factory=set)
    recent_emotional_tones: List[str] = field(default_factory=list)
    last_category_used: Optional[str] = None
    max_tones: int = 5

    def record_story(self, story: LifeStory):
        self.used_story_ids.add(story.id)
        self.last_category_used = story.category
        self.recent_emotional_tones.append(story.emotional_tone)
        if len(self.recent_emotional_tones) > self.max_tones:
            del self.recent_emotional_tones[: len(self.recent_emotional_tones) - self.max_tones]


# ─── Conversation & generation ───────────────────────────────

@dataclass(frozen=True)
class ConversationTurn:
    role: str  # "user" | "assistant"
    content: str

    def to_message(self) -> dict:
        return {"role": self.role, "content": self.content}


@dataclass
class GenerationRequest:
    persona: PersonaIdentity
    semantic_config: Optional[SemanticConfig]
    stories: List[LifeStory]
    user_message: str
    history: List[ConversationTurn]
    user_context: str = DEFAULT_USER_CONTEXT

    @property
    def previous_assistant_text(self) -> Optional[str]:
        for turn in reversed(self.history):
            if turn.role == "assistant":
                return turn.content
        return None


@dataclass
class AuditVerdict:
    issues: List[str] = field(default_factory=list)
    rewrite_directive: Optional[str] = None

    @property
    def flagged(self) -> bool:
        return len(self.issues) > 0


@dataclass
class StreamChunk:
    text_delta: str
    is_final: bool = False
    # Set on the final chunk of a caller-facing stream only
    text: Optional[str] = None
    revised: bool = False
