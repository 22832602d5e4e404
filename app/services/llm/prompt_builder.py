"""
Mentor System Prompt Builder

Layers a mentor's identity, semantic configuration, matched life stories
and user context into the system message sent with every LLM request.

Precedence:
  1. Custom prompt override (if the config carries one)
  2. The persona's static identity block
  3. A generic template built from name + expertise

Dynamic sections are only added when the base block does not already
mention them. The check is a plain case-sensitive text search, so a custom
prompt that happens to use a marker word (e.g. "mentoring") suppresses that
section even if it never actually describes it.
"""

from typing import List, Optional

from app.models import (
    DEFAULT_USER_CONTEXT,
    LifeStory,
    PersonaIdentity,
    PromptOverride,
    SemanticConfig,
)

# Applied to every mentor, whatever their configuration
UNIVERSAL_CONVERSATION_RULES = """CONVERSATION FLOW:
- Answer briefly, then ask one follow-up question or check if the user wants more detail.
- Do not write essays in a single reply.
- Keep a back-and-forth rhythm, like a real conversation.

STORYTELLING RULES:
- Only share a personal story if:
    • The user shares a personal struggle, frustration, fear, or significant challenge
    • OR the user explicitly asks about your personal experience
- Do NOT add a story for purely factual, technical, or tactical questions.
- Keep stories to 2-4 sentences.
- If you share a story, connect it clearly to the user's situation and say what you learned.
- If no story fits, simply answer with practical guidance."""

SEMANTIC_PREAMBLE = (
    "Below is your semantic configuration and context. "
    "Use this information to inform your responses when relevant:"
)

NO_STORY_NOTE = (
    "NOTE: None of your recorded life experiences fit this message. "
    "Answer directly and do not make up a personal story."
)


def generic_identity(persona: PersonaIdentity) -> str:
    expertise = f" Your area of expertise is {persona.expertise}." if persona.expertise else ""
    return (
        f"You are {persona.name}, an AI mentor.{expertise} "
        "Provide thoughtful guidance based on your expertise and experience."
    )


def base_block(persona: PersonaIdentity, semantic_config: Optional[SemanticConfig]) -> str:
    if semantic_config is not None and isinstance(semantic_config.identity_source, PromptOverride):
        return semantic_config.identity_source.text
    if persona.core_identity and persona.core_identity.strip():
        return persona.core_identity.strip()
    return generic_identity(persona)


def _bullets(items: List[str]) -> str:
    return "\n".join(f"- {item}" for item in items)


def _mentions(base: str, *markers: str) -> bool:
    return any(m in base for m in markers)


def semantic_sections(base: str, cfg: SemanticConfig) -> List[str]:
    """Configured sections not already covered by the base block, in fixed order."""
    sections = []

    if cfg.communication_style and not _mentions(base, cfg.communication_style):
        sections.append(f"COMMUNICATION STYLE:\n{cfg.communication_style}")

    if cfg.mentoring and not _mentions(base, "MENTORING", "mentoring"):
        sections.append(f"MENTORING APPROACH:\n{cfg.mentoring}")

    if cfg.decision_making and not _mentions(base, "DECISION", "decision"):
        sections.append(f"DECISION-MAKING STYLE:\n{cfg.decision_making}")

    if cfg.core_values and not _mentions(base, "CORE VALUES"):
        sections.append(f"CORE VALUES:\n{_bullets(cfg.core_values)}")

    if cfg.common_phrases and not _mentions(base, "SIGNATURE PHRASES"):
        sections.append(
            "SIGNATURE PHRASES (use naturally, sparingly):\n"
            f"{_bullets(cfg.common_phrases)}"
        )

    if cfg.detailed_background and not _mentions(base, "BACKGROUND", "background"):
        sections.append(f"BACKGROUND:\n{cfg.detailed_background}")

    if cfg.context_awareness_rules and not _mentions(base, "CONTEXT AWARENESS"):
        sections.append(f"CONTEXT AWARENESS RULES:\n{cfg.context_awareness_rules}")

    if cfg.personality_consistency_rules and not _mentions(base, "PERSONALITY CONSISTENCY"):
        sections.append(f"PERSONALITY CONSISTENCY RULES:\n{cfg.personality_consistency_rules}")

    if cfg.conversation_flow_patterns and not _mentions(base, "CONVERSATION FLOW PATTERNS"):
        sections.append(f"CONVERSATION FLOW PATTERNS:\n{cfg.conversation_flow_patterns}")

    return sections


def stories_section(stories: List[LifeStory]) -> str:
    lines = [
        "RELEVANT LIFE EXPERIENCES TO DRAW FROM "
        "(use these; do not invent new details of your life):"
    ]
    for story in stories:
        keywords = ", ".join(story.keywords) if story.keywords else "none"
        lines.append(
            f'\n• "{story.title}": {story.story}\n'
            f"  Lesson: {story.lesson}\n"
            f"  Keywords: {keywords}"
        )
    return "\n".join(lines)


def build_system_prompt(
    persona: PersonaIdentity,
    semantic_config: Optional[SemanticConfig],
    stories: List[LifeStory],
    user_message: str = "",
    user_context: Optional[str] = None,
) -> str:
    """
    Compose the system prompt for one turn. Pure and deterministic: the
    same inputs always produce the same text.
    """
    base = base_block(persona, semantic_config)

    dynamic = []
    if semantic_config is not None:
        dynamic.extend(semantic_sections(base, semantic_config))

    if stories:
        dynamic.append(stories_section(stories))
    else:
        dynamic.append(NO_STORY_NOTE)

    if user_context and user_context.strip() and user_context != DEFAULT_USER_CONTEXT:
        dynamic.append(f"USER CONTEXT:\n{user_context.strip()}")

    parts = [base, UNIVERSAL_CONVERSATION_RULES, SEMANTIC_PREAMBLE, *dynamic]
    return "\n\n".join(parts).strip()
