"""
Response Quality Audit

Rule-based checks that catch replies sounding like a generic assistant
instead of the mentor: clichés, therapist phrasing, preachy length, vague
question endings, ignored emotions. No model calls; the verdict carries a
rewrite directive the orchestrator feeds to the next attempt.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from app.models import AuditVerdict

logger = logging.getLogger(__name__)


class AuditIssue(str, Enum):
    REPEAT = "Repeat response"
    CLICHE = "Generic or cliché language"
    MISSED_EMOTION = "Missed emotional resonance"
    MISSED_CONNECTION = "Missed personal connection"
    TOO_LONG = "Response is too long"
    TOO_MANY_SENTENCES = "Too many sentences (sounds preachy)"
    COUNSELOR = "Sounds like a counselor"
    VAGUE_QUESTION = "Vague response ending with question"


MAX_WORDS = 80
MAX_SENTENCES = 5
SHORT_REPLY_WORDS = 15
VAGUE_QUESTION_CHARS = 80

CLICHE_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"life['’]?s (a journey|full of lessons)",
        r"everything happens for a reason",
        r"just be present",
        r"you are enough",
        r"god has a plan",
        r"stay strong",
        r"time heals (all )?wounds",
        r"it is what it is",
        r"follow your heart",
        r"one day at a time",
    )
]

COUNSELOR_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"how does (that|this) make you feel",
        r"let['’]?s unpack (that|this)",
        r"it sounds like you['’]?re",
        r"i hear you saying",
        r"hold space",
        r"your feelings are valid",
        r"validate your",
    )
]

EMOTIONAL_DISCLOSURE = re.compile(
    r"\bI feel\b|\bI['’]m struggling\b|\bI['’]m afraid\b|\bsometimes I think\b",
    re.IGNORECASE,
)
EMOTION_VOCABULARY = re.compile(
    r"\bfeel\b|\bfelt\b|\bemotion\b|\bstruggle\b|\bheavy\b|\bsilent\b|\bhard\b",
    re.IGNORECASE,
)
DEEP_SHARING = re.compile(
    r"\b(loss|lost|losing|fear|afraid|scared|grief|died|passed away|alone|why|how do i)\b",
    re.IGNORECASE,
)
NARRATIVE_MARKER = re.compile(
    r"\b(I remember|There was a time|Once,|One time|When I|I used to|"
    r"My (wife|husband|kid|kids|son|daughter|father|mother|dad|mom|family))",
    re.IGNORECASE,
)
SENTENCE_END = re.compile(r"[.!?]+")


@dataclass
class AuditContext:
    user_message: str = ""
    previous_assistant_text: Optional[str] = None
    persona_name: str = "the mentor"


def word_count(text: str) -> int:
    return len(text.split())


def _collect_issues(reply: str, context: AuditContext) -> List[AuditIssue]:
    issues = []
    trimmed = reply.strip()

    previous = (context.previous_assistant_text or "").strip()
    if previous and trimmed == previous:
        issues.append(AuditIssue.REPEAT)

    if any(p.search(reply) for p in CLICHE_PATTERNS):
        issues.append(AuditIssue.CLICHE)

    user_message = context.user_message or ""
    if EMOTIONAL_DISCLOSURE.search(user_message) and not EMOTION_VOCABULARY.search(reply):
        issues.append(AuditIssue.MISSED_EMOTION)

    words = word_count(trimmed)
    if (
        DEEP_SHARING.search(user_message)
        and not NARRATIVE_MARKER.search(reply)
        and words < SHORT_REPLY_WORDS
    ):
        issues.append(AuditIssue.MISSED_CONNECTION)

    if words > MAX_WORDS:
        issues.append(AuditIssue.TOO_LONG)

    if len(SENTENCE_END.findall(trimmed)) > MAX_SENTENCES:
        issues.append(AuditIssue.TOO_MANY_SENTENCES)

    if any(p.search(reply) for p in COUNSELOR_PATTERNS):
        issues.append(AuditIssue.COUNSELOR)

    if len(trimmed) < VAGUE_QUESTION_CHARS and trimmed.endswith("?"):
        issues.append(AuditIssue.VAGUE_QUESTION)

    return issues


def _avoid_hints(issues: List[AuditIssue]) -> List[str]:
    hints = {
        AuditIssue.REPEAT: "repeating what you already said",
        AuditIssue.CLICHE: "greeting-card clichés",
        AuditIssue.MISSED_EMOTION: "skipping past what they said they feel",
        AuditIssue.TOO_LONG: "long explanations",
        AuditIssue.TOO_MANY_SENTENCES: "preaching",
        AuditIssue.COUNSELOR: "therapist phrases",
        AuditIssue.MISSED_CONNECTION: "detached one-liners",
        AuditIssue.VAGUE_QUESTION: "vague questions",
    }
    return [hints[i] for i in issues if i in hints]


def build_rewrite_directive(issues: List[AuditIssue], persona_name: str) -> Optional[str]:
    if not issues:
        return None

    if AuditIssue.VAGUE_QUESTION in issues:
        return (
            f"You are {persona_name}. Your last reply ended on a vague question that "
            "gives the person nothing to hold onto.\n\n"
            "REWRITE it:\n"
            "- Say something concrete about their situation first\n"
            "- Either ask ONE specific question tied to what they said, or ask nothing\n"
            "- Keep it to 2-3 sentences, in your own voice"
        )

    if AuditIssue.MISSED_CONNECTION in issues:
        return (
            f"You are {persona_name}. The person shared something personal and your "
            "reply stayed at arm's length.\n\n"
            "REWRITE it:\n"
            '- Open with a brief memory of your own ("I remember when..." or '
            '"There was a time...")\n'
            "- Tie that memory directly to what they told you\n"
            "- Keep it to 2-4 sentences, plain and honest"
        )

    names = ", ".join(i.value for i in issues)
    avoid = ", ".join(_avoid_hints(issues))
    return (
        f"Your last response was flagged for: {names}.\n\n"
        f"REWRITE as {persona_name}:\n"
        "- Speak from your own lived experience, like a real person\n"
        f"- Avoid {avoid}\n"
        "- Keep it concise: 2-3 sentences\n"
        "- Ask at most ONE simple, specific follow-up question"
    )


def run_audit(reply: str, context: AuditContext) -> AuditVerdict:
    """
    Audit a generated reply. Never raises: if a check blows up on odd
    input the reply is treated as clean.
    """
    try:
        issues = _collect_issues(reply or "", context)
        directive = build_rewrite_directive(issues, context.persona_name)
    except Exception as e:
        logger.error("❌ [Audit] Audit failed, treating reply as clean: %s", e)
        return AuditVerdict()

    if issues:
        logger.info("🔎 [Audit] Flagged: %s", ", ".join(i.value for i in issues))
    else:
        logger.info("🔎 [Audit] Reply passed")
    return AuditVerdict(issues=list(issues), rewrite_directive=directive)
