"""
Life Story Ranker

Scores a persona's life stories against the current user message and the
session's story memory, so the prompt gets a short list of anecdotes that
fit the moment and have not been told already in this conversation.
"""

import logging
import re
from typing import List, Optional

from app.config import config
from app.models import LifeStory, SessionMemory

logger = logging.getLogger(__name__)

# Cue words that boost a story category when they appear in the message
CATEGORY_CUES = {
    "parenting": ["child", "kid", "kids", "son", "daughter", "parent", "family"],
    "marriage": ["wife", "husband", "marriage", "relationship", "spouse"],
    "career": ["work", "job", "boss", "career", "business", "office"],
    "spiritual": ["god", "pray", "prayer", "faith", "church", "spiritual"],
    "childhood": ["young", "growing up", "school", "youth", "childhood"],
}

LITERAL_MATCH_SCORE = 1
WORD_MATCH_SCORE = 2
CATEGORY_BOOST = 3
USED_STORY_PENALTY = 100

_WORD_RE = re.compile(r"[a-z0-9']+")


def tokenize(text: str) -> List[str]:
    return _WORD_RE.findall((text or "").lower())


def _has_cue(cue: str, lowered: str, words: set) -> bool:
    if " " in cue:
        return cue in lowered
    return cue in words


def _category_boost(category: str, lowered: str, words: set) -> int:
    tag = (category or "").lower()
    for name, cues in CATEGORY_CUES.items():
        if name in tag and any(_has_cue(c, lowered, words) for c in cues):
            return CATEGORY_BOOST
    return 0


def score_story(story: LifeStory, lowered: str, words: List[str], memory: SessionMemory) -> int:
    score = 0
    for keyword in story.keywords:
        kw = keyword.strip().lower()
        if not kw:
            continue
        if kw in lowered:
            score += LITERAL_MATCH_SCORE
        if any(kw in w for w in words):
            score += WORD_MATCH_SCORE

    score += _category_boost(story.category, lowered, set(words))

    if story.id in memory.used_story_ids:
        score -= USED_STORY_PENALTY
    return score


def rank_stories(
    user_message: str,
    stories: List[LifeStory],
    memory: SessionMemory,
    limit: Optional[int] = None,
) -> List[LifeStory]:
    """
    Return up to *limit* stories ordered by relevance (highest first).

    Stories scoring zero or less are dropped, so a story already told in
    this session only comes back if it still outscores the repeat penalty.
    Ties keep their library order.
    """
    if limit is None:
        limit = config["mentor"]["story_limit"]
    if not stories or limit <= 0:
        return []

    lowered = (user_message or "").lower()
    words = tokenize(user_message)

    scored = []
    for story in stories:
        score = score_story(story, lowered, words, memory)
        if score > 0:
            scored.append((score, story))

    scored.sort(key=lambda pair: pair[0], reverse=True)
    ranked = [story for _, story in scored[:limit]]

    logger.info(
        "📚 [Ranker] %d/%d stories matched, returning %d",
        len(scored), len(stories), len(ranked),
    )
    return ranked


def find_referenced_stories(reply: str, stories: List[LifeStory]) -> List[LifeStory]:
    """
    Stories the reply actually drew on: the title appears in the reply, or
    at least two of the story's keywords appear as words in it.
    """
    lowered = (reply or "").lower()
    words = set(tokenize(reply))
    referenced = []
    for story in stories:
        if story.title and story.title.lower() in lowered:
            referenced.append(story)
            continue
        hits = sum(1 for kw in story.keywords if kw.strip().lower() in words)
        if hits >= 2:
            referenced.append(story)
    return referenced
