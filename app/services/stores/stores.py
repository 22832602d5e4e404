"""
Config & Story Stores

Interfaces for the persistence collaborators the pipeline reads from, plus
in-memory implementations seeded from a JSON file. A real deployment swaps
these for database-backed stores with the same methods.

Store implementations raise ConfigLoadError when they cannot serve a read;
the mentor service degrades instead of failing the turn.
"""

import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from app.errors import ConfigLoadError
from app.models import LifeStory, PersonaId, PersonaIdentity, SemanticConfig

logger = logging.getLogger(__name__)


class ConfigStore:
    async def get_semantic_config(
        self, persona_name: str, organization_id: Optional[int] = None
    ) -> Optional[SemanticConfig]:
        raise NotImplementedError

    async def get_persona_identity(self, persona_id: PersonaId) -> PersonaIdentity:
        raise NotImplementedError


class StoryStore:
    async def get_life_stories(self, persona_id: PersonaId) -> List[LifeStory]:
        raise NotImplementedError


class InMemoryConfigStore(ConfigStore):
    """Personas by id; at most one active semantic config per (persona, org)."""

    def __init__(
        self,
        personas: Iterable[PersonaIdentity] = (),
        configs: Iterable[SemanticConfig] = (),
    ):
        self._personas: Dict[str, PersonaIdentity] = {}
        self._configs: Dict[Tuple[str, Optional[int]], SemanticConfig] = {}
        for persona in personas:
            self.add_persona(persona)
        for cfg in configs:
            self.add_semantic_config(cfg)

    def add_persona(self, persona: PersonaIdentity):
        self._personas[str(persona.id)] = persona

    def add_semantic_config(self, cfg: SemanticConfig):
        """Store *cfg*; an active config replaces any active one for the same key."""
        if not cfg.is_active:
            return
        key = (cfg.persona_name, cfg.organization_id)
        if key in self._configs:
            logger.info(
                "🔁 [Store] Replacing active config for %s (org=%s)", *key,
            )
        self._configs[key] = cfg

    async def get_semantic_config(self, persona_name, organization_id=None):
        # Organization-specific first, then the global fallback
        if organization_id is not None:
            cfg = self._configs.get((persona_name, organization_id))
            if cfg is not None:
                return cfg
        return self._configs.get((persona_name, None))

    async def get_persona_identity(self, persona_id):
        persona = self._personas.get(str(persona_id))
        if persona is None:
            raise ConfigLoadError(f"Unknown persona: {persona_id}")
        return persona


class InMemoryStoryStore(StoryStore):
    def __init__(self, stories: Iterable[LifeStory] = ()):
        self._stories: List[LifeStory] = list(stories)

    def add_story(self, story: LifeStory):
        self._stories.append(story)

    async def get_life_stories(self, persona_id):
        return [
            s for s in self._stories
            if str(s.persona_id) == str(persona_id) and s.is_active
        ]


# ─── JSON seed loading ───────────────────────────────────────

def _story_from_record(persona_id, record: dict) -> LifeStory:
    return LifeStory(
        id=record["id"],
        persona_id=persona_id,
        category=record.get("category", ""),
        title=record.get("title", ""),
        story=record.get("story", ""),
        lesson=record.get("lesson", ""),
        keywords=tuple(record.get("keywords") or ()),
        emotional_tone=record.get("emotionalTone") or record.get("emotional_tone") or "reflective",
        is_active=record.get("isActive", record.get("is_active", True)),
    )


def load_stores(path) -> Tuple[InMemoryConfigStore, InMemoryStoryStore]:
    """
    Build both stores from a JSON seed file of the form
    ``{"mentors": [{"id", "name", "coreIdentity", "expertise",
    "semanticConfigs": [...], "lifeStories": [...]}]}``.
    """
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise ConfigLoadError(f"Could not load mentor data from {path}: {e}") from e

    config_store = InMemoryConfigStore()
    story_store = InMemoryStoryStore()

    for mentor in data.get("mentors", []):
        persona = PersonaIdentity(
            id=mentor["id"],
            name=mentor["name"],
            core_identity=mentor.get("coreIdentity", ""),
            expertise=mentor.get("expertise", ""),
        )
        config_store.add_persona(persona)
        for record in mentor.get("semanticConfigs", []):
            config_store.add_semantic_config(
                SemanticConfig.from_record({"mentorName": persona.name, **record})
            )
        for record in mentor.get("lifeStories", []):
            story_store.add_story(_story_from_record(persona.id, record))

    logger.info("✅ [Store] Loaded %d mentors from %s", len(data.get("mentors", [])), path.name)
    return config_store, story_store
