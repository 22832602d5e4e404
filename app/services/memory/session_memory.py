"""
Session Memory Store

Holds the short-term story memory for every (persona, user) pair that has
talked recently. Entries are created lazily on first use, never persisted,
and evicted least-recently-used once the store is full.

Access to one key is serialized with its own asyncio.Lock, so a rapid
double-submit cannot interleave two turns over the same used-story set,
while different keys proceed in parallel.
"""

import asyncio
import logging
from collections import OrderedDict
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Tuple

from app.config import config
from app.models import PersonaId, SessionMemory

logger = logging.getLogger(__name__)

SessionKey = Tuple[str, str]


def session_key(persona_id: PersonaId, user_id=None) -> SessionKey:
    return (str(persona_id), str(user_id) if user_id is not None else "anonymous")


class _Entry:
    __slots__ = ("memory", "lock")

    def __init__(self, max_tones: int):
        self.memory = SessionMemory(max_tones=max_tones)
        self.lock = asyncio.Lock()


class SessionMemoryStore:
    def __init__(self, max_sessions: Optional[int] = None, max_tones: Optional[int] = None):
        mem_cfg = config["memory"]
        self.max_sessions = max_sessions if max_sessions is not None else mem_cfg["max_sessions"]
        self.max_tones = max_tones if max_tones is not None else mem_cfg["max_tones"]
        self._entries: "OrderedDict[SessionKey, _Entry]" = OrderedDict()

    def _get_or_create(self, key: SessionKey) -> _Entry:
        entry = self._entries.get(key)
        if entry is None:
            entry = _Entry(self.max_tones)
            self._entries[key] = entry
            logger.info("📝 [Memory] Session memory created: %s/%s", *key)
            self._evict(keep=key)
        else:
            self._entries.move_to_end(key)
        return entry

    def _evict(self, keep: SessionKey):
        overflow = len(self._entries) - self.max_sessions
        if overflow <= 0:
            return
        for key in list(self._entries):
            if overflow <= 0:
                break
            if key == keep or self._entries[key].lock.locked():
                continue
            del self._entries[key]
            overflow -= 1
            logger.info("🗑️ [Memory] Evicted session memory: %s/%s", *key)

    @asynccontextmanager
    async def session(self, persona_id: PersonaId, user_id=None) -> AsyncIterator[SessionMemory]:
        """Exclusive access to one key's memory for the duration of a turn."""
        entry = self._get_or_create(session_key(persona_id, user_id))
        async with entry.lock:
            yield entry.memory

    def peek(self, persona_id: PersonaId, user_id=None) -> Optional[SessionMemory]:
        entry = self._entries.get(session_key(persona_id, user_id))
        return entry.memory if entry else None

    def evict(self, persona_id: PersonaId, user_id=None):
        key = session_key(persona_id, user_id)
        if self._entries.pop(key, None) is not None:
            logger.info("🗑️ [Memory] Session memory cleared: %s/%s", *key)

    def __len__(self):
        return len(self._entries)
