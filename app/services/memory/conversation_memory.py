"""
Conversation Memory Service

Keeps the chat history for each connected client (one per WebSocket
session) so the transport can hand the pipeline its recent turns.
Uses a sliding window to keep memory bounded.
"""

import logging
import time
from typing import Dict, List

from app.config import config
from app.models import ConversationTurn

logger = logging.getLogger(__name__)


class ConversationMemory:
    def __init__(self, max_messages: int = None):
        # sessionId -> { turns, created_at }
        self.sessions: Dict[str, dict] = {}
        self.max_messages = max_messages if max_messages is not None else config["memory"]["max_messages"]

    def create_session(self, session_id: str):
        """Initialize a new session."""
        self.sessions[session_id] = {"turns": [], "created_at": time.time()}
        logger.info("📝 [Memory] Conversation created: %s", session_id)

    def add_turn(self, session_id: str, role: str, content: str):
        """Append a turn, dropping the oldest ones beyond the window."""
        session = self.sessions.get(session_id)
        if session is None:
            logger.warning("⚠️ [Memory] Session not found: %s", session_id)
            return
        session["turns"].append(ConversationTurn(role=role, content=content))
        if len(session["turns"]) > self.max_messages:
            removed = len(session["turns"]) - self.max_messages
            session["turns"] = session["turns"][removed:]
            logger.info("📝 [Memory] Sliding window: removed %d old turns", removed)

    def get_history(self, session_id: str) -> List[ConversationTurn]:
        session = self.sessions.get(session_id)
        return list(session["turns"]) if session else []

    def get_message_count(self, session_id: str) -> int:
        session = self.sessions.get(session_id)
        return len(session["turns"]) if session else 0

    def clear_session(self, session_id: str):
        if session_id in self.sessions:
            del self.sessions[session_id]
            logger.info("🗑️ [Memory] Conversation cleared: %s", session_id)
