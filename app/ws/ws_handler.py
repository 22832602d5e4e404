"""
WebSocket Handler

Serves the mentor chat over WebSocket: accepts clients, tags each one with
a chat session id and frames every server → client event as JSON.

Communication protocol (JSON text frames):
  Client → Server:
    - { type: 'chat', personaId, message, organizationId?, userId?, userContext? }
    - { type: 'clear' }  reset this connection's history
    - { type: 'end' }    close the session

  Server → Client:
    - connected / thinking / delta / response / error
"""

import asyncio
import json
import logging
import re
import time
import uuid
from typing import Awaitable, Callable, Dict, List, Optional

import websockets
from websockets.server import WebSocketServerProtocol

from app.config import config

logger = logging.getLogger(__name__)

MAX_CHUNK_CHARS = 300
_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")

ChatHandler = Callable[[WebSocketServerProtocol, str], Awaitable[None]]


def chunk_response(text: str, max_chars: int = MAX_CHUNK_CHARS) -> List[str]:
    """Split a reply into chat-sized chunks along paragraph boundaries."""
    paragraphs = [p.strip() for p in _PARAGRAPH_BREAK.split(text or "") if p.strip()]
    chunks: List[str] = []
    current = ""
    for paragraph in paragraphs:
        if current and len(current) + 1 + len(paragraph) > max_chars:
            chunks.append(current)
            current = ""
        current = f"{current} {paragraph}" if current else paragraph
    if current:
        chunks.append(current)
    return chunks


class WebSocketHandler:
    def __init__(self):
        self.server = None
        # ws -> { session_id, connected_at }
        self.sessions: Dict[WebSocketServerProtocol, dict] = {}
        self._chat_handler: Optional[ChatHandler] = None

    async def initialize(self, chat_handler: ChatHandler):
        """
        Start listening for chat clients.

        Args:
            chat_handler: Coroutine (ws, session_id) that runs a client's
                chat loop until it disconnects.
        """
        self._chat_handler = chat_handler
        port = config["ws_port"]
        self.server = await websockets.serve(
            self._accept, "0.0.0.0", port, ping_interval=30, ping_timeout=10,
        )
        logger.info("✅ [WS] Mentor chat listening on ws://localhost:%d", port)

    async def _accept(self, ws: WebSocketServerProtocol, path: str = "/"):
        session_id = uuid.uuid4().hex
        self.sessions[ws] = {"session_id": session_id, "connected_at": time.time()}
        peer = ws.remote_address[0] if ws.remote_address else "unknown"
        logger.info("🔌 [WS] Chat client %s joined from %s", session_id, peer)

        await self.emit(ws, "connected", sessionId=session_id, message="Connected to mentor chat")
        if self._chat_handler is not None:
            await self._chat_handler(ws, session_id)

    # ─── Events ──────────────────────────────────────────────

    async def emit(self, ws: WebSocketServerProtocol, event: str, **fields):
        """Send one JSON event; a client that already left is skipped."""
        try:
            await ws.send(json.dumps({"type": event, **fields}))
        except websockets.exceptions.ConnectionClosed:
            logger.debug("[WS] Dropped %s event for closed client", event)

    async def send_thinking(self, ws):
        await self.emit(ws, "thinking")

    async def send_delta(self, ws, text: str):
        await self.emit(ws, "delta", text=text)

    async def send_response(self, ws, text: str, revised: bool = False):
        await self.emit(ws, "response", text=text, revised=revised, chunks=chunk_response(text))

    async def send_error(self, ws, message: str):
        await self.emit(ws, "error", message=message)

    # ─── Lifecycle ───────────────────────────────────────────

    def forget(self, ws):
        info = self.sessions.pop(ws, None)
        if info:
            logger.info(
                "👋 [WS] Chat client %s left after %ds",
                info["session_id"], int(time.time() - info["connected_at"]),
            )

    async def close(self):
        """Disconnect every chat client, then stop the server."""
        results = await asyncio.gather(
            *(ws.close(1001, "Mentor chat shutting down") for ws in self.sessions),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                logger.warning("⚠️ [WS] Error closing client: %s", result)
        self.sessions.clear()

        if self.server is not None:
            self.server.close()
            await self.server.wait_closed()
            self.server = None
            logger.info("🔌 [WS] Mentor chat server stopped")
