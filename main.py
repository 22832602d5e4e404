"""
Mentor Chat — Main Application

Serves mentor personas over a WebSocket and streams their replies:

  Client → WebSocket → MentorService (stories + prompt + LLM + audit)
                                           ↓
  Client ← WebSocket ← delta events … final response
"""

import asyncio
import json
import logging
import signal
from typing import Optional

import websockets

from app.config import config, validate_config
from app.services.llm.provider import LLMProvider
from app.services.memory.conversation_memory import ConversationMemory
from app.services.memory.session_memory import SessionMemoryStore
from app.services.mentor.mentor_service import MentorService
from app.services.stores.stores import load_stores
from app.ws.ws_handler import WebSocketHandler

# ─── Logging Setup ───────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)

# ─── Global Services ─────────────────────────────────────────
ws_handler: WebSocketHandler = None  # type: ignore
mentor: MentorService = None  # type: ignore
conversations: ConversationMemory = None  # type: ignore


# ──────────────────────────────────────────────────────────────
# Connection handler
# ──────────────────────────────────────────────────────────────

async def handle_new_connection(ws, session_id: str):
    """
    Handle a new WebSocket client connection. Each chat message runs as its
    own task so a disconnect can cancel the in-flight reply.
    """
    logger.info("🆕 [App] New session: %s", session_id)
    conversations.create_session(session_id)
    current: Optional[asyncio.Task] = None

    def cancel_current():
        if current and not current.done():
            logger.info("⏹️ [App] Cancelling in-flight reply for %s", session_id)
            current.cancel()

    try:
        async for raw_message in ws:
            try:
                msg = json.loads(raw_message)
            except (json.JSONDecodeError, TypeError):
                logger.error("❌ [WS] Invalid JSON message")
                await ws_handler.send_error(ws, "Messages must be JSON.")
                continue

            msg_type = msg.get("type")
            if msg_type == "chat":
                if current and not current.done():
                    await ws_handler.send_error(ws, "Still answering your last message.")
                    continue
                current = asyncio.create_task(process_user_message(ws, session_id, msg))
            elif msg_type == "clear":
                logger.info("🗑️ [App] Clearing history: %s", session_id)
                cancel_current()
                conversations.clear_session(session_id)
                conversations.create_session(session_id)
            elif msg_type == "end":
                logger.info("🛑 [App] Session ending: %s", session_id)
                break
            else:
                logger.info("📨 [App] Unknown message type: %s", msg_type)

    except websockets.exceptions.ConnectionClosed:
        pass
    finally:
        cancel_current()
        conversations.clear_session(session_id)
        ws_handler.forget(ws)
        logger.info("🧹 [App] Cleaned up session: %s", session_id)


# ──────────────────────────────────────────────────────────────
# Process user message
# ──────────────────────────────────────────────────────────────

async def process_user_message(ws, session_id: str, msg: dict):
    """
    Run one chat turn:
      1. Stream the draft to the client as delta events
      2. Send the final (possibly revised) reply
      3. Record both sides in the conversation history
    """
    user_message = (msg.get("message") or "").strip()
    persona_id = msg.get("personaId")
    if not user_message or persona_id is None:
        await ws_handler.send_error(ws, "A chat message needs 'personaId' and 'message'.")
        return

    history = conversations.get_history(session_id)
    await ws_handler.send_thinking(ws)

    reply = ""
    revised = False
    try:
        async for chunk in mentor.respond_stream(
            persona_id,
            user_message,
            history,
            organization_id=msg.get("organizationId"),
            user_context=msg.get("userContext"),
            user_id=msg.get("userId"),
        ):
            if chunk.is_final:
                reply, revised = chunk.text, chunk.revised
            elif chunk.text_delta:
                await ws_handler.send_delta(ws, chunk.text_delta)
    except Exception as e:
        logger.exception("❌ [App] Turn failed for %s: %s", session_id, e)
        await ws_handler.send_error(ws, "Something went wrong answering that. Please try again.")
        return

    conversations.add_turn(session_id, "user", user_message)
    conversations.add_turn(session_id, "assistant", reply)
    await ws_handler.send_response(ws, reply, revised=revised)
    logger.info("🤖 [Mentor] %s", reply)


# ──────────────────────────────────────────────────────────────
# Main
# ──────────────────────────────────────────────────────────────

async def main():
    global ws_handler, mentor, conversations

    print()
    print("╔══════════════════════════════════════╗")
    print("║       🧭  Mentor Chat Starting       ║")
    print("╚══════════════════════════════════════╝")
    print()

    # 1. Validate configuration
    validate_config()

    # 2. Initialize services
    config_store, story_store = load_stores(config["data_path"])
    mentor = MentorService(
        config_store,
        story_store,
        LLMProvider(),
        memory_store=SessionMemoryStore(),
    )
    conversations = ConversationMemory()
    ws_handler = WebSocketHandler()
    logger.info("✅ All services initialized")

    # 3. Start WebSocket server
    await ws_handler.initialize(handle_new_connection)

    print()
    print("📋 Configuration:")
    print(f"   LLM: {config['llm']['provider'].upper()} ({config['llm']['model']})")
    print(f"   Stories per turn: {config['mentor']['story_limit']}")
    print(f"   Max LLM calls per turn: {config['mentor']['max_llm_calls']}")
    print(f"   WebSocket: ws://localhost:{config['ws_port']}")
    print()
    print("💬 Waiting for client connections...")

    stop = asyncio.Event()

    def _shutdown():
        logger.info("🛑 Shutting down gracefully...")
        stop.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _shutdown)
        except NotImplementedError:
            # Windows: rely on KeyboardInterrupt from asyncio.run
            break

    await stop.wait()
    await ws_handler.close()
    logger.info("👋 Goodbye!")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\n👋 Goodbye!")
