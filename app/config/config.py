"""
Central configuration for the mentor persona service.
Loads settings from environment variables and defines defaults for the
LLM providers, the response pipeline and the demo WebSocket server.
Supports multiple LLM providers: OpenAI, Grok (X.AI), Groq, and Anthropic.
"""

import os
import sys
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Determine LLM provider from env (openai | grok | groq | anthropic)
_llm_provider = os.getenv("LLM_PROVIDER", "openai").lower()

# Provider-specific model defaults
_MODEL_DEFAULTS = {
    "openai": "gpt-4o",
    "grok": "grok-3",
    "groq": "llama-3.3-70b-versatile",
    "anthropic": "claude-sonnet-4-20250514",
}

_BASE_URL_DEFAULTS = {
    "openai": None,
    "grok": "https://api.x.ai/v1",
    "groq": "https://api.groq.com/openai/v1",
    "anthropic": None,  # Anthropic SDK uses its own base URL
}

_DEFAULT_DATA_PATH = Path(__file__).resolve().parents[1] / "data" / "mentors.json"

config = {
    # ─── API KEYS ──────────────────────────────────────────────
    "openai_api_key": os.getenv("OPENAI_API_KEY", ""),
    "grok_api_key": os.getenv("GROK_API_KEY", ""),
    "groq_api_key": os.getenv("GROQ_API_KEY", ""),
    "anthropic_api_key": os.getenv("ANTHROPIC_API_KEY", ""),

    # ─── SERVER CONFIG ─────────────────────────────────────────
    "ws_port": int(os.getenv("WS_PORT", "8080")),
    "data_path": os.getenv("MENTOR_DATA_PATH", str(_DEFAULT_DATA_PATH)),

    # ─── LLM SETTINGS (multi-provider) ────────────────────────
    "llm": {
        "provider": _llm_provider,
        "model": os.getenv("LLM_MODEL", _MODEL_DEFAULTS.get(_llm_provider, "gpt-4o")),
        "base_url": os.getenv("LLM_BASE_URL", _BASE_URL_DEFAULTS.get(_llm_provider)),
        "temperature": float(os.getenv("LLM_TEMPERATURE", "0.8")),
        "max_tokens": int(os.getenv("LLM_MAX_TOKENS", "1000")),
        "timeout_sec": float(os.getenv("LLM_TIMEOUT_SEC", "30")),
    },

    # ─── RESPONSE PIPELINE SETTINGS ───────────────────────────
    "mentor": {
        "history_window": 10,
        "story_limit": int(os.getenv("MENTOR_STORY_LIMIT", "5")),
        "max_llm_calls": 3,
        "rewrite_temperature": 0.9,
        "rewrite_max_tokens": 400,
        "escalation_temperature": 0.9,
        "escalation_max_tokens": 120,
    },

    # ─── SESSION MEMORY SETTINGS ──────────────────────────────
    "memory": {
        "max_sessions": int(os.getenv("SESSION_MEMORY_MAX", "1000")),
        "max_tones": 5,
        "max_messages": 20,
    },
}

# Map provider → config key for the API key
_PROVIDER_KEY_MAP = {
    "openai": "openai_api_key",
    "grok": "grok_api_key",
    "groq": "groq_api_key",
    "anthropic": "anthropic_api_key",
}


def api_key_for(provider: str) -> str:
    """Return the configured API key for *provider* (empty if unset)."""
    key_name = _PROVIDER_KEY_MAP.get(provider)
    return config.get(key_name, "") if key_name else ""


def validate_config():
    """Validate that the API key for the selected LLM provider is present."""
    provider = config["llm"]["provider"]
    if provider not in _PROVIDER_KEY_MAP:
        print(f"❌ Unsupported LLM provider: {provider}")
        sys.exit(1)

    if not api_key_for(provider):
        env_var = _PROVIDER_KEY_MAP[provider].upper()
        print(f"❌ Missing required API key: {env_var}")
        print(f"   LLM provider: {provider}")
        print("   Create a .env file with this key.")
        sys.exit(1)

    print(f"✅ Configuration validated (LLM provider: {provider})")
