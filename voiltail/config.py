"""Configuration for Voiltail."""

import os

from dotenv import load_dotenv

load_dotenv()

# Provider credentials. Read through get_api_key() so a reload or an
# environment override is picked up without restarting.
PROVIDER_KEY_NAMES = {
    "gemini": "GOOGLE_API_KEY",
    "openai": "OPENAI_API_KEY",
    "claude": "ANTHROPIC_API_KEY",
}

# Base data directory - configurable via environment
DATA_BASE_DIR = os.getenv("VOILTAIL_DATA_DIR", "data")

# Provider models
OPENAI_MODEL = os.getenv("VOILTAIL_OPENAI_MODEL", "gpt-4o")
GEMINI_MODEL = os.getenv("VOILTAIL_GEMINI_MODEL", "gemini-1.5-flash")
CLAUDE_MODEL = os.getenv("VOILTAIL_CLAUDE_MODEL", "claude-sonnet-4-20250514")
PROVIDER_MAX_TOKENS = 4000

# Synthesis and embedding models (both served by OpenAI)
SYNTHESIS_MODEL = os.getenv("VOILTAIL_SYNTHESIS_MODEL", "gpt-4o-mini")
SYNTHESIS_MAX_TOKENS = 2000
SYNTHESIS_TEMPERATURE = 0.3
EMBEDDING_MODEL = os.getenv("VOILTAIL_EMBEDDING_MODEL", "text-embedding-3-small")

# API endpoints
OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"
OPENAI_EMBEDDINGS_URL = "https://api.openai.com/v1/embeddings"
GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta/models"
ANTHROPIC_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"

# Per-provider ceiling; a provider that exceeds it counts as failed
PROVIDER_TIMEOUT_SECONDS = float(os.getenv("VOILTAIL_PROVIDER_TIMEOUT", "90"))
EMBEDDING_TIMEOUT_SECONDS = 30.0
SYNTHESIS_TIMEOUT_SECONDS = 60.0

# Result handoff store
RESULT_TTL_MINUTES = float(os.getenv("VOILTAIL_RESULT_TTL_MINUTES", "30"))
RESULT_SWEEP_INTERVAL_SECONDS = float(os.getenv("VOILTAIL_RESULT_SWEEP_SECONDS", "300"))

# Cost tracking log (set VOILTAIL_COST_FILE="" to keep it in memory only)
COST_TRACKING_FILE = os.getenv(
    "VOILTAIL_COST_FILE", os.path.join(DATA_BASE_DIR, "cost-tracking-data.json")
)

# Allowed CORS origins for a separately served frontend
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "VOILTAIL_CORS_ORIGINS", "http://localhost:3000,http://localhost:5173"
    ).split(",")
    if origin.strip()
]


def get_api_key(name: str) -> str | None:
    """
    Get an API key from the environment.

    Args:
        name: Environment variable name (e.g. "OPENAI_API_KEY")

    Returns:
        The key, or None if unset or blank
    """
    value = os.getenv(name)
    return value if value else None


def get_missing_provider_keys() -> list[str]:
    """
    List provider credentials absent from the environment.

    Returns:
        Environment variable names that are not set, in provider order
    """
    return [name for name in PROVIDER_KEY_NAMES.values() if get_api_key(name) is None]

