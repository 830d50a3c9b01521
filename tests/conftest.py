"""Shared test fixtures and configuration.

Sets environment variables before any voiltail modules are imported, so the
module-level app sees provider keys and keeps its cost log in memory.
"""

import os

# Set required env vars BEFORE any voiltail imports happen.
# pytest loads conftest.py before test modules, so this runs first.
os.environ.setdefault("GOOGLE_API_KEY", "test-google-key")
os.environ.setdefault("OPENAI_API_KEY", "test-openai-key")
os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key")
os.environ.setdefault("VOILTAIL_COST_FILE", "")

import pytest  # noqa: E402

from voiltail.models import ModelResponse, Provider  # noqa: E402


@pytest.fixture
def three_responses() -> list[ModelResponse]:
    """Three similar successful answers, one per provider."""
    return [
        ModelResponse.success(Provider.GEMINI, "Artificial intelligence is the simulation of human intelligence by machines.", 100),
        ModelResponse.success(Provider.OPENAI, "Artificial intelligence is the simulation of human intelligence in machines.", 100),
        ModelResponse.success(Provider.CLAUDE, "Artificial intelligence means machines performing the simulation of human intelligence.", 100),
    ]
