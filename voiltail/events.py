"""Progress events streamed to the client while a synthesis runs.

Order of a run:

    started(0) -> model_complete | model_error (x N, completion order, up to 60)
    -> embeddings_started(70) -> embeddings_progress(80) -> synthesis_started(85)
    -> synthesis_complete(100) | error

Exactly one terminal event (synthesis_complete or error) ends every stream.
The synthesis_complete payload carries only a result id; the analysis itself
is fetched from the result endpoint to keep streamed payloads small.
"""

import json
import re
from typing import Any

from .models import ModelResponse

STARTED = "started"
MODEL_COMPLETE = "model_complete"
MODEL_ERROR = "model_error"
EMBEDDINGS_STARTED = "embeddings_started"
EMBEDDINGS_PROGRESS = "embeddings_progress"
SYNTHESIS_STARTED = "synthesis_started"
SYNTHESIS_COMPLETE = "synthesis_complete"
ERROR = "error"

TERMINAL_EVENTS = frozenset({SYNTHESIS_COMPLETE, ERROR})

MODELS_PROGRESS_SPAN = 60

# Phase events and their fixed progress values
PHASE_PROGRESS = {
    EMBEDDINGS_STARTED: 70,
    EMBEDDINGS_PROGRESS: 80,
    SYNTHESIS_STARTED: 85,
}

PHASE_MESSAGES = {
    EMBEDDINGS_STARTED: "Calculating semantic similarity...",
    EMBEDDINGS_PROGRESS: "Computing vector similarities...",
    SYNTHESIS_STARTED: "Creating unified synthesis...",
}

EXCERPT_CHARS = 200

_CONTROL_WHITESPACE = re.compile(r"[\r\n\t]")


def excerpt(content: str, limit: int = EXCERPT_CHARS) -> str:
    """Single-line preview of a response for progress events."""
    return _CONTROL_WHITESPACE.sub(" ", content[:limit]) + "..."


def models_progress(completed: int, total: int) -> int:
    """Progress after `completed` of `total` provider calls have settled."""
    if total <= 0:
        return MODELS_PROGRESS_SPAN
    return round(completed / total * MODELS_PROGRESS_SPAN)


def started_event() -> dict[str, Any]:
    return {"type": STARTED, "message": "Starting synthesis...", "progress": 0}


def model_event(response: ModelResponse, completed: int, total: int) -> dict[str, Any]:
    """model_complete or model_error, depending on the response tag."""
    progress = models_progress(completed, total)
    if response.is_error:
        return {
            "type": MODEL_ERROR,
            "model": response.model.value,
            "error": response.error,
            "progress": progress,
        }
    return {
        "type": MODEL_COMPLETE,
        "model": response.model.value,
        "model_name": response.model.display_name,
        "content": excerpt(response.content),
        "response_time": response.response_time,
        "progress": progress,
    }


def phase_event(phase: str) -> dict[str, Any]:
    """One of the fixed-progress analysis phase events."""
    return {
        "type": phase,
        "message": PHASE_MESSAGES[phase],
        "progress": PHASE_PROGRESS[phase],
    }


def synthesis_complete_event(result_id: str, metadata: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": SYNTHESIS_COMPLETE,
        "progress": 100,
        "result_id": result_id,
        "metadata": metadata,
    }


def error_event(message: str, reason: str = "synthesis_failed") -> dict[str, Any]:
    return {"type": ERROR, "reason": reason, "error": message}


def format_sse(event: dict[str, Any]) -> str:
    """Frame an event as a Server-Sent Events data line."""
    return f"data: {json.dumps(event)}\n\n"
