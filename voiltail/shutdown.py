"""Graceful shutdown coordinator for active synthesis streams.

When the server stops, each active stream ends with an ``error`` event whose
reason is ``server_shutdown``, so the client can tell a restart apart from a
failed synthesis. That event is the stream's one terminal event.

Usage in SSE generators::

    async for event in run_synthesis_stream(...):
        if shutdown_coordinator.is_shutting_down:
            yield format_sse(shutdown_coordinator.shutdown_event())
            return
        yield format_sse(event)
"""

import logging
from typing import Any

from .events import error_event

logger = logging.getLogger(__name__)

SHUTDOWN_REASON = "server_shutdown"
SHUTDOWN_MESSAGE = "Server is restarting, please retry your request"


class ShutdownCoordinator:
    """Tracks shutdown state for graceful stream termination."""

    def __init__(self) -> None:
        self._shutting_down: bool = False
        self._active_streams: int = 0

    @property
    def is_shutting_down(self) -> bool:
        return self._shutting_down

    @property
    def active_stream_count(self) -> int:
        return self._active_streams

    def initiate_shutdown(self) -> None:
        """Signal all active streams that the server is going down."""
        logger.info("Shutdown initiated. ActiveStreams: %d", self._active_streams)
        self._shutting_down = True

    def reset(self) -> None:
        self._shutting_down = False
        self._active_streams = 0

    def register_stream(self) -> None:
        self._active_streams += 1

    def unregister_stream(self) -> None:
        self._active_streams = max(0, self._active_streams - 1)

    def shutdown_event(self) -> dict[str, Any]:
        """Terminal error event sent to streams cut short by shutdown."""
        return error_event(SHUTDOWN_MESSAGE, reason=SHUTDOWN_REASON)


# Module-level singleton
shutdown_coordinator = ShutdownCoordinator()
