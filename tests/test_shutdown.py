"""Tests for the graceful shutdown coordinator."""

from voiltail.events import TERMINAL_EVENTS
from voiltail.shutdown import ShutdownCoordinator


class TestShutdownCoordinator:
    """Tests for ShutdownCoordinator."""

    def test_initial_state(self):
        """Coordinator starts not shutting down with zero streams."""
        coord = ShutdownCoordinator()
        assert coord.is_shutting_down is False
        assert coord.active_stream_count == 0

    def test_initiate_and_reset(self):
        coord = ShutdownCoordinator()
        coord.register_stream()
        coord.initiate_shutdown()
        assert coord.is_shutting_down is True

        coord.reset()
        assert coord.is_shutting_down is False
        assert coord.active_stream_count == 0

    def test_unregister_does_not_go_negative(self):
        """Unregistering with zero streams clamps to zero."""
        coord = ShutdownCoordinator()
        coord.register_stream()
        coord.unregister_stream()
        coord.unregister_stream()
        assert coord.active_stream_count == 0

    def test_shutdown_event_is_terminal_error(self):
        """The shutdown event ends the stream as an error with its own reason."""
        event = ShutdownCoordinator().shutdown_event()

        assert event["type"] in TERMINAL_EVENTS
        assert event["type"] == "error"
        assert event["reason"] == "server_shutdown"
        assert "restarting" in event["error"].lower()
