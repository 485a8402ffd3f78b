"""
Tests for the notification hub
"""

from canvas_backend.notifications import Variant


class TestNotifier:
    """Tests for confirm rate limiting and dismissal"""

    def test_first_confirmation_is_shown(self, notifier):
        assert notifier.confirm("Model Loaded", "ok") is not None

    def test_confirmations_within_interval_are_suppressed(self, notifier, clock):
        notifier.confirm("Model Loaded", "first")
        clock.advance(1.0)
        assert notifier.confirm("Model Saved", "second") is None

        clock.advance(1.5)
        assert notifier.confirm("Model Saved", "third") is not None
        assert [n.description for n in notifier.active] == ["first", "third"]

    def test_errors_are_never_limited(self, notifier):
        notifier.confirm("Model Loaded", "ok")
        first = notifier.error("Save Failed", "disk full")
        second = notifier.error("Save Failed", "disk full")
        assert first.variant == Variant.DESTRUCTIVE
        assert first.id != second.id
        assert len(notifier.active) == 3

    def test_listeners_receive_notifications(self, notifier):
        received = []
        notifier.on_notify(received.append)
        notifier.notify("Report Generated", "ready")
        assert received[0].to_dict()["title"] == "Report Generated"
        assert received[0].to_dict()["variant"] == "default"

    def test_dismiss(self, notifier):
        notification = notifier.notify("Hello", "world")
        assert notifier.dismiss(notification.id) is True
        assert notifier.dismiss(notification.id) is False
        assert notifier.active == []
