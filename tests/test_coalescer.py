"""
Tests for CoalescingTimer
"""

import pytest

from canvas_core.coalescer import CoalescingTimer


@pytest.fixture
def applied():
    return []


@pytest.fixture
def timer(applied, clock):
    return CoalescingTimer(lambda key, patch: applied.append((key, patch)), delay=0.5, clock=clock)


class TestCoalescingTimer:
    """Tests for schedule/flush/cancel/poll"""

    def test_delay_bounds(self, clock):
        with pytest.raises(ValueError):
            CoalescingTimer(lambda k, p: None, delay=0.1, clock=clock)
        with pytest.raises(ValueError):
            CoalescingTimer(lambda k, p: None, delay=1.0, clock=clock)

    def test_patches_merge_until_quiet(self, timer, applied, clock):
        timer.schedule("a", {"OS": "Lin"})
        clock.advance(0.3)
        timer.schedule("a", {"OS": "Linux", "Version": "22"})
        clock.advance(0.3)

        # Deadline restarted by the second keystroke
        assert timer.poll() == 0
        assert applied == []

        clock.advance(0.25)
        assert timer.poll() == 1
        assert applied == [("a", {"OS": "Linux", "Version": "22"})]
        assert not timer.has_pending()

    def test_new_key_flushes_other_keys(self, timer, applied):
        timer.schedule("a", {"x": 1})
        timer.schedule("b", {"y": 2})
        assert applied == [("a", {"x": 1})]
        assert timer.has_pending("b")

    def test_flush_single_key(self, timer, applied):
        timer.schedule("a", {"x": 1})
        assert timer.flush("a") == ["a"]
        assert timer.flush("a") == []
        assert applied == [("a", {"x": 1})]

    def test_cancel_drops_without_applying(self, timer, applied, clock):
        timer.schedule("a", {"x": 1})
        timer.cancel()
        clock.advance(5)
        assert timer.poll() == 0
        assert applied == []

    def test_next_deadline(self, timer, clock):
        assert timer.next_deadline() is None
        timer.schedule("a", {"x": 1})
        assert timer.next_deadline() == clock.now + 0.5

    def test_pending_is_a_copy(self, timer):
        timer.schedule("a", {"x": 1})
        timer.pending["a"]["x"] = 99
        assert timer.pending == {"a": {"x": 1}}
