"""Tests for EventCapture: recording, swap/requeue hand-off and backpressure."""

from __future__ import annotations

from unittest.mock import MagicMock

from src.clv.tracking.capture import EventCapture
from src.clv.tracking.insights import aggregate
from src.clv.tracking.schemas import ActivityType, Identity
from src.clv.tracking.signals import IdentityProvider

from tests.conftest import FIXED_NOW


class TestRecording:
    def test_events_are_stamped(self, clock):
        capture = EventCapture(session_id="s-1", clock=clock)
        capture.current_url = "https://shop.example.com/cart"

        event = capture.record(ActivityType.CLICK, {"element": "buy"})

        assert event.timestamp == FIXED_NOW
        assert event.session_id == "s-1"
        assert event.url == "https://shop.example.com/cart"
        assert event.payload == {"element": "buy"}
        assert len(capture) == 1

    def test_unknown_types_accepted(self, clock):
        capture = EventCapture(clock=clock)

        event = capture.track_custom_event("video_played", {"seconds": 12})

        assert event.type_name == "video_played"

    def test_page_view_updates_current_url(self, clock):
        capture = EventCapture(clock=clock)

        capture.track_page_view("/pricing", "Pricing")
        click = capture.track_click("signup-button")

        assert click.url == "/pricing"

    def test_form_submission_merges_fields(self, clock):
        capture = EventCapture(clock=clock)

        event = capture.track_form_submission("newsletter", {"plan": "pro"})

        assert event.type == ActivityType.FORM_SUBMIT
        assert event.payload == {"form_id": "newsletter", "plan": "pro"}

    def test_session_end_carries_duration(self, clock):
        capture = EventCapture(clock=clock)
        clock.advance(seconds=90)

        event = capture.track_session_end()

        assert event.payload["duration_ms"] == 90_000

    def test_session_stats(self, clock):
        capture = EventCapture(session_id="s-9", clock=clock)
        capture.track_click("a")
        capture.track_click("b")
        capture.swap()
        capture.track_click("c")
        clock.advance(seconds=5)

        stats = capture.session_stats()

        assert stats["session_id"] == "s-9"
        assert stats["queued_events"] == 1
        assert stats["total_recorded"] == 3
        assert stats["session_duration_ms"] == 5000


class TestHandOff:
    def test_swap_takes_everything_and_leaves_empty_queue(self, clock):
        capture = EventCapture(clock=clock)
        for i in range(3):
            capture.track_click(f"e{i}")

        batch = capture.swap()

        assert len(batch) == 3
        assert len(capture) == 0
        assert capture.swap().is_empty

    def test_events_after_swap_go_to_next_batch(self, clock):
        capture = EventCapture(clock=clock)
        capture.track_click("first")
        first = capture.swap()
        capture.track_click("second")
        second = capture.swap()

        assert [e.payload["element"] for e in first] == ["first"]
        assert [e.payload["element"] for e in second] == ["second"]

    def test_requeue_puts_batch_before_newer_events(self, clock):
        capture = EventCapture(clock=clock)
        capture.track_click("old-1")
        capture.track_click("old-2")
        batch = capture.swap()
        capture.track_click("new")

        capture.requeue(batch)

        order = [e.payload["element"] for e in capture.swap()]
        assert order == ["old-1", "old-2", "new"]

    def test_new_session_keeps_queue(self, clock):
        capture = EventCapture(session_id="s-a", clock=clock)
        capture.track_click("x")

        capture.new_session()

        assert capture.session_id != "s-a"
        assert len(capture) == 1


class TestIdentityFollowing:
    async def test_sign_in_after_long_uptime_scores_only_new_session(self, clock, identity):
        capture = EventCapture(session_id="s-boot", clock=clock)
        provider = IdentityProvider()
        capture.follow_identity(provider)

        clock.advance(minutes=120)
        await provider.sign_in(identity)
        capture.track_page_view("/home")

        insight = aggregate(capture.swap(), capture.session_start, now=clock())

        assert capture.session_id != "s-boot"
        assert capture.session_start == clock()
        assert insight.engagement_score == 3

    async def test_identity_switch_and_sign_out_keep_session(self, clock, identity):
        capture = EventCapture(session_id="s-a", clock=clock)
        provider = IdentityProvider(identity)
        capture.follow_identity(provider)

        await provider.sign_in(Identity(uid="other", email="o@example.com"))
        await provider.sign_out()

        assert capture.session_id == "s-a"

    async def test_unfollow(self, clock, identity):
        capture = EventCapture(session_id="s-a", clock=clock)
        provider = IdentityProvider()
        capture.follow_identity(provider)
        capture.unfollow_identity(provider)

        await provider.sign_in(identity)

        assert capture.session_id == "s-a"

class TestBackpressure:
    def test_listener_called_at_high_water_mark(self, clock):
        capture = EventCapture(high_water_mark=3, clock=clock)
        listener = MagicMock()
        capture.add_backpressure_listener(listener)

        capture.track_click("1")
        capture.track_click("2")
        listener.assert_not_called()
        capture.track_click("3")

        listener.assert_called_once_with(3)

    def test_failing_listener_does_not_block_recording(self, clock):
        capture = EventCapture(high_water_mark=1, clock=clock)
        capture.add_backpressure_listener(MagicMock(side_effect=RuntimeError("boom")))
        after = MagicMock()
        capture.add_backpressure_listener(after)

        capture.track_click("1")

        assert len(capture) == 1
        after.assert_called_once_with(1)

    def test_removed_listener_not_called(self, clock):
        capture = EventCapture(high_water_mark=1, clock=clock)
        listener = MagicMock()
        capture.add_backpressure_listener(listener)
        capture.remove_backpressure_listener(listener)

        capture.track_click("1")

        listener.assert_not_called()
