"""Tests for the event broadcaster."""

from review_engine.services.events import (
    CHALLENGE_UPDATED,
    FINALIZATION_UPDATED,
    EventBroadcaster,
    RecordingSubscriber,
)


class TestEventBroadcaster:
    """Tests for EventBroadcaster."""

    def test_delivers_to_every_subscriber(self):
        events = EventBroadcaster()
        first, second = RecordingSubscriber(), RecordingSubscriber()
        events.subscribe(first)
        events.subscribe(second)

        events.publish(CHALLENGE_UPDATED, {"challenge_id": "c1"})

        assert first.names() == [CHALLENGE_UPDATED]
        assert second.events[0].payload == {"challenge_id": "c1"}

    def test_payload_is_copied(self):
        """Test subscribers cannot see later changes to the caller's dict."""
        events = EventBroadcaster()
        recorder = RecordingSubscriber()
        events.subscribe(recorder)
        payload = {"challenge_id": "c1"}

        events.publish(FINALIZATION_UPDATED, payload)
        payload["challenge_id"] = "changed"

        assert recorder.events[0].payload == {"challenge_id": "c1"}

    def test_failing_subscriber_is_dropped(self):
        """Test a raising subscriber never breaks publishing and is removed."""
        events = EventBroadcaster()
        calls = []

        def broken(event, payload):
            calls.append(event)
            raise ConnectionError("client went away")

        recorder = RecordingSubscriber()
        events.subscribe(broken)
        events.subscribe(recorder)

        events.publish(CHALLENGE_UPDATED)
        events.publish(CHALLENGE_UPDATED)

        assert calls == [CHALLENGE_UPDATED]
        assert recorder.names() == [CHALLENGE_UPDATED, CHALLENGE_UPDATED]

    def test_unsubscribe(self):
        events = EventBroadcaster()
        recorder = RecordingSubscriber()
        subscriber_id = events.subscribe(recorder)

        events.unsubscribe(subscriber_id)
        events.publish(CHALLENGE_UPDATED)

        assert recorder.events == []
