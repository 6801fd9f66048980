"""Tests for credmarket.events — marketplace event bus."""
import time
from unittest.mock import MagicMock

from credmarket.events import Event, EventBus, EventType, Subscription


class TestEvent:
    def test_create_event(self):
        e = Event(event_type="dataset.listed", data={"cid": "bafy"})
        assert e.timestamp > 0
        assert len(e.event_id) == 16

    def test_enum_type_normalized(self):
        e = Event(event_type=EventType.DATASET_SOLD)
        assert e.event_type == "dataset.sold"

    def test_event_id_deterministic(self):
        ts = 1700000000.0
        e1 = Event(event_type="test", data={"x": 1}, timestamp=ts)
        e2 = Event(event_type="test", data={"x": 1}, timestamp=ts)
        assert e1.event_id == e2.event_id

    def test_event_id_unique(self):
        e1 = Event(event_type="test", data={"x": 1})
        time.sleep(0.001)
        e2 = Event(event_type="test", data={"x": 2})
        assert e1.event_id != e2.event_id


class TestSubscription:
    def test_glob_match(self):
        s = Subscription(subscriber_id="s1", patterns=["dataset.*"], callback=lambda e: None)
        assert s.matches("dataset.listed")
        assert s.matches("dataset.sold")
        assert not s.matches("credential.issued")


class TestEventBus:
    def test_subscribe_and_emit(self):
        bus = EventBus()
        handler = MagicMock()
        bus.subscribe(EventType.DATASET_LISTED, handler)
        bus.emit(EventType.DATASET_LISTED, {"cid": "bafy"})
        handler.assert_called_once()
        assert handler.call_args[0][0].data == {"cid": "bafy"}

    def test_non_matching_not_called(self):
        bus = EventBus()
        handler = MagicMock()
        bus.subscribe("credential.*", handler)
        bus.emit("dataset.sold")
        handler.assert_not_called()

    def test_unsubscribe(self):
        bus = EventBus()
        handler = MagicMock()
        sub_id = bus.subscribe("*", handler)
        assert bus.unsubscribe(sub_id) is True
        assert bus.unsubscribe(sub_id) is False
        bus.emit("dataset.sold")
        handler.assert_not_called()
        assert bus.subscriber_count == 0

    def test_failing_subscriber_does_not_block_others(self):
        bus = EventBus()
        good = MagicMock()
        bus.subscribe("*", MagicMock(side_effect=RuntimeError("boom")))
        bus.subscribe("*", good)
        bus.emit("badge.awarded", {"id": "starter-100"})
        good.assert_called_once()

    def test_history_bounded_and_filtered(self):
        bus = EventBus(max_history=5)
        for i in range(8):
            bus.emit("dataset.listed" if i % 2 else "dataset.sold", {"i": i})
        assert len(bus.history()) == 5
        listed = bus.history("dataset.listed")
        assert all(e.event_type == "dataset.listed" for e in listed)
        assert bus.history(limit=2)[-1].data == {"i": 7}

    def test_custom_subscriber_id(self):
        bus = EventBus()
        assert bus.subscribe("*", MagicMock(), subscriber_id="progression") == "progression"
