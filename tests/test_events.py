"""Tests for the in-process event bus."""

import logging

from ledger_intake.events import EXPENSES_CREATED, WILDCARD, EventBus


class TestEventBus:
    """Tests for publish/subscribe."""

    def test_publish_to_named_and_wildcard(self):
        bus = EventBus()
        named, everything = [], []
        bus.subscribe(EXPENSES_CREATED, named.append)
        bus.subscribe(WILDCARD, everything.append)

        event = bus.publish(EXPENSES_CREATED, {"ledger_ids": ["a"]})
        bus.publish("other.event", {})

        assert named == [event]
        assert [e.name for e in everything] == [EXPENSES_CREATED, "other.event"]
        assert event.payload == {"ledger_ids": ["a"]}

    def test_failing_handler_does_not_stop_others(self, caplog):
        bus = EventBus()
        received = []

        def broken(event):
            raise RuntimeError("handler exploded")

        bus.subscribe(EXPENSES_CREATED, broken)
        bus.subscribe(EXPENSES_CREATED, received.append)

        with caplog.at_level(logging.WARNING):
            bus.publish(EXPENSES_CREATED, {})

        assert len(received) == 1
        assert "Event handler for expenses.created failed" in caplog.text

    def test_unsubscribe(self):
        bus = EventBus()
        received = []
        bus.subscribe(EXPENSES_CREATED, received.append)
        bus.unsubscribe(EXPENSES_CREATED, received.append)
        bus.unsubscribe("never.subscribed", received.append)

        bus.publish(EXPENSES_CREATED, {})
        assert received == []
