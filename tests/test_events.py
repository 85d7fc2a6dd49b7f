import logging

import pytest

from relaychat.services.events import EventBus, InputChanged, ModelChanged, NewChat, StatusChanged, Topic


def test_handlers_run_in_subscription_order():
    bus = EventBus()
    seen = []
    bus.subscribe(Topic.INPUT_CHANGED, lambda event: seen.append(("first", event.text)))
    bus.subscribe(Topic.INPUT_CHANGED, lambda event: seen.append(("second", event.text)))

    bus.publish(Topic.INPUT_CHANGED, InputChanged(text="hi"))

    assert seen == [("first", "hi"), ("second", "hi")]


def test_topics_are_independent():
    bus = EventBus()
    seen = []
    bus.subscribe(Topic.NEW_CHAT, seen.append)

    bus.publish(Topic.STATUS_CHANGED, StatusChanged(status="idle"))
    assert seen == []

    bus.publish(Topic.NEW_CHAT, NewChat())
    assert seen == [NewChat()]


def test_unsubscribe_stops_delivery():
    bus = EventBus()
    seen = []
    unsubscribe = bus.subscribe(Topic.NEW_CHAT, seen.append)
    unsubscribe()
    unsubscribe()

    bus.publish(Topic.NEW_CHAT, NewChat())
    assert seen == []


def test_wrong_payload_type_is_rejected():
    bus = EventBus()
    with pytest.raises(TypeError):
        bus.publish(Topic.MODEL_CHANGED, InputChanged(text="oops"))


def test_failing_handler_does_not_stop_others(caplog):
    bus = EventBus()
    seen = []

    def broken(event):
        raise RuntimeError("boom")

    bus.subscribe(Topic.MODEL_CHANGED, broken)
    bus.subscribe(Topic.MODEL_CHANGED, seen.append)

    with caplog.at_level(logging.ERROR, logger="relaychat"):
        bus.publish(Topic.MODEL_CHANGED, ModelChanged(model_id="m", operation_type="text-to-text"))

    assert seen == [ModelChanged(model_id="m", operation_type="text-to-text")]
    assert "Handler for model-changed failed" in caplog.text
