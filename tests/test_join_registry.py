from __future__ import annotations

from topicbus.kernel.dispatcher import Dispatcher
from topicbus.kernel.joins import JoinRegistry
from topicbus.kernel.types import Envelope, Subscription


def _emit(dispatcher: Dispatcher, topic: str, payload) -> None:
    dispatcher.emit(topic, Envelope(id=topic, time=0), payload)


def _registry():
    dispatcher = Dispatcher()
    return dispatcher, JoinRegistry(dispatcher, clock=lambda: 42)


def test_group_fires_when_every_topic_arrived():
    dispatcher, registry = _registry()
    seen = []
    registry.create(("a", "b"), Subscription(handler=lambda env, data: seen.append((env, data))))

    _emit(dispatcher, "a", 1)
    assert seen == []
    assert registry.pending() == {"a,b": {"a": 1}}

    _emit(dispatcher, "b", 2)
    assert seen == [(Envelope(id="a,b", time=42), {"a": 1, "b": 2})]


def test_latest_value_wins_before_completion():
    dispatcher, registry = _registry()
    seen = []
    registry.create(("a", "b"), Subscription(handler=lambda env, data: seen.append(data)))

    _emit(dispatcher, "a", "old")
    _emit(dispatcher, "a", "new")
    assert len(registry.pending()["a,b"]) == 1
    _emit(dispatcher, "b", "b")

    assert seen == [{"a": "new", "b": "b"}]


def test_once_group_is_deleted_and_adapters_removed():
    dispatcher, registry = _registry()
    registry.create(("a", "b"), Subscription(handler=lambda env, data: None, is_once=True))
    assert dispatcher.listener_count("a") == 1
    assert dispatcher.listener_count("b") == 1

    _emit(dispatcher, "a", 1)
    _emit(dispatcher, "b", 2)

    assert len(registry) == 0
    assert ("a", "b") not in registry
    assert dispatcher.listener_count("a") == 0
    assert dispatcher.listener_count("b") == 0


def test_persistent_group_rearms_after_completion():
    dispatcher, registry = _registry()
    seen = []
    registry.create(("a", "b"), Subscription(handler=lambda env, data: seen.append(data), is_once=False))

    _emit(dispatcher, "a", 1)
    _emit(dispatcher, "b", 2)
    _emit(dispatcher, "b", 3)
    assert seen == [{"a": 1, "b": 2}]
    assert registry.pending() == {"a,b": {"b": 3}}

    _emit(dispatcher, "a", 4)
    assert seen == [{"a": 1, "b": 2}, {"a": 4, "b": 3}]


def test_mixed_group_drops_once_and_keeps_persistent():
    dispatcher, registry = _registry()
    seen = []
    group = registry.create(
        ("a", "b"),
        Subscription(handler=lambda env, data: seen.append("persistent"), is_once=False),
    )
    registry.add(group, Subscription(handler=lambda env, data: seen.append("once"), is_once=True))

    _emit(dispatcher, "a", 1)
    _emit(dispatcher, "b", 2)
    _emit(dispatcher, "a", 3)
    _emit(dispatcher, "b", 4)

    assert seen == ["persistent", "once", "persistent"]
    assert len(group.subscriptions) == 1


def test_refresh_only_touches_groups_with_once_subscribers():
    dispatcher, registry = _registry()
    registry.create(("a", "b"), Subscription(handler=lambda env, data: None, is_once=True))
    registry.create(("a", "c"), Subscription(handler=lambda env, data: None, is_once=False))

    assert registry.refresh("a", "fresh") == 1
    assert registry.pending() == {"a,b": {"a": "fresh"}, "a,c": {}}


def test_reentrant_completion_does_not_refire_once_subscription():
    dispatcher, registry = _registry()
    seen = []

    def persistent(env, data):
        seen.append(("persistent", dict(data)))
        if data["a"] == 1:
            _emit(dispatcher, "a", 2)
            _emit(dispatcher, "b", 2)

    group = registry.create(("a", "b"), Subscription(handler=persistent, is_once=False))
    registry.add(group, Subscription(handler=lambda env, data: seen.append(("once", dict(data)))))

    _emit(dispatcher, "a", 1)
    _emit(dispatcher, "b", 1)

    once_calls = [item for item in seen if item[0] == "once"]
    assert len(once_calls) == 1
    assert [item for item in seen if item[0] == "persistent"] == [
        ("persistent", {"a": 1, "b": 1}),
        ("persistent", {"a": 2, "b": 2}),
    ]
    assert len(group.subscriptions) == 1


def test_order_sensitive_keys_are_separate_groups():
    dispatcher, registry = _registry()
    registry.create(("a", "b"), Subscription(handler=lambda env, data: None))
    registry.create(("b", "a"), Subscription(handler=lambda env, data: None))

    assert len(registry) == 2
    assert ("a", "b") in registry
    assert ("b", "a") in registry
