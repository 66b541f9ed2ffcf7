from __future__ import annotations

from topicbus import Coordinator, CoordinatorConfig, Envelope, MessagingHost, MISSING


def _clocked(config: CoordinatorConfig = CoordinatorConfig()) -> Coordinator:
    return Coordinator(config, clock=lambda: 1000)


def test_publish_then_subscribe_replays_synchronously(recorder):
    coordinator = _clocked()
    coordinator.publish("x", "v1")

    result = coordinator.subscribe("x", handler=recorder("h"))

    assert result.accepted is True
    assert result.replayed is True
    assert recorder.calls == [("h", "x", "v1")]


def test_replayed_once_subscription_is_not_registered(recorder):
    coordinator = _clocked()
    coordinator.publish("x", "v1")

    coordinator.subscribe("x", handler=recorder("h"), replay_on_subscribe=True, is_once=True)
    assert coordinator.listener_count("x") == 0

    coordinator.publish("x", "v2")
    assert recorder.calls == [("h", "x", "v1")]


def test_replayed_persistent_subscription_keeps_listening(recorder):
    coordinator = _clocked()
    coordinator.publish("x", "v1")

    coordinator.subscribe("x", handler=recorder("h"), is_once=False)
    coordinator.publish("x", "v2")

    assert recorder.calls == [("h", "x", "v1"), ("h", "x", "v2")]


def test_once_subscription_fires_at_most_once(recorder):
    coordinator = _clocked()
    coordinator.subscribe("t", handler=recorder("h"))

    coordinator.publish("t", 1)
    coordinator.publish("t", 2)
    coordinator.publish("t", 3)

    assert recorder.calls == [("h", "t", 1)]


def test_persistent_subscriptions_fire_per_publish_in_order(recorder):
    coordinator = _clocked()
    coordinator.subscribe("t", handler=recorder("first"), is_once=False)
    coordinator.subscribe("t", handler=recorder("second"), is_once=False)

    coordinator.publish("t", 1)
    coordinator.publish("t", 2)

    assert recorder.calls == [
        ("first", "t", 1),
        ("second", "t", 1),
        ("first", "t", 2),
        ("second", "t", 2),
    ]


def test_envelope_carries_topic_and_time():
    coordinator = _clocked()
    seen = []
    coordinator.subscribe("t", handler=lambda env, payload: seen.append(env))

    coordinator.publish("t")

    assert seen == [Envelope(id="t", time=1000)]
    assert seen[0].to_dict() == {"id": "t", "time": 1000}


def test_absent_payload_is_null_not_missing(recorder):
    coordinator = _clocked()
    coordinator.publish("t")

    assert coordinator.replayed("t") is None
    assert coordinator.replayed("other") is MISSING

    coordinator.subscribe("t", handler=recorder("h"))
    assert recorder.calls == [("h", "t", None)]


def test_join_fires_after_all_topics(recorder):
    coordinator = _clocked()
    coordinator.subscribe("a", "b", "c", handler=recorder("h"))

    coordinator.publish("a", 1)
    coordinator.publish("b", 2)
    assert recorder.calls == []

    coordinator.publish("c", 3)
    assert recorder.calls == [("h", "a,b,c", {"a": 1, "b": 2, "c": 3})]
    assert coordinator.pending_joins() == {}


def test_join_exposes_only_latest_value(recorder):
    coordinator = _clocked()
    coordinator.subscribe("a", "b", "c", handler=recorder("h"))

    coordinator.publish("a", "first")
    coordinator.publish("a", "second")
    coordinator.publish("b", 2)
    coordinator.publish("c", 3)

    assert recorder.calls == [("h", "a,b,c", {"a": "second", "b": 2, "c": 3})]


def test_join_order_defines_independent_groups(recorder):
    coordinator = _clocked()
    coordinator.subscribe("A", "B", handler=recorder("ab"))
    coordinator.subscribe("B", "A", handler=recorder("ba"))

    coordinator.publish("A", 1)
    coordinator.publish("B", 2)

    assert ("ab", "A,B", {"A": 1, "B": 2}) in recorder.calls
    assert ("ba", "B,A", {"A": 1, "B": 2}) in recorder.calls
    assert len(recorder.calls) == 2


def test_persistent_join_rearms(recorder):
    coordinator = _clocked()
    coordinator.subscribe("a", "b", handler=recorder("h"), is_once=False)

    for round_no in range(3):
        coordinator.publish("a", round_no)
        coordinator.publish("b", round_no)

    assert [payload for _, _, payload in recorder.calls] == [
        {"a": 0, "b": 0},
        {"a": 1, "b": 1},
        {"a": 2, "b": 2},
    ]


def test_existing_group_full_replay_fires_immediately(recorder):
    coordinator = _clocked()
    coordinator.subscribe("a", "b", handler=recorder("standing"), is_once=False)
    coordinator.publish("a", 1)
    coordinator.publish("b", 2)

    result = coordinator.subscribe("a", "b", handler=recorder("late"))

    assert result.replayed is True
    assert ("late", "a,b", {"a": 1, "b": 2}) in recorder.calls

    # A fully replayed once-subscription never joins the live group.
    coordinator.publish("a", 3)
    coordinator.publish("b", 4)
    assert [label for label, _, _ in recorder.calls].count("late") == 1
    assert [label for label, _, _ in recorder.calls].count("standing") == 2


def test_existing_group_partial_replay_waits(recorder):
    coordinator = _clocked()
    coordinator.subscribe("a", "b", handler=recorder("standing"), is_once=False)
    coordinator.publish("a", 1)

    result = coordinator.subscribe("a", "b", handler=recorder("late"))
    assert result.replayed is False
    assert recorder.calls == []

    coordinator.publish("b", 2)
    assert [label for label, _, _ in recorder.calls] == ["standing", "late"]


def test_new_group_consumes_already_published_topics(recorder):
    coordinator = _clocked()
    coordinator.publish("a", 1)
    coordinator.publish("b", 2)

    result = coordinator.subscribe("a", "b", handler=recorder("h"))

    assert result.replayed is True
    assert recorder.calls == [("h", "a,b", {"a": 1, "b": 2})]
    assert coordinator.listener_count("a") == 0


def test_new_group_without_replay_waits_for_fresh_data(recorder):
    coordinator = _clocked()
    coordinator.publish("a", 1)
    coordinator.publish("b", 2)

    coordinator.subscribe("a", "b", handler=recorder("h"), replay_on_subscribe=False)
    assert recorder.calls == []

    coordinator.publish("a", 3)
    coordinator.publish("b", 4)
    assert recorder.calls == [("h", "a,b", {"a": 3, "b": 4})]


def test_replay_disabled_only_delivers_future_publishes(recorder):
    coordinator = _clocked(CoordinatorConfig(store_published=False))
    coordinator.publish("t", "old")

    result = coordinator.subscribe("t", handler=recorder("h"))
    assert result.replayed is False
    assert recorder.calls == []

    coordinator.publish("t", "new")
    assert recorder.calls == [("h", "t", "new")]
    assert coordinator.replayed("t") is MISSING


def test_republish_refreshes_pending_once_group(recorder):
    coordinator = _clocked()
    coordinator.subscribe("a", "b", handler=recorder("h"))

    coordinator.publish("a", 1)
    coordinator.publish("a", 2)
    assert coordinator.pending_joins() == {"a,b": {"a": 2}}

    coordinator.publish("b", 3)
    assert recorder.calls == [("h", "a,b", {"a": 2, "b": 3})]


def test_handler_may_publish_reentrantly(recorder):
    coordinator = _clocked()

    def relay(envelope, payload):
        coordinator.publish("ready", payload * 10)

    coordinator.subscribe("ready", handler=recorder("ready"))
    coordinator.subscribe("in", handler=relay)
    coordinator.publish("in", 4)

    assert recorder.calls == [("ready", "ready", 40)]


def test_join_handler_can_chain_into_another_join(recorder):
    coordinator = _clocked()

    coordinator.subscribe(
        "e1",
        "e2",
        handler=lambda env, data: coordinator.publish("events.ready"),
    )
    coordinator.subscribe(
        "t1",
        "t2",
        handler=lambda env, data: coordinator.publish("tests.ready"),
    )
    coordinator.subscribe("tests.ready", "events.ready", handler=recorder("done"))

    coordinator.publish("t1", "x")
    coordinator.publish("t2", "y")
    coordinator.publish("e1", "x")
    assert recorder.calls == []
    coordinator.publish("e2", "y")

    assert recorder.calls == [("done", "tests.ready,events.ready", {"tests.ready": None, "events.ready": None})]


def test_independent_coordinators_do_not_share_state(recorder):
    first = _clocked()
    second = _clocked()
    first.publish("t", 1)

    second.subscribe("t", handler=recorder("h"))
    assert recorder.calls == []


def test_messaging_host_forwards_to_coordinator(recorder):
    coordinator = _clocked()
    host = MessagingHost(coordinator)

    host.sub("t", handler=recorder("h"), is_once=False)
    host.pub("t", "payload")

    assert host.messages is coordinator
    assert recorder.calls == [("h", "t", "payload")]


def test_stats_report_configuration_and_registrations():
    coordinator = _clocked(CoordinatorConfig(max_listeners_per_topic=7))
    coordinator.subscribe("a", "b", handler=lambda env, data: None)
    coordinator.subscribe("c", handler=lambda env, data: None)
    coordinator.publish("z", 1)

    stats = coordinator.stats()
    assert stats["max_listeners_per_topic"] == 7
    assert stats["join_groups"] == 1
    assert stats["listeners"] == {"a": 1, "b": 1, "c": 1}
    assert stats["replayed_topics"] == 1
