"""Multi-topic join groups: accumulate per-topic payloads, fire on completion."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from topicbus.kernel.dispatcher import Dispatcher
from topicbus.kernel.types import Envelope, Handler, Subscription, join_key, now_ms


@dataclass(eq=False)
class JoinGroup:
    """In-flight join keyed by its exact, ordered topic tuple."""

    topics: Tuple[str, ...]
    subscriptions: List[Subscription] = field(default_factory=list)
    pending: Dict[str, Any] = field(default_factory=dict)
    adapters: Dict[str, Handler] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return join_key(self.topics)

    def is_complete(self) -> bool:
        return len(self.pending) == len(self.topics)

    def has_live_once(self) -> bool:
        return any(item.is_once and not item.fired for item in self.subscriptions)

    def discard(self, fired: Iterable[Subscription]) -> None:
        targets = list(fired)
        if not targets:
            return
        self.subscriptions = [
            item for item in self.subscriptions if not any(item is target for target in targets)
        ]


class JoinRegistry:
    """Owns every join group and the dispatcher adapters that feed them."""

    def __init__(self, dispatcher: Dispatcher, clock: Callable[[], int] = now_ms) -> None:
        self._dispatcher = dispatcher
        self._clock = clock
        self._groups: Dict[Tuple[str, ...], JoinGroup] = {}

    def get(self, topics: Tuple[str, ...]) -> Optional[JoinGroup]:
        return self._groups.get(tuple(topics))

    def create(self, topics: Tuple[str, ...], subscription: Subscription) -> JoinGroup:
        key = tuple(topics)
        group = JoinGroup(topics=key, subscriptions=[subscription])
        self._groups[key] = group
        for topic in key:
            adapter = self._make_adapter(key, topic)
            group.adapters[topic] = adapter
            self._dispatcher.on(topic, adapter)
        return group

    def add(self, group: JoinGroup, subscription: Subscription) -> None:
        group.subscriptions.append(subscription)

    def refresh(self, topic: str, payload: Any) -> int:
        """Overwrite ``topic`` in every group still awaiting a once-subscriber."""
        refreshed = 0
        for group in list(self._groups.values()):
            if topic in group.topics and group.has_live_once():
                group.pending[topic] = payload
                refreshed += 1
        return refreshed

    def accumulate(self, topics: Tuple[str, ...], topic: str, payload: Any) -> None:
        group = self._groups.get(topics)
        if group is None or topic not in group.topics:
            return
        group.pending[topic] = payload
        if group.is_complete():
            self._complete(group)

    def pending(self) -> Dict[str, Dict[str, Any]]:
        return {group.key: dict(group.pending) for group in self._groups.values()}

    def __len__(self) -> int:
        return len(self._groups)

    def __contains__(self, topics: object) -> bool:
        if not isinstance(topics, (tuple, list)):
            return False
        return tuple(topics) in self._groups

    def _make_adapter(self, key: Tuple[str, ...], topic: str) -> Handler:
        def adapter(_envelope: Envelope, payload: Any) -> None:
            self.accumulate(key, topic, payload)

        return adapter

    def _complete(self, group: JoinGroup) -> None:
        # Rearm before running handlers so reentrant publishes start a new cycle.
        collected = group.pending
        group.pending = {}
        envelope = Envelope(id=group.key, time=self._clock())
        fired: List[Subscription] = []
        try:
            for subscription in list(group.subscriptions):
                if subscription.is_once:
                    if subscription.fired:
                        continue
                    subscription.fired = True
                    fired.append(subscription)
                subscription.handler(envelope, collected)
        finally:
            group.discard(fired)
            if not group.subscriptions and self._groups.get(group.topics) is group:
                self._delete(group)

    def _delete(self, group: JoinGroup) -> None:
        self._groups.pop(group.topics, None)
        for topic, adapter in group.adapters.items():
            self._dispatcher.remove_listener(topic, adapter)
        group.adapters.clear()
