"""Synchronous per-topic handler dispatch with an advisory listener cap."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Any, DefaultDict, Dict, List, Optional, Set

from topicbus.kernel.types import (
    DEFAULT_MAX_LISTENERS_PER_TOPIC,
    DiagnosticSink,
    Envelope,
    Handler,
)

CAP_EXCEEDED_EVENT = "dispatcher.listener_cap_exceeded"


class ListenerCapWarning(RuntimeWarning):
    """Issued when a topic holds more listeners than the configured cap."""


@dataclass(eq=False)
class _Listener:
    handler: Handler
    once: bool
    fired: bool = False


class Dispatcher:
    """Single-threaded emitter: handlers run in registration order."""

    def __init__(
        self,
        max_listeners: int = DEFAULT_MAX_LISTENERS_PER_TOPIC,
        event_sink: Optional[DiagnosticSink] = None,
    ) -> None:
        self._max_listeners = max(0, int(max_listeners))
        self._event_sink = event_sink
        self._listeners: DefaultDict[str, List[_Listener]] = defaultdict(list)
        self._warned: Set[str] = set()

    @property
    def max_listeners(self) -> int:
        return self._max_listeners

    def on(self, topic: str, handler: Handler) -> None:
        self.add_listener(topic, handler, once=False)

    def once(self, topic: str, handler: Handler) -> None:
        self.add_listener(topic, handler, once=True)

    def add_listener(self, topic: str, handler: Handler, once: bool) -> None:
        listeners = self._listeners[topic]
        listeners.append(_Listener(handler=handler, once=bool(once)))
        if self._max_listeners and len(listeners) > self._max_listeners and topic not in self._warned:
            self._warned.add(topic)
            self._emit(
                CAP_EXCEEDED_EVENT,
                {
                    "topic": topic,
                    "listener_count": len(listeners),
                    "max_listeners": self._max_listeners,
                },
            )

    def remove_listener(self, topic: str, handler: Handler) -> bool:
        """Remove the earliest registration of ``handler`` for ``topic``."""
        listeners = self._listeners.get(topic)
        if not listeners:
            return False
        for index, listener in enumerate(listeners):
            if listener.handler is handler:
                del listeners[index]
                self._prune(topic)
                return True
        return False

    def emit(self, topic: str, envelope: Envelope, payload: Any) -> bool:
        listeners = self._listeners.get(topic)
        if not listeners:
            return False

        snapshot = list(listeners)
        for listener in snapshot:
            if listener.once:
                if listener.fired:
                    continue
                listener.fired = True
                self._discard(topic, listener)
            listener.handler(envelope, payload)
        return True

    def listener_count(self, topic: str) -> int:
        return len(self._listeners.get(topic, ()))

    def topics(self) -> List[str]:
        return sorted(topic for topic, listeners in self._listeners.items() if listeners)

    def stats(self) -> Dict[str, int]:
        return {topic: len(listeners) for topic, listeners in self._listeners.items() if listeners}

    def _discard(self, topic: str, target: _Listener) -> None:
        listeners = self._listeners.get(topic)
        if not listeners:
            return
        for index, listener in enumerate(listeners):
            if listener is target:
                del listeners[index]
                break
        self._prune(topic)

    def _prune(self, topic: str) -> None:
        if self._listeners.get(topic):
            return
        self._listeners.pop(topic, None)
        self._warned.discard(topic)

    def _emit(self, event_type: str, payload: Dict[str, Any]) -> None:
        if self._event_sink is None:
            return
        try:
            self._event_sink(event_type, dict(payload))
        except Exception:
            return
