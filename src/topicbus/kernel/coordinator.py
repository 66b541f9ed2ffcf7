"""Topic coordinator: replay, join subscriptions, once/persistent listening."""

from __future__ import annotations

import threading
import warnings
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

from topicbus.kernel.debug_log import DebugLogWriter
from topicbus.kernel.dispatcher import CAP_EXCEEDED_EVENT, Dispatcher, ListenerCapWarning
from topicbus.kernel.joins import JoinRegistry
from topicbus.kernel.replay import ReplayStore
from topicbus.kernel.types import (
    ERROR_TOPIC,
    MISSING,
    CoordinatorConfig,
    DiagnosticSink,
    Envelope,
    Handler,
    SubscribeResult,
    Subscription,
    SubscriptionRequest,
    now_ms,
)

if TYPE_CHECKING:  # pragma: no cover
    from topicbus.config import Settings

REJECTED_EVENT = "subscription.rejected"
_SOURCE = __name__


class Coordinator:
    """In-process publish/subscribe facade.

    Every entry point runs under one re-entrant lock: handlers may publish and
    subscribe from inside a delivery, while calls from other threads wait for
    the current turn to finish.

    Handler exceptions are not caught. They propagate out of ``publish`` (or
    out of ``subscribe`` for replayed deliveries) and stop the remaining
    handlers of that pass; one-shot bookkeeping is applied before the raise.
    """

    def __init__(
        self,
        config: Optional[CoordinatorConfig] = None,
        *,
        debug_log: Optional[DebugLogWriter] = None,
        event_sink: Optional[DiagnosticSink] = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._config = config or CoordinatorConfig()
        self._debug_log = debug_log
        self._event_sink = event_sink
        self._clock = clock
        self._lock = threading.RLock()
        self._dispatcher = Dispatcher(
            max_listeners=self._config.max_listeners_per_topic,
            event_sink=self._diagnostic,
        )
        self._replay = ReplayStore(enabled=self._config.store_published)
        self._joins = JoinRegistry(self._dispatcher, clock=clock)

    @classmethod
    def from_settings(
        cls,
        settings: "Settings",
        event_sink: Optional[DiagnosticSink] = None,
    ) -> "Coordinator":
        debug_log = DebugLogWriter(
            logs_dir=settings.logs_dir,
            enabled=settings.logs_enabled,
            max_file_bytes=settings.logs_max_file_bytes,
            max_files=settings.logs_max_files,
            redaction=settings.logs_redaction,
            publishes=settings.logs_publishes,
        )
        return cls(
            settings.coordinator_config(),
            debug_log=debug_log,
            event_sink=event_sink,
        )

    @property
    def config(self) -> CoordinatorConfig:
        return self._config

    @property
    def debug_log(self) -> Optional[DebugLogWriter]:
        return self._debug_log

    def publish(self, topic: str, payload: Any = None) -> None:
        with self._lock:
            self._joins.refresh(topic, payload)
            envelope = self._envelope(topic)
            self._replay.record(topic, payload)
            if self._debug_log is not None and self._debug_log.records_publishes:
                self._debug_log.write_publish(envelope, payload)
            self._dispatcher.emit(topic, envelope, payload)

    def subscribe(
        self,
        *topics: str,
        handler: Optional[Handler] = None,
        replay_on_subscribe: bool = True,
        is_once: bool = True,
    ) -> SubscribeResult:
        """Subscribe ``handler`` to one topic, or to all of ``topics`` as a join.

        ``subscribe("a", handler=h)`` fires on ``a``;
        ``subscribe("a", "b", handler=h)`` fires once both have data since the
        group last completed, with ``{"a": ..., "b": ...}``.

        The handler is keyword-only. Join topics must be distinct; a repeated
        topic is rejected like any other invalid subscription (reported on
        ``"error"``, nothing registered).
        """
        return self.submit(
            SubscriptionRequest(
                topics=tuple(topics),
                handler=handler,
                replay_on_subscribe=bool(replay_on_subscribe),
                is_once=bool(is_once),
            )
        )

    def submit(self, request: SubscriptionRequest) -> SubscribeResult:
        error = request.validation_error()
        if error is not None:
            return self._reject(request, error)

        with self._lock:
            if request.is_join:
                return self._subscribe_join(request, request.handler)  # type: ignore[arg-type]
            return self._subscribe_single(request, request.handler)  # type: ignore[arg-type]

    def listener_count(self, topic: str) -> int:
        with self._lock:
            return self._dispatcher.listener_count(topic)

    def pending_joins(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return self._joins.pending()

    def replayed(self, topic: str) -> Any:
        """Stored payload for ``topic``, or ``MISSING`` if never published."""
        with self._lock:
            return self._replay.get(topic)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "store_published": self._config.store_published,
                "max_listeners_per_topic": self._config.max_listeners_per_topic,
                "listeners": self._dispatcher.stats(),
                "join_groups": len(self._joins),
                "replayed_topics": len(self._replay),
            }

    def _subscribe_single(self, request: SubscriptionRequest, handler: Handler) -> SubscribeResult:
        topic = request.topics[0]

        replayed = False
        if request.replay_on_subscribe:
            stored = self._replay.get(topic)
            if stored is not MISSING:
                replayed = True
                handler(self._envelope(topic), stored)
                if request.is_once:
                    return self._accepted(request, replayed)

        self._dispatcher.add_listener(topic, handler, once=request.is_once)
        return self._accepted(request, replayed)

    def _subscribe_join(self, request: SubscriptionRequest, handler: Handler) -> SubscribeResult:
        subscription = Subscription(
            handler=handler,
            is_once=request.is_once,
            replay_on_subscribe=request.replay_on_subscribe,
        )
        group = self._joins.get(request.topics)

        if group is None:
            self._joins.create(request.topics, subscription)
            replayed = False
            if self._replay.enabled and request.replay_on_subscribe:
                replayed = self._feed_stored(request)
            return self._accepted(request, replayed)

        if self._replay.enabled and request.replay_on_subscribe:
            stored = self._replay.lookup_all(request.topics)
            if stored is not None:
                handler(self._envelope(request.join_key), stored)
                if not request.is_once:
                    self._joins.add(group, subscription)
                return self._accepted(request, True)

        self._joins.add(group, subscription)
        return self._accepted(request, False)

    def _feed_stored(self, request: SubscriptionRequest) -> bool:
        """Push already-published values into a new group; True if it completed."""
        stored = self._replay.lookup_all(request.topics)
        for topic in request.topics:
            value = self._replay.get(topic)
            if value is MISSING:
                continue
            self._joins.accumulate(request.topics, topic, value)
        return stored is not None

    def _reject(self, request: SubscriptionRequest, error: str) -> SubscribeResult:
        message = "subscribe: {0}".format(error)
        self._diagnostic(
            REJECTED_EVENT,
            {
                "source": _SOURCE,
                "message": message,
                "topics": [str(item) for item in request.topics],
            },
        )
        self.publish(ERROR_TOPIC, {"source": _SOURCE, "message": message})
        return SubscribeResult(accepted=False, message=message, topics=request.topics)

    @staticmethod
    def _accepted(request: SubscriptionRequest, replayed: bool) -> SubscribeResult:
        return SubscribeResult(
            accepted=True,
            message="subscribed",
            replayed=replayed,
            topics=request.topics,
        )

    def _envelope(self, topic: str) -> Envelope:
        return Envelope(id=topic, time=self._clock())

    def _diagnostic(self, event_type: str, payload: Dict[str, Any]) -> None:
        writer = self._debug_log
        logged = writer is not None and writer.enabled
        if writer is not None and logged and event_type == REJECTED_EVENT:
            writer.write_rejection(event_type, str(payload["message"]), payload["topics"])
        elif writer is not None and logged and event_type == CAP_EXCEEDED_EVENT:
            writer.write_cap_exceeded(
                event_type,
                str(payload["topic"]),
                int(payload["listener_count"]),
                int(payload["max_listeners"]),
            )

        if self._event_sink is not None:
            try:
                self._event_sink(event_type, dict(payload))
            except Exception:
                pass
        elif not logged and event_type == CAP_EXCEEDED_EVENT:
            warnings.warn(
                "{0} listeners on topic {1!r} exceed max_listeners_per_topic={2}".format(
                    payload["listener_count"], payload["topic"], payload["max_listeners"]
                ),
                ListenerCapWarning,
                stacklevel=2,
            )
