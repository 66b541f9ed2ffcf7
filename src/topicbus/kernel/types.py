"""Core typed contracts shared by dispatcher, join registry, and coordinator."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

ERROR_TOPIC = "error"
DEFAULT_STORE_PUBLISHED = True
DEFAULT_MAX_LISTENERS_PER_TOPIC = 50


def now_ms() -> int:
    return int(time.time() * 1000)


class _Missing:
    """Marker for a topic that has never been published."""

    _instance: Optional["_Missing"] = None

    def __new__(cls) -> "_Missing":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


@dataclass(frozen=True)
class Envelope:
    """Delivery metadata: the topic (or joined key) and the emission time."""

    id: str
    time: int

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "time": self.time}


Handler = Callable[[Envelope, Any], None]
DiagnosticSink = Callable[[str, Dict[str, Any]], None]


@dataclass(frozen=True)
class CoordinatorConfig:
    store_published: bool = DEFAULT_STORE_PUBLISHED
    max_listeners_per_topic: int = DEFAULT_MAX_LISTENERS_PER_TOPIC


@dataclass(eq=False)
class Subscription:
    """One registered handler; compared by identity only."""

    handler: Handler
    is_once: bool = True
    replay_on_subscribe: bool = True
    fired: bool = False


@dataclass(frozen=True)
class SubscriptionRequest:
    """Explicit subscribe call: ordered topics, one handler, two switches."""

    topics: Tuple[str, ...]
    handler: Optional[Handler]
    replay_on_subscribe: bool = True
    is_once: bool = True

    @property
    def is_join(self) -> bool:
        return len(self.topics) > 1

    @property
    def join_key(self) -> str:
        return join_key(self.topics)

    def validation_error(self) -> Optional[str]:
        if self.handler is None and any(callable(topic) for topic in self.topics):
            return "handler must be passed by keyword: subscribe(topic, handler=...)"
        if self.handler is None:
            return "handler is required"
        if not callable(self.handler):
            return "handler is not callable"
        if not self.topics:
            return "at least one topic is required"
        for topic in self.topics:
            if not isinstance(topic, str) or not topic:
                return "topic must be a non-empty string: {0!r}".format(topic)
        if len(set(self.topics)) != len(self.topics):
            return "join topics must be distinct: {0}".format(self.join_key)
        return None


@dataclass(frozen=True)
class SubscribeResult:
    """Synchronous outcome of a subscribe call."""

    accepted: bool
    message: str = ""
    replayed: bool = False
    topics: Tuple[str, ...] = field(default_factory=tuple)


def join_key(topics: Tuple[str, ...]) -> str:
    return ",".join(str(topic) for topic in topics)
