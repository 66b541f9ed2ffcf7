"""Coordinator core: dispatcher, replay store, join registry."""

from .types import (
    ERROR_TOPIC,
    MISSING,
    CoordinatorConfig,
    Envelope,
    SubscribeResult,
    Subscription,
    SubscriptionRequest,
)
from .dispatcher import Dispatcher, ListenerCapWarning
from .replay import ReplayStore
from .joins import JoinGroup, JoinRegistry
from .coordinator import Coordinator
from .host import MessagingHost

__all__ = [
    "ERROR_TOPIC",
    "MISSING",
    "CoordinatorConfig",
    "Envelope",
    "SubscribeResult",
    "Subscription",
    "SubscriptionRequest",
    "Dispatcher",
    "ListenerCapWarning",
    "ReplayStore",
    "JoinGroup",
    "JoinRegistry",
    "Coordinator",
    "MessagingHost",
]
