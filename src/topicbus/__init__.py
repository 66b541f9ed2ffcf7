"""In-process topic coordinator with replay and join subscriptions."""

from topicbus.kernel.coordinator import Coordinator
from topicbus.kernel.dispatcher import ListenerCapWarning
from topicbus.kernel.host import MessagingHost
from topicbus.kernel.types import (
    ERROR_TOPIC,
    MISSING,
    CoordinatorConfig,
    Envelope,
    SubscribeResult,
    SubscriptionRequest,
)

__version__ = "0.1.0"

__all__ = [
    "Coordinator",
    "CoordinatorConfig",
    "Envelope",
    "ERROR_TOPIC",
    "ListenerCapWarning",
    "MISSING",
    "MessagingHost",
    "SubscribeResult",
    "SubscriptionRequest",
]
