"""Composition helper for objects that talk through a coordinator."""

from __future__ import annotations

from typing import Any, Optional

from topicbus.kernel.coordinator import Coordinator
from topicbus.kernel.types import Handler, SubscribeResult


class MessagingHost:
    """Holds a coordinator and forwards ``pub``/``sub`` to it explicitly."""

    def __init__(self, coordinator: Optional[Coordinator] = None) -> None:
        self.messages = coordinator if coordinator is not None else Coordinator()

    def pub(self, topic: str, payload: Any = None) -> None:
        self.messages.publish(topic, payload)

    def sub(
        self,
        *topics: str,
        handler: Optional[Handler] = None,
        replay_on_subscribe: bool = True,
        is_once: bool = True,
    ) -> SubscribeResult:
        return self.messages.subscribe(
            *topics,
            handler=handler,
            replay_on_subscribe=replay_on_subscribe,
            is_once=is_once,
        )
