"""Last-value store consulted by late subscribers."""

from __future__ import annotations

from typing import Any, Dict, Iterable, Optional

from topicbus.kernel.types import MISSING


class ReplayStore:
    """Maps topic -> latest payload; empty and inert when disabled."""

    def __init__(self, enabled: bool = True) -> None:
        self._enabled = bool(enabled)
        self._published: Dict[str, Any] = {}

    @property
    def enabled(self) -> bool:
        return self._enabled

    def record(self, topic: str, payload: Any) -> None:
        if not self._enabled:
            return
        self._published[topic] = payload

    def has(self, topic: str) -> bool:
        return topic in self._published

    def get(self, topic: str) -> Any:
        return self._published.get(topic, MISSING)

    def lookup_all(self, topics: Iterable[str]) -> Optional[Dict[str, Any]]:
        """Stored payloads for every topic, or None if any was never published."""
        collected: Dict[str, Any] = {}
        for topic in topics:
            if topic not in self._published:
                return None
            collected[topic] = self._published[topic]
        return collected

    def snapshot(self) -> Dict[str, Any]:
        return dict(self._published)

    def __len__(self) -> int:
        return len(self._published)

    def __contains__(self, topic: object) -> bool:
        return topic in self._published
