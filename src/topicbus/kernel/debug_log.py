"""JSONL diagnostics for the coordinator.

Three record kinds are written: ``publish`` (only when publish logging is
switched on), ``subscription.rejected`` and ``dispatcher.listener_cap_exceeded``.
Each line is a JSON object with the keys ``ts_ms``, ``level``, ``component``,
``kind``, ``topic``, ``message`` and ``data``.

Payload redaction modes:

* ``none``: payloads are written as published.
* ``default``: values stored under credential-like keys are masked at any depth.
* ``strict``: every scalar inside a payload is masked and only its shape is kept.

Envelopes and diagnostic fields are never masked.
"""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from topicbus.kernel.types import Envelope, now_ms

ACTIVE_FILE_NAME = "debug.log.jsonl"
REDACTED = "***REDACTED***"
REDACTION_MODES = ("default", "none", "strict")
SENSITIVE_KEY_PARTS = ("password", "passwd", "secret", "token", "credential", "authorization", "cookie")


def _is_sensitive_key(key: object) -> bool:
    lowered = str(key).lower()
    return any(part in lowered for part in SENSITIVE_KEY_PARTS)


def mask_payload(value: Any, mode: str) -> Any:
    """Return a copy of a topic payload with ``mode`` redaction applied."""
    if mode == "none":
        return value
    if isinstance(value, dict):
        return {
            key: REDACTED if _is_sensitive_key(key) else mask_payload(item, mode)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [mask_payload(item, mode) for item in value]
    if mode == "strict" and value is not None:
        return REDACTED
    return value


class DebugLogWriter:
    """Appends diagnostic records to ``<logs_dir>/debug.log.jsonl``.

    The active file is rolled over to ``.1`` (older backups shift up to
    ``.max_files``) when the next record would push it past
    ``max_file_bytes``. Write failures are counted, never raised.
    """

    def __init__(
        self,
        *,
        logs_dir: Path,
        enabled: bool,
        max_file_bytes: int = 10 * 1024 * 1024,
        max_files: int = 5,
        redaction: str = "default",
        publishes: bool = False,
    ) -> None:
        self._logs_dir = Path(logs_dir)
        self._enabled = bool(enabled)
        self._max_file_bytes = max(1, int(max_file_bytes or 0))
        self._max_files = max(1, int(max_files or 0))
        mode = str(redaction or "").strip().lower()
        self._redaction = mode if mode in REDACTION_MODES else "default"
        self._publishes = bool(publishes)
        self._write_errors = 0
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def records_publishes(self) -> bool:
        return self._enabled and self._publishes

    @property
    def active_log_file(self) -> Path:
        return self._logs_dir / ACTIVE_FILE_NAME

    def write_publish(self, envelope: Envelope, payload: Any) -> None:
        if not self.records_publishes:
            return
        self._append(
            level="info",
            component="coordinator",
            kind="publish",
            topic=envelope.id,
            message="publish {0}".format(envelope.id),
            data={"envelope": envelope.to_dict(), "payload": mask_payload(payload, self._redaction)},
            ts_ms=envelope.time,
        )

    def write_rejection(self, kind: str, message: str, topics: Sequence[object]) -> None:
        self._append(
            level="error",
            component="coordinator",
            kind=kind,
            topic=",".join(str(item) for item in topics),
            message=message,
            data={"topics": [str(item) for item in topics]},
        )

    def write_cap_exceeded(self, kind: str, topic: str, listener_count: int, max_listeners: int) -> None:
        self._append(
            level="warn",
            component="dispatcher",
            kind=kind,
            topic=topic,
            message="{0} listeners on {1!r} exceed the cap of {2}".format(listener_count, topic, max_listeners),
            data={"listener_count": listener_count, "max_listeners": max_listeners},
        )

    def status(self) -> Dict[str, Any]:
        with self._lock:
            existing = [path for path in self._all_files() if path.exists()] if self._enabled else []
            sizes = {path: path.stat().st_size for path in existing}
            return {
                "logs_enabled": self._enabled,
                "logs_dir": str(self._logs_dir),
                "logs_active_file": str(self.active_log_file),
                "logs_active_size_bytes": int(sizes.get(self.active_log_file, 0)),
                "logs_total_size_bytes": int(sum(sizes.values())),
                "logs_rotated_files": [str(path) for path in existing if path != self.active_log_file],
                "logs_max_file_bytes": self._max_file_bytes,
                "logs_max_files": self._max_files,
                "logs_redaction": self._redaction,
                "logs_publishes": self._publishes,
                "logs_write_errors": self._write_errors,
            }

    def _append(
        self,
        *,
        level: str,
        component: str,
        kind: str,
        topic: str,
        message: str,
        data: Dict[str, Any],
        ts_ms: Optional[int] = None,
    ) -> None:
        if not self._enabled:
            return
        record = {
            "ts_ms": int(now_ms() if ts_ms is None else ts_ms),
            "level": level,
            "component": component,
            "kind": kind,
            "topic": topic,
            "message": message,
            "data": data,
        }
        with self._lock:
            try:
                line = json.dumps(record, ensure_ascii=True, separators=(",", ":"), default=str) + "\n"
                encoded = line.encode("utf-8")
                self._logs_dir.mkdir(parents=True, exist_ok=True)
                active = self.active_log_file
                if active.exists() and active.stat().st_size + len(encoded) > self._max_file_bytes:
                    self._roll_over()
                with active.open("ab") as fp:
                    fp.write(encoded)
            except (OSError, ValueError):
                self._write_errors += 1

    def _all_files(self) -> List[Path]:
        active = self.active_log_file
        return [active] + [active.with_name("{0}.{1}".format(active.name, n)) for n in range(1, self._max_files + 1)]

    def _roll_over(self) -> None:
        # Walk from the oldest slot down so each replace lands on a freed name.
        files = self._all_files()
        for index in range(len(files) - 1, 0, -1):
            if files[index - 1].exists():
                files[index - 1].replace(files[index])
