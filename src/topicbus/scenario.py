"""Scripted publish/subscribe scenarios loaded from TOML."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

try:  # pragma: no cover - exercised on Python 3.11+
    import tomllib
except ModuleNotFoundError:  # pragma: no cover - fallback for Python 3.9/3.10
    import tomli as tomllib  # type: ignore[no-redef]

from topicbus.kernel.coordinator import Coordinator
from topicbus.kernel.host import MessagingHost
from topicbus.kernel.types import ERROR_TOPIC, Envelope, Handler, SubscribeResult

OP_PUBLISH = "publish"
OP_SUBSCRIBE = "subscribe"
ERROR_WATCHER = "error-watch"


class ScenarioError(ValueError):
    """Raised when a scenario file cannot be parsed."""


def _flag(table: Dict[str, Any], key: str, default: bool, where: str) -> bool:
    value = table.get(key, default)
    if not isinstance(value, bool):
        raise ScenarioError("{0}: {1} must be true or false, got {2!r}".format(where, key, value))
    return value


def _listener_cap(value: object) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ScenarioError(
            "[coordinator]: max_listeners_per_topic must be a non-negative integer, got {0!r}".format(value)
        )
    return value


@dataclass(frozen=True)
class ScenarioStep:
    op: str
    topics: Tuple[str, ...]
    payload: Any = None
    handler: str = ""
    replay: bool = True
    once: bool = True
    then_publish: str = ""


@dataclass
class Scenario:
    name: str
    steps: List[ScenarioStep] = field(default_factory=list)
    store_published: Optional[bool] = None
    max_listeners_per_topic: Optional[int] = None
    watch_errors: bool = True


@dataclass(frozen=True)
class Delivery:
    """One handler invocation observed while running a scenario."""

    handler: str
    envelope_id: str
    time: int
    payload: Any

    def to_dict(self) -> Dict[str, Any]:
        return {
            "handler": self.handler,
            "envelope_id": self.envelope_id,
            "time": self.time,
            "payload": self.payload,
        }


@dataclass
class ScenarioReport:
    name: str
    deliveries: List[Delivery] = field(default_factory=list)
    results: List[SubscribeResult] = field(default_factory=list)
    stats: Dict[str, Any] = field(default_factory=dict)

    def deliveries_for(self, handler: str) -> List[Delivery]:
        return [item for item in self.deliveries if item.handler == handler]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "deliveries": [item.to_dict() for item in self.deliveries],
            "subscriptions": [
                {
                    "topics": list(result.topics),
                    "accepted": result.accepted,
                    "replayed": result.replayed,
                    "message": result.message,
                }
                for result in self.results
            ],
            "stats": dict(self.stats),
        }


def _parse_step(index: int, raw: object) -> ScenarioStep:
    if not isinstance(raw, dict):
        raise ScenarioError("step #{0} must be a table".format(index))

    op = str(raw.get("op") or "").strip().lower()
    if op not in {OP_PUBLISH, OP_SUBSCRIBE}:
        raise ScenarioError("step #{0}: unknown op {1!r}".format(index, raw.get("op")))

    if "topics" in raw:
        topics_raw = raw.get("topics")
        if not isinstance(topics_raw, list):
            raise ScenarioError("step #{0}: topics must be a list".format(index))
        topics = tuple(str(item) for item in topics_raw)
    elif "topic" in raw:
        topics = (str(raw.get("topic")),)
    else:
        topics = ()

    if op == OP_PUBLISH:
        if len(topics) != 1:
            raise ScenarioError("step #{0}: publish needs exactly one topic".format(index))
        return ScenarioStep(op=op, topics=topics, payload=raw.get("payload"))

    return ScenarioStep(
        op=op,
        topics=topics,
        handler=str(raw.get("handler") or "handler{0}".format(index)),
        replay=_flag(raw, "replay", True, "step #{0}".format(index)),
        once=_flag(raw, "once", True, "step #{0}".format(index)),
        then_publish=str(raw.get("then_publish") or ""),
    )


def parse_scenario(data: Dict[str, Any], name: str = "scenario") -> Scenario:
    steps_raw = data.get("steps")
    if not isinstance(steps_raw, list) or not steps_raw:
        raise ScenarioError("scenario has no [[steps]]")

    coordinator = data.get("coordinator") if isinstance(data.get("coordinator"), dict) else {}
    store_published: Optional[bool] = None
    if "store_published" in coordinator:
        store_published = _flag(coordinator, "store_published", True, "[coordinator]")
    return Scenario(
        name=str(data.get("name") or name),
        steps=[_parse_step(index, raw) for index, raw in enumerate(steps_raw, start=1)],
        store_published=store_published,
        max_listeners_per_topic=_listener_cap(coordinator.get("max_listeners_per_topic")),
        watch_errors=_flag(data, "watch_errors", True, "scenario"),
    )


def load_scenario(path: Path) -> Scenario:
    scenario_path = Path(path)
    try:
        parsed = tomllib.loads(scenario_path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ScenarioError("scenario file not found: {0}".format(scenario_path)) from exc
    except tomllib.TOMLDecodeError as exc:
        raise ScenarioError("invalid scenario file {0}: {1}".format(scenario_path, exc)) from exc
    return parse_scenario(parsed, name=scenario_path.stem)


class ScenarioRunner(MessagingHost):
    """Plays a scenario against a coordinator and records every delivery."""

    def __init__(self, scenario: Scenario, coordinator: Optional[Coordinator] = None) -> None:
        super().__init__(coordinator)
        self.scenario = scenario
        self._report = ScenarioReport(name=scenario.name)

    def run(self) -> ScenarioReport:
        if self.scenario.watch_errors:
            self.sub(
                ERROR_TOPIC,
                handler=self._recorder(ERROR_WATCHER, ""),
                replay_on_subscribe=False,
                is_once=False,
            )

        for step in self.scenario.steps:
            if step.op == OP_PUBLISH:
                self.pub(step.topics[0], step.payload)
                continue
            result = self.sub(
                *step.topics,
                handler=self._recorder(step.handler, step.then_publish),
                replay_on_subscribe=step.replay,
                is_once=step.once,
            )
            self._report.results.append(result)

        self._report.stats = self.messages.stats()
        return self._report

    def _recorder(self, label: str, then_publish: str) -> Handler:
        def handler(envelope: Envelope, payload: Any) -> None:
            self._report.deliveries.append(
                Delivery(
                    handler=label,
                    envelope_id=envelope.id,
                    time=envelope.time,
                    payload=dict(payload) if isinstance(payload, dict) else payload,
                )
            )
            if then_publish:
                self.pub(then_publish)

        return handler
