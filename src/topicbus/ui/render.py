"""Presentation helpers for topicbus CLI output."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, TextIO

from rich import box
from rich.console import Console
from rich.table import Table

from topicbus.scenario import ScenarioReport


def bilingual_text(zh: str, en: Optional[str] = None) -> str:
    if not en:
        return zh
    return "{0} ({1})".format(zh, en)


def render_notice(level: str, zh: str, en: Optional[str] = None) -> str:
    prefix_map = {
        "info": bilingual_text("提示", "Info"),
        "warn": bilingual_text("警告", "Warning"),
        "error": bilingual_text("错误", "Error"),
        "success": bilingual_text("成功", "Success"),
    }
    prefix = prefix_map.get(level, bilingual_text("提示", "Info"))
    return "{0}: {1}".format(prefix, bilingual_text(zh, en))


def _is_tty(stream: TextIO, forced: Optional[bool]) -> bool:
    if forced is not None:
        return forced
    isatty = getattr(stream, "isatty", None)
    if callable(isatty):
        try:
            return bool(isatty())
        except Exception:
            return False
    return False


def _format_payload(payload: Any) -> str:
    if payload is None:
        return "null"
    if isinstance(payload, str):
        return payload
    try:
        return json.dumps(payload, ensure_ascii=False, sort_keys=True, default=str)
    except (TypeError, ValueError):
        return repr(payload)


def render_deliveries(report: ScenarioReport, stream: TextIO, is_tty: Optional[bool] = None) -> None:
    title = bilingual_text("投递记录", "Deliveries")
    rejected = [result for result in report.results if not result.accepted]

    if _is_tty(stream, is_tty):
        console = Console(file=stream, highlight=False, soft_wrap=True)
        table = Table(title="{0}: {1}".format(title, report.name), box=box.ROUNDED)
        table.add_column("#", justify="right")
        table.add_column("handler", style="cyan")
        table.add_column("id")
        table.add_column("payload")
        for index, delivery in enumerate(report.deliveries, start=1):
            table.add_row(
                str(index),
                delivery.handler,
                delivery.envelope_id,
                _format_payload(delivery.payload),
            )
        console.print(table)
        for result in rejected:
            console.print(render_notice("warn", result.message), style="yellow")
        return

    stream.write("{0}: {1}\n".format(title, report.name))
    for index, delivery in enumerate(report.deliveries, start=1):
        stream.write(
            "{0}. {1} <- {2} {3}\n".format(
                index,
                delivery.handler,
                delivery.envelope_id,
                _format_payload(delivery.payload),
            )
        )
    if not report.deliveries:
        stream.write(bilingual_text("无投递", "no deliveries") + "\n")
    for result in rejected:
        stream.write(render_notice("warn", result.message) + "\n")


def render_doctor_text(report: Dict[str, Any]) -> str:
    lines: List[str] = [
        bilingual_text("系统诊断", "Doctor Report"),
        "project_root={0}".format(report.get("project_root", "")),
        "config_root={0}".format(report.get("config_root", "")),
        "config_loaded={0}".format(bool(report.get("config_loaded"))),
        "",
        bilingual_text("协调器", "Coordinator"),
        "store_published={0}".format(bool(report.get("store_published"))),
        "max_listeners_per_topic={0}".format(int(report.get("max_listeners_per_topic") or 0)),
        "",
        bilingual_text("调试日志", "Debug Logs"),
        "logs_enabled={0} logs_publishes={1}".format(
            bool(report.get("logs_enabled")),
            bool(report.get("logs_publishes")),
        ),
        "logs_active_size_bytes={0} logs_total_size_bytes={1}".format(
            int(report.get("logs_active_size_bytes") or 0),
            int(report.get("logs_total_size_bytes") or 0),
        ),
        "logs_max_file_bytes={0} logs_max_files={1}".format(
            int(report.get("logs_max_file_bytes") or 0),
            int(report.get("logs_max_files") or 0),
        ),
        "logs_write_errors={0}".format(int(report.get("logs_write_errors") or 0)),
    ]
    return "\n".join(lines)
