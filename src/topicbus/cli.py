"""Typer CLI entrypoints for topicbus."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Dict

import typer

from topicbus.config import (
    ProjectConfigError,
    initialize_project_config,
    load_settings,
    project_config_exists,
    resolve_project_config_root,
)
from topicbus.kernel.coordinator import Coordinator
from topicbus.scenario import ScenarioError, ScenarioRunner, load_scenario
from topicbus.ui.render import render_deliveries, render_doctor_text, render_notice

app = typer.Typer(
    no_args_is_help=True,
    help="topicbus 消息协调器 (Topic coordinator tooling)",
)


def _missing_config_message() -> str:
    return render_notice(
        "error",
        "当前目录缺少项目配置目录：{0}，请先执行 `topicbus init`。".format(
            resolve_project_config_root()
        ),
        "Missing project config directory. Run `topicbus init` first.",
    )


def _require_project_config() -> None:
    if project_config_exists():
        return
    typer.echo(_missing_config_message(), err=True)
    raise typer.Exit(code=2)


def _normalize_format(output_format: str, allowed: set) -> str:
    normalized = output_format.strip().lower()
    if normalized not in allowed:
        typer.echo(
            render_notice(
                "error",
                "不支持的格式：{0}".format(output_format),
                "Unsupported format: {0}".format(output_format),
            ),
            err=True,
        )
        raise typer.Exit(code=2)
    return normalized


@app.command("init")
def init_cmd(
    force: bool = typer.Option(
        False,
        "--force",
        help="重建 .topicbus_config（会先删除已有目录） (Recreate config directory)",
    ),
) -> None:
    try:
        config_root = initialize_project_config(force=force)
    except ProjectConfigError as exc:
        typer.echo(render_notice("error", str(exc)), err=True)
        raise typer.Exit(code=2)

    typer.echo(
        render_notice(
            "success",
            "项目配置初始化完成：{0}".format(config_root),
            "Initialized project config at: {0}".format(config_root),
        )
    )


@app.command("run")
def run_cmd(
    scenario_path: Path = typer.Argument(..., help="场景文件 (Scenario TOML file)"),
    output_format: str = typer.Option("text", "--format", help="输出格式：text|json (Output format)"),
) -> None:
    """执行一个发布/订阅场景 (Run a publish/subscribe scenario)."""
    normalized_format = _normalize_format(output_format, {"text", "json"})

    try:
        scenario = load_scenario(scenario_path)
        settings = load_settings(
            store_published=scenario.store_published,
            max_listeners_per_topic=scenario.max_listeners_per_topic,
            require_config=False,
        )
    except (ScenarioError, ProjectConfigError) as exc:
        typer.echo(render_notice("error", str(exc)), err=True)
        raise typer.Exit(code=2)

    report = ScenarioRunner(scenario, Coordinator.from_settings(settings)).run()
    if normalized_format == "json":
        typer.echo(json.dumps(report.to_dict(), ensure_ascii=True, indent=2, default=str))
        return
    render_deliveries(report, sys.stdout)


@app.command("doctor")
def doctor_cmd(
    output_format: str = typer.Option("json", "--format", help="输出格式：json|text (Output format)"),
) -> None:
    normalized_format = _normalize_format(output_format, {"json", "text"})
    _require_project_config()

    try:
        settings = load_settings()
    except ProjectConfigError as exc:
        typer.echo(render_notice("error", str(exc)), err=True)
        raise typer.Exit(code=2)

    coordinator = Coordinator.from_settings(settings)
    report: Dict[str, Any] = settings.as_dict()
    if coordinator.debug_log is not None:
        report.update(coordinator.debug_log.status())
    if normalized_format == "json":
        typer.echo(json.dumps(report, ensure_ascii=True, indent=2))
        return
    typer.echo(render_doctor_text(report))


def main() -> None:
    app()
