"""Configuration loading and directory resolution for topicbus."""

from __future__ import annotations

import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

try:  # pragma: no cover - exercised on Python 3.11+
    import tomllib
except ModuleNotFoundError:  # pragma: no cover - fallback for Python 3.9/3.10
    import tomli as tomllib  # type: ignore[no-redef]

from topicbus.kernel.types import (
    DEFAULT_MAX_LISTENERS_PER_TOPIC,
    DEFAULT_STORE_PUBLISHED,
    CoordinatorConfig,
)

CONFIG_DIR_NAME = ".topicbus_config"
CONFIG_FILE_NAME = "config.toml"
LOGS_DIR_NAME = "logs"

DEFAULT_LOGS_ENABLED = True
DEFAULT_LOGS_PUBLISHES = False
DEFAULT_LOGS_MAX_FILE_BYTES = 10 * 1024 * 1024
DEFAULT_LOGS_MAX_FILES = 5
DEFAULT_LOGS_REDACTION = "default"
ALLOWED_LOG_REDACTION = ("default", "none", "strict")


class ProjectConfigError(RuntimeError):
    """Raised when project configuration is missing or invalid."""


@dataclass
class ProjectConfig:
    store_published: bool = DEFAULT_STORE_PUBLISHED
    max_listeners_per_topic: int = DEFAULT_MAX_LISTENERS_PER_TOPIC
    logs_enabled: bool = DEFAULT_LOGS_ENABLED
    logs_publishes: bool = DEFAULT_LOGS_PUBLISHES
    logs_max_file_bytes: int = DEFAULT_LOGS_MAX_FILE_BYTES
    logs_max_files: int = DEFAULT_LOGS_MAX_FILES
    logs_redaction: str = DEFAULT_LOGS_REDACTION


@dataclass
class Settings:
    """Resolved settings for one coordinator instance."""

    project_root: Path
    config_root: Path
    store_published: bool = DEFAULT_STORE_PUBLISHED
    max_listeners_per_topic: int = DEFAULT_MAX_LISTENERS_PER_TOPIC
    logs_enabled: bool = DEFAULT_LOGS_ENABLED
    logs_publishes: bool = DEFAULT_LOGS_PUBLISHES
    logs_max_file_bytes: int = DEFAULT_LOGS_MAX_FILE_BYTES
    logs_max_files: int = DEFAULT_LOGS_MAX_FILES
    logs_redaction: str = DEFAULT_LOGS_REDACTION
    config_loaded: bool = True

    @property
    def config_file(self) -> Path:
        return self.config_root / CONFIG_FILE_NAME

    @property
    def logs_dir(self) -> Path:
        return self.config_root / LOGS_DIR_NAME

    def coordinator_config(self) -> CoordinatorConfig:
        return CoordinatorConfig(
            store_published=self.store_published,
            max_listeners_per_topic=self.max_listeners_per_topic,
        )

    def as_dict(self) -> Dict[str, object]:
        return {
            "project_root": str(self.project_root),
            "config_root": str(self.config_root),
            "config_loaded": self.config_loaded,
            "store_published": self.store_published,
            "max_listeners_per_topic": self.max_listeners_per_topic,
            "logs_enabled": self.logs_enabled,
            "logs_publishes": self.logs_publishes,
            "logs_max_file_bytes": self.logs_max_file_bytes,
            "logs_max_files": self.logs_max_files,
            "logs_redaction": self.logs_redaction,
        }


def resolve_project_root(workspace_dir: Optional[Path] = None) -> Path:
    return (workspace_dir or Path.cwd()).resolve()


def resolve_project_config_root(workspace_dir: Optional[Path] = None) -> Path:
    return resolve_project_root(workspace_dir) / CONFIG_DIR_NAME


def project_config_exists(workspace_dir: Optional[Path] = None) -> bool:
    config_root = resolve_project_config_root(workspace_dir)
    return config_root.is_dir() and (config_root / CONFIG_FILE_NAME).is_file()


def _safe_positive_int_or_default(value: object, default: int) -> int:
    try:
        converted = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    if converted <= 0:
        return default
    return converted


def _safe_listener_cap(value: object, default: int) -> int:
    # 0 disables the cap; negative values are treated as unset.
    if isinstance(value, bool):
        return default
    try:
        converted = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    if converted < 0:
        return default
    return converted


def _safe_bool(value: object, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"1", "true", "yes", "on"}:
            return True
        if normalized in {"0", "false", "no", "off"}:
            return False
    return default


def _safe_redaction(value: object, default: str) -> str:
    normalized = str(value or default).strip().lower()
    if normalized not in ALLOWED_LOG_REDACTION:
        return default
    return normalized


def _table(data: Dict[str, object], name: str) -> Dict[str, object]:
    value = data.get(name)
    return value if isinstance(value, dict) else {}


def _parse_project_config_data(data: Dict[str, object]) -> ProjectConfig:
    coordinator = _table(data, "coordinator")
    runtime = _table(data, "runtime")
    logs = _table(runtime, "logs")

    return ProjectConfig(
        store_published=_safe_bool(coordinator.get("store_published"), DEFAULT_STORE_PUBLISHED),
        max_listeners_per_topic=_safe_listener_cap(
            coordinator.get("max_listeners_per_topic"),
            DEFAULT_MAX_LISTENERS_PER_TOPIC,
        ),
        logs_enabled=_safe_bool(logs.get("enabled"), DEFAULT_LOGS_ENABLED),
        logs_publishes=_safe_bool(logs.get("publishes"), DEFAULT_LOGS_PUBLISHES),
        logs_max_file_bytes=_safe_positive_int_or_default(
            logs.get("max_file_bytes"),
            DEFAULT_LOGS_MAX_FILE_BYTES,
        ),
        logs_max_files=_safe_positive_int_or_default(logs.get("max_files"), DEFAULT_LOGS_MAX_FILES),
        logs_redaction=_safe_redaction(logs.get("redaction"), DEFAULT_LOGS_REDACTION),
    )


def _render_project_config(config: ProjectConfig) -> str:
    lines: List[str] = [
        "[coordinator]",
        "store_published = {0}".format(str(bool(config.store_published)).lower()),
        "max_listeners_per_topic = {0}".format(
            _safe_listener_cap(config.max_listeners_per_topic, DEFAULT_MAX_LISTENERS_PER_TOPIC)
        ),
        "",
        "[runtime.logs]",
        "enabled = {0}".format(str(bool(config.logs_enabled)).lower()),
        "publishes = {0}".format(str(bool(config.logs_publishes)).lower()),
        "max_file_bytes = {0}".format(
            _safe_positive_int_or_default(config.logs_max_file_bytes, DEFAULT_LOGS_MAX_FILE_BYTES)
        ),
        "max_files = {0}".format(_safe_positive_int_or_default(config.logs_max_files, DEFAULT_LOGS_MAX_FILES)),
        'redaction = "{0}"'.format(_safe_redaction(config.logs_redaction, DEFAULT_LOGS_REDACTION)),
        "",
    ]
    return "\n".join(lines)


def initialize_project_config(workspace_dir: Optional[Path] = None, force: bool = False) -> Path:
    project_root = resolve_project_root(workspace_dir)
    config_root = resolve_project_config_root(project_root)

    if config_root.exists():
        if not force:
            raise ProjectConfigError(
                "配置目录已存在：{0} (configuration directory already exists)".format(config_root)
            )
        shutil.rmtree(config_root)

    (config_root / LOGS_DIR_NAME).mkdir(parents=True, exist_ok=True)
    (config_root / CONFIG_FILE_NAME).write_text(
        _render_project_config(ProjectConfig()),
        encoding="utf-8",
    )
    return config_root


def load_project_config(config_root: Optional[Path] = None, workspace_dir: Optional[Path] = None) -> ProjectConfig:
    resolved_root = (config_root or resolve_project_config_root(workspace_dir)).resolve()
    config_file = resolved_root / CONFIG_FILE_NAME
    if not resolved_root.is_dir() or not config_file.is_file():
        raise ProjectConfigError(
            "缺少项目配置目录：{0}，请先执行 `topicbus init` (missing project config directory)".format(
                resolved_root
            )
        )

    try:
        parsed = tomllib.loads(config_file.read_text(encoding="utf-8"))
    except Exception as exc:
        raise ProjectConfigError("配置文件无效：{0} (invalid config file)".format(config_file)) from exc

    if not isinstance(parsed, dict):
        raise ProjectConfigError("配置文件无效：{0} (invalid config file)".format(config_file))

    return _parse_project_config_data(parsed)


def save_project_config(
    config: ProjectConfig,
    config_root: Optional[Path] = None,
    workspace_dir: Optional[Path] = None,
) -> Path:
    resolved_root = (config_root or resolve_project_config_root(workspace_dir)).resolve()
    config_file = resolved_root / CONFIG_FILE_NAME
    if not resolved_root.is_dir():
        raise ProjectConfigError(
            "缺少项目配置目录：{0}，请先执行 `topicbus init` (missing project config directory)".format(
                resolved_root
            )
        )
    config_file.write_text(_render_project_config(config), encoding="utf-8")
    return config_file


def load_settings(
    store_published: Optional[bool] = None,
    max_listeners_per_topic: Optional[int] = None,
    workspace_dir: Optional[Path] = None,
    require_config: bool = True,
) -> Settings:
    """Resolve settings from project config + explicit overrides.

    With ``require_config=False`` a missing config directory yields defaults
    (logging disabled) instead of raising ``ProjectConfigError``.
    """

    project_root = resolve_project_root(workspace_dir)
    config_root = resolve_project_config_root(project_root)
    config_loaded = True
    if require_config or project_config_exists(project_root):
        project_config = load_project_config(config_root=config_root)
    else:
        project_config = ProjectConfig(logs_enabled=False)
        config_loaded = False

    resolved_store = project_config.store_published if store_published is None else bool(store_published)
    resolved_cap = _safe_listener_cap(
        max_listeners_per_topic if max_listeners_per_topic is not None else project_config.max_listeners_per_topic,
        DEFAULT_MAX_LISTENERS_PER_TOPIC,
    )

    return Settings(
        project_root=project_root,
        config_root=config_root,
        store_published=resolved_store,
        max_listeners_per_topic=resolved_cap,
        logs_enabled=project_config.logs_enabled,
        logs_publishes=project_config.logs_publishes,
        logs_max_file_bytes=project_config.logs_max_file_bytes,
        logs_max_files=project_config.logs_max_files,
        logs_redaction=project_config.logs_redaction,
        config_loaded=config_loaded,
    )
