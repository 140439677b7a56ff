from __future__ import annotations

import json
import sys
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

VALID_MODELS = ("default", "opus", "sonnet")
THINKING_INTENSITIES = ("think", "think-hard", "think-harder", "ultrathink")


@dataclass
class WslSettings:
    enabled: bool = False
    distro: str = "Ubuntu"
    node_path: str = "/usr/bin/node"
    claude_path: str = "/usr/local/bin/claude"


@dataclass
class AppConfig:
    cli_command: list[str]
    model: str
    yolo_mode: bool
    thinking_intensity: str
    storage_path: str
    working_directory: str
    stop_grace_seconds: float
    permission_poll_interval: float
    backup_enabled: bool
    wsl: WslSettings
    terminal_command: list[str] = field(default_factory=list)
    log_level: str = "INFO"
    log_consumers: list | None = None

    @property
    def permissions_dir(self) -> Path:
        return Path(self.storage_path) / "permission-requests"

    @property
    def permissions_store_path(self) -> Path:
        return self.permissions_dir / "permissions.json"

    @property
    def mcp_config_path(self) -> Path:
        return Path(self.storage_path) / "mcp" / "mcp-servers.json"

    @property
    def backups_dir(self) -> Path:
        return Path(self.storage_path) / "backups"

    @property
    def conversations_dir(self) -> Path:
        return Path(self.storage_path) / "conversations"

    @property
    def logs_dir(self) -> Path:
        return Path(self.storage_path) / "logs"


def load_json_config() -> dict:
    config_path = Path.cwd() / "config.json"
    if not config_path.exists():
        return {}
    try:
        with open(config_path, encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as ex:
        logger.warning(f"Could not read {config_path}, using defaults: {ex}")
        return {}


def _to_bool(value: object, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return bool(value)


def _to_command(value: object, default: list[str]) -> list[str]:
    if isinstance(value, str) and value.strip():
        return value.split()
    if isinstance(value, list) and value:
        return [str(part) for part in value]
    return list(default)


def default_terminal_command() -> list[str]:
    if sys.platform == "win32":
        return ["cmd", "/c", "start", "cmd", "/k"]
    if sys.platform == "darwin":
        return ["open", "-a", "Terminal"]
    return ["x-terminal-emulator", "-e"]


def parse_app_config(config: dict) -> AppConfig:
    wsl = config.get("Wsl") or {}
    model = str(config.get("Model", "default")).strip().lower()
    if model not in VALID_MODELS:
        logger.warning(f"Unknown model {model!r} in config, falling back to default")
        model = "default"

    return AppConfig(
        cli_command=_to_command(config.get("CliCommand"), ["claude"]),
        model=model,
        yolo_mode=_to_bool(config.get("YoloMode", False), default=False),
        thinking_intensity=str(config.get("ThinkingIntensity", "think")).strip().lower(),
        storage_path=str(config.get("StoragePath", ".claude_panel")),
        working_directory=str(config.get("WorkingDirectory") or Path.cwd()),
        stop_grace_seconds=float(config.get("StopGraceSeconds", 2.0)),
        permission_poll_interval=float(config.get("PermissionPollInterval", 0.2)),
        backup_enabled=_to_bool(config.get("BackupEnabled", True), default=True),
        wsl=WslSettings(
            enabled=_to_bool(wsl.get("Enabled", False), default=False),
            distro=str(wsl.get("Distro", "Ubuntu")),
            node_path=str(wsl.get("NodePath", "/usr/bin/node")),
            claude_path=str(wsl.get("ClaudePath", "/usr/local/bin/claude")),
        ),
        terminal_command=_to_command(config.get("TerminalCommand"), default_terminal_command()),
        log_level=config.get("LogLevel", "INFO"),
        log_consumers=config.get("LogConsumers"),
    )
