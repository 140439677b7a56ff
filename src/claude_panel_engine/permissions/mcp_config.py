from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

from loguru import logger

from claude_panel_engine.cli_invocation import PERMISSION_SERVER_NAME, to_wsl_path

PERMISSIONS_PATH_ENV = "CLAUDE_PERMISSIONS_PATH"
PROMPT_SERVER_MODULE = "claude_panel_engine.permissions.prompt_server"


def _load_existing(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        return {"mcpServers": {}}
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as ex:
        logger.warning(f"Could not read MCP config {config_path}, starting fresh: {ex}")
        return {"mcpServers": {}}
    if not isinstance(data, dict):
        return {"mcpServers": {}}
    if not isinstance(data.get("mcpServers"), dict):
        data["mcpServers"] = {}
    return data


def permission_server_entry(
    requests_dir: str | Path,
    *,
    python_executable: str | None = None,
    wsl_enabled: bool = False,
) -> dict[str, Any]:
    requests_path = str(requests_dir)
    if wsl_enabled:
        requests_path = to_wsl_path(requests_path)
    return {
        "command": python_executable or sys.executable,
        "args": ["-m", PROMPT_SERVER_MODULE],
        "env": {PERMISSIONS_PATH_ENV: requests_path},
    }


def write_mcp_config(
    config_path: str | Path,
    requests_dir: str | Path,
    *,
    python_executable: str | None = None,
    wsl_enabled: bool = False,
) -> str:
    """Register the approval-prompt server, keeping any other configured servers.

    Returns the config path in the form the CLI should be given.
    """
    config_path = Path(config_path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    data = _load_existing(config_path)
    data["mcpServers"][PERMISSION_SERVER_NAME] = permission_server_entry(
        requests_dir,
        python_executable=python_executable,
        wsl_enabled=wsl_enabled,
    )
    config_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    logger.debug(f"Wrote MCP permission config to {config_path}")
    return to_wsl_path(str(config_path)) if wsl_enabled else str(config_path)
