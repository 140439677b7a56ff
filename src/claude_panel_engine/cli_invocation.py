from __future__ import annotations

import os
import re
import shlex

from claude_panel_engine.app_config import WslSettings

PERMISSION_SERVER_NAME = "claude-panel-permissions"
APPROVAL_TOOL_NAME = f"mcp__{PERMISSION_SERVER_NAME}__approval_prompt"

PLAN_MODE_PREFIX = (
    "PLAN FIRST FOR THIS MESSAGE ONLY: Plan first before making any changes. "
    "Show me in detail what you will change and wait for my explicit approval in a separate message "
    "before proceeding. Do not implement anything until I confirm. "
    "This planning requirement applies ONLY to this current message. \n\n"
)

THINKING_PHRASES = {
    "think": "THINK",
    "think-hard": "THINK HARD",
    "think-harder": "THINK HARDER",
    "ultrathink": "ULTRATHINK",
}

_WINDOWS_DRIVE = re.compile(r"^([A-Za-z]):[\\/]")


def compose_message(text: str, *, plan_mode: bool, thinking_mode: bool, thinking_intensity: str) -> str:
    """Prefix the planning and thinking directives the CLI understands."""
    message = text
    if plan_mode:
        message = PLAN_MODE_PREFIX + message
    if thinking_mode:
        phrase = THINKING_PHRASES.get(thinking_intensity, THINKING_PHRASES["think"])
        message = f"{phrase} THROUGH THIS STEP BY STEP: \n" + message
    return message


def build_cli_args(
    *,
    session_id: str | None,
    model: str,
    yolo_mode: bool,
    mcp_config_path: str | None,
) -> list[str]:
    args = ["-p", "--output-format", "stream-json", "--verbose"]

    if yolo_mode:
        args.append("--dangerously-skip-permissions")
    elif mcp_config_path:
        args.extend(
            [
                "--mcp-config",
                mcp_config_path,
                "--allowedTools",
                APPROVAL_TOOL_NAME,
                "--permission-prompt-tool",
                APPROVAL_TOOL_NAME,
            ]
        )

    if model and model != "default":
        args.extend(["--model", model])

    if session_id:
        args.extend(["--resume", session_id])

    return args


def build_command(cli_command: list[str], args: list[str], wsl: WslSettings) -> list[str]:
    if not wsl.enabled:
        return [*cli_command, *args]
    quoted = " ".join(shlex.quote(arg) for arg in args)
    inner = f'"{wsl.node_path}" --no-warnings --enable-source-maps "{wsl.claude_path}" {quoted}'
    return ["wsl", "-d", wsl.distro, "bash", "-ic", inner]


def build_environment(base: dict[str, str] | None = None) -> dict[str, str]:
    env = dict(os.environ if base is None else base)
    env["FORCE_COLOR"] = "0"
    env["NO_COLOR"] = "1"
    return env


def to_wsl_path(path: str) -> str:
    """C:\\Users\\me -> /mnt/c/Users/me. POSIX paths are returned unchanged."""
    match = _WINDOWS_DRIVE.match(path)
    if not match:
        return path
    rest = path[match.end():].replace("\\", "/")
    return f"/mnt/{match.group(1).lower()}/{rest}"
