from __future__ import annotations

import shlex
import subprocess
from typing import Protocol, runtime_checkable

from loguru import logger

from claude_panel_engine.app_config import WslSettings


@runtime_checkable
class TerminalLauncher(Protocol):
    def open(self, title: str, command: list[str]) -> None: ...


class SubprocessTerminalLauncher:
    """Opens an interactive terminal window running ``command``.

    ``terminal_prefix`` is the emulator invocation the command is appended to,
    e.g. ``["x-terminal-emulator", "-e"]``.
    """

    def __init__(self, terminal_prefix: list[str], *, cwd: str | None = None):
        self._terminal_prefix = list(terminal_prefix)
        self._cwd = cwd

    def open(self, title: str, command: list[str]) -> None:
        argv = [*self._terminal_prefix, *command]
        logger.info(f"Opening terminal {title!r}: {shlex.join(command)}")
        subprocess.Popen(argv, cwd=self._cwd, start_new_session=True)


def claude_terminal_command(cli_command: list[str], args: list[str], wsl: WslSettings) -> list[str]:
    """The interactive (non ``-p``) form of the CLI, optionally inside WSL."""
    if wsl.enabled:
        return ["wsl", "-d", wsl.distro, wsl.node_path, "--no-warnings", "--enable-source-maps", wsl.claude_path, *args]
    return [*cli_command, *args]
