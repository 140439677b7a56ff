from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol, runtime_checkable

from loguru import logger

from claude_panel_engine.errors import BackupError
from claude_panel_engine.session_state import BackupCommit

_MESSAGE_PREVIEW_CHARS = 50


@runtime_checkable
class BackupHook(Protocol):
    async def create_backup(self, user_message: str) -> BackupCommit | None: ...
    async def restore(self, sha: str) -> None: ...


def _preview(user_message: str) -> str:
    if len(user_message) > _MESSAGE_PREVIEW_CHARS:
        return user_message[:_MESSAGE_PREVIEW_CHARS] + "..."
    return user_message


class GitBackupHook:
    """Snapshots the workspace into a separate git directory before each turn."""

    def __init__(self, backups_dir: str | Path, workspace: str | Path):
        self._git_dir = Path(backups_dir) / ".git"
        self._workspace = Path(workspace)
        self._initialized = False

    async def _git(self, *args: str, check: bool = True) -> tuple[int, str]:
        command = ["--git-dir", str(self._git_dir), "--work-tree", str(self._workspace), *args]
        proc = await asyncio.create_subprocess_exec(
            "git",
            *command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(self._workspace),
        )
        stdout, stderr = await proc.communicate()
        returncode = proc.returncode if proc.returncode is not None else -1
        if check and returncode != 0:
            raise BackupError(list(args), returncode, stderr.decode(errors="replace"))
        return returncode, stdout.decode(errors="replace")

    async def ensure_repo(self) -> None:
        if self._initialized:
            return
        if not (self._git_dir / "HEAD").exists():
            self._git_dir.parent.mkdir(parents=True, exist_ok=True)
            await self._git("init")
            await self._git("config", "user.name", "Claude Code Panel")
            await self._git("config", "user.email", "claude@panel.local")
            logger.info(f"Initialised backup repository at {self._git_dir}")
        self._initialized = True

    async def create_backup(self, user_message: str) -> BackupCommit | None:
        await self.ensure_repo()
        await self._git("add", "-A")

        head_code, _ = await self._git("rev-parse", "HEAD", check=False)
        _, status = await self._git("status", "--porcelain")

        preview = _preview(user_message)
        if head_code != 0:
            message = f"Initial backup: {preview}"
        elif status.strip():
            message = f"Before: {preview}"
        else:
            message = f"Checkpoint (no changes): {preview}"

        await self._git("commit", "--allow-empty", "-m", message)
        _, sha = await self._git("rev-parse", "HEAD")

        now = datetime.now(UTC)
        commit = BackupCommit(
            id="commit-" + now.isoformat().replace(":", "-").replace(".", "-"),
            sha=sha.strip(),
            message=message,
            timestamp=now.isoformat(),
        )
        logger.debug(f"Backup commit {commit.sha[:8]}: {message}")
        return commit

    async def restore(self, sha: str) -> None:
        await self.ensure_repo()
        await self._git("checkout", sha, "--", ".")
        logger.info(f"Restored workspace to backup {sha[:8]}")
