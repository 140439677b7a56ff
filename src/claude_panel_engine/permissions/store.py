from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

from filelock import FileLock
from loguru import logger

from claude_panel_engine.permissions.patterns import get_command_pattern, matches_pattern


def _empty() -> dict[str, Any]:
    return {"alwaysAllow": {}}


class AlwaysAllowStore:
    """JSON-backed ``{"alwaysAllow": {tool: true | [patterns]}}`` document.

    Read-modify-writes are serialized in-process by an ``asyncio.Lock``. The
    prompt server reads the same file from another process, so reads and
    writes also take a ``FileLock`` and writes land through a temp-file replace.
    """

    def __init__(self, path: str | Path):
        self._path = Path(path)
        self._lock = asyncio.Lock()
        self._file_lock = FileLock(self._path.with_suffix(".lock"), timeout=10)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> dict[str, Any]:
        if not self._path.exists():
            return _empty()
        try:
            with self._file_lock:
                data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as ex:
            logger.warning(f"Could not read permissions store {self._path}: {ex}")
            return _empty()
        if not isinstance(data, dict) or not isinstance(data.get("alwaysAllow"), dict):
            logger.warning(f"Permissions store {self._path} has unexpected shape, ignoring it")
            return _empty()
        return data

    def _save(self, data: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".json.tmp")
        with self._file_lock:
            tmp_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
            tmp_path.replace(self._path)

    def is_allowed(self, tool: str, tool_input: dict | None) -> bool:
        entry = self.load()["alwaysAllow"].get(tool)
        if entry is True:
            return True
        if not isinstance(entry, list):
            return False
        command = (tool_input or {}).get("command")
        if tool != "Bash" or not command:
            return False
        return any(matches_pattern(pattern, command) for pattern in entry)

    async def record_decision(self, tool: str, tool_input: dict | None) -> None:
        """Persist an "approve and always allow" answer to a permission prompt."""
        async with self._lock:
            data = self.load()
            allow = data["alwaysAllow"]
            command = (tool_input or {}).get("command")
            if tool == "Bash" and command:
                pattern = get_command_pattern(command)
                entry = allow.setdefault(tool, [])
                if isinstance(entry, list) and pattern not in entry:
                    entry.append(pattern)
            else:
                allow[tool] = True
            self._save(data)
        logger.info(f"Saved always-allow permission for {tool}")

    async def add(self, tool: str, command: str | None = None) -> None:
        async with self._lock:
            data = self.load()
            allow = data["alwaysAllow"]
            if not command:
                allow[tool] = True
            else:
                entry = allow.get(tool)
                if not isinstance(entry, list):
                    entry = []
                    allow[tool] = entry
                pattern = get_command_pattern(command) if tool == "Bash" else command
                if pattern not in entry:
                    entry.append(pattern)
            self._save(data)
        logger.info(f"Added permission for {tool}{f' ({command})' if command else ''}")

    async def remove(self, tool: str, command: str | None = None) -> None:
        async with self._lock:
            data = self.load()
            allow = data["alwaysAllow"]
            if tool not in allow:
                return
            if command is None:
                del allow[tool]
            elif isinstance(allow[tool], list):
                remaining = [c for c in allow[tool] if c != command]
                if remaining:
                    allow[tool] = remaining
                else:
                    del allow[tool]
            self._save(data)
        logger.info(f"Removed permission for {tool}{f' ({command})' if command else ''}")
