from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable
from pathlib import Path
from typing import Protocol, runtime_checkable

from loguru import logger

OnCreated = Callable[[Path], None]


@runtime_checkable
class DirectoryWatcher(Protocol):
    async def start(self, on_created: OnCreated) -> None: ...
    async def close(self) -> None: ...


class PollingDirectoryWatcher:
    """Reports files matching ``pattern`` that appear in ``directory``.

    Files already present when the watcher starts are not reported.
    """

    def __init__(self, directory: str | Path, *, pattern: str = "*.request", poll_interval: float = 0.2):
        self._directory = Path(directory)
        self._pattern = pattern
        self._poll_interval = max(0.01, poll_interval)
        self._seen: set[Path] = set()
        self._task: asyncio.Task | None = None

    async def start(self, on_created: OnCreated) -> None:
        if self._task is not None:
            return
        self._directory.mkdir(parents=True, exist_ok=True)
        self._seen = set(self._scan())
        self._task = asyncio.create_task(self._run(on_created))
        logger.debug(f"Watching {self._directory} for {self._pattern}")

    async def close(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    def _scan(self) -> list[Path]:
        try:
            return sorted(self._directory.glob(self._pattern))
        except OSError as ex:
            logger.warning(f"Could not list {self._directory}: {ex}")
            return []

    async def _run(self, on_created: OnCreated) -> None:
        while True:
            await asyncio.sleep(self._poll_interval)
            current = set(self._scan())
            for path in sorted(current - self._seen):
                try:
                    on_created(path)
                except Exception as ex:
                    logger.error(f"Watcher callback failed for {path}: {ex}")
            # Forget deleted files so a reused name is reported again.
            self._seen = current
