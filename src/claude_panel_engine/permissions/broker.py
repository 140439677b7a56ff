from __future__ import annotations

import asyncio
import contextlib
import json
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from loguru import logger
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_fixed

from claude_panel_engine import ui_events
from claude_panel_engine.errors import PermissionRequestError
from claude_panel_engine.permissions.patterns import get_command_pattern
from claude_panel_engine.permissions.store import AlwaysAllowStore
from claude_panel_engine.permissions.watcher import DirectoryWatcher, PollingDirectoryWatcher
from claude_panel_engine.ui_events import EventSink, UiEvent


@dataclass(frozen=True)
class PermissionRequest:
    id: str
    tool: str
    input: Any
    pattern: str | None
    path: Path

    def to_event_data(self) -> dict[str, Any]:
        return {"id": self.id, "tool": self.tool, "input": self.input, "pattern": self.pattern}


@dataclass(frozen=True)
class PermissionDecision:
    approved: bool
    always_allow: bool = False


def _on_retry(retry_state) -> None:
    attempt = retry_state.attempt_number
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    reason = type(exc).__name__ if exc else "Unknown"
    logger.warning(f"{reason} reading permission file. Retrying (attempt {attempt}/5)...")


@retry(
    retry=retry_if_exception_type(json.JSONDecodeError),
    wait=wait_fixed(0.05),
    stop=stop_after_attempt(5),
    before_sleep=_on_retry,
    reraise=True,
)
async def read_json_file(path: Path) -> Any:
    """Read a JSON file another process may still be writing."""
    return json.loads(path.read_text(encoding="utf-8"))


def write_response(directory: Path, request_id: str, approved: bool) -> Path:
    response_path = directory / f"{request_id}.response"
    payload = {
        "id": request_id,
        "approved": approved,
        "timestamp": datetime.now(UTC).isoformat(),
    }
    tmp_path = directory / f"{request_id}.response.tmp"
    tmp_path.write_text(json.dumps(payload), encoding="utf-8")
    tmp_path.replace(response_path)
    return response_path


class PermissionBroker:
    """Mediates tool-approval requests written by the CLI's approval hook.

    Each ``<id>.request`` file becomes a ``permissionRequest`` UI event and a
    pending future. ``resolve`` completes the future; the handler task then
    writes ``<id>.response`` and removes the request file.
    """

    def __init__(
        self,
        requests_dir: str | Path,
        sink: EventSink,
        store: AlwaysAllowStore,
        *,
        watcher: DirectoryWatcher | None = None,
        poll_interval: float = 0.2,
    ) -> None:
        self._requests_dir = Path(requests_dir)
        self._sink = sink
        self._store = store
        self._watcher = watcher or PollingDirectoryWatcher(self._requests_dir, poll_interval=poll_interval)
        self._pending: dict[str, tuple[asyncio.Future[PermissionDecision], PermissionRequest]] = {}
        self._tasks: set[asyncio.Task] = set()
        self._started = False

    @property
    def requests_dir(self) -> Path:
        return self._requests_dir

    @property
    def is_watching(self) -> bool:
        return self._started

    def pending_ids(self) -> list[str]:
        return list(self._pending)

    async def start(self) -> None:
        if self._started:
            return
        self._requests_dir.mkdir(parents=True, exist_ok=True)
        await self._watcher.start(self._on_request_file)
        self._started = True
        logger.info(f"Permission broker watching {self._requests_dir}")

    async def close(self) -> None:
        if not self._started:
            return
        self._started = False
        await self._watcher.close()
        for task in list(self._tasks):
            task.cancel()
        for task in list(self._tasks):
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._pending.clear()

    def resolve(self, request_id: str, approved: bool, always_allow: bool = False) -> bool:
        entry = self._pending.pop(request_id, None)
        if entry is None:
            logger.debug(f"Ignoring decision for unknown permission request {request_id}")
            return False
        future, _ = entry
        if future.done():
            return False
        future.set_result(PermissionDecision(approved=approved, always_allow=always_allow))
        return True

    def _on_request_file(self, path: Path) -> None:
        task = asyncio.create_task(self._handle_request(path))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _read_request(self, path: Path) -> PermissionRequest:
        try:
            data = await read_json_file(path)
        except json.JSONDecodeError as ex:
            raise PermissionRequestError(str(path), f"not valid JSON ({ex})") from ex
        if not isinstance(data, dict):
            raise PermissionRequestError(str(path), "expected a JSON object")

        request_id = str(data.get("id") or path.stem)
        tool = str(data.get("tool", ""))
        tool_input = data.get("input")
        pattern = None
        if tool == "Bash" and isinstance(tool_input, dict) and tool_input.get("command"):
            pattern = get_command_pattern(str(tool_input["command"]))
        return PermissionRequest(id=request_id, tool=tool, input=tool_input, pattern=pattern, path=path)

    async def _handle_request(self, path: Path) -> None:
        try:
            request = await self._read_request(path)
        except FileNotFoundError:
            logger.debug(f"Permission request {path} vanished before it was read")
            return
        except (OSError, PermissionRequestError) as ex:
            logger.error(f"{ex}")
            return

        if request.id in self._pending:
            logger.debug(f"Permission request {request.id} is already pending")
            return

        future: asyncio.Future[PermissionDecision] = asyncio.get_running_loop().create_future()
        self._pending[request.id] = (future, request)
        logger.info(f"Permission requested for {request.tool} ({request.id})")
        self._sink.emit(UiEvent(ui_events.PERMISSION_REQUEST, request.to_event_data()))

        decision = await future
        await self._complete(request, decision)

    async def _complete(self, request: PermissionRequest, decision: PermissionDecision) -> None:
        if decision.approved and decision.always_allow:
            try:
                await self._store.record_decision(request.tool, request.input if isinstance(request.input, dict) else None)
            except OSError as ex:
                logger.error(f"Could not save always-allow permission for {request.tool}: {ex}")

        try:
            write_response(self._requests_dir, request.id, decision.approved)
            request.path.unlink(missing_ok=True)
        except OSError as ex:
            logger.error(f"Could not write permission response for {request.id}: {ex}")
            return
        logger.info(f"Permission {'granted' if decision.approved else 'denied'} for {request.tool} ({request.id})")
