from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Coroutine
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from claude_panel_engine import ui_events
from claude_panel_engine.app_config import AppConfig, WslSettings
from claude_panel_engine.backup import BackupHook
from claude_panel_engine.cli_invocation import build_cli_args, build_command, build_environment, compose_message
from claude_panel_engine.conversations import ConversationStore
from claude_panel_engine.event_interpreter import EventInterpreter
from claude_panel_engine.session_state import QueuedTurn, SessionState, send_and_save
from claude_panel_engine.stream_decoder import JsonLineDecoder
from claude_panel_engine.terminal import TerminalLauncher, claude_terminal_command
from claude_panel_engine.ui_events import EventSink, UiEvent

INSTALL_MESSAGE = "Install claude code first: https://www.anthropic.com/claude-code"
STOPPED_MESSAGE = "⏹️ Claude code was stopped."
LOGIN_MESSAGE = "Please login to Claude in the terminal, then come back to this chat to continue."
MODEL_TERMINAL_MESSAGE = (
    "Check the terminal to update your default model configuration. "
    "Come back to this chat here after making changes."
)

_READ_CHUNK_BYTES = 64 * 1024


@dataclass
class ControllerSettings:
    cli_command: list[str] = field(default_factory=lambda: ["claude"])
    working_directory: str | None = None
    yolo_mode: bool = False
    thinking_intensity: str = "think"
    mcp_config_path: str | None = None
    wsl: WslSettings = field(default_factory=WslSettings)
    stop_grace_seconds: float = 2.0

    @classmethod
    def from_app_config(cls, app: AppConfig, mcp_config_path: str | None) -> ControllerSettings:
        return cls(
            cli_command=list(app.cli_command),
            working_directory=app.working_directory,
            yolo_mode=app.yolo_mode,
            thinking_intensity=app.thinking_intensity,
            mcp_config_path=mcp_config_path,
            wsl=app.wsl,
            stop_grace_seconds=app.stop_grace_seconds,
        )


class SessionController:
    """Runs one CLI process per turn and keeps the session continuable across turns."""

    def __init__(
        self,
        state: SessionState,
        sink: EventSink,
        settings: ControllerSettings,
        *,
        backup_hook: BackupHook | None = None,
        launcher: TerminalLauncher | None = None,
        conversation_store: ConversationStore | None = None,
        environment: dict[str, str] | None = None,
    ) -> None:
        self._state = state
        self._sink = sink
        self._settings = settings
        self._backup_hook = backup_hook
        self._launcher = launcher
        self._conversation_store = conversation_store
        self._environment = environment
        self._interpreter = EventInterpreter(state, sink, on_login_required=self.handle_login_required)
        self._tasks: set[asyncio.Task] = set()
        self._turn_in_flight = False
        # Bumped by stop/new_session so a dispatch that is still preparing gives up.
        self._generation = 0

    @property
    def settings(self) -> ControllerSettings:
        return self._settings

    @property
    def is_busy(self) -> bool:
        return self._turn_in_flight

    def _emit(self, event_type: str, data: Any = None) -> None:
        self._sink.emit(UiEvent(event_type, data))

    def _spawn_task(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_idle(self) -> None:
        """Wait until no turn, queued turn or termination is outstanding."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def send_turn(self, text: str, plan_mode: bool = False, thinking_mode: bool = False) -> None:
        if not text.strip():
            return
        turn = QueuedTurn(text=text, plan_mode=plan_mode, thinking_mode=thinking_mode)
        if self._turn_in_flight:
            self._queue_turn(turn)
            return
        await self._dispatch(turn)

    def _queue_turn(self, turn: QueuedTurn) -> None:
        self._state.queued_turns.append(turn)
        send_and_save(self._state, self._sink, ui_events.USER_INPUT, turn.text)
        self._emit(
            ui_events.MESSAGE_QUEUED,
            {"message": turn.text, "position": len(self._state.queued_turns)},
        )
        logger.info(f"Turn in progress; queued message ({len(self._state.queued_turns)} waiting)")

    async def _dispatch(self, turn: QueuedTurn, *, announced: bool = False) -> None:
        state = self._state
        settings = self._settings
        generation = self._generation
        self._turn_in_flight = True

        composed = compose_message(
            turn.text,
            plan_mode=turn.plan_mode,
            thinking_mode=turn.thinking_mode,
            thinking_intensity=settings.thinking_intensity,
        )

        state.is_processing = True
        state.draft_message = ""
        if not announced:
            send_and_save(state, self._sink, ui_events.USER_INPUT, turn.text)
        self._emit(ui_events.SET_PROCESSING, {"isProcessing": True})

        await self._run_backup(turn.text)
        if generation != self._generation:
            logger.info("Turn cancelled before the CLI was started")
            return

        self._emit(ui_events.LOADING, "Claude is working...")

        args = build_cli_args(
            session_id=state.session_id,
            model=state.selected_model,
            yolo_mode=settings.yolo_mode,
            mcp_config_path=settings.mcp_config_path,
        )
        command = build_command(settings.cli_command, args, settings.wsl)
        logger.debug(f"Starting CLI: {command}")

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=settings.working_directory,
                env=build_environment(self._environment),
            )
        except FileNotFoundError as ex:
            logger.error(f"CLI executable not found: {ex}")
            self._spawn_failed(INSTALL_MESSAGE)
            return
        except OSError as ex:
            logger.error(f"Failed to start CLI: {ex}")
            self._spawn_failed(
                f"Failed to start Claude: {ex}. Make sure Claude CLI is installed and accessible."
            )
            return

        if generation != self._generation:
            logger.info(f"Turn cancelled while CLI process {process.pid} was starting")
            self._emit(ui_events.CLEAR_LOADING)
            if process.stdin is not None:
                process.stdin.close()
            self._terminate(process)
            return

        state.active_process = process
        logger.info(f"CLI process {process.pid} started (resume={state.session_id or '-'})")
        self._spawn_task(self._pump(process, composed))

    def _spawn_failed(self, message: str) -> None:
        self._turn_in_flight = False
        self._state.is_processing = False
        self._state.queued_turns.clear()
        self._emit(ui_events.CLEAR_LOADING)
        send_and_save(self._state, self._sink, ui_events.ERROR, message)
        self._emit(ui_events.SET_PROCESSING, {"isProcessing": False})

    async def _run_backup(self, user_message: str) -> None:
        if self._backup_hook is None:
            return
        try:
            commit = await self._backup_hook.create_backup(user_message)
        except asyncio.CancelledError:
            raise
        except Exception as ex:
            logger.warning(f"Backup before turn failed: {ex}")
            return
        if commit is None:
            return
        self._state.backups.append(commit)
        send_and_save(self._state, self._sink, ui_events.SHOW_RESTORE_OPTION, commit.to_dict())

    async def _pump(self, process: asyncio.subprocess.Process, message: str) -> None:
        stderr_task = asyncio.create_task(self._collect_stderr(process))
        await self._write_input(process, message)

        decoder = JsonLineDecoder()
        if process.stdout is not None:
            while True:
                chunk = await process.stdout.read(_READ_CHUNK_BYTES)
                if not chunk:
                    break
                for record in decoder.feed(chunk):
                    self._interpret(process, record)
        for record in decoder.flush():
            self._interpret(process, record)

        stderr_text = await stderr_task
        returncode = await process.wait()
        self._on_exit(process, returncode, stderr_text)

    @staticmethod
    async def _write_input(process: asyncio.subprocess.Process, message: str) -> None:
        if process.stdin is None:
            return
        try:
            process.stdin.write((message + "\n").encode("utf-8"))
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as ex:
            logger.warning(f"CLI closed its input early: {ex}")
        finally:
            process.stdin.close()

    @staticmethod
    async def _collect_stderr(process: asyncio.subprocess.Process) -> str:
        if process.stderr is None:
            return ""
        data = await process.stderr.read()
        return data.decode("utf-8", errors="replace")

    def _interpret(self, process: asyncio.subprocess.Process, record: dict) -> None:
        if self._state.active_process is not process:
            return
        try:
            self._interpreter.handle(record)
        except Exception as ex:
            logger.error(f"Failed to handle {record.get('type')!r} record: {ex}")

    def _on_exit(self, process: asyncio.subprocess.Process, returncode: int, stderr_text: str) -> None:
        state = self._state
        if state.active_process is not process:
            logger.debug(f"Ignoring exit of replaced CLI process {process.pid}")
            return

        logger.info(f"CLI process {process.pid} exited with code {returncode}")
        if process.stdin is not None and not process.stdin.is_closing():
            process.stdin.close()
        state.active_process = None
        self._turn_in_flight = False
        self._emit(ui_events.CLEAR_LOADING)
        state.is_processing = False
        self._emit(ui_events.SET_PROCESSING, {"isProcessing": False})

        if returncode != 0 and stderr_text.strip():
            send_and_save(state, self._sink, ui_events.ERROR, stderr_text.strip())

        if self._conversation_store is not None:
            self._conversation_store.save(state)

        if state.queued_turns:
            self._spawn_task(self._dispatch(state.queued_turns.popleft(), announced=True))

    def stop(self) -> None:
        state = self._state
        self._generation += 1
        self._turn_in_flight = False
        state.is_processing = False
        state.queued_turns.clear()
        self._emit(ui_events.SET_PROCESSING, {"isProcessing": False})

        process = state.active_process
        if process is None:
            return

        state.active_process = None
        self._terminate(process)
        self._emit(ui_events.CLEAR_LOADING)
        send_and_save(state, self._sink, ui_events.ERROR, STOPPED_MESSAGE)

    def _terminate(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        logger.info(f"Terminating CLI process {process.pid}")
        try:
            process.terminate()
        except ProcessLookupError:
            return
        self._spawn_task(self._reap(process))

    async def _reap(self, process: asyncio.subprocess.Process) -> None:
        try:
            await asyncio.wait_for(process.wait(), timeout=self._settings.stop_grace_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"CLI process {process.pid} ignored SIGTERM; killing it")
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()

    def new_session(self) -> None:
        state = self._state
        self._generation += 1
        self._turn_in_flight = False
        process = state.active_process
        state.active_process = None
        if process is not None:
            self._terminate(process)
        state.reset()
        self._emit(ui_events.SESSION_CLEARED)
        logger.info("Started a new session")

    def update_settings(self, settings: ControllerSettings) -> None:
        self._settings = settings

    def handle_login_required(self) -> None:
        self._state.is_processing = False
        self._emit(ui_events.SET_PROCESSING, {"isProcessing": False})
        self._emit(ui_events.LOGIN_REQUIRED)
        command = claude_terminal_command(self._settings.cli_command, [], self._settings.wsl)
        if self._open_terminal("Claude Login", command):
            self._emit(ui_events.TERMINAL_OPENED, LOGIN_MESSAGE)

    def open_model_terminal(self) -> None:
        command = claude_terminal_command(self._settings.cli_command, ["/model", *self._resume_args()], self._settings.wsl)
        if self._open_terminal("Claude Model Selection", command):
            self._emit(ui_events.TERMINAL_OPENED, MODEL_TERMINAL_MESSAGE)

    def execute_slash_command(self, name: str) -> None:
        name = name.strip().lstrip("/")
        command = claude_terminal_command(
            self._settings.cli_command, [f"/{name}", *self._resume_args()], self._settings.wsl
        )
        if self._open_terminal(f"Claude /{name}", command):
            self._emit(
                ui_events.TERMINAL_OPENED,
                f"Executing /{name} command in terminal. Check the terminal output and return when ready.",
            )

    def _resume_args(self) -> list[str]:
        return ["--resume", self._state.session_id] if self._state.session_id else []

    def _open_terminal(self, title: str, command: list[str]) -> bool:
        if self._launcher is None:
            logger.warning(f"No terminal launcher configured; cannot open {title!r}")
            send_and_save(self._state, self._sink, ui_events.ERROR, f"Run `{' '.join(command)}` in a terminal.")
            return False
        try:
            self._launcher.open(title, command)
        except OSError as ex:
            logger.error(f"Could not open terminal {title!r}: {ex}")
            send_and_save(self._state, self._sink, ui_events.ERROR, f"Could not open a terminal: {ex}")
            return False
        return True
