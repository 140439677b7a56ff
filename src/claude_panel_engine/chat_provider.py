from __future__ import annotations

from typing import Any

from loguru import logger

from claude_panel_engine import ui_events
from claude_panel_engine.app_config import VALID_MODELS, AppConfig
from claude_panel_engine.backup import BackupHook, GitBackupHook
from claude_panel_engine.conversations import ConversationStore
from claude_panel_engine.errors import BackupError
from claude_panel_engine.permissions import AlwaysAllowStore, DirectoryWatcher, PermissionBroker, write_mcp_config
from claude_panel_engine.services.session_controller import ControllerSettings, SessionController
from claude_panel_engine.session_state import SessionState, send_and_save
from claude_panel_engine.terminal import TerminalLauncher
from claude_panel_engine.ui_events import EventSink, UiEvent


class ChatProvider:
    """Everything one editor window needs: session, controller, broker and stores."""

    def __init__(
        self,
        app: AppConfig,
        sink: EventSink,
        *,
        launcher: TerminalLauncher | None = None,
        backup_hook: BackupHook | None = None,
        watcher: DirectoryWatcher | None = None,
        python_executable: str | None = None,
        environment: dict[str, str] | None = None,
    ) -> None:
        self._app = app
        self._sink = sink
        self._python_executable = python_executable
        self.state = SessionState(selected_model=app.model)
        self.store = AlwaysAllowStore(app.permissions_store_path)
        self.conversations = ConversationStore(app.conversations_dir)
        self.broker = PermissionBroker(
            app.permissions_dir,
            sink,
            self.store,
            watcher=watcher,
            poll_interval=app.permission_poll_interval,
        )
        if backup_hook is None and app.backup_enabled:
            backup_hook = GitBackupHook(app.backups_dir, app.working_directory)
        self._backup_hook = backup_hook
        self.controller = SessionController(
            self.state,
            sink,
            ControllerSettings.from_app_config(app, None),
            backup_hook=backup_hook,
            launcher=launcher,
            conversation_store=self.conversations,
            environment=environment,
        )
        self._handlers = {
            "sendMessage": self._on_send_message,
            "stopRequest": self._on_stop,
            "newSession": self._on_new_session,
            "permissionResponse": self._on_permission_response,
            "getPermissions": self._on_get_permissions,
            "addPermission": self._on_add_permission,
            "removePermission": self._on_remove_permission,
            "selectModel": self._on_select_model,
            "restoreCommit": self._on_restore_commit,
            "openModelTerminal": self._on_open_model_terminal,
            "executeSlashCommand": self._on_execute_slash_command,
            "saveInputText": self._on_save_input_text,
        }

    def _emit(self, event_type: str, data: Any = None) -> None:
        self._sink.emit(UiEvent(event_type, data))

    def _prepare_mcp_config(self) -> str | None:
        if self._app.yolo_mode:
            return None
        try:
            return write_mcp_config(
                self._app.mcp_config_path,
                self._app.permissions_dir,
                python_executable=self._python_executable,
                wsl_enabled=self._app.wsl.enabled,
            )
        except OSError as ex:
            logger.error(f"Could not write MCP permission config: {ex}")
            return None

    async def start(self) -> None:
        self.controller.update_settings(ControllerSettings.from_app_config(self._app, self._prepare_mcp_config()))
        await self.broker.start()

        latest = self.conversations.latest()
        if latest and latest.get("sessionId"):
            self.state.session_id = latest["sessionId"]
            logger.info(f"Resuming session {self.state.session_id} from {latest.get('filename')}")

    async def send_message(self, text: str, plan_mode: bool = False, thinking_mode: bool = False) -> None:
        await self.controller.send_turn(text, plan_mode=plan_mode, thinking_mode=thinking_mode)

    def stop(self) -> None:
        self.controller.stop()

    def new_session(self) -> None:
        self.controller.new_session()

    def new_session_on_config_change(self, app: AppConfig) -> None:
        """Apply changed settings; a fresh session is needed because the CLI flags changed."""
        self._app = app
        self.controller.update_settings(ControllerSettings.from_app_config(app, self._prepare_mcp_config()))
        self.controller.new_session()

    def resolve_permission(self, request_id: str, approved: bool, always_allow: bool = False) -> bool:
        return self.broker.resolve(request_id, approved, always_allow)

    def send_permissions(self) -> None:
        self._emit(ui_events.PERMISSIONS_DATA, self.store.load())

    async def add_permission(self, tool: str, command: str | None = None) -> None:
        try:
            await self.store.add(tool, command)
        except OSError as ex:
            logger.error(f"Could not add permission for {tool}: {ex}")
            send_and_save(self.state, self._sink, ui_events.ERROR, f"Could not save permission: {ex}")
            return
        self.send_permissions()

    async def remove_permission(self, tool: str, command: str | None = None) -> None:
        try:
            await self.store.remove(tool, command)
        except OSError as ex:
            logger.error(f"Could not remove permission for {tool}: {ex}")
            send_and_save(self.state, self._sink, ui_events.ERROR, f"Could not save permission: {ex}")
            return
        self.send_permissions()

    def select_model(self, model: str) -> bool:
        model = model.strip().lower()
        if model not in VALID_MODELS:
            send_and_save(
                self.state,
                self._sink,
                ui_events.ERROR,
                f"Invalid model {model!r}. Choose one of: {', '.join(VALID_MODELS)}",
            )
            return False
        self.state.selected_model = model
        logger.info(f"Model set to {model}")
        return True

    async def restore_backup(self, sha: str) -> None:
        commit = next((c for c in self.state.backups if c.sha == sha), None)
        if self._backup_hook is None:
            self._emit(ui_events.RESTORE_ERROR, "Backups are disabled")
            return

        self._emit(ui_events.RESTORE_PROGRESS, "Restoring files from backup...")
        try:
            await self._backup_hook.restore(sha)
        except (BackupError, OSError) as ex:
            logger.error(f"Restore to {sha} failed: {ex}")
            self._emit(ui_events.RESTORE_ERROR, f"Failed to restore: {ex}")
            return

        label = commit.message if commit else sha[:8]
        self._emit(ui_events.RESTORE_SUCCESS, {"message": f"Successfully restored to: {label}", "commitSha": sha})

    def open_model_terminal(self) -> None:
        self.controller.open_model_terminal()

    def execute_slash_command(self, command: str) -> None:
        self.controller.execute_slash_command(command)

    def save_input_text(self, text: str) -> None:
        self.state.draft_message = text

    async def handle_ui_message(self, message: dict) -> bool:
        """Dispatch one inbound panel message. Returns False for unknown kinds."""
        handler = self._handlers.get(message.get("type", ""))
        if handler is None:
            logger.warning(f"Unknown panel message type: {message.get('type')!r}")
            return False
        await handler(message)
        return True

    async def _on_send_message(self, message: dict) -> None:
        await self.send_message(
            str(message.get("text", "")),
            plan_mode=bool(message.get("planMode", False)),
            thinking_mode=bool(message.get("thinkingMode", False)),
        )

    async def _on_stop(self, message: dict) -> None:
        self.stop()

    async def _on_new_session(self, message: dict) -> None:
        self.new_session()

    async def _on_permission_response(self, message: dict) -> None:
        self.resolve_permission(
            str(message.get("id", "")),
            bool(message.get("approved", False)),
            bool(message.get("alwaysAllow", False)),
        )

    async def _on_get_permissions(self, message: dict) -> None:
        self.send_permissions()

    async def _on_add_permission(self, message: dict) -> None:
        await self.add_permission(str(message.get("toolName", "")), message.get("command"))

    async def _on_remove_permission(self, message: dict) -> None:
        await self.remove_permission(str(message.get("toolName", "")), message.get("command"))

    async def _on_select_model(self, message: dict) -> None:
        self.select_model(str(message.get("model", "")))

    async def _on_restore_commit(self, message: dict) -> None:
        await self.restore_backup(str(message.get("commitSha", "")))

    async def _on_open_model_terminal(self, message: dict) -> None:
        self.open_model_terminal()

    async def _on_execute_slash_command(self, message: dict) -> None:
        self.execute_slash_command(str(message.get("command", "")))

    async def _on_save_input_text(self, message: dict) -> None:
        self.save_input_text(str(message.get("text", "")))

    async def dispose(self) -> None:
        if self.state.active_process is not None:
            self.controller.stop()
        await self.broker.close()
        await self.controller.wait_idle()
        self.conversations.save(self.state)
        logger.info("Chat provider disposed")
