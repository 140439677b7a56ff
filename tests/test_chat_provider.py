import asyncio
import json
import tempfile
import unittest
from pathlib import Path

from claude_panel_engine import ui_events
from claude_panel_engine.app_config import parse_app_config
from claude_panel_engine.chat_provider import ChatProvider
from claude_panel_engine.errors import BackupError
from claude_panel_engine.session_state import BackupCommit
from claude_panel_engine.ui_events import RecordingEventSink


class _FakeWatcher:
    def __init__(self) -> None:
        self.on_created = None
        self.closed = False

    async def start(self, on_created) -> None:
        self.on_created = on_created

    async def close(self) -> None:
        self.closed = True


class _FakeBackup:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.restored: list[str] = []

    async def create_backup(self, user_message: str):
        return None

    async def restore(self, sha: str) -> None:
        if self.fail:
            raise BackupError(["checkout", sha, "--", "."], 128, "fatal: bad revision")
        self.restored.append(sha)


class ChatProviderTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)
        self.app = parse_app_config(
            {"StoragePath": str(self.tmp / "storage"), "WorkingDirectory": str(self.tmp), "BackupEnabled": False}
        )
        self.sink = RecordingEventSink()
        self.watcher = _FakeWatcher()

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _provider(self, **kwargs) -> ChatProvider:
        return ChatProvider(self.app, self.sink, watcher=self.watcher, python_executable="python", **kwargs)

    def test_start_writes_mcp_config_and_resumes_latest_conversation(self) -> None:
        conversations = self.app.conversations_dir
        conversations.mkdir(parents=True)
        (conversations / "index.json").write_text(
            json.dumps([{"filename": "c.json", "sessionId": "prev-session"}]), encoding="utf-8"
        )
        provider = self._provider()

        async def scenario() -> None:
            await provider.start()
            self.assertTrue(provider.broker.is_watching)
            await provider.dispose()

        asyncio.run(scenario())

        self.assertEqual("prev-session", provider.state.session_id)
        config = json.loads(self.app.mcp_config_path.read_text(encoding="utf-8"))
        self.assertIn("claude-panel-permissions", config["mcpServers"])
        self.assertEqual(str(self.app.mcp_config_path), provider.controller.settings.mcp_config_path)
        self.assertTrue(self.watcher.closed)

    def test_permission_response_message_resolves_request(self) -> None:
        provider = self._provider()

        async def scenario() -> None:
            await provider.start()
            request = self.app.permissions_dir / "req-1.request"
            request.write_text(json.dumps({"id": "req-1", "tool": "Read", "input": {"file_path": "x"}}), encoding="utf-8")
            self.watcher.on_created(request)
            for _ in range(100):
                if provider.broker.pending_ids():
                    break
                await asyncio.sleep(0.01)
            handled = await provider.handle_ui_message(
                {"type": "permissionResponse", "id": "req-1", "approved": True, "alwaysAllow": True}
            )
            self.assertTrue(handled)
            response = self.app.permissions_dir / "req-1.response"
            for _ in range(100):
                if response.exists():
                    break
                await asyncio.sleep(0.01)
            await provider.dispose()

        asyncio.run(scenario())
        self.assertTrue(json.loads((self.app.permissions_dir / "req-1.response").read_text(encoding="utf-8"))["approved"])
        self.assertEqual({"Read": True}, provider.store.load()["alwaysAllow"])

    def test_permission_management_messages(self) -> None:
        provider = self._provider()

        async def scenario() -> None:
            await provider.handle_ui_message({"type": "addPermission", "toolName": "Bash", "command": "npm install x"})
            await provider.handle_ui_message({"type": "addPermission", "toolName": "Read"})
            await provider.handle_ui_message({"type": "removePermission", "toolName": "Read", "command": None})
            await provider.handle_ui_message({"type": "getPermissions"})

        asyncio.run(scenario())
        data = self.sink.of_type(ui_events.PERMISSIONS_DATA)
        self.assertEqual(4, len(data))
        self.assertEqual({"alwaysAllow": {"Bash": ["npm install *"]}}, data[-1].data)

    def test_select_model(self) -> None:
        provider = self._provider()
        self.assertTrue(provider.select_model("Opus"))
        self.assertEqual("opus", provider.state.selected_model)
        self.assertFalse(provider.select_model("gpt-4"))
        self.assertEqual("opus", provider.state.selected_model)
        self.assertEqual(1, len(self.sink.of_type(ui_events.ERROR)))

    def test_unknown_message_type(self) -> None:
        provider = self._provider()
        self.assertFalse(asyncio.run(provider.handle_ui_message({"type": "doSomethingElse"})))

    def test_save_input_text(self) -> None:
        provider = self._provider()
        asyncio.run(provider.handle_ui_message({"type": "saveInputText", "text": "draft"}))
        self.assertEqual("draft", provider.state.draft_message)

    def test_restore_backup_success_and_failure(self) -> None:
        backup = _FakeBackup()
        provider = self._provider(backup_hook=backup)
        provider.state.backups.append(BackupCommit(id="c1", sha="abc123", message="Before: hi", timestamp="t"))

        asyncio.run(provider.handle_ui_message({"type": "restoreCommit", "commitSha": "abc123"}))
        self.assertEqual(["abc123"], backup.restored)
        success = self.sink.of_type(ui_events.RESTORE_SUCCESS)[0].data
        self.assertEqual("Successfully restored to: Before: hi", success["message"])

        backup.fail = True
        asyncio.run(provider.restore_backup("abc123"))
        self.assertIn("bad revision", self.sink.of_type(ui_events.RESTORE_ERROR)[0].data)

    def test_restore_without_backups_enabled(self) -> None:
        provider = self._provider()
        asyncio.run(provider.restore_backup("abc"))
        self.assertEqual([ui_events.RESTORE_ERROR], self.sink.types())

    def test_config_change_starts_new_session(self) -> None:
        provider = self._provider()
        provider.state.session_id = "old"
        provider.state.request_count = 3
        yolo = parse_app_config(
            {"StoragePath": str(self.tmp / "storage"), "WorkingDirectory": str(self.tmp), "YoloMode": True}
        )
        provider.new_session_on_config_change(yolo)
        self.assertIsNone(provider.state.session_id)
        self.assertEqual(0, provider.state.request_count)
        self.assertTrue(provider.controller.settings.yolo_mode)
        self.assertIsNone(provider.controller.settings.mcp_config_path)
        self.assertEqual(ui_events.SESSION_CLEARED, self.sink.types()[-1])

    def test_stop_message_when_idle(self) -> None:
        provider = self._provider()
        asyncio.run(provider.handle_ui_message({"type": "stopRequest"}))
        self.assertEqual([ui_events.SET_PROCESSING], self.sink.types())


if __name__ == "__main__":
    unittest.main()
