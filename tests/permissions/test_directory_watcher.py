import asyncio
import tempfile
import unittest
from pathlib import Path

from claude_panel_engine.permissions.watcher import DirectoryWatcher, PollingDirectoryWatcher


class PollingDirectoryWatcherTests(unittest.TestCase):
    def test_reports_new_request_files_only(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            directory = Path(tmp) / "requests"
            directory.mkdir()
            (directory / "old.request").write_text("{}", encoding="utf-8")
            seen: list[str] = []
            watcher = PollingDirectoryWatcher(directory, poll_interval=0.02)
            self.assertIsInstance(watcher, DirectoryWatcher)

            async def scenario() -> None:
                await watcher.start(lambda path: seen.append(path.name))
                (directory / "new.request").write_text("{}", encoding="utf-8")
                (directory / "new.response").write_text("{}", encoding="utf-8")
                (directory / "half.request.tmp").write_text("{}", encoding="utf-8")
                for _ in range(50):
                    if seen:
                        break
                    await asyncio.sleep(0.02)
                await asyncio.sleep(0.1)
                await watcher.close()

            asyncio.run(scenario())
            self.assertEqual(["new.request"], seen)

    def test_start_creates_directory_and_callback_errors_do_not_stop_polling(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            directory = Path(tmp) / "missing"
            seen: list[str] = []

            def on_created(path: Path) -> None:
                seen.append(path.name)
                if path.name == "a.request":
                    raise RuntimeError("boom")

            watcher = PollingDirectoryWatcher(directory, poll_interval=0.02)

            async def scenario() -> None:
                await watcher.start(on_created)
                self.assertTrue(directory.is_dir())
                (directory / "a.request").write_text("{}", encoding="utf-8")
                await asyncio.sleep(0.1)
                (directory / "b.request").write_text("{}", encoding="utf-8")
                await asyncio.sleep(0.1)
                await watcher.close()
                await watcher.close()

            asyncio.run(scenario())
            self.assertEqual(["a.request", "b.request"], seen)


if __name__ == "__main__":
    unittest.main()
