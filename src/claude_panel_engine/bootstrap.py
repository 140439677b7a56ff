from __future__ import annotations

from dataclasses import dataclass

from claude_panel_engine.app_config import AppConfig
from claude_panel_engine.chat_provider import ChatProvider
from claude_panel_engine.console_ui import ConsoleEventSink
from claude_panel_engine.logging_config import setup_logging
from claude_panel_engine.terminal import SubprocessTerminalLauncher
from claude_panel_engine.ui_events import EventSink


@dataclass
class AppRuntime:
    provider: ChatProvider
    sink: EventSink
    log_descriptions: list[str]


async def bootstrap_runtime(app: AppConfig, sink: EventSink | None = None) -> AppRuntime:
    log_descriptions = setup_logging(level=app.log_level, consumers=app.log_consumers, log_dir=app.logs_dir)

    sink = sink or ConsoleEventSink()
    provider = ChatProvider(
        app,
        sink,
        launcher=SubprocessTerminalLauncher(app.terminal_command, cwd=app.working_directory),
    )
    await provider.start()

    return AppRuntime(
        provider=provider,
        sink=sink,
        log_descriptions=log_descriptions,
    )
