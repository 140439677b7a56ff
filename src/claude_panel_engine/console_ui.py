from __future__ import annotations

import sys
from typing import TextIO

from claude_panel_engine import ui_events
from claude_panel_engine.ui_events import UiEvent

_PREFIX = "claude> "


class ConsoleEventSink:
    """Renders outbound panel events as plain terminal lines."""

    def __init__(self, *, stream: TextIO | None = None, show_hidden: bool = False) -> None:
        self._stream = stream if stream is not None else sys.stdout
        self._show_hidden = show_hidden

    def _write(self, text: str) -> None:
        self._stream.write(text + "\n")
        self._stream.flush()

    def emit(self, event: UiEvent) -> None:
        line = self.format(event)
        if line is not None:
            self._write(line)

    def format(self, event: UiEvent) -> str | None:
        data = event.data
        kind = event.type

        if kind == ui_events.OUTPUT:
            return f"{_PREFIX}{data}"
        if kind == ui_events.THINKING:
            return f"{_PREFIX}(thinking) {data}"
        if kind == ui_events.TOOL_USE:
            return f"{_PREFIX}{data['toolInfo']}{data.get('toolInput') or ''}"
        if kind == ui_events.TOOL_RESULT:
            if data.get("hidden") and not self._show_hidden:
                return None
            marker = "error" if data.get("isError") else "result"
            return f"{_PREFIX}[{data.get('toolName')} {marker}] {data.get('content')}"
        if kind == ui_events.PERMISSION_REQUEST:
            target = data.get("pattern") or data.get("tool")
            return (
                f"{_PREFIX}Permission needed for {data.get('tool')} ({target}). "
                f"Reply /allow {data['id']}, /always {data['id']} or /deny {data['id']}"
            )
        if kind == ui_events.ERROR:
            return f"{_PREFIX}Error: {data}"
        if kind == ui_events.SESSION_INFO:
            return f"{_PREFIX}Session {data.get('sessionId')}"
        if kind == ui_events.UPDATE_TOTALS:
            return (
                f"{_PREFIX}Cost ${data['totalCost']:.4f} | tokens in {data['totalTokensInput']:,} "
                f"out {data['totalTokensOutput']:,} | requests {data['requestCount']}"
            )
        if kind == ui_events.MESSAGE_QUEUED:
            return f"{_PREFIX}Queued; will send after the current turn (position {data['position']})"
        if kind in (ui_events.TERMINAL_OPENED, ui_events.RESTORE_PROGRESS, ui_events.RESTORE_ERROR):
            return f"{_PREFIX}{data}"
        if kind == ui_events.RESTORE_SUCCESS:
            return f"{_PREFIX}{data['message']}"
        if kind == ui_events.SHOW_RESTORE_OPTION:
            return f"{_PREFIX}Backup {data['sha'][:8]}: {data['message']} (/restore {data['sha'][:8]})"
        if kind == ui_events.SESSION_CLEARED:
            return f"{_PREFIX}New session started"
        if kind == ui_events.LOGIN_REQUIRED:
            return f"{_PREFIX}Login required"
        if kind == ui_events.PERMISSIONS_DATA:
            allow = data.get("alwaysAllow", {})
            if not allow:
                return f"{_PREFIX}No always-allow permissions"
            lines = [f"{_PREFIX}Always allowed:"]
            for tool, value in allow.items():
                lines.append(f"{_PREFIX}  - {tool}: {'all' if value is True else ', '.join(value)}")
            return "\n".join(lines)
        return None
