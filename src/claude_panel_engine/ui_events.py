from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

SESSION_INFO = "sessionInfo"
UPDATE_TOKENS = "updateTokens"
UPDATE_TOTALS = "updateTotals"
OUTPUT = "output"
THINKING = "thinking"
TOOL_USE = "toolUse"
TOOL_RESULT = "toolResult"
SET_PROCESSING = "setProcessing"
PERMISSION_REQUEST = "permissionRequest"
ERROR = "error"
LOGIN_REQUIRED = "loginRequired"
TERMINAL_OPENED = "terminalOpened"
LOADING = "loading"
CLEAR_LOADING = "clearLoading"
USER_INPUT = "userInput"
MESSAGE_QUEUED = "messageQueued"
SESSION_CLEARED = "sessionCleared"
PERMISSIONS_DATA = "permissionsData"
SHOW_RESTORE_OPTION = "showRestoreOption"
RESTORE_PROGRESS = "restoreProgress"
RESTORE_SUCCESS = "restoreSuccess"
RESTORE_ERROR = "restoreError"


@dataclass(frozen=True)
class UiEvent:
    type: str
    data: Any = None


@runtime_checkable
class EventSink(Protocol):
    def emit(self, event: UiEvent) -> None: ...


@dataclass
class RecordingEventSink:
    """Keeps every emitted event in memory. Used by tests and headless runs."""

    events: list[UiEvent] = field(default_factory=list)

    def emit(self, event: UiEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> list[UiEvent]:
        return [e for e in self.events if e.type == event_type]

    def types(self) -> list[str]:
        return [e.type for e in self.events]
