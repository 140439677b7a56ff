from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from claude_panel_engine.ui_events import EventSink, UiEvent


def utc_now() -> str:
    return datetime.now(UTC).isoformat()


@dataclass
class ConversationEntry:
    timestamp: str
    message_type: str
    data: Any

    def to_dict(self) -> dict[str, Any]:
        return {"timestamp": self.timestamp, "messageType": self.message_type, "data": self.data}


@dataclass(frozen=True)
class QueuedTurn:
    text: str
    plan_mode: bool = False
    thinking_mode: bool = False


@dataclass(frozen=True)
class BackupCommit:
    id: str
    sha: str
    message: str
    timestamp: str

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "sha": self.sha, "message": self.message, "timestamp": self.timestamp}


@dataclass
class SessionState:
    """Everything one chat panel knows about its conversation with the CLI."""

    selected_model: str = "default"
    session_id: str | None = None
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_cost: float = 0.0
    request_count: int = 0
    is_processing: bool = False
    active_process: asyncio.subprocess.Process | None = None
    draft_message: str = ""
    conversation: list[ConversationEntry] = field(default_factory=list)
    conversation_start_time: str | None = None
    queued_turns: deque[QueuedTurn] = field(default_factory=deque)
    backups: list[BackupCommit] = field(default_factory=list)

    def reset(self) -> None:
        self.session_id = None
        self.total_input_tokens = 0
        self.total_output_tokens = 0
        self.total_cost = 0.0
        self.request_count = 0
        self.is_processing = False
        self.draft_message = ""
        self.conversation.clear()
        self.conversation_start_time = None
        self.queued_turns.clear()
        self.backups.clear()

    def record(self, message_type: str, data: Any) -> None:
        now = utc_now()
        if self.conversation_start_time is None:
            self.conversation_start_time = now
        self.conversation.append(ConversationEntry(timestamp=now, message_type=message_type, data=data))

    def tool_name_for(self, tool_use_id: str | None) -> str:
        """Resolve the tool behind a result: exact id first, then the most recent tool entry."""
        if tool_use_id:
            for entry in reversed(self.conversation):
                if (
                    entry.message_type == "toolUse"
                    and isinstance(entry.data, dict)
                    and entry.data.get("toolUseId") == tool_use_id
                ):
                    return str(entry.data.get("toolName", "")) or "Unknown"
        for entry in reversed(self.conversation):
            if isinstance(entry.data, dict) and entry.data.get("toolName"):
                return str(entry.data["toolName"])
        return "Unknown"

    def first_user_message(self) -> str:
        for entry in self.conversation:
            if entry.message_type == "userInput" and isinstance(entry.data, str):
                return entry.data
        return ""


def send_and_save(state: SessionState, sink: EventSink, event_type: str, data: Any) -> None:
    """Emit an event to the UI and keep it in the conversation log."""
    state.record(event_type, data)
    sink.emit(UiEvent(event_type, data))
