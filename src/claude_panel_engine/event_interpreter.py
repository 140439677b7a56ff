from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

from loguru import logger

from claude_panel_engine import ui_events
from claude_panel_engine.cost_model import calculate_cost
from claude_panel_engine.session_state import SessionState, send_and_save
from claude_panel_engine.ui_events import EventSink, UiEvent

CostFunction = Callable[[str, int, int, int, int], float]

AUTH_FAILURE_MARKER = "Invalid API key"
QUIET_TOOLS = frozenset({"Read", "Edit", "TodoWrite", "MultiEdit"})
DEFAULT_TOOL_RESULT = "Tool executed successfully"

_TODO_GLYPHS = {
    "completed": "✅",
    "in_progress": "🔄",
}
_TODO_PENDING_GLYPH = "⏳"


def format_todo_list(todos: list[dict]) -> str:
    text = "\nTodo List Update:"
    for todo in todos:
        glyph = _TODO_GLYPHS.get(todo.get("status", ""), _TODO_PENDING_GLYPH)
        text += f"\n{glyph} {todo.get('content', '')}"
    return text


def _usage_counts(usage: dict) -> tuple[int, int, int, int]:
    return (
        int(usage.get("input_tokens") or 0),
        int(usage.get("output_tokens") or 0),
        int(usage.get("cache_creation_input_tokens") or 0),
        int(usage.get("cache_read_input_tokens") or 0),
    )


class EventInterpreter:
    """Turns decoded stream records into UI events and session state updates."""

    def __init__(
        self,
        state: SessionState,
        sink: EventSink,
        *,
        on_login_required: Callable[[], None],
        cost_function: CostFunction = calculate_cost,
    ) -> None:
        self._state = state
        self._sink = sink
        self._on_login_required = on_login_required
        self._cost_function = cost_function

    def handle(self, record: dict) -> None:
        record_type = record.get("type")
        if record_type == "system":
            self._handle_system(record)
        elif record_type == "assistant":
            self._handle_assistant(record)
        elif record_type == "user":
            self._handle_user(record)
        elif record_type == "result":
            self._handle_result(record)
        else:
            logger.debug(f"Ignoring stream record of type {record_type!r}")

    def _emit(self, event_type: str, data: Any) -> None:
        self._sink.emit(UiEvent(event_type, data))

    def _save(self, event_type: str, data: Any) -> None:
        send_and_save(self._state, self._sink, event_type, data)

    def _cost(self, input_tokens: int, output_tokens: int, cache_creation: int, cache_read: int) -> float:
        return self._cost_function(
            self._state.selected_model, input_tokens, output_tokens, cache_creation, cache_read
        )

    def _session_info(self, record: dict) -> dict[str, Any]:
        return {
            "sessionId": self._state.session_id,
            "tools": record.get("tools") or [],
            "mcpServers": record.get("mcp_servers") or [],
        }

    def _handle_system(self, record: dict) -> None:
        if record.get("subtype") != "init":
            return
        session_id = record.get("session_id")
        if session_id:
            self._state.session_id = session_id
        logger.info(f"CLI session initialised: {session_id}")
        self._save(ui_events.SESSION_INFO, self._session_info(record))

    def _handle_assistant(self, record: dict) -> None:
        message = record.get("message") or {}

        usage = message.get("usage")
        if isinstance(usage, dict):
            self._apply_incremental_usage(usage)

        for block in message.get("content") or []:
            if not isinstance(block, dict):
                continue
            block_type = block.get("type")
            if block_type == "text":
                text = str(block.get("text", "")).strip()
                if text:
                    self._save(ui_events.OUTPUT, text)
            elif block_type == "thinking":
                thinking = str(block.get("thinking", "")).strip()
                if thinking:
                    self._save(ui_events.THINKING, thinking)
            elif block_type == "tool_use":
                self._save(ui_events.TOOL_USE, self._tool_use_payload(block))

    def _apply_incremental_usage(self, usage: dict) -> None:
        input_tokens, output_tokens, cache_creation, cache_read = _usage_counts(usage)
        state = self._state
        state.total_input_tokens += input_tokens
        state.total_output_tokens += output_tokens
        state.total_cost += self._cost(input_tokens, output_tokens, cache_creation, cache_read)
        self._save(
            ui_events.UPDATE_TOKENS,
            {
                "totalTokensInput": state.total_input_tokens,
                "totalTokensOutput": state.total_output_tokens,
                "currentInputTokens": input_tokens,
                "currentOutputTokens": output_tokens,
                "cacheCreationTokens": cache_creation,
                "cacheReadTokens": cache_read,
            },
        )

    @staticmethod
    def _tool_use_payload(block: dict) -> dict[str, Any]:
        name = block.get("name", "")
        tool_input = block.get("input")
        display = ""
        if isinstance(tool_input, dict) and name == "TodoWrite" and tool_input.get("todos"):
            display = format_todo_list(tool_input["todos"])
        return {
            "toolInfo": f"🔧 Executing: {name}",
            "toolInput": display,
            "rawInput": tool_input,
            "toolName": name,
            "toolUseId": block.get("id"),
        }

    def _handle_user(self, record: dict) -> None:
        message = record.get("message") or {}
        for block in message.get("content") or []:
            if not isinstance(block, dict) or block.get("type") != "tool_result":
                continue

            content = block.get("content") or DEFAULT_TOOL_RESULT
            if isinstance(content, (dict, list)):
                content = json.dumps(content, indent=2)

            is_error = bool(block.get("is_error", False))
            tool_use_id = block.get("tool_use_id")
            tool_name = self._state.tool_name_for(tool_use_id)

            payload: dict[str, Any] = {
                "content": content,
                "isError": is_error,
                "toolUseId": tool_use_id,
                "toolName": tool_name,
            }
            if tool_name in QUIET_TOOLS and not is_error:
                payload["hidden"] = True
            self._save(ui_events.TOOL_RESULT, payload)

    def _handle_result(self, record: dict) -> None:
        if record.get("is_error") and AUTH_FAILURE_MARKER in str(record.get("result", "")):
            logger.warning("CLI reported invalid credentials; starting login flow")
            self._on_login_required()
            return

        state = self._state
        state.is_processing = False

        session_id = record.get("session_id")
        if session_id:
            state.session_id = session_id
            self._save(ui_events.SESSION_INFO, self._session_info(record))

        self._emit(ui_events.SET_PROCESSING, {"isProcessing": False})
        state.request_count += 1

        usage = record.get("usage")
        if isinstance(usage, dict):
            self._reconcile_usage(usage)

        reported_cost = record.get("total_cost_usd")
        if isinstance(reported_cost, (int, float)) and reported_cost > 0:
            state.total_cost = float(reported_cost)

        self._emit(
            ui_events.UPDATE_TOTALS,
            {
                "totalCost": state.total_cost,
                "totalTokensInput": state.total_input_tokens,
                "totalTokensOutput": state.total_output_tokens,
                "requestCount": state.request_count,
                "currentCost": reported_cost or 0,
                "currentDuration": record.get("duration_ms"),
                "currentTurns": record.get("num_turns"),
            },
        )

        subtype = record.get("subtype", "")
        if subtype != "success":
            logger.warning(f"CLI turn finished with result subtype {subtype!r}")
            self._save(ui_events.ERROR, f"Claude finished with an error ({subtype}).")

    def _reconcile_usage(self, usage: dict) -> None:
        input_tokens, output_tokens, cache_creation, cache_read = _usage_counts(usage)
        state = self._state
        if (input_tokens, output_tokens) == (state.total_input_tokens, state.total_output_tokens):
            return
        logger.debug(
            f"Replacing local token totals ({state.total_input_tokens}, {state.total_output_tokens}) "
            f"with reported usage ({input_tokens}, {output_tokens})"
        )
        state.total_input_tokens = input_tokens
        state.total_output_tokens = output_tokens
        state.total_cost = self._cost(input_tokens, output_tokens, cache_creation, cache_read)
