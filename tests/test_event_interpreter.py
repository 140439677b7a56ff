import unittest

from claude_panel_engine import ui_events
from claude_panel_engine.event_interpreter import EventInterpreter
from claude_panel_engine.session_state import SessionState
from claude_panel_engine.ui_events import RecordingEventSink


class EventInterpreterTests(unittest.TestCase):
    def setUp(self) -> None:
        self.state = SessionState(selected_model="sonnet")
        self.sink = RecordingEventSink()
        self.login_calls = 0

        def on_login() -> None:
            self.login_calls += 1

        self.interpreter = EventInterpreter(self.state, self.sink, on_login_required=on_login)

    def test_system_init_captures_session(self) -> None:
        self.interpreter.handle(
            {"type": "system", "subtype": "init", "session_id": "abc", "tools": ["Read"], "mcp_servers": [{"name": "x"}]}
        )
        self.assertEqual("abc", self.state.session_id)
        event = self.sink.of_type(ui_events.SESSION_INFO)[0]
        self.assertEqual({"sessionId": "abc", "tools": ["Read"], "mcpServers": [{"name": "x"}]}, event.data)

    def test_assistant_usage_accumulates_tokens_and_cost(self) -> None:
        record = {
            "type": "assistant",
            "message": {
                "usage": {
                    "input_tokens": 1000,
                    "output_tokens": 100,
                    "cache_creation_input_tokens": 0,
                    "cache_read_input_tokens": 0,
                },
                "content": [],
            },
        }
        self.interpreter.handle(record)
        self.interpreter.handle(record)
        self.assertEqual(2000, self.state.total_input_tokens)
        self.assertEqual(200, self.state.total_output_tokens)
        self.assertAlmostEqual(2 * (0.003 + 0.0015), self.state.total_cost)
        updates = self.sink.of_type(ui_events.UPDATE_TOKENS)
        self.assertEqual(2, len(updates))
        self.assertEqual(2000, updates[-1].data["totalTokensInput"])
        self.assertEqual(1000, updates[-1].data["currentInputTokens"])

    def test_text_and_thinking_blocks_are_trimmed_and_empty_ones_skipped(self) -> None:
        self.interpreter.handle(
            {
                "type": "assistant",
                "message": {
                    "content": [
                        {"type": "thinking", "thinking": "  pondering  "},
                        {"type": "text", "text": "   "},
                        {"type": "text", "text": " Done. \n"},
                    ]
                },
            }
        )
        self.assertEqual([ui_events.THINKING, ui_events.OUTPUT], self.sink.types())
        self.assertEqual("pondering", self.sink.events[0].data)
        self.assertEqual("Done.", self.sink.events[1].data)

    def test_todo_tool_use_renders_one_glyph_per_item(self) -> None:
        todos = [
            {"content": "write tests", "status": "completed"},
            {"content": "fix bug", "status": "in_progress"},
            {"content": "ship", "status": "pending"},
        ]
        self.interpreter.handle(
            {
                "type": "assistant",
                "message": {"content": [{"type": "tool_use", "id": "t1", "name": "TodoWrite", "input": {"todos": todos}}]},
            }
        )
        data = self.sink.of_type(ui_events.TOOL_USE)[0].data
        self.assertEqual("🔧 Executing: TodoWrite", data["toolInfo"])
        self.assertEqual("\nTodo List Update:\n✅ write tests\n🔄 fix bug\n⏳ ship", data["toolInput"])
        self.assertEqual({"todos": todos}, data["rawInput"])

    def test_regular_tool_use_passes_raw_input(self) -> None:
        self.interpreter.handle(
            {
                "type": "assistant",
                "message": {"content": [{"type": "tool_use", "id": "t1", "name": "Bash", "input": {"command": "ls"}}]},
            }
        )
        data = self.sink.of_type(ui_events.TOOL_USE)[0].data
        self.assertEqual("", data["toolInput"])
        self.assertEqual("Bash", data["toolName"])
        self.assertEqual({"command": "ls"}, data["rawInput"])

    def _tool_use(self, tool_id: str, name: str) -> None:
        self.interpreter.handle(
            {"type": "assistant", "message": {"content": [{"type": "tool_use", "id": tool_id, "name": name, "input": {}}]}}
        )

    def _tool_result(self, tool_id: str, content=None, is_error: bool = False) -> dict:
        block = {"type": "tool_result", "tool_use_id": tool_id, "is_error": is_error}
        if content is not None:
            block["content"] = content
        self.interpreter.handle({"type": "user", "message": {"content": [block]}})
        return self.sink.of_type(ui_events.TOOL_RESULT)[-1].data

    def test_quiet_tool_results_are_hidden_unless_error(self) -> None:
        self._tool_use("r1", "Read")
        ok = self._tool_result("r1", "file contents")
        self.assertTrue(ok["hidden"])
        self.assertEqual("Read", ok["toolName"])

        failed = self._tool_result("r1", "no such file", is_error=True)
        self.assertNotIn("hidden", failed)
        self.assertTrue(failed["isError"])

    def test_tool_result_defaults_and_pretty_prints_structures(self) -> None:
        self._tool_use("b1", "Bash")
        default = self._tool_result("b1")
        self.assertEqual("Tool executed successfully", default["content"])
        self.assertNotIn("hidden", default)

        structured = self._tool_result("b1", [{"type": "text", "text": "hi"}])
        self.assertEqual('[\n  {\n    "type": "text",\n    "text": "hi"\n  }\n]', structured["content"])

    def test_tool_result_matches_tool_by_id(self) -> None:
        self._tool_use("a", "Bash")
        self._tool_use("b", "Edit")
        result = self._tool_result("a", "out")
        self.assertEqual("Bash", result["toolName"])

    def _result(self, **fields) -> None:
        record = {"type": "result", "subtype": "success", "duration_ms": 1200, "num_turns": 2}
        record.update(fields)
        self.interpreter.handle(record)

    def test_authoritative_usage_overrides_local_totals(self) -> None:
        self.state.total_input_tokens = 100
        self.state.total_output_tokens = 50
        self._result(usage={"input_tokens": 120, "output_tokens": 50})
        self.assertEqual(120, self.state.total_input_tokens)
        self.assertEqual(50, self.state.total_output_tokens)
        totals = self.sink.of_type(ui_events.UPDATE_TOTALS)[0].data
        self.assertEqual(120, totals["totalTokensInput"])
        self.assertEqual(1, totals["requestCount"])
        self.assertEqual(1200, totals["currentDuration"])
        self.assertEqual(2, totals["currentTurns"])

    def test_reported_cost_wins_over_local_estimate(self) -> None:
        self.state.total_cost = 0.0038
        self._result(total_cost_usd=0.0042)
        self.assertEqual(0.0042, self.state.total_cost)
        self.assertEqual(0.0042, self.sink.of_type(ui_events.UPDATE_TOTALS)[0].data["totalCost"])

    def test_zero_reported_cost_keeps_local_estimate(self) -> None:
        self.state.total_cost = 0.0038
        self._result(total_cost_usd=0)
        self.assertEqual(0.0038, self.state.total_cost)

    def test_success_result_clears_processing_and_refreshes_session(self) -> None:
        self.state.is_processing = True
        self._result(session_id="new-session")
        self.assertFalse(self.state.is_processing)
        self.assertEqual("new-session", self.state.session_id)
        self.assertEqual(
            [ui_events.SESSION_INFO, ui_events.SET_PROCESSING, ui_events.UPDATE_TOTALS],
            self.sink.types(),
        )
        self.assertEqual({"isProcessing": False}, self.sink.events[1].data)

    def test_invalid_api_key_routes_to_login(self) -> None:
        self._result(is_error=True, result="Invalid API key · Please run /login")
        self.assertEqual(1, self.login_calls)
        self.assertEqual(0, self.state.request_count)
        self.assertEqual([], self.sink.of_type(ui_events.UPDATE_TOTALS))

    def test_error_subtype_reports_error_after_totals(self) -> None:
        self._result(subtype="error_max_turns")
        self.assertEqual([ui_events.SET_PROCESSING, ui_events.UPDATE_TOTALS, ui_events.ERROR], self.sink.types())
        self.assertIn("error_max_turns", self.sink.events[-1].data)

    def test_unknown_record_types_are_ignored(self) -> None:
        self.interpreter.handle({"type": "stream_event"})
        self.interpreter.handle({})
        self.assertEqual([], self.sink.events)


if __name__ == "__main__":
    unittest.main()
