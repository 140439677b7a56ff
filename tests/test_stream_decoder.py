import json
import unittest

from claude_panel_engine.stream_decoder import JsonLineDecoder


def _decode_in_chunks(data: bytes, size: int) -> list[dict]:
    decoder = JsonLineDecoder()
    records: list[dict] = []
    for start in range(0, len(data), size):
        records.extend(decoder.feed(data[start:start + size]))
    records.extend(decoder.flush())
    return records


class JsonLineDecoderTests(unittest.TestCase):
    def setUp(self) -> None:
        lines = [
            {"type": "system", "subtype": "init", "session_id": "s1"},
            {"type": "assistant", "message": {"content": [{"type": "text", "text": "héllo ✅"}]}},
            {"type": "result", "subtype": "success"},
        ]
        self.records = lines
        self.data = b"".join(json.dumps(line, ensure_ascii=False).encode("utf-8") + b"\n" for line in lines)

    def test_chunk_boundaries_do_not_change_output(self) -> None:
        whole = _decode_in_chunks(self.data, len(self.data))
        self.assertEqual(self.records, whole)
        for size in (1, 2, 3, 7, 64):
            self.assertEqual(whole, _decode_in_chunks(self.data, size), f"chunk size {size}")

    def test_invalid_lines_are_dropped_without_stalling(self) -> None:
        decoder = JsonLineDecoder()
        data = b'not json\n{"a": 1}\n[1, 2]\n   \n{"b": 2}\n{"broken":\n{"c": 3}\n'
        records = list(decoder.feed(data))
        self.assertEqual([{"a": 1}, {"b": 2}, {"c": 3}], records)

    def test_incomplete_line_is_carried_over(self) -> None:
        decoder = JsonLineDecoder()
        self.assertEqual([], list(decoder.feed(b'{"type": "sys')))
        self.assertEqual([{"type": "system"}], list(decoder.feed(b'tem"}\n')))

    def test_flush_returns_trailing_record_without_newline(self) -> None:
        decoder = JsonLineDecoder()
        self.assertEqual([], list(decoder.feed(b'{"done": true}')))
        self.assertEqual([{"done": True}], list(decoder.flush()))
        self.assertEqual([], list(decoder.flush()))

    def test_windows_line_endings(self) -> None:
        decoder = JsonLineDecoder()
        self.assertEqual([{"a": 1}, {"b": 2}], list(decoder.feed(b'{"a": 1}\r\n{"b": 2}\r\n')))


if __name__ == "__main__":
    unittest.main()
