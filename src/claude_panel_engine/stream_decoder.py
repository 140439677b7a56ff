from __future__ import annotations

import json
from collections.abc import Iterator

from loguru import logger


class JsonLineDecoder:
    """Splits a byte stream into JSON objects, one per line.

    Incomplete trailing lines are carried over to the next ``feed`` call.
    Lines that are not JSON objects are dropped.
    """

    def __init__(self) -> None:
        self._buffer = b""

    def feed(self, chunk: bytes) -> Iterator[dict]:
        self._buffer += chunk
        *lines, self._buffer = self._buffer.split(b"\n")
        for line in lines:
            record = self._parse(line)
            if record is not None:
                yield record

    def flush(self) -> Iterator[dict]:
        remainder, self._buffer = self._buffer, b""
        record = self._parse(remainder)
        if record is not None:
            yield record

    @staticmethod
    def _parse(raw: bytes) -> dict | None:
        text = raw.decode("utf-8", errors="replace").strip()
        if not text:
            return None
        try:
            value = json.loads(text)
        except json.JSONDecodeError:
            logger.debug(f"Dropping non-JSON line from CLI output: {text[:120]!r}")
            return None
        if not isinstance(value, dict):
            logger.debug(f"Dropping non-object JSON line: {text[:120]!r}")
            return None
        return value
