from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from loguru import logger

from claude_panel_engine.session_state import SessionState, utc_now

_INDEX_FILE = "index.json"
_MAX_INDEX_ENTRIES = 50
_TITLE_CHARS = 50


def conversation_filename(start_time: str) -> str:
    return "conversation_" + start_time.replace(":", "-").replace(".", "-") + ".json"


def conversation_title(first_user_message: str) -> str:
    if not first_user_message:
        return "New Conversation"
    title = first_user_message[:_TITLE_CHARS].strip()
    if len(first_user_message) > _TITLE_CHARS:
        title += "..."
    return title


class ConversationStore:
    """Keeps finished conversations as JSON files plus a newest-first index."""

    def __init__(self, directory: str | Path):
        self._directory = Path(directory)

    @property
    def directory(self) -> Path:
        return self._directory

    def _index_path(self) -> Path:
        return self._directory / _INDEX_FILE

    def load_index(self) -> list[dict[str, Any]]:
        path = self._index_path()
        if not path.exists():
            return []
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as ex:
            logger.warning(f"Could not read conversation index {path}: {ex}")
            return []
        return data if isinstance(data, list) else []

    def save(self, state: SessionState) -> str | None:
        """Write the session's conversation log. Returns the filename, or None when nothing was saved."""
        if not state.conversation or not state.session_id:
            return None

        start_time = state.conversation_start_time or utc_now()
        filename = conversation_filename(start_time)
        now = utc_now()
        document = {
            "title": conversation_title(state.first_user_message()),
            "sessionId": state.session_id,
            "startTime": start_time,
            "endTime": now,
            "messageCount": len(state.conversation),
            "totalCost": state.total_cost,
            "totalTokens": {"input": state.total_input_tokens, "output": state.total_output_tokens},
            "messages": [entry.to_dict() for entry in state.conversation],
            "filename": filename,
        }

        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            (self._directory / filename).write_text(json.dumps(document, indent=2), encoding="utf-8")
            self._update_index(document, now)
        except OSError as ex:
            logger.error(f"Failed to save conversation {filename}: {ex}")
            return None
        return filename

    def _update_index(self, document: dict[str, Any], last_modified: str) -> None:
        entry = {
            "filename": document["filename"],
            "title": document["title"],
            "sessionId": document["sessionId"],
            "startTime": document["startTime"],
            "lastModified": last_modified,
            "messageCount": document["messageCount"],
            "totalCost": document["totalCost"],
        }
        index = [item for item in self.load_index() if item.get("filename") != entry["filename"]]
        index.insert(0, entry)
        self._index_path().write_text(json.dumps(index[:_MAX_INDEX_ENTRIES], indent=2), encoding="utf-8")

    def latest(self) -> dict[str, Any] | None:
        index = self.load_index()
        return index[0] if index else None

    def load(self, filename: str) -> dict[str, Any] | None:
        path = self._directory / Path(filename).name
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as ex:
            logger.warning(f"Could not load conversation {path}: {ex}")
            return None
