"""Approval-prompt MCP server launched by the claude CLI.

The CLI calls ``approval_prompt`` before running a tool. Unless the call is
covered by an always-allow entry, the server writes ``<id>.request`` into the
directory named by ``CLAUDE_PERMISSIONS_PATH`` and waits for the panel to
write ``<id>.response``.
"""

from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path
from typing import Any
from uuid import uuid4

from loguru import logger
from mcp.server.fastmcp import FastMCP

from claude_panel_engine.cli_invocation import PERMISSION_SERVER_NAME
from claude_panel_engine.permissions.broker import read_json_file
from claude_panel_engine.permissions.mcp_config import PERMISSIONS_PATH_ENV
from claude_panel_engine.permissions.store import AlwaysAllowStore

RESPONSE_POLL_SECONDS = 0.2

mcp = FastMCP(PERMISSION_SERVER_NAME)


def _requests_dir() -> Path:
    raw = os.environ.get(PERMISSIONS_PATH_ENV, "").strip()
    if not raw:
        raise RuntimeError(f"{PERMISSIONS_PATH_ENV} is not set")
    return Path(raw)


def allow_result(tool_input: Any) -> str:
    return json.dumps({"behavior": "allow", "updatedInput": tool_input})


def deny_result() -> str:
    return json.dumps({"behavior": "deny", "message": "Permission denied by user"})


def write_request(directory: Path, request_id: str, tool_name: str, tool_input: Any) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    request_path = directory / f"{request_id}.request"
    tmp_path = directory / f"{request_id}.request.tmp"
    tmp_path.write_text(
        json.dumps({"id": request_id, "tool": tool_name, "input": tool_input}),
        encoding="utf-8",
    )
    tmp_path.replace(request_path)
    return request_path


async def wait_for_response(directory: Path, request_id: str, poll_seconds: float = RESPONSE_POLL_SECONDS) -> bool:
    response_path = directory / f"{request_id}.response"
    while not response_path.exists():
        await asyncio.sleep(poll_seconds)
    response = await read_json_file(response_path)
    response_path.unlink(missing_ok=True)
    return bool(response.get("approved", False)) if isinstance(response, dict) else False


async def request_approval(
    directory: Path,
    tool_name: str,
    tool_input: Any,
    tool_use_id: str | None = None,
    *,
    poll_seconds: float = RESPONSE_POLL_SECONDS,
) -> str:
    store = AlwaysAllowStore(directory / "permissions.json")
    if store.is_allowed(tool_name, tool_input if isinstance(tool_input, dict) else None):
        logger.info(f"{tool_name} is always allowed")
        return allow_result(tool_input)

    request_id = tool_use_id or uuid4().hex
    write_request(directory, request_id, tool_name, tool_input)
    logger.info(f"Waiting for approval of {tool_name} ({request_id})")
    approved = await wait_for_response(directory, request_id, poll_seconds)
    return allow_result(tool_input) if approved else deny_result()


@mcp.tool(description="Ask the user in the editor panel whether a tool call may run.")
async def approval_prompt(tool_name: str, input: dict, tool_use_id: str | None = None) -> str:
    return await request_approval(_requests_dir(), tool_name, input, tool_use_id)


if __name__ == "__main__":
    # stdout carries the MCP protocol; logs go to stderr.
    from claude_panel_engine.logging_config import setup_logging

    setup_logging(level=os.environ.get("CLAUDE_PANEL_LOG_LEVEL", "INFO"), consumers=[{"type": "console"}])
    mcp.run()
