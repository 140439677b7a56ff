from claude_panel_engine.permissions.broker import PermissionBroker, PermissionDecision, PermissionRequest
from claude_panel_engine.permissions.mcp_config import write_mcp_config
from claude_panel_engine.permissions.patterns import get_command_pattern
from claude_panel_engine.permissions.store import AlwaysAllowStore
from claude_panel_engine.permissions.watcher import DirectoryWatcher, PollingDirectoryWatcher

__all__ = [
    "AlwaysAllowStore",
    "DirectoryWatcher",
    "PermissionBroker",
    "PermissionDecision",
    "PermissionRequest",
    "PollingDirectoryWatcher",
    "get_command_pattern",
    "write_mcp_config",
]
