from __future__ import annotations


class ClaudePanelError(Exception):
    """Base class for errors raised inside the engine's adapters."""


class PermissionRequestError(ClaudePanelError):
    def __init__(self, path: str, reason: str):
        super().__init__(f"Invalid permission request {path}: {reason}")
        self.path = path


class BackupError(ClaudePanelError):
    def __init__(self, command: list[str], returncode: int, stderr: str):
        super().__init__(f"git {' '.join(command)} exited with {returncode}: {stderr.strip()}")
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
