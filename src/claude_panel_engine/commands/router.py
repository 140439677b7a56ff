from __future__ import annotations

from collections.abc import Awaitable, Callable


class CommandRouter:
    def __init__(
        self,
        *,
        on_help: Callable[[], Awaitable[None]],
        on_stop: Callable[[], Awaitable[None]],
        on_new: Callable[[], Awaitable[None]],
        on_permission: Callable[[str], Awaitable[None]],
        on_permissions: Callable[[str], Awaitable[None]],
        on_model: Callable[[str], Awaitable[None]],
        on_restore: Callable[[str], Awaitable[None]],
        on_plan: Callable[[str], Awaitable[None]],
        on_think: Callable[[str], Awaitable[None]],
        on_cli: Callable[[str], Awaitable[None]],
        on_unknown: Callable[[str], None],
    ) -> None:
        self._on_help = on_help
        self._on_stop = on_stop
        self._on_new = on_new
        self._on_permission = on_permission
        self._on_permissions = on_permissions
        self._on_model = on_model
        self._on_restore = on_restore
        self._on_plan = on_plan
        self._on_think = on_think
        self._on_cli = on_cli
        self._on_unknown = on_unknown

    async def try_handle(self, user_message: str) -> bool:
        trimmed = user_message.strip()
        if not trimmed.startswith("/"):
            return False

        command, _, _ = trimmed.partition(" ")

        if command == "/help":
            await self._on_help()
            return True
        if command == "/stop":
            await self._on_stop()
            return True
        if command == "/new":
            await self._on_new()
            return True
        if command in ("/allow", "/deny", "/always"):
            await self._on_permission(trimmed)
            return True
        if command == "/permissions":
            await self._on_permissions(trimmed)
            return True
        if command == "/model":
            await self._on_model(trimmed)
            return True
        if command == "/restore":
            await self._on_restore(trimmed)
            return True
        if command == "/plan":
            await self._on_plan(trimmed)
            return True
        if command == "/think":
            await self._on_think(trimmed)
            return True
        if command == "/cli":
            await self._on_cli(trimmed)
            return True

        self._on_unknown(trimmed)
        return True
