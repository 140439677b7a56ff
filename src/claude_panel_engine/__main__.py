import asyncio
import sys

from dotenv import load_dotenv
from loguru import logger

from claude_panel_engine.app_config import VALID_MODELS, load_json_config, parse_app_config
from claude_panel_engine.bootstrap import bootstrap_runtime
from claude_panel_engine.chat_provider import ChatProvider
from claude_panel_engine.commands.router import CommandRouter

_HELP_LINES = [
    "/help                         Show this help",
    "/stop                         Stop the running turn",
    "/new                          Start a new session",
    "/plan <message>               Ask for a plan before any change",
    "/think <message>              Ask for step-by-step thinking",
    "/allow|/deny|/always [id]     Answer a permission request",
    "/permissions [add|remove <tool> [command]]",
    f"/model [{'|'.join(VALID_MODELS)}]      Select a model (no argument opens the CLI's model picker)",
    "/restore <sha>                Restore the workspace from a backup",
    "/cli <command>                Run a CLI slash command in a terminal",
]


def _build_router(provider: ChatProvider) -> CommandRouter:
    async def on_help() -> None:
        print("Commands:")
        for line in _HELP_LINES:
            print(f"  {line}")

    async def on_stop() -> None:
        provider.stop()

    async def on_new() -> None:
        provider.new_session()

    async def on_permission(command: str) -> None:
        verb, _, request_id = command.partition(" ")
        request_id = request_id.strip()
        pending = provider.broker.pending_ids()
        if not request_id and len(pending) == 1:
            request_id = pending[0]
        if not request_id:
            print(f"Pending requests: {', '.join(pending) or 'none'}")
            return
        approved = verb in ("/allow", "/always")
        if not provider.resolve_permission(request_id, approved, always_allow=verb == "/always"):
            print(f"No pending permission request {request_id}")

    async def on_permissions(command: str) -> None:
        parts = command.split(maxsplit=3)
        if len(parts) == 1:
            provider.send_permissions()
            return
        if len(parts) < 3 or parts[1] not in ("add", "remove"):
            print("Usage: /permissions [add|remove <tool> [command]]")
            return
        tool = parts[2]
        cmd = parts[3] if len(parts) > 3 else None
        if parts[1] == "add":
            await provider.add_permission(tool, cmd)
        else:
            await provider.remove_permission(tool, cmd)

    async def on_model(command: str) -> None:
        _, _, model = command.partition(" ")
        if model.strip():
            if provider.select_model(model):
                print(f"Model: {provider.state.selected_model}")
        else:
            provider.open_model_terminal()

    async def on_restore(command: str) -> None:
        _, _, prefix = command.partition(" ")
        prefix = prefix.strip()
        matches = [c for c in provider.state.backups if prefix and c.sha.startswith(prefix)]
        if len(matches) != 1:
            print("Usage: /restore <sha> (use a backup shown in this session)")
            return
        await provider.restore_backup(matches[0].sha)

    async def on_plan(command: str) -> None:
        _, _, text = command.partition(" ")
        await provider.send_message(text, plan_mode=True)

    async def on_think(command: str) -> None:
        _, _, text = command.partition(" ")
        await provider.send_message(text, thinking_mode=True)

    async def on_cli(command: str) -> None:
        _, _, name = command.partition(" ")
        if name.strip():
            provider.execute_slash_command(name)

    def on_unknown(command: str) -> None:
        print(f"Unknown command: {command} (try /help)")

    return CommandRouter(
        on_help=on_help,
        on_stop=on_stop,
        on_new=on_new,
        on_permission=on_permission,
        on_permissions=on_permissions,
        on_model=on_model,
        on_restore=on_restore,
        on_plan=on_plan,
        on_think=on_think,
        on_cli=on_cli,
        on_unknown=on_unknown,
    )


async def main() -> None:
    load_dotenv()

    app = parse_app_config(load_json_config())
    runtime = await bootstrap_runtime(app)
    provider = runtime.provider
    router = _build_router(provider)

    print("claude-panel (type 'exit' to quit, '/help' for commands)")
    print(f"Working directory: {app.working_directory}")
    print(f"Model: {provider.state.selected_model}")
    print(f"Permissions: {'skipped (yolo mode)' if app.yolo_mode else 'ask'}")
    if provider.state.session_id:
        print(f"Resuming session: {provider.state.session_id}")
    if runtime.log_descriptions:
        print(f"Logging: {', '.join(runtime.log_descriptions)}")
    print()

    try:
        while True:
            try:
                # Read in a thread so CLI output and permission prompts keep rendering.
                user_input = await asyncio.to_thread(input, "you> ")
            except (EOFError, KeyboardInterrupt):
                break

            trimmed = user_input.strip()

            if trimmed in ("exit", "quit"):
                break

            if not trimmed:
                continue

            try:
                if await router.try_handle(trimmed):
                    continue
                await provider.send_message(trimmed)
            except Exception as ex:
                logger.error(f"Unhandled error: {ex}")
    finally:
        await provider.dispose()


def _install_transport_cleanup_hook() -> None:
    """Suppress 'unclosed transport' noise from asyncio subprocess cleanup on Windows."""
    _default_hook = sys.unraisablehook

    def _hook(unraisable) -> None:
        obj_str = str(unraisable.object) if unraisable.object is not None else ""
        if "Transport" in obj_str and isinstance(unraisable.exc_value, (ResourceWarning, ValueError)):
            return
        _default_hook(unraisable)

    sys.unraisablehook = _hook


def run() -> None:
    _install_transport_cleanup_hook()
    asyncio.run(main())


if __name__ == "__main__":
    run()
