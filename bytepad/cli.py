"""
Command-line interface for bytepad.

Usage:
    bytepad mcp                                  # MCP stdio server
    bytepad call create_task '{"title": "Ship it", "priority": "P1"}'
    bytepad sync [--pull | --push] [--force]
    bytepad status
    bytepad config
"""

import asyncio
import json
import os
from pathlib import Path
from typing import Annotated, Any, Optional

import typer

from .api import Bytepad
from .config import ENV_DATA_DIR, load_or_create_config
from .logging_config import configure_quiet_mode, enable_debug_mode
from .types import ToolResult

ENV_VERBOSE = "BYTEPAD_VERBOSE"

_data_dir_override: Optional[Path] = None


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        print(f"bytepad {version('bytepad-mcp')}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value or os.environ.get(ENV_VERBOSE):
        enable_debug_mode()
    else:
        configure_quiet_mode()


def _data_dir_callback(value: Optional[Path]):
    global _data_dir_override
    if value is not None:
        _data_dir_override = value.expanduser().resolve()
        # The error log and the MCP server resolve the data dir from the environment
        os.environ[ENV_DATA_DIR] = str(_data_dir_override)


app = typer.Typer(
    name="bytepad",
    help="Bytepad automation server: commands, local-first storage and Gist sync.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    data_dir: Annotated[Optional[Path], typer.Option(
        "--data-dir", "-d",
        envvar=ENV_DATA_DIR,
        help="Data directory (default ~/.bytepad)",
        callback=_data_dir_callback,
        is_eager=True,
    )] = None,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
):
    """Bytepad automation server."""


async def _execute(name: str, args: dict[str, Any]) -> ToolResult:
    bytepad = Bytepad(_data_dir_override)
    try:
        await bytepad.start(auto_sync=False)
        return await bytepad.execute(name, args)
    finally:
        await bytepad.aclose()


def _emit(result: ToolResult) -> None:
    """Print a result as JSON; exit 1 if it failed."""
    typer.echo(json.dumps(result.to_dict(), indent=2, ensure_ascii=False, default=str))
    if not result.success:
        raise typer.Exit(1)


@app.command("mcp")
def mcp_command():
    """Run the MCP stdio server (for AI agents)."""
    from .mcp import main as mcp_main
    mcp_main()


@app.command("call")
def call_command(
    name: Annotated[str, typer.Argument(help="Command name, e.g. create_task")],
    args: Annotated[Optional[str], typer.Argument(
        help="Arguments as a JSON object",
    )] = None,
):
    """Run one command and print its JSON result."""
    arguments: Any = {}
    if args:
        try:
            arguments = json.loads(args)
        except json.JSONDecodeError as e:
            typer.echo(f"Error: arguments are not valid JSON: {e}", err=True)
            raise typer.Exit(2)
        if not isinstance(arguments, dict):
            typer.echo("Error: arguments must be a JSON object", err=True)
            raise typer.Exit(2)
    _emit(asyncio.run(_execute(name, arguments)))


@app.command("sync")
def sync_command(
    pull: Annotated[bool, typer.Option("--pull", help="Replace local data with the Gist's")] = False,
    push: Annotated[bool, typer.Option("--push", help="Replace the Gist's data with local data")] = False,
    force: Annotated[bool, typer.Option("--force", help="Override the data-loss check")] = False,
):
    """Sync with the configured Gist (smart sync by default)."""
    if pull and push:
        typer.echo("Error: use --pull or --push, not both", err=True)
        raise typer.Exit(2)
    if pull:
        result = asyncio.run(_execute("gist_pull", {"force": force}))
    elif push:
        result = asyncio.run(_execute("gist_push", {"force": force}))
    else:
        result = asyncio.run(_execute("gist_sync", {}))
    _emit(result)


@app.command("status")
def status_command():
    """Show sync status and whether the desktop app is running."""

    async def gather() -> ToolResult:
        bytepad = Bytepad(_data_dir_override)
        try:
            await bytepad.start(auto_sync=False)
            sync = await bytepad.execute("gist_status")
            app_state = await bytepad.execute("app_status")
        finally:
            await bytepad.aclose()
        return ToolResult(
            sync.success and app_state.success,
            f"{sync.message}. {app_state.message}",
            {"sync": sync.data, "app": app_state.data},
        )

    _emit(asyncio.run(gather()))


@app.command("config")
def config_command():
    """Show the active configuration (the token is never shown)."""
    config = load_or_create_config(_data_dir_override)
    typer.echo(json.dumps({
        "dataDir": str(config.data_dir),
        "configFile": str(config.config_path),
        "dataFile": str(config.data_path),
        "syncConfigFile": str(config.sync_config_path),
        "localApi": config.local_api.url,
        "gistApi": config.remote.api_url,
        "dedupTtlSeconds": config.dedup_ttl_seconds,
    }, indent=2))


def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, context="bytepad CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
