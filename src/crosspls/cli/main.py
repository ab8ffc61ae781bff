"""CLI entry point for crosspls.

``crosspls run`` hosts the integration headlessly: it activates the client
session, prints user-visible warnings and deactivates on exit.
"""

import asyncio
import json
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape

from .. import __version__
from ..core.bus import EventPayload

app = typer.Typer(
    name="crosspls",
    help="crosspls - host integration for the Crossplane package language server",
    no_args_is_help=True,
    add_completion=False,
)

console = Console()

_MESSAGE_STYLES = {
    "error": "[red]error:[/red]",
    "warning": "[yellow]warning:[/yellow]",
    "info": "[cyan]info:[/cyan]",
}


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        console.print(f"crosspls {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
):
    """crosspls - host integration for the Crossplane package language server."""


def print_message(payload: EventPayload) -> None:
    kind = str(payload.properties.get("type", "info"))
    prefix = _MESSAGE_STYLES.get(kind, f"{kind}:")
    console.print(f"{prefix} {escape(str(payload.properties.get('message', '')))}", highlight=False)


@app.command()
def run(
    install_root: Optional[Path] = typer.Option(
        None,
        "--install-root",
        help="Directory the server executable is resolved against",
    ),
    server: Optional[str] = typer.Option(
        None,
        "--server",
        help="Server executable to launch instead of the installed one",
    ),
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help="Minimum log level (debug, info, warn, error)",
    ),
    print_logs: bool = typer.Option(
        False,
        "--print-logs",
        help="Print logs to stderr",
    ),
):
    """Activate the integration and run until the server exits or Ctrl-C."""
    from ..core.config import ConfigError
    from ..runtime.logging import bootstrap_logging
    from ..util.error import format_error, format_unknown_error
    from .cmd.run import run_host

    try:
        bootstrap_logging(mode="host", level=log_level, console=True if print_logs else None)
        code = asyncio.run(run_host(
            install_root=str(install_root) if install_root else None,
            server=server,
            on_message=print_message,
        ))
    except ConfigError as e:
        console.print(f"{_MESSAGE_STYLES['error']} {escape(format_error(e) or format_unknown_error(e))}", highlight=False)
        raise typer.Exit(1)
    raise typer.Exit(code)


@app.command()
def config(
    show: bool = typer.Option(
        False,
        "--show",
        help="Show current configuration",
    ),
    path: bool = typer.Option(
        False,
        "--path",
        help="Show configuration directory",
    ),
):
    """Inspect configuration."""
    from ..core.global_paths import GlobalPath

    if path:
        typer.echo(GlobalPath.config())
        return

    if show:
        from ..core.config import ConfigManager

        async def show_config():
            cfg = await ConfigManager.get()
            typer.echo(json.dumps(cfg.model_dump(mode="json", by_alias=True), indent=2))

        asyncio.run(show_config())
        return

    console.print("Use --show to display configuration or --path to show config path")


if __name__ == "__main__":
    app()
