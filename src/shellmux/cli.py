"""CLI entry point for shellmux."""

from __future__ import annotations

import logging

import typer
import uvicorn

from shellmux.config import ShellmuxConfig
from shellmux.routing.router import RoutingMode

app = typer.Typer(
    name="shellmux",
    help="Persistent, multiplexed shell sessions over WebSockets.",
    no_args_is_help=True,
)


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _load_config(
    config_file: str | None,
    host: str | None = None,
    port: int | None = None,
    mode: RoutingMode | None = None,
    ephemeral: bool = False,
    shell: str | None = None,
) -> ShellmuxConfig:
    """Load config, then apply command-line overrides."""
    config = ShellmuxConfig.load(config_file)
    if host:
        config.server.host = host
    if port is not None:
        config.server.port = port
    if mode:
        config.routing.mode = mode
    if ephemeral:
        config.routing.persistent = False
    if shell:
        config.terminal.shell = shell
    return config


@app.command()
def serve(
    host: str | None = typer.Option(
        None, "--host", "-H", help="Address to listen on (default: from env/config)."
    ),
    port: int | None = typer.Option(
        None, "--port", "-p", help="Port to listen on (default: from env/config)."
    ),
    mode: RoutingMode | None = typer.Option(
        None,
        "--mode",
        "-m",
        help="'owner' for private per-user sessions, 'broadcast' for shared ones.",
    ),
    ephemeral: bool = typer.Option(
        False,
        "--ephemeral",
        help="Kill a user's sessions when their connection drops (owner mode).",
    ),
    shell: str | None = typer.Option(
        None, "--shell", "-s", help="Shell to spawn for new terminals."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging."
    ),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
) -> None:
    """Run the terminal server."""
    setup_logging(verbose)
    config = _load_config(config_file, host, port, mode, ephemeral, shell)

    from shellmux.server import create_app

    typer.echo("shellmux v0.1.0")
    typer.echo(f"Mode: {config.routing.mode.value}")
    typer.echo(f"Persistent sessions: {config.routing.persistent}")
    typer.echo(f"History buffer: {config.terminal.history_size:,} bytes")
    typer.echo(f"Listening on ws://{config.server.host}:{config.server.port}/ws")

    uvicorn.run(
        create_app(config),
        host=config.server.host,
        port=config.server.port,
        log_level="debug" if verbose else "info",
    )


@app.command("show-config")
def show_config(
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
) -> None:
    """Print the effective configuration as JSON."""
    config = ShellmuxConfig.load(config_file)
    typer.echo(config.model_dump_json(indent=2))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
