from __future__ import annotations

import logging
import time

import typer
from rich import print

from . import __version__
from .config import load_config
from .overlay import build_overlay_script
from .port_file import pid_running, read_port_file
from .server import AnnotationServer

app = typer.Typer(help="annoku: local annotation server for browser overlays and agents")


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="[annoku] %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def version() -> None:
    """Print the installed version."""

    print(__version__)


@app.command()
def serve(
    port: int | None = typer.Option(None, help="Base port (default 9223, env ANNOTATION_PORT)"),
    host: str | None = typer.Option(None, help="Bind host (default 127.0.0.1)"),
    persist: bool | None = typer.Option(
        None, "--persist/--no-persist", help="Snapshot annotations to disk"
    ),
    log_level: str = typer.Option("info", help="Logging level"),
) -> None:
    """Run the annotation server in the foreground until interrupted."""

    _configure_logging(log_level)
    cfg = load_config()
    if host:
        cfg.host = host
    server = AnnotationServer(cfg)
    server.on_overlay_script(build_overlay_script)
    bound = server.start(persist=persist, port=port)
    print(f"[green]Annotation server running at http://{cfg.host}:{bound}[/green]")
    print(f"Overlay script: http://{cfg.host}:{bound}/overlay.js")
    try:
        while True:
            time.sleep(1.0)
    except KeyboardInterrupt:
        print("\nShutting down.")
    finally:
        server.shutdown()


@app.command()
def status() -> None:
    """Show the annotation server advertised in the port file."""

    data = read_port_file()
    if data is None:
        print("[yellow]No annotation server running (no port file)[/yellow]")
        raise typer.Exit(code=1)
    alive = pid_running(data.pid)
    state = "[green]running[/green]" if alive else "[red]stale[/red]"
    print(f"Annotation server {state}")
    print(f"- port: {data.port}")
    print(f"- pid: {data.pid}")
    print(f"- started: {data.started_at}")


@app.command()
def overlay(
    port: int | None = typer.Option(None, help="Server port (default: discovered from port file)"),
) -> None:
    """Print the overlay script for injection into a page."""

    if port is None:
        data = read_port_file()
        if data is None:
            print("[red]No running server found; pass --port[/red]")
            raise typer.Exit(code=1)
        port = data.port
    typer.echo(build_overlay_script(port))


@app.command()
def mcp() -> None:
    """Run the MCP server on stdio."""

    from .mcp_server import run as mcp_run

    mcp_run()


def main() -> None:
    app()


if __name__ == "__main__":
    main()
