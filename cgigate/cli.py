"""CLI entry point for the gateway.

Commands:
- cgigate serve: Run the HTTP gateway
- cgigate scripts: List scripts the gateway would serve
- cgigate version: Show version information
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any

import click
import uvicorn
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from cgigate import __version__
from cgigate.core.config import GatewayConfig, load_config
from cgigate.core.errors import ConfigError
from cgigate.core.paths import iter_scripts
from cgigate.server.app import create_app

console = Console()
logger = logging.getLogger("cgigate")

LOG_LEVELS = ["debug", "info", "warning", "error"]


def configure_logging(level: str) -> None:
    """Route all log records (including uvicorn's) through a RichHandler."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


def _build_config(config_file: Path | None, **overrides: Any) -> GatewayConfig:
    try:
        return load_config(config_file, **overrides)
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        sys.exit(1)


config_option = click.option(
    "--config",
    "config_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    envvar="CGIGATE_CONFIG",
    help="YAML file with a 'gateway:' section (env: CGIGATE_CONFIG)",
)


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """cgigate - HTTP-to-CGI gateway.

    Maps requests under a URL prefix to executable scripts and runs them with
    a sanitized environment and a hard deadline.
    """
    pass


@main.command()
@config_option
@click.option("--host", help="Address to listen on (default: 0.0.0.0)")
@click.option("--port", type=int, help="Port to listen on (default: 8080)")
@click.option(
    "--cgi-dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory containing CGI scripts (default: ./cgi-bin)",
)
@click.option("--cgi-prefix", help="URL prefix for CGI scripts (default: /cgi-bin/)")
@click.option(
    "--max-env-size",
    type=int,
    help="Maximum size for environment variables (default: 4096)",
)
@click.option(
    "--script-timeout",
    type=float,
    help="Timeout for CGI script execution in seconds (default: 30)",
)
@click.option(
    "--allowed-extensions",
    help="Comma-separated list of allowed script extensions (default: .cgi)",
)
@click.option(
    "--max-output-bytes",
    type=int,
    help="Maximum script output buffered per request (default: 10MB)",
)
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="info",
    show_default=True,
)
def serve(
    config_file: Path | None,
    host: str | None,
    port: int | None,
    cgi_dir: Path | None,
    cgi_prefix: str | None,
    max_env_size: int | None,
    script_timeout: float | None,
    allowed_extensions: str | None,
    max_output_bytes: int | None,
    log_level: str,
) -> None:
    """Run the HTTP gateway.

    Example:
        cgigate serve --cgi-dir ./cgi-bin --script-timeout 10
    """
    config = _build_config(
        config_file,
        host=host,
        port=port,
        cgi_dir=cgi_dir,
        cgi_prefix=cgi_prefix,
        max_env_size=max_env_size,
        script_timeout=script_timeout,
        allowed_extensions=allowed_extensions,
        max_output_bytes=max_output_bytes,
    )

    configure_logging(log_level)

    if not config.cgi_root.is_dir():
        logger.warning("CGI scripts directory does not exist: %s", config.cgi_root)

    console.print(
        Panel(
            f"Listening on: http://{config.host}:{config.port}{config.cgi_prefix}\n"
            f"Scripts directory: {config.cgi_root}\n"
            f"Allowed extensions: {', '.join(config.allowed_extensions)}\n"
            f"Script timeout: {config.script_timeout}s",
            title=f"cgigate v{__version__}",
        )
    )
    logger.info("Starting CGI gateway on port %d", config.port)
    logger.info("CGI scripts directory: %s", config.cgi_root)
    logger.info("CGI URL prefix: %s", config.cgi_prefix)
    logger.info("Script timeout: %ss", config.script_timeout)

    uvicorn.run(
        create_app(config),
        host=config.host,
        port=config.port,
        log_config=None,
        log_level=log_level.lower(),
    )


@main.command()
@config_option
@click.option(
    "--cgi-dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory containing CGI scripts",
)
@click.option("--allowed-extensions", help="Comma-separated list of allowed script extensions")
def scripts(
    config_file: Path | None,
    cgi_dir: Path | None,
    allowed_extensions: str | None,
) -> None:
    """List scripts the gateway would serve."""
    config = _build_config(
        config_file,
        cgi_dir=cgi_dir,
        allowed_extensions=allowed_extensions,
    )

    if not config.cgi_root.is_dir():
        console.print(f"[yellow]Scripts directory not found: {config.cgi_root}[/yellow]")
        return

    table = Table(title=f"Scripts in {config.cgi_root}")
    table.add_column("URL", style="cyan")
    table.add_column("Executable")

    count = 0
    for url_name, _path, executable in iter_scripts(config):
        status = "[green]yes[/green]" if executable else "[red]no (403)[/red]"
        table.add_row(escape(config.cgi_prefix + url_name), status)
        count += 1

    if not count:
        console.print("[yellow]No scripts with an allowed extension found[/yellow]")
        return

    console.print(table)


@main.command()
def version() -> None:
    """Show version information."""
    console.print(f"cgigate v{__version__}")
    console.print("HTTP-to-CGI gateway")


if __name__ == "__main__":
    main()
