"""audiomerger command line: a local stand-in for the chat front end."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from audiomerger.app import configure_logging
from audiomerger.cli.commands import register_maintenance, register_merge, register_queue
from audiomerger.cli.helpers import CliState
from audiomerger.config import load_config
from audiomerger.domain.exceptions import ConfigurationError

console = Console(stderr=True)

app = typer.Typer(
    help="Queue audio files and links per owner, then merge them into one file.",
    no_args_is_help=True,
    pretty_exceptions_enable=False,
)


@app.callback()
def main_callback(
    ctx: typer.Context,
    config_path: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        metavar="PATH",
        help="Config file (default: $AUDIOMERGER_CONFIG or ~/.config/audiomerger/config.toml)",
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Override the configured log level"),
) -> None:
    try:
        config = load_config(config_path)
        if log_level:
            config.log_level = log_level
    except (ConfigurationError, ValueError) as exc:
        if isinstance(exc, ConfigurationError):
            console.print(exc.format_rich())
        else:
            console.print(f"[red]Invalid option: {exc}[/red]")
        raise typer.Exit(code=2) from exc

    configure_logging(config.log_level)
    ctx.obj = CliState(config=config)


register_queue(app)
register_merge(app)
register_maintenance(app)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
