"""Main CLI entry point for the CDC engine."""

import click
from rich.console import Console

from cdc_engine import __version__
from cdc_engine.cli.commands.config import config
from cdc_engine.cli.commands.demo import demo
from cdc_engine.cli.commands.serve import serve
from cdc_engine.observability.logging_config import setup_logging

console = Console()


@click.group()
@click.version_option(version=__version__, prog_name="cdc-engine")
@click.option("--log-level", type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]), help="Log level")
@click.option("--log-format", type=click.Choice(["json", "text"]), help="Log output format")
@click.pass_context
def cli(ctx: click.Context, log_level: str | None, log_format: str | None) -> None:
    """
    CDC Engine - in-process change data capture pipelines.

    Table mutations are recorded in a change log, consumed through
    per-consumer stream cursors, and processed by scheduled tasks that
    are composed into dependency-ordered pipelines.
    """
    ctx.ensure_object(dict)
    setup_logging(log_level=log_level, log_format=log_format)


cli.add_command(demo)
cli.add_command(serve)
cli.add_command(config)


if __name__ == "__main__":
    cli()
