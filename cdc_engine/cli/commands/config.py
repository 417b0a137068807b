"""Config command printing the effective settings."""

import json

import click
from rich.console import Console
from rich.table import Table

from cdc_engine.common.config import get_settings

console = Console()


@click.command()
@click.option("--json", "as_json", is_flag=True, help="Print settings as JSON")
def config(as_json: bool) -> None:
    """Show the effective configuration (environment and .env applied)."""
    settings = get_settings()
    sections = settings.model_dump()

    if as_json:
        click.echo(json.dumps(sections, indent=2, default=str))
        return

    table = Table(show_header=True, header_style="bold magenta", title="CDC Engine Settings")
    table.add_column("Section")
    table.add_column("Setting")
    table.add_column("Value")

    for section, values in sections.items():
        for name, value in values.items():
            table.add_row(section, name, "-" if value is None else str(value))

    console.print(table)
