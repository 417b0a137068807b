"""Demo command running the telecom CDC pipeline."""

from typing import Any, Dict

import click
from rich.console import Console
from rich.table import Table

from cdc_engine.common.config import get_settings
from cdc_engine.common.utils import format_duration
from cdc_engine.context import EngineContext
from cdc_engine.demo.telco import TelcoPipeline
from cdc_engine.pipeline import BatchResult

console = Console()

STATUS_COLORS = {
    "succeeded": "green",
    "no_changes": "dim",
    "skipped": "yellow",
    "cancelled": "yellow",
    "failed": "red",
    "healthy": "green",
    "degraded": "yellow",
    "unhealthy": "red",
}


@click.command()
@click.option("--ticks", "-t", default=3, show_default=True, help="Number of pipeline runs")
@click.option("--subscribers", default=20, show_default=True, help="Subscribers to generate")
@click.option("--cdrs", default=100, show_default=True, help="Call detail records to generate")
@click.option("--network-samples", default=50, show_default=True, help="Tower samples to generate")
@click.option("--invalid-rate", default=0.05, show_default=True, help="Share of zero-duration CDRs")
@click.option("--seed", type=int, help="Random seed for reproducibility")
@click.option("--concurrent", is_flag=True, help="Run due tasks on a thread pool")
def demo(
    ticks: int,
    subscribers: int,
    cdrs: int,
    network_samples: int,
    invalid_rate: float,
    seed: int | None,
    concurrent: bool,
) -> None:
    """
    Seed the telecom source tables and run the CDC pipeline.

    The first run processes the seeded rows. Later runs pick up a
    subscriber status change and otherwise report no pending changes.
    """
    console.print("\n[bold blue]Telecom CDC pipeline demo[/bold blue]\n")

    settings = get_settings()
    if concurrent:
        settings = settings.model_copy(
            update={
                "scheduler": settings.scheduler.model_copy(update={"concurrent_execution": True})
            }
        )

    try:
        with EngineContext.create(settings=settings, pipeline_name="telco-cdc") as context:
            pipeline = TelcoPipeline(context)
            written = pipeline.seed(
                subscribers=subscribers,
                cdrs=cdrs,
                network_samples=network_samples,
                invalid_rate=invalid_rate,
                seed=seed,
            )
            console.print(
                "[green]✓ Seeded[/green] "
                + ", ".join(f"{count} {table}" for table, count in written.items())
            )

            for tick in range(ticks):
                if tick > 0 and len(pipeline.subscribers):
                    subscriber = pipeline.subscribers.rows()[tick % len(pipeline.subscribers)]
                    pipeline.subscribers.update(
                        subscriber["subscriber_id"], {"status": "suspended"}
                    )
                result = context.orchestrator.run_pipeline(current_time=float(tick))
                _display_batch(result, tick + 1)

            snapshot = context.orchestrator.monitoring_snapshot()
            _display_snapshot(snapshot)
            _display_analytics(pipeline.analytics())

    except Exception as e:
        console.print(f"[red]✗ Demo failed: {e}[/red]")
        raise click.Abort()

    console.print("\n[bold green]✓ Demo complete![/bold green]\n")


def _colored(value: str) -> str:
    color = STATUS_COLORS.get(value, "white")
    return f"[{color}]{value}[/{color}]"


def _display_batch(result: BatchResult, number: int) -> None:
    """Display one pipeline run as a table."""
    table = Table(show_header=True, header_style="bold magenta", title=f"Run {number}")
    table.add_column("Task")
    table.add_column("Status")
    table.add_column("Received", justify="right")
    table.add_column("Processed", justify="right")
    table.add_column("Duration", justify="right")
    table.add_column("Reason")

    for entry in result.entries:
        table.add_row(
            entry.task_id,
            _colored(entry.status.value),
            str(entry.run.records_received) if entry.run else "-",
            str(entry.run.records_processed) if entry.run else "-",
            format_duration(entry.run.duration_seconds) if entry.run else "-",
            entry.reason,
        )

    console.print(table)


def _display_snapshot(snapshot: Dict[str, Any]) -> None:
    """Display stream and task monitoring tables."""
    console.print(f"\nPipeline status: {_colored(snapshot['status'])}\n")

    streams = Table(show_header=True, header_style="bold magenta", title="Streams")
    streams.add_column("Cursor")
    streams.add_column("Table")
    streams.add_column("Pending", justify="right")
    streams.add_column("Status")
    for stream in snapshot["streams"]:
        pending = stream["pending_records"]
        streams.add_row(
            stream["cursor_id"],
            stream["table_id"],
            "-" if pending is None else str(pending),
            stream["status"],
        )
    console.print(streams)

    tasks = Table(show_header=True, header_style="bold magenta", title="Tasks")
    tasks.add_column("Task")
    tasks.add_column("Runs", justify="right")
    tasks.add_column("Records", justify="right")
    tasks.add_column("Last outcome")
    for task in snapshot["tasks"]:
        last = task["last_outcome"]
        tasks.add_row(
            task["task_id"],
            str(task["runs"]),
            str(task["records_processed"]),
            _colored(last) if last else "-",
        )
    console.print(tasks)


def _display_analytics(analytics: Dict[str, Any]) -> None:
    """Display processing totals and alert breakdowns."""
    table = Table(show_header=True, header_style="bold magenta", title="Analytics")
    table.add_column("Metric")
    table.add_column("Value")

    for metric, value in analytics.items():
        if isinstance(value, dict):
            value = ", ".join(f"{k}={v}" for k, v in sorted(value.items())) or "-"
        table.add_row(metric, "-" if value is None else str(value))

    console.print(table)
