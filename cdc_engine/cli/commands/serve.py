"""Serve command running the scheduler loop with observability endpoints."""

import time

import click
from rich.console import Console

from cdc_engine.context import EngineContext
from cdc_engine.demo.telco import TelcoPipeline

console = Console()


@click.command()
@click.option("--metrics/--no-metrics", default=True, show_default=True, help="Expose Prometheus metrics")
@click.option("--health/--no-health", default=True, show_default=True, help="Expose health endpoints")
@click.option("--with-demo", is_flag=True, help="Register and seed the telecom pipeline")
@click.option("--interval", type=float, help="Interval in seconds for every demo task (default: per-task schedules)")
@click.option("--duration", type=float, help="Stop after this many seconds (default: until Ctrl+C)")
def serve(
    metrics: bool,
    health: bool,
    with_demo: bool,
    interval: float | None,
    duration: float | None,
) -> None:
    """Run the scheduler loop until interrupted."""
    console.print("\n[bold blue]Starting CDC engine[/bold blue]\n")

    context = EngineContext.create(pipeline_name="telco-cdc" if with_demo else "cdc-pipeline")
    try:
        if with_demo:
            pipeline = TelcoPipeline(context, schedule_interval=interval)
            pipeline.seed()
            console.print(f"[green]✓ Registered {len(pipeline.task_ids)} demo tasks[/green]")

        context.start(serve_metrics=metrics, serve_health=health)

        ports = context.settings.observability
        if metrics:
            console.print(f"[cyan]Metrics: http://localhost:{ports.metrics_port}/metrics[/cyan]")
        if health:
            console.print(f"[cyan]Health: http://localhost:{ports.health_check_port}/health[/cyan]")
        console.print("[dim]Press Ctrl+C to stop[/dim]\n")

        started = time.monotonic()
        while duration is None or time.monotonic() - started < duration:
            time.sleep(0.2)

    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted, shutting down...[/yellow]")
    except Exception as e:
        console.print(f"[red]✗ Engine failed: {e}[/red]")
        raise click.Abort()
    finally:
        context.shutdown()

    console.print("[green]✓ CDC engine stopped[/green]\n")
