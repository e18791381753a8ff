"""chatterm command-line interface."""

from __future__ import annotations

import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from chatterm.config.loader import load_config
from chatterm.config.schema import ChattermConfig
from chatterm.services.local_chat import LocalChatService
from chatterm.services.metrics import JsonMetricsSink
from chatterm.services.ollama_client import OllamaCompletionService

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

app = typer.Typer(
    name="chatterm",
    help="chatterm - keyboard-driven terminal chat dashboard with local AI drafts",
    invoke_without_command=True,
    rich_markup_mode="rich",
)
console = Console()


def setup_logging(config: ChattermConfig) -> Path:
    """Send all logging to ``<log_dir>/app.log``; the terminal belongs to the TUI."""
    log_dir = config.general.log_dir
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "app.log"
    level = getattr(logging, config.general.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[logging.FileHandler(log_file)],
        force=True,
    )
    return log_file


def build_metrics(config: ChattermConfig) -> JsonMetricsSink:
    log_dir = config.metrics.log_dir if config.metrics.enabled else None
    return JsonMetricsSink(log_dir=log_dir, recent_limit=config.metrics.recent_limit)


@app.callback()
def main_callback(ctx: typer.Context) -> None:
    """Launch the dashboard when no subcommand is given."""
    if ctx.invoked_subcommand is not None:
        return

    from chatterm.ui.app import ChattermApp

    config = load_config()
    log_file = setup_logging(config)
    logger.info(f"Starting chatterm (log file {log_file})")

    service = LocalChatService(config.transport.data_dir)
    completion = OllamaCompletionService(
        base_url=config.ai.host, timeout_seconds=config.ai.timeout_seconds
    )
    tui = ChattermApp(config, service, completion, metrics=build_metrics(config))
    tui.run()
    logger.info("chatterm exited")
    raise typer.Exit(0)


@app.command("metrics")
def metrics_command() -> None:
    """Print aggregate AI usage metrics."""
    config = load_config()
    if not config.metrics.enabled:
        console.print("[yellow]Metrics are disabled in the configuration.[/yellow]")
        raise typer.Exit(1)
    data = build_metrics(config).get_metrics()

    table = Table(title="AI Metrics", show_header=True, header_style="bold cyan")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Requests", str(data["total_requests"]))
    table.add_row("Estimated tokens", str(data["total_tokens"]))
    table.add_row("Avg response (ms)", f"{data['average_response_time_ms']:.0f}")
    table.add_row("Errors", str(data["errors"]["errors"]))
    table.add_row("Error rate", f"{data['error_rate']:.1%}")
    table.add_row(
        "Delivered",
        f"{data['delivery']['sent']}/{data['delivery']['total']}",
    )
    table.add_row("Delivery rate", f"{data['delivery_rate']:.1%}")
    table.add_row(
        "Feedback (+/-)",
        f"{data['feedback']['positive']}/{data['feedback']['negative']}",
    )
    console.print(table)

    if data["prompt_usage"]:
        usage = Table(title="Prompt usage", show_header=True, header_style="bold cyan")
        usage.add_column("Slug")
        usage.add_column("Count", justify="right")
        for slug, count in sorted(data["prompt_usage"].items(), key=lambda kv: -kv[1]):
            usage.add_row(slug, str(count))
        console.print(usage)


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
