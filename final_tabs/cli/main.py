#!/usr/bin/env python3
"""
Final Tabs CLI - post NBA game-result receipts to X.

A command-line tool that builds a receipt for every finished game from today
and yesterday, captures each one as an image and posts it once.
"""

import asyncio
import atexit
import os
from pathlib import Path
from typing import Annotated, Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from final_tabs.api.espn_client import ProviderError
from final_tabs.pipeline.config import AutopostConfig, ConfigError, load_config
from final_tabs.pipeline.coordinator import AutopostCoordinator, AutopostError
from final_tabs.pipeline.models import RunSummary
from final_tabs.posting.history import DEFAULT_HISTORY_FILE, PostHistory
from final_tabs.posting.publisher import Publisher, PublishStatus
from final_tabs.receipts.builder import ReceiptBook
from final_tabs.receipts.models import Receipt

# Respect NO_COLOR for clean container logs
use_rich = os.getenv("NO_COLOR") is None
console = Console(
    no_color=not use_rich,
    force_terminal=use_rich,
)
app = typer.Typer(
    name="final-tabs",
    help="🧾 Final Tabs - NBA game-result receipts, posted once each",
    rich_markup_mode="rich",
)


def _shutdown_metrics() -> None:
    """Flush pending metrics before exit."""
    try:
        from final_tabs.utils.metrics import get_metrics

        get_metrics().shutdown(timeout_seconds=5)
    except Exception:
        # Exiting anyway
        pass


atexit.register(_shutdown_metrics)

STATUS_STYLES = {
    PublishStatus.POSTED: "[green]✅ posted[/green]",
    PublishStatus.SKIPPED: "[yellow]⏭  skipped[/yellow]",
    PublishStatus.FAILED: "[red]❌ failed[/red]",
}


def apply_log_level(log_level: str) -> None:
    from final_tabs.utils.logger import final_tabs_logger

    final_tabs_logger.get_logger().setLevel(log_level.upper())


def setup_environment(verbose: bool = False) -> None:
    """Load .env and set the log level for CLI usage."""
    load_dotenv()

    log_level = "DEBUG" if verbose else os.getenv("LOG_LEVEL", "WARNING")
    os.environ["LOG_LEVEL"] = log_level
    apply_log_level(log_level)


def handle_cli_error(e: Exception, verbose: bool = False) -> None:
    """Handle CLI errors with user-friendly messages."""
    error_message = str(e)

    if isinstance(e, ConfigError):
        console.print(f"[red]❌ Configuration error: {error_message}[/red]")
        console.print("[dim]💡 Set the TWITTER_* variables or use --dry-run[/dim]")
        return
    elif isinstance(e, ProviderError):
        console.print(f"[red]❌ Scoreboard provider error: {error_message}[/red]")
    elif isinstance(e, AutopostError):
        console.print(f"[red]❌ Capture failed: {error_message}[/red]")
    elif "timeout" in error_message.lower():
        console.print(
            "[red]❌ Operation timed out - the provider or browser may be slow[/red]"
        )
    else:
        console.print(f"[red]❌ Error: {error_message}[/red]")

    if verbose:
        console.print("\n[dim]Full stack trace:[/dim]")
        console.print_exception()
    else:
        console.print("[dim]💡 Use --verbose/-v to see full error details[/dim]")


def display_header(dry_run: bool) -> None:
    """Display the application header."""
    if not use_rich:
        return

    header = Text("🧾 Final Tabs", style="bold blue")
    mode = Text(
        "DRY RUN - nothing will be posted" if dry_run else "LIVE - posting to X",
        style="yellow" if dry_run else "bold red",
    )
    console.print(Panel(f"{header}\n{mode}", border_style="blue", padding=(1, 2)))


def display_config_summary(config: AutopostConfig) -> None:
    """Display the non-secret run settings."""
    if not use_rich:
        return

    config_table = Table(show_header=False, box=None, padding=(0, 1))
    config_table.add_column("Setting", style="cyan")
    config_table.add_column("Value", style="white")

    config_table.add_row("Mode", "dry run" if config.dry_run else "live")
    config_table.add_row("History File", config.history_file)
    config_table.add_row("Timezone", config.timezone)
    config_table.add_row("Receipt Page", config.page_url or "rendered locally")
    config_table.add_row("Post Delay", f"{config.post_delay_seconds:g}s")

    console.print(Panel(config_table, title="📋 Configuration", border_style="cyan"))


def display_run_summary(summary: RunSummary) -> None:
    """Display per-receipt outcomes and run counters."""
    if summary.results:
        results_table = Table(show_header=True, header_style="bold magenta", box=None)
        results_table.add_column("Receipt", style="cyan")
        results_table.add_column("Result")
        results_table.add_column("Detail", style="dim")

        for result in summary.results:
            detail = result.error or ""
            if result.failure_kind:
                detail = f"{result.failure_kind.value}: {detail}"
            results_table.add_row(
                f"#{result.identity}", STATUS_STYLES[result.status], detail
            )
        console.print(results_table)
        console.print()

    stats_table = Table(show_header=False, box=None, padding=(0, 1))
    stats_table.add_column("Metric", style="cyan")
    stats_table.add_column("Value", style="white")
    for name, value in summary.counters().items():
        stats_table.add_row(name.replace("_", " ").title(), str(value))
    if summary.capture_aborted:
        stats_table.add_row("Capture", "[yellow]stopped early (timeout)[/yellow]")
    if summary.auth_aborted:
        stats_table.add_row("Posting", "[red]stopped (authorization failure)[/red]")

    border = "red" if summary.exit_code else "green"
    console.print(Panel(stats_table, title="📊 Run Summary", border_style=border))


def display_receipt(receipt: Receipt) -> None:
    """Display one receipt as a table of line items."""
    table = Table(
        title=f"ORDER #{receipt.order_number} FOR {receipt.opponent_display_name.upper()}",
        show_header=True,
        header_style="bold magenta",
    )
    table.add_column("Item", style="white")
    table.add_column("Points", justify="right", style="green")

    for item in receipt.line_items:
        table.add_row(item.name, f"{item.points:.2f}")
    table.add_row("[dim]SUBTOTAL[/dim]", f"{receipt.subtotal:.2f}")
    table.add_row("[dim]BONUS BUCKETS[/dim]", f"{receipt.bonus:.2f}")
    table.add_row("[bold]TOTAL[/bold]", f"[bold]{receipt.total:.2f}[/bold]")

    console.print(table)
    console.print(
        f"[cyan]{receipt.team_display_name}[/cyan] W {receipt.score_text}  "
        f"[dim]{receipt.tagline}[/dim]"
    )
    console.print(f"[dim]{receipt.game_url}[/dim]")


@app.command()
def run(
    dry_run: Annotated[
        Optional[bool],
        typer.Option(
            "--dry-run/--live",
            help="Compose captions without posting (defaults to DRY_RUN env var)",
        ),
    ] = None,
    history_file: Annotated[
        Optional[str],
        typer.Option("--history-file", help="Post history JSON file"),
    ] = None,
    output_dir: Annotated[
        Optional[Path],
        typer.Option("--output-dir", "-o", help="Also save captured receipt PNGs here"),
    ] = None,
    headless: Annotated[
        bool,
        typer.Option("--headless/--no-headless", help="Run browser in headless mode"),
    ] = True,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show detailed logs and full error traces"),
    ] = False,
) -> None:
    """
    🧾 Build, capture and post receipts for today's and yesterday's games.

    Receipts already in the post history are skipped, so the command is safe
    to run repeatedly. Exits 1 when posts were attempted and none succeeded.
    """
    setup_environment(verbose)

    try:
        config = load_config(dry_run=dry_run)
    except ConfigError as e:
        handle_cli_error(e, verbose)
        raise typer.Exit(1) from e

    apply_log_level(config.log_level)
    overrides: dict[str, object] = {"headless": headless}
    if history_file:
        overrides["history_file"] = history_file
    config = config.model_copy(update=overrides)

    display_header(config.dry_run)
    display_config_summary(config)

    try:
        from final_tabs.utils.metrics import get_metrics

        coordinator = AutopostCoordinator.from_config(config, output_dir=output_dir)
        with get_metrics().time_execution():
            summary = asyncio.run(coordinator.run())

    except Exception as e:
        handle_cli_error(e, verbose)
        raise typer.Exit(1) from e

    if summary.games_found == 0:
        console.print("[yellow]🏀 No finished games from today or yesterday[/yellow]")
    display_run_summary(summary)

    if summary.exit_code:
        raise typer.Exit(summary.exit_code)


@app.command()
def preview(
    identity: Annotated[
        str, typer.Argument(help="Receipt identity or deep link, e.g. LAL-0211")
    ],
    output_dir: Annotated[
        Optional[Path],
        typer.Option("--output-dir", "-o", help="Capture the receipt PNG into this directory"),
    ] = None,
    headless: Annotated[
        bool,
        typer.Option("--headless/--no-headless", help="Run browser in headless mode"),
    ] = True,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show detailed logs and full error traces"),
    ] = False,
) -> None:
    """
    🔍 Show the receipt behind an identity without posting anything.

    The month/day resolves to its most recent past occurrence. With
    --output-dir the receipt is also captured to IDENTITY.png.
    """
    setup_environment(verbose)

    try:
        config = load_config(dry_run=True).model_copy(update={"headless": headless})
        apply_log_level(config.log_level)
        coordinator = AutopostCoordinator(
            config=config,
            history=PostHistory(config.history_file),
            publisher=Publisher(dry_run=True),
            output_dir=output_dir,
        )
        receipt, _ = asyncio.run(coordinator.preview(identity))

        if receipt is None:
            console.print(f"[yellow]No receipt found for {identity}[/yellow]")
            raise typer.Exit(1)

        display_receipt(receipt)

        if output_dir:
            single = ReceiptBook()
            single.add(receipt)
            captures = asyncio.run(coordinator.capture_stage(single))
            if not captures:
                console.print("[red]❌ Receipt could not be captured[/red]")
                raise typer.Exit(1)
            console.print(
                f"[green]💾 Saved {output_dir / (receipt.identity + '.png')}[/green]"
            )

    except typer.Exit:
        raise
    except ValueError as e:
        console.print(f"[red]❌ {e}[/red]")
        raise typer.Exit(1) from e
    except Exception as e:
        handle_cli_error(e, verbose)
        raise typer.Exit(1) from e


@app.command()
def history(
    history_file: Annotated[
        str,
        typer.Option("--history-file", help="Post history JSON file"),
    ] = DEFAULT_HISTORY_FILE,
    limit: Annotated[
        int, typer.Option("--limit", "-l", help="Show only the most recent N entries")
    ] = 0,
) -> None:
    """
    📜 List receipt identities already posted.
    """
    setup_environment(False)

    post_history = PostHistory.load(history_file)
    posted = post_history.posted
    if limit > 0:
        posted = posted[-limit:]

    if not posted:
        console.print(f"[yellow]No posted receipts in {history_file}[/yellow]")
        return

    table = Table(title=f"📜 Posted receipts ({len(post_history)})", show_header=True)
    table.add_column("#", style="dim", justify="right")
    table.add_column("Identity", style="cyan")
    offset = len(post_history) - len(posted)
    for index, identity in enumerate(posted, start=offset + 1):
        table.add_row(str(index), identity)

    console.print(table)


if __name__ == "__main__":
    app()
