"""
CLI for provider collection and Google Sheets synchronization.
"""
import asyncio
import functools

import click
import structlog
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from iyield_ingest.api.client import FetchClient
from iyield_ingest.collectors import COLLECTOR_REGISTRY
from iyield_ingest.config import Settings, get_settings
from iyield_ingest.exceptions import IngestError
from iyield_ingest.models import OutcomeStatus, PassSummary, load_sources_config
from iyield_ingest.sheets.store import GoogleSheetStore, SheetStore
from iyield_ingest.sheets.sync import SyncOrchestrator
from iyield_ingest.utils.logging import setup_logging

console = Console(stderr=True)
logger = structlog.get_logger()

_STATUS_STYLE = {
    OutcomeStatus.SUCCESS: "green",
    OutcomeStatus.SKIPPED: "yellow",
    OutcomeStatus.FAILED: "red",
}


def async_command(f):
    """Decorator to run async functions in click commands."""
    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        return asyncio.run(f(*args, **kwargs))
    return wrapper


def build_store(settings: Settings) -> SheetStore:
    """Sheet store for the configured spreadsheet."""
    return GoogleSheetStore.from_service_account(
        settings.google_sheet_id,
        settings.google_application_credentials,
    )


def print_summary(summary: PassSummary) -> None:
    """Render a pass summary as a table."""
    table = Table(title=f"{summary.name} summary")
    table.add_column("Item")
    table.add_column("Status")
    table.add_column("Rows", justify="right")
    table.add_column("Target / detail")
    for outcome in summary.outcomes:
        style = _STATUS_STYLE[outcome.status]
        table.add_row(
            outcome.item,
            f"[{style}]{outcome.status.value}[/{style}]",
            str(outcome.rows) if outcome.rows else "",
            outcome.target or outcome.detail,
        )
    console.print(table)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx, verbose: bool):
    """iyield data collection and Google Sheets sync CLI."""
    ctx.ensure_object(dict)
    settings = get_settings()
    setup_logging(
        level="DEBUG" if verbose else settings.log_level,
        format_type="console" if verbose else settings.log_format,
    )
    ctx.obj["settings"] = settings


@cli.command()
@click.argument(
    "sources",
    nargs=-1,
    type=click.Choice([*COLLECTOR_REGISTRY, "all"]),
)
@click.pass_context
@async_command
async def collect(ctx, sources: tuple[str, ...]):
    """Fetch provider data and write CSV files (default: all collectors)."""
    settings: Settings = ctx.obj["settings"]
    names = list(COLLECTOR_REGISTRY) if not sources or "all" in sources else list(dict.fromkeys(sources))
    console.print(Panel(f"Collecting: {', '.join(names)}", style="bold blue"))

    try:
        config = load_sources_config(settings.sources_config_path)
        async with FetchClient(settings) as client:
            for name in names:
                summary = await COLLECTOR_REGISTRY[name](client, settings, config)
                logger.info("Collector done", collector=name, **summary.counts())
                print_summary(summary)
    except Exception as e:
        logger.error("Fatal", error_type=type(e).__name__, error=str(e), exc_info=not isinstance(e, IngestError))
        raise SystemExit(1)

    logger.info("Done.")


@cli.command()
@click.pass_context
@async_command
async def sync(ctx):
    """Mirror every CSV under the sync roots into the spreadsheet."""
    settings: Settings = ctx.obj["settings"]
    try:
        settings.require_sheet_credentials()
        console.print(Panel(f"Syncing {', '.join(settings.sync_root_list)}", style="bold blue"))
        orchestrator = SyncOrchestrator(build_store(settings), settings)
        summary = await orchestrator.run()
    except Exception as e:
        logger.error("Fatal", error_type=type(e).__name__, error=str(e), exc_info=not isinstance(e, IngestError))
        raise SystemExit(1)

    print_summary(summary)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
