#!/usr/bin/env python3
"""
CRM Vector Sync CLI
Sync leads into the vector index, then search and mine them for patterns.
Results are printed to stdout as JSON; logs and progress go to stderr.
"""

import asyncio
from datetime import datetime
from typing import Optional

import click
import structlog

from services.bootstrap import build_services
from shared.config import DEFAULT_MIN_SIMILARITY, LOG_JSON, LOG_LEVEL
from shared.errors import NotFoundError, ProviderUnavailable
from shared.logging_setup import configure_logging
from shared.schemas.cluster import AnalysisType
from shared.schemas.lead import LeadFilter, Outcome, RevenueRange
from shared.schemas.sync import SyncProgress

log = structlog.get_logger()


def _emit(model):
    click.echo(model.model_dump_json(indent=2))


def _progress(event: SyncProgress):
    click.echo(
        f"[{event.percent_complete:3d}%] {event.phase.value} "
        f"batch {event.current_batch}/{event.total_batches} "
        f"({event.records_processed}/{event.total_records})",
        err=True,
    )


def _run(action):
    """Build services, run one coroutine against them, always close clients"""

    async def runner():
        services = build_services()
        try:
            return await action(services)
        finally:
            await services.aclose()

    try:
        return asyncio.run(runner())
    except (ProviderUnavailable, NotFoundError) as e:
        raise click.ClickException(str(e))


def _lead_filter(
    sector: Optional[str],
    stage_id: Optional[int],
    owner_id: Optional[int],
    won: Optional[bool],
    lost: Optional[bool],
    min_revenue: Optional[float],
    max_revenue: Optional[float],
) -> Optional[LeadFilter]:
    revenue = None
    if min_revenue is not None or max_revenue is not None:
        revenue = RevenueRange(gte=min_revenue, lte=max_revenue)
    lead_filter = LeadFilter(
        sector=sector,
        stage_id=stage_id,
        owner_id=owner_id,
        is_won=won,
        is_lost=lost,
        expected_value=revenue,
    )
    return None if lead_filter.is_empty() else lead_filter


def filter_options(fn):
    options = [
        click.option("--sector", default=None, help="Only leads in this sector"),
        click.option("--stage-id", type=int, default=None, help="Only leads in this stage"),
        click.option("--owner-id", type=int, default=None, help="Only leads owned by this salesperson"),
        click.option("--won/--not-won", default=None, help="Filter on won status"),
        click.option("--lost/--not-lost", default=None, help="Filter on lost status"),
        click.option("--min-revenue", type=float, default=None, help="Minimum expected revenue"),
        click.option("--max-revenue", type=float, default=None, help="Maximum expected revenue"),
    ]
    for option in reversed(options):
        fn = option(fn)
    return fn


@click.group()
@click.option("--log-level", default=LOG_LEVEL, help="Log level (default: from LOG_LEVEL env or INFO)")
@click.option("--log-json", is_flag=True, default=LOG_JSON, help="Emit JSON log lines")
def cli(log_level: str, log_json: bool):
    """CRM vector sync and semantic search."""
    configure_logging(level=log_level, json=log_json)


@cli.group()
def sync():
    """Sync CRM leads into the vector index."""


@sync.command("full")
@click.option("--quiet", "-q", is_flag=True, help="Suppress progress output")
def sync_full(quiet: bool):
    """Re-embed every lead, including archived ones."""
    result = _run(lambda s: s.orchestrator.full_sync(None if quiet else _progress))
    _emit(result)
    if not result.success:
        raise SystemExit(1)


@sync.command("incremental")
@click.option("--since", type=click.DateTime(), default=None, help="Only leads modified since (default: last sync)")
@click.option("--quiet", "-q", is_flag=True, help="Suppress progress output")
def sync_incremental(since: Optional[datetime], quiet: bool):
    """Re-embed leads modified since the last sync."""
    result = _run(lambda s: s.orchestrator.incremental_sync(since, None if quiet else _progress))
    _emit(result)
    if not result.success:
        raise SystemExit(1)


@sync.command("record")
@click.argument("lead_id", type=int)
def sync_record(lead_id: int):
    """Re-embed a single lead."""
    result = _run(lambda s: s.orchestrator.sync_one(lead_id))
    _emit(result)
    if not result.success:
        raise SystemExit(1)


@cli.command()
def status():
    """Show vector backend health and sync state."""
    _emit(_run(lambda s: s.status()))


@cli.command()
@click.argument("query")
@click.option("--limit", "-n", default=10, help="Max matches")
@click.option("--min-score", default=DEFAULT_MIN_SIMILARITY, help="Similarity floor (0-1)")
@filter_options
def search(query: str, limit: int, min_score: float, **filters):
    """Natural-language search over leads."""
    lead_filter = _lead_filter(**filters)
    _emit(_run(lambda s: s.search.search(query, lead_filter, limit=limit, min_score=min_score)))


@cli.command()
@click.argument("lead_id", type=int)
@click.option("--limit", "-n", default=5, help="Max matches")
@click.option(
    "--outcome",
    "outcomes",
    multiple=True,
    type=click.Choice([o.value for o in Outcome]),
    help="Include leads with this outcome (repeatable; default: all)",
)
def similar(lead_id: int, limit: int, outcomes: tuple):
    """Find leads similar to LEAD_ID."""
    include = [Outcome(o) for o in outcomes] or None
    _emit(_run(lambda s: s.search.find_similar(lead_id, limit=limit, include_outcomes=include)))


@cli.command()
@click.argument("analysis_type", type=click.Choice([a.value for a in AnalysisType]))
@click.option("--clusters", "-k", default=5, type=click.IntRange(2, 20), help="Number of clusters")
@filter_options
def patterns(analysis_type: str, clusters: int, **filters):
    """Cluster leads and summarize the patterns found."""
    lead_filter = _lead_filter(**filters)
    result = _run(lambda s: s.patterns.discover_patterns(AnalysisType(analysis_type), lead_filter, clusters))
    _emit(result)
    log.info("Pattern discovery finished", clusters=result.num_clusters, records=result.total_records_analyzed)


def main():
    cli()


if __name__ == "__main__":
    main()
