"""
Main entry point for the helpdesk tenant pipeline.

Orchestrates the pipeline stages, in order:
1. Normalize the raw ticket snapshot
2. Unify companies that share requesters
3. Partition tickets into per-tenant files

Each stage reads its inputs from the JSON store and writes its complete
output before the next one starts.
"""

import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import click

from .analytics import analyze_weekdays
from .config import AppConfig, get_config
from .data_sources import DataSourceError, FreshdeskClient
from .normalizer import TicketNormalizer
from .partitioner import TenantPartitioner
from .storage import JsonStore, StorageError
from .sync import (
    TargetNotFoundError,
    extract_tickets,
    resolve_target,
    update_tenant_snapshot,
)
from .unifier import CompanyUnifier


def setup_logging(level: str) -> None:
    """
    Configure application logging.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR).
    """
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


logger = logging.getLogger(__name__)


class PipelineError(Exception):
    """Error during pipeline execution."""
    pass


@dataclass
class NormalizeResult:
    tickets: int
    companies: int
    duplicates: int
    skipped: int


@dataclass
class UnifyResult:
    groups: int
    merged_groups: int


@dataclass
class PartitionResult:
    tenants: int
    paths: list[Path]


def run_normalize(store: JsonStore, portal_url: str = "") -> NormalizeResult:
    """
    Normalize the raw snapshot and refresh the company table.

    Raises:
        PipelineError: If the snapshot is missing or malformed.
    """
    try:
        raw_tickets = store.load_raw_tickets()
        requesters = store.load_requesters()
        previous = store.load_companies(required=False)

        result = TicketNormalizer(portal_url).normalize(raw_tickets, requesters, previous)

        store.save_tickets(result.tickets)
        store.save_companies(result.companies)
        store.save_requesters(result.requesters)
    except StorageError as e:
        raise PipelineError(f"Normalization failed: {e}") from e

    logger.info(f"Saved {len(result.tickets)} simplified tickets to {store.config.tickets_path}")
    logger.info(f"Saved {len(result.companies)} companies to {store.config.companies_path}")
    return NormalizeResult(
        tickets=len(result.tickets),
        companies=len(result.companies),
        duplicates=result.duplicates,
        skipped=result.skipped,
    )


def run_unify(store: JsonStore) -> UnifyResult:
    """
    Group companies sharing requesters and persist the groups.

    Raises:
        PipelineError: If tickets or the company table are missing.
    """
    try:
        tickets = store.load_tickets()
        companies = store.load_companies(required=True)
        requesters = store.load_requesters()

        groups = CompanyUnifier().unify(tickets, companies, requesters)
        store.save_groups(groups)
    except StorageError as e:
        raise PipelineError(f"Unification failed: {e}") from e

    merged = sum(1 for g in groups.values() if g.is_multi_company())
    logger.info(f"Saved {len(groups)} groups to {store.config.groups_path}")
    return UnifyResult(groups=len(groups), merged_groups=merged)


def run_partition(store: JsonStore) -> PartitionResult:
    """
    Rebuild every tenant file from tickets and unified groups.

    Raises:
        PipelineError: If the simplified tickets are missing.
    """
    try:
        tickets = store.load_tickets()
        groups = store.load_groups()
        companies = store.load_companies(required=False)

        partitions = TenantPartitioner().partition(tickets, groups, companies)
        paths = store.write_partitions(partitions)
    except StorageError as e:
        raise PipelineError(f"Partitioning failed: {e}") from e

    logger.info(f"Wrote {len(paths)} tenant files to {store.config.tenants_dir}")
    return PartitionResult(tenants=len(paths), paths=paths)


def run_pipeline(config: Optional[AppConfig] = None) -> PartitionResult:
    """
    Execute normalize, unify and partition in order.

    Args:
        config: Optional configuration override.

    Returns:
        Result of the partition stage.

    Raises:
        PipelineError: If any stage fails; later stages do not run.
    """
    if config is None:
        config = get_config()
    store = JsonStore(config.storage)

    logger.info("=" * 60)
    logger.info("Starting tenant pipeline")
    logger.info("=" * 60)

    logger.info("Step 1: Normalizing tickets")
    normalized = run_normalize(store, config.freshdesk.portal_url)
    logger.info(
        f"{normalized.tickets} tickets, {normalized.companies} companies, "
        f"{normalized.duplicates} duplicates dropped"
    )

    logger.info("Step 2: Unifying companies")
    unified = run_unify(store)
    logger.info(f"{unified.groups} groups ({unified.merged_groups} merging several companies)")

    logger.info("Step 3: Partitioning tenants")
    partitioned = run_partition(store)

    logger.info("=" * 60)
    logger.info(f"Pipeline completed successfully! {partitioned.tenants} tenants written")
    logger.info("=" * 60)
    return partitioned


def validate_config(config: AppConfig) -> None:
    """
    Validate API configuration before fetching.

    Raises:
        PipelineError: If configuration is invalid.
    """
    errors = config.validate()
    if errors:
        for error in errors:
            logger.error(f"Configuration error: {error}")
        raise PipelineError(
            f"Configuration validation failed with {len(errors)} error(s)"
        )


def run_extract(config: AppConfig) -> int:
    """Backfill the raw snapshot from the vendor API under the sync lock."""
    validate_config(config)
    store = JsonStore(config.storage)
    try:
        with store.lock():
            with FreshdeskClient(config.freshdesk) as client:
                result = extract_tickets(client, store, config.freshdesk)
    except (StorageError, DataSourceError) as e:
        raise PipelineError(f"Extraction failed: {e}") from e
    return result.total


def run_update(config: AppConfig, name: str) -> int:
    """
    Refresh one tenant from the vendor API, then rebuild all stages.

    Returns:
        Number of updated tickets received.
    """
    validate_config(config)
    store = JsonStore(config.storage)
    try:
        with store.lock():
            target = resolve_target(name, store.load_groups(), store.load_companies(required=False))
            kind = "unified group" if target.is_group else "standalone company"
            logger.info(f"Updating {kind}: {target.label}")

            with FreshdeskClient(config.freshdesk) as client:
                received = update_tenant_snapshot(client, store, config.freshdesk, target)

            if received:
                run_pipeline(config)
    except TargetNotFoundError as e:
        raise PipelineError(str(e)) from e
    except (StorageError, DataSourceError) as e:
        raise PipelineError(f"Update failed: {e}") from e
    return received


def run_analyze(store: JsonStore, tenant: str) -> Path:
    """Write the weekday distribution of one tenant to the analysis folder."""
    try:
        report = analyze_weekdays(store.load_tenant(tenant), source=tenant)
        return store.save_analysis(f"{tenant}_weekdays", report)
    except StorageError as e:
        raise PipelineError(f"Analysis failed: {e}") from e


def _config_with_debug(config: AppConfig, debug: bool) -> AppConfig:
    if not debug:
        return config
    return AppConfig(
        freshdesk=config.freshdesk,
        storage=config.storage,
        log_level="DEBUG",
    )


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug logging",
)
@click.pass_context
def cli(ctx: click.Context, debug: bool) -> None:
    """
    Helpdesk tenant pipeline.

    Normalizes Freshdesk tickets, unifies companies that share requesters
    and writes one ticket file per tenant.
    """
    config = _config_with_debug(get_config(), debug)
    setup_logging(config.log_level)
    ctx.obj = {"config": config, "debug": debug}


def _run_guarded(ctx: click.Context, fn, *args):
    try:
        return fn(*args)
    except PipelineError as e:
        click.echo(f"Pipeline failed: {e}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("\nOperation cancelled by user", err=True)
        sys.exit(130)
    except Exception as e:
        click.echo(f"Unexpected error: {e}", err=True)
        if ctx.obj["debug"]:
            import traceback
            traceback.print_exc()
        sys.exit(1)


@cli.command()
@click.pass_context
def normalize(ctx: click.Context) -> None:
    """Normalize the raw snapshot into simplified tickets and companies."""
    config = ctx.obj["config"]
    result = _run_guarded(
        ctx, run_normalize, JsonStore(config.storage), config.freshdesk.portal_url
    )
    click.echo(f"Normalized {result.tickets} tickets, {result.companies} companies")


@cli.command()
@click.pass_context
def unify(ctx: click.Context) -> None:
    """Group companies that share requesters."""
    result = _run_guarded(ctx, run_unify, JsonStore(ctx.obj["config"].storage))
    click.echo(f"Unified into {result.groups} groups")


@cli.command()
@click.pass_context
def partition(ctx: click.Context) -> None:
    """Write one ticket file per tenant."""
    result = _run_guarded(ctx, run_partition, JsonStore(ctx.obj["config"].storage))
    click.echo(f"Wrote {result.tenants} tenant files")


@cli.command()
@click.pass_context
def run(ctx: click.Context) -> None:
    """Run normalize, unify and partition in order."""
    result = _run_guarded(ctx, run_pipeline, ctx.obj["config"])
    click.echo(f"Pipeline complete: {result.tenants} tenants")


@cli.command()
@click.pass_context
def extract(ctx: click.Context) -> None:
    """Backfill the raw snapshot from Freshdesk, month by month."""
    total = _run_guarded(ctx, run_extract, ctx.obj["config"])
    click.echo(f"Snapshot has {total} tickets")


@cli.command()
@click.argument("name")
@click.pass_context
def update(ctx: click.Context, name: str) -> None:
    """Refresh recent tickets of one group or company and rebuild tenants."""
    received = _run_guarded(ctx, run_update, ctx.obj["config"], name)
    if received:
        click.echo(f"Updated {received} tickets for '{name}'")
    else:
        click.echo(f"No new or changed tickets for '{name}'")


@cli.command()
@click.pass_context
def tenants(ctx: click.Context) -> None:
    """List tenant file keys."""
    for key in JsonStore(ctx.obj["config"].storage).list_tenants():
        click.echo(key)


@cli.command()
@click.argument("tenant")
@click.pass_context
def analyze(ctx: click.Context, tenant: str) -> None:
    """Count a tenant's tickets per weekday."""
    path = _run_guarded(ctx, run_analyze, JsonStore(ctx.obj["config"].storage), tenant)
    click.echo(f"Analysis written to {path}")


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
