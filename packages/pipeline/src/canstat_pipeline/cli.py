"""
cli.py — Click CLI entrypoint for canstat.

Usage:
    canstat search "household income" --scope statcan
    canstat fetch 18-10-0004-01 --start 2020-01 --region Canada --shape wide \
        --index ref_date --on geo
    canstat fetch v_CA21_1 --region PR:59 --level CD --retries 2
    canstat catalog refresh --family statcan --family CA21
    canstat cache list
    canstat cache clear --identifier 18-10-0004-01
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import click
import polars as pl
import structlog

from canstat_shared.config import settings
from canstat_shared.models import Selectors
from canstat_pipeline.catalog import (
    Catalog,
    load_snapshot,
    refresh_catalog,
    save_snapshot,
)
from canstat_pipeline.catalog.snapshot import SNAPSHOT_FILENAME
from canstat_pipeline.errors import CanstatError
from canstat_pipeline.fetcher import Fetcher, FetcherConfig
from canstat_pipeline.pipelines.retrieval import RetrievalPipeline
from canstat_pipeline.utils.logging import configure_logging
from canstat_pipeline.utils.retry import with_retry

log = structlog.get_logger(__name__)


def _fetcher(ctx: click.Context) -> Fetcher:
    return Fetcher(ctx.obj["config"])


def _snapshot_path(ctx: click.Context) -> Path:
    return ctx.obj["config"].cache_path / SNAPSHOT_FILENAME


def _catalog(ctx: click.Context, *, required: bool) -> Catalog:
    path = _snapshot_path(ctx)
    try:
        return load_snapshot(path)
    except FileNotFoundError:
        if required:
            raise click.ClickException(
                f"No catalog snapshot at {path}. Run `canstat catalog refresh` first."
            ) from None
        return Catalog()


@click.group()
@click.option(
    "--log-level",
    default=settings.log_level,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Log level",
)
@click.option(
    "--log-format",
    default=settings.log_format,
    type=click.Choice(["json", "console"]),
    help="Log renderer",
)
@click.option(
    "--cache-path",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Cache directory (default: CANSTAT_CACHE_PATH)",
)
@click.pass_context
def main(ctx: click.Context, log_level: str, log_format: str, cache_path: Path | None) -> None:
    """canstat — search, fetch and reshape Statistics Canada and census data."""
    configure_logging(log_level, log_format)
    ctx.ensure_object(dict)
    ctx.obj["config"] = FetcherConfig.from_settings(cache_path=cache_path)


# ---------------------------------------------------------------------------
# search
# ---------------------------------------------------------------------------

@main.command()
@click.argument("query")
@click.option("--scope", default=None, help="Dataset family, e.g. statcan or CA21")
@click.option(
    "--match",
    "match_type",
    default="contains",
    type=click.Choice(["exact", "contains", "fuzzy"]),
)
@click.option("--limit", default=20, show_default=True, type=int)
@click.pass_context
def search(ctx: click.Context, query: str, scope: str | None, match_type: str, limit: int) -> None:
    """Search the catalog snapshot."""
    catalog = _catalog(ctx, required=True)
    try:
        hits = catalog.search(query, dataset_scope=scope, match_type=match_type)  # type: ignore[arg-type]
    except CanstatError as exc:
        raise click.ClickException(str(exc)) from exc

    if not hits:
        click.echo("No matches.")
        return
    for entry in hits[:limit]:
        click.echo(f"{entry.identifier:24s} {entry.family:8s} {entry.title}")
    if len(hits) > limit:
        click.echo(f"… {len(hits) - limit} more")


# ---------------------------------------------------------------------------
# fetch
# ---------------------------------------------------------------------------

@main.command()
@click.argument("identifier")
@click.option("--refresh", is_flag=True, help="Bypass the cache")
@click.option("--region", "regions", multiple=True, help="Region selector (repeatable)")
@click.option("--start", default=None, help="Start of the reference period")
@click.option("--end", default=None, help="End of the reference period")
@click.option("--field", "fields", multiple=True, help="Field / vector selector (repeatable)")
@click.option("--level", default=None, help="Census geography level (PR, CMA, CD, CSD, …)")
@click.option(
    "--mode",
    default="numeric",
    type=click.Choice(["numeric", "factor"]),
    show_default=True,
)
@click.option(
    "--shape",
    "target",
    default="long",
    type=click.Choice(["wide", "long", "joined"]),
    show_default=True,
)
@click.option("--index", "index", multiple=True, help="Entity column(s) for wide/long")
@click.option("--on", default="variable", show_default=True, help="Variable column")
@click.option(
    "--reference",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Reference table (CSV) for --shape joined",
)
@click.option("--join-key", default=None, help="Join column for --shape joined")
@click.option("--strict", is_flag=True, help="Fail when a join key has no reference row")
@click.option("--retries", default=0, show_default=True, type=int, help="Retry failed retrievals")
@click.option(
    "--output",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write CSV here instead of stdout",
)
@click.pass_context
def fetch(
    ctx: click.Context,
    identifier: str,
    refresh: bool,
    regions: tuple[str, ...],
    start: str | None,
    end: str | None,
    fields: tuple[str, ...],
    level: str | None,
    mode: str,
    target: str,
    index: tuple[str, ...],
    on: str,
    reference: Path | None,
    join_key: str | None,
    strict: bool,
    retries: int,
    output: Path | None,
) -> None:
    """Fetch IDENTIFIER, normalize it and print it as CSV."""
    try:
        selectors = Selectors(regions=regions, start=start, end=end, fields=fields, level=level)
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from exc

    reference_df = None
    if reference is not None:
        reference_df = pl.read_csv(reference, infer_schema_length=0)

    pipeline = RetrievalPipeline(_catalog(ctx, required=False), _fetcher(ctx))
    kwargs: dict[str, Any] = {
        "selectors": selectors,
        "refresh": refresh,
        "mode": mode,
        "target": target,
        "join_key": join_key,
        "reference": reference_df,
        "strict": strict,
        "index": list(index) or None,
        "on": on,
    }

    async def _run() -> Any:
        return await pipeline.run_identifier(identifier, **kwargs)

    runner = with_retry(max_attempts=retries + 1)(_run) if retries > 0 else _run

    try:
        result = asyncio.run(runner())
    except (CanstatError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc

    log.info("fetch_done", identifier=identifier, rows=len(result.table))
    if output is not None:
        result.table.write_csv(output)
        click.echo(f"Wrote {len(result.table)} rows to {output}")
    else:
        click.echo(result.table.write_csv(), nl=False)


# ---------------------------------------------------------------------------
# catalog
# ---------------------------------------------------------------------------

@main.group()
def catalog() -> None:
    """Catalog snapshot maintenance."""


@catalog.command("refresh")
@click.option(
    "--family",
    "families",
    multiple=True,
    default=("statcan",),
    show_default=True,
    help="statcan or a census dataset such as CA21 (repeatable)",
)
@click.option("--refresh", is_flag=True, help="Re-download the lists instead of using the cache")
@click.pass_context
def catalog_refresh(ctx: click.Context, families: tuple[str, ...], refresh: bool) -> None:
    """Rebuild the catalog snapshot from the source lists."""
    fetcher = _fetcher(ctx)
    try:
        built = asyncio.run(refresh_catalog(fetcher, families, refresh=refresh))
    except CanstatError as exc:
        raise click.ClickException(str(exc)) from exc
    path = save_snapshot(built, _snapshot_path(ctx))
    click.echo(f"Catalog: {len(built)} entries ({', '.join(sorted(built.scopes))}) -> {path}")


# ---------------------------------------------------------------------------
# cache
# ---------------------------------------------------------------------------

@main.group()
def cache() -> None:
    """Payload cache maintenance."""


@cache.command("list")
@click.option("--identifier", default=None)
@click.pass_context
def cache_list(ctx: click.Context, identifier: str | None) -> None:
    """List cached payloads."""
    entries = _fetcher(ctx).store.entries(identifier)
    if not entries:
        click.echo("Cache is empty.")
        return
    for e in entries:
        click.echo(
            f"{e['fingerprint'][:12]}  {e['identifier']:24s} "
            f"{e['size']:>10d} B  {e['retrieved_at'].isoformat(timespec='seconds')}"
        )


@cache.command("clear")
@click.option("--identifier", default=None, help="Only entries for this identifier")
@click.confirmation_option(prompt="Delete cached payloads?")
@click.pass_context
def cache_clear(ctx: click.Context, identifier: str | None) -> None:
    """Delete cached payloads."""
    count = _fetcher(ctx).invalidate(identifier)
    click.echo(f"Deleted {count} cache entr{'y' if count == 1 else 'ies'}.")


if __name__ == "__main__":
    main()
