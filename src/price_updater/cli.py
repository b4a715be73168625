"""Click-based CLI for price-updater.

Thin wrapper around library modules. No business logic here; every operation
delegates to the updater, providers, or price store.
"""

from __future__ import annotations

import asyncio
import logging
import sys

import click
from rich.console import Console
from rich.table import Table

console = Console(stderr=True)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run_async(coro):
    """Run an async coroutine from synchronous Click code."""
    return asyncio.run(coro)


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )
    # Request-level chatter from the HTTP stack
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def _load_config(ctx: click.Context):
    """Load config lazily, caching on first call."""
    if "config" not in ctx.obj:
        from price_updater.core import ConfigError, load_config

        try:
            ctx.obj["config"] = load_config(config_path=ctx.obj.get("config_path"))
        except ConfigError as e:
            raise click.UsageError(f"Invalid configuration: {e}") from e
    return ctx.obj["config"]


def _apply_overrides(
    config,
    provider: str | None = None,
    database: str | None = None,
    pacing: float | None = None,
):
    """Return a copy of config with CLI overrides applied and re-validated."""
    from price_updater.core import UpdaterConfig

    data = config.model_dump()
    if provider is not None:
        data["fetch"]["provider"] = provider
    if database is not None:
        data["storage"]["sqlite_path"] = database
    if pacing is not None:
        data["fetch"]["pacing_seconds"] = pacing
    try:
        return UpdaterConfig.model_validate(data)
    except ValueError as e:
        raise click.UsageError(f"Invalid configuration: {e}") from e


async def _create_store_async(config):
    """Create and initialize storage from config."""
    from price_updater.prices import create_store

    return await create_store(config.storage)


def _summary_table(summary) -> Table:
    table = Table(title="Update summary")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Assets", str(summary.assets))
    table.add_row("Fetched", str(summary.fetched))
    table.add_row("Skipped (current)", str(summary.skipped))
    table.add_row("Exhausted retries", str(summary.exhausted))
    table.add_row("Failed", str(summary.failed))
    table.add_row("Rows fetched", str(summary.rows_fetched))
    table.add_row("Rows written", str(summary.rows_written))
    table.add_row("Assets marked", str(summary.assets_marked))
    table.add_row("Failed flushes", str(summary.failed_flushes))
    return table


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    envvar="PRICE_UPDATER_CONFIG",
    default=None,
    help="Path to price-updater.yml config file.",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Enable debug logging.",
)
@click.version_option(package_name="price-updater")
@click.pass_context
def cli(ctx: click.Context, config: str | None, verbose: bool) -> None:
    """Price updater: incremental daily OHLCV refresh."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["verbose"] = verbose
    ctx.obj["console"] = console
    _setup_logging(verbose)


# ---------------------------------------------------------------------------
# update
# ---------------------------------------------------------------------------


@cli.command()
@click.option(
    "--provider",
    "-p",
    type=click.Choice(["yahoo", "alpaca"], case_sensitive=False),
    default=None,
    help="Market-data provider (overrides config).",
)
@click.option(
    "--database",
    "-d",
    type=str,
    envvar="DATABASE_URL",
    default=None,
    help="SQLite database path (overrides config).",
)
@click.option(
    "--pacing",
    type=float,
    envvar="YF_TIMEOUT",
    default=None,
    help="Base pacing per fetch attempt, in seconds (overrides config).",
)
@click.pass_context
def update(
    ctx: click.Context,
    provider: str | None,
    database: str | None,
    pacing: float | None,
) -> None:
    """Refresh price history for every tracked asset."""
    config = _apply_overrides(
        _load_config(ctx),
        provider=provider.lower() if provider else None,
        database=database,
        pacing=pacing,
    )

    async def _run():
        from price_updater.providers import create_source
        from price_updater.updater import RetryingFetcher, Updater

        store = await _create_store_async(config)
        try:
            fetcher = RetryingFetcher(
                create_source(config),
                pacing_seconds=config.fetch.pacing_seconds,
            )
            return await Updater(store, fetcher).run()
        finally:
            await store.close()

    from price_updater.core import PriceUpdaterError

    try:
        summary = _run_async(_run())
    except PriceUpdaterError as e:
        console.print(f"[red]Update failed: {e}[/red]")
        raise SystemExit(1) from e

    console.print(_summary_table(summary))
    if summary.failed_flushes:
        console.print(
            f"[yellow]{summary.failed_flushes} flush step(s) failed; "
            "affected assets will be retried next run.[/yellow]"
        )


# ---------------------------------------------------------------------------
# assets
# ---------------------------------------------------------------------------


@cli.group()
def assets() -> None:
    """Manage the tracked asset universe."""


@assets.command("add")
@click.argument("symbols", nargs=-1, required=True)
@click.option("--database", "-d", type=str, envvar="DATABASE_URL", default=None)
@click.pass_context
def assets_add(ctx: click.Context, symbols: tuple[str, ...], database: str | None) -> None:
    """Register SYMBOLS for tracking (existing symbols are kept)."""
    config = _apply_overrides(_load_config(ctx), database=database)

    async def _run():
        store = await _create_store_async(config)
        try:
            return await store.add_assets(symbols)
        finally:
            await store.close()

    from price_updater.core import PriceUpdaterError

    try:
        added = _run_async(_run())
    except PriceUpdaterError as e:
        console.print(f"[red]Adding assets failed: {e}[/red]")
        raise SystemExit(1) from e
    console.print(f"[green]\u2713[/green] Tracking {len(added)} asset(s)")


@assets.command("list")
@click.option("--database", "-d", type=str, envvar="DATABASE_URL", default=None)
@click.pass_context
def assets_list(ctx: click.Context, database: str | None) -> None:
    """Show tracked assets and their watermarks."""
    config = _apply_overrides(_load_config(ctx), database=database)

    async def _run():
        store = await _create_store_async(config)
        try:
            return await store.list_assets()
        finally:
            await store.close()

    from price_updater.core import PriceUpdaterError

    try:
        rows = _run_async(_run())
    except PriceUpdaterError as e:
        console.print(f"[red]Listing assets failed: {e}[/red]")
        raise SystemExit(1) from e

    if not rows:
        console.print("[yellow]No assets tracked. Run 'assets add' first.[/yellow]")
        return

    table = Table(title="Assets")
    table.add_column("ID", justify="right")
    table.add_column("Symbol")
    table.add_column("Last updated")
    for asset in rows:
        table.add_row(
            str(asset.id),
            asset.symbol,
            asset.last_updated.isoformat() if asset.last_updated else "never",
        )
    console.print(table)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
