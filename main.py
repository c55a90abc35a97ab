#!/usr/bin/env python3
"""Catalog Sync - Entry point."""
import logging
import sys

import click
from colorama import Fore, Style, init

from config import app_config
from catalogsync import __version__
from catalogsync.cli.runner import SyncRunner
from catalogsync.exceptions import CatalogSyncError, SyncBusyError
from catalogsync.status.tracker import SQLiteStatusTracker

# Initialize colorama
init(autoreset=True)

logger = logging.getLogger(__name__)


def print_banner():
    """Print application banner."""
    print(f"{Fore.CYAN}{'=' * 44}")
    print(f"{Fore.CYAN}║   {Fore.WHITE}Catalog Sync{Fore.CYAN}                         ║")
    print(f"{Fore.CYAN}║   {Fore.WHITE}ERP → Shop Catalog Reconciliation{Fore.CYAN}    ║")
    print(f"{Fore.CYAN}{'=' * 44}{Style.RESET_ALL}")
    print()


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )


@click.group()
@click.version_option(version=__version__)
@click.option("--manifest", help="Mapping manifest (overrides CATALOGSYNC_MANIFEST)")
@click.option("--target-db", help="Target SQLite database (overrides CATALOGSYNC_TARGET_DB)")
def cli(manifest, target_db):
    """Catalog Sync - Reconcile ERP catalog data into the local shop store."""
    if manifest:
        app_config.manifest_path = manifest
    if target_db:
        app_config.target_db = target_db
    configure_logging(app_config.log_level)


@cli.command()
@click.option("--entity", "entities", multiple=True, help="Entity to sync (repeatable)")
def sync(entities):
    """Synchronise all (or the given) entities."""
    print_banner()

    tracker = SQLiteStatusTracker(app_config.status_db)
    try:
        tracker.acquire("Sync started")
    except SyncBusyError as e:
        click.echo(f"{Fore.RED}❌ {e}")
        tracker.close()
        sys.exit(2)

    runner = None
    try:
        runner = SyncRunner(app_config, status=tracker)
        runner.run(list(entities))
    except CatalogSyncError as e:
        tracker.fail(str(e))
        click.echo(f"{Fore.RED}❌ Sync failed: {e}")
        sys.exit(1)
    except BaseException as e:
        tracker.fail(str(e) or type(e).__name__)
        raise
    finally:
        if runner is not None:
            runner.close()
        tracker.close()


@cli.command()
def entities():
    """List manifest entities in sync order."""
    runner = SyncRunner(app_config)
    try:
        for position, name in enumerate(runner.entity_names(), start=1):
            entity = runner.manifest.entities[name]
            click.echo(
                f"{Fore.GREEN}{position:3d}. {name:24s}{Style.RESET_ALL} "
                f"← {entity.source_id}.{entity.table} (priority {runner.entity_priority(name)})"
            )
    finally:
        runner.close()


@cli.command("show-sql")
@click.argument("table")
def show_sql(table):
    """Show the generated upsert/delete/merge SQL of a target table."""
    runner = SyncRunner(app_config)
    try:
        statements = runner.mapper.describe(table)
    except CatalogSyncError as e:
        click.echo(f"{Fore.RED}❌ {e}")
        sys.exit(1)
    finally:
        runner.close()

    for kind, sql in statements.items():
        click.echo(f"{Fore.YELLOW}-- {kind}")
        click.echo(f"{sql}\n")


@cli.command("setup-db")
@click.argument("script", required=False, type=click.Path(exists=True))
def setup_db(script):
    """Create the target tables from a DDL script."""
    print_banner()

    runner = SyncRunner(app_config)
    try:
        count = runner.setup_database(script)
    except CatalogSyncError as e:
        click.echo(f"{Fore.RED}❌ {e}")
        sys.exit(1)
    finally:
        runner.close()

    click.echo(f"{Fore.GREEN}✅ {count} statements executed on {app_config.target_db}")


@cli.command()
@click.option("--errors", "error_limit", default=10, show_default=True, help="Recent errors to show")
def status(error_limit):
    """Show the state of the last sync run."""
    tracker = SQLiteStatusTracker(app_config.status_db)
    try:
        current = tracker.get_status()
        errors = tracker.get_errors(error_limit)
    finally:
        tracker.close()

    colour = {"running": Fore.YELLOW, "error": Fore.RED}.get(current.get("state"), Fore.GREEN)
    click.echo(f"{colour}State: {current.get('state')}{Style.RESET_ALL}")
    for field_name in ("stage", "message", "processed", "total", "started_at", "finished_at"):
        click.echo(f"  {field_name:12s} {current.get(field_name)}")

    if errors:
        click.echo(f"\n{Fore.RED}Recent errors:")
        for entry in errors:
            click.echo(f"  [{entry['created_at']}] {entry['stage'] or '-'}: {entry['message']}")


@cli.command("reset-status")
def reset_status():
    """Reset a stale 'running' state."""
    tracker = SQLiteStatusTracker(app_config.status_db)
    try:
        tracker.reset()
    finally:
        tracker.close()
    click.echo(f"{Fore.GREEN}✅ Status reset")


if __name__ == "__main__":
    cli()
