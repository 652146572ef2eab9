"""CLI commands for item lifecycle tracking."""

import json
import logging
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, NoReturn

import click
import structlog
from dateutil import parser as date_parser
from pydantic import ValidationError

from shelfwatch.data_model.fingerprint import compute_item_id
from shelfwatch.data_model.items import CycleResult
from shelfwatch.data_model.timestamps import ensure_utc
from shelfwatch.observability.logging import configure_logging
from shelfwatch.settings import AppSettings, get_settings
from shelfwatch.store.errors import TrackingStoreError
from shelfwatch.store.store import TrackingStore
from shelfwatch.tracker.classifier import TransitionClassifier
from shelfwatch.tracker.constants import COMPONENT_CLI
from shelfwatch.tracker.detector import TransitionDetector
from shelfwatch.tracker.reports import TransitionReports
from shelfwatch.tracker.retention import RetentionPolicy, apply_retention


logger = structlog.get_logger()


@dataclass
class CliContext:
    """Settings shared by all commands."""

    settings: AppSettings
    verbose: bool = False


def _open_store(settings: AppSettings, state_path: Path | None) -> TrackingStore:
    return TrackingStore(
        db_path=state_path or settings.db_path,
        busy_timeout_ms=settings.busy_timeout_ms,
    )


def _fail(message: str) -> NoReturn:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def load_cycle_items(path: Path, patron: str) -> list[dict[str, Any]]:
    """Load one patron's scraped items from a JSON file.

    The file holds either ``checkouts`` and ``holds`` arrays or a flat
    ``items`` array whose entries carry ``item_kind``. Missing
    ``patron_name`` defaults to the given patron and missing ``item_id``
    is derived from title, author and patron.

    Args:
        path: JSON file path.
        patron: Patron the items belong to.

    Returns:
        Record mappings ready for validation.

    Raises:
        ValueError: If the file does not have one of the accepted shapes.
    """
    payload = json.loads(path.read_text(encoding="utf-8"))

    if isinstance(payload, list):
        payload = {"items": payload}
    if not isinstance(payload, dict):
        msg = "expected a JSON object or array"
        raise ValueError(msg)

    items: list[dict[str, Any]] = []
    for kind, key in (("checkout", "checkouts"), ("hold", "holds")):
        for entry in payload.get(key) or []:
            items.append({**entry, "item_kind": entry.get("item_kind", kind)})
    items.extend(dict(entry) for entry in payload.get("items") or [])

    for item in items:
        item.setdefault("patron_name", patron)
        if not item.get("item_id"):
            item["item_id"] = compute_item_id(
                item.get("title"), item.get("author"), item["patron_name"]
            )
    return items


def _parse_at(value: str | None) -> datetime | None:
    if value is None:
        return None
    try:
        return ensure_utc(date_parser.isoparse(value))
    except ValueError:
        _fail(f"Invalid timestamp '{value}'. Use ISO-8601.")


def _echo_cycle(result: CycleResult) -> None:
    click.echo(
        f"Patron: {result.patron_name}  Cycle: {result.scraped_at.isoformat()}"
    )
    click.echo(f"  Snapshots recorded: {result.snapshots_recorded}")
    if result.baseline_only:
        click.echo("  Baseline cycle (no previous items to compare)")
        return
    click.echo(f"  Transitions: {len(result.transitions)}")
    for transition in result.transitions:
        marker = "  " if transition.is_expected else "! "
        click.echo(
            f"  {marker}[{transition.transition_kind.value}] "
            f"{transition.title or transition.item_id}: {transition.notes}"
        )


state_option = click.option(
    "--state",
    "state_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Path to SQLite state database (default: SHELFWATCH_DB_PATH).",
)

days_option = click.option(
    "--days",
    type=click.IntRange(min=0),
    default=None,
    help="Window length in days (default from settings).",
)

json_option = click.option(
    "--json",
    "json_output",
    is_flag=True,
    help="Output as JSON.",
)


@click.group()
@click.version_option(version="0.1.0")
@click.option(
    "--json-logs/--no-json-logs",
    default=lambda: get_settings().json_logs,
    help="Use JSON format for logs (default: SHELFWATCH_JSON_LOGS or true).",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose logging.",
)
@click.pass_context
def cli(ctx: click.Context, json_logs: bool, verbose: bool) -> None:
    """Library item lifecycle tracker CLI."""
    configure_logging(
        level=logging.DEBUG if verbose else logging.INFO,
        json_format=json_logs,
    )
    ctx.obj = CliContext(settings=get_settings(), verbose=verbose)


@cli.command()
@state_option
@click.option("--patron", required=True, help="Patron the items belong to.")
@click.option(
    "--input",
    "input_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="JSON file with the scraped checkouts and holds.",
)
@click.option(
    "--at",
    "at",
    default=None,
    help="Cycle timestamp, ISO-8601 (default: now).",
)
@json_option
@click.pass_obj
def ingest(
    obj: CliContext,
    state_path: Path | None,
    patron: str,
    input_path: Path,
    at: str | None,
    json_output: bool,
) -> None:
    """Record one scrape cycle and classify what changed."""
    log = logger.bind(component=COMPONENT_CLI, command="ingest", patron=patron)
    timestamp = _parse_at(at)

    try:
        items = load_cycle_items(input_path, patron)
    except (ValueError, OSError) as e:
        log.warning("input_load_failed", path=str(input_path), error=str(e))
        _fail(f"Could not read {input_path}: {e}")

    settings = obj.settings
    classifier = TransitionClassifier(near_due_days=settings.near_due_days)

    try:
        with _open_store(settings, state_path) as store:
            detector = TransitionDetector(store, classifier=classifier)
            result = detector.process_cycle(items, patron, timestamp)
    except ValidationError as e:
        log.warning("input_invalid", errors=e.error_count())
        click.echo("Input validation failed:", err=True)
        for error in e.errors():
            location = ".".join(str(part) for part in error["loc"])
            click.echo(f"  - {location}: {error['msg']}", err=True)
        sys.exit(1)
    except TrackingStoreError as e:
        log.error("ingest_failed", error=str(e))
        _fail(str(e))

    if json_output:
        click.echo(json.dumps(result.model_dump(mode="json"), indent=2))
    else:
        _echo_cycle(result)


@cli.command()
@state_option
@days_option
@json_option
@click.pass_obj
def unexpected(
    obj: CliContext, state_path: Path | None, days: int | None, json_output: bool
) -> None:
    """List transitions classified as unexpected."""
    days_back = obj.settings.report_days_back if days is None else days

    try:
        with _open_store(obj.settings, state_path) as store:
            reports = TransitionReports(store)
            transitions = reports.get_unexpected_transitions(days_back)
    except TrackingStoreError as e:
        logger.error("report_failed", component=COMPONENT_CLI, error=str(e))
        _fail(str(e))

    if json_output:
        click.echo(
            json.dumps([t.model_dump(mode="json") for t in transitions], indent=2)
        )
        return

    click.echo(f"Unexpected transitions (last {days_back} days): {len(transitions)}")
    for t in transitions:
        click.echo(
            f"  {t.transitioned_at.isoformat()}  {t.patron_name}  "
            f"[{t.transition_kind.value}] {t.title or t.item_id}: {t.notes}"
        )


@cli.command("missing-report")
@state_option
@days_option
@json_option
@click.pass_obj
def missing_report(
    obj: CliContext, state_path: Path | None, days: int | None, json_output: bool
) -> None:
    """Group unexpected disappearances by patron and cycle."""
    days_back = obj.settings.report_days_back if days is None else days

    try:
        with _open_store(obj.settings, state_path) as store:
            events = TransitionReports(store).get_missing_items_report(days_back)
    except TrackingStoreError as e:
        logger.error("report_failed", component=COMPONENT_CLI, error=str(e))
        _fail(str(e))

    if json_output:
        click.echo(json.dumps([e.model_dump(mode="json") for e in events], indent=2))
        return

    click.echo(f"Missing item events (last {days_back} days): {len(events)}")
    for event in events:
        click.echo(
            f"  {event.timestamp.isoformat()}  {event.patron_name}  "
            f"({event.total_missing} missing)"
        )
        for item in event.missing_items:
            click.echo(f"    - {item.title or item.item_id}: {item.notes}")


@cli.command("recent-items")
@state_option
@days_option
@click.pass_obj
def recent_items(obj: CliContext, state_path: Path | None, days: int | None) -> None:
    """Print ids of items observed recently, one per line."""
    days_back = obj.settings.recent_items_days_back if days is None else days

    try:
        with _open_store(obj.settings, state_path) as store:
            item_ids = TransitionReports(store).get_recent_item_ids(days_back)
    except TrackingStoreError as e:
        logger.error("report_failed", component=COMPONENT_CLI, error=str(e))
        _fail(str(e))

    for item_id in item_ids:
        click.echo(item_id)


@cli.command()
@state_option
@click.option(
    "--snapshot-days",
    type=click.IntRange(min=1),
    default=None,
    help="Keep this many days of snapshots "
    "(default: SHELFWATCH_SNAPSHOT_RETENTION_DAYS).",
)
@click.option(
    "--transition-days",
    type=click.IntRange(min=1),
    default=None,
    help="Keep this many days of transitions "
    "(default: SHELFWATCH_TRANSITION_RETENTION_DAYS).",
)
@click.pass_obj
def prune(
    obj: CliContext,
    state_path: Path | None,
    snapshot_days: int | None,
    transition_days: int | None,
) -> None:
    """Delete history older than the retention policy allows.

    Does nothing unless a retention period is given or configured. The most
    recent cycle of every patron is always kept.
    """
    configured = obj.settings.retention_policy()
    policy = RetentionPolicy(
        snapshot_days=snapshot_days or configured.snapshot_days,
        transition_days=transition_days or configured.transition_days,
    )

    if policy.is_noop:
        click.echo("No retention period configured; nothing pruned.")
        return

    try:
        with _open_store(obj.settings, state_path) as store:
            result = apply_retention(store, policy)
    except TrackingStoreError as e:
        logger.error("prune_failed", component=COMPONENT_CLI, error=str(e))
        _fail(str(e))

    click.echo(f"Snapshots pruned: {result.snapshots_pruned}")
    click.echo(f"Transitions pruned: {result.transitions_pruned}")


@cli.command("db-stats")
@click.option(
    "--state",
    "state_path",
    required=True,
    type=click.Path(exists=True, path_type=Path),
    help="Path to SQLite state database.",
)
@json_option
@click.pass_obj
def db_stats(obj: CliContext, state_path: Path, json_output: bool) -> None:
    """Display state database statistics.

    Shows row counts for the tracking tables, schema version and patrons.
    """
    try:
        with _open_store(obj.settings, state_path) as store:
            stats = store.get_stats()
            schema_version = store.get_schema_version()
            patrons = store.list_patrons()
    except TrackingStoreError as e:
        logger.error("db_stats_failed", component=COMPONENT_CLI, error=str(e))
        _fail(str(e))

    if json_output:
        output = {
            "schema_version": schema_version,
            "tables": stats,
            "patrons": patrons,
        }
        click.echo(json.dumps(output, indent=2))
        return

    click.echo("State Database Statistics")
    click.echo("=" * 40)
    click.echo(f"  Schema Version: {schema_version}")
    click.echo(f"  Patrons: {', '.join(patrons) if patrons else 'None'}")
    click.echo("")
    click.echo("Table Row Counts:")
    for table, count in sorted(stats.items()):
        click.echo(f"  {table}: {count}")


if __name__ == "__main__":
    cli()
