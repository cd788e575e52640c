"""Command line interface for pouchpal.

Every invocation activates the engine first: logs queued by the widget are
merged and the widget projection is refreshed.
"""

import json
import logging
import os
import sys
from pathlib import Path

import click
import yaml
from rich.console import Console
from rich.table import Table

from .constants import LOG_FILENAME, MONTH_DAYS, SOURCE_CLI, SOURCE_WIDGET, WEEK_DAYS
from .engine import PouchEngine
from .errors import PouchPalError
from .shared import SharedStore
from .timeutil import format_relative_time, parse_time_reference

console = Console()

STATE_STYLES = {
    "disabled": "white",
    "under": "green",
    "approaching": "yellow",
    "at_or_over": "red",
}


def get_data_dir() -> Path:
    """Data directory from POUCHPAL_PATH, else ~/.pouchpal."""
    if env_path := os.environ.get("POUCHPAL_PATH"):
        return Path(env_path)
    return Path.home() / ".pouchpal"


def configure_logging(data_dir: Path, verbose: bool) -> None:
    data_dir.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(data_dir / LOG_FILENAME),
            logging.StreamHandler(sys.stderr),
        ],
        force=True,
    )


def _engine(ctx: click.Context) -> PouchEngine:
    return ctx.obj["engine"]


def _parse_when(value: str, engine: PouchEngine):
    try:
        return parse_time_reference(value, now=engine.clock.now())
    except ValueError as e:
        raise click.BadParameter(str(e)) from e


def _resolve_id(engine: PouchEngine, prefix: str) -> str:
    entry_id = engine.resolve_event_id(prefix)
    if entry_id is None:
        raise click.ClickException(f"No single entry matches '{prefix}'")
    return entry_id


def _print_limit_line(engine: PouchEngine, count: int) -> None:
    settings = engine.settings
    state = engine.limit_state(count)
    if state == "disabled":
        return
    pct = engine.progress_fraction(count) * 100
    style = STATE_STYLES[state]
    console.print(
        f"Limit: [{style}]{count} of {settings.daily_limit_value}[/{style}] "
        f"({pct:.0f}%, {state.replace('_', ' ')})"
    )


@click.group()
@click.option(
    "--data-path",
    envvar="POUCHPAL_PATH",
    type=click.Path(path_type=Path),
    help="Path to the pouchpal data directory",
)
@click.option(
    "--shared-path",
    envvar="POUCHPAL_SHARED_PATH",
    type=click.Path(path_type=Path),
    help="Path to the shared widget store (default: <data>/shared.db)",
)
@click.option("-v", "--verbose", is_flag=True, help="Log at INFO level")
@click.pass_context
def cli(ctx, data_path, shared_path, verbose):
    """PouchPal - log pouches, track daily limits, export history."""
    ctx.ensure_object(dict)
    data_dir = data_path or get_data_dir()
    configure_logging(data_dir, verbose)
    try:
        engine = PouchEngine(data_dir, shared_path=shared_path)
        merged = engine.activate()
    except PouchPalError as e:
        raise click.ClickException(str(e)) from e
    ctx.call_on_close(engine.close)
    ctx.obj["engine"] = engine
    ctx.obj["merged"] = merged


@cli.command()
@click.option("-n", "--quantity", default=1, show_default=True, help="Units to log")
@click.option("--note", default=None, help="Optional note")
@click.option("--source", default=SOURCE_CLI, show_default=True, help="Provenance tag")
@click.option("--at", "when", default=None, help="Backdate (ISO, '20 minutes ago', 'yesterday')")
@click.pass_context
def add(ctx, quantity, note, source, when):
    """Log pouches."""
    engine = _engine(ctx)
    timestamp = _parse_when(when, engine) if when else None
    try:
        entry = engine.log_event(quantity=quantity, source=source, note=note, timestamp=timestamp)
    except PouchPalError as e:
        raise click.ClickException(str(e)) from e

    count = engine.today_count()
    console.print(
        f"[green]✓[/green] Logged {entry.quantity} "
        f"{engine.settings.unit_label(entry.quantity)} [dim]({entry.id[:8]})[/dim]"
    )
    console.print(f"Today: [bold]{count}[/bold] {engine.settings.unit_label(count)}")
    _print_limit_line(engine, count)
    for trigger in engine.last_triggers:
        if trigger.kind == "approachingLimit":
            console.print(f"[yellow]![/yellow] Approaching daily limit ({trigger.count} of {trigger.limit})")
        else:
            console.print(f"[red]![/red] Daily limit of {trigger.limit} reached")


@cli.command()
@click.pass_context
def undo(ctx):
    """Undo the last log made in this process (30 second window)."""
    engine = _engine(ctx)
    if engine.undo_last():
        console.print("[green]✓[/green] Undone")
    else:
        console.print("[yellow]![/yellow] Nothing to undo")


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def today(ctx, as_json):
    """Show today's count and limit state."""
    engine = _engine(ctx)
    count = engine.today_count()
    entries = engine.entries_for_day(engine.clock.today())

    if as_json:
        click.echo(json.dumps({
            "today_count": count,
            "limit_state": engine.limit_state(count),
            "progress": engine.progress_fraction(count),
            "entries": [e.to_summary() for e in entries],
        }, indent=2))
        return

    console.print(f"Today: [bold]{count}[/bold] {engine.settings.unit_label(count)}")
    _print_limit_line(engine, count)
    if entries:
        last = entries[0]
        console.print(f"[dim]Last logged {format_relative_time(last.timestamp, engine.clock.now())}[/dim]")


@cli.command()
@click.argument("entry_id")
@click.pass_context
def delete(ctx, entry_id):
    """Delete an entry by ID (or unique ID prefix)."""
    engine = _engine(ctx)
    full_id = _resolve_id(engine, entry_id)
    engine.delete_event(full_id)
    console.print(f"[green]✓[/green] Deleted {full_id[:8]}")


@cli.command()
@click.argument("entry_id")
@click.argument("when")
@click.pass_context
def retime(ctx, entry_id, when):
    """Move an entry to another time."""
    engine = _engine(ctx)
    full_id = _resolve_id(engine, entry_id)
    timestamp = _parse_when(when, engine)
    engine.update_event_timestamp(full_id, timestamp)
    console.print(f"[green]✓[/green] Moved {full_id[:8]} to {timestamp:%Y-%m-%d %H:%M}")


@cli.command()
@click.option("--days", default=WEEK_DAYS, show_default=True, help="How far back to look")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def history(ctx, days, as_json):
    """Show entries grouped by day, newest first."""
    engine = _engine(ctx)
    groups = engine.grouped_history(days=days)

    if as_json:
        click.echo(json.dumps([g.model_dump(mode="json") for g in groups], indent=2))
        return

    if not groups:
        console.print("No entries found.")
        return

    tz = engine.clock.tz
    for group in groups:
        console.print(
            f"[bold]{group.day:%a %d %b %Y}[/bold]  "
            f"{group.total} {engine.settings.unit_label(group.total)}"
        )
        for entry in group.entries:
            note = f"  [dim]{entry.note}[/dim]" if entry.note else ""
            console.print(
                f"  {entry.timestamp.astimezone(tz):%H:%M}  {entry.id[:8]}  "
                f"x{entry.quantity}  {entry.source or ''}{note}"
            )


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def stats(ctx, as_json):
    """Show weekly and monthly insights."""
    engine = _engine(ctx)
    insights = engine.insights()

    if as_json:
        click.echo(json.dumps(insights.model_dump(mode="json"), indent=2))
        return

    table = Table(title="Last 7 days")
    table.add_column("Day")
    table.add_column("Count", justify="right")
    for day in insights.weekly:
        style = STATE_STYLES[engine.limit_state(day.count)]
        table.add_row(f"{day.day:%a %d %b}", f"[{style}]{day.count}[/{style}]")
    console.print(table)

    console.print(f"Weekly average:  [bold]{insights.weekly_average:.1f}[/bold]")
    console.print(f"Monthly average: [bold]{insights.monthly_average:.1f}[/bold]")
    console.print(f"{MONTH_DAYS}-day total:    {insights.monthly_total}")
    console.print(f"All time:        {insights.all_time_total}")
    console.print(f"Highest day:     {insights.highest_day}")
    console.print(f"Lowest day:      {insights.lowest_day}")
    if engine.settings.daily_limit_enabled:
        console.print(f"Days under limit: {insights.days_under_limit}/{WEEK_DAYS}")


@cli.command()
@click.option("-o", "--output", type=click.Path(path_type=Path), help="Write to file instead of stdout")
@click.pass_context
def export(ctx, output):
    """Export all entries as CSV, oldest first."""
    engine = _engine(ctx)
    csv_text = engine.export_csv()
    if output:
        output.write_text(csv_text)
        console.print(f"[green]✓[/green] Exported to {output}")
    else:
        click.echo(csv_text, nl=False)


@cli.command()
@click.option("--enable/--disable", "enabled", default=None, help="Turn the daily limit on or off")
@click.option("--value", type=int, default=None, help="Daily limit")
@click.option("--threshold", type=float, default=None, help="Approach threshold (0-1)")
@click.pass_context
def limit(ctx, enabled, value, threshold):
    """Show or change the daily limit."""
    engine = _engine(ctx)
    changes = {}
    if enabled is not None:
        changes["daily_limit_enabled"] = enabled
    if value is not None:
        changes["daily_limit_value"] = value
    if threshold is not None:
        changes["approach_threshold"] = threshold

    if changes:
        try:
            engine.update_settings(**changes)
        except (ValueError, PouchPalError) as e:
            raise click.ClickException(str(e)) from e

    config = engine.limit_config
    status = "[green]enabled[/green]" if config.enabled else "[dim]disabled[/dim]"
    console.print(f"Daily limit: {config.limit} ({status}), warn at {config.approach_threshold:.0%}")
    _print_limit_line(engine, engine.today_count())


@cli.command("settings")
@click.option("--set", "assignments", multiple=True, metavar="KEY=VALUE", help="Change a setting")
@click.pass_context
def settings_cmd(ctx, assignments):
    """Show settings, or change them with --set key=value."""
    engine = _engine(ctx)
    if assignments:
        changes = {}
        for item in assignments:
            key, sep, raw = item.partition("=")
            if not sep:
                raise click.BadParameter(f"Expected KEY=VALUE, got '{item}'")
            changes[key.strip()] = yaml.safe_load(raw)
        try:
            engine.update_settings(**changes)
        except (ValueError, PouchPalError) as e:
            raise click.ClickException(str(e)) from e

    table = Table(title="Settings")
    table.add_column("Key")
    table.add_column("Value")
    for key, value in engine.settings.model_dump().items():
        table.add_row(key, str(value))
    console.print(table)


@cli.command()
@click.pass_context
def sync(ctx):
    """Merge widget logs and refresh the widget projection."""
    # Activation already ran the merge; report it.
    merged = ctx.obj["merged"]
    snapshot = _engine(ctx).shared.read_widget_snapshot()
    console.print(f"Merged {merged.inserted_count} queued log(s), skipped {merged.skipped}")
    console.print(f"Widget shows: [bold]{snapshot.today_count}[/bold] {snapshot.unit_label}")


@cli.command("widget-log")
@click.option("-n", "--quantity", default=1, show_default=True, help="Units to log")
@click.option("--source", default=SOURCE_WIDGET, show_default=True, help="Provenance tag")
@click.pass_context
def widget_log(ctx, quantity, source):
    """Queue a log the way the widget does, without touching the event store."""
    engine = _engine(ctx)
    shared: SharedStore = engine.shared
    try:
        shown = shared.queue_external_log(quantity=quantity, source=source, now=engine.clock.now())
    except PouchPalError as e:
        raise click.ClickException(str(e)) from e
    console.print(f"[green]✓[/green] Queued {quantity}; widget shows {shown}")


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def widget(ctx, as_json):
    """Show what the widget renders from the shared store."""
    snapshot = _engine(ctx).shared.read_widget_snapshot()
    if as_json:
        click.echo(json.dumps(snapshot.model_dump(mode="json"), indent=2))
        return
    limit_text = f" of {snapshot.daily_limit}" if snapshot.daily_limit is not None else ""
    style = "red" if snapshot.is_over_limit else "green"
    console.print(f"[{style}]{snapshot.today_count}{limit_text}[/{style}] {snapshot.unit_label}")


@cli.command()
@click.option("--yes", is_flag=True, help="Skip confirmation")
@click.pass_context
def clear(ctx, yes):
    """Delete ALL entries."""
    engine = _engine(ctx)
    if not yes:
        click.confirm(f"Delete all {engine.event_store.count()} entries?", abort=True)
    removed = engine.delete_all_events()
    console.print(f"[green]✓[/green] Deleted {removed} entries")


def main():
    """Entry point for the pouchpal CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
