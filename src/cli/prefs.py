"""Preference memory CLI commands."""

from datetime import datetime, timezone

import typer

from intent_engine.control import get_preference_label

from .console import console, create_table, print_success, print_table
from .context import build_engine

app = typer.Typer(
    name="prefs",
    help="Inspect and reset learned preferences",
    no_args_is_help=True,
)


def _format_ts(ts: float | None) -> str:
    if not ts:
        return "-"
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")


@app.command(name="list")
def list_preferences(
    ctx: typer.Context,
    active_only: bool = typer.Option(
        False,
        "--active",
        "-a",
        help="Only show preferences strong enough to bias decisions",
    ),
    language: str = typer.Option(
        "vi",
        "--lang",
        help="Label language: vi or en",
    ),
) -> None:
    """List observed preferences with their current strength."""
    engine = build_engine(ctx)
    store = engine.preferences
    prefs = store.get_active_preferences() if active_only else store.get_all_preferences()

    if not prefs:
        console.print("[dim]No preferences recorded.[/dim]")
        return

    table = create_table("Preferences")
    table.add_column("Key", style="cyan")
    table.add_column("Label", style="green")
    table.add_column("Strength", justify="right")
    table.add_column("Active")
    table.add_column("Reason", style="dim")

    for pref in prefs:
        table.add_row(
            pref.key.value,
            get_preference_label(pref.key, language if language in ("vi", "en") else "vi"),
            f"{pref.strength:.0%}",
            "[green]yes[/green]" if pref.active else "[dim]no[/dim]",
            pref.reason,
        )

    print_table(table)

    stats = store.get_stats()
    console.print(
        f"\n[dim]Total: {stats['total_preferences']} | "
        f"Active: {stats['active_preferences']} | "
        f"Strongest: {stats['strongest_preference'] or '-'} | "
        f"Oldest: {_format_ts(stats['oldest_observation'])}[/dim]"
    )


@app.command(name="clear")
def clear_preferences(
    ctx: typer.Context,
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Skip confirmation prompt",
    ),
) -> None:
    """Forget every recorded preference for the current user."""
    if not yes and not typer.confirm("Clear all preferences?"):
        console.print("[dim]Cancelled.[/dim]")
        raise typer.Exit(0)

    engine = build_engine(ctx)
    engine.preferences.clear()
    print_success("Preferences cleared")
