"""Outcome ledger CLI commands."""

from datetime import datetime, timezone

import typer

from intent_engine.outcomes import OutcomeSignalType, get_outcome_summary

from .console import (
    console,
    create_table,
    print_error,
    print_panel,
    print_success,
    print_table,
)
from .context import build_engine, parse_enum

app = typer.Typer(
    name="outcomes",
    help="Inspect recorded outcomes and report what happened after a decision",
    no_args_is_help=True,
)


def _format_ts(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


@app.command(name="list")
def list_outcomes(
    ctx: typer.Context,
    limit: int = typer.Option(
        10,
        "--limit",
        "-n",
        help="Maximum number of outcomes to show",
    ),
) -> None:
    """List the most recent outcomes, newest first."""
    engine = build_engine(ctx)
    outcomes = engine.outcomes.list_recent(limit)

    if not outcomes:
        console.print("[dim]No outcomes recorded.[/dim]")
        return

    table = create_table("Recent Outcomes")
    table.add_column("Intent", style="cyan")
    table.add_column("Route", style="blue")
    table.add_column("Verdict")
    table.add_column("Severity")
    table.add_column("Signals", style="dim")

    for outcome in outcomes:
        derived = outcome.derived
        if derived.negative:
            verdict = "[red]NEGATIVE[/red]"
        elif derived.accepted:
            verdict = "[green]ACCEPTED[/green]"
        else:
            verdict = "[yellow]PENDING[/yellow]"
        table.add_row(
            outcome.intent_id,
            outcome.route_used.value,
            verdict,
            derived.severity.value,
            ", ".join(s.type.value for s in outcome.signals) or "-",
        )

    print_table(table)

    stats = engine.outcomes.get_stats()
    console.print(
        f"\n[dim]Total: {stats['total']} | "
        f"Accepted: {stats['accepted']} | "
        f"Negative: {stats['negative']} | "
        f"High severity: {stats['high_severity']}[/dim]"
    )


@app.command(name="show")
def show_outcome(
    ctx: typer.Context,
    intent_id: str = typer.Argument(..., help="ID of the outcome to show"),
) -> None:
    """Show one outcome with its signal history."""
    engine = build_engine(ctx)
    outcome = engine.outcomes.get(intent_id)
    if outcome is None:
        print_error(f"Error: Outcome {intent_id} not found")
        raise typer.Exit(1)

    lines = [
        get_outcome_summary(outcome),
        "",
        f"[bold]Created:[/bold] {_format_ts(outcome.created_at)}",
        f"[bold]Last event:[/bold] {_format_ts(outcome.last_event_at)}",
        f"[bold]Pattern:[/bold] {outcome.pattern_hash or '-'}",
        f"[bold]Decision path:[/bold] {outcome.decision_path_label or '-'}",
    ]
    if outcome.confidence is not None:
        lines.append(f"[bold]Confidence:[/bold] {outcome.confidence:.2f}")
    for signal in outcome.signals:
        lines.append(f"  • {_format_ts(signal.ts)} {signal.type.value}")

    print_panel(outcome.intent_id, "\n".join(lines))


@app.command(name="signal")
def signal_outcome(
    ctx: typer.Context,
    intent_id: str = typer.Argument(..., help="ID of the outcome"),
    signal_type: str = typer.Argument(
        ...,
        help="UNDO_WITHIN_WINDOW, EDIT_AFTER, RESEND_IMMEDIATELY or ACCEPT_SILENTLY",
    ),
) -> None:
    """Report what the user did after a decision was executed."""
    parsed = parse_enum(OutcomeSignalType, signal_type, "SIGNAL_TYPE")
    engine = build_engine(ctx)
    outcome = engine.record_signal(intent_id, parsed)
    if outcome is None:
        print_error(f"Error: Outcome {intent_id} not found")
        raise typer.Exit(1)
    print_success(get_outcome_summary(outcome))


@app.command(name="cleanup")
def cleanup_outcomes(ctx: typer.Context) -> None:
    """Remove expired outcomes."""
    engine = build_engine(ctx)
    removed = engine.outcomes.cleanup_expired()
    print_success(f"Removed {removed} expired outcome(s)")


@app.command(name="clear")
def clear_outcomes(
    ctx: typer.Context,
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Skip confirmation prompt",
    ),
) -> None:
    """Delete every recorded outcome."""
    if not yes and not typer.confirm("Delete all outcomes?"):
        console.print("[dim]Cancelled.[/dim]")
        raise typer.Exit(0)

    engine = build_engine(ctx)
    engine.outcomes.clear_all()
    print_success("Outcomes cleared")
