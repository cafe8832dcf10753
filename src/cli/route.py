"""Route an instruction through the decision engine."""

import asyncio
import json

import typer

from intent_engine.continuity import get_continuity_debug_summary
from intent_engine.decision import (
    DecisionAction,
    ExecutionRequest,
    ExecutionResult,
    IntentDecision,
    IntentRequest,
)
from intent_engine.gate import BindingMismatchError, UnauthorizedExecutionError
from intent_engine.models import IntentChoice, StabilityBand
from intent_engine.stability import StabilitySignal, StaticStabilityAssessor

from .console import (
    action_style,
    console,
    create_table,
    print_error,
    print_info,
    print_panel,
    print_success,
    print_warning,
)
from .context import build_engine, parse_enum


async def record_only_executor(request: ExecutionRequest) -> ExecutionResult:
    """Executor that performs no generation; used to record the outcome only."""
    return ExecutionResult(success=True, content="")


def _render_decision(decision: IntentDecision) -> None:
    data = decision.to_dict()
    lines = [f"[bold]{decision.action.value}[/bold]  {decision.reason}"]
    if decision.route_hint is not None:
        lines.append(
            f"Route: [cyan]{data['route_hint']}[/cyan] "
            f"({data['confidence']:.2f}, {data['rule']})"
        )
    print_panel("Intent Decision", "\n".join(lines), style=action_style(decision.action.value))

    if decision.route_hint is None:
        console.print(f"[dim]Gate: {data['gate_reason']}[/dim]")
        return

    table = create_table(columns=["Field", "Value"])
    table.add_row("Event", decision.event_id)
    table.add_row("Pattern", data["pattern_hash"] or "-")
    table.add_row("Classification", f"{data['classification']['type']} "
                  f"({data['classification']['category']})")
    table.add_row("Continuity", get_continuity_debug_summary(decision.continuity))
    table.add_row("Skip", data["skip_decision"])
    table.add_row("Governance", data["governance_reason"])
    table.add_row("Stability", data["stability_band"])
    table.add_row("Auto-apply", data["auto_apply_choice"] or "-")
    table.add_row("Default choice", data["default_choice"] or "-")
    table.add_row("Options", ", ".join(data["option_order"]))
    table.add_row("Preferences", decision.bias.debug_summary)
    console.print(table)


def route_command(
    ctx: typer.Context,
    text: str = typer.Argument(..., help="Instruction as typed by the user"),
    source: bool = typer.Option(
        False,
        "--source",
        "-s",
        help="A source message is selected",
    ),
    last_assistant: bool = typer.Option(
        False,
        "--last-assistant",
        "-l",
        help="There is a previous valid assistant reply",
    ),
    source_id: str | None = typer.Option(
        None,
        "--source-id",
        help="UI id of the selected source message",
    ),
    stability: str = typer.Option(
        "LOW",
        "--stability",
        help="Assessed stability band for this pattern: HIGH, MEDIUM or LOW",
    ),
    auto_apply_eligible: bool = typer.Option(
        False,
        "--auto-apply-eligible",
        help="Mark the pattern as eligible for auto-apply",
    ),
    record: bool = typer.Option(
        False,
        "--record",
        "-r",
        help="Record the outcome as if the request had been executed",
    ),
    confirm: bool = typer.Option(
        False,
        "--confirm",
        "-y",
        help="Treat a CONFIRM decision as confirmed when recording",
    ),
    choice: str | None = typer.Option(
        None,
        "--choice",
        "-c",
        help="Option picked by the user: EDIT_IN_PLACE, TRANSFORM_NEW_VERSION or CREATE_NEW",
    ),
    as_json: bool = typer.Option(
        False,
        "--json",
        help="Print the decision as JSON",
    ),
) -> None:
    """Decide route and action for one instruction.

    Runs the execution gate, the confidence rules, continuity and governance,
    then prints EXECUTE, CONFIRM or BLOCKED.
    """
    band = parse_enum(StabilityBand, stability, "--stability")
    picked = parse_enum(IntentChoice, choice, "--choice") if choice else None

    engine = build_engine(
        ctx,
        stability=StaticStabilityAssessor(
            StabilitySignal(band=band, auto_apply_eligible=auto_apply_eligible)
        ),
    )
    decision = engine.decide(
        IntentRequest(
            text=text,
            has_active_source=source,
            has_last_valid_assistant=last_assistant,
            ui_source_message_id=source_id,
            caller_location="cli.route",
        )
    )

    if as_json:
        console.print_json(json.dumps(decision.to_dict(), ensure_ascii=False))
    else:
        _render_decision(decision)

    if not record:
        if confirm or picked is not None:
            print_warning("--confirm and --choice only take effect with --record.")
        return

    if decision.action == DecisionAction.BLOCKED:
        print_error("Error: Blocked decisions cannot be recorded.")
        raise typer.Exit(1)
    if decision.action == DecisionAction.CONFIRM and not confirm:
        print_info("Confirmation required; re-run with --confirm to record.")
        raise typer.Exit(1)

    try:
        result = asyncio.run(
            engine.execute(
                decision,
                record_only_executor,
                text,
                confirmed=confirm,
                choice=picked,
            )
        )
    except (UnauthorizedExecutionError, BindingMismatchError) as e:
        print_error(f"Error: {e}")
        raise typer.Exit(1)

    print_success(f"Recorded outcome {result.intent_id}")
