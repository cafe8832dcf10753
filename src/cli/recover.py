"""Recovery actions over learned state."""

import typer

from intent_engine.control import RecoveryAction, RecoveryActionType
from intent_engine.models import IntentChoice

from .console import print_error, print_success
from .context import build_engine, parse_enum


def recover_command(
    ctx: typer.Context,
    action: str = typer.Argument(
        ...,
        help=(
            "UNDO_LAST_INTENT, DONT_DO_THIS_AGAIN, RESET_PATTERN, "
            "DISABLE_PREFERENCES_TEMP, RESET_ALL_LEARNING or RESET_ALL_PREFERENCES"
        ),
    ),
    intent_id: str | None = typer.Option(
        None,
        "--intent",
        "-i",
        help="Outcome id (required for UNDO_LAST_INTENT)",
    ),
    pattern_hash: str | None = typer.Option(
        None,
        "--pattern",
        "-p",
        help="Pattern hash (required for DONT_DO_THIS_AGAIN and RESET_PATTERN)",
    ),
    choice: str | None = typer.Option(
        None,
        "--choice",
        "-c",
        help="Choice to stop suggesting (required for DONT_DO_THIS_AGAIN)",
    ),
    language: str = typer.Option(
        "vi",
        "--lang",
        help="Message language: vi or en",
    ),
) -> None:
    """Undo or reset what the engine has learned."""
    recovery = RecoveryAction(
        type=parse_enum(RecoveryActionType, action, "ACTION"),
        intent_id=intent_id,
        pattern_hash=pattern_hash,
        choice=parse_enum(IntentChoice, choice, "--choice") if choice else None,
    )
    engine = build_engine(ctx)
    try:
        message = engine.control.execute_recovery_action(
            recovery, language if language in ("vi", "en") else "vi"
        )
    except ValueError as e:
        print_error(f"Error: {e}")
        raise typer.Exit(1)
    print_success(message)
