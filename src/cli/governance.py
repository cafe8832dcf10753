"""Role and session status commands."""

import typer

from intent_engine.continuity import get_continuity_debug_summary, get_mode_label
from intent_engine.governance import (
    NEVER,
    ROLE_PERMISSIONS,
    get_role_description,
    get_role_label,
)

from .console import console, create_table, print_panel, print_table
from .context import build_engine


def _flag(value: bool) -> str:
    return "[green]yes[/green]" if value else "[red]no[/red]"


def roles_command(
    language: str = typer.Option(
        "vi",
        "--lang",
        help="Label language: vi or en",
    ),
) -> None:
    """Show each role and what it is allowed to do."""
    language = language if language in ("vi", "en") else "vi"

    table = create_table("Roles")
    table.add_column("Role", style="cyan")
    table.add_column("Label", style="green")
    table.add_column("Execute")
    table.add_column("Auto-apply")
    table.add_column("Learning")
    table.add_column("Bias")
    table.add_column("Skip at")
    table.add_column("Description", style="dim")

    for role, perms in ROLE_PERMISSIONS.items():
        skip = perms.min_stability_for_skip
        table.add_row(
            role.value,
            get_role_label(role, language),
            _flag(perms.allow_execution),
            _flag(perms.allow_auto_apply),
            _flag(perms.allow_learning),
            _flag(perms.allow_preference_bias),
            skip if skip == NEVER else skip.value,
            get_role_description(role, language),
        )

    print_table(table)


def status_command(ctx: typer.Context) -> None:
    """Show governance, continuity and learning state for the current user."""
    engine = build_engine(ctx)

    gov = engine.governance.get_debug_summary(engine.governance_context)
    if gov["active"]:
        perms = gov["permissions"]
        gov_lines = [
            f"[bold]User:[/bold] {gov['user_id']}",
            f"[bold]Role:[/bold] {gov['role']}",
            f"[bold]Team:[/bold] {gov['team_id'] or '-'}",
            f"[bold]Auto-apply:[/bold] {_flag(perms['allow_auto_apply'])}  "
            f"[bold]Learning:[/bold] {_flag(perms['allow_learning'])}  "
            f"[bold]Execute:[/bold] {_flag(perms['allow_execution'])}",
        ]
    else:
        gov_lines = ["[dim]Governance inactive (no role given)[/dim]"]
    print_panel("Governance", "\n".join(gov_lines))

    state = engine.continuity.state
    print_panel(
        "Continuity",
        f"{get_mode_label(state.mode)}\n[dim]{get_continuity_debug_summary(state)}[/dim]",
    )
    console.print(f"[dim]{engine.control.get_debug_summary()}[/dim]")
