"""Intent Engine CLI entry point."""

import typer
from rich.console import Console

from intent_engine.governance import UserRole

from . import __version__
from .context import CliState, configure_logging, load_cli_config, parse_enum
from .governance import roles_command, status_command
from .outcomes import app as outcomes_app
from .prefs import app as prefs_app
from .recover import recover_command
from .route import route_command

app = typer.Typer(
    name="intent-engine",
    help="Intent Engine - route AI instructions to CREATE or TRANSFORM and decide when to ask",
    no_args_is_help=True,
)
console = Console()


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"intent-engine version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
    config_path: str | None = typer.Option(
        None,
        "--config",
        help="Path to intent-engine.yaml",
        envvar="INTENT_ENGINE_CONFIG_PATH",
    ),
    log_level: str | None = typer.Option(
        None,
        "--log-level",
        help="Logging level (default: from config)",
    ),
    user: str | None = typer.Option(
        None,
        "--user",
        "-u",
        help="User id; scopes stored preferences and learning",
    ),
    role: str | None = typer.Option(
        None,
        "--role",
        help="Governance role: ADMIN, EDITOR, JUNIOR, CLIENT or VIEWER",
    ),
    team: str | None = typer.Option(
        None,
        "--team",
        help="Team id for team-level overrides",
    ),
) -> None:
    """Intent Engine - route AI instructions to CREATE or TRANSFORM."""
    state = CliState(
        config_path=config_path,
        user_id=user,
        role=parse_enum(UserRole, role, "--role") if role else None,
        team_id=team,
    )
    ctx.obj = state
    configure_logging(log_level or load_cli_config(state)["logging"]["level"])


app.command(name="route")(route_command)

app.command(name="recover")(recover_command)

app.command(name="roles")(roles_command)

app.command(name="status")(status_command)

app.add_typer(prefs_app, name="prefs")

app.add_typer(outcomes_app, name="outcomes")


if __name__ == "__main__":
    app()
