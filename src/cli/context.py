"""Shared CLI state and engine construction."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

import typer

from intent_engine.config import ConfigurationError, load_config
from intent_engine.decision import IntentDecisionEngine
from intent_engine.governance import GovernanceContext, UserRole, create_governance_context
from intent_engine.stability import StabilityAssessor

from .console import print_error

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

E = TypeVar("E", bound=Enum)


@dataclass
class CliState:
    """Options given to the root command, shared by every subcommand."""

    config_path: str | None = None
    user_id: str | None = None
    role: UserRole | None = None
    team_id: str | None = None

    def governance_context(self) -> GovernanceContext | None:
        if self.role is None:
            return None
        return create_governance_context(self.user_id or "local", self.role, self.team_id)


def configure_logging(level: str) -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


def load_cli_config(state: CliState) -> dict[str, Any]:
    try:
        return load_config(state.config_path)
    except ConfigurationError as e:
        print_error(f"Error: {e}")
        raise typer.Exit(1)


def get_state(ctx: typer.Context) -> CliState:
    state = ctx.find_object(CliState)
    return state if state is not None else CliState()


def build_engine(
    ctx: typer.Context, stability: StabilityAssessor | None = None
) -> IntentDecisionEngine:
    """Engine for the invoking user, backed by the configured storage."""
    state = get_state(ctx)
    config = load_cli_config(state)
    try:
        return IntentDecisionEngine.from_config(
            config,
            governance_context=state.governance_context(),
            stability=stability,
        )
    except (ConfigurationError, ValueError) as e:
        print_error(f"Error: {e}")
        raise typer.Exit(1)


def parse_enum(enum_cls: type[E], value: str, option: str) -> E:
    """Case-insensitive enum lookup by value, reported as a usage error."""
    for member in enum_cls:
        if member.value.lower() == value.lower():
            return member
    choices = ", ".join(m.value for m in enum_cls)
    raise typer.BadParameter(f"'{value}' is not one of: {choices}", param_hint=option)
