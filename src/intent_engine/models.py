"""Shared enumerations for the intent engine."""

from enum import Enum


class RouteHint(str, Enum):
    """Which behavior an instruction should be routed to."""

    CREATE = "CREATE"
    TRANSFORM = "TRANSFORM"


class IntentType(str, Enum):
    """Kind of intent recorded in continuity history."""

    CREATE = "CREATE"
    TRANSFORM = "TRANSFORM"
    EDIT_IN_PLACE = "EDIT_IN_PLACE"


class RouteUsed(str, Enum):
    """Route actually taken for an executed intent."""

    CREATE = "CREATE"
    TRANSFORM = "TRANSFORM"
    LOCAL_APPLY = "LOCAL_APPLY"


class IntentChoice(str, Enum):
    """User-facing option when an instruction is ambiguous."""

    EDIT_IN_PLACE = "EDIT_IN_PLACE"
    TRANSFORM_NEW_VERSION = "TRANSFORM_NEW_VERSION"
    CREATE_NEW = "CREATE_NEW"


class StabilityBand(str, Enum):
    """Externally assessed repeatability tier of a pattern."""

    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def rank(self) -> int:
        return {"HIGH": 3, "MEDIUM": 2, "LOW": 1}[self.value]


def choice_to_intent_type(choice: IntentChoice) -> IntentType:
    """Map a user choice onto the history intent type."""
    if choice == IntentChoice.EDIT_IN_PLACE:
        return IntentType.EDIT_IN_PLACE
    if choice == IntentChoice.TRANSFORM_NEW_VERSION:
        return IntentType.TRANSFORM
    return IntentType.CREATE


def choice_to_route(choice: IntentChoice) -> RouteUsed:
    """Map a user choice onto the route recorded in outcomes."""
    if choice == IntentChoice.EDIT_IN_PLACE:
        return RouteUsed.LOCAL_APPLY
    if choice == IntentChoice.TRANSFORM_NEW_VERSION:
        return RouteUsed.TRANSFORM
    return RouteUsed.CREATE
