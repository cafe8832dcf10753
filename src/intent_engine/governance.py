"""
Role and team governance.

Maps each role to a default permission bundle and decides whether a request
must be confirmed. Governance outranks every softer signal: when it requires
confirmation or forbids execution, preference bias and continuity cannot undo
that.

Team overrides are session-only and can only take permissions away. The
governance context is passed explicitly to every call.

Role defaults:

    role    auto  learn  edit  bias  exec  skip band
    ADMIN   yes   yes    yes   yes   yes   HIGH
    EDITOR  yes   yes    yes   yes   yes   HIGH
    JUNIOR  no    yes    yes   yes   yes   NEVER
    CLIENT  no    no     no    no    yes   NEVER
    VIEWER  no    no     no    no    no    NEVER
"""

import logging
import re
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

from intent_engine.models import RouteHint, StabilityBand

logger = logging.getLogger(__name__)

NEVER = "NEVER"

_USER_SCOPE_RE = re.compile(r"_user_([a-zA-Z0-9_-]+)$")


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    EDITOR = "EDITOR"
    JUNIOR = "JUNIOR"
    CLIENT = "CLIENT"
    VIEWER = "VIEWER"


@dataclass(frozen=True)
class RolePermissions:
    allow_auto_apply: bool
    allow_learning: bool
    allow_edit_in_place: bool
    allow_preference_bias: bool
    allow_execution: bool
    # StabilityBand or NEVER
    min_stability_for_skip: StabilityBand | str

    def to_dict(self) -> dict[str, Any]:
        band = self.min_stability_for_skip
        return {
            "allow_auto_apply": self.allow_auto_apply,
            "allow_learning": self.allow_learning,
            "allow_edit_in_place": self.allow_edit_in_place,
            "allow_preference_bias": self.allow_preference_bias,
            "allow_execution": self.allow_execution,
            "min_stability_for_skip": band.value if isinstance(band, StabilityBand) else band,
        }


ROLE_PERMISSIONS: dict[UserRole, RolePermissions] = {
    UserRole.ADMIN: RolePermissions(True, True, True, True, True, StabilityBand.HIGH),
    UserRole.EDITOR: RolePermissions(True, True, True, True, True, StabilityBand.HIGH),
    UserRole.JUNIOR: RolePermissions(False, True, True, True, True, NEVER),
    UserRole.CLIENT: RolePermissions(False, False, False, False, True, NEVER),
    UserRole.VIEWER: RolePermissions(False, False, False, False, False, NEVER),
}


@dataclass(frozen=True)
class GovernanceContext:
    user_id: str
    role: UserRole
    permissions: RolePermissions
    team_id: str | None = None
    active: bool = True


@dataclass(frozen=True)
class IntentSnapshot:
    """What governance needs to know about the instruction being decided."""

    pattern_hash: str
    route_hint: RouteHint
    confidence: float
    auto_apply_suggested: bool = False


@dataclass(frozen=True)
class GovernanceDecision:
    confirmation_required: bool
    auto_apply_allowed: bool
    learning_allowed: bool
    preference_bias_allowed: bool
    reason: str
    debug_reason: str = ""


@dataclass
class TeamOverrides:
    auto_apply_disabled: bool = False
    learning_disabled: bool = False
    preference_bias_disabled: bool = False
    disabled_at: float = 0.0


def get_default_permissions(role: UserRole) -> RolePermissions:
    return ROLE_PERMISSIONS[role]


def create_governance_context(
    user_id: str,
    role: UserRole | str,
    team_id: str | None = None,
    active: bool = True,
) -> GovernanceContext:
    """Build a context with the role's default permissions."""
    role = UserRole(role)
    return GovernanceContext(
        user_id=user_id,
        role=role,
        permissions=get_default_permissions(role),
        team_id=team_id,
        active=active,
    )


def is_governance_active(context: GovernanceContext | None) -> bool:
    return bool(context and context.active)


# =============================================================================
# TEAM OVERRIDES
# =============================================================================


class TeamOverrideStore:
    """Session-scoped team restrictions. Never persisted."""

    def __init__(self):
        self._overrides: dict[str, TeamOverrides] = {}

    def _get_or_create(self, team_id: str) -> TeamOverrides:
        return self._overrides.setdefault(team_id, TeamOverrides())

    def disable_auto_apply(self, team_id: str, now: float | None = None) -> None:
        overrides = self._get_or_create(team_id)
        overrides.auto_apply_disabled = True
        overrides.disabled_at = time.time() if now is None else now
        logger.info(f"Team auto-apply disabled: {team_id}")

    def disable_learning(self, team_id: str, now: float | None = None) -> None:
        overrides = self._get_or_create(team_id)
        overrides.learning_disabled = True
        overrides.disabled_at = time.time() if now is None else now
        logger.info(f"Team learning disabled: {team_id}")

    def disable_preference_bias(self, team_id: str, now: float | None = None) -> None:
        overrides = self._get_or_create(team_id)
        overrides.preference_bias_disabled = True
        overrides.disabled_at = time.time() if now is None else now
        logger.info(f"Team preference bias disabled: {team_id}")

    def enable_auto_apply(self, team_id: str) -> None:
        if team_id in self._overrides:
            self._overrides[team_id].auto_apply_disabled = False

    def enable_learning(self, team_id: str) -> None:
        if team_id in self._overrides:
            self._overrides[team_id].learning_disabled = False

    def enable_preference_bias(self, team_id: str) -> None:
        if team_id in self._overrides:
            self._overrides[team_id].preference_bias_disabled = False

    def get(self, team_id: str) -> TeamOverrides | None:
        return self._overrides.get(team_id)

    def clear(self) -> None:
        self._overrides.clear()


# =============================================================================
# ENGINE
# =============================================================================


def _meets_band(current: StabilityBand, required: StabilityBand | str) -> bool:
    if required == NEVER:
        return False
    return StabilityBand(current).rank >= StabilityBand(required).rank


class GovernanceEngine:
    """Evaluates permissions for explicit contexts, honoring team overrides."""

    def __init__(self, overrides: TeamOverrideStore | None = None):
        self.overrides = overrides or TeamOverrideStore()

    def get_effective_permissions(self, context: GovernanceContext) -> RolePermissions:
        """Role defaults with any team restrictions applied."""
        permissions = get_default_permissions(context.role)
        if not context.team_id:
            return permissions

        team = self.overrides.get(context.team_id)
        if team is None:
            return permissions

        return replace(
            permissions,
            allow_auto_apply=permissions.allow_auto_apply and not team.auto_apply_disabled,
            allow_learning=permissions.allow_learning and not team.learning_disabled,
            allow_preference_bias=(
                permissions.allow_preference_bias and not team.preference_bias_disabled
            ),
        )

    def is_learning_allowed(self, context: GovernanceContext | None) -> bool:
        if not is_governance_active(context):
            return True
        return self.get_effective_permissions(context).allow_learning

    def is_auto_apply_allowed(self, context: GovernanceContext | None) -> bool:
        if not is_governance_active(context):
            return True
        return self.get_effective_permissions(context).allow_auto_apply

    def is_execution_allowed(self, context: GovernanceContext | None) -> bool:
        if not is_governance_active(context):
            return True
        return self.get_effective_permissions(context).allow_execution

    def is_preference_bias_allowed(self, context: GovernanceContext | None) -> bool:
        if not is_governance_active(context):
            return True
        return self.get_effective_permissions(context).allow_preference_bias

    def should_force_confirmation(
        self,
        context: GovernanceContext | None,
        snapshot: IntentSnapshot,
        continuity: Any,
        stability_band: StabilityBand,
    ) -> GovernanceDecision:
        """
        Decide whether governance requires confirmation for this request.

        Confirmation is waived only when the stability band meets the role's
        threshold and either the snapshot suggests auto-apply or continuity
        is in a confident refine flow.

        Args:
            context: Governance context, or None when governance is off
            snapshot: Pattern, route hint and confidence of the request
            continuity: ContinuityState (or None)
            stability_band: Assessed band for the pattern

        Returns:
            GovernanceDecision with a human-readable reason
        """
        if not is_governance_active(context):
            return GovernanceDecision(
                confirmation_required=False,
                auto_apply_allowed=True,
                learning_allowed=True,
                preference_bias_allowed=True,
                reason="Governance inactive",
                debug_reason="No governance context or inactive",
            )

        permissions = self.get_effective_permissions(context)

        if not permissions.allow_execution:
            return GovernanceDecision(
                confirmation_required=True,
                auto_apply_allowed=False,
                learning_allowed=False,
                preference_bias_allowed=False,
                reason="Execution not allowed",
                debug_reason=f"Role {context.role.value} cannot execute AI requests",
            )

        required = permissions.min_stability_for_skip
        required_label = required.value if isinstance(required, StabilityBand) else required
        band = StabilityBand(stability_band)
        can_skip = _meets_band(band, required)
        in_refinement = (
            continuity is not None
            and getattr(continuity.mode, "value", continuity.mode) == "REFINE_FLOW"
            and continuity.mode_confidence > 0.7
        )

        confirmation_required = True
        reason = "Default: confirmation required"

        if required == NEVER:
            reason = "Role requires confirmation"
            debug_reason = f"Role {context.role.value} always requires confirmation"
        elif can_skip and snapshot.auto_apply_suggested:
            confirmation_required = False
            reason = "Stable pattern"
            debug_reason = f"Stability {band.value} >= {required_label}, auto-apply allowed"
        elif can_skip and in_refinement:
            confirmation_required = False
            reason = "Refinement flow"
            debug_reason = f"Stability {band.value} + REFINE_FLOW allows skip"
        else:
            debug_reason = f"Stability {band.value} < {required_label} or no auto-apply"

        decision = GovernanceDecision(
            confirmation_required=confirmation_required,
            auto_apply_allowed=permissions.allow_auto_apply,
            learning_allowed=permissions.allow_learning,
            preference_bias_allowed=permissions.allow_preference_bias,
            reason=reason,
            debug_reason=debug_reason,
        )
        logger.debug(f"Governance for {context.role.value}: {reason} ({debug_reason})")
        return decision

    def get_debug_summary(self, context: GovernanceContext | None) -> dict[str, Any]:
        if not is_governance_active(context):
            return {"active": False}
        team = self.overrides.get(context.team_id) if context.team_id else None
        return {
            "active": True,
            "user_id": context.user_id,
            "role": context.role.value,
            "team_id": context.team_id,
            "permissions": self.get_effective_permissions(context).to_dict(),
            "team_overrides": vars(team).copy() if team else None,
        }


# =============================================================================
# STORAGE ISOLATION
# =============================================================================


def get_user_scoped_key(base_key: str, context: GovernanceContext | None) -> str:
    """Suffix base_key with the user id when governance is active."""
    if not is_governance_active(context) or not context.user_id:
        return base_key
    return f"{base_key}_user_{context.user_id}"


def validate_user_access(storage_key: str, context: GovernanceContext | None) -> bool:
    """
    Check that a storage key belongs to the context's user.

    Unscoped keys are allowed so data written before governance was enabled
    stays readable. A mismatch is logged and reported as False, never raised.
    """
    if not is_governance_active(context):
        return True

    match = _USER_SCOPE_RE.search(storage_key)
    if not match:
        return True

    if match.group(1) != context.user_id:
        logger.warning(
            f"Cross-user storage access blocked: key user '{match.group(1)}' "
            f"!= session user '{context.user_id}'"
        )
        return False
    return True


# =============================================================================
# LABELS
# =============================================================================

ROLE_LABELS: dict[UserRole, dict[str, str]] = {
    UserRole.ADMIN: {"vi": "Quản trị viên", "en": "Administrator"},
    UserRole.EDITOR: {"vi": "Biên tập viên", "en": "Editor"},
    UserRole.JUNIOR: {"vi": "Nhân viên mới", "en": "Junior"},
    UserRole.CLIENT: {"vi": "Khách hàng", "en": "Client"},
    UserRole.VIEWER: {"vi": "Người xem", "en": "Viewer"},
}

ROLE_DESCRIPTIONS: dict[UserRole, dict[str, str]] = {
    UserRole.ADMIN: {
        "vi": "Quyền tối đa, có thể bỏ qua xác nhận khi độ ổn định cao",
        "en": "Full permissions, can skip confirmation with high stability",
    },
    UserRole.EDITOR: {
        "vi": "Quyền chỉnh sửa đầy đủ, có thể tự động áp dụng",
        "en": "Full editing permissions, can auto-apply",
    },
    UserRole.JUNIOR: {
        "vi": "Cần xác nhận mọi hành động, đang học tập",
        "en": "Requires confirmation for all actions, learning mode",
    },
    UserRole.CLIENT: {
        "vi": "Chỉ xem và yêu cầu, không lưu sở thích",
        "en": "View and request only, no preference learning",
    },
    UserRole.VIEWER: {
        "vi": "Chỉ xem, không thực thi",
        "en": "View only, no execution",
    },
}


def get_role_label(role: UserRole, language: str = "vi") -> str:
    return ROLE_LABELS[UserRole(role)][language]


def get_role_description(role: UserRole, language: str = "vi") -> str:
    return ROLE_DESCRIPTIONS[UserRole(role)][language]
