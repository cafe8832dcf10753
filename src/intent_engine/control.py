"""
User control and recovery.

Explicit, user-invoked operations over the learned state: undo the last
intent, stop auto-applying a pattern, reset a pattern, temporarily disable
preferences, or wipe learning/preferences entirely. Each action is idempotent
in effect, returns a short confirmation message and never calls the executor.

Session flags (preferences disabled, auto-apply disabled) live on the
ControlLayer instance only and are lost when the process exits.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from intent_engine.continuity import ContinuityTracker
from intent_engine.governance import GovernanceContext, GovernanceEngine
from intent_engine.learning import NEGATIVE_THRESHOLD, LearnedChoiceStore
from intent_engine.models import IntentChoice, StabilityBand
from intent_engine.outcomes import OutcomeSignalType, OutcomeStore
from intent_engine.preferences import PreferenceKey, PreferenceStore
from intent_engine.stability import StabilitySignal

logger = logging.getLogger(__name__)


class RecoveryActionType(str, Enum):
    UNDO_LAST_INTENT = "UNDO_LAST_INTENT"
    DONT_DO_THIS_AGAIN = "DONT_DO_THIS_AGAIN"
    RESET_PATTERN = "RESET_PATTERN"
    DISABLE_PREFERENCES_TEMP = "DISABLE_PREFERENCES_TEMP"
    RESET_ALL_LEARNING = "RESET_ALL_LEARNING"
    RESET_ALL_PREFERENCES = "RESET_ALL_PREFERENCES"


@dataclass(frozen=True)
class RecoveryAction:
    type: RecoveryActionType
    intent_id: str | None = None
    pattern_hash: str | None = None
    choice: IntentChoice | None = None


class TrustLevel(str, Enum):
    HIGH = "HIGH"
    BUILDING = "BUILDING"
    LEARNING = "LEARNING"
    UNCERTAIN = "UNCERTAIN"


@dataclass(frozen=True)
class TrustMicrocopy:
    label: str
    explanation: str
    level: TrustLevel


_RECOVERY_MESSAGES: dict[RecoveryActionType, dict[str, str]] = {
    RecoveryActionType.UNDO_LAST_INTENT: {
        "vi": "Đã hoàn tác hành động trước",
        "en": "Undid previous action",
    },
    RecoveryActionType.DONT_DO_THIS_AGAIN: {
        "vi": "Đã ghi nhớ, sẽ không tự động áp dụng cho trường hợp này",
        "en": "Noted, will not auto-apply for this case",
    },
    RecoveryActionType.RESET_PATTERN: {
        "vi": "Đã xóa dữ liệu học cho mẫu này",
        "en": "Cleared learning data for this pattern",
    },
    RecoveryActionType.DISABLE_PREFERENCES_TEMP: {
        "vi": "Đã tạm tắt sở thích cá nhân cho phiên này",
        "en": "Preferences temporarily disabled for this session",
    },
    RecoveryActionType.RESET_ALL_LEARNING: {
        "vi": "Đã xóa toàn bộ dữ liệu học",
        "en": "All learning data cleared",
    },
    RecoveryActionType.RESET_ALL_PREFERENCES: {
        "vi": "Đã xóa toàn bộ sở thích cá nhân",
        "en": "All preferences cleared",
    },
}

_TRUST_COPY: dict[TrustLevel, dict[str, tuple[str, str]]] = {
    TrustLevel.HIGH: {
        "vi": ("Hiểu bạn", "Tôi đã học được sở thích của bạn qua nhiều lần sử dụng"),
        "en": ("Got it", "I've learned your preferences over time"),
    },
    TrustLevel.BUILDING: {
        "vi": ("Đang học", "Tôi đang tìm hiểu cách bạn thích làm việc"),
        "en": ("Learning", "I'm learning how you like to work"),
    },
    TrustLevel.UNCERTAIN: {
        "vi": ("Cần xác nhận", "Tôi cần bạn xác nhận để đảm bảo làm đúng ý bạn"),
        "en": ("Please confirm", "I want to make sure I understand correctly"),
    },
    TrustLevel.LEARNING: {
        "vi": ("Mới bắt đầu", "Chào bạn! Hãy cho tôi biết bạn muốn gì"),
        "en": ("New here", "Hello! Let me know what you need"),
    },
}

PREFERENCE_LABELS: dict[PreferenceKey, dict[str, str]] = {
    PreferenceKey.SHORT_OUTPUT: {"vi": "Thích văn bản ngắn", "en": "Prefers short text"},
    PreferenceKey.LONG_OUTPUT: {"vi": "Thích văn bản dài", "en": "Prefers long text"},
    PreferenceKey.PROFESSIONAL_TONE: {"vi": "Giọng điệu chuyên nghiệp", "en": "Professional tone"},
    PreferenceKey.CASUAL_TONE: {"vi": "Giọng điệu thân thiện", "en": "Casual tone"},
    PreferenceKey.AVOIDS_EMOJI: {"vi": "Tránh emoji", "en": "Avoids emoji"},
    PreferenceKey.LIKES_EMOJI: {"vi": "Thích emoji", "en": "Likes emoji"},
    PreferenceKey.EDIT_IN_PLACE: {"vi": "Thích sửa trực tiếp", "en": "Prefers editing in place"},
    PreferenceKey.TRANSFORM_OVER_CREATE: {"vi": "Thích chuyển đổi", "en": "Prefers transform"},
    PreferenceKey.CREATE_OVER_TRANSFORM: {"vi": "Thích tạo mới", "en": "Prefers create new"},
    PreferenceKey.VIETNAMESE: {"vi": "Thích tiếng Việt", "en": "Prefers Vietnamese"},
    PreferenceKey.ENGLISH: {"vi": "Thích tiếng Anh", "en": "Prefers English"},
}


def get_preference_label(key: PreferenceKey, language: str = "vi") -> str:
    return PREFERENCE_LABELS.get(PreferenceKey(key), {}).get(language, str(key))


def compute_trust_level(
    stability_band: StabilityBand | None = None,
    has_active_preferences: bool = False,
    auto_apply_eligible: bool = False,
    recent_negative_count: int = 0,
) -> TrustLevel:
    if recent_negative_count >= 2:
        return TrustLevel.UNCERTAIN
    if stability_band == StabilityBand.HIGH and auto_apply_eligible:
        return TrustLevel.HIGH
    if stability_band == StabilityBand.MEDIUM or has_active_preferences:
        return TrustLevel.BUILDING
    return TrustLevel.LEARNING


def get_trust_microcopy(
    stability: StabilitySignal | None = None,
    has_active_preferences: bool = False,
    language: str = "vi",
) -> TrustMicrocopy:
    level = compute_trust_level(
        stability_band=stability.band if stability else None,
        has_active_preferences=has_active_preferences,
        auto_apply_eligible=stability.auto_apply_eligible if stability else False,
        recent_negative_count=stability.negative_high_count if stability else 0,
    )
    label, explanation = _TRUST_COPY[level][language]
    return TrustMicrocopy(label=label, explanation=explanation, level=level)


class ControlLayer:
    """Recovery actions and session switches over the learned state."""

    def __init__(
        self,
        preferences: PreferenceStore,
        learning: LearnedChoiceStore,
        outcomes: OutcomeStore,
        continuity: ContinuityTracker | None = None,
        governance: GovernanceEngine | None = None,
        governance_context: GovernanceContext | None = None,
    ):
        self.preferences = preferences
        self.learning = learning
        self.outcomes = outcomes
        self.continuity = continuity
        self.governance = governance or GovernanceEngine()
        self.governance_context = governance_context
        self.preferences_disabled = False
        self.auto_apply_disabled = False

    def _learning_allowed(self) -> bool:
        return self.governance.is_learning_allowed(self.governance_context)

    # session switches

    def disable_preferences(self) -> None:
        self.preferences_disabled = True

    def enable_preferences(self) -> None:
        self.preferences_disabled = False

    def disable_auto_apply(self) -> None:
        self.auto_apply_disabled = True

    def enable_auto_apply(self) -> None:
        self.auto_apply_disabled = False

    @property
    def preferences_enabled(self) -> bool:
        return not self.preferences_disabled

    @property
    def auto_apply_enabled(self) -> bool:
        return not self.auto_apply_disabled

    def execute_recovery_action(self, action: RecoveryAction, language: str = "vi") -> str:
        """
        Apply a recovery action and return its confirmation message.

        Raises:
            ValueError: If the action is missing the id or hash it needs
        """
        action_type = RecoveryActionType(action.type)

        if action_type == RecoveryActionType.UNDO_LAST_INTENT:
            self._undo(action)
        elif action_type == RecoveryActionType.DONT_DO_THIS_AGAIN:
            if not action.pattern_hash or action.choice is None:
                raise ValueError("DONT_DO_THIS_AGAIN needs pattern_hash and choice")
            learned = self.learning.get_learned_choice(action.pattern_hash)
            missing = NEGATIVE_THRESHOLD - (learned.negative_count if learned else 0)
            for _ in range(max(0, missing)):
                self.learning.record_negative_signal(action.pattern_hash, action.choice)
        elif action_type == RecoveryActionType.RESET_PATTERN:
            if not action.pattern_hash:
                raise ValueError("RESET_PATTERN needs pattern_hash")
            self.learning.reset_pattern(action.pattern_hash)
        elif action_type == RecoveryActionType.DISABLE_PREFERENCES_TEMP:
            self.disable_preferences()
        elif action_type == RecoveryActionType.RESET_ALL_LEARNING:
            self.learning.clear()
        elif action_type == RecoveryActionType.RESET_ALL_PREFERENCES:
            self.preferences.clear()

        logger.info(f"Recovery action executed: {action_type.value}")
        return _RECOVERY_MESSAGES[action_type][language]

    def _undo(self, action: RecoveryAction) -> None:
        if not action.intent_id:
            raise ValueError("UNDO_LAST_INTENT needs intent_id")

        outcome = self.outcomes.get(action.intent_id)
        already_undone = outcome is not None and any(
            s.type == OutcomeSignalType.UNDO_WITHIN_WINDOW for s in outcome.signals
        )
        if already_undone:
            return

        if outcome is not None:
            self.outcomes.append_signal(action.intent_id, OutcomeSignalType.UNDO_WITHIN_WINDOW)

        pattern_hash = action.pattern_hash or (outcome.pattern_hash if outcome else None)
        if pattern_hash and self._learning_allowed():
            self.learning.record_outcome(
                pattern_hash, "high", negative=True, intent_id=action.intent_id
            )
        if self.continuity is not None:
            self.continuity.mark_undo()

    def get_control_state(self) -> dict[str, Any]:
        active = self.preferences.get_active_preferences() if self.preferences_enabled else []
        return {
            "preferences_enabled": self.preferences_enabled,
            "auto_apply_enabled": self.auto_apply_enabled,
            "active_preferences": [p.key.value for p in active],
            "learning_stats": self.learning.get_stats(),
            "preference_stats": self.preferences.get_stats(),
        }

    def get_debug_summary(self) -> str:
        state = self.get_control_state()
        learning = state["learning_stats"]
        return " | ".join(
            [
                f"Prefs: {'on' if state['preferences_enabled'] else 'OFF'}",
                f"Auto: {'on' if state['auto_apply_enabled'] else 'OFF'}",
                f"Active: {len(state['active_preferences'])}",
                f"Patterns: {learning['total_patterns']}",
                f"AutoApply: {learning['auto_applyable']}",
                f"Unreliable: {learning['unreliable']}",
            ]
        )
