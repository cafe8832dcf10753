"""
Conversation continuity tracking.

Keeps a rolling window of recent routing decisions (newest first) and derives a
conversation mode from it:

- CREATE_FLOW: user keeps asking for new content
- REFINE_FLOW: user keeps reworking the same content
- EXPLORATION_FLOW: mixed create/transform intents
- CORRECTION_FLOW: recent undo or rapid back-and-forth
- UNKNOWN: not enough history

The mode only influences whether confirmation may be skipped. History items
carry a pattern hash, never raw instruction text.
"""

import logging
import time
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any

from intent_engine.models import (
    IntentChoice,
    IntentType,
    RouteHint,
    StabilityBand,
    choice_to_intent_type,
)
from intent_engine.storage import StoragePort, ensure_safe

logger = logging.getLogger(__name__)

PATTERN_WINDOW_SIZE = 5
MIN_CONSECUTIVE_FOR_FLOW = 2
IMMEDIATE_ACTION_WINDOW_SECONDS = 30.0
MAX_HISTORY_SIZE = 20

STORAGE_KEY = "intent_engine_continuity_v1"
STORAGE_VERSION = 1


class ConversationMode(str, Enum):
    CREATE_FLOW = "CREATE_FLOW"
    REFINE_FLOW = "REFINE_FLOW"
    EXPLORATION_FLOW = "EXPLORATION_FLOW"
    CORRECTION_FLOW = "CORRECTION_FLOW"
    UNKNOWN = "UNKNOWN"


class SkipDecision(str, Enum):
    SKIP = "SKIP"
    SHOW = "SHOW"
    DEFAULT = "DEFAULT"


@dataclass(frozen=True)
class IntentHistoryItem:
    """One routing decision as remembered by the tracker."""

    timestamp: float
    intent_type: IntentType
    pattern_hash: str
    choice: IntentChoice | None = None
    had_undo_signal: bool = False
    route_hint: RouteHint | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["intent_type"] = self.intent_type.value
        data["choice"] = self.choice.value if self.choice else None
        data["route_hint"] = self.route_hint.value if self.route_hint else None
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IntentHistoryItem":
        return cls(
            timestamp=float(data["timestamp"]),
            intent_type=IntentType(data["intent_type"]),
            pattern_hash=data["pattern_hash"],
            choice=IntentChoice(data["choice"]) if data.get("choice") else None,
            had_undo_signal=bool(data.get("had_undo_signal", False)),
            route_hint=RouteHint(data["route_hint"]) if data.get("route_hint") else None,
        )


@dataclass(frozen=True)
class ContinuityState:
    """Derived conversation mode plus the history it was derived from."""

    mode: ConversationMode = ConversationMode.UNKNOWN
    mode_confidence: float = 0.0
    consecutive_count: int = 0
    dominant_type: IntentType | None = None
    history: tuple[IntentHistoryItem, ...] = field(default_factory=tuple)
    in_correction_cycle: bool = False
    reason: str = "No history yet"


@dataclass(frozen=True)
class ModeDetection:
    mode: ConversationMode
    confidence: float
    reason: str


def create_initial_state() -> ContinuityState:
    return ContinuityState()


def add_intent_to_history(
    state: ContinuityState,
    intent_type: IntentType,
    pattern_hash: str,
    choice: IntentChoice | None = None,
    route_hint: RouteHint | None = None,
    now: float | None = None,
) -> ContinuityState:
    """Prepend an item and trim the window. Mode is not re-derived."""
    item = IntentHistoryItem(
        timestamp=time.time() if now is None else now,
        intent_type=intent_type,
        pattern_hash=pattern_hash,
        choice=choice,
        route_hint=route_hint,
    )
    history = (item,) + state.history
    return replace(state, history=history[:MAX_HISTORY_SIZE])


def mark_recent_undo(state: ContinuityState) -> ContinuityState:
    """Flag the newest item as undone and enter the correction cycle."""
    if not state.history:
        return state
    first, *rest = state.history
    return replace(
        state,
        history=(replace(first, had_undo_signal=True), *rest),
        in_correction_cycle=True,
    )


# =============================================================================
# MODE DETECTION
# =============================================================================


def _count_consecutive(history: tuple[IntentHistoryItem, ...]) -> tuple[int, IntentType | None]:
    if not history:
        return 0, None
    first_type = history[0].intent_type
    count = 1
    for item in history[1:]:
        if item.intent_type != first_type:
            break
        count += 1
    return count, first_type


def _detect_correction_cycle(history: tuple[IntentHistoryItem, ...]) -> bool:
    if len(history) < 2:
        return False

    if any(item.had_undo_signal for item in history[:3]):
        return True

    if len(history) >= 3:
        a, b, c = history[:3]
        if a.timestamp - c.timestamp < IMMEDIATE_ACTION_WINDOW_SECONDS * 2:
            if a.intent_type != b.intent_type and b.intent_type != c.intent_type:
                return True

    return False


def detect_conversation_mode(history: tuple[IntentHistoryItem, ...] | list) -> ModeDetection:
    """
    Derive the conversation mode from history (newest first).

    Correction detection runs first and outranks every other mode.
    """
    history = tuple(history)
    if not history:
        return ModeDetection(ConversationMode.UNKNOWN, 0.0, "No history yet")

    if _detect_correction_cycle(history):
        return ModeDetection(
            ConversationMode.CORRECTION_FLOW, 0.9, "Recent undo or rapid alternation detected"
        )

    count, dominant = _count_consecutive(history)

    if dominant == IntentType.TRANSFORM and count >= MIN_CONSECUTIVE_FOR_FLOW:
        return ModeDetection(
            ConversationMode.REFINE_FLOW,
            min(0.5 + count * 0.15, 0.95),
            f"{count} consecutive TRANSFORM intents",
        )

    if dominant == IntentType.EDIT_IN_PLACE and len(history) >= 2:
        if any(h.intent_type == IntentType.TRANSFORM for h in history[:2]):
            return ModeDetection(
                ConversationMode.REFINE_FLOW, 0.7, "EDIT_IN_PLACE + TRANSFORM pattern"
            )

    if dominant == IntentType.CREATE and count >= MIN_CONSECUTIVE_FOR_FLOW:
        return ModeDetection(
            ConversationMode.CREATE_FLOW,
            min(0.5 + count * 0.15, 0.95),
            f"{count} consecutive CREATE intents",
        )

    window = history[:PATTERN_WINDOW_SIZE]
    if len(window) >= 3:
        has_create = any(h.intent_type == IntentType.CREATE for h in window)
        has_transform = any(
            h.intent_type in (IntentType.TRANSFORM, IntentType.EDIT_IN_PLACE) for h in window
        )
        if has_create and has_transform:
            return ModeDetection(
                ConversationMode.EXPLORATION_FLOW, 0.6, "Mixed CREATE and TRANSFORM intents"
            )

    if len(history) < MIN_CONSECUTIVE_FOR_FLOW:
        return ModeDetection(ConversationMode.UNKNOWN, 0.3, "Insufficient history")

    return ModeDetection(ConversationMode.EXPLORATION_FLOW, 0.4, "No clear pattern detected")


def update_continuity_state(
    previous: ContinuityState,
    intent_type: IntentType,
    pattern_hash: str,
    choice: IntentChoice | None = None,
    route_hint: RouteHint | None = None,
    now: float | None = None,
) -> ContinuityState:
    """Append a new intent and re-derive mode, streak and correction flag."""
    state = add_intent_to_history(previous, intent_type, pattern_hash, choice, route_hint, now)
    return _derive(state)


def _derive(state: ContinuityState) -> ContinuityState:
    detection = detect_conversation_mode(state.history)
    count, dominant = _count_consecutive(state.history)
    in_correction = (
        detection.mode == ConversationMode.CORRECTION_FLOW
        or _detect_correction_cycle(state.history)
    )
    return replace(
        state,
        mode=detection.mode,
        mode_confidence=detection.confidence,
        consecutive_count=count,
        dominant_type=dominant,
        in_correction_cycle=in_correction,
        reason=detection.reason,
    )


def apply_user_choice(
    state: ContinuityState,
    pattern_hash: str,
    choice: IntentChoice,
    route_hint: RouteHint | None = None,
    now: float | None = None,
) -> ContinuityState:
    """
    Record the option the user picked for the latest instruction.

    If the newest item is the still-unresolved entry for the same pattern, it
    takes the intent type the choice implies (EDIT_IN_PLACE, TRANSFORM or
    CREATE). Otherwise the choice is appended as a new item.
    """
    choice = IntentChoice(choice)
    intent_type = choice_to_intent_type(choice)
    head = state.history[0] if state.history else None

    if head is None or head.pattern_hash != pattern_hash or head.choice is not None:
        return update_continuity_state(state, intent_type, pattern_hash, choice, route_hint, now)

    resolved = replace(head, intent_type=intent_type, choice=choice)
    derived = _derive(replace(state, history=(resolved, *state.history[1:])))
    # An undo already flagged on this item keeps the correction cycle open
    return replace(
        derived, in_correction_cycle=derived.in_correction_cycle or state.in_correction_cycle
    )


def should_skip_confirmation_by_context(
    continuity: ContinuityState,
    stability_band: StabilityBand,
    route_hint: RouteHint,
    auto_apply_eligible: bool = False,
) -> SkipDecision:
    """
    Decide whether the conversation shape lets confirmation be skipped.

    Returns:
        SHOW in any correction state, SKIP when a stable refine/create flow
        matches the route hint, DEFAULT otherwise
    """
    mode = continuity.mode

    if mode == ConversationMode.CORRECTION_FLOW or continuity.in_correction_cycle:
        return SkipDecision.SHOW

    if mode in (ConversationMode.EXPLORATION_FLOW, ConversationMode.UNKNOWN):
        return SkipDecision.DEFAULT

    if mode == ConversationMode.REFINE_FLOW:
        if route_hint != RouteHint.TRANSFORM or stability_band == StabilityBand.LOW:
            return SkipDecision.DEFAULT
        if stability_band == StabilityBand.HIGH and continuity.mode_confidence >= 0.7:
            return SkipDecision.SKIP
        if (
            stability_band == StabilityBand.MEDIUM
            and continuity.mode_confidence >= 0.8
            and auto_apply_eligible
        ):
            return SkipDecision.SKIP
        return SkipDecision.DEFAULT

    if mode == ConversationMode.CREATE_FLOW:
        # Stricter than refine: new content is harder to take back
        if (
            route_hint == RouteHint.CREATE
            and stability_band == StabilityBand.HIGH
            and continuity.mode_confidence >= 0.7
        ):
            return SkipDecision.SKIP
        return SkipDecision.DEFAULT

    return SkipDecision.DEFAULT


# =============================================================================
# DISPLAY HELPERS
# =============================================================================

_MODE_LABELS = {
    ConversationMode.CREATE_FLOW: "Creating",
    ConversationMode.REFINE_FLOW: "Refining",
    ConversationMode.EXPLORATION_FLOW: "Exploring",
    ConversationMode.CORRECTION_FLOW: "Correcting",
    ConversationMode.UNKNOWN: "Learning",
}


def get_mode_label(mode: ConversationMode) -> str:
    return _MODE_LABELS[mode]


def get_continuity_debug_summary(state: ContinuityState) -> str:
    """Compact one-line summary, e.g. "REFINE 95% | 3x TRANSFORM | h=3"."""
    mode_short = state.mode.value.replace("_FLOW", "")[:6]
    conf_pct = round(state.mode_confidence * 100)
    dominant = state.dominant_type.value if state.dominant_type else "?"
    correction = " CORR" if state.in_correction_cycle else ""
    return (
        f"{mode_short} {conf_pct}% | {state.consecutive_count}x {dominant} "
        f"| h={len(state.history)}{correction}"
    )


# =============================================================================
# SESSION TRACKER
# =============================================================================


class ContinuityTracker:
    """Holds the continuity state for one session, optionally persisted.

    Only the history and correction flag are stored; mode is re-derived on
    load so stored payloads stay valid across rule changes.
    """

    def __init__(self, storage: StoragePort | None = None, storage_key: str = STORAGE_KEY):
        self.storage = ensure_safe(storage)
        self.storage_key = storage_key
        self.state = self._load()

    def _load(self) -> ContinuityState:
        payload = self.storage.get_json(self.storage_key)
        if not isinstance(payload, dict) or payload.get("version") != STORAGE_VERSION:
            return create_initial_state()
        try:
            history = tuple(IntentHistoryItem.from_dict(d) for d in payload.get("history", []))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Discarding unreadable continuity history: {e}")
            return create_initial_state()

        history = history[:MAX_HISTORY_SIZE]
        detection = detect_conversation_mode(history)
        count, dominant = _count_consecutive(history)
        return ContinuityState(
            mode=detection.mode,
            mode_confidence=detection.confidence,
            consecutive_count=count,
            dominant_type=dominant,
            history=history,
            in_correction_cycle=bool(payload.get("in_correction_cycle", False)),
            reason=detection.reason,
        )

    def _save(self) -> None:
        self.storage.set_json(
            self.storage_key,
            {
                "version": STORAGE_VERSION,
                "history": [item.to_dict() for item in self.state.history],
                "in_correction_cycle": self.state.in_correction_cycle,
            },
        )

    def record_intent(
        self,
        intent_type: IntentType,
        pattern_hash: str,
        choice: IntentChoice | None = None,
        route_hint: RouteHint | None = None,
        now: float | None = None,
    ) -> ContinuityState:
        self.state = update_continuity_state(
            self.state, intent_type, pattern_hash, choice, route_hint, now
        )
        logger.debug(f"Continuity: {get_continuity_debug_summary(self.state)}")
        self._save()
        return self.state

    def record_choice(
        self,
        pattern_hash: str,
        choice: IntentChoice,
        route_hint: RouteHint | None = None,
        now: float | None = None,
    ) -> ContinuityState:
        self.state = apply_user_choice(self.state, pattern_hash, choice, route_hint, now)
        logger.debug(
            f"Continuity after {IntentChoice(choice).value}: "
            f"{get_continuity_debug_summary(self.state)}"
        )
        self._save()
        return self.state

    def mark_undo(self) -> ContinuityState:
        self.state = mark_recent_undo(self.state)
        self._save()
        return self.state

    def reset(self) -> None:
        self.state = create_initial_state()
        self.storage.remove(self.storage_key)
