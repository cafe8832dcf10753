"""
Decaying user preference memory.

Counts positive and negative observations per preference key and turns them
into a soft bias at read time:

    strength = rescale(ratio, 0.6..1.0) × decay(days) × bonus(observations)

capped at max_strength. Strength is 0 until min_observations are seen and the
positive ratio reaches 0.6. There is no background job: decay is computed from
last_observed whenever a preference is read, and expired records are purged at
most once per cleanup interval during writes.

Bias never overrides the route hint. It only suggests a default option and a
display order for the three choices.
"""

import logging
import re
import time
import unicodedata
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from intent_engine.config import PreferenceSettings
from intent_engine.governance import GovernanceContext, get_user_scoped_key
from intent_engine.models import IntentChoice, RouteHint, StabilityBand
from intent_engine.storage import StoragePort, ensure_safe

logger = logging.getLogger(__name__)

BASE_STORAGE_KEY = "intent_engine_preferences_v1"
STORAGE_VERSION = 1

# Ratio at which a preference starts to count
MIN_POSITIVE_RATIO = 0.6
# Records decayed below this are purged during cleanup
PURGE_DECAY = 0.1

SECONDS_PER_DAY = 86400


class PreferenceKey(str, Enum):
    SHORT_OUTPUT = "prefersShortOutput"
    LONG_OUTPUT = "prefersLongOutput"
    PROFESSIONAL_TONE = "prefersProfessionalTone"
    CASUAL_TONE = "prefersCasualTone"
    AVOIDS_EMOJI = "avoidsEmoji"
    LIKES_EMOJI = "likesEmoji"
    EDIT_IN_PLACE = "prefersEditInPlace"
    TRANSFORM_OVER_CREATE = "prefersTransformOverCreate"
    CREATE_OVER_TRANSFORM = "prefersCreateOverTransform"
    VIETNAMESE = "prefersVietnamese"
    ENGLISH = "prefersEnglish"


@dataclass(frozen=True)
class PreferenceSignal:
    key: PreferenceKey
    strength: float | None = None
    context: str | None = None


@dataclass
class PreferenceRecord:
    positive_count: int = 0
    negative_count: int = 0
    last_observed: float = 0.0
    first_observed: float = 0.0

    @property
    def total(self) -> int:
        return self.positive_count + self.negative_count

    def to_dict(self) -> dict[str, Any]:
        return {
            "positive_count": self.positive_count,
            "negative_count": self.negative_count,
            "last_observed": self.last_observed,
            "first_observed": self.first_observed,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PreferenceRecord":
        return cls(
            positive_count=int(data.get("positive_count", 0)),
            negative_count=int(data.get("negative_count", 0)),
            last_observed=float(data.get("last_observed", 0.0)),
            first_observed=float(data.get("first_observed", 0.0)),
        )


@dataclass(frozen=True)
class PreferenceBias:
    key: PreferenceKey
    strength: float
    active: bool
    reason: str


@dataclass(frozen=True)
class PreferenceContext:
    route_hint: RouteHint | None = None
    has_active_source: bool = False
    input_length: int | None = None
    stability_band: StabilityBand | None = None


DEFAULT_OPTION_ORDER: tuple[IntentChoice, ...] = (
    IntentChoice.TRANSFORM_NEW_VERSION,
    IntentChoice.CREATE_NEW,
    IntentChoice.EDIT_IN_PLACE,
)


@dataclass(frozen=True)
class BiasResult:
    active_preferences: list[PreferenceBias] = field(default_factory=list)
    default_choice_bias: IntentChoice | None = None
    default_choice_strength: float = 0.0
    option_order_bias: tuple[IntentChoice, ...] = DEFAULT_OPTION_ORDER
    debug_summary: str = "No active preferences"


# =============================================================================
# STRENGTH
# =============================================================================


def calculate_decay(
    last_observed: float,
    now: float,
    settings: PreferenceSettings = PreferenceSettings(),
) -> float:
    days_since = (now - last_observed) / SECONDS_PER_DAY
    return max(0.0, 1 - days_since * settings.decay_per_day)


def calculate_strength(
    record: PreferenceRecord,
    now: float | None = None,
    settings: PreferenceSettings = PreferenceSettings(),
) -> float:
    """
    Strength of a preference record in [0, max_strength].

    Args:
        record: Observation counters
        now: Evaluation time in epoch seconds
        settings: Tunables (minimum observations, decay, cap)

    Returns:
        0.0 when data is insufficient or the ratio is too low
    """
    now = time.time() if now is None else now
    total = record.total
    if total < settings.min_observations:
        return 0.0

    ratio = record.positive_count / total
    if ratio < MIN_POSITIVE_RATIO:
        return 0.0

    base = (ratio - MIN_POSITIVE_RATIO) / (1 - MIN_POSITIVE_RATIO)
    decayed = base * calculate_decay(record.last_observed, now, settings)
    bonus = min(1.0, total / settings.bonus_observations)
    boosted = decayed * (0.7 + 0.3 * bonus)
    return min(settings.max_strength, boosted)


# =============================================================================
# STORE
# =============================================================================


class PreferenceStore:
    """Persisted preference counters for one user.

    When a governance context is active, the storage key is scoped to the
    user so teammates sharing a store never read each other's preferences.
    """

    def __init__(
        self,
        storage: StoragePort | None = None,
        settings: PreferenceSettings | None = None,
        governance: GovernanceContext | None = None,
    ):
        self.storage = ensure_safe(storage)
        self.settings = settings or PreferenceSettings()
        self.governance = governance

    @property
    def storage_key(self) -> str:
        return get_user_scoped_key(BASE_STORAGE_KEY, self.governance)

    def _empty_state(self, now: float) -> dict[str, Any]:
        return {"version": STORAGE_VERSION, "preferences": {}, "last_cleanup": now}

    def _load(self, now: float) -> dict[str, Any]:
        payload = self.storage.get_json(self.storage_key)
        if not isinstance(payload, dict) or payload.get("version") != STORAGE_VERSION:
            return self._empty_state(now)
        payload.setdefault("preferences", {})
        payload.setdefault("last_cleanup", now)
        return payload

    def _records(self, state: dict[str, Any]) -> dict[PreferenceKey, PreferenceRecord]:
        records = {}
        for raw_key, raw in state["preferences"].items():
            try:
                records[PreferenceKey(raw_key)] = PreferenceRecord.from_dict(raw)
            except (ValueError, TypeError, AttributeError):
                logger.debug(f"Skipping unknown preference key: {raw_key}")
        return records

    def _cleanup(self, records: dict[PreferenceKey, PreferenceRecord], now: float) -> None:
        expired = [
            key
            for key, record in records.items()
            if now - record.last_observed > self.settings.ttl_seconds
            or calculate_decay(record.last_observed, now, self.settings) < PURGE_DECAY
        ]
        for key in expired:
            del records[key]
        if expired:
            logger.debug(f"Purged {len(expired)} expired preferences")

    def record_preferences(
        self,
        batch: list[tuple[PreferenceSignal, bool]],
        now: float | None = None,
    ) -> None:
        """Record several (signal, negative) observations in one write."""
        now = time.time() if now is None else now
        state = self._load(now)
        records = self._records(state)

        for signal, negative in batch:
            record = records.get(signal.key)
            if record is None:
                record = PreferenceRecord(last_observed=now, first_observed=now)
                records[signal.key] = record
            if negative:
                record.negative_count += 1
            else:
                record.positive_count += 1
            record.last_observed = now

        if now - state["last_cleanup"] > self.settings.cleanup_interval_seconds:
            self._cleanup(records, now)
            state["last_cleanup"] = now

        state["preferences"] = {key.value: r.to_dict() for key, r in records.items()}
        self.storage.set_json(self.storage_key, state)

    def record_preference(
        self,
        signal: PreferenceSignal,
        negative: bool = False,
        now: float | None = None,
    ) -> None:
        self.record_preferences([(signal, negative)], now=now)

    def get_preference(self, key: PreferenceKey, now: float | None = None) -> PreferenceBias | None:
        now = time.time() if now is None else now
        record = self._records(self._load(now)).get(key)
        if record is None:
            return None
        return self._bias_for(key, record, now)

    def _bias_for(self, key: PreferenceKey, record: PreferenceRecord, now: float) -> PreferenceBias:
        strength = calculate_strength(record, now, self.settings)
        active = strength >= self.settings.min_active_strength
        total = record.total
        if active:
            reason = f"{record.positive_count}/{total} observations, {round(strength * 100)}% strength"
        elif total < self.settings.min_observations:
            reason = f"Insufficient data ({total}/{self.settings.min_observations})"
        else:
            reason = f"Weak signal ({round(strength * 100)}%)"
        return PreferenceBias(key=key, strength=strength, active=active, reason=reason)

    def get_all_preferences(self, now: float | None = None) -> list[PreferenceBias]:
        """Every stored preference, active or not, strongest first."""
        now = time.time() if now is None else now
        records = self._records(self._load(now))
        biases = [self._bias_for(key, record, now) for key, record in records.items()]
        return sorted(biases, key=lambda b: b.strength, reverse=True)

    def get_active_preferences(self, now: float | None = None) -> list[PreferenceBias]:
        return [b for b in self.get_all_preferences(now) if b.active]

    def get_preference_bias(
        self,
        context: PreferenceContext | None = None,
        now: float | None = None,
    ) -> BiasResult:
        """
        Aggregate active preferences into a default choice and option order.

        A default choice is only suggested when it agrees with the context:
        EDIT_IN_PLACE needs an active source, TRANSFORM_NEW_VERSION is never
        suggested for a CREATE hint and CREATE_NEW never for a TRANSFORM hint.
        """
        context = context or PreferenceContext()
        active = self.get_active_preferences(now)
        if not active:
            return BiasResult()

        default_choice: IntentChoice | None = None
        default_strength = 0.0
        scores = {
            IntentChoice.EDIT_IN_PLACE: 0.0,
            IntentChoice.TRANSFORM_NEW_VERSION: 0.0,
            IntentChoice.CREATE_NEW: 0.0,
        }
        allowed = {
            PreferenceKey.EDIT_IN_PLACE: (IntentChoice.EDIT_IN_PLACE, context.has_active_source),
            PreferenceKey.TRANSFORM_OVER_CREATE: (
                IntentChoice.TRANSFORM_NEW_VERSION,
                context.route_hint != RouteHint.CREATE,
            ),
            PreferenceKey.CREATE_OVER_TRANSFORM: (
                IntentChoice.CREATE_NEW,
                context.route_hint != RouteHint.TRANSFORM,
            ),
        }

        for pref in active:
            if pref.key not in allowed:
                continue
            choice, fits_context = allowed[pref.key]
            scores[choice] += pref.strength
            if fits_context and pref.strength > default_strength:
                default_choice = choice
                default_strength = pref.strength

        order = tuple(sorted(scores, key=lambda c: scores[c], reverse=True))
        summary = ", ".join(f"{p.key.value}({round(p.strength * 100)}%)" for p in active)

        return BiasResult(
            active_preferences=active,
            default_choice_bias=default_choice,
            default_choice_strength=default_strength,
            option_order_bias=order,
            debug_summary=f"Active: {summary}",
        )

    def clear(self) -> None:
        self.storage.remove(self.storage_key)

    def get_stats(self, now: float | None = None) -> dict[str, Any]:
        now = time.time() if now is None else now
        state = self._load(now)
        records = self._records(state)
        active = self.get_active_preferences(now)
        return {
            "total_preferences": len(records),
            "active_preferences": len(active),
            "strongest_preference": active[0].key.value if active else None,
            "oldest_observation": min((r.first_observed for r in records.values()), default=None),
        }

    def get_debug_summary(self, now: float | None = None) -> str:
        active = self.get_active_preferences(now)
        if not active:
            return "No prefs"
        parts = []
        for pref in active[:3]:
            short_key = pref.key.value.replace("prefers", "").replace("avoids", "!")[:8]
            parts.append(f"{short_key}:{round(pref.strength * 100)}%")
        if len(active) > 3:
            parts.append(f"+{len(active) - 3}")
        return " | ".join(parts)


# =============================================================================
# SIGNAL DETECTORS
# =============================================================================

SHORT_OUTPUT_WORDS = 100
LONG_OUTPUT_WORDS = 300

EMOJI_RE = re.compile("[\U0001F300-\U0001F9FF\u2600-\u26FF\u2700-\u27BF]")

INSTRUCTION_SIGNAL_PATTERNS: list[tuple[PreferenceKey, re.Pattern]] = [
    (PreferenceKey.SHORT_OUTPUT, re.compile(r"\b(ngắn|gọn|súc tích|brief|short|concise)\b")),
    (PreferenceKey.LONG_OUTPUT, re.compile(r"\b(dài|chi tiết|detailed|elaborate|expand)\b")),
    (
        PreferenceKey.PROFESSIONAL_TONE,
        re.compile(r"\b(chuyên nghiệp|professional|formal|trang trọng)\b"),
    ),
    (PreferenceKey.CASUAL_TONE, re.compile(r"\b(thân thiện|casual|friendly|thoải mái)\b")),
    (PreferenceKey.LIKES_EMOJI, re.compile(r"\b(thêm emoji|add emoji|emoji)\b")),
    (PreferenceKey.AVOIDS_EMOJI, re.compile(r"\b(bỏ emoji|no emoji|không emoji|remove emoji)\b")),
]


def detect_choice_signals(
    choice: IntentChoice,
    context: PreferenceContext | None = None,
) -> list[PreferenceSignal]:
    """Signals implied by the option the user picked."""
    context = context or PreferenceContext()
    signals: list[PreferenceSignal] = []

    if choice == IntentChoice.EDIT_IN_PLACE:
        signals.append(PreferenceSignal(PreferenceKey.EDIT_IN_PLACE))
        if context.route_hint == RouteHint.TRANSFORM:
            signals.append(PreferenceSignal(PreferenceKey.EDIT_IN_PLACE, strength=0.5))
    elif choice == IntentChoice.TRANSFORM_NEW_VERSION:
        if context.route_hint == RouteHint.CREATE:
            signals.append(PreferenceSignal(PreferenceKey.TRANSFORM_OVER_CREATE))
    elif choice == IntentChoice.CREATE_NEW:
        if context.route_hint == RouteHint.TRANSFORM:
            signals.append(PreferenceSignal(PreferenceKey.CREATE_OVER_TRANSFORM))

    return signals


def detect_output_signals(output: str) -> list[PreferenceSignal]:
    """Signals from the shape of an accepted output (length, emoji)."""
    signals: list[PreferenceSignal] = []
    word_count = len(output.split())
    if word_count < SHORT_OUTPUT_WORDS:
        signals.append(PreferenceSignal(PreferenceKey.SHORT_OUTPUT, strength=0.3))
    elif word_count > LONG_OUTPUT_WORDS:
        signals.append(PreferenceSignal(PreferenceKey.LONG_OUTPUT, strength=0.3))

    if EMOJI_RE.search(output):
        signals.append(PreferenceSignal(PreferenceKey.LIKES_EMOJI, strength=0.2))
    return signals


def detect_instruction_signals(instruction: str) -> list[PreferenceSignal]:
    """Signals from explicit wording in the instruction (vi + en)."""
    normalized = unicodedata.normalize("NFC", instruction.lower())
    keys = [key for key, pattern in INSTRUCTION_SIGNAL_PATTERNS if pattern.search(normalized)]
    # "bỏ emoji" also contains the bare word; avoiding wins
    if PreferenceKey.AVOIDS_EMOJI in keys:
        keys = [key for key in keys if key != PreferenceKey.LIKES_EMOJI]
    return [PreferenceSignal(key) for key in keys]
