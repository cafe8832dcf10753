"""
Learned choice memory.

When the user keeps resolving the same instruction shape the same way, the
choice is remembered per pattern hash and can be suggested for auto-apply:

- 2+ consistent choices make a pattern auto-applyable
- 2+ negative signals on that choice make it unreliable
- a different choice for the same pattern starts the count over
- 2+ high-severity negative outcomes mark the pattern unreliable as well

Entries unused for 30 days expire. Only pattern hashes are stored.
"""

import logging
import time
import unicodedata
from dataclasses import asdict, dataclass, field
from typing import Any

from intent_engine.binding import djb2
from intent_engine.governance import GovernanceContext, get_user_scoped_key
from intent_engine.models import IntentChoice
from intent_engine.storage import StoragePort, ensure_safe

logger = logging.getLogger(__name__)

BASE_STORAGE_KEY = "intent_engine_intent_learning_v1"
BASE_RELIABILITY_KEY = "intent_engine_intent_outcome_reliability_v1"
STORAGE_VERSION = 1

AUTO_APPLY_THRESHOLD = 2
NEGATIVE_THRESHOLD = 2
HIGH_NEGATIVE_THRESHOLD = 2
TTL_DAYS = 30
TTL_SECONDS = TTL_DAYS * 86400

PATTERN_TEXT_LENGTH = 50
# Intent ids remembered per pattern so one intent counts at most once
MAX_COUNTED_INTENTS = 20


def compute_pattern_hash(
    normalized_instruction: str,
    has_active_source: bool = False,
    has_last_valid_assistant: bool = False,
    ui_source_message_id: str | None = None,
) -> str:
    """
    Fingerprint an instruction's shape for learning.

    The first 50 normalized characters plus three context flags are hashed,
    so the same wording in a different context is a different pattern.
    """
    text = unicodedata.normalize("NFC", normalized_instruction.lower()).strip()
    pattern = "|".join(
        [
            text[:PATTERN_TEXT_LENGTH],
            "src:1" if has_active_source else "src:0",
            "ctx:1" if has_last_valid_assistant else "ctx:0",
            "ui:1" if ui_source_message_id else "ui:0",
        ]
    )
    return format(djb2(pattern), "x")


@dataclass
class LearnedChoice:
    pattern_hash: str
    choice: IntentChoice
    count: int
    negative_count: int
    last_used_at: float

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["choice"] = self.choice.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LearnedChoice":
        return cls(
            pattern_hash=data["pattern_hash"],
            choice=IntentChoice(data["choice"]),
            count=int(data["count"]),
            negative_count=int(data.get("negative_count", 0)),
            last_used_at=float(data["last_used_at"]),
        )


@dataclass
class PatternReliability:
    pattern_hash: str
    high_negative_count: int = 0
    accepted_count: int = 0
    last_updated_at: float = 0.0
    counted_intent_ids: list[str] = field(default_factory=list)


class LearnedChoiceStore:
    """Per-user learned choices and outcome reliability."""

    def __init__(
        self,
        storage: StoragePort | None = None,
        governance: GovernanceContext | None = None,
    ):
        self.storage = ensure_safe(storage)
        self.governance = governance

    @property
    def storage_key(self) -> str:
        return get_user_scoped_key(BASE_STORAGE_KEY, self.governance)

    @property
    def reliability_key(self) -> str:
        return get_user_scoped_key(BASE_RELIABILITY_KEY, self.governance)

    # -------------------------------------------------------------------------
    # persistence
    # -------------------------------------------------------------------------

    def _load(self, now: float) -> dict[str, LearnedChoice]:
        payload = self.storage.get_json(self.storage_key)
        if not isinstance(payload, dict):
            return {}
        if payload.get("version") != STORAGE_VERSION:
            logger.warning("Invalid learned-choice storage version, clearing")
            self.storage.remove(self.storage_key)
            return {}

        choices = {}
        raw_choices = payload.get("choices", {})
        for pattern_hash, raw in raw_choices.items():
            try:
                learned = LearnedChoice.from_dict(raw)
            except (KeyError, TypeError, ValueError):
                continue
            if now - learned.last_used_at < TTL_SECONDS:
                choices[pattern_hash] = learned

        if len(choices) < len(raw_choices):
            self._save(choices)
        return choices

    def _save(self, choices: dict[str, LearnedChoice]) -> None:
        self.storage.set_json(
            self.storage_key,
            {
                "version": STORAGE_VERSION,
                "choices": {h: c.to_dict() for h, c in choices.items()},
            },
        )

    def _load_reliability(self, now: float) -> dict[str, PatternReliability]:
        payload = self.storage.get_json(self.reliability_key)
        if not isinstance(payload, dict) or payload.get("version") != STORAGE_VERSION:
            return {}
        patterns = {}
        for pattern_hash, raw in payload.get("patterns", {}).items():
            try:
                reliability = PatternReliability(**raw)
            except TypeError:
                continue
            if now - reliability.last_updated_at < TTL_SECONDS:
                patterns[pattern_hash] = reliability
        return patterns

    def _save_reliability(self, patterns: dict[str, PatternReliability]) -> None:
        self.storage.set_json(
            self.reliability_key,
            {
                "version": STORAGE_VERSION,
                "patterns": {h: asdict(p) for h, p in patterns.items()},
            },
        )

    # -------------------------------------------------------------------------
    # choices
    # -------------------------------------------------------------------------

    def record_choice(
        self, pattern_hash: str, choice: IntentChoice, now: float | None = None
    ) -> LearnedChoice:
        now = time.time() if now is None else now
        choices = self._load(now)
        existing = choices.get(pattern_hash)

        if existing and existing.choice == choice:
            existing.count += 1
            existing.last_used_at = now
            learned = existing
        else:
            learned = LearnedChoice(pattern_hash, IntentChoice(choice), 1, 0, now)
            choices[pattern_hash] = learned

        self._save(choices)
        logger.debug(f"Recorded choice {learned.choice.value} for {pattern_hash} (x{learned.count})")
        return learned

    def get_learned_choice(
        self, pattern_hash: str, now: float | None = None
    ) -> LearnedChoice | None:
        now = time.time() if now is None else now
        return self._load(now).get(pattern_hash)

    def get_auto_apply_choice(
        self, pattern_hash: str, now: float | None = None
    ) -> IntentChoice | None:
        """The learned choice if it is consistent and has not misfired."""
        now = time.time() if now is None else now
        learned = self.get_learned_choice(pattern_hash, now)
        if learned is None:
            return None

        if learned.negative_count >= NEGATIVE_THRESHOLD:
            logger.debug(f"Skipping auto-apply for {pattern_hash}: negative signals")
            return None

        if self.is_pattern_unreliable(pattern_hash, now):
            logger.debug(f"Skipping auto-apply for {pattern_hash}: unreliable outcomes")
            return None

        if learned.count >= AUTO_APPLY_THRESHOLD:
            return learned.choice
        return None

    def record_negative_signal(
        self, pattern_hash: str, choice: IntentChoice, now: float | None = None
    ) -> None:
        """Count a negative signal against the learned choice, if it matches."""
        now = time.time() if now is None else now
        choices = self._load(now)
        existing = choices.get(pattern_hash)
        if existing is None or existing.choice != choice:
            return
        existing.negative_count += 1
        existing.last_used_at = now
        self._save(choices)
        logger.debug(f"Negative signal for {pattern_hash} (x{existing.negative_count})")

    def reset_pattern(self, pattern_hash: str, now: float | None = None) -> bool:
        """Forget one pattern's choice and reliability. True if anything was removed."""
        now = time.time() if now is None else now
        removed = False

        choices = self._load(now)
        if choices.pop(pattern_hash, None) is not None:
            self._save(choices)
            removed = True

        patterns = self._load_reliability(now)
        if patterns.pop(pattern_hash, None) is not None:
            self._save_reliability(patterns)
            removed = True

        return removed

    def clear(self) -> None:
        self.storage.remove(self.storage_key)
        self.storage.remove(self.reliability_key)

    def get_stats(self, now: float | None = None) -> dict[str, int]:
        now = time.time() if now is None else now
        entries = list(self._load(now).values())
        return {
            "total_patterns": len(entries),
            "auto_applyable": sum(
                1
                for c in entries
                if c.count >= AUTO_APPLY_THRESHOLD and c.negative_count < NEGATIVE_THRESHOLD
            ),
            "unreliable": sum(1 for c in entries if c.negative_count >= NEGATIVE_THRESHOLD),
        }

    # -------------------------------------------------------------------------
    # outcome reliability
    # -------------------------------------------------------------------------

    def record_outcome(
        self,
        pattern_hash: str | None,
        severity: str,
        negative: bool,
        now: float | None = None,
        intent_id: str | None = None,
    ) -> None:
        """
        Count an outcome against a pattern's reliability.

        With an intent_id, a high-severity negative is counted at most once
        per intent, so repeated undo reports do not stack up.
        """
        if not pattern_hash:
            return
        now = time.time() if now is None else now
        patterns = self._load_reliability(now)
        reliability = patterns.setdefault(pattern_hash, PatternReliability(pattern_hash))

        if negative and str(getattr(severity, "value", severity)) == "high":
            if intent_id and intent_id in reliability.counted_intent_ids:
                logger.debug(f"High negative for {intent_id} already counted on {pattern_hash}")
                return
            reliability.high_negative_count += 1
            if intent_id:
                reliability.counted_intent_ids = (
                    reliability.counted_intent_ids + [intent_id]
                )[-MAX_COUNTED_INTENTS:]
        if not negative:
            reliability.accepted_count += 1
        reliability.last_updated_at = now

        self._save_reliability(patterns)

    def get_pattern_reliability(
        self, pattern_hash: str, now: float | None = None
    ) -> PatternReliability | None:
        now = time.time() if now is None else now
        return self._load_reliability(now).get(pattern_hash)

    def is_pattern_unreliable(self, pattern_hash: str, now: float | None = None) -> bool:
        reliability = self.get_pattern_reliability(pattern_hash, now)
        return reliability is not None and reliability.high_negative_count >= HIGH_NEGATIVE_THRESHOLD
