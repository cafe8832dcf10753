"""
Intent outcome ledger.

One IntentOutcome per executed request, stored under its own key plus an
index of ids (newest first) so recent outcomes can be listed without scanning
keys. Behavioral signals are appended after execution and the derived verdict
(accepted / negative / severity) is recomputed on every append.

Storage layout:
    intent_engine:intentOutcome:v1:<intent_id>  → {"version": 1, "outcome": {...}}
    intent_engine:intentOutcome:index:v1        → {"version": 1, "ids": [...]}

Outcomes older than the TTL are invisible to get() and dropped from the index.
"""

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from intent_engine.binding import to_base36
from intent_engine.config import OutcomeSettings
from intent_engine.models import RouteUsed
from intent_engine.storage import StoragePort, ensure_safe

logger = logging.getLogger(__name__)

STORAGE_PREFIX = "intent_engine:intentOutcome:v1:"
INDEX_KEY = "intent_engine:intentOutcome:index:v1"
STORAGE_VERSION = 1


class OutcomeSignalType(str, Enum):
    UNDO_WITHIN_WINDOW = "UNDO_WITHIN_WINDOW"
    EDIT_AFTER = "EDIT_AFTER"
    RESEND_IMMEDIATELY = "RESEND_IMMEDIATELY"
    ACCEPT_SILENTLY = "ACCEPT_SILENTLY"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class OutcomeSignal:
    type: OutcomeSignalType
    ts: float
    meta: dict[str, Any] | None = None


@dataclass(frozen=True)
class DerivedOutcome:
    accepted: bool = False
    negative: bool = False
    severity: Severity = Severity.LOW


@dataclass(frozen=True)
class IntentOutcome:
    intent_id: str
    route_used: RouteUsed
    created_at: float
    last_event_at: float
    pattern_hash: str | None = None
    confidence: float | None = None
    decision_path_label: str | None = None
    signals: tuple[OutcomeSignal, ...] = field(default_factory=tuple)
    derived: DerivedOutcome = field(default_factory=DerivedOutcome)

    def to_dict(self) -> dict[str, Any]:
        return {
            "intent_id": self.intent_id,
            "route_used": self.route_used.value,
            "created_at": self.created_at,
            "last_event_at": self.last_event_at,
            "pattern_hash": self.pattern_hash,
            "confidence": self.confidence,
            "decision_path_label": self.decision_path_label,
            "signals": [
                {"type": s.type.value, "ts": s.ts, "meta": s.meta} for s in self.signals
            ],
            "derived": {
                "accepted": self.derived.accepted,
                "negative": self.derived.negative,
                "severity": self.derived.severity.value,
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IntentOutcome":
        derived = data.get("derived") or {}
        return cls(
            intent_id=data["intent_id"],
            route_used=RouteUsed(data["route_used"]),
            created_at=float(data["created_at"]),
            last_event_at=float(data.get("last_event_at", data["created_at"])),
            pattern_hash=data.get("pattern_hash"),
            confidence=data.get("confidence"),
            decision_path_label=data.get("decision_path_label"),
            signals=tuple(
                OutcomeSignal(OutcomeSignalType(s["type"]), float(s["ts"]), s.get("meta"))
                for s in data.get("signals", [])
            ),
            derived=DerivedOutcome(
                accepted=bool(derived.get("accepted", False)),
                negative=bool(derived.get("negative", False)),
                severity=Severity(derived.get("severity", "low")),
            ),
        )


def generate_intent_id(now: float | None = None) -> str:
    ts = int((time.time() if now is None else now) * 1000)
    suffix = "".join(random.choices("0123456789abcdefghijklmnopqrstuvwxyz", k=6))
    return f"intent-{to_base36(ts)}-{suffix}"


def create_outcome(
    route_used: RouteUsed,
    intent_id: str | None = None,
    pattern_hash: str | None = None,
    confidence: float | None = None,
    decision_path_label: str | None = None,
    now: float | None = None,
) -> IntentOutcome:
    now = time.time() if now is None else now
    return IntentOutcome(
        intent_id=intent_id or generate_intent_id(now),
        route_used=RouteUsed(route_used),
        created_at=now,
        last_event_at=now,
        pattern_hash=pattern_hash,
        confidence=confidence,
        decision_path_label=decision_path_label,
    )


def append_signal(
    outcome: IntentOutcome,
    signal_type: OutcomeSignalType,
    ts: float | None = None,
    meta: dict[str, Any] | None = None,
) -> IntentOutcome:
    signal = OutcomeSignal(OutcomeSignalType(signal_type), time.time() if ts is None else ts, meta)
    return replace(outcome, last_event_at=signal.ts, signals=outcome.signals + (signal,))


def derive_outcome(outcome: IntentOutcome) -> IntentOutcome:
    """
    Recompute accepted/negative/severity from the signal log.

    Precedence: undo, resend without accept, edit without accept, then accept.
    """
    types = {s.type for s in outcome.signals}
    has_accept = OutcomeSignalType.ACCEPT_SILENTLY in types

    if OutcomeSignalType.UNDO_WITHIN_WINDOW in types:
        derived = DerivedOutcome(accepted=False, negative=True, severity=Severity.HIGH)
    elif OutcomeSignalType.RESEND_IMMEDIATELY in types and not has_accept:
        derived = DerivedOutcome(accepted=False, negative=True, severity=Severity.HIGH)
    elif OutcomeSignalType.EDIT_AFTER in types and not has_accept:
        derived = DerivedOutcome(accepted=False, negative=True, severity=Severity.MEDIUM)
    elif has_accept:
        derived = DerivedOutcome(accepted=True, negative=False, severity=Severity.LOW)
    else:
        derived = DerivedOutcome()

    return replace(outcome, derived=derived)


def should_mark_unreliable(outcome: IntentOutcome) -> bool:
    return outcome.derived.negative and outcome.derived.severity == Severity.HIGH


def get_outcome_summary(outcome: IntentOutcome) -> str:
    signal_types = ", ".join(s.type.value for s in outcome.signals) or "none"
    state = "ACCEPTED" if outcome.derived.accepted else "PENDING"
    neg = "/NEG" if outcome.derived.negative else ""
    return (
        f"{outcome.route_used.value} -> {state} "
        f"[{outcome.derived.severity.value}{neg}] signals: {signal_types}"
    )


# =============================================================================
# STORE
# =============================================================================


class OutcomeStore:
    """TTL-bounded, indexed outcome persistence."""

    def __init__(
        self,
        storage: StoragePort | None = None,
        settings: OutcomeSettings | None = None,
    ):
        self.storage = ensure_safe(storage)
        self.settings = settings or OutcomeSettings()

    @staticmethod
    def _key(intent_id: str) -> str:
        return f"{STORAGE_PREFIX}{intent_id}"

    def _load_index(self) -> list[str]:
        payload = self.storage.get_json(INDEX_KEY)
        if not isinstance(payload, dict) or payload.get("version") != STORAGE_VERSION:
            return []
        return list(payload.get("ids", []))

    def _save_index(self, ids: list[str]) -> None:
        self.storage.set_json(INDEX_KEY, {"version": STORAGE_VERSION, "ids": ids})

    def _remove_from_index(self, intent_id: str) -> None:
        self._save_index([i for i in self._load_index() if i != intent_id])

    def _is_expired(self, outcome: IntentOutcome, now: float) -> bool:
        return now - outcome.created_at > self.settings.ttl_seconds

    def _decode(self, intent_id: str, now: float) -> IntentOutcome | None:
        payload = self.storage.get_json(self._key(intent_id))
        if not isinstance(payload, dict) or payload.get("version") != STORAGE_VERSION:
            return None
        try:
            outcome = IntentOutcome.from_dict(payload["outcome"])
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Discarding unreadable outcome {intent_id}: {e}")
            return None
        if self._is_expired(outcome, now):
            return None
        return outcome

    def put(self, outcome: IntentOutcome) -> None:
        """Store an outcome and move its id to the front of the index."""
        self.storage.set_json(
            self._key(outcome.intent_id),
            {"version": STORAGE_VERSION, "outcome": outcome.to_dict()},
        )
        ids = [outcome.intent_id] + [
            i for i in self._load_index() if i != outcome.intent_id
        ]
        evicted = ids[self.settings.max_outcomes:]
        for intent_id in evicted:
            self.storage.remove(self._key(intent_id))
        self._save_index(ids[: self.settings.max_outcomes])
        logger.debug(f"Stored outcome: {outcome.intent_id}")

    def get(self, intent_id: str, now: float | None = None) -> IntentOutcome | None:
        now = time.time() if now is None else now
        if self.storage.get(self._key(intent_id)) is None:
            return None
        outcome = self._decode(intent_id, now)
        if outcome is None:
            self.storage.remove(self._key(intent_id))
            self._remove_from_index(intent_id)
        return outcome

    def update(
        self,
        intent_id: str,
        updater: Callable[[IntentOutcome], IntentOutcome],
        now: float | None = None,
    ) -> IntentOutcome | None:
        existing = self.get(intent_id, now)
        if existing is None:
            return None
        updated = updater(existing)
        self.put(updated)
        return updated

    def update_and_derive(
        self,
        intent_id: str,
        updater: Callable[[IntentOutcome], IntentOutcome],
        now: float | None = None,
    ) -> IntentOutcome | None:
        return self.update(intent_id, lambda o: derive_outcome(updater(o)), now)

    def append_signal(
        self,
        intent_id: str,
        signal_type: OutcomeSignalType,
        now: float | None = None,
        meta: dict[str, Any] | None = None,
    ) -> IntentOutcome | None:
        """Append a behavioral signal and re-derive the verdict."""
        return self.update_and_derive(
            intent_id, lambda o: append_signal(o, signal_type, now, meta), now
        )

    def list_recent(self, limit: int = 10, now: float | None = None) -> list[IntentOutcome]:
        results = []
        for intent_id in self._load_index():
            if len(results) >= limit:
                break
            outcome = self.get(intent_id, now)
            if outcome is not None:
                results.append(outcome)
        return results

    def remove(self, intent_id: str) -> None:
        self.storage.remove(self._key(intent_id))
        self._remove_from_index(intent_id)

    def cleanup_expired(self, now: float | None = None) -> int:
        """Drop expired or unreadable outcomes. Returns how many were removed."""
        now = time.time() if now is None else now
        ids = self._load_index()
        kept = []
        for intent_id in ids:
            if self._decode(intent_id, now) is None:
                self.storage.remove(self._key(intent_id))
            else:
                kept.append(intent_id)
        removed = len(ids) - len(kept)
        if removed:
            self._save_index(kept)
            logger.info(f"Cleaned up {removed} expired outcomes")
        return removed

    def clear_all(self) -> None:
        for intent_id in self._load_index():
            self.storage.remove(self._key(intent_id))
        self.storage.remove(INDEX_KEY)

    def get_stats(self, now: float | None = None) -> dict[str, int]:
        outcomes = self.list_recent(self.settings.max_outcomes, now)
        return {
            "total": len(outcomes),
            "accepted": sum(1 for o in outcomes if o.derived.accepted),
            "negative": sum(1 for o in outcomes if o.derived.negative),
            "high_severity": sum(1 for o in outcomes if o.derived.severity == Severity.HIGH),
        }
