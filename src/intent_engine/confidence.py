"""
Route confidence scoring.

Maps instruction signals to a route hint (CREATE or TRANSFORM) and a numeric
confidence. The scorer is an ordered table of rules; the first rule whose
predicate holds produces the result. No clock, no I/O.

Rule order:
1. explicit new-create          → CREATE 0.92
2. explicit transform reference → TRANSFORM 0.88 (+0.04 with active source)
3. long input (> 120 chars)     → CREATE 0.85 (-0.08 with active source)
4. ambiguous + active source    → TRANSFORM 0.62..0.78
5. ambiguous + last assistant   → TRANSFORM 0.52
6. ambiguous, no context        → CREATE 0.45
7. default                      → CREATE 0.40 (+0.10 with any context)
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass

from intent_engine.models import RouteHint
from intent_engine.signals import InstructionSignals

logger = logging.getLogger(__name__)

HIGH_CONFIDENCE_THRESHOLD = 0.80
LOW_CONFIDENCE_THRESHOLD = 0.65
LONG_INPUT_THRESHOLD = 120


@dataclass(frozen=True)
class ConfidenceInput:
    """Everything the scorer looks at for one instruction."""

    input_text: str
    has_active_source: bool = False
    has_last_valid_assistant: bool = False
    is_explicit_new_create: bool = False
    is_explicit_transform_ref: bool = False
    is_ambiguous_transform: bool = False
    has_action_verb: bool = False
    input_length: int | None = None

    @property
    def length(self) -> int:
        return len(self.input_text) if self.input_length is None else self.input_length

    @classmethod
    def from_signals(
        cls,
        input_text: str,
        signals: InstructionSignals,
        has_active_source: bool = False,
        has_last_valid_assistant: bool = False,
    ) -> "ConfidenceInput":
        return cls(
            input_text=input_text,
            has_active_source=has_active_source,
            has_last_valid_assistant=has_last_valid_assistant,
            is_explicit_new_create=signals.is_explicit_new_create,
            is_explicit_transform_ref=signals.is_explicit_transform_ref,
            is_ambiguous_transform=signals.is_ambiguous_transform,
            has_action_verb=signals.has_action_verb,
            input_length=len(input_text),
        )


@dataclass(frozen=True)
class ConfidenceResult:
    """Route hint plus confidence in [0, 1]."""

    route_hint: RouteHint
    intent_confidence: float
    reason: str
    rule: str

    @property
    def is_high(self) -> bool:
        return is_high_confidence(self.intent_confidence)

    @property
    def is_low(self) -> bool:
        return is_low_confidence(self.intent_confidence)


@dataclass(frozen=True)
class ConfidenceRule:
    """One row in the scoring table."""

    name: str
    route_hint: RouteHint
    predicate: Callable[[ConfidenceInput], bool]
    score: Callable[[ConfidenceInput], float]
    reason: str


# =============================================================================
# SCORE FUNCTIONS
# =============================================================================


def _transform_ref_score(inp: ConfidenceInput) -> float:
    score = 0.88
    if inp.has_active_source:
        score += 0.04
    return min(0.98, score)


def _long_input_score(inp: ConfidenceInput) -> float:
    score = 0.85
    if inp.has_active_source:
        score -= 0.08
    return max(0.75, score)


def _ambiguous_with_source_score(inp: ConfidenceInput) -> float:
    score = 0.62
    if inp.has_action_verb:
        score += 0.08
    if len(inp.input_text.split()) <= 3:
        score += 0.05
    return min(0.78, score)


def _default_score(inp: ConfidenceInput) -> float:
    score = 0.40
    if inp.has_active_source or inp.has_last_valid_assistant:
        score += 0.10
    return score


CONFIDENCE_RULES: tuple[ConfidenceRule, ...] = (
    ConfidenceRule(
        name="EXPLICIT_CREATE",
        route_hint=RouteHint.CREATE,
        predicate=lambda i: i.is_explicit_new_create,
        score=lambda i: 0.92,
        reason="Explicit request for new content",
    ),
    ConfidenceRule(
        name="EXPLICIT_TRANSFORM",
        route_hint=RouteHint.TRANSFORM,
        predicate=lambda i: i.is_explicit_transform_ref,
        score=_transform_ref_score,
        reason="Explicit reference to existing content",
    ),
    ConfidenceRule(
        name="LONG_INPUT",
        route_hint=RouteHint.CREATE,
        predicate=lambda i: i.length > LONG_INPUT_THRESHOLD,
        score=_long_input_score,
        reason=f"Long input (> {LONG_INPUT_THRESHOLD} chars) reads as a new brief",
    ),
    ConfidenceRule(
        name="AMBIGUOUS_WITH_SOURCE",
        route_hint=RouteHint.TRANSFORM,
        predicate=lambda i: i.is_ambiguous_transform and i.has_active_source,
        score=_ambiguous_with_source_score,
        reason="Ambiguous instruction with an active source",
    ),
    ConfidenceRule(
        name="AMBIGUOUS_WITH_LAST_ASSISTANT",
        route_hint=RouteHint.TRANSFORM,
        predicate=lambda i: i.is_ambiguous_transform and i.has_last_valid_assistant,
        score=lambda i: 0.52,
        reason="Ambiguous instruction following an assistant reply",
    ),
    ConfidenceRule(
        name="AMBIGUOUS_NO_CONTEXT",
        route_hint=RouteHint.CREATE,
        predicate=lambda i: i.is_ambiguous_transform,
        score=lambda i: 0.45,
        reason="Ambiguous instruction with nothing to transform",
    ),
    ConfidenceRule(
        name="DEFAULT",
        route_hint=RouteHint.CREATE,
        predicate=lambda i: True,
        score=_default_score,
        reason="No strong signal",
    ),
)


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, round(value, 4)))


def compute_route_confidence(
    inp: ConfidenceInput,
    rules: tuple[ConfidenceRule, ...] = CONFIDENCE_RULES,
) -> ConfidenceResult:
    """
    Score an instruction against the rule table.

    Args:
        inp: Signals for the instruction
        rules: Ordered rule table, first match wins

    Returns:
        ConfidenceResult from the first matching rule
    """
    for rule in rules:
        if rule.predicate(inp):
            result = ConfidenceResult(
                route_hint=rule.route_hint,
                intent_confidence=_clamp(rule.score(inp)),
                reason=rule.reason,
                rule=rule.name,
            )
            logger.debug(
                f"Confidence rule {rule.name}: {result.route_hint.value} "
                f"{result.intent_confidence:.2f}"
            )
            return result

    # DEFAULT always matches; reached only with a custom table
    return ConfidenceResult(RouteHint.CREATE, 0.40, "No rule matched", "NONE")


def is_high_confidence(confidence: float) -> bool:
    return confidence >= HIGH_CONFIDENCE_THRESHOLD


def is_low_confidence(confidence: float) -> bool:
    return confidence < LOW_CONFIDENCE_THRESHOLD
