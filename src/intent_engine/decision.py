"""
Intent decision engine.

Wires the components into the request flow:

    gate → signals + confidence → continuity → learning/stability
         → governance → preference bias → continuity skip → action

The gate runs first; a rejected request returns BLOCKED before any other
component is touched. The final action is:

- BLOCKED when governance forbids execution
- CONFIRM when governance requires confirmation
- CONFIRM when continuity says SHOW (correction in progress)
- CONFIRM when a CREATE hint meets an evaluation or question classification
- EXECUTE when continuity says SKIP
- otherwise EXECUTE for high confidence or an explicit governance waiver,
  CONFIRM for everything else

Preference bias only reorders options and suggests a default; it never
changes the action or the route hint.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from intent_engine.binding import RequestBinding, create_request_binding
from intent_engine.confidence import ConfidenceInput, ConfidenceResult, compute_route_confidence
from intent_engine.config import (
    get_gate_settings,
    get_outcome_settings,
    get_preference_settings,
    get_signal_lexicon,
    get_storage_path,
)
from intent_engine.continuity import (
    ContinuityState,
    ContinuityTracker,
    SkipDecision,
    should_skip_confirmation_by_context,
)
from intent_engine.control import ControlLayer
from intent_engine.gate import (
    ExecutionContext,
    ExecutionGate,
    GateDecision,
    UnauthorizedExecutionError,
    UserActionType,
)
from intent_engine.governance import (
    GovernanceContext,
    GovernanceDecision,
    GovernanceEngine,
    IntentSnapshot,
    get_user_scoped_key,
    is_governance_active,
)
from intent_engine.learning import LearnedChoiceStore, compute_pattern_hash
from intent_engine.models import (
    IntentChoice,
    IntentType,
    RouteHint,
    RouteUsed,
    choice_to_intent_type,
    choice_to_route,
)
from intent_engine.outcomes import IntentOutcome, OutcomeSignalType, OutcomeStore, create_outcome
from intent_engine.preferences import (
    BiasResult,
    PreferenceContext,
    PreferenceStore,
    detect_choice_signals,
    detect_instruction_signals,
    detect_output_signals,
)
from intent_engine.signals import (
    DEFAULT_LEXICON,
    Classification,
    Classifier,
    LexiconClassifier,
    SignalLexicon,
    detect_signals,
    normalize_text,
)
from intent_engine.stability import StabilityAssessor, StabilitySignal, StaticStabilityAssessor
from intent_engine.storage import StoragePort, create_storage, ensure_safe

logger = logging.getLogger(__name__)


class DecisionAction(str, Enum):
    EXECUTE = "EXECUTE"
    CONFIRM = "CONFIRM"
    BLOCKED = "BLOCKED"


@dataclass(frozen=True)
class IntentRequest:
    """One user instruction as it arrives from the UI."""

    text: str
    user_action_type: UserActionType = UserActionType.SEND
    action_timestamp: float | None = None
    has_active_source: bool = False
    has_last_valid_assistant: bool = False
    ui_source_message_id: str | None = None
    binding: RequestBinding | None = None
    caller_location: str | None = None


@dataclass(frozen=True)
class IntentDecision:
    action: DecisionAction
    gate: GateDecision
    binding: RequestBinding
    reason: str
    route_hint: RouteHint | None = None
    confidence: ConfidenceResult | None = None
    classification: Classification | None = None
    pattern_hash: str | None = None
    continuity: ContinuityState | None = None
    skip_decision: SkipDecision | None = None
    governance: GovernanceDecision | None = None
    stability: StabilitySignal | None = None
    bias: BiasResult = field(default_factory=BiasResult)
    auto_apply_choice: IntentChoice | None = None
    has_active_source: bool = False

    @property
    def token(self):
        return self.gate.token

    @property
    def event_id(self) -> str:
        return self.binding.event_id

    @property
    def decision_path_label(self) -> str:
        rule = self.confidence.rule if self.confidence else "GATE"
        return f"{rule}/{self.action.value}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.value,
            "reason": self.reason,
            "event_id": self.event_id,
            "route_hint": self.route_hint.value if self.route_hint else None,
            "confidence": self.confidence.intent_confidence if self.confidence else None,
            "rule": self.confidence.rule if self.confidence else None,
            "classification": self.classification.to_dict() if self.classification else None,
            "pattern_hash": self.pattern_hash,
            "mode": self.continuity.mode.value if self.continuity else None,
            "mode_confidence": self.continuity.mode_confidence if self.continuity else None,
            "skip_decision": self.skip_decision.value if self.skip_decision else None,
            "governance_reason": self.governance.reason if self.governance else None,
            "stability_band": self.stability.band.value if self.stability else None,
            "auto_apply_choice": self.auto_apply_choice.value if self.auto_apply_choice else None,
            "default_choice": (
                self.bias.default_choice_bias.value if self.bias.default_choice_bias else None
            ),
            "option_order": [c.value for c in self.bias.option_order_bias],
            "gate_reason": self.gate.reason_code,
        }


@dataclass(frozen=True)
class ExecutionRequest:
    """What the executor receives for an authorized decision."""

    text: str
    route_hint: RouteHint
    event_id: str
    binding: RequestBinding
    choice: IntentChoice | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ExecutionResult:
    success: bool
    content: str = ""
    error: str | None = None
    intent_id: str | None = None


class Executor(Protocol):
    async def __call__(self, request: ExecutionRequest) -> ExecutionResult: ...


# Classifier categories that never create content without a confirmation
NON_GENERATIVE_CATEGORIES = frozenset({"evaluation", "meta"})


def _final_action(
    confidence: ConfidenceResult,
    governance: GovernanceDecision,
    governance_active: bool,
    execution_allowed: bool,
    skip: SkipDecision,
    classification: Classification | None = None,
) -> tuple[DecisionAction, str]:
    if not execution_allowed:
        return DecisionAction.BLOCKED, governance.reason
    if governance_active and governance.confirmation_required:
        return DecisionAction.CONFIRM, governance.reason
    if skip == SkipDecision.SHOW:
        return DecisionAction.CONFIRM, "Correction in progress"
    if (
        confidence.route_hint == RouteHint.CREATE
        and classification is not None
        and classification.category in NON_GENERATIVE_CATEGORIES
    ):
        return DecisionAction.CONFIRM, "Instruction reads as a question or review"
    if skip == SkipDecision.SKIP:
        return DecisionAction.EXECUTE, "Stable conversation flow"
    if confidence.is_high:
        return DecisionAction.EXECUTE, "High confidence"
    if governance_active and not governance.confirmation_required:
        return DecisionAction.EXECUTE, governance.reason
    return DecisionAction.CONFIRM, "Confidence below auto-execute threshold"


def _execution_metadata(decision: IntentDecision) -> dict[str, Any]:
    """Context the executor uses to pick its CREATE or TRANSFORM branch."""
    metadata: dict[str, Any] = {"decision_path": decision.decision_path_label}
    if decision.confidence is not None:
        metadata["confidence"] = decision.confidence.intent_confidence
    if decision.classification is not None:
        metadata["classification"] = decision.classification.to_dict()
    return metadata


class IntentDecisionEngine:
    """Decision flow for one user session.

    The governance context is fixed per engine and handed explicitly to every
    component that needs it; stores are scoped to its user.
    """

    def __init__(
        self,
        storage: StoragePort | None = None,
        governance_context: GovernanceContext | None = None,
        governance: GovernanceEngine | None = None,
        gate: ExecutionGate | None = None,
        stability: StabilityAssessor | None = None,
        classifier: Classifier | None = None,
        lexicon: SignalLexicon = DEFAULT_LEXICON,
        preferences: PreferenceStore | None = None,
        outcomes: OutcomeStore | None = None,
        learning: LearnedChoiceStore | None = None,
        continuity: ContinuityTracker | None = None,
    ):
        self.storage = ensure_safe(storage)
        self.governance_context = governance_context
        self.governance = governance or GovernanceEngine()
        self.gate = gate or ExecutionGate(governance=self.governance)
        self.stability = stability or StaticStabilityAssessor()
        self.classifier = classifier or LexiconClassifier()
        self.lexicon = lexicon
        self.preferences = preferences or PreferenceStore(
            self.storage, governance=governance_context
        )
        self.outcomes = outcomes or OutcomeStore(self.storage)
        self.learning = learning or LearnedChoiceStore(self.storage, governance=governance_context)
        self.continuity = continuity or ContinuityTracker(
            self.storage,
            storage_key=get_user_scoped_key("intent_engine_continuity_v1", governance_context),
        )
        self.control = ControlLayer(
            self.preferences,
            self.learning,
            self.outcomes,
            self.continuity,
            governance=self.governance,
            governance_context=governance_context,
        )

    @classmethod
    def from_config(
        cls,
        config: dict[str, Any],
        governance_context: GovernanceContext | None = None,
        **kwargs: Any,
    ) -> "IntentDecisionEngine":
        """Build an engine with storage and settings from a loaded config dict."""
        storage = create_storage(
            config.get("storage", {}).get("backend", "sqlite"), get_storage_path(config)
        )
        governance = kwargs.pop("governance", None) or GovernanceEngine()
        kwargs.setdefault("lexicon", get_signal_lexicon(config))
        return cls(
            storage=storage,
            governance_context=governance_context,
            governance=governance,
            gate=ExecutionGate(get_gate_settings(config), governance=governance),
            preferences=PreferenceStore(
                storage, get_preference_settings(config), governance=governance_context
            ),
            outcomes=OutcomeStore(storage, get_outcome_settings(config)),
            **kwargs,
        )

    # -------------------------------------------------------------------------
    # permissions
    # -------------------------------------------------------------------------

    def _learning_allowed(self) -> bool:
        return self.governance.is_learning_allowed(self.governance_context)

    def _auto_apply_allowed(self) -> bool:
        return (
            self.governance.is_auto_apply_allowed(self.governance_context)
            and self.control.auto_apply_enabled
        )

    # -------------------------------------------------------------------------
    # decide
    # -------------------------------------------------------------------------

    def decide(self, request: IntentRequest, now: float | None = None) -> IntentDecision:
        """
        Decide route and action for one instruction.

        Args:
            request: The instruction and its UI context
            now: Current time in epoch seconds

        Returns:
            IntentDecision; BLOCKED decisions carry only the gate result
        """
        now = time.time() if now is None else now
        sent_at = now if request.action_timestamp is None else request.action_timestamp
        binding = request.binding or create_request_binding(request.text, now=sent_at)

        gate_decision = self.gate.can_execute(
            ExecutionContext(
                user_action_type=request.user_action_type,
                event_id=binding.event_id,
                action_timestamp=sent_at,
                has_valid_input=bool(request.text.strip()),
                source_message_id=request.ui_source_message_id,
                caller_location=request.caller_location,
                governance=self.governance_context,
            ),
            now=now,
        )
        if not gate_decision.authorized:
            return IntentDecision(
                action=DecisionAction.BLOCKED,
                gate=gate_decision,
                binding=binding,
                reason=gate_decision.rejection_reason or gate_decision.reason_code,
            )

        signals = detect_signals(request.text, self.lexicon)
        classification = self.classifier.classify(request.text)
        confidence = compute_route_confidence(
            ConfidenceInput.from_signals(
                request.text,
                signals,
                has_active_source=request.has_active_source,
                has_last_valid_assistant=request.has_last_valid_assistant,
            )
        )
        route_hint = confidence.route_hint
        pattern_hash = compute_pattern_hash(
            normalize_text(request.text),
            has_active_source=request.has_active_source,
            has_last_valid_assistant=request.has_last_valid_assistant,
            ui_source_message_id=request.ui_source_message_id,
        )

        auto_apply_allowed = self._auto_apply_allowed()
        auto_apply_choice = (
            self.learning.get_auto_apply_choice(pattern_hash, now) if auto_apply_allowed else None
        )
        intent_type = (
            choice_to_intent_type(auto_apply_choice)
            if auto_apply_choice is not None
            else IntentType(route_hint.value)
        )
        continuity = self.continuity.record_intent(
            intent_type, pattern_hash, route_hint=route_hint, now=now
        )

        stability = self.stability.assess(pattern_hash)
        auto_apply_eligible = auto_apply_allowed and stability.auto_apply_eligible

        governance_decision = self.governance.should_force_confirmation(
            self.governance_context,
            IntentSnapshot(
                pattern_hash=pattern_hash,
                route_hint=route_hint,
                confidence=confidence.intent_confidence,
                auto_apply_suggested=auto_apply_eligible or auto_apply_choice is not None,
            ),
            continuity,
            stability.band,
        )

        bias = BiasResult()
        if governance_decision.preference_bias_allowed and self.control.preferences_enabled:
            bias = self.preferences.get_preference_bias(
                PreferenceContext(
                    route_hint=route_hint,
                    has_active_source=request.has_active_source,
                    input_length=len(request.text),
                    stability_band=stability.band,
                ),
                now=now,
            )

        skip = should_skip_confirmation_by_context(
            continuity, stability.band, route_hint, auto_apply_eligible
        )

        action, reason = _final_action(
            confidence,
            governance_decision,
            governance_active=is_governance_active(self.governance_context),
            execution_allowed=self.governance.is_execution_allowed(self.governance_context),
            skip=skip,
            classification=classification,
        )

        decision = IntentDecision(
            action=action,
            gate=gate_decision,
            binding=binding,
            reason=reason,
            route_hint=route_hint,
            confidence=confidence,
            classification=classification,
            pattern_hash=pattern_hash,
            continuity=continuity,
            skip_decision=skip,
            governance=governance_decision,
            stability=stability,
            bias=bias,
            auto_apply_choice=auto_apply_choice if governance_decision.auto_apply_allowed else None,
            has_active_source=request.has_active_source,
        )
        logger.debug(
            f"Decision {binding.event_id}: {action.value} {route_hint.value} "
            f"{confidence.intent_confidence:.2f} ({reason})"
        )
        return decision

    # -------------------------------------------------------------------------
    # execute
    # -------------------------------------------------------------------------

    async def execute(
        self,
        decision: IntentDecision,
        executor: Executor,
        text: str,
        confirmed: bool = False,
        choice: IntentChoice | None = None,
        now: float | None = None,
    ) -> ExecutionResult:
        """
        Run an authorized decision through the executor and record the outcome.

        Args:
            decision: Result of decide()
            executor: Async LLM boundary
            text: Exact text about to be sent (re-validated against the binding)
            confirmed: True when the user confirmed a CONFIRM decision
            choice: Option the user picked, if any

        Raises:
            UnauthorizedExecutionError: BLOCKED, unconfirmed, or token invalid
            BindingMismatchError: text differs from what was sent
        """
        if decision.action == DecisionAction.BLOCKED:
            raise UnauthorizedExecutionError(f"Decision blocked: {decision.reason}")
        if decision.action == DecisionAction.CONFIRM and not confirmed:
            raise UnauthorizedExecutionError("Decision requires user confirmation")

        self.gate.require_authorized(decision.token, decision.binding, text, now=now)

        route_hint = decision.route_hint
        if choice is not None:
            route_hint = (
                RouteHint.CREATE if choice == IntentChoice.CREATE_NEW else RouteHint.TRANSFORM
            )

        result = await executor(
            ExecutionRequest(
                text=text,
                route_hint=route_hint,
                event_id=decision.event_id,
                binding=decision.binding,
                choice=choice,
                metadata=_execution_metadata(decision),
            )
        )
        if not result.success:
            logger.warning(f"Executor failed for {decision.event_id}: {result.error}")
            return result

        now = time.time() if now is None else now
        route_used = choice_to_route(choice) if choice else RouteUsed(route_hint.value)
        outcome = create_outcome(
            route_used,
            pattern_hash=decision.pattern_hash,
            confidence=decision.confidence.intent_confidence if decision.confidence else None,
            decision_path_label=decision.decision_path_label,
            now=now,
        )
        self.outcomes.put(outcome)

        if choice is not None:
            self.record_choice(decision, choice, now=now)

        if self._learning_allowed() and self.control.preferences_enabled:
            observations = detect_instruction_signals(text)
            if result.content:
                observations += detect_output_signals(result.content)
            if observations:
                self.preferences.record_preferences([(s, False) for s in observations], now=now)

        return ExecutionResult(
            success=True, content=result.content, error=None, intent_id=outcome.intent_id
        )

    # -------------------------------------------------------------------------
    # feedback
    # -------------------------------------------------------------------------

    def record_choice(
        self, decision: IntentDecision, choice: IntentChoice, now: float | None = None
    ) -> None:
        """Remember which option the user picked for this pattern.

        Continuity always sees the choice; learned choices and preferences
        only when learning is allowed.
        """
        if decision.pattern_hash is None:
            return
        self.continuity.record_choice(
            decision.pattern_hash, choice, route_hint=decision.route_hint, now=now
        )
        if not self._learning_allowed():
            return
        self.learning.record_choice(decision.pattern_hash, choice, now)
        if self.control.preferences_enabled:
            signals = detect_choice_signals(
                choice,
                PreferenceContext(
                    route_hint=decision.route_hint,
                    has_active_source=decision.has_active_source,
                ),
            )
            if signals:
                self.preferences.record_preferences([(s, False) for s in signals], now=now)

    def record_signal(
        self,
        intent_id: str,
        signal_type: OutcomeSignalType,
        now: float | None = None,
    ) -> IntentOutcome | None:
        """
        Append a post-decision signal to an outcome.

        An undo also flags continuity so the next request is confirmed. Verdict
        changes feed the per-pattern reliability used for auto-apply.
        """
        signal_type = OutcomeSignalType(signal_type)
        previous = self.outcomes.get(intent_id, now)
        if previous is None:
            logger.debug(f"Signal {signal_type.value} for unknown outcome {intent_id}")
            return None

        outcome = self.outcomes.append_signal(intent_id, signal_type, now)
        if outcome is None:
            return None

        if signal_type == OutcomeSignalType.UNDO_WITHIN_WINDOW:
            self.continuity.mark_undo()

        if self._learning_allowed() and outcome.derived != previous.derived:
            self.learning.record_outcome(
                outcome.pattern_hash,
                outcome.derived.severity.value,
                outcome.derived.negative,
                now,
                intent_id=intent_id,
            )
        return outcome
