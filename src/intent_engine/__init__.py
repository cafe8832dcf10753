"""
Intent Engine

Decision layer for an AI content tool: routes each instruction to CREATE or
TRANSFORM and decides whether to execute, confirm or block.

- binding: request fingerprints (what the user actually sent)
- confidence: rule table for route hint + confidence
- continuity: conversation mode from recent decisions
- preferences: decaying preference memory (soft bias only)
- outcomes: TTL-indexed ledger of what happened after each decision
- learning: learned choices per pattern hash
- governance: role/team policy
- gate: the execution checkpoint
- decision: the full flow
"""

from .binding import RequestBinding, create_request_binding, safe_hash, validate_binding
from .confidence import ConfidenceInput, ConfidenceResult, compute_route_confidence
from .continuity import ContinuityState, ContinuityTracker, ConversationMode, SkipDecision
from .decision import (
    DecisionAction,
    ExecutionRequest,
    ExecutionResult,
    IntentDecision,
    IntentDecisionEngine,
    IntentRequest,
)
from .gate import (
    AuthorizationToken,
    BindingMismatchError,
    ExecutionGate,
    GateDecision,
    UnauthorizedExecutionError,
    UserActionType,
)
from .governance import GovernanceContext, GovernanceEngine, UserRole, create_governance_context
from .models import IntentChoice, IntentType, RouteHint, RouteUsed, StabilityBand
from .outcomes import OutcomeSignalType, OutcomeStore
from .preferences import PreferenceKey, PreferenceStore
from .stability import StabilitySignal, StaticStabilityAssessor
from .storage import MemoryStorage, NullStorage, SqliteStorage, StorageError

__version__ = "0.1.0"

__all__ = [
    # Binding
    "RequestBinding",
    "create_request_binding",
    "validate_binding",
    "safe_hash",
    # Confidence
    "ConfidenceInput",
    "ConfidenceResult",
    "compute_route_confidence",
    # Continuity
    "ContinuityState",
    "ContinuityTracker",
    "ConversationMode",
    "SkipDecision",
    # Decision
    "DecisionAction",
    "ExecutionRequest",
    "ExecutionResult",
    "IntentDecision",
    "IntentDecisionEngine",
    "IntentRequest",
    # Gate
    "AuthorizationToken",
    "BindingMismatchError",
    "ExecutionGate",
    "GateDecision",
    "UnauthorizedExecutionError",
    "UserActionType",
    # Governance
    "GovernanceContext",
    "GovernanceEngine",
    "UserRole",
    "create_governance_context",
    # Models
    "IntentChoice",
    "IntentType",
    "RouteHint",
    "RouteUsed",
    "StabilityBand",
    # Stores
    "OutcomeSignalType",
    "OutcomeStore",
    "PreferenceKey",
    "PreferenceStore",
    # Stability
    "StabilitySignal",
    "StaticStabilityAssessor",
    # Storage
    "MemoryStorage",
    "NullStorage",
    "SqliteStorage",
    "StorageError",
]
