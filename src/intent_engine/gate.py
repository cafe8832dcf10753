"""
Execution gate.

The only component allowed to authorize a side-effecting AI request. It runs
before any intent detection or state mutation; when it declines, the caller
does nothing else. Rejections are returned as GateDecision values, never
raised.

Checks, in order:
1. user action type is known (send / click / auto)
2. action is fresh (at most max_action_age_seconds old)
3. event id has not been authorized before
4. there is valid input
5. governance allows execution for the caller

A pass records the event id and issues a short-lived AuthorizationToken bound
to that event. Downstream execution must call require_authorized() with the
token, the RequestBinding and the exact text about to be sent.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from intent_engine.binding import RequestBinding, to_base36, validate_binding
from intent_engine.config import GateSettings
from intent_engine.governance import GovernanceContext, GovernanceEngine

logger = logging.getLogger(__name__)

TOKEN_TYPE = "GATE_PASS"
DEFAULT_GATE_SECRET = "GATE_SECRET"


class UnauthorizedExecutionError(Exception):
    """Raised when execution is attempted without a valid gate token."""
    pass


class BindingMismatchError(Exception):
    """Raised when the text about to be sent differs from what the user sent."""
    pass


class UserActionType(str, Enum):
    SEND = "send"
    CLICK = "click"
    AUTO = "auto"
    UNKNOWN = "unknown"


class RejectionCode(str, Enum):
    UNKNOWN_ACTION_TYPE = "UNKNOWN_ACTION_TYPE"
    STALE_ACTION = "STALE_ACTION"
    DUPLICATE_EVENT = "DUPLICATE_EVENT"
    NO_VALID_INPUT = "NO_VALID_INPUT"
    EXECUTION_NOT_ALLOWED = "EXECUTION_NOT_ALLOWED"


@dataclass(frozen=True)
class ExecutionContext:
    user_action_type: UserActionType
    event_id: str
    action_timestamp: float
    has_valid_input: bool
    source_message_id: str | None = None
    action_type: str | None = None
    caller_location: str | None = None
    governance: GovernanceContext | None = None


@dataclass(frozen=True)
class AuthorizationToken:
    event_id: str
    issued_at: float
    expires_at: float
    user_action_type: UserActionType
    signature: str
    type: str = TOKEN_TYPE

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "event_id": self.event_id,
            "issued_at": self.issued_at,
            "expires_at": self.expires_at,
            "user_action_type": self.user_action_type.value,
            "signature": self.signature,
        }


@dataclass(frozen=True)
class GateDecision:
    authorized: bool
    event_id: str
    timestamp: float
    reason_code: str
    rejection_reason: str | None = None
    token: AuthorizationToken | None = None
    debug_info: dict[str, Any] = field(default_factory=dict)


def _signed_hash(data: str) -> int:
    """Java-style 31-multiplier string hash as a signed 32-bit integer."""
    h = 0
    for ch in data:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    return h - 0x100000000 if h & 0x80000000 else h


class ExecutionGate:
    """Single checkpoint for side-effecting requests, with replay protection."""

    def __init__(
        self,
        settings: GateSettings | None = None,
        governance: GovernanceEngine | None = None,
        secret: str = DEFAULT_GATE_SECRET,
    ):
        self.settings = settings or GateSettings()
        self.governance = governance or GovernanceEngine()
        self._secret = secret
        # insertion-ordered; oldest first
        self._processed: dict[str, None] = {}

    def _sign(self, event_id: str, issued_at: float, action_type: UserActionType) -> str:
        issued_ms = int(issued_at * 1000)
        data = f"{event_id}:{issued_ms}:{UserActionType(action_type).value}:{self._secret}"
        return f"sig_{to_base36(abs(_signed_hash(data)))}"

    def _reject(
        self, context: ExecutionContext, now: float, code: RejectionCode, reason: str
    ) -> GateDecision:
        logger.warning(
            f"Execution gate REJECTED {context.event_id}: {code.value} "
            f"(caller={context.caller_location or 'unknown'})"
        )
        return GateDecision(
            authorized=False,
            event_id=context.event_id,
            timestamp=now,
            reason_code=code.value,
            rejection_reason=reason,
            debug_info={"decision": "REJECT", "reason": code.value},
        )

    def _remember(self, event_id: str) -> None:
        self._processed[event_id] = None
        if len(self._processed) > self.settings.max_processed_cache:
            keep = self.settings.max_processed_cache // 2
            for old_id in list(self._processed)[: len(self._processed) - keep]:
                del self._processed[old_id]

    def can_execute(self, context: ExecutionContext, now: float | None = None) -> GateDecision:
        """
        Authorize or reject one execution request.

        Args:
            context: What the user did and when
            now: Current time in epoch seconds

        Returns:
            GateDecision; authorized decisions carry a token
        """
        now = time.time() if now is None else now

        if UserActionType(context.user_action_type) == UserActionType.UNKNOWN:
            return self._reject(
                context, now, RejectionCode.UNKNOWN_ACTION_TYPE,
                "Unknown user action type - cannot verify user intent",
            )

        age = now - context.action_timestamp
        if age > self.settings.max_action_age_seconds:
            return self._reject(
                context, now, RejectionCode.STALE_ACTION,
                f"Action is stale ({age:.1f}s old, max {self.settings.max_action_age_seconds}s)",
            )

        if context.event_id in self._processed:
            return self._reject(
                context, now, RejectionCode.DUPLICATE_EVENT, "Event has already been processed"
            )

        if not context.has_valid_input:
            return self._reject(
                context, now, RejectionCode.NO_VALID_INPUT, "No valid input provided"
            )

        if not self.governance.is_execution_allowed(context.governance):
            return self._reject(
                context, now, RejectionCode.EXECUTION_NOT_ALLOWED,
                f"Role {context.governance.role.value} cannot execute AI requests",
            )

        self._remember(context.event_id)

        action_type = UserActionType(context.user_action_type)
        token = AuthorizationToken(
            event_id=context.event_id,
            issued_at=now,
            expires_at=now + self.settings.token_validity_seconds,
            user_action_type=action_type,
            signature=self._sign(context.event_id, now, action_type),
        )
        logger.info(f"Execution gate AUTHORIZED {context.event_id} ({action_type.value})")
        return GateDecision(
            authorized=True,
            event_id=context.event_id,
            timestamp=now,
            reason_code="ALL_INVARIANTS_PASSED",
            token=token,
            debug_info={"decision": "PASS", "reason": "ALL_INVARIANTS_PASSED"},
        )

    def validate_token(
        self,
        token: AuthorizationToken | None,
        event_id: str | None = None,
        now: float | None = None,
    ) -> bool:
        """Check token type, expiry, signature and (optionally) its event id."""
        now = time.time() if now is None else now
        if token is None:
            logger.warning("Token validation failed: no token provided")
            return False
        if token.type != TOKEN_TYPE:
            logger.warning("Token validation failed: invalid token type")
            return False
        if now > token.expires_at:
            logger.warning(f"Token validation failed: token for {token.event_id} expired")
            return False
        if token.signature != self._sign(token.event_id, token.issued_at, token.user_action_type):
            logger.warning("Token validation failed: invalid signature")
            return False
        if event_id is not None and token.event_id != event_id:
            logger.warning(
                f"Token validation failed: token for {token.event_id} used for {event_id}"
            )
            return False
        return True

    def require_authorized(
        self,
        token: AuthorizationToken | None,
        binding: RequestBinding,
        text: str,
        now: float | None = None,
    ) -> None:
        """
        Guard for execution paths.

        Raises:
            UnauthorizedExecutionError: Token missing, invalid or for another event
            BindingMismatchError: text is not what the user committed to
        """
        if not self.validate_token(token, binding.event_id, now):
            raise UnauthorizedExecutionError(
                f"No valid authorization for event {binding.event_id}"
            )
        if not validate_binding(text, binding):
            raise BindingMismatchError(
                f"Input for event {binding.event_id} changed after send "
                f"(expected {binding.ui_input_length} chars, got {len(text)})"
            )

    def processed_count(self) -> int:
        return len(self._processed)

    def reset(self) -> None:
        self._processed.clear()
