"""
Stability assessment contract.

How repeatable a pattern has proven is scored outside this package. The
decision engine only consumes the result through StabilityAssessor.
"""

from dataclasses import dataclass
from typing import Protocol

from intent_engine.models import StabilityBand


@dataclass(frozen=True)
class StabilitySignal:
    """Assessed stability of one pattern hash."""

    band: StabilityBand = StabilityBand.LOW
    auto_apply_eligible: bool = False
    negative_high_count: int = 0


class StabilityAssessor(Protocol):
    def assess(self, pattern_hash: str) -> StabilitySignal: ...


class StaticStabilityAssessor:
    """Returns a fixed signal, optionally overridden per pattern hash."""

    def __init__(
        self,
        default: StabilitySignal | None = None,
        by_pattern: dict[str, StabilitySignal] | None = None,
    ):
        self.default = default or StabilitySignal()
        self.by_pattern = dict(by_pattern or {})

    def assess(self, pattern_hash: str) -> StabilitySignal:
        return self.by_pattern.get(pattern_hash, self.default)
