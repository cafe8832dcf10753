"""Shared pytest fixtures for intent-engine tests.

All fixtures are in-memory. Most components take an explicit
``now``; the recovery paths run on wall time.
"""

import pytest

from intent_engine.decision import IntentDecisionEngine, IntentRequest
from intent_engine.governance import UserRole, create_governance_context
from intent_engine.storage import MemoryStorage

# Fixed epoch seconds used as "now" across tests
NOW = 1_700_000_000.0

DAY = 86400.0


# =============================================================================
# Clock / Storage Fixtures
# =============================================================================


@pytest.fixture
def now() -> float:
    """Return the fixed test clock."""
    return NOW


@pytest.fixture
def storage() -> MemoryStorage:
    """Provide a fresh in-memory storage adapter."""
    return MemoryStorage()


# =============================================================================
# Governance Fixtures
# =============================================================================


@pytest.fixture
def editor_context():
    """Governance context for an EDITOR."""
    return create_governance_context("editor-1", UserRole.EDITOR, team_id="team-a")


@pytest.fixture
def junior_context():
    """Governance context for a JUNIOR."""
    return create_governance_context("junior-1", UserRole.JUNIOR, team_id="team-a")


@pytest.fixture
def viewer_context():
    """Governance context for a VIEWER."""
    return create_governance_context("viewer-1", UserRole.VIEWER)


# =============================================================================
# Engine Fixtures
# =============================================================================


@pytest.fixture
def engine(storage) -> IntentDecisionEngine:
    """Engine with memory storage and governance inactive."""
    return IntentDecisionEngine(storage=storage)


@pytest.fixture
def make_request():
    """Factory for IntentRequest stamped at the fixed clock."""

    def _make(text: str, **kwargs) -> IntentRequest:
        kwargs.setdefault("action_timestamp", NOW)
        return IntentRequest(text=text, **kwargs)

    return _make
