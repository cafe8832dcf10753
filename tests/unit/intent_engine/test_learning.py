"""Tests for learned choices and pattern reliability."""

import pytest

from intent_engine.governance import UserRole, create_governance_context
from intent_engine.learning import (
    BASE_RELIABILITY_KEY,
    BASE_STORAGE_KEY,
    LearnedChoiceStore,
    compute_pattern_hash,
)
from intent_engine.models import IntentChoice
from intent_engine.storage import MemoryStorage

NOW = 1_700_000_000.0
DAY = 86400.0
EDIT = IntentChoice.EDIT_IN_PLACE
NEW = IntentChoice.CREATE_NEW


@pytest.fixture
def store():
    return LearnedChoiceStore(MemoryStorage())


class TestComputePatternHash:
    """Tests for compute_pattern_hash."""

    def test_deterministic_hex(self):
        """Same input gives the same hex digest."""
        first = compute_pattern_hash("ngắn hơn", True)
        assert first == compute_pattern_hash("ngắn hơn", True)
        assert int(first, 16) >= 0

    def test_case_and_whitespace_insensitive(self):
        """Normalization is applied before hashing."""
        assert compute_pattern_hash("  Shorter ") == compute_pattern_hash("shorter")

    def test_context_flags_matter(self):
        """The same words in a different context are a different pattern."""
        base = compute_pattern_hash("shorter")
        assert compute_pattern_hash("shorter", has_active_source=True) != base
        assert compute_pattern_hash("shorter", has_last_valid_assistant=True) != base
        assert compute_pattern_hash("shorter", ui_source_message_id="m1") != base

    def test_only_prefix_counts(self):
        """Text past 50 characters does not change the pattern."""
        prefix = "x" * 50
        assert compute_pattern_hash(prefix + "a") == compute_pattern_hash(prefix + "b")


class TestLearnedChoices:
    """Tests for choice learning and auto-apply."""

    def test_first_choice(self, store):
        """A first choice is learned with count 1."""
        learned = store.record_choice("p", EDIT, now=NOW)
        assert learned.count == 1
        assert store.get_auto_apply_choice("p", now=NOW) is None

    def test_auto_apply_after_two(self, store):
        """Two consistent choices enable auto-apply."""
        store.record_choice("p", EDIT, now=NOW)
        store.record_choice("p", EDIT, now=NOW + 1)
        assert store.get_auto_apply_choice("p", now=NOW + 2) == EDIT

    def test_different_choice_resets(self, store):
        """A different choice replaces the learned one."""
        store.record_choice("p", EDIT, now=NOW)
        store.record_choice("p", EDIT, now=NOW)
        learned = store.record_choice("p", NEW, now=NOW)
        assert learned.choice == NEW
        assert learned.count == 1
        assert store.get_auto_apply_choice("p", now=NOW) is None

    def test_negative_signals_block(self, store):
        """Two negatives stop auto-apply."""
        store.record_choice("p", EDIT, now=NOW)
        store.record_choice("p", EDIT, now=NOW)
        store.record_negative_signal("p", EDIT, now=NOW)
        assert store.get_auto_apply_choice("p", now=NOW) == EDIT
        store.record_negative_signal("p", EDIT, now=NOW)
        assert store.get_auto_apply_choice("p", now=NOW) is None

    def test_negative_for_other_choice_ignored(self, store):
        """Negatives only count against the matching choice."""
        store.record_choice("p", EDIT, now=NOW)
        store.record_negative_signal("p", NEW, now=NOW)
        assert store.get_learned_choice("p", now=NOW).negative_count == 0

    def test_ttl(self, store):
        """Choices unused for 30 days are forgotten."""
        store.record_choice("p", EDIT, now=NOW)
        assert store.get_learned_choice("p", now=NOW + 31 * DAY) is None

    def test_wrong_version_clears(self):
        """A payload with another version is discarded."""
        storage = MemoryStorage()
        storage.set_json(BASE_STORAGE_KEY, {"version": 0, "choices": {}})
        assert LearnedChoiceStore(storage).get_learned_choice("p", now=NOW) is None
        assert storage.get(BASE_STORAGE_KEY) is None

    def test_stats(self, store):
        """Stats split auto-applyable and unreliable patterns."""
        store.record_choice("a", EDIT, now=NOW)
        store.record_choice("a", EDIT, now=NOW)
        store.record_choice("b", NEW, now=NOW)
        store.record_negative_signal("b", NEW, now=NOW)
        store.record_negative_signal("b", NEW, now=NOW)
        assert store.get_stats(now=NOW) == {
            "total_patterns": 2,
            "auto_applyable": 1,
            "unreliable": 1,
        }

    def test_user_scoped(self):
        """Learning is isolated per user under governance."""
        storage = MemoryStorage()
        alice = LearnedChoiceStore(storage, create_governance_context("alice", UserRole.EDITOR))
        bob = LearnedChoiceStore(storage, create_governance_context("bob", UserRole.EDITOR))
        alice.record_choice("p", EDIT, now=NOW)
        assert bob.get_learned_choice("p", now=NOW) is None
        assert alice.storage_key == f"{BASE_STORAGE_KEY}_user_alice"
        assert alice.reliability_key == f"{BASE_RELIABILITY_KEY}_user_alice"


class TestReliability:
    """Tests for outcome reliability."""

    def test_high_negatives_mark_unreliable(self, store):
        """Two high-severity negatives make a pattern unreliable."""
        store.record_outcome("p", "high", negative=True, now=NOW)
        assert store.is_pattern_unreliable("p", now=NOW) is False
        store.record_outcome("p", "high", negative=True, now=NOW)
        assert store.is_pattern_unreliable("p", now=NOW) is True

    def test_same_intent_counted_once(self, store):
        """Repeated high negatives for one intent count once; another intent counts again."""
        store.record_outcome("p", "high", negative=True, now=NOW, intent_id="intent-a")
        store.record_outcome("p", "high", negative=True, now=NOW, intent_id="intent-a")
        assert store.get_pattern_reliability("p", now=NOW).high_negative_count == 1
        assert store.is_pattern_unreliable("p", now=NOW) is False

        store.record_outcome("p", "high", negative=True, now=NOW, intent_id="intent-b")
        assert store.is_pattern_unreliable("p", now=NOW) is True

    def test_counted_intents_bounded(self, store):
        """Only the most recent intent ids are remembered per pattern."""
        for i in range(25):
            store.record_outcome("p", "high", negative=True, now=NOW, intent_id=f"intent-{i}")
        reliability = store.get_pattern_reliability("p", now=NOW)
        assert reliability.high_negative_count == 25
        assert len(reliability.counted_intent_ids) == 20
        assert reliability.counted_intent_ids[-1] == "intent-24"

    def test_medium_negatives_do_not_count(self, store):
        """Medium-severity negatives are not counted."""
        store.record_outcome("p", "medium", negative=True, now=NOW)
        store.record_outcome("p", "medium", negative=True, now=NOW)
        assert store.is_pattern_unreliable("p", now=NOW) is False

    def test_accepts_counted(self, store):
        """Positive outcomes increment accepted_count."""
        store.record_outcome("p", "low", negative=False, now=NOW)
        assert store.get_pattern_reliability("p", now=NOW).accepted_count == 1

    def test_missing_hash_ignored(self, store):
        """Outcomes without a pattern are not recorded."""
        store.record_outcome(None, "high", negative=True, now=NOW)
        assert store.storage.get(store.reliability_key) is None

    def test_unreliable_blocks_auto_apply(self, store):
        """An unreliable pattern never auto-applies."""
        store.record_choice("p", EDIT, now=NOW)
        store.record_choice("p", EDIT, now=NOW)
        store.record_outcome("p", "high", negative=True, now=NOW)
        store.record_outcome("p", "high", negative=True, now=NOW)
        assert store.get_auto_apply_choice("p", now=NOW) is None

    def test_reset_pattern(self, store):
        """reset_pattern forgets choice and reliability."""
        store.record_choice("p", EDIT, now=NOW)
        store.record_outcome("p", "high", negative=True, now=NOW)
        assert store.reset_pattern("p", now=NOW) is True
        assert store.get_learned_choice("p", now=NOW) is None
        assert store.get_pattern_reliability("p", now=NOW) is None
        assert store.reset_pattern("p", now=NOW) is False

    def test_clear(self, store):
        """clear() removes both payloads."""
        store.record_choice("p", EDIT, now=NOW)
        store.record_outcome("p", "high", negative=True, now=NOW)
        store.clear()
        assert store.get_stats(now=NOW)["total_patterns"] == 0
        assert store.get_pattern_reliability("p", now=NOW) is None
