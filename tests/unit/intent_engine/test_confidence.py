"""Tests for route confidence scoring."""

import pytest

from intent_engine.confidence import (
    CONFIDENCE_RULES,
    HIGH_CONFIDENCE_THRESHOLD,
    LOW_CONFIDENCE_THRESHOLD,
    ConfidenceInput,
    ConfidenceRule,
    compute_route_confidence,
    is_high_confidence,
    is_low_confidence,
)
from intent_engine.models import RouteHint
from intent_engine.signals import detect_signals


class TestRuleTable:
    """Each rule in order, with its score adjustments."""

    @pytest.mark.parametrize(
        ("inp", "rule", "route", "confidence"),
        [
            (
                ConfidenceInput("viết bài mới", is_explicit_new_create=True,
                                is_explicit_transform_ref=True),
                "EXPLICIT_CREATE", RouteHint.CREATE, 0.92,
            ),
            (
                ConfidenceInput("sửa bài này", is_explicit_transform_ref=True),
                "EXPLICIT_TRANSFORM", RouteHint.TRANSFORM, 0.88,
            ),
            (
                ConfidenceInput("sửa bài này", is_explicit_transform_ref=True,
                                has_active_source=True),
                "EXPLICIT_TRANSFORM", RouteHint.TRANSFORM, 0.92,
            ),
            (
                ConfidenceInput("x" * 121),
                "LONG_INPUT", RouteHint.CREATE, 0.85,
            ),
            (
                ConfidenceInput("x" * 121, has_active_source=True),
                "LONG_INPUT", RouteHint.CREATE, 0.77,
            ),
            (
                ConfidenceInput("ngắn hơn", is_ambiguous_transform=True, has_active_source=True),
                "AMBIGUOUS_WITH_SOURCE", RouteHint.TRANSFORM, 0.67,
            ),
            (
                ConfidenceInput("sửa ngắn hơn", is_ambiguous_transform=True,
                                has_active_source=True, has_action_verb=True),
                "AMBIGUOUS_WITH_SOURCE", RouteHint.TRANSFORM, 0.75,
            ),
            (
                ConfidenceInput("please make this one a bit shorter", is_ambiguous_transform=True,
                                has_active_source=True),
                "AMBIGUOUS_WITH_SOURCE", RouteHint.TRANSFORM, 0.62,
            ),
            (
                ConfidenceInput("ngắn hơn", is_ambiguous_transform=True,
                                has_last_valid_assistant=True),
                "AMBIGUOUS_WITH_LAST_ASSISTANT", RouteHint.TRANSFORM, 0.52,
            ),
            (
                ConfidenceInput("ngắn hơn", is_ambiguous_transform=True),
                "AMBIGUOUS_NO_CONTEXT", RouteHint.CREATE, 0.45,
            ),
            (
                ConfidenceInput("cà phê"),
                "DEFAULT", RouteHint.CREATE, 0.40,
            ),
            (
                ConfidenceInput("cà phê", has_last_valid_assistant=True),
                "DEFAULT", RouteHint.CREATE, 0.50,
            ),
        ],
    )
    def test_rule(self, inp, rule, route, confidence):
        """The first matching rule decides route and score."""
        result = compute_route_confidence(inp)
        assert result.rule == rule
        assert result.route_hint == route
        assert result.intent_confidence == pytest.approx(confidence)

    def test_rule_order(self):
        """Rules are evaluated in a fixed order ending with DEFAULT."""
        assert [r.name for r in CONFIDENCE_RULES] == [
            "EXPLICIT_CREATE",
            "EXPLICIT_TRANSFORM",
            "LONG_INPUT",
            "AMBIGUOUS_WITH_SOURCE",
            "AMBIGUOUS_WITH_LAST_ASSISTANT",
            "AMBIGUOUS_NO_CONTEXT",
            "DEFAULT",
        ]

    def test_length_boundary(self):
        """Exactly 120 characters is not long input."""
        assert compute_route_confidence(ConfidenceInput("x" * 120)).rule == "DEFAULT"

    def test_explicit_length_overrides_text(self):
        """input_length wins over len(input_text)."""
        inp = ConfidenceInput("short", input_length=500)
        assert compute_route_confidence(inp).rule == "LONG_INPUT"


class TestCustomRules:
    """Tests for injected rule tables."""

    def test_custom_table(self):
        """A custom table replaces the defaults."""
        rules = (
            ConfidenceRule("ALWAYS", RouteHint.TRANSFORM, lambda i: True, lambda i: 1.7, "x"),
        )
        result = compute_route_confidence(ConfidenceInput("anything"), rules)
        assert result.rule == "ALWAYS"
        assert result.intent_confidence == 1.0

    def test_no_match_fallback(self):
        """An exhausted table falls back to CREATE 0.40."""
        result = compute_route_confidence(ConfidenceInput("x"), ())
        assert result.route_hint == RouteHint.CREATE
        assert result.intent_confidence == 0.40


class TestFromSignals:
    """Tests for ConfidenceInput.from_signals."""

    def test_end_to_end(self):
        """Detected signals flow into the scorer."""
        text = "viết lại toàn bộ"
        inp = ConfidenceInput.from_signals(text, detect_signals(text))
        assert inp.is_explicit_new_create is True
        assert inp.length == len(text)
        assert compute_route_confidence(inp).rule == "EXPLICIT_CREATE"

    def test_action_verb_bonus(self):
        """A detected action verb lifts the ambiguous-with-source score."""
        text = "sửa ngắn hơn"
        signals = detect_signals(text)
        assert signals.has_action_verb
        inp = ConfidenceInput.from_signals(text, signals, has_active_source=True)
        assert inp.has_action_verb is True
        result = compute_route_confidence(inp)
        assert result.rule == "AMBIGUOUS_WITH_SOURCE"
        assert result.intent_confidence == pytest.approx(0.75)


class TestThresholds:
    """Tests for the confidence bands."""

    def test_high(self):
        """0.80 and above is high."""
        assert is_high_confidence(HIGH_CONFIDENCE_THRESHOLD)
        assert not is_high_confidence(0.79)

    def test_low(self):
        """Below 0.65 is low."""
        assert is_low_confidence(0.64)
        assert not is_low_confidence(LOW_CONFIDENCE_THRESHOLD)

    def test_result_properties(self):
        """ConfidenceResult exposes the bands."""
        result = compute_route_confidence(ConfidenceInput("cà phê"))
        assert result.is_low
        assert not result.is_high
