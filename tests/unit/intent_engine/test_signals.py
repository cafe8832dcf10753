"""Tests for instruction signal detection and classification."""

import pytest

from intent_engine.signals import (
    LexiconClassifier,
    SignalLexicon,
    detect_ambiguous_transform,
    detect_new_create,
    detect_signals,
    detect_transform_reference,
    normalize_text,
)


class TestNormalizeText:
    """Tests for normalize_text."""

    def test_lower_and_strip(self):
        """Whitespace is trimmed and case folded."""
        assert normalize_text("  Make It SHORTER ") == "make it shorter"

    def test_nfc(self):
        """Decomposed diacritics are composed."""
        decomposed = "nga\u0306\u0301n"
        assert normalize_text(decomposed) == "ng\u1eafn"


class TestDetectNewCreate:
    """Tests for explicit new-content detection."""

    @pytest.mark.parametrize(
        "text",
        [
            "viết bài mới về cà phê",
            "Viết một bài mới cho quán",
            "chuyển sang chủ đề khác",
            "viết lại toàn bộ",
            "làm lại từ đầu",
            "write a new post about coffee",
            "let's start over",
            "rewrite everything",
            "do it from scratch",
        ],
    )
    def test_positive(self, text):
        """Explicit requests for new content are detected."""
        assert detect_new_create(text) is True

    @pytest.mark.parametrize("text", ["ngắn hơn", "make it shorter", "sửa bài này"])
    def test_negative(self, text):
        """Edits are not new-content requests."""
        assert detect_new_create(text) is False


class TestDetectTransformReference:
    """Tests for explicit references to existing content."""

    @pytest.mark.parametrize(
        "text",
        ["sửa bài này cho ngắn", "đoạn trên dài quá", "rewrite this post", "fix the above one"],
    )
    def test_positive(self, text):
        """References to existing content are detected."""
        assert detect_transform_reference(text) is True

    def test_negative(self):
        """A bare verb is not a reference."""
        assert detect_transform_reference("ngắn hơn") is False


class TestDetectAmbiguousTransform:
    """Tests for ambiguous transform detection."""

    @pytest.mark.parametrize("text", ["ngắn hơn", "make it better", "dịch", "polish"])
    def test_short_verbs_are_ambiguous(self, text):
        """Short transform-like instructions are ambiguous."""
        assert detect_ambiguous_transform(text) is True

    def test_too_short(self):
        """Under three characters carries too little signal."""
        assert detect_ambiguous_transform("ok") is False

    def test_no_verb(self):
        """Text without a transform verb is not ambiguous."""
        assert detect_ambiguous_transform("cà phê sữa đá") is False

    def test_over_max_length(self):
        """Inputs over 120 characters are deliberate."""
        assert detect_ambiguous_transform("shorter " + "x" * 120) is False

    def test_mid_length_needs_few_words(self):
        """Between 80 and 120 characters only very few words count."""
        many_words = "please make it shorter " + " ".join(["word"] * 15)
        assert 80 < len(many_words) <= 120
        assert detect_ambiguous_transform(many_words) is False

        few_words = "shorter " + "x" * 80
        assert 80 < len(few_words) <= 120
        assert detect_ambiguous_transform(few_words) is True


class TestDetectSignals:
    """Tests for detect_signals aggregation."""

    def test_collects_all_flags(self):
        """Signals from each detector are combined."""
        signals = detect_signals("sửa bài này ngắn hơn")
        assert signals.is_explicit_transform_ref is True
        assert signals.is_ambiguous_transform is True
        assert signals.is_explicit_new_create is False
        assert signals.has_action_verb is True
        assert signals.word_count == 5
        assert "ambiguous_transform" in signals.matched

    def test_empty(self):
        """Empty text yields no signals."""
        signals = detect_signals("")
        assert not signals.is_explicit_new_create
        assert not signals.is_explicit_transform_ref
        assert not signals.is_ambiguous_transform
        assert signals.word_count == 0


class TestSignalLexicon:
    """Tests for lexicon extension."""

    def test_from_dict_extends_defaults(self):
        """Extra patterns are added on top of the defaults."""
        lexicon = SignalLexicon.from_dict({"new_create": [r"brand\s+new\s+draft"]})
        assert detect_new_create("a brand new draft please", lexicon) is True
        assert detect_new_create("viết bài mới", lexicon) is True

    def test_from_dict_none(self):
        """None gives the default lexicon."""
        lexicon = SignalLexicon.from_dict(None)
        assert len(lexicon.new_create) == len(SignalLexicon().new_create)


class TestLexiconClassifier:
    """Tests for the default classifier."""

    @pytest.mark.parametrize(
        ("text", "expected_type", "expected_category"),
        [
            ("ngắn hơn", "SHORTEN", "transform"),
            ("dịch sang tiếng Anh", "TRANSLATE", "transform"),
            ("viết lại đoạn này", "REWRITE", "transform"),
            ("viết cho tôi một bài về cà phê", "CREATE_CONTENT", "generation"),
            ("đánh giá bài này", "EVALUATE", "evaluation"),
            ("brainstorm ideas for a cafe", "BRAINSTORM", "generation"),
        ],
    )
    def test_classifies(self, text, expected_type, expected_category):
        """Instructions map to their action type."""
        result = LexiconClassifier().classify(text)
        assert result.type == expected_type
        assert result.category == expected_category

    def test_default_when_unmatched(self):
        """Unmatched text defaults to low-confidence generation."""
        result = LexiconClassifier().classify("cà phê sữa đá")
        assert result.type == "CREATE_CONTENT"
        assert result.confidence == 0.5
        assert result.signals == []

    def test_highest_weight_wins(self):
        """Translate (0.95) beats shorten (0.9)."""
        result = LexiconClassifier().classify("rút gọn rồi dịch sang tiếng Anh")
        assert result.type == "TRANSLATE"
