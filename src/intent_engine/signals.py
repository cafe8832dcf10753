"""
Instruction signal lexicon and default classifier.

Detects the raw boolean signals the confidence scorer consumes:

- explicit new-create ("viết bài mới", "start over", "viết lại toàn bộ")
- explicit transform reference ("bài trên", "this post")
- ambiguous transform-like instruction ("ngắn hơn", "make it better")
- action verbs that strengthen a transform reading

Patterns cover Vietnamese and English. The lexicon can be extended from a
YAML mapping (the "signals" config section, see SignalLexicon.from_dict)
without code changes.

Examples:
- "viết một bài mới về cà phê" → new-create
- "sửa bài trên cho ngắn lại" → transform reference
- "ngắn hơn" → ambiguous transform
"""

import logging
import re
import unicodedata
from dataclasses import dataclass, field
from re import Pattern
from typing import Any, Protocol

logger = logging.getLogger(__name__)

# Above this many characters an instruction is treated as deliberate input
AMBIGUOUS_MAX_LENGTH = 120
# Transform verbs in inputs up to this length count as ambiguous
AMBIGUOUS_VERB_MAX_LENGTH = 80


# =============================================================================
# PATTERN SETS
# =============================================================================

NEW_CREATE_PATTERNS: list[str] = [
    # Vietnamese
    r"viết\s+(một\s+)?bài\s+mới",
    r"tạo\s+(một\s+)?bài\s+(mới|khác)",
    r"chủ\s+đề\s+(khác|mới)",
    r"một\s+bài\s+(khác|mới)\s+(về|cho)",
    r"nội\s+dung\s+(mới|khác)",
    r"làm\s+(bài|cái)\s+(mới|khác)",
    r"bắt\s+đầu\s+(lại|mới)",
    r"topic\s+(mới|khác)",
    r"chuyển\s+sang\s+(chủ\s+đề|topic)\s+(khác|mới)",
    r"(viết|làm)\s+lại\s+(toàn\s+bộ|từ\s+đầu)",
    # English
    r"new\s+(post|content|article)",
    r"different\s+(topic|subject)",
    r"start\s+(fresh|over|anew)",
    r"write\s+(about\s+)?(something|a)\s+(different|else|new)",
    r"create\s+(a\s+)?(new|different)",
    r"another\s+(post|article|piece)\s+(about|on)",
    r"change\s+(the\s+)?topic",
    r"switch\s+to\s+(a\s+)?(new|different)",
    r"rewrite\s+everything",
    r"from\s+scratch",
]

TRANSFORM_REFERENCE_PATTERNS: list[str] = [
    r"\bđoạn\s*(trên|này|vừa\s*rồi|đang\s*chọn)\b",
    r"\bnội\s*dung\s*(trên|này|vừa\s*rồi)\b",
    r"\bbài\s*(trên|này|vừa\s*viết)\b",
    r"\bchỉnh\s*(đoạn|bài)\s*(này|trên)\b",
    r"\bsửa\s*(đoạn|bài)\s*(này|trên)\b",
    r"\bthis\s*(content|post|message)\b",
    r"\bthe\s+(above|previous)\s+(one|content|post)\b",
]

TRANSFORM_VERB_PATTERNS: list[str] = [
    r"\b(viết\s*lại|rewrite)\b",
    r"\b(ngắn\s*(hơn|lại)|rút\s*gọn|shorten|shorter)\b",
    r"\b(dài\s*hơn|mở\s*rộng|expand|longer)\b",
    r"\b(tối\s*ưu|optimize|cải\s*thiện|improve)\b",
    r"\b(đổi\s*giọng|change\s*tone|giọng\s*(khác|mới))\b",
    r"\b(chuyên\s*nghiệp\s*hơn|professional)\b",
    r"\b(thân\s*thiện\s*hơn|friendly|casual)\b",
    r"\b(hay\s*hơn|better|tốt\s*hơn)\b",
    r"\b(sửa|fix|chỉnh|edit)\b",
    r"\b(dịch|translate)\b",
    r"\b(format|định\s*dạng)\b",
    r"\b(đơn\s*giản\s*hơn|simpler|simplify)\b",
    r"\b(chi\s*tiết\s*hơn|more\s*detail|elaborate)\b",
    r"\b(thêm\s*(emoji|icon|hashtag|cta))\b",
    r"\b(bỏ\s*(emoji|icon|hashtag))\b",
    r"\b(polish|refine)\b",
]

ACTION_VERB_PATTERN = r"\b(viết|sửa|chỉnh|đổi|thêm|bỏ|fix|edit|change|add|remove)\b"


def normalize_text(text: str) -> str:
    """Lowercase, NFC-normalize and trim."""
    return unicodedata.normalize("NFC", text).strip().lower()


def _compile(patterns: list[str]) -> list[Pattern]:
    return [re.compile(p, re.IGNORECASE) for p in patterns]


# =============================================================================
# DATA STRUCTURES
# =============================================================================


@dataclass
class SignalLexicon:
    """Compiled pattern sets used for signal detection."""

    new_create: list[Pattern] = field(default_factory=lambda: _compile(NEW_CREATE_PATTERNS))
    transform_reference: list[Pattern] = field(
        default_factory=lambda: _compile(TRANSFORM_REFERENCE_PATTERNS)
    )
    transform_verbs: list[Pattern] = field(
        default_factory=lambda: _compile(TRANSFORM_VERB_PATTERNS)
    )
    action_verb: Pattern = field(
        default_factory=lambda: re.compile(ACTION_VERB_PATTERN, re.IGNORECASE)
    )

    @classmethod
    def from_dict(cls, data: dict | None) -> "SignalLexicon":
        """Build a lexicon from YAML dict format, extending the defaults.

        Expected keys (all optional): new_create, transform_reference,
        transform_verbs: each a list of regex strings.
        """
        lexicon = cls()
        if not data:
            return lexicon
        lexicon.new_create += _compile(data.get("new_create", []))
        lexicon.transform_reference += _compile(data.get("transform_reference", []))
        lexicon.transform_verbs += _compile(data.get("transform_verbs", []))
        return lexicon


@dataclass
class InstructionSignals:
    """Boolean signals extracted from one instruction."""

    is_explicit_new_create: bool = False
    is_explicit_transform_ref: bool = False
    is_ambiguous_transform: bool = False
    has_action_verb: bool = False
    word_count: int = 0
    matched: list[str] = field(default_factory=list)


DEFAULT_LEXICON = SignalLexicon()


# =============================================================================
# DETECTION
# =============================================================================


def _first_match(patterns: list[Pattern], text: str) -> str | None:
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            return match.group(0)
    return None


def detect_new_create(text: str, lexicon: SignalLexicon = DEFAULT_LEXICON) -> bool:
    """True if the user explicitly asks for new content."""
    return _first_match(lexicon.new_create, normalize_text(text)) is not None


def detect_transform_reference(text: str, lexicon: SignalLexicon = DEFAULT_LEXICON) -> bool:
    """True if the instruction points at existing content."""
    return _first_match(lexicon.transform_reference, normalize_text(text)) is not None


def detect_ambiguous_transform(text: str, lexicon: SignalLexicon = DEFAULT_LEXICON) -> bool:
    """
    True for short transform-like instructions without a clear target.

    Long inputs (over AMBIGUOUS_MAX_LENGTH) are considered intentional and
    inputs under 3 characters carry too little to call.
    """
    if len(text) > AMBIGUOUS_MAX_LENGTH or len(text.strip()) < 3:
        return False

    normalized = normalize_text(text)
    if _first_match(lexicon.transform_verbs, normalized) is None:
        return False

    if len(text) <= AMBIGUOUS_VERB_MAX_LENGTH:
        return True
    return len(normalized.split()) <= 3


def detect_signals(text: str, lexicon: SignalLexicon = DEFAULT_LEXICON) -> InstructionSignals:
    """
    Extract every routing signal from an instruction.

    Args:
        text: Raw instruction text (never persisted)
        lexicon: Pattern sets to match against

    Returns:
        InstructionSignals with booleans and the matched fragments
    """
    normalized = normalize_text(text)
    matched: list[str] = []

    new_create = _first_match(lexicon.new_create, normalized)
    if new_create:
        matched.append(f"new_create:{new_create}")

    transform_ref = _first_match(lexicon.transform_reference, normalized)
    if transform_ref:
        matched.append(f"transform_ref:{transform_ref}")

    ambiguous = detect_ambiguous_transform(text, lexicon)
    if ambiguous:
        matched.append("ambiguous_transform")

    signals = InstructionSignals(
        is_explicit_new_create=new_create is not None,
        is_explicit_transform_ref=transform_ref is not None,
        is_ambiguous_transform=ambiguous,
        has_action_verb=bool(lexicon.action_verb.search(normalized)),
        word_count=len(normalized.split()),
        matched=matched,
    )

    logger.debug(f"Signals for {len(text)}-char instruction: {matched or 'none'}")
    return signals


# =============================================================================
# CLASSIFIER
# =============================================================================


@dataclass
class Classification:
    """Coarse action classification of an instruction."""

    type: str
    category: str  # "generation" | "transform" | "evaluation" | "meta"
    confidence: float
    signals: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "category": self.category,
            "confidence": self.confidence,
            "signals": list(self.signals),
        }


class Classifier(Protocol):
    """Anything that turns raw text into a Classification."""

    def classify(self, text: str) -> Classification: ...


# (type, category, weight, patterns)
ACTION_SIGNALS: list[tuple[str, str, float, list[str]]] = [
    ("CREATE_CONTENT", "generation", 0.85, [
        r"^(viết|tạo|soạn|làm)\s+(cho\s+)?(tôi|mình)?\s*(một|1)?\s*(bài|nội dung|post|content)",
        r"^(write|create|draft|compose)\s+(a|an|the)?\s*(post|content|article)",
        r"viết\s+(về|cho)",
        r"tạo\s+nội\s+dung",
    ]),
    ("BRAINSTORM", "generation", 0.8, [
        r"brainstorm",
        r"ý\s*tưởng",
        r"ideas?\s+(for|about)",
    ]),
    ("REWRITE", "transform", 0.9, [
        r"viết\s+lại", r"rewrite", r"sửa\s+lại", r"chỉnh\s+lại", r"revise", r"rephrase",
    ]),
    ("OPTIMIZE", "transform", 0.85, [
        r"tối\s*ưu", r"optimize", r"cải\s*thiện", r"improve", r"enhance",
    ]),
    ("SHORTEN", "transform", 0.9, [
        r"rút\s*gọn", r"ngắn\s*(gọn|lại|hơn)", r"shorten", r"shorter", r"concise",
        r"summarize", r"tóm\s*tắt",
    ]),
    ("EXPAND", "transform", 0.9, [
        r"mở\s*rộng", r"expand", r"dài\s*hơn", r"longer", r"elaborate", r"chi\s*tiết\s*hơn",
    ]),
    ("CHANGE_TONE", "transform", 0.9, [
        r"đổi\s*giọng",
        r"change\s*(the\s*)?tone",
        r"make\s+it\s+(more\s+)?(formal|casual|friendly|professional)",
        r"chuyên\s*nghiệp\s*hơn",
        r"thân\s*thiện\s*hơn",
    ]),
    ("TRANSLATE", "transform", 0.95, [
        r"dịch\s*(sang|ra|qua)", r"translate\s+(to|into)",
    ]),
    ("EVALUATE", "evaluation", 0.85, [
        r"đánh\s*giá", r"evaluate", r"review", r"phân\s*tích", r"nhận\s*xét",
    ]),
    ("CLARIFY", "meta", 0.6, [
        r"\?\s*$", r"là\s+gì", r"what\s+(is|are|do)", r"explain", r"giải\s*thích",
    ]),
]


class LexiconClassifier:
    """Pattern-weight classifier; the highest-weight matching type wins."""

    def __init__(self, action_signals: list[tuple[str, str, float, list[str]]] | None = None):
        self._signals = [
            (action_type, category, weight, _compile(patterns))
            for action_type, category, weight, patterns in (action_signals or ACTION_SIGNALS)
        ]

    def classify(self, text: str) -> Classification:
        normalized = normalize_text(text)
        best: Classification | None = None

        for action_type, category, weight, patterns in self._signals:
            hit = _first_match(patterns, normalized)
            if hit is None:
                continue
            if best is None or weight > best.confidence:
                best = Classification(action_type, category, weight, [hit])
            elif best is not None and weight == best.confidence:
                best.signals.append(hit)

        if best is None:
            # Unmatched instructions default to generation
            return Classification("CREATE_CONTENT", "generation", 0.5, [])
        return best
