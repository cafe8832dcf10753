"""
Request binding: short deterministic fingerprints of what the user sent.

A RequestBinding is captured once, at the moment the user presses send. The
execution path re-hashes the text it is about to submit and compares it with
the binding to catch stale closures or in-flight edits. This is a staleness
check, not a security boundary: the hash is djb2, chosen for speed and
stability, with no collision resistance.
"""

import random
import string
import time
from dataclasses import asdict, dataclass
from typing import Any

# Separator for multi-part hashing; NUL does not occur in user text
MULTI_PART_SEPARATOR = "\x00"

EMPTY_HASH = "0"

_BASE36_DIGITS = string.digits + string.ascii_lowercase


def to_base36(value: int) -> str:
    """Render a non-negative integer in base 36."""
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36_DIGITS[rem])
    return "".join(reversed(digits))


def djb2(text: str) -> int:
    """32-bit unsigned djb2 (xor variant) over UTF-16 code units."""
    h = 5381
    encoded = text.encode("utf-16-le")
    for i in range(0, len(encoded), 2):
        unit = encoded[i] | (encoded[i + 1] << 8)
        h = (((h << 5) + h) ^ unit) & 0xFFFFFFFF
    return h


def safe_hash(text: str) -> str:
    """Deterministic short hash of text, "0" for empty input.

    >>> safe_hash("") == EMPTY_HASH
    True
    """
    if not text:
        return EMPTY_HASH
    return to_base36(djb2(text))


def safe_hash_multiple(parts: list[str]) -> str:
    """Hash several strings as one fingerprint. Order matters."""
    return safe_hash(MULTI_PART_SEPARATOR.join(parts))


def generate_event_id(now: float | None = None) -> str:
    """Unique-enough event id: evt_<epoch ms>_<5 random base36 chars>."""
    ts = int((time.time() if now is None else now) * 1000)
    suffix = "".join(random.choices(_BASE36_DIGITS, k=5))
    return f"evt_{ts}_{suffix}"


@dataclass(frozen=True)
class RequestBinding:
    """What the user committed to at send time."""

    event_id: str
    ui_send_at: float
    ui_input_hash: str
    ui_input_length: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RequestBinding":
        return cls(
            event_id=data["event_id"],
            ui_send_at=float(data["ui_send_at"]),
            ui_input_hash=data["ui_input_hash"],
            ui_input_length=int(data["ui_input_length"]),
        )


def create_request_binding(
    user_prompt: str,
    now: float | None = None,
    event_id: str | None = None,
) -> RequestBinding:
    """
    Capture the binding for a prompt at send time.

    Args:
        user_prompt: Exact text from the input box when send was pressed
        now: Send timestamp in epoch seconds (defaults to current time)
        event_id: Reuse an existing event id instead of generating one

    Returns:
        RequestBinding for this send
    """
    sent_at = time.time() if now is None else now
    return RequestBinding(
        event_id=event_id or generate_event_id(sent_at),
        ui_send_at=sent_at,
        ui_input_hash=safe_hash(user_prompt),
        ui_input_length=len(user_prompt),
    )


def validate_binding(user_prompt: str, binding: RequestBinding) -> bool:
    """True when user_prompt is the text the binding was created from."""
    if len(user_prompt) != binding.ui_input_length:
        return False
    return safe_hash(user_prompt) == binding.ui_input_hash
