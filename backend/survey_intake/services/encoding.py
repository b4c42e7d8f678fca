"""Repair form text that was sent as UTF-8 but decoded as Latin-1."""
from __future__ import annotations

import logging
import unicodedata
from dataclasses import dataclass
from typing import Any

from .exceptions import EncodingRecoveryFailure

logger = logging.getLogger(__name__)

__all__ = [
    "NormalizationResult",
    "looks_like_mojibake",
    "normalize",
    "normalize_value",
    "normalize_with_status",
]

_ALLOWED_CONTROLS = {"\t", "\n", "\r"}


@dataclass(frozen=True)
class NormalizationResult:
    text: str
    recovered: bool = False
    failed: bool = False


def looks_like_mojibake(text: str) -> bool:
    """Only text made entirely of Latin-1 code points with some high bytes qualifies.

    Anything above U+00FF cannot come out of a single-byte decode, so the
    string was decoded correctly and must be left alone.
    """

    if not text:
        return False
    has_high_byte = False
    for char in text:
        code_point = ord(char)
        if code_point > 0xFF:
            return False
        if code_point >= 0x80:
            has_high_byte = True
    return has_high_byte


def _has_unexpected_controls(text: str) -> bool:
    return any(
        unicodedata.category(char) == "Cc" and char not in _ALLOWED_CONTROLS
        for char in text
    )


def normalize_with_status(text: str) -> NormalizationResult:
    if not looks_like_mojibake(text):
        return NormalizationResult(text=text)

    try:
        repaired = text.encode("latin-1").decode("utf-8")
    except UnicodeDecodeError as exc:
        failure = EncodingRecoveryFailure(text, exc.reason)
        logger.warning("Encoding recovery skipped: %s", failure)
        return NormalizationResult(text=text, failed=True)

    if _has_unexpected_controls(repaired):
        failure = EncodingRecoveryFailure(text, "control characters in redecoded text")
        logger.warning("Encoding recovery skipped: %s", failure)
        return NormalizationResult(text=text, failed=True)

    return NormalizationResult(text=repaired, recovered=True)


def normalize(text: str) -> str:
    return normalize_with_status(text).text


def normalize_value(value: Any) -> Any:
    if isinstance(value, str):
        return normalize(value)
    if isinstance(value, dict):
        return {
            normalize(key) if isinstance(key, str) else key: normalize_value(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [normalize_value(item) for item in value]
    return value
