"""Map uploaded file field names to record keys."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

__all__ = [
    "FILE_RULES",
    "FileRule",
    "classify",
    "locate",
]


@dataclass(frozen=True)
class FileRule:
    marker: str
    key_template: str
    group: str
    slot_template: str
    token_extractor: Optional[Callable[[str, int], Optional[str]]] = None

    def matches(self, field_name: str) -> int:
        return field_name.lower().find(self.marker)

    def key_for(self, field_name: str, marker_index: int) -> Optional[str]:
        if self.token_extractor is None:
            return self.key_template
        token = self.token_extractor(field_name, marker_index + len(self.marker))
        if not token:
            return None
        return self.key_template.format(token=token)


_DIGITS = re.compile(r"\d+")
_SEPARATORS = re.compile(r"[_\-\s]+")


def _question_token(field_name: str, start: int) -> Optional[str]:
    remainder = field_name[start:]
    digits = _DIGITS.search(remainder)
    if digits:
        return str(int(digits.group(0)))

    for token in _SEPARATORS.split(remainder):
        if token:
            return token
    return None


FILE_RULES: Tuple[FileRule, ...] = (
    FileRule(
        marker="audio",
        key_template="Audio_{token}",
        group="audioFiles",
        slot_template="question_{token}",
        token_extractor=_question_token,
    ),
    FileRule(
        marker="consent",
        key_template="PDF_Consent",
        group="pdfFiles",
        slot_template="consent",
    ),
    FileRule(
        marker="survey",
        key_template="PDF_Survey",
        group="pdfFiles",
        slot_template="survey",
    ),
)


def classify(field_name: str) -> Optional[str]:
    if not isinstance(field_name, str) or not field_name:
        return None
    for rule in FILE_RULES:
        index = rule.matches(field_name)
        if index >= 0:
            return rule.key_for(field_name, index)
    return None


def locate(key: str) -> Optional[Tuple[str, str]]:
    """Return the ``(group, slot)`` a classifier key is stored under in a record."""

    for rule in FILE_RULES:
        if rule.token_extractor is None:
            if key == rule.key_template:
                return rule.group, rule.slot_template
            continue
        prefix, _, suffix = rule.key_template.partition("{token}")
        if key.startswith(prefix) and key.endswith(suffix) and len(key) > len(prefix) + len(suffix):
            token = key[len(prefix) : len(key) - len(suffix) if suffix else None]
            return rule.group, rule.slot_template.format(token=token)
    return None
