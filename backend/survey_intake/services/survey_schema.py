"""Allow-listed participant fields and survey section layout."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple

TEXT = "text"
INTEGER = "integer"

UNKNOWN_PARTICIPANT = "UnknownParticipant"
RECORD_VERSION = "2.0"
SURVEY_DATA_FIELD = "surveyData"


@dataclass(frozen=True)
class FieldSpec:
    name: str
    kind: str
    column: str

    @property
    def default(self) -> object:
        return "" if self.kind == TEXT else None


PARTICIPANT_FIELDS: Tuple[FieldSpec, ...] = (
    FieldSpec("name", TEXT, "Name"),
    FieldSpec("gender", TEXT, "Gender"),
    FieldSpec("ageGroup", TEXT, "AgeGroup"),
    FieldSpec("jobStatus", TEXT, "JobStatus"),
    FieldSpec("major", TEXT, "Major"),
    FieldSpec("aiExperience", TEXT, "AIExperience"),
    FieldSpec("aiAttitude", INTEGER, "AIAttitude"),
)

CONDITION_FIELDS: Tuple[FieldSpec, ...] = (
    FieldSpec("condition", TEXT, "Condition"),
    FieldSpec("interviewerType", TEXT, "InterviewerType"),
)

# Organizational justice scale, one entry per Likert item in display order.
SURVEY_SECTIONS: Dict[str, Tuple[str, ...]] = {
    "procedural_justice": tuple(f"PJ{index}" for index in range(1, 8)),
    "distributive_justice": tuple(f"DJ{index}" for index in range(1, 5)),
    "interpersonal_justice": tuple(f"IPJ{index}" for index in range(1, 5)),
    "informational_justice": tuple(f"INJ{index}" for index in range(1, 6)),
}

SURVEY_ITEMS = frozenset(item for items in SURVEY_SECTIONS.values() for item in items)
