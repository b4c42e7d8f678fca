"""Build the structured survey record from normalized form fields."""
from __future__ import annotations

import json
import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence

from .classifier import locate
from .models import FileLink, StructuredRecord
from .survey_schema import (
    CONDITION_FIELDS,
    INTEGER,
    PARTICIPANT_FIELDS,
    RECORD_VERSION,
    SURVEY_DATA_FIELD,
    SURVEY_ITEMS,
    SURVEY_SECTIONS,
    UNKNOWN_PARTICIPANT,
    FieldSpec,
)

logger = logging.getLogger(__name__)

__all__ = [
    "assemble",
    "build_document_id",
    "coerce_int",
    "participant_name",
    "section_score",
]

DOCUMENT_ID_SEPARATOR = "_"


def coerce_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return int(value)
        return None
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return None
        try:
            return int(stripped)
        except ValueError:
            pass
        try:
            parsed = float(stripped)
        except ValueError:
            return None
        if math.isfinite(parsed) and parsed.is_integer():
            return int(parsed)
    return None


def section_score(values: Iterable[Optional[int]]) -> Optional[float]:
    valid = [value for value in values if value is not None]
    if not valid:
        return None
    return round(sum(valid) / len(valid), 2)


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    return str(value)


def participant_name(fields: Mapping[str, Any]) -> str:
    return _text(fields.get("name")) or UNKNOWN_PARTICIPANT


def _submitted_timestamp(fields: Mapping[str, Any], now: datetime) -> str:
    submitted = _text(fields.get("timestamp"))
    if submitted:
        return submitted
    return now.astimezone(timezone.utc).isoformat()


def build_document_id(fields: Mapping[str, Any], now: Optional[datetime] = None) -> str:
    moment = now or datetime.now(timezone.utc)
    return f"{_submitted_timestamp(fields, moment)}{DOCUMENT_ID_SEPARATOR}{participant_name(fields)}"


def _pick_fields(fields: Mapping[str, Any], specs: Sequence[FieldSpec]) -> Dict[str, Any]:
    picked: Dict[str, Any] = {}
    for spec in specs:
        raw = fields.get(spec.name)
        if spec.kind == INTEGER:
            picked[spec.name] = coerce_int(raw)
        else:
            picked[spec.name] = _text(raw) if raw is not None else spec.default
    return picked


def _lookup_item(fields: Mapping[str, Any], section: str, item: str) -> Any:
    survey_data = fields.get(SURVEY_DATA_FIELD)
    if isinstance(survey_data, Mapping):
        nested = survey_data.get(section)
        if isinstance(nested, Mapping) and item in nested:
            return nested[item]
        if item in survey_data:
            return survey_data[item]
    return fields.get(item)


def _collect_survey(fields: Mapping[str, Any]) -> Dict[str, Dict[str, Optional[int]]]:
    return {
        section: {item: coerce_int(_lookup_item(fields, section, item)) for item in items}
        for section, items in SURVEY_SECTIONS.items()
    }


def _extra_value(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return json.dumps(value, ensure_ascii=False)


def _collect_extra(fields: Mapping[str, Any]) -> Dict[str, Any]:
    """Keep ``surveyData`` answers that are not part of a scored section.

    Nested groups are flattened into ``group.key`` names.
    """

    survey_data = fields.get(SURVEY_DATA_FIELD)
    if not isinstance(survey_data, Mapping):
        return {}

    extra: Dict[str, Any] = {}
    for key, value in survey_data.items():
        name = str(key)
        if isinstance(value, Mapping):
            known = SURVEY_SECTIONS.get(name, ())
            for item, answer in value.items():
                if str(item) not in known:
                    extra[f"{name}.{item}"] = _extra_value(answer)
        elif name not in SURVEY_ITEMS:
            extra[name] = _extra_value(value)
    return extra


def _group_files(file_links: Iterable[FileLink]) -> Dict[str, Dict[str, FileLink]]:
    grouped: Dict[str, Dict[str, FileLink]] = {}
    for link in file_links:
        location = locate(link.key)
        if location is None:
            logger.debug("Ignoring file link with unknown key %s", link.key)
            continue
        group, slot = location
        grouped.setdefault(group, {})[slot] = link
    return grouped


def assemble(
    fields: Mapping[str, Any],
    file_links: Iterable[FileLink],
    *,
    document_id: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> StructuredRecord:
    moment = created_at or datetime.now(timezone.utc)
    resolved_id = document_id or build_document_id(fields, moment)

    survey = _collect_survey(fields)
    scores = {section: section_score(answers.values()) for section, answers in survey.items()}

    return StructuredRecord(
        document_id=resolved_id,
        participant=_pick_fields(fields, PARTICIPANT_FIELDS),
        condition=_pick_fields(fields, CONDITION_FIELDS),
        survey=survey,
        scores=scores,
        files=_group_files(file_links),
        metadata={
            "documentId": resolved_id,
            "createdAt": moment.astimezone(timezone.utc).isoformat(),
            "version": RECORD_VERSION,
        },
        timestamp=_submitted_timestamp(fields, moment),
        extra=_collect_extra(fields),
    )
