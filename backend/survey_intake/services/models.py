from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence, Union

from .survey_schema import CONDITION_FIELDS, PARTICIPANT_FIELDS, SURVEY_SECTIONS


class ContentHandle(Protocol):
    """Readable, closable upload body (``fastapi.UploadFile`` satisfies this)."""

    async def read(self, size: int = -1) -> bytes:
        ...

    async def close(self) -> None:
        ...


@dataclass(slots=True)
class UploadedFile:
    field_name: str
    original_filename: str
    mime_type: str
    content_handle: ContentHandle


@dataclass(slots=True)
class Submission:
    """One request's payload as received from the ingress layer."""

    fields: Dict[str, Any]
    files: List[UploadedFile] = field(default_factory=list)


@dataclass(frozen=True)
class StoredFile:
    file_id: str
    url: str


@dataclass(frozen=True)
class FileLink:
    key: str
    url: str
    original_filename: str
    uploaded_at: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "key": self.key,
            "url": self.url,
            "originalFilename": self.original_filename,
            "uploadedAt": self.uploaded_at,
        }


@dataclass(frozen=True)
class StructuredRecord:
    document_id: str
    participant: Dict[str, Any]
    condition: Dict[str, Any]
    survey: Dict[str, Dict[str, Optional[int]]]
    scores: Dict[str, Optional[float]]
    files: Dict[str, Dict[str, FileLink]]
    metadata: Dict[str, str]
    timestamp: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "documentId": self.document_id,
            "participant": dict(self.participant),
            "condition": dict(self.condition),
            "survey": {section: dict(items) for section, items in self.survey.items()},
            "scores": dict(self.scores),
            "files": {
                group: {slot: link.to_dict() for slot, link in slots.items()}
                for group, slots in self.files.items()
            },
            "surveyExtra": dict(self.extra),
            "metadata": dict(self.metadata),
        }

    def file_links(self) -> List[FileLink]:
        return [link for slots in self.files.values() for link in slots.values()]

    def to_row(self) -> Dict[str, Any]:
        """Flatten into spreadsheet columns, one key per header cell."""

        row: Dict[str, Any] = {
            "Timestamp": self.timestamp,
            "DocumentId": self.document_id,
        }
        for spec in PARTICIPANT_FIELDS:
            row[spec.column] = self.participant.get(spec.name, spec.default)
        for spec in CONDITION_FIELDS:
            row[spec.column] = self.condition.get(spec.name, spec.default)
        for section, items in SURVEY_SECTIONS.items():
            answers = self.survey.get(section, {})
            for item in items:
                row[item] = answers.get(item)
        for section in SURVEY_SECTIONS:
            row[f"Score_{section}"] = self.scores.get(section)
        for key, value in self.extra.items():
            row.setdefault(key, value)
        for link in self.file_links():
            row[link.key] = link.url
        row["CreatedAt"] = self.metadata.get("createdAt", "")
        row["Version"] = self.metadata.get("version", "")
        return row


@dataclass(frozen=True)
class Success:
    document_id: str


@dataclass(frozen=True)
class Failure:
    stage: str
    cause: str


Outcome = Union[Success, Failure]


@dataclass(frozen=True)
class SubmissionSummary:
    """Content of the notification sent after a successful submission."""

    document_id: str
    participant_name: str
    record_url: str
    file_links: Sequence[FileLink] = ()
