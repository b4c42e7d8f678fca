from __future__ import annotations

from typing import Optional, Protocol

from .models import StoredFile, StructuredRecord, SubmissionSummary


class StorageClient(Protocol):
    async def upload(
        self,
        content: bytes,
        destination_key: str,
        content_type: Optional[str],
    ) -> StoredFile:
        ...

    async def delete(self, stored: StoredFile) -> None:
        ...


class RecordStore(Protocol):
    async def put(self, document_id: str, record: StructuredRecord) -> None:
        ...


class Notifier(Protocol):
    async def send(self, summary: SubmissionSummary) -> None:
        ...


class UrlShortener(Protocol):
    async def shorten(self, url: str) -> str:
        ...
