from __future__ import annotations

import asyncio
import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

import httpx

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from survey_intake.config import Settings
from survey_intake.services.exceptions import NotificationError, PersistError, StorageError
from survey_intake.services.models import (
    Failure,
    StoredFile,
    StructuredRecord,
    Submission,
    SubmissionSummary,
    Success,
    UploadedFile,
)
from survey_intake.services.google_auth import GoogleCredentials
from survey_intake.services.google_drive import GoogleDriveStorage
from survey_intake.services.orchestrator import SubmissionOrchestrator

FIXED_NOW = datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)


class FakeHandle:
    def __init__(self, content: bytes) -> None:
        self.content = content
        self.reads = 0
        self.closes = 0

    async def read(self, size: int = -1) -> bytes:
        self.reads += 1
        return self.content

    async def close(self) -> None:
        self.closes += 1


class FakeStorage:
    def __init__(self, *, fail_on: Optional[int] = None, delay: float = 0.0) -> None:
        self.fail_on = fail_on
        self.delay = delay
        self.uploads: List[Dict[str, object]] = []
        self.deleted: List[str] = []

    async def upload(self, content: bytes, destination_key: str, content_type: Optional[str]) -> StoredFile:
        if self.delay:
            await asyncio.sleep(self.delay)
        index = len(self.uploads) + 1
        if self.fail_on == index:
            raise StorageError("quota exceeded")
        self.uploads.append(
            {"content": content, "name": destination_key, "content_type": content_type}
        )
        return StoredFile(file_id=f"file-{index}", url=f"https://drive.test/file-{index}")

    async def delete(self, stored: StoredFile) -> None:
        self.deleted.append(stored.file_id)


class FakeRecordStore:
    def __init__(self, *, error: Optional[Exception] = None, delay: float = 0.0) -> None:
        self.error = error
        self.delay = delay
        self.records: Dict[str, StructuredRecord] = {}

    async def put(self, document_id: str, record: StructuredRecord) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        self.records[document_id] = record


class FakeNotifier:
    def __init__(self, *, error: Optional[Exception] = None) -> None:
        self.error = error
        self.sent: List[SubmissionSummary] = []

    async def send(self, summary: SubmissionSummary) -> None:
        self.sent.append(summary)
        if self.error is not None:
            raise self.error


class PrefixShortener:
    async def shorten(self, url: str) -> str:
        return url.replace("https://drive.test/", "https://short.test/")


def _orchestrator(**overrides: object) -> SubmissionOrchestrator:
    params: Dict[str, object] = {
        "storage": FakeStorage(),
        "record_store": FakeRecordStore(),
        "record_url": "https://sheets.test/record",
        "clock": lambda: FIXED_NOW,
    }
    params.update(overrides)
    return SubmissionOrchestrator(**params)  # type: ignore[arg-type]


def _upload(field_name: str, filename: str, content: bytes = b"data") -> UploadedFile:
    return UploadedFile(
        field_name=field_name,
        original_filename=filename,
        mime_type="audio/webm",
        content_handle=FakeHandle(content),
    )


def _run(orchestrator: SubmissionOrchestrator, submission: Submission):
    async def scenario():
        outcome = await orchestrator.handle(submission)
        await orchestrator.aclose()
        return outcome

    return asyncio.run(scenario())


def test_successful_submission_persists_record_and_notifies() -> None:
    storage = FakeStorage()
    store = FakeRecordStore()
    notifier = FakeNotifier()
    orchestrator = _orchestrator(storage=storage, record_store=store, notifier=notifier)

    files = [
        _upload("audio_q_1", "answer1.webm", b"one"),
        _upload("consentForm", "consent.pdf", b"pdf"),
    ]
    submission = Submission(
        fields={
            "name": "홍길동",
            "timestamp": "2024-05-01T09:59:00Z",
            "aiAttitude": "4",
            "surveyData": {"procedural_justice": {"PJ1": 3, "PJ2": 5}},
        },
        files=files,
    )

    outcome = _run(orchestrator, submission)

    assert outcome == Success(document_id="2024-05-01T09:59:00Z_홍길동")
    record = store.records["2024-05-01T09:59:00Z_홍길동"]
    assert record.participant["name"] == "홍길동"
    assert record.participant["aiAttitude"] == 4
    assert record.scores["procedural_justice"] == 4.0
    assert record.files["audioFiles"]["question_1"].url == "https://drive.test/file-1"
    assert record.files["pdfFiles"]["consent"].original_filename == "consent.pdf"

    assert [item["name"] for item in storage.uploads] == [
        "2024-05-01T09:59:00Z_홍길동_answer1.webm",
        "2024-05-01T09:59:00Z_홍길동_consent.pdf",
    ]
    assert [item["content"] for item in storage.uploads] == [b"one", b"pdf"]

    assert len(notifier.sent) == 1
    summary = notifier.sent[0]
    assert summary.participant_name == "홍길동"
    assert summary.record_url == "https://sheets.test/record"
    assert {link.key for link in summary.file_links} == {"Audio_1", "PDF_Consent"}

    for upload in files:
        assert upload.content_handle.closes == 1  # type: ignore[attr-defined]


def test_mojibake_fields_and_filenames_are_repaired_before_use() -> None:
    store = FakeRecordStore()
    storage = FakeStorage()
    orchestrator = _orchestrator(storage=storage, record_store=store)

    garbled_name = "홍길동".encode("utf-8").decode("latin-1")
    garbled_file = "답변.webm".encode("utf-8").decode("latin-1")
    submission = Submission(
        fields={"name": garbled_name, "timestamp": "t0"},
        files=[_upload("audio_q_2", garbled_file)],
    )

    outcome = _run(orchestrator, submission)

    assert outcome == Success(document_id="t0_홍길동")
    assert storage.uploads[0]["name"] == "t0_홍길동_답변.webm"
    record = store.records["t0_홍길동"]
    assert record.files["audioFiles"]["question_2"].original_filename == "답변.webm"


def test_encoding_repair_can_be_disabled() -> None:
    store = FakeRecordStore()
    orchestrator = _orchestrator(record_store=store, repair_encoding=False)
    garbled_name = "홍길동".encode("utf-8").decode("latin-1")

    outcome = _run(orchestrator, Submission(fields={"name": garbled_name, "timestamp": "t0"}))

    assert isinstance(outcome, Success)
    assert outcome.document_id == f"t0_{garbled_name}"


def test_submission_without_files_or_name_uses_placeholder() -> None:
    store = FakeRecordStore()
    orchestrator = _orchestrator(record_store=store)

    outcome = _run(orchestrator, Submission(fields={}))

    expected_id = f"{FIXED_NOW.isoformat()}_UnknownParticipant"
    assert outcome == Success(document_id=expected_id)
    record = store.records[expected_id]
    assert record.participant["name"] == ""
    assert record.files == {}
    assert all(score is None for score in record.scores.values())


def test_upload_failure_on_second_file_stops_and_compensates() -> None:
    storage = FakeStorage(fail_on=2)
    store = FakeRecordStore()
    notifier = FakeNotifier()
    orchestrator = _orchestrator(storage=storage, record_store=store, notifier=notifier)
    files = [
        _upload("audio_q_1", "a1.webm"),
        _upload("audio_q_2", "a2.webm"),
        _upload("audio_q_3", "a3.webm"),
    ]

    outcome = _run(orchestrator, Submission(fields={"name": "Kim"}, files=files))

    assert isinstance(outcome, Failure)
    assert outcome.stage == "upload"
    assert "quota exceeded" in outcome.cause
    assert store.records == {}
    assert notifier.sent == []
    assert storage.deleted == ["file-1"]
    assert [upload.content_handle.closes for upload in files] == [1, 1, 1]  # type: ignore[attr-defined]
    assert files[2].content_handle.reads == 0  # type: ignore[attr-defined]


def test_upload_failure_without_compensation_keeps_stored_files() -> None:
    storage = FakeStorage(fail_on=2)
    orchestrator = _orchestrator(storage=storage, compensate_on_failure=False)
    files = [_upload("audio_q_1", "a1.webm"), _upload("audio_q_2", "a2.webm")]

    outcome = _run(orchestrator, Submission(fields={"name": "Kim"}, files=files))

    assert isinstance(outcome, Failure)
    assert storage.deleted == []
    assert len(storage.uploads) == 1


def test_persist_failure_reports_stage_and_removes_uploads() -> None:
    storage = FakeStorage()
    store = FakeRecordStore(error=PersistError("sheet is read-only"))
    notifier = FakeNotifier()
    orchestrator = _orchestrator(storage=storage, record_store=store, notifier=notifier)
    files = [_upload("audio_q_1", "a1.webm"), _upload("surveyPdf", "survey.pdf")]

    outcome = _run(orchestrator, Submission(fields={"name": "Lee"}, files=files))

    assert outcome == Failure(stage="persist", cause="sheet is read-only")
    assert storage.deleted == ["file-2", "file-1"]
    assert notifier.sent == []
    assert [upload.content_handle.closes for upload in files] == [1, 1]  # type: ignore[attr-defined]


def test_slow_upload_times_out_as_upload_failure() -> None:
    storage = FakeStorage(delay=0.5)
    orchestrator = _orchestrator(storage=storage, upload_timeout=0.01)
    files = [_upload("audio_q_1", "a1.webm")]

    outcome = _run(orchestrator, Submission(fields={"name": "Park"}, files=files))

    assert isinstance(outcome, Failure)
    assert outcome.stage == "upload"
    assert files[0].content_handle.closes == 1  # type: ignore[attr-defined]


def test_notification_failure_does_not_change_outcome() -> None:
    store = FakeRecordStore()
    notifier = FakeNotifier(error=NotificationError("smtp down"))
    orchestrator = _orchestrator(record_store=store, notifier=notifier)

    outcome = _run(orchestrator, Submission(fields={"name": "Choi", "timestamp": "t1"}))

    assert outcome == Success(document_id="t1_Choi")
    assert "t1_Choi" in store.records
    assert len(notifier.sent) == 1


def test_unclassified_file_is_stored_but_not_linked() -> None:
    storage = FakeStorage()
    store = FakeRecordStore()
    orchestrator = _orchestrator(storage=storage, record_store=store)

    outcome = _run(
        orchestrator,
        Submission(fields={"name": "Jung", "timestamp": "t2"}, files=[_upload("photo", "me.png")]),
    )

    assert isinstance(outcome, Success)
    assert len(storage.uploads) == 1
    assert store.records["t2_Jung"].files == {}


def test_shortener_rewrites_file_links() -> None:
    store = FakeRecordStore()
    orchestrator = _orchestrator(record_store=store, url_shortener=PrefixShortener())

    _run(
        orchestrator,
        Submission(fields={"name": "Yoon", "timestamp": "t3"}, files=[_upload("audio_q_5", "a5.webm")]),
    )

    link = store.records["t3_Yoon"].files["audioFiles"]["question_5"]
    assert link.url == "https://short.test/file-1"


def test_shared_handle_is_closed_once() -> None:
    handle = FakeHandle(b"same")
    files = [
        UploadedFile("audio_q_1", "a.webm", "audio/webm", handle),
        UploadedFile("audio_q_2", "a.webm", "audio/webm", handle),
    ]
    orchestrator = _orchestrator()

    _run(orchestrator, Submission(fields={"name": "Han"}, files=files))

    assert handle.closes == 1


def test_slow_persist_times_out_and_compensates() -> None:
    storage = FakeStorage()
    store = FakeRecordStore(delay=0.5)
    notifier = FakeNotifier()
    orchestrator = _orchestrator(
        storage=storage, record_store=store, notifier=notifier, persist_timeout=0.01
    )
    files = [_upload("audio_q_1", "a1.webm")]

    outcome = _run(orchestrator, Submission(fields={"name": "Seo"}, files=files))

    assert isinstance(outcome, Failure)
    assert outcome.stage == "persist"
    assert storage.deleted == ["file-1"]
    assert store.records == {}
    assert notifier.sent == []
    assert files[0].content_handle.closes == 1  # type: ignore[attr-defined]


class BrokenStorage(FakeStorage):
    async def upload(self, content: bytes, destination_key: str, content_type: Optional[str]) -> StoredFile:
        if self.uploads:
            raise ValueError("unexpected payload")
        return await super().upload(content, destination_key, content_type)


def test_unexpected_upload_error_becomes_upload_failure() -> None:
    storage = BrokenStorage()
    store = FakeRecordStore()
    orchestrator = _orchestrator(storage=storage, record_store=store)
    files = [_upload("audio_q_1", "a1.webm"), _upload("audio_q_2", "a2.webm")]

    outcome = _run(orchestrator, Submission(fields={"name": "Kang"}, files=files))

    assert outcome == Failure(stage="upload", cause="unexpected payload")
    assert storage.deleted == ["file-1"]
    assert store.records == {}
    assert [upload.content_handle.closes for upload in files] == [1, 1]  # type: ignore[attr-defined]


def test_unexpected_persist_error_becomes_persist_failure() -> None:
    storage = FakeStorage()
    store = FakeRecordStore(error=KeyError("values"))
    orchestrator = _orchestrator(storage=storage, record_store=store)

    outcome = _run(
        orchestrator,
        Submission(fields={"name": "Kang"}, files=[_upload("audio_q_1", "a1.webm")]),
    )

    assert isinstance(outcome, Failure)
    assert outcome.stage == "persist"
    assert storage.deleted == ["file-1"]


def test_non_json_drive_reply_fails_upload_and_deletes_earlier_file() -> None:
    requests: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "oauth2.googleapis.com":
            return httpx.Response(200, json={"access_token": "token", "expires_in": 3600})
        requests.append(request)
        if request.url.path == "/upload/drive/v3/files":
            uploads = [r for r in requests if r.url.path == "/upload/drive/v3/files"]
            if len(uploads) == 1:
                return httpx.Response(
                    200, json={"id": "f1", "webViewLink": "https://drive.google.com/f1"}
                )
            return httpx.Response(200, text="<html>proxy error</html>")
        if request.url.path.endswith("/permissions"):
            return httpx.Response(200, content=json.dumps({"id": "anyone"}).encode())
        if request.method == "DELETE":
            return httpx.Response(204)
        return httpx.Response(500)

    transport = httpx.MockTransport(handler)
    settings = Settings(
        client_id="id",
        client_secret="secret",
        refresh_token="refresh",
        drive_folder_id="folder-1",
        spreadsheet_id="sheet-1",
    )
    storage = GoogleDriveStorage(
        GoogleCredentials(settings, transport=transport),
        folder_id="folder-1",
        transport=transport,
    )
    store = FakeRecordStore()
    orchestrator = _orchestrator(storage=storage, record_store=store)
    files = [_upload("audio_q_1", "a1.webm"), _upload("audio_q_2", "a2.webm")]

    outcome = _run(orchestrator, Submission(fields={"name": "Lim"}, files=files))

    assert isinstance(outcome, Failure)
    assert outcome.stage == "upload"
    assert store.records == {}
    deletes = [r.url.path for r in requests if r.method == "DELETE"]
    assert deletes == ["/drive/v3/files/f1"]


def test_unexpected_notifier_error_is_contained() -> None:
    store = FakeRecordStore()
    notifier = FakeNotifier(error=ValueError("bad gmail reply"))
    orchestrator = _orchestrator(record_store=store, notifier=notifier)

    outcome = _run(orchestrator, Submission(fields={"name": "Oh", "timestamp": "t4"}))

    assert outcome == Success(document_id="t4_Oh")
    assert len(notifier.sent) == 1
