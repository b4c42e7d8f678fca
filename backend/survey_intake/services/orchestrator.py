"""Sequence one submission through normalize, upload and persist stages."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional, Set

from . import encoding
from .classifier import classify
from .exceptions import NotificationError, PersistError, StorageError
from .models import (
    Failure,
    FileLink,
    Outcome,
    StoredFile,
    Submission,
    SubmissionSummary,
    Success,
    UploadedFile,
)
from .ports import Notifier, RecordStore, StorageClient, UrlShortener
from .record_assembler import assemble, build_document_id, participant_name

logger = logging.getLogger(__name__)

STAGE_UPLOAD = "upload"
STAGE_PERSIST = "persist"


class SubmissionState(str, Enum):
    RECEIVED = "received"
    NORMALIZED = "normalized"
    FILES_UPLOADED = "files_uploaded"
    RECORD_PERSISTED = "record_persisted"
    DONE = "done"
    FAILED = "failed"


class _Progress:
    """Linear state tracker; once failed it never moves again."""

    def __init__(self, participant: str) -> None:
        self.participant = participant
        self.document_id = "-"
        self.state = SubmissionState.RECEIVED

    def advance(self, state: SubmissionState) -> None:
        if self.state in (SubmissionState.DONE, SubmissionState.FAILED):
            raise RuntimeError(f"submission already finished in state {self.state.value}")
        logger.info(
            "[Submission %s] %s -> %s (참가자: %s)",
            self.document_id,
            self.state.value,
            state.value,
            self.participant,
        )
        self.state = state

    def fail(self, stage: str, cause: BaseException) -> Failure:
        message = str(cause) or cause.__class__.__name__
        logger.error(
            "[Submission %s] %s 단계 실패 (참가자: %s): %s",
            self.document_id,
            stage,
            self.participant,
            message,
        )
        self.advance(SubmissionState.FAILED)
        return Failure(stage=stage, cause=message)


class SubmissionOrchestrator:
    """Run one submission end to end against injected collaborators.

    Upload policy: files are stored one at a time and the submission is
    all-or-nothing. When ``compensate_on_failure`` is set, files already
    stored for a submission that later fails are deleted again; otherwise
    they are left in place and listed in the log.
    """

    def __init__(
        self,
        *,
        storage: StorageClient,
        record_store: RecordStore,
        notifier: Optional[Notifier] = None,
        url_shortener: Optional[UrlShortener] = None,
        record_url: str = "",
        upload_timeout: Optional[float] = 60.0,
        persist_timeout: Optional[float] = 30.0,
        compensate_on_failure: bool = True,
        repair_encoding: bool = True,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._storage = storage
        self._record_store = record_store
        self._notifier = notifier
        self._url_shortener = url_shortener
        self._record_url = record_url
        self._upload_timeout = upload_timeout
        self._persist_timeout = persist_timeout
        self._compensate_on_failure = compensate_on_failure
        self._repair_encoding = repair_encoding
        self._clock = clock
        self._pending_notifications: Set[asyncio.Task[None]] = set()

    async def handle(self, submission: Submission) -> Outcome:
        try:
            return await self._run(submission)
        finally:
            await self._release(submission.files)

    async def _run(self, submission: Submission) -> Outcome:
        normalized = self.normalize(submission)
        progress = _Progress(participant_name(normalized.fields))
        now = self._clock()
        progress.document_id = build_document_id(normalized.fields, now)
        progress.advance(SubmissionState.NORMALIZED)

        stored: List[StoredFile] = []
        links: List[FileLink] = []
        try:
            await asyncio.wait_for(
                self._upload_files(normalized.files, progress.document_id, stored, links),
                timeout=self._upload_timeout,
            )
        except (StorageError, OSError, asyncio.TimeoutError) as exc:
            failure = progress.fail(STAGE_UPLOAD, exc)
            await self._compensate(progress.document_id, stored)
            return failure
        except Exception as exc:
            logger.exception("[Submission %s] 업로드 중 예기치 않은 오류", progress.document_id)
            failure = progress.fail(STAGE_UPLOAD, exc)
            await self._compensate(progress.document_id, stored)
            return failure
        progress.advance(SubmissionState.FILES_UPLOADED)

        record = assemble(
            normalized.fields,
            links,
            document_id=progress.document_id,
            created_at=now,
        )
        try:
            await asyncio.wait_for(
                self._record_store.put(progress.document_id, record),
                timeout=self._persist_timeout,
            )
        except (PersistError, asyncio.TimeoutError) as exc:
            failure = progress.fail(STAGE_PERSIST, exc)
            await self._compensate(progress.document_id, stored)
            return failure
        except Exception as exc:
            logger.exception("[Submission %s] 저장 중 예기치 않은 오류", progress.document_id)
            failure = progress.fail(STAGE_PERSIST, exc)
            await self._compensate(progress.document_id, stored)
            return failure
        progress.advance(SubmissionState.RECORD_PERSISTED)

        self._schedule_notification(
            SubmissionSummary(
                document_id=progress.document_id,
                participant_name=progress.participant,
                record_url=self._record_url,
                file_links=tuple(record.file_links()),
            )
        )
        progress.advance(SubmissionState.DONE)
        return Success(document_id=progress.document_id)

    # Stage 1 -----------------------------------------------------------
    def normalize(self, submission: Submission) -> Submission:
        if not self._repair_encoding:
            return Submission(fields=dict(submission.fields), files=list(submission.files))

        fields = {
            encoding.normalize(key): encoding.normalize_value(value)
            for key, value in submission.fields.items()
        }
        files = [
            UploadedFile(
                field_name=upload.field_name,
                original_filename=encoding.normalize(upload.original_filename),
                mime_type=upload.mime_type,
                content_handle=upload.content_handle,
            )
            for upload in submission.files
        ]
        return Submission(fields=fields, files=files)

    # Stage 2 -----------------------------------------------------------
    async def _upload_files(
        self,
        files: List[UploadedFile],
        document_id: str,
        stored: List[StoredFile],
        links: List[FileLink],
    ) -> None:
        for upload in files:
            content = await upload.content_handle.read()
            stored_file = await self._storage.upload(
                content,
                f"{document_id}_{upload.original_filename}",
                upload.mime_type,
            )
            stored.append(stored_file)

            key = classify(upload.field_name)
            if key is None:
                logger.info(
                    "File field '%s' has no record key; stored as %s",
                    upload.field_name,
                    stored_file.file_id,
                )
                continue

            url = stored_file.url
            if self._url_shortener is not None:
                url = await self._url_shortener.shorten(url)
            links.append(
                FileLink(
                    key=key,
                    url=url,
                    original_filename=upload.original_filename,
                    uploaded_at=self._clock().isoformat(),
                )
            )

    async def _compensate(self, document_id: str, stored: List[StoredFile]) -> None:
        if not stored:
            return
        if not self._compensate_on_failure:
            logger.warning(
                "[Submission %s] 실패한 제출의 파일 %d개가 남아 있습니다: %s",
                document_id,
                len(stored),
                ", ".join(item.file_id for item in stored),
            )
            return

        for item in reversed(stored):
            try:
                await self._storage.delete(item)
            except (StorageError, OSError) as exc:
                logger.error(
                    "[Submission %s] 업로드된 파일 %s 삭제 실패: %s",
                    document_id,
                    item.file_id,
                    exc,
                )
            else:
                logger.info("[Submission %s] 업로드된 파일 %s 삭제", document_id, item.file_id)

    # Cleanup -----------------------------------------------------------
    async def _release(self, files: List[UploadedFile]) -> None:
        released: Set[int] = set()
        for upload in files:
            handle = upload.content_handle
            if id(handle) in released:
                continue
            released.add(id(handle))
            try:
                await handle.close()
            except OSError as exc:
                logger.warning("Failed to release upload '%s': %s", upload.original_filename, exc)

    # Notifications -----------------------------------------------------
    def _schedule_notification(self, summary: SubmissionSummary) -> None:
        if self._notifier is None:
            return
        task = asyncio.create_task(self._notify(summary))
        self._pending_notifications.add(task)
        task.add_done_callback(self._pending_notifications.discard)

    async def _notify(self, summary: SubmissionSummary) -> None:
        assert self._notifier is not None
        try:
            await self._notifier.send(summary)
        except NotificationError as exc:
            logger.error(
                "[Submission %s] 알림 전송 실패 (참가자: %s): %s",
                summary.document_id,
                summary.participant_name,
                exc,
            )
        except Exception:
            logger.exception(
                "[Submission %s] 알림 전송 중 예기치 않은 오류 (참가자: %s)",
                summary.document_id,
                summary.participant_name,
            )

    async def aclose(self) -> None:
        """Wait for notifications that are still being delivered."""

        if self._pending_notifications:
            await asyncio.gather(*self._pending_notifications, return_exceptions=True)
