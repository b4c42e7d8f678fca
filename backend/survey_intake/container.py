from __future__ import annotations

from typing import Optional

from .config import Settings, load_settings
from .services.google_auth import GoogleCredentials
from .services.google_drive import GoogleDriveStorage
from .services.google_sheets import GoogleSheetsRecordStore
from .services.notifications import GmailNotifier
from .services.orchestrator import SubmissionOrchestrator
from .services.url_shortener import BitlyShortener


class Container:
    """Application service container for dependency management."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or load_settings()
        self._credentials = GoogleCredentials(self._settings)
        self._storage = GoogleDriveStorage(
            self._credentials, folder_id=self._settings.drive_folder_id
        )
        self._record_store = GoogleSheetsRecordStore(
            self._credentials,
            spreadsheet_id=self._settings.spreadsheet_id,
            sheet_name=self._settings.sheet_name,
        )
        self._notifier: Optional[GmailNotifier] = None
        if self._settings.notifications_enabled:
            self._notifier = GmailNotifier(
                self._credentials,
                sender=self._settings.gmail_sender,
                recipient=self._settings.notify_email_to,
            )
        self._url_shortener: Optional[BitlyShortener] = None
        if self._settings.url_shortening_enabled:
            self._url_shortener = BitlyShortener(self._settings.bitly_access_token)
        self._orchestrator = SubmissionOrchestrator(
            storage=self._storage,
            record_store=self._record_store,
            notifier=self._notifier,
            url_shortener=self._url_shortener,
            record_url=self._settings.spreadsheet_url,
            upload_timeout=self._settings.upload_timeout_seconds,
            persist_timeout=self._settings.persist_timeout_seconds,
            compensate_on_failure=self._settings.compensate_on_failure,
            repair_encoding=self._settings.encoding_repair,
        )

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def storage(self) -> GoogleDriveStorage:
        return self._storage

    @property
    def record_store(self) -> GoogleSheetsRecordStore:
        return self._record_store

    @property
    def notifier(self) -> Optional[GmailNotifier]:
        return self._notifier

    @property
    def orchestrator(self) -> SubmissionOrchestrator:
        return self._orchestrator
