from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

load_dotenv()

REQUIRED_ENV_VARS = (
    "GOOGLE_CLIENT_ID",
    "GOOGLE_CLIENT_SECRET",
    "GOOGLE_REFRESH_TOKEN",
    "GOOGLE_DRIVE_FOLDER_ID",
    "SPREADSHEET_ID",
)

_TRUTHY = {"1", "true", "yes", "on"}


class ConfigurationMissing(RuntimeError):
    """Raised at startup when required environment variables are absent."""

    def __init__(self, missing: tuple[str, ...]) -> None:
        self.missing = missing
        super().__init__(
            "필수 환경 변수가 설정되지 않았습니다: " + ", ".join(missing)
        )


@dataclass(frozen=True)
class Settings:
    """Application configuration loaded from environment variables."""

    client_id: str
    client_secret: str
    refresh_token: str
    drive_folder_id: str
    spreadsheet_id: str
    sheet_name: str = "Sheet1"
    gmail_sender: str = ""
    notify_email_to: str = ""
    bitly_access_token: str = ""
    frontend_origin: str = "*"
    upload_timeout_seconds: float = 60.0
    persist_timeout_seconds: float = 30.0
    compensate_on_failure: bool = True
    encoding_repair: bool = True
    log_level: str = "INFO"

    @property
    def notifications_enabled(self) -> bool:
        return bool(self.notify_email_to and self.gmail_sender)

    @property
    def url_shortening_enabled(self) -> bool:
        return bool(self.bitly_access_token)

    @property
    def spreadsheet_url(self) -> str:
        return f"https://docs.google.com/spreadsheets/d/{self.spreadsheet_id}"


def _flag(value: Optional[str], default: bool) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() in _TRUTHY


def _seconds(value: Optional[str], default: float) -> float:
    if value is None or not value.strip():
        return default
    try:
        parsed = float(value)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    env = os.environ if environ is None else environ

    missing = [name for name in REQUIRED_ENV_VARS if not env.get(name, "").strip()]
    notify_to = env.get("NOTIFY_EMAIL_TO", "").strip()
    if notify_to and not env.get("GMAIL_SENDER", "").strip():
        missing.append("GMAIL_SENDER")
    if missing:
        raise ConfigurationMissing(tuple(missing))

    return Settings(
        client_id=env["GOOGLE_CLIENT_ID"].strip(),
        client_secret=env["GOOGLE_CLIENT_SECRET"].strip(),
        refresh_token=env["GOOGLE_REFRESH_TOKEN"].strip(),
        drive_folder_id=env["GOOGLE_DRIVE_FOLDER_ID"].strip(),
        spreadsheet_id=env["SPREADSHEET_ID"].strip(),
        sheet_name=env.get("SHEET_NAME", "").strip() or "Sheet1",
        gmail_sender=env.get("GMAIL_SENDER", "").strip(),
        notify_email_to=notify_to,
        bitly_access_token=env.get("BITLY_ACCESS_TOKEN", "").strip(),
        frontend_origin=env.get("FRONTEND_ORIGIN", "").strip() or "*",
        upload_timeout_seconds=_seconds(env.get("UPLOAD_TIMEOUT_SECONDS"), 60.0),
        persist_timeout_seconds=_seconds(env.get("PERSIST_TIMEOUT_SECONDS"), 30.0),
        compensate_on_failure=_flag(env.get("COMPENSATE_ON_FAILURE"), True),
        encoding_repair=_flag(env.get("ENCODING_REPAIR"), True),
        log_level=env.get("LOG_LEVEL", "").strip().upper() or "INFO",
    )
