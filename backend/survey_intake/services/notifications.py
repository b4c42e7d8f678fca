"""E-mail notification sent to the researcher after each submission."""
from __future__ import annotations

import base64
import html
import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Dict, Optional

import httpx

from .exceptions import GoogleAuthError, NotificationError
from .google_auth import GoogleCredentials, authorized_request
from .models import SubmissionSummary

logger = logging.getLogger(__name__)

GMAIL_SEND_URL = "https://gmail.googleapis.com/gmail/v1/users/me/messages/send"


def build_subject(summary: SubmissionSummary) -> str:
    return f"[AI 면접 결과 제출] {summary.participant_name}님의 응답이 도착했습니다."


def build_html_body(summary: SubmissionSummary) -> str:
    items = "".join(
        f'<li>{html.escape(link.key)}: <a href="{html.escape(link.url)}">'
        f"{html.escape(link.original_filename)}</a></li>"
        for link in summary.file_links
    )
    files_section = f"<ul>{items}</ul>" if items else "<p>첨부 파일 없음</p>"
    return (
        f"<h2>{html.escape(summary.participant_name)}님의 응답이 제출되었습니다.</h2>"
        f"<p>문서 ID: {html.escape(summary.document_id)}</p>"
        f'<p><a href="{html.escape(summary.record_url)}">응답 시트 열기</a></p>'
        f"<h3>업로드된 파일</h3>{files_section}"
    )


class GmailNotifier:
    """Send an HTML summary through the Gmail API as the authorized account."""

    def __init__(
        self,
        credentials: GoogleCredentials,
        *,
        sender: str,
        recipient: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._credentials = credentials
        self._sender = sender
        self._recipient = recipient
        self._transport = transport

    def build_message(self, summary: SubmissionSummary) -> str:
        message = MIMEMultipart("alternative")
        message.attach(MIMEText(build_html_body(summary), "html", "utf-8"))
        message["To"] = self._recipient
        message["From"] = self._sender
        message["Subject"] = build_subject(summary)
        return base64.urlsafe_b64encode(message.as_bytes()).decode()

    async def send(self, summary: SubmissionSummary) -> None:
        raw = self.build_message(summary)

        async def post(auth_headers: Dict[str, str]) -> httpx.Response:
            async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
                return await client.post(GMAIL_SEND_URL, headers=auth_headers, json={"raw": raw})

        logger.info("[Email] 이메일 전송 시도... (%s)", summary.document_id)
        try:
            response = await authorized_request(self._credentials, post)
        except GoogleAuthError as exc:
            raise NotificationError(str(exc)) from exc
        except httpx.HTTPError as exc:
            logger.error("Gmail send request errored: %s", exc)
            raise NotificationError("이메일 전송 요청이 실패했습니다.") from exc

        if response.is_error:
            logger.error("Gmail API error: %s", response.text)
            raise NotificationError(f"이메일 전송에 실패했습니다. ({response.status_code})")

        try:
            data = response.json() if response.text else {}
        except ValueError:
            data = {}
        message_id = data.get("id") if isinstance(data, dict) else None
        logger.info("[Email] 이메일 전송 성공: %s", message_id)
