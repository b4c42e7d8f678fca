"""Google Drive storage backend for submission attachments."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import httpx

from ..exceptions import GoogleAuthError, StorageError
from ..google_auth import GoogleCredentials, authorized_request
from ..models import StoredFile

logger = logging.getLogger(__name__)

DRIVE_API_BASE = "https://www.googleapis.com/drive/v3"
DRIVE_FILES_ENDPOINT = "/files"
DRIVE_UPLOAD_BASE = "https://www.googleapis.com/upload/drive/v3"
DEFAULT_CONTENT_TYPE = "application/octet-stream"


class GoogleDriveStorage:
    """Upload files into one Drive folder and share them by link.

    Every call passes ``supportsAllDrives`` so the folder may live on a shared
    drive; service accounts have no quota of their own.
    """

    def __init__(
        self,
        credentials: GoogleCredentials,
        *,
        folder_id: str,
        share_publicly: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._credentials = credentials
        self._folder_id = folder_id
        self._share_publicly = share_publicly
        self._transport = transport

    # HTTP plumbing -----------------------------------------------------
    async def _request(
        self,
        *,
        method: str,
        path: str,
        base_url: str = DRIVE_API_BASE,
        params: Optional[Dict[str, Any]] = None,
        json_data: Optional[Dict[str, Any]] = None,
        files: Optional[Dict[str, Any]] = None,
        timeout: float = 10.0,
    ) -> httpx.Response:
        async def send(auth_headers: Dict[str, str]) -> httpx.Response:
            headers = {"Accept": "application/json", **auth_headers}
            async with httpx.AsyncClient(
                timeout=timeout, base_url=base_url, transport=self._transport
            ) as client:
                return await client.request(
                    method,
                    path,
                    params=params,
                    json=json_data,
                    files=files,
                    headers=headers,
                )

        try:
            return await authorized_request(self._credentials, send)
        except GoogleAuthError as exc:
            raise StorageError(str(exc)) from exc
        except httpx.HTTPError as exc:
            logger.error("Google Drive request errored: %s %s -> %s", method, path, exc)
            raise StorageError("Google Drive 요청이 실패했습니다.") from exc

    def _json(self, response: httpx.Response, *, action: str) -> Dict[str, Any]:
        if response.is_error:
            logger.error("Google Drive %s failed: %s", action, response.text)
            raise StorageError(f"Google Drive {action} 요청이 실패했습니다. ({response.status_code})")
        try:
            payload = response.json() if response.text else {}
        except ValueError as exc:
            logger.error("Google Drive %s returned non-JSON body: %s", action, response.text[:200])
            raise StorageError("Google Drive 응답을 해석하지 못했습니다.") from exc
        if not isinstance(payload, dict):
            logger.error("Unexpected Google Drive response for %s: %s", action, payload)
            raise StorageError("Google Drive 응답을 해석하지 못했습니다.")
        return payload

    # Operations --------------------------------------------------------
    async def upload(
        self,
        content: bytes,
        destination_key: str,
        content_type: Optional[str],
    ) -> StoredFile:
        logger.info("[Drive] '%s' 파일 업로드 시도...", destination_key)
        metadata = {
            "name": destination_key,
            "parents": [self._folder_id],
        }
        files = {
            "metadata": (
                "metadata",
                json.dumps(metadata, ensure_ascii=False),
                "application/json; charset=UTF-8",
            ),
            "file": (
                destination_key,
                content,
                content_type or DEFAULT_CONTENT_TYPE,
            ),
        }
        response = await self._request(
            method="POST",
            path=DRIVE_FILES_ENDPOINT,
            base_url=DRIVE_UPLOAD_BASE,
            params={
                "uploadType": "multipart",
                "fields": "id,name,webViewLink",
                "supportsAllDrives": "true",
            },
            files=files,
            timeout=30.0,
        )
        data = self._json(response, action="upload")
        file_id = data.get("id")
        if not isinstance(file_id, str) or not file_id:
            logger.error("Google Drive upload response missing id: %s", data)
            raise StorageError("업로드한 파일의 ID를 확인하지 못했습니다.")
        logger.info("[Drive] '%s' 파일 업로드 성공. ID: %s", destination_key, file_id)

        if self._share_publicly:
            await self._grant_reader(file_id)

        link = data.get("webViewLink")
        if not isinstance(link, str) or not link:
            link = await self._fetch_link(file_id)
        return StoredFile(file_id=file_id, url=link)

    async def _grant_reader(self, file_id: str) -> None:
        response = await self._request(
            method="POST",
            path=f"{DRIVE_FILES_ENDPOINT}/{file_id}/permissions",
            params={"supportsAllDrives": "true"},
            json_data={"role": "reader", "type": "anyone"},
        )
        self._json(response, action="permission")

    async def _fetch_link(self, file_id: str) -> str:
        response = await self._request(
            method="GET",
            path=f"{DRIVE_FILES_ENDPOINT}/{file_id}",
            params={"fields": "webViewLink", "supportsAllDrives": "true"},
        )
        data = self._json(response, action="link")
        link = data.get("webViewLink")
        if not isinstance(link, str) or not link:
            raise StorageError("업로드한 파일의 링크를 확인하지 못했습니다.")
        return link

    async def delete(self, stored: StoredFile) -> None:
        response = await self._request(
            method="DELETE",
            path=f"{DRIVE_FILES_ENDPOINT}/{stored.file_id}",
            params={"supportsAllDrives": "true"},
        )
        if response.status_code == 404:
            return
        if response.is_error:
            logger.error("Google Drive delete failed for %s: %s", stored.file_id, response.text)
            raise StorageError(f"Google Drive 파일을 삭제하지 못했습니다. ({response.status_code})")
