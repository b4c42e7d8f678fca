"""Access tokens for the Google APIs used by the intake service."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, Optional

import httpx

from ..config import Settings
from .exceptions import GoogleAuthError

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"


@dataclass
class AccessToken:
    access_token: str
    expires_in: int
    saved_at: datetime
    token_type: str = "Bearer"

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_in <= 0:
            return False
        expires_at = self.saved_at + timedelta(seconds=self.expires_in)
        current = now or datetime.now(timezone.utc)
        return current >= expires_at - timedelta(minutes=1)


class GoogleCredentials:
    """Exchange the configured refresh token for short lived access tokens."""

    def __init__(
        self,
        settings: Settings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._settings = settings
        self._transport = transport
        self._token: Optional[AccessToken] = None
        self._lock = asyncio.Lock()

    async def access_token(self, *, force_refresh: bool = False) -> str:
        async with self._lock:
            if force_refresh or self._token is None or self._token.is_expired():
                self._token = await self._refresh()
            return self._token.access_token

    async def _refresh(self) -> AccessToken:
        data = {
            "client_id": self._settings.client_id,
            "client_secret": self._settings.client_secret,
            "refresh_token": self._settings.refresh_token,
            "grant_type": "refresh_token",
        }

        try:
            async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
                response = await client.post(GOOGLE_TOKEN_ENDPOINT, data=data)
        except httpx.HTTPError as exc:
            logger.error("Google token refresh request failed: %s", exc)
            raise GoogleAuthError("Google 토큰을 새로고침하지 못했습니다.") from exc

        if response.is_error:
            logger.error("Google token refresh failed: %s", response.text)
            raise GoogleAuthError("Google 토큰을 새로고침하지 못했습니다.")

        try:
            payload = response.json()
        except ValueError as exc:
            logger.error("Google token refresh returned non-JSON body: %s", response.text[:200])
            raise GoogleAuthError("Google 토큰 응답을 해석하지 못했습니다.") from exc
        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not isinstance(access_token, str) or not access_token:
            logger.error("Google token refresh response missing access_token: %s", payload)
            raise GoogleAuthError("Google 토큰 응답에 access_token이 없습니다.")

        try:
            expires_in = int(payload.get("expires_in", 3600))
        except (TypeError, ValueError):
            expires_in = 3600

        return AccessToken(
            access_token=access_token,
            expires_in=expires_in,
            saved_at=datetime.now(timezone.utc),
            token_type=str(payload.get("token_type") or "Bearer"),
        )


async def authorized_request(
    credentials: GoogleCredentials,
    send: Callable[[Dict[str, str]], Awaitable[httpx.Response]],
) -> httpx.Response:
    """Run ``send`` with a bearer header, refreshing once when Google answers 401."""

    token = await credentials.access_token()
    response = await send({"Authorization": f"Bearer {token}"})
    if response.status_code != 401:
        return response

    logger.info("Google API returned 401, retrying with a refreshed token")
    token = await credentials.access_token(force_refresh=True)
    return await send({"Authorization": f"Bearer {token}"})
