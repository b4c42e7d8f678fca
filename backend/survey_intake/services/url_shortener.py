from __future__ import annotations

import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

BITLY_SHORTEN_URL = "https://api-ssl.bitly.com/v4/shorten"


class BitlyShortener:
    """Shorten file links with Bitly; the long URL is kept when anything goes wrong."""

    def __init__(
        self,
        access_token: str,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._access_token = access_token
        self._transport = transport

    async def shorten(self, url: str) -> str:
        headers = {
            "Authorization": f"Bearer {self._access_token}",
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
                response = await client.post(
                    BITLY_SHORTEN_URL, headers=headers, json={"long_url": url}
                )
        except httpx.HTTPError as exc:
            logger.warning("Bitly request failed for %s: %s", url, exc)
            return url

        if response.is_error:
            logger.warning("Bitly shorten failed for %s: %s", url, response.text)
            return url

        try:
            payload = response.json()
        except ValueError:
            logger.warning("Bitly returned non-JSON body for %s", url)
            return url
        link = payload.get("link") if isinstance(payload, dict) else None
        if not isinstance(link, str) or not link:
            logger.warning("Bitly response missing link: %s", payload)
            return url
        return link
