from __future__ import annotations

import httpx

from .errors import AppLookupError

PLAYSTORE_URL = "https://play.google.com/store/apps/details"


class PlayStoreClient:
    def __init__(self, timeout_sec: float = 20, transport: httpx.AsyncBaseTransport | None = None):
        self.timeout_sec = timeout_sec
        self._transport = transport

    async def app_exists(self, app_id: str) -> bool:
        """True if the Play Store has a listing for ``app_id``."""
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_sec, follow_redirects=True, transport=self._transport
            ) as client:
                resp = await client.head(PLAYSTORE_URL, params={"id": app_id, "gl": "US"})
        except httpx.HTTPError as e:
            raise AppLookupError(f"Play Store lookup failed: {e!r}") from e
        return resp.status_code == 200
