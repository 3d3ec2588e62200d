"""
User profile loading from the platform's profile API.
"""
from __future__ import annotations

from typing import Any, Optional, Protocol

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

logger = structlog.get_logger()


class UserLoader(Protocol):
    async def load_user(self, sender_id: str) -> Optional[dict[str, Any]]:
        ...


class HttpUserLoader:
    """GET `{base_url}/{sender_id}` with the page token; None on failure."""

    DEFAULT_FIELDS = "first_name,last_name,profile_pic,locale,timezone,gender"

    def __init__(self, base_url: str, token: str, fields: str = DEFAULT_FIELDS,
                 timeout_s: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.fields = fields
        self.timeout_s = timeout_s

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(min=1, max=5),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _fetch(self, sender_id: str) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout_s) as client:
            return await client.get(
                f"{self.base_url}/{sender_id}",
                params={"fields": self.fields, "access_token": self.token},
            )

    async def load_user(self, sender_id: str) -> Optional[dict[str, Any]]:
        try:
            resp = await self._fetch(sender_id)
        except httpx.HTTPError as e:
            logger.warning("user_profile_load_failed", sender_id=sender_id, error=str(e))
            return None
        if resp.status_code >= 400:
            logger.warning("user_profile_load_failed", sender_id=sender_id,
                           status=resp.status_code)
            return None
        return resp.json()
