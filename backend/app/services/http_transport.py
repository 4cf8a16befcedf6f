"""HTTP transport used for every provider call.

Services and upload drivers receive a transport instance instead of creating
clients themselves, so tests can swap in a scripted fake.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from app.config import settings
from app.services.errors import UpstreamError

logger = logging.getLogger(__name__)


def extract_error_detail(response: httpx.Response) -> str:
    """Extract concise error detail from a provider response."""
    try:
        payload = response.json()
    except ValueError:
        text = response.text.strip()
        return text or f"HTTP {response.status_code}"

    if isinstance(payload, dict):
        error = payload.get("error")

        # Graph API and TikTok nest the error object
        if isinstance(error, dict):
            parts: List[str] = []
            for key in ("code", "type", "message"):
                if error.get(key):
                    parts.append(str(error[key]))
            if parts:
                return ": ".join(parts)

        parts = []
        if error:
            parts.append(str(error))
        if payload.get("error_description"):
            parts.append(str(payload["error_description"]))
        if parts:
            return ": ".join(parts)

    return f"HTTP {response.status_code}"


def response_payload(response: httpx.Response) -> Any:
    """Raw provider payload for diagnostics (JSON when possible)."""
    try:
        return response.json()
    except ValueError:
        return response.text


class HttpTransport:
    """Thin async wrapper over httpx that classifies transport failures."""

    def __init__(
        self,
        timeout: Optional[float] = None,
        connect_timeout: Optional[float] = None,
    ):
        self.timeout = timeout or settings.upload_http_timeout_seconds
        self.connect_timeout = connect_timeout or settings.oauth_http_timeout_seconds

    async def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Send one request. Non-2xx responses are returned, not raised."""
        host = httpx.URL(url).host
        timeout = httpx.Timeout(self.timeout, connect=self.connect_timeout)
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                return await client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("%s request to %s timed out", method, host)
            raise UpstreamError(
                f"Request to {host} timed out. Please try again.",
                network=True,
            ) from exc
        except httpx.RequestError as exc:
            logger.warning(
                "%s request to %s failed: %s",
                method,
                host,
                type(exc).__name__,
            )
            raise UpstreamError(f"Unable to reach {host}.", network=True) from exc

    async def get(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        return await self.request("GET", url, headers=headers, params=params)

    async def post(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
        files: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        return await self.request(
            "POST", url, headers=headers, params=params, data=data, json=json, files=files
        )

    async def put(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        content: Any = None,
    ) -> httpx.Response:
        return await self.request("PUT", url, headers=headers, content=content)
