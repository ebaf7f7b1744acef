"""
HTTP transport for the remote news service.
Performs single round trips with mandatory timeouts and classifies failures.
"""

import asyncio
import json
import logging
import math
from typing import Any, Dict, Optional

import aiohttp

from app.utils.config import get_service_config
from app.client.errors import (
    MalformedResponse,
    NetworkError,
    Offline,
    RequestTimeout,
    error_for_status,
)

logger = logging.getLogger(__name__)


def _clean_params(params: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """Drop empty values and stringify the rest for the query string."""
    cleaned = {}
    for key, value in (params or {}).items():
        if value is None:
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        cleaned[key] = str(value)
    return cleaned


class TransportClient:
    """
    Thin aiohttp wrapper issuing one request per call.

    No retry, caching, or payload interpretation happens here beyond
    JSON decoding; callers decide what a response means.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[aiohttp.ClientSession] = None
    ):
        """
        Initialize the transport.

        Args:
            base_url: Service base URL. If None, uses config.
            timeout: Default per-request timeout in seconds. If None, uses config.
            session: Existing session to reuse; it is not closed by this client.
        """
        self.config = get_service_config()
        self.base_url = (base_url or self.config["base_url"]).rstrip("/")
        self.default_timeout = timeout if timeout is not None else self.config["timeout"]
        self.session = session
        self._owns_session = session is None

    async def __aenter__(self):
        """Async context manager entry."""
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def open(self) -> None:
        if self.session is None:
            self.session = aiohttp.ClientSession(
                headers={
                    "User-Agent": self.config["user_agent"],
                    "Accept": "application/json",
                }
            )
            self._owns_session = True

    async def close(self) -> None:
        if self.session and self._owns_session:
            await self.session.close()
        self.session = None

    async def get(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None
    ) -> Any:
        """
        Issue a GET request and return the decoded JSON body.

        Args:
            path: Path relative to the base URL
            params: Query parameters; None values are omitted
            timeout: Timeout in seconds (must be finite and positive)

        Returns:
            Decoded JSON body

        Raises:
            NetworkError: Classified failure
        """
        return await self._request("GET", path, timeout, params=_clean_params(params))

    async def post(
        self,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None
    ) -> Any:
        """Issue a POST request with a JSON body and return the decoded JSON body."""
        return await self._request("POST", path, timeout, json=payload or {})

    async def _request(self, method: str, path: str, timeout: Optional[float], **kwargs) -> Any:
        timeout = self.default_timeout if timeout is None else timeout
        if timeout is None or not math.isfinite(timeout) or timeout <= 0:
            raise ValueError(f"A finite positive timeout is required, got {timeout!r}")

        if self.session is None:
            await self.open()

        url = f"{self.base_url}/{path.lstrip('/')}"

        try:
            async with self.session.request(
                method,
                url,
                timeout=aiohttp.ClientTimeout(total=timeout),
                **kwargs
            ) as response:
                raw = await response.read()

                if response.status >= 400:
                    text = raw.decode("utf-8", errors="replace")
                    detail = self._error_detail(text) or f"HTTP {response.status}"
                    raise error_for_status(response.status, detail, path=path)

                try:
                    body = raw.decode(response.charset or "utf-8")
                    return json.loads(body) if body.strip() else {}
                except (ValueError, LookupError) as e:
                    raise MalformedResponse(
                        f"Undecodable body from {path}: {e}",
                        status_code=response.status,
                        path=path
                    )

        except NetworkError:
            raise
        except asyncio.TimeoutError:
            logger.warning(f"{method} {path} timed out after {timeout}s")
            raise RequestTimeout(f"Request to {path} timed out after {timeout}s", path=path)
        except aiohttp.ClientError as e:
            logger.warning(f"{method} {path} failed: {e}")
            raise Offline(f"Could not reach {self.base_url}: {e}", path=path)

    @staticmethod
    def _error_detail(body: str) -> str:
        """Pull a message out of an error body, if there is one."""
        try:
            data = json.loads(body)
        except ValueError:
            return ""
        if isinstance(data, dict):
            return str(data.get("message") or data.get("error") or "")
        return ""
