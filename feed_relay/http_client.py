"""Shared aiohttp session for every outbound request of a cycle."""

import asyncio
import json
import ssl
from dataclasses import dataclass
from typing import Any

import aiohttp
import certifi

from .errors import RequestTimeoutError

DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; RSS-Arabic-Relay/2.0)"


@dataclass
class HttpResponse:
    """Status and body of a completed request."""

    status: int
    text: str
    reason: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> Any:
        """Decode the body as JSON; raises ValueError on malformed bodies."""
        return json.loads(self.text)


class HttpClient:
    """Thin async HTTP client with a uniform total timeout.

    The session is opened lazily inside the running loop and closed with
    ``close()`` or by leaving the ``async with`` block.
    """

    def __init__(self, timeout: float = 30.0, user_agent: str = DEFAULT_USER_AGENT):
        self.timeout = timeout
        self.user_agent = user_agent
        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> "HttpClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            ssl_context = ssl.create_default_context(cafile=certifi.where())
            connector = aiohttp.TCPConnector(ssl=ssl_context, limit_per_host=5)
            self._session = aiohttp.ClientSession(
                connector=connector,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={"User-Agent": self.user_agent},
            )
        return self._session

    async def close(self) -> None:
        """Close the underlying session, if one was opened."""
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def get(self, url: str, headers: dict[str, str] | None = None) -> HttpResponse:
        """GET ``url`` and return its status and decoded body."""
        return await self._request("GET", url, headers=headers)

    async def post_json(
        self,
        url: str,
        payload: dict[str, Any],
        headers: dict[str, str] | None = None,
    ) -> HttpResponse:
        """POST ``payload`` as JSON to ``url``."""
        return await self._request("POST", url, headers=headers, json=payload)

    async def _request(self, method: str, url: str, **kwargs) -> HttpResponse:
        session = self._get_session()
        try:
            async with session.request(method, url, **kwargs) as response:
                text = await response.text(errors="replace")
                return HttpResponse(
                    status=response.status, text=text, reason=response.reason or ""
                )
        except asyncio.TimeoutError as e:
            # aiohttp cancels the underlying request when the total timeout fires
            raise RequestTimeoutError(
                f"{method} {url} timed out after {self.timeout}s"
            ) from e
