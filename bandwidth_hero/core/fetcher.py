"""
Outbound origin client.
"""

import logging
from typing import AsyncIterator, Dict, Optional

import httpx

from .errors import FetchError
from .models import ProxyRequest

logger = logging.getLogger(__name__)


class OriginResponse:
    """Status, headers and a body stream that can be consumed exactly once."""

    def __init__(self, response: httpx.Response):
        self._response = response
        self._consumed = False

    @property
    def status_code(self) -> int:
        return self._response.status_code

    @property
    def headers(self) -> httpx.Headers:
        return self._response.headers

    @property
    def is_encoded(self) -> bool:
        """True when the body went through a content-encoding httpx decodes for us."""
        encoding = self._response.headers.get("content-encoding", "identity").strip().lower()
        return encoding not in ("", "identity")

    def iter_bytes(self) -> AsyncIterator[bytes]:
        if self._consumed:
            raise RuntimeError("origin body already consumed")
        self._consumed = True
        return self._response.aiter_bytes()

    async def aclose(self) -> None:
        await self._response.aclose()


class Fetcher:
    def __init__(self, client: httpx.AsyncClient, user_agent: str, via: str):
        self.client = client
        self.user_agent = user_agent
        self.via = via

    def build_headers(self, request: ProxyRequest) -> Dict[str, str]:
        headers = dict(request.forwarded_headers)
        headers["user-agent"] = self.user_agent
        if request.forwarded_for:
            headers["x-forwarded-for"] = request.forwarded_for
        headers["via"] = self.via
        return headers

    async def fetch(self, request: ProxyRequest, headers: Optional[Dict[str, str]] = None) -> OriginResponse:
        """Open a streaming GET to the origin; raise FetchError when it can't be reached."""
        if headers is None:
            headers = self.build_headers(request)
        try:
            outbound = self.client.build_request("GET", request.url, headers=headers)
            response = await self.client.send(outbound, stream=True)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise FetchError(request.url, str(e) or type(e).__name__) from e
        logger.debug("[fetch] %s -> %s", request.url, response.status_code)
        return OriginResponse(response)
