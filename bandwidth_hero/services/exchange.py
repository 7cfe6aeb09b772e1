"""
One client request through the proxy: fetch, decide, then redirect, bypass
or transform. Always produces exactly one response.
"""

import enum
import logging
from typing import AsyncIterator, Awaitable, Callable, Optional

from starlette.responses import Response, StreamingResponse

from ..core.config import Settings
from ..core.decision import should_redirect, should_transform
from ..core.errors import FetchError, TransformError
from ..core.fetcher import Fetcher, OriginResponse
from ..core.headers import copy_origin_headers, encode_location
from ..core.models import MediaDescriptor, ProxyRequest, TransformSpec
from .codec import ImageCodec
from .pipeline import transform

logger = logging.getLogger(__name__)

DEGRADED_BODY = "bandwidth-hero-proxy"


class RequestState(str, enum.Enum):
    RECEIVED = "received"
    FETCHING = "fetching"
    FETCH_FAILED = "fetch_failed"
    REDIRECTING = "redirecting"
    BYPASSING = "bypassing"
    TRANSFORMING = "transforming"
    RESPONDED = "responded"


def degraded_response() -> Response:
    return Response(content=DEGRADED_BODY, status_code=200, media_type="text/plain")


async def _stream_origin(origin: OriginResponse) -> AsyncIterator[bytes]:
    try:
        async for chunk in origin.iter_bytes():
            yield chunk
    except Exception as e:
        # Headers are already out; all we can do is end the body.
        logger.warning("[bypass] origin stream failed: %s", e)


class ClosingStreamingResponse(StreamingResponse):
    """StreamingResponse that runs `on_close` however the body ends.

    Covers completion, errors and client disconnects, including a disconnect
    before the body iterator was ever started.
    """

    def __init__(self, content, on_close: Callable[[], Awaitable[None]], **kwargs):
        super().__init__(content, **kwargs)
        self.on_close = on_close

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self.on_close()


class ProxyExchange:
    def __init__(
        self,
        request: ProxyRequest,
        fetcher: Fetcher,
        settings: Settings,
        codec: Optional[ImageCodec] = None,
    ):
        self.request = request
        self.fetcher = fetcher
        self.settings = settings
        self.codec = codec
        self.state = RequestState.RECEIVED
        self.response: Optional[Response] = None

    def _respond(self, response: Response) -> Response:
        if self.state is RequestState.RESPONDED:
            raise RuntimeError("exchange already responded")
        self.state = RequestState.RESPONDED
        self.response = response
        return response

    async def run(self) -> Response:
        self.state = RequestState.FETCHING
        try:
            origin = await self.fetcher.fetch(self.request)
        except FetchError as e:
            self.state = RequestState.FETCH_FAILED
            logger.warning("[fetch] %s", e)
            return self._respond(degraded_response())

        if should_redirect(origin.status_code):
            await origin.aclose()
            return self.redirect()

        descriptor = MediaDescriptor.from_headers(origin.headers)
        if should_transform(descriptor, self.request.webp):
            return await self.transform(origin, descriptor)
        return self.bypass(origin)

    def redirect(self) -> Optional[Response]:
        """Send the client to the original URL. No-op once a response exists.

        Origin headers are never copied here, so caching and identity headers
        (cache-control, expires, date, etag, x-powered-by) stay off the 302.
        """
        if self.state is RequestState.RESPONDED:
            return None
        self.state = RequestState.REDIRECTING
        logger.info("[redirect] %s", self.request.url)
        headers = {"location": encode_location(self.request.url), "content-length": "0"}
        return self._respond(Response(status_code=302, headers=headers))

    def bypass(self, origin: OriginResponse) -> Response:
        self.state = RequestState.BYPASSING
        headers, _ = copy_origin_headers(origin.headers.multi_items())
        headers["x-proxy-bypass"] = "1"
        length = origin.headers.get("content-length")
        # httpx hands out decoded bytes, so an encoded origin length no longer applies.
        if length is not None and not origin.is_encoded:
            headers["content-length"] = length
        return self._respond(
            ClosingStreamingResponse(
                _stream_origin(origin), on_close=origin.aclose, status_code=200, headers=headers
            )
        )

    async def transform(self, origin: OriginResponse, descriptor: MediaDescriptor) -> Response:
        self.state = RequestState.TRANSFORMING
        spec = TransformSpec.from_request(self.request)
        headers, _ = copy_origin_headers(origin.headers.multi_items())

        stream = transform(
            origin.iter_bytes(),
            spec,
            self.codec,
            chunk_size=self.settings.STREAM_CHUNK_SIZE,
            window=self.settings.STREAM_WINDOW,
        )

        async def close() -> None:
            await stream.aclose()
            await origin.aclose()

        try:
            size = await stream.prime()
        except TransformError as e:
            logger.warning("[transform] %s: %s", self.request.url, e)
            await close()
            return self._respond(degraded_response())

        original_size = descriptor.content_length
        headers["content-type"] = spec.media_type
        headers["x-original-size"] = str(original_size)
        headers["content-length"] = str(size)
        headers["x-bytes-saved"] = str(original_size - size)
        logger.info("[transform] %s: %d -> %d bytes", self.request.url, original_size, size)

        return self._respond(
            ClosingStreamingResponse(stream, on_close=close, status_code=200, headers=headers)
        )
