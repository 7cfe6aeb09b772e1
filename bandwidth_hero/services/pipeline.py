"""
Streaming transform: origin chunks -> spooled decoder -> encoder -> bounded
output queue -> client.

Decoding and encoding run in worker threads that never wait on the client.
The encoded output is handed out from the event loop through a queue that
holds at most `window` chunks, so a slow client only stalls its own request.
`TransformStream.size` resolves to the encoded byte count as soon as the
encoder is done, before the first chunk is sent.
"""

import asyncio
import io
import logging
from typing import AsyncIterator, Optional

from ..core.errors import TransformError
from ..core.models import TransformSpec
from .codec import ImageCodec, default_codec

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024
DEFAULT_WINDOW = 4

_EOF = object()


def _encode(codec: ImageCodec, image, spec: TransformSpec) -> bytes:
    buffer = io.BytesIO()
    codec.encode(image, spec, buffer)
    return buffer.getvalue()


class TransformStream:
    def __init__(
        self,
        source: AsyncIterator[bytes],
        spec: TransformSpec,
        codec: Optional[ImageCodec] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        window: int = DEFAULT_WINDOW,
    ):
        self.source = source
        self.spec = spec
        self.codec = codec or default_codec
        self.chunk_size = max(1, chunk_size)
        self.size: asyncio.Future = asyncio.get_running_loop().create_future()
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max(1, window))
        self._task: Optional[asyncio.Task] = None

    async def _run(self) -> None:
        decoder = None
        try:
            decoder = self.codec.decoder(self.spec)
            async for chunk in self.source:
                await asyncio.to_thread(decoder.feed, chunk)
            image = await asyncio.to_thread(decoder.close)
            output = await asyncio.to_thread(_encode, self.codec, image, self.spec)
        except Exception as e:
            if decoder is not None:
                decoder.discard()
            error = e if isinstance(e, TransformError) else TransformError(f"{type(e).__name__}: {e}")
            if not self.size.done():
                self.size.set_exception(error)
            await self._queue.put(_EOF)
            return
        except asyncio.CancelledError:
            if decoder is not None:
                decoder.discard()
            raise

        if not self.size.done():
            self.size.set_result(len(output))
        view = memoryview(output)
        for start in range(0, len(view), self.chunk_size):
            await self._queue.put(bytes(view[start:start + self.chunk_size]))
        await self._queue.put(_EOF)

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    async def prime(self) -> int:
        """Wait for the encoder and return the final size.

        Raises TransformError if decoding or encoding failed.
        """
        self.start()
        return await asyncio.shield(self.size)

    async def __aiter__(self) -> AsyncIterator[bytes]:
        self.start()
        try:
            while True:
                chunk = await self._queue.get()
                if chunk is _EOF:
                    break
                yield chunk
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        if not self.size.done():
            self.size.cancel()
        elif not self.size.cancelled():
            self.size.exception()  # mark retrieved
        aclose = getattr(self.source, "aclose", None)
        if aclose is not None:
            await aclose()


def transform(
    source: AsyncIterator[bytes],
    spec: TransformSpec,
    codec: Optional[ImageCodec] = None,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    window: int = DEFAULT_WINDOW,
) -> TransformStream:
    """Compose decode, resize, grayscale and encode over a byte stream.

    Must be called from a running event loop. The returned stream is an
    async iterator of encoded chunks; its `size` future carries the final
    byte count.
    """
    return TransformStream(source, spec, codec, chunk_size=chunk_size, window=window)
