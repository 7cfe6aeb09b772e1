"""
Fixtures compartidos: origen simulado con httpx.MockTransport y codecs falsos.
"""

from io import BytesIO

import httpx
import pytest
from fastapi.testclient import TestClient
from PIL import Image

from bandwidth_hero.core.config import Settings
from bandwidth_hero.main import create_app


def make_image_bytes(fmt: str = "JPEG", size=(64, 48), mode: str = "RGB") -> bytes:
    """Genera una imagen pequeña con un degradado"""
    image = Image.new(mode, size)
    width, height = size
    for x in range(width):
        for y in range(height):
            value = (x * 255 // max(1, width - 1), y * 255 // max(1, height - 1), 128)
            if mode == "RGBA":
                value = value + (200,)
            image.putpixel((x, y), value)
    buffer = BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


class RecordingDecoder:
    def __init__(self):
        self.fed = 0

    def feed(self, data: bytes) -> None:
        self.fed += len(data)

    def close(self):
        return Image.new("RGB", (4, 4))

    def discard(self) -> None:
        pass


class RecordingCodec:
    """Codec falso que registra los parámetros y escribe `chunks` bloques"""

    def __init__(self, chunks: int = 1, chunk: bytes = b"fake-webp"):
        self.chunks = chunks
        self.chunk = chunk
        self.specs = []
        self.decoders = []

    def decoder(self, spec):
        decoder = RecordingDecoder()
        self.decoders.append(decoder)
        return decoder

    def encode(self, image, spec, fp) -> None:
        self.specs.append(spec)
        for _ in range(self.chunks):
            fp.write(self.chunk)


@pytest.fixture
def settings():
    return Settings(FETCH_TIMEOUT=5.0, STREAM_CHUNK_SIZE=64 * 1024, STREAM_WINDOW=4)


@pytest.fixture
def make_client(settings):
    """Fábrica de TestClient con un origen simulado"""
    clients = []

    def _make(handler, codec=None):
        app = create_app(settings, transport=httpx.MockTransport(handler), codec=codec)
        client = TestClient(app, follow_redirects=False)
        client.__enter__()
        clients.append(client)
        return client

    yield _make

    for client in clients:
        client.__exit__(None, None, None)
