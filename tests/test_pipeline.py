"""
Tests para el pipeline de transformación en streaming
"""

import asyncio
import tracemalloc
from concurrent.futures import ThreadPoolExecutor
from io import BytesIO

import pytest
from PIL import Image

from bandwidth_hero.core.errors import TransformError
from bandwidth_hero.core.models import TransformSpec
from bandwidth_hero.services.codec import PillowCodec, cap_height, to_grayscale
from bandwidth_hero.services.pipeline import transform

from conftest import RecordingCodec, make_image_bytes


async def chunked(data: bytes, size: int = 512):
    for start in range(0, len(data), size):
        yield data[start:start + size]


class BrokenDecoder:
    def feed(self, data):
        pass

    def close(self):
        raise OSError("cannot parse this image")

    def discard(self):
        pass


class BrokenCodec(RecordingCodec):
    def decoder(self, spec):
        return BrokenDecoder()


class TestPipelineWithRecordingCodec:
    """Composición y control de flujo con un codec falso"""

    def test_parameters_reach_the_encoder(self):
        async def run():
            codec = RecordingCodec()
            spec = TransformSpec(grayscale=False, quality=40)
            stream = transform(chunked(b"x" * 4000), spec, codec)
            size = await stream.prime()
            body = b"".join([chunk async for chunk in stream])
            return codec, size, body

        codec, size, body = asyncio.run(run())
        assert codec.specs == [TransformSpec(grayscale=False, quality=40)]
        assert codec.decoders[0].fed == 4000
        assert body == b"fake-webp"
        assert size == len(body)

    def test_size_is_known_before_a_small_window_drains(self):
        async def run():
            codec = RecordingCodec(chunks=10, chunk=b"y" * 100)
            stream = transform(chunked(b"x" * 100), TransformSpec(), codec, chunk_size=100, window=1)
            size = await stream.prime()
            chunks = [chunk async for chunk in stream]
            return size, chunks

        size, chunks = asyncio.run(run())
        assert size == 1000
        assert [len(chunk) for chunk in chunks] == [100] * 10

    def test_output_is_split_into_chunks(self):
        async def run():
            codec = RecordingCodec(chunks=1, chunk=b"z" * 250)
            stream = transform(chunked(b"x"), TransformSpec(), codec, chunk_size=100, window=8)
            await stream.prime()
            return [len(chunk) async for chunk in stream]

        assert asyncio.run(run()) == [100, 100, 50]

    def test_slow_clients_do_not_block_other_requests(self):
        async def run():
            loop = asyncio.get_running_loop()
            loop.set_default_executor(ThreadPoolExecutor(max_workers=2))
            codec = RecordingCodec(chunks=50, chunk=b"y" * 10)
            # Two consumers that never read past the first chunk.
            stalled = [
                transform(chunked(b"x" * 100), TransformSpec(), codec, chunk_size=10, window=1)
                for _ in range(2)
            ]
            for stream in stalled:
                await stream.prime()
            other = transform(chunked(b"x" * 100), TransformSpec(), RecordingCodec())
            try:
                return await asyncio.wait_for(other.prime(), 3)
            finally:
                for stream in stalled + [other]:
                    await stream.aclose()

        assert asyncio.run(run()) == len(b"fake-webp")

    def test_close_cancels_a_pending_origin_read(self):
        state = {"closed": False}

        async def hanging_source():
            try:
                yield b"x" * 10
                await asyncio.Event().wait()
                yield b"never"
            finally:
                state["closed"] = True

        async def run():
            stream = transform(hanging_source(), TransformSpec(), RecordingCodec())
            prime = asyncio.create_task(stream.prime())
            await asyncio.sleep(0.1)
            await stream.aclose()
            with pytest.raises(asyncio.CancelledError):
                await prime
            return stream

        stream = asyncio.run(run())
        assert state["closed"] is True
        assert stream.size.cancelled()

    def test_decode_failure_raises_transform_error(self):
        async def run():
            stream = transform(chunked(b"garbage"), TransformSpec(), BrokenCodec())
            try:
                await stream.prime()
            finally:
                await stream.aclose()

        with pytest.raises(TransformError):
            asyncio.run(run())


class TestPipelineWithPillow:
    """Codificación real a WebP"""

    def test_jpeg_is_reencoded_to_grayscale_webp(self):
        source = make_image_bytes("JPEG", size=(120, 80))

        async def run():
            stream = transform(chunked(source), TransformSpec(quality=50))
            size = await stream.prime()
            body = b"".join([chunk async for chunk in stream])
            return size, body

        size, body = asyncio.run(run())
        assert size == len(body)
        image = Image.open(BytesIO(body))
        assert image.format == "WEBP"
        assert image.size == (120, 80)
        assert _is_gray(image)

    def test_color_is_kept_when_grayscale_disabled(self):
        source = make_image_bytes("PNG", size=(32, 32))

        async def run():
            stream = transform(chunked(source), TransformSpec(grayscale=False))
            await stream.prime()
            return b"".join([chunk async for chunk in stream])

        image = Image.open(BytesIO(asyncio.run(run()))).convert("RGB")
        red, green, blue = image.getpixel((31, 0))
        assert red > green

    def test_corrupt_image_raises_transform_error(self):
        async def run():
            stream = transform(chunked(b"\xff\xd8\xff" + b"\x00" * 3000), TransformSpec())
            try:
                await stream.prime()
            finally:
                await stream.aclose()

        with pytest.raises(TransformError):
            asyncio.run(run())


def _is_gray(image, tolerance: int = 3) -> bool:
    rgb = image.convert("RGB")
    return all(max(r, g, b) - min(r, g, b) <= tolerance for r, g, b in rgb.getdata())


class TestSpooledDecoder:
    """Memoria acotada al recibir el cuerpo del origen"""

    def test_feeding_memory_does_not_grow_with_body_size(self):
        decoder = PillowCodec(spool_size=64 * 1024).decoder(TransformSpec())
        chunk = bytes(4096)
        tracemalloc.start()
        try:
            for _ in range(2048):  # 8 MiB
                decoder.feed(chunk)
            _, peak = tracemalloc.get_traced_memory()
        finally:
            tracemalloc.stop()
            decoder.discard()
        assert peak < 1024 * 1024

    def test_spilled_body_still_decodes(self):
        noise = Image.effect_noise((300, 300), 80).convert("RGB")
        buffer = BytesIO()
        noise.save(buffer, format="JPEG", quality=95)
        source = buffer.getvalue()
        assert len(source) > 16 * 1024

        decoder = PillowCodec(spool_size=16 * 1024).decoder(TransformSpec(grayscale=False))
        for start in range(0, len(source), 4096):
            decoder.feed(source[start:start + 4096])
        image = decoder.close()
        assert image.size == (300, 300)

    def test_tall_jpeg_is_drafted_down(self):
        buffer = BytesIO()
        Image.new("RGB", (40, 400), (10, 120, 200)).save(buffer, format="JPEG")
        decoder = PillowCodec().decoder(TransformSpec(target_height=100))
        decoder.feed(buffer.getvalue())
        image = decoder.close()
        # libjpeg scales by powers of two and never goes below the request.
        assert image.size == (10, 100)
        assert image.mode == "L"


class TestCodecHelpers:
    """Redimensionado y escala de grises"""

    def test_tall_images_are_capped(self):
        image = Image.new("RGB", (10, 20000))
        capped = cap_height(image, 12480)
        assert capped.size == (6, 12480)

    def test_small_images_are_untouched(self):
        image = Image.new("RGB", (640, 480))
        assert cap_height(image, 12480) is image

    @pytest.mark.parametrize("mode,expected", [("RGB", "L"), ("RGBA", "LA"), ("L", "L"), ("LA", "LA")])
    def test_grayscale_keeps_alpha(self, mode, expected):
        assert to_grayscale(Image.new(mode, (4, 4))).mode == expected

    def test_codec_passes_quality_only_when_set(self):
        codec = PillowCodec()
        image = Image.new("RGB", (16, 16), (200, 10, 10))
        low, default = BytesIO(), BytesIO()
        codec.encode(image, TransformSpec(grayscale=False, quality=1), low)
        codec.encode(image, TransformSpec(grayscale=False), default)
        assert Image.open(BytesIO(low.getvalue())).format == "WEBP"
        assert Image.open(BytesIO(default.getvalue())).format == "WEBP"
