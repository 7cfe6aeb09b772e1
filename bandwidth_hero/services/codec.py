"""
Pillow-backed image codec: spooled decode, then resize cap, optional
grayscale and WebP encode.

The compressed origin body is spooled to a SpooledTemporaryFile, so at most
`spool_size` bytes of it are held in memory; anything larger rolls over to a
temporary file. Pixel memory depends on the image dimensions only, and JPEG
`draft` decodes tall images at a reduced scale and grayscale images as `L`.
"""

import tempfile
from typing import BinaryIO, Protocol

from PIL import Image

from ..core.models import TransformSpec

DEFAULT_SPOOL_SIZE = 1024 * 1024


class Decoder(Protocol):
    def feed(self, data: bytes) -> None: ...

    def close(self) -> Image.Image: ...

    def discard(self) -> None: ...


class ImageCodec(Protocol):
    def decoder(self, spec: TransformSpec) -> Decoder: ...

    def encode(self, image: Image.Image, spec: TransformSpec, fp: BinaryIO) -> None: ...


def cap_height(image: Image.Image, target_height: int) -> Image.Image:
    """Scale down to `target_height` keeping the aspect ratio; never upscale."""
    width, height = image.size
    if height <= target_height:
        return image
    new_width = max(1, round(width * target_height / height))
    return image.resize((new_width, target_height), Image.Resampling.LANCZOS)


def to_grayscale(image: Image.Image) -> Image.Image:
    if image.mode in ("L", "LA"):
        return image
    has_alpha = "A" in image.getbands() or (image.mode == "P" and "transparency" in image.info)
    return image.convert("LA" if has_alpha else "L")


class SpooledDecoder:
    def __init__(self, spec: TransformSpec, spool_size: int = DEFAULT_SPOOL_SIZE):
        self.spec = spec
        self.spool = tempfile.SpooledTemporaryFile(max_size=spool_size)

    def feed(self, data: bytes) -> None:
        self.spool.write(data)

    def close(self) -> Image.Image:
        try:
            self.spool.seek(0)
            image = Image.open(self.spool)
            width, height = image.size
            if height > self.spec.target_height:
                width = max(1, width * self.spec.target_height // height)
                height = self.spec.target_height
            # JPEG only; a no-op for other formats.
            image.draft("L" if self.spec.grayscale else None, (width, height))
            image.load()
            return image
        finally:
            self.discard()

    def discard(self) -> None:
        self.spool.close()


class PillowCodec:
    def __init__(self, spool_size: int = DEFAULT_SPOOL_SIZE):
        self.spool_size = spool_size

    def decoder(self, spec: TransformSpec) -> SpooledDecoder:
        return SpooledDecoder(spec, self.spool_size)

    def encode(self, image: Image.Image, spec: TransformSpec, fp: BinaryIO) -> None:
        image = cap_height(image, spec.target_height)
        if spec.grayscale:
            image = to_grayscale(image)
        options = {}
        if spec.quality is not None:
            options["quality"] = spec.quality
        image.save(fp, format=spec.output_format.upper(), **options)


default_codec = PillowCodec()
