"""
Per-request value objects. Nothing here outlives a single request.
"""

import re
from typing import Dict, Mapping, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field

from .errors import ClientInputError

FORWARDED_HEADERS = ("cookie", "dnt", "referer")
TARGET_HEIGHT = 12480
OUTPUT_FORMAT = "webp"

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def _is_absolute_http_url(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class ProxyRequest(BaseModel):
    """What the proxy needs from the client request."""
    model_config = {"frozen": True}

    url: str
    bw: Optional[str] = None
    l: Optional[str] = None
    webp: bool = False
    forwarded_headers: Dict[str, str] = Field(default_factory=dict)
    forwarded_for: Optional[str] = None

    @classmethod
    def parse(
        cls,
        url: Optional[str],
        headers: Mapping[str, str],
        client_host: Optional[str] = None,
        bw: Optional[str] = None,
        l: Optional[str] = None,
        webp: Optional[str] = None,
    ) -> "ProxyRequest":
        url = (url or "").strip()
        if not url:
            raise ClientInputError("missing url query parameter")
        if not _is_absolute_http_url(url):
            raise ClientInputError(f"not an absolute http(s) url: {url!r}")

        forwarded = {name: headers[name] for name in FORWARDED_HEADERS if name in headers}
        return cls(
            url=url,
            bw=bw,
            l=l,
            webp=(webp or "").lower() in ("1", "true"),
            forwarded_headers=forwarded,
            forwarded_for=headers.get("x-forwarded-for") or client_host,
        )


class MediaDescriptor(BaseModel):
    """Declared type and size of an origin body."""
    content_type: str = ""
    content_length: Optional[int] = None  # None when absent or unparseable

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> "MediaDescriptor":
        raw_length = (headers.get("content-length") or "").strip()
        return cls(
            content_type=headers.get("content-type") or "",
            content_length=int(raw_length) if raw_length.isdigit() else None,
        )


def parse_quality(value: Optional[str]) -> Optional[int]:
    """Encoder quality from the `l` parameter, clamped to 1..100.

    Like parseInt, only the leading integer counts: "40abc" is 40.
    """
    match = _LEADING_INT.match(value or "")
    if match is None:
        return None
    return max(1, min(100, int(match.group(1))))


class TransformSpec(BaseModel):
    """Parameters for the resize/grayscale/re-encode pipeline."""
    model_config = {"frozen": True}

    target_height: int = TARGET_HEIGHT
    grayscale: bool = True
    quality: Optional[int] = None
    output_format: str = OUTPUT_FORMAT

    @property
    def media_type(self) -> str:
        return f"image/{self.output_format}"

    @classmethod
    def from_request(cls, request: ProxyRequest) -> "TransformSpec":
        return cls(grayscale=request.bw != "0", quality=parse_quality(request.l))
