"""
Header helpers: origin header propagation and the redirect location.
"""

import logging
import re
from typing import Iterable, List, Optional, Tuple
from urllib.parse import quote

from starlette.datastructures import MutableHeaders

from .errors import HeaderPropagationError

logger = logging.getLogger(__name__)

# RFC 9110 token
_HEADER_NAME = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")
_FORBIDDEN_VALUE_CHARS = ("\r", "\n", "\x00")

HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "proxy-connection",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
})

# Set by the proxy itself, never copied from origin.
MANAGED_HEADERS = frozenset({"content-length", "content-encoding"})

IDENTIFYING_HEADERS = frozenset({"x-powered-by", "server"})

# Same reserved set encodeURI leaves untouched.
_URI_SAFE = ";,/?:@&=+$!*'()#"


def check_header(name: str, value: str) -> Optional[HeaderPropagationError]:
    """Return an error when the pair cannot be written to the outbound response."""
    if not _HEADER_NAME.match(name or ""):
        return HeaderPropagationError(name, value, "invalid header name")
    if value is None:
        return HeaderPropagationError(name, value, "missing header value")
    if any(ch in value for ch in _FORBIDDEN_VALUE_CHARS):
        return HeaderPropagationError(name, value, "control character in header value")
    try:
        value.encode("latin-1")
    except UnicodeEncodeError:
        return HeaderPropagationError(name, value, "header value is not latin-1")
    return None


def copy_origin_headers(items: Iterable[Tuple[str, str]]) -> Tuple[MutableHeaders, List[HeaderPropagationError]]:
    """Copy origin headers onto a fresh outbound header set.

    Invalid pairs are logged and skipped. Repeated headers (set-cookie) are kept.
    """
    headers = MutableHeaders()
    skipped: List[HeaderPropagationError] = []
    for name, value in items:
        lowered = name.lower()
        if lowered in HOP_BY_HOP_HEADERS or lowered in MANAGED_HEADERS or lowered in IDENTIFYING_HEADERS:
            continue
        error = check_header(name, value)
        if error is not None:
            logger.warning("[headers] skipping origin header: %s", error)
            skipped.append(error)
            continue
        headers.append(lowered, value)
    headers["content-encoding"] = "identity"
    return headers, skipped


def encode_location(url: str) -> str:
    """Percent-encode a URL for the location header the way encodeURI does."""
    return quote(url, safe=_URI_SAFE)
