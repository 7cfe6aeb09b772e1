"""
Error taxonomy for the compression proxy.

Only ClientInputError ever reaches the client as an error status; the other
failures are turned into a redirect, a degraded 200, or a logged skip.
"""

from typing import Optional


class ProxyError(Exception):
    """Base class for proxy failures."""


class ClientInputError(ProxyError):
    """The `url` query parameter is missing or not an absolute http(s) URL."""


class FetchError(ProxyError):
    """The origin could not be reached (DNS, connect, timeout, reset...)."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"{reason} ({url})")
        self.url = url
        self.reason = reason


class TransformError(ProxyError):
    """The image could not be decoded or re-encoded."""


class HeaderPropagationError(ProxyError):
    """An origin header that cannot be written to the outbound response.

    Returned by the header check rather than raised, so a single bad header
    never aborts the response.
    """

    def __init__(self, name: str, value: Optional[str], reason: str):
        super().__init__(f"{reason}: {name!r}")
        self.name = name
        self.value = value
        self.reason = reason
