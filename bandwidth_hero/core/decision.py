"""
Decides from response metadata alone whether an origin body is worth
recompressing.
"""

from .models import MediaDescriptor

MIN_COMPRESS_LENGTH = 1024
MIN_TRANSPARENT_COMPRESS_LENGTH = MIN_COMPRESS_LENGTH * 100

REDIRECT_STATUS_THRESHOLD = 400


def should_redirect(status_code: int) -> bool:
    """Origin errors are never transformed; the client is sent to the origin instead."""
    return status_code >= REDIRECT_STATUS_THRESHOLD


def should_transform(descriptor: MediaDescriptor, wants_webp: bool) -> bool:
    content_type = descriptor.content_type
    length = descriptor.content_length

    if not content_type.startswith("image"):
        return False
    # Unknown length is treated as failing every size threshold.
    if length is None or length == 0:
        return False
    if wants_webp and length < MIN_COMPRESS_LENGTH:
        return False
    if (
        not wants_webp
        and (content_type.endswith("png") or content_type.endswith("gif"))
        and length < MIN_TRANSPARENT_COMPRESS_LENGTH
    ):
        return False
    return True
