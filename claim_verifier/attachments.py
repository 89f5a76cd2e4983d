"""
Attachment checks that run before any network or image work.

Cheap metadata checks only: declared size, declared content type, URL
extension. A failing attachment raises ValidationError immediately.
"""

from __future__ import annotations

from pathlib import PurePosixPath
from urllib.parse import urlparse

from .config import MB, Settings
from .exceptions import ValidationError
from .models import AttachmentInfo


def _url_extension(url: str) -> str:
    return PurePosixPath(urlparse(url).path.lower()).suffix


def is_image_attachment(attachment: AttachmentInfo, settings: Settings) -> bool:
    """Does this attachment look like an image we could verify?"""
    content_type = (attachment.content_type or "").lower()
    subtypes = {allowed.split("/", 1)[-1] for allowed in settings.allowed_content_types}
    if content_type.startswith("image/") and content_type.split("/", 1)[1] in subtypes:
        return True
    return _url_extension(attachment.url) in settings.allowed_extensions


def validate_attachment(attachment: AttachmentInfo, settings: Settings) -> None:
    """Raise ValidationError if the attachment is too large or not an allowed image."""
    if attachment.size is not None and attachment.size > settings.max_file_size:
        raise ValidationError(
            f"File too large. Maximum size is {settings.max_file_size / MB:g}MB.",
            details={"size": attachment.size, "max_size": settings.max_file_size},
        )

    content_type = (attachment.content_type or "").lower().strip()
    if content_type and content_type not in settings.allowed_content_types:
        raise ValidationError(
            "Invalid image format. Please upload a PNG or JPG image.",
            details={"content_type": content_type},
        )

    extension = _url_extension(attachment.url)
    if not content_type and extension not in settings.allowed_extensions:
        raise ValidationError(
            "Invalid image format. Please upload a PNG or JPG image.",
            details={"extension": extension or None},
        )
