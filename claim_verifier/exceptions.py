"""
Custom exception hierarchy for claim verification.

Each exception type maps to one category of attempt-level failure.
All of them are recoverable: the attempt orchestrator converts them into a
PROCESSING_FAILED / INVALID_ATTACHMENT outcome instead of crashing.
"""

from __future__ import annotations


class VerificationError(Exception):
    """Base exception for all verification failures."""

    def __init__(self, code: str, message: str, details: dict | None = None):
        self.code = code
        self.details = details or {}
        super().__init__(message)


class ImageFetchError(VerificationError):
    """The image could not be downloaded (network, timeout, non-2xx)."""

    def __init__(
        self,
        message: str,
        details: dict | None = None,
        code: str = "IMAGE_FETCH_FAILED",
    ):
        super().__init__(code, message, details)


class ImageProcessingError(VerificationError):
    """The image is corrupt or no preprocessing variant could be produced."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("IMAGE_PROCESSING_FAILED", message, details)


class RecognitionError(VerificationError):
    """No text-recognition backend is usable."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("RECOGNITION_FAILED", message, details)


class ValidationError(VerificationError):
    """The attachment exceeds the size limit or has a disallowed type."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("ATTACHMENT_INVALID", message, details)
