"""
Image download.

Fetches attachment bytes over HTTP(S), following CDN redirects, with a hard
timeout and a streaming size cap. Every network problem surfaces as
ImageFetchError; an oversized body surfaces as ValidationError.
"""

from __future__ import annotations

import logging
from urllib.parse import urlparse

import httpx

from .exceptions import ImageFetchError, ValidationError

logger = logging.getLogger(__name__)

MAX_REDIRECTS = 5


async def fetch_image(
    url: str,
    *,
    timeout: float = 15.0,
    max_bytes: int | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> bytes:
    """Download an image and return its raw bytes.

    Args:
        url: http(s) URL of the image.
        timeout: overall network timeout in seconds.
        max_bytes: abort once the body grows beyond this many bytes.
        transport: optional httpx transport (tests inject a MockTransport).

    Raises:
        ImageFetchError: bad scheme, timeout, non-2xx status, transport error.
        ValidationError: the body exceeds max_bytes.
    """
    scheme = urlparse(url).scheme.lower()
    if scheme not in ("http", "https"):
        raise ImageFetchError(f"Unsupported URL scheme: {scheme!r}", details={"url": url})

    chunks: list[bytes] = []
    received = 0

    try:
        async with httpx.AsyncClient(
            follow_redirects=True,
            max_redirects=MAX_REDIRECTS,
            timeout=timeout,
            transport=transport,
        ) as client:
            async with client.stream("GET", url) as response:
                response.raise_for_status()
                async for chunk in response.aiter_bytes():
                    received += len(chunk)
                    if max_bytes is not None and received > max_bytes:
                        raise ValidationError(
                            "Downloaded image exceeds the maximum file size.",
                            details={"max_size": max_bytes, "received": received},
                        )
                    chunks.append(chunk)
    except httpx.TimeoutException as exc:
        raise ImageFetchError(
            f"Timed out downloading image after {timeout:g}s",
            details={"url": url},
            code="IMAGE_FETCH_TIMEOUT",
        ) from exc
    except httpx.HTTPStatusError as exc:
        raise ImageFetchError(
            f"Failed to download image: HTTP {exc.response.status_code}",
            details={"url": url, "status_code": exc.response.status_code},
        ) from exc
    except httpx.HTTPError as exc:
        raise ImageFetchError(
            f"Failed to download image: {exc}", details={"url": url}
        ) from exc

    logger.info("Downloaded %d bytes from %s", received, url)
    return b"".join(chunks)
