"""
Image preprocessing variants for OCR.

One screenshot is rendered several ways, each aimed at a different way game
UI text fails to survive OCR:

  CONTRAST_SHARPEN    thin / aliased glyphs
  THRESHOLD           outlined / stroked text
  INVERTED_THRESHOLD  light text on dark panels
  NORMALIZED          general-purpose fallback
  YELLOW_BADGE        yellow/orange level badges

Every strategy starts from the same decoded, upscaled base image and never
from another strategy's output. A strategy that blows up is logged and
skipped; only an empty result is an error.
"""

from __future__ import annotations

import io
import logging
from typing import Callable

from PIL import Image, ImageFilter, ImageOps

from .exceptions import ImageProcessingError
from .models import PreprocessedVariant, VariantStrategy

logger = logging.getLogger(__name__)

# R + G - B: yellow and orange light up, blue-ish backgrounds go dark.
_YELLOW_MATRIX = (0.5, 0.5, -0.5, 0.0)


# ─── Pixel Operations ───────────────────────────────────────────────


def _linear(gray: Image.Image, gain: float, offset: float) -> Image.Image:
    """out = gain * in + offset, clamped to 0..255."""
    lut = [max(0, min(255, round(gain * i + offset))) for i in range(256)]
    return gray.point(lut)


def _threshold(gray: Image.Image, cutoff: int) -> Image.Image:
    lut = [255 if i >= cutoff else 0 for i in range(256)]
    return gray.point(lut)


def _sharpen(gray: Image.Image, radius: float) -> Image.Image:
    return gray.filter(ImageFilter.UnsharpMask(radius=radius, percent=150, threshold=0))


# ─── Strategies ─────────────────────────────────────────────────────


def contrast_sharpen(base: Image.Image) -> Image.Image:
    gray = ImageOps.grayscale(base)
    return _sharpen(_linear(gray, 2.0, -128), radius=2)


def threshold(base: Image.Image) -> Image.Image:
    return _threshold(ImageOps.grayscale(base), 180)


def inverted_threshold(base: Image.Image) -> Image.Image:
    return ImageOps.invert(_threshold(ImageOps.grayscale(base), 100))


def normalized(base: Image.Image) -> Image.Image:
    gray = ImageOps.autocontrast(ImageOps.grayscale(base), cutoff=1)
    return _sharpen(_linear(gray, 1.8, -50), radius=1.5)


def yellow_badge(base: Image.Image) -> Image.Image:
    gray = ImageOps.autocontrast(base.convert("L", matrix=_YELLOW_MATRIX), cutoff=1)
    return _threshold(gray, 150)


STRATEGIES: dict[VariantStrategy, Callable[[Image.Image], Image.Image]] = {
    VariantStrategy.CONTRAST_SHARPEN: contrast_sharpen,
    VariantStrategy.THRESHOLD: threshold,
    VariantStrategy.INVERTED_THRESHOLD: inverted_threshold,
    VariantStrategy.NORMALIZED: normalized,
    VariantStrategy.YELLOW_BADGE: yellow_badge,
}


# ─── Generator ──────────────────────────────────────────────────────


class VariantGenerator:
    """Produces the ordered list of preprocessed variants for one image."""

    def __init__(self, max_width: int = 3000, upscale_factor: float = 2.0):
        self.max_width = max_width
        self.upscale_factor = min(upscale_factor, 2.0)

    def target_size(self, width: int, height: int) -> tuple[int, int]:
        """Upscale by at most upscale_factor, never past max_width on either side."""
        scale = min(self.upscale_factor, self.max_width / width, self.max_width / height)
        return max(1, round(width * scale)), max(1, round(height * scale))

    def load(self, data: bytes) -> Image.Image:
        """Decode, orient and resize the source image."""
        try:
            with Image.open(io.BytesIO(data)) as img:
                img.load()
                oriented = ImageOps.exif_transpose(img).convert("RGB")
        except (OSError, SyntaxError, ValueError, Image.DecompressionBombError) as exc:
            raise ImageProcessingError(
                f"Could not decode image: {exc}", details={"size": len(data)}
            ) from exc

        size = self.target_size(*oriented.size)
        if size != oriented.size:
            oriented = oriented.resize(size, Image.Resampling.LANCZOS)
        return oriented

    def generate(self, data: bytes) -> list[PreprocessedVariant]:
        """Run every strategy; skip the ones that fail.

        Raises:
            ImageProcessingError: the image is corrupt or no strategy succeeded.
        """
        base = self.load(data)
        variants: list[PreprocessedVariant] = []

        for strategy in sorted(STRATEGIES):
            try:
                rendered = STRATEGIES[strategy](base)
                buffer = io.BytesIO()
                rendered.save(buffer, format="PNG")
            except Exception as exc:
                logger.warning("Variant %s failed: %s", strategy.name, exc)
                continue
            variants.append(
                PreprocessedVariant(
                    data=buffer.getvalue(),
                    strategy=strategy,
                    width=rendered.width,
                    height=rendered.height,
                )
            )

        if not variants:
            raise ImageProcessingError("No preprocessing variant could be produced")

        logger.info(
            "Generated %d/%d variants at %dx%d",
            len(variants), len(STRATEGIES), base.width, base.height,
        )
        return variants
