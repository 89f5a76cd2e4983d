"""
Tests for image preprocessing variants. Images are generated with Pillow.
"""

from __future__ import annotations

import io

import pytest
from PIL import Image, ImageDraw

from claim_verifier import variants
from claim_verifier.exceptions import ImageProcessingError
from claim_verifier.models import VariantStrategy
from claim_verifier.variants import STRATEGIES, VariantGenerator


def _png(width: int = 200, height: int = 80, color=(20, 30, 60)) -> bytes:
    img = Image.new("RGB", (width, height), color)
    draw = ImageDraw.Draw(img)
    draw.text((10, 10), "Lv.264 Kain", fill=(255, 210, 40))
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


def _decode(data: bytes) -> Image.Image:
    return Image.open(io.BytesIO(data))


# ═══════════════════════════════════════════════════════════════════
# Sizing
# ═══════════════════════════════════════════════════════════════════


class TestTargetSize:
    def test_upscales_small_images(self) -> None:
        assert VariantGenerator().target_size(200, 80) == (400, 160)

    def test_caps_width(self) -> None:
        assert VariantGenerator(max_width=3000).target_size(2000, 500) == (3000, 750)

    def test_caps_height(self) -> None:
        assert VariantGenerator(max_width=3000).target_size(500, 2000) == (750, 3000)

    def test_never_upscales_past_two(self) -> None:
        assert VariantGenerator(upscale_factor=5.0).target_size(100, 100) == (200, 200)

    def test_large_images_shrink_to_cap(self) -> None:
        assert VariantGenerator(max_width=3000).target_size(6000, 3000) == (3000, 1500)


# ═══════════════════════════════════════════════════════════════════
# Generation
# ═══════════════════════════════════════════════════════════════════


class TestGenerate:
    def test_all_strategies_in_order(self) -> None:
        result = VariantGenerator().generate(_png())
        assert [v.strategy for v in result] == list(VariantStrategy)
        assert len(result) == 5

    def test_variants_are_grayscale_pngs_at_target_size(self) -> None:
        for variant in VariantGenerator().generate(_png()):
            img = _decode(variant.data)
            assert img.format == "PNG"
            assert img.mode == "L"
            assert img.size == (400, 160) == (variant.width, variant.height)

    def test_threshold_variants_are_binary(self) -> None:
        result = {v.strategy: v for v in VariantGenerator().generate(_png())}
        for strategy in (
            VariantStrategy.THRESHOLD,
            VariantStrategy.INVERTED_THRESHOLD,
            VariantStrategy.YELLOW_BADGE,
        ):
            colors = {value for _, value in _decode(result[strategy].data).getcolors()}
            assert colors <= {0, 255}

    def test_inverted_threshold_turns_dark_background_white(self) -> None:
        result = {v.strategy: v for v in VariantGenerator().generate(_png())}
        img = _decode(result[VariantStrategy.INVERTED_THRESHOLD].data)
        assert img.getpixel((0, 0)) == 255

    def test_size_cap_respected(self) -> None:
        for variant in VariantGenerator(max_width=300).generate(_png(400, 100)):
            assert variant.width <= 300
            assert variant.height <= 300

    def test_accepts_jpeg_and_rgba(self) -> None:
        buffer = io.BytesIO()
        Image.new("RGBA", (50, 50), (255, 255, 0, 128)).save(buffer, format="PNG")
        assert len(VariantGenerator().generate(buffer.getvalue())) == 5

        buffer = io.BytesIO()
        Image.new("RGB", (50, 50), (10, 10, 10)).save(buffer, format="JPEG")
        assert len(VariantGenerator().generate(buffer.getvalue())) == 5

    def test_deterministic(self) -> None:
        data = _png()
        first = [v.data for v in VariantGenerator().generate(data)]
        second = [v.data for v in VariantGenerator().generate(data)]
        assert first == second


# ═══════════════════════════════════════════════════════════════════
# Failures
# ═══════════════════════════════════════════════════════════════════


class TestFailures:
    def test_corrupt_input(self) -> None:
        with pytest.raises(ImageProcessingError) as exc_info:
            VariantGenerator().generate(b"definitely not an image")
        assert exc_info.value.code == "IMAGE_PROCESSING_FAILED"

    def test_truncated_png(self) -> None:
        with pytest.raises(ImageProcessingError):
            VariantGenerator().generate(_png()[:60])

    def test_failing_strategy_is_skipped(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def broken(base):
            raise RuntimeError("boom")

        monkeypatch.setitem(variants.STRATEGIES, VariantStrategy.THRESHOLD, broken)
        result = VariantGenerator().generate(_png())
        assert [v.strategy for v in result] == [
            VariantStrategy.CONTRAST_SHARPEN,
            VariantStrategy.INVERTED_THRESHOLD,
            VariantStrategy.NORMALIZED,
            VariantStrategy.YELLOW_BADGE,
        ]

    def test_all_strategies_failing(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def broken(base):
            raise RuntimeError("boom")

        for strategy in list(STRATEGIES):
            monkeypatch.setitem(variants.STRATEGIES, strategy, broken)
        with pytest.raises(ImageProcessingError):
            VariantGenerator().generate(_png())
