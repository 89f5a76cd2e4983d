"""
Tests for the recognition engine and orchestrator, using fake backends.
No tesseract binary and no network required.
"""

from __future__ import annotations

import threading
import time

import httpx
import pytest

from claim_verifier.backends import (
    OcrOutput,
    OcrSpaceBackend,
    TesseractBackend,
    build_remote_backend,
    collect_words,
)
from claim_verifier.config import Settings
from claim_verifier.exceptions import RecognitionError
from claim_verifier.models import PreprocessedVariant, RecognitionMethod, VariantStrategy
from claim_verifier.recognition import (
    REMOTE_CONFIDENCE,
    RecognitionEngine,
    RecognitionOrchestrator,
)


# ─── Fakes ───────────────────────────────────────────────────────────


class FakeLocalBackend:
    """Maps variant bytes to canned output; b"boom" raises."""

    def __init__(self, outputs: dict[bytes, OcrOutput] | None = None, delay: float = 0.0):
        self.outputs = outputs or {}
        self.delay = delay
        self.init_calls = 0

    def initialize(self) -> None:
        time.sleep(self.delay)
        self.init_calls += 1

    def recognize(self, image_bytes: bytes) -> OcrOutput:
        if image_bytes == b"boom":
            raise RuntimeError("tesseract crashed")
        return self.outputs.get(image_bytes, OcrOutput("", 0.0))


class FakeRemote:
    name = "fake"

    def __init__(self, text: str | None = None, error: Exception | None = None):
        self.text = text
        self.error = error
        self.calls = 0

    def recognize(self, image_bytes: bytes) -> str | None:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.text


class FakeGenerator:
    """Returns one variant per payload, in strategy order."""

    def __init__(self, payloads: list[bytes]):
        self.payloads = payloads

    def generate(self, data: bytes) -> list[PreprocessedVariant]:
        return [
            PreprocessedVariant(data=payload, strategy=strategy, width=10, height=10)
            for payload, strategy in zip(self.payloads, VariantStrategy)
        ]


def _orchestrator(
    outputs: dict[bytes, OcrOutput],
    payloads: list[bytes],
    remote=None,
) -> RecognitionOrchestrator:
    backend = FakeLocalBackend(outputs)
    engine = RecognitionEngine(lambda: backend, workers=4)
    return RecognitionOrchestrator(engine, FakeGenerator(payloads), remote=remote)


# ═══════════════════════════════════════════════════════════════════
# Engine lifecycle
# ═══════════════════════════════════════════════════════════════════


class TestRecognitionEngine:
    def test_lazy_start(self) -> None:
        engine = RecognitionEngine(FakeLocalBackend)
        assert not engine.started
        engine.start()
        assert engine.started
        engine.shutdown()
        assert not engine.started

    def test_concurrent_first_use_initializes_once(self) -> None:
        built: list[FakeLocalBackend] = []

        def factory() -> FakeLocalBackend:
            backend = FakeLocalBackend(delay=0.05)
            built.append(backend)
            return backend

        engine = RecognitionEngine(factory)
        seen: list[object] = []
        threads = [threading.Thread(target=lambda: seen.append(engine.start())) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(built) == 1
        assert built[0].init_calls == 1
        assert all(backend is built[0] for backend in seen)
        engine.shutdown()

    def test_failed_init_is_retried(self) -> None:
        attempts = {"n": 0}

        class Flaky(FakeLocalBackend):
            def initialize(self) -> None:
                attempts["n"] += 1
                if attempts["n"] == 1:
                    raise RecognitionError("not yet")

        engine = RecognitionEngine(Flaky)
        with pytest.raises(RecognitionError):
            engine.start()
        assert not engine.started
        engine.start()
        assert engine.started
        engine.shutdown()

    def test_results_in_input_order_with_failures_isolated(self) -> None:
        backend = FakeLocalBackend({b"a": OcrOutput("A", 50.0), b"c": OcrOutput("C", 70.0)})
        engine = RecognitionEngine(lambda: backend)
        variants = [
            PreprocessedVariant(data=data, strategy=strategy, width=1, height=1)
            for data, strategy in zip([b"a", b"boom", b"c"], VariantStrategy)
        ]
        results = engine.recognize_variants(variants)
        engine.shutdown()

        assert [strategy for strategy, _ in results] == [
            VariantStrategy.CONTRAST_SHARPEN,
            VariantStrategy.THRESHOLD,
            VariantStrategy.INVERTED_THRESHOLD,
        ]
        assert results[0][1] == OcrOutput("A", 50.0)
        assert results[1][1] is None
        assert results[2][1] == OcrOutput("C", 70.0)

    def test_closed_pool_raises_recognition_error(self) -> None:
        engine = RecognitionEngine(FakeLocalBackend)
        engine.start()
        engine._executor.shutdown(wait=True)
        variants = [PreprocessedVariant(data=b"a", strategy=VariantStrategy.THRESHOLD, width=1, height=1)]

        with pytest.raises(RecognitionError, match="Could not schedule"):
            engine.recognize_variants(variants)
        engine.shutdown()


# ═══════════════════════════════════════════════════════════════════
# Orchestrator
# ═══════════════════════════════════════════════════════════════════


class TestOrchestrator:
    def test_joins_variant_texts_in_order_with_max_confidence(self) -> None:
        orchestrator = _orchestrator(
            {
                b"1": OcrOutput("KAM", 40.0),
                b"2": OcrOutput("  ", 90.0),
                b"3": OcrOutput("lv 264", 75.0),
            },
            [b"1", b"2", b"3"],
        )
        result = orchestrator.recognize(b"image")
        orchestrator.engine.shutdown()

        assert result.text == "KAM\nlv 264"
        assert result.variant_texts == ["KAM", "lv 264"]
        assert result.confidence == 90.0
        assert result.method == RecognitionMethod.LOCAL

    def test_all_variants_empty_or_failing(self) -> None:
        orchestrator = _orchestrator({}, [b"boom", b"empty", b"boom"])
        result = orchestrator.recognize(b"image")
        orchestrator.engine.shutdown()

        assert result.text == ""
        assert result.confidence == 0.0
        assert result.method == RecognitionMethod.NONE

    def test_remote_preferred(self) -> None:
        remote = FakeRemote("Lv.264 Kain")
        orchestrator = _orchestrator({b"1": OcrOutput("local", 10.0)}, [b"1"], remote=remote)
        result = orchestrator.recognize(b"image")

        assert result.text == "Lv.264 Kain"
        assert result.confidence == REMOTE_CONFIDENCE
        assert result.method == RecognitionMethod.REMOTE
        assert not orchestrator.engine.started

    @pytest.mark.parametrize("remote", [FakeRemote(None), FakeRemote(""), FakeRemote(error=RuntimeError("down"))])
    def test_remote_fallback_to_local(self, remote: FakeRemote) -> None:
        orchestrator = _orchestrator({b"1": OcrOutput("local text", 60.0)}, [b"1"], remote=remote)
        result = orchestrator.recognize(b"image")
        orchestrator.engine.shutdown()

        assert remote.calls == 1
        assert result.text == "local text"
        assert result.method == RecognitionMethod.LOCAL

    def test_local_unavailable(self) -> None:
        class Missing(FakeLocalBackend):
            def initialize(self) -> None:
                raise RecognitionError("Tesseract binary not found")

        engine = RecognitionEngine(Missing)
        orchestrator = RecognitionOrchestrator(engine, FakeGenerator([b"1"]))
        with pytest.raises(RecognitionError) as exc_info:
            orchestrator.recognize(b"image")
        assert exc_info.value.code == "RECOGNITION_FAILED"

    def test_confidence_clamped(self) -> None:
        orchestrator = _orchestrator({b"1": OcrOutput("x", 140.0)}, [b"1"])
        assert orchestrator.recognize(b"image").confidence == 100.0
        orchestrator.engine.shutdown()


# ═══════════════════════════════════════════════════════════════════
# Backends
# ═══════════════════════════════════════════════════════════════════


class TestCollectWords:
    def test_rebuilds_lines_and_mean_confidence(self) -> None:
        data = {
            "text": ["", "Lv.264", "Kain", "", "Guild"],
            "conf": ["-1", "80", "60", "-1", "70"],
            "block_num": [1, 1, 1, 2, 2],
            "par_num": [1, 1, 1, 1, 1],
            "line_num": [0, 1, 1, 0, 1],
        }
        output = collect_words(data)
        assert output.text == "Lv.264 Kain\nGuild"
        assert output.confidence == 70.0

    def test_empty(self) -> None:
        assert collect_words({"text": []}) == OcrOutput("", 0.0)


class TestTesseractConfig:
    def test_config_string(self) -> None:
        backend = TesseractBackend(char_whitelist="abc123", page_seg_mode=6)
        assert backend.config == "--psm 6 -c tessedit_char_whitelist=abc123"


class TestOcrSpaceBackend:
    def _backend(self, handler) -> OcrSpaceBackend:
        return OcrSpaceBackend("key", transport=httpx.MockTransport(handler))

    def test_parsed_text(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["apikey"] == "key"
            return httpx.Response(
                200,
                json={
                    "IsErroredOnProcessing": False,
                    "ParsedResults": [{"ParsedText": "Lv.264\r\nKain"}],
                },
            )

        assert self._backend(handler).recognize(b"png") == "Lv.264\r\nKain"

    def test_error_payload(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200, json={"IsErroredOnProcessing": True, "ErrorMessage": ["bad key"]}
            )

        assert self._backend(handler).recognize(b"png") is None

    def test_http_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        assert self._backend(handler).recognize(b"png") is None

    def test_non_json(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>")

        assert self._backend(handler).recognize(b"png") is None


class TestBuildRemoteBackend:
    def test_disabled_by_default(self) -> None:
        assert build_remote_backend(Settings()) is None

    def test_missing_key(self) -> None:
        assert build_remote_backend(Settings(remote_provider="ocrspace")) is None

    def test_ocrspace(self) -> None:
        backend = build_remote_backend(
            Settings(remote_provider="ocrspace", ocr_space_api_key="k")
        )
        assert backend is not None
        assert backend.name == "ocrspace"
