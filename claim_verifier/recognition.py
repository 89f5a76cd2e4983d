"""
Recognition orchestration.

Flow for one image:

  raw bytes ──► remote backend (optional) ──► non-empty text? ──► done (REMOTE)
                      │ absent / failed / empty
                      ▼
               variant generator ──► local OCR on every variant (worker pool)
                      │
                      ▼
          join texts in strategy order, keep max confidence (LOCAL)

Concatenating every variant instead of picking the best one is deliberate:
the threshold variant may be the only one that reads the class name while
the contrast variant is the only one that reads the level. The extractor is
built to absorb the resulting duplicates and noise.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

from .backends import LocalBackend, OcrOutput, RemoteBackend
from .exceptions import RecognitionError
from .models import (
    PreprocessedVariant,
    RecognitionMethod,
    RecognitionResult,
    VariantStrategy,
)
from .variants import VariantGenerator

logger = logging.getLogger(__name__)

# Remote backends expose no calibrated confidence; they are simply more precise.
REMOTE_CONFIDENCE = 95.0


class RecognitionEngine:
    """Process-wide handle around the local OCR backend and its worker pool.

    Initialization is lazy, happens once, and is guarded by a lock: the first
    caller builds the backend while concurrent callers wait. A failed
    initialization leaves the engine unstarted so the next call retries.
    """

    def __init__(self, backend_factory: Callable[[], LocalBackend], workers: int = 4):
        self._factory = backend_factory
        self._workers = workers
        self._lock = threading.Lock()
        self._backend: Optional[LocalBackend] = None
        self._executor: Optional[ThreadPoolExecutor] = None

    @property
    def started(self) -> bool:
        return self._backend is not None

    def start(self) -> LocalBackend:
        """Return the shared backend, building it on first use."""
        backend = self._backend
        if backend is not None:
            return backend

        with self._lock:
            if self._backend is None:
                candidate = self._factory()
                candidate.initialize()
                self._executor = ThreadPoolExecutor(
                    max_workers=self._workers, thread_name_prefix="ocr"
                )
                self._backend = candidate
            return self._backend

    def shutdown(self) -> None:
        with self._lock:
            if self._executor is not None:
                self._executor.shutdown(wait=True)
            self._executor = None
            self._backend = None

    def recognize_variants(
        self, variants: list[PreprocessedVariant]
    ) -> list[tuple[VariantStrategy, Optional[OcrOutput]]]:
        """OCR every variant concurrently; results come back in input order.

        A variant whose OCR raises is logged and reported as None. It never
        cancels or affects its siblings.

        Raises:
            RecognitionError: the engine was shut down before the work
                could be scheduled.
        """
        self.start()
        with self._lock:
            backend, executor = self._backend, self._executor
            if backend is None or executor is None:
                raise RecognitionError("OCR engine is shut down")
            try:
                futures = [
                    (variant.strategy, executor.submit(backend.recognize, variant.data))
                    for variant in variants
                ]
            except RuntimeError as exc:
                raise RecognitionError(f"Could not schedule OCR work: {exc}") from exc

        results: list[tuple[VariantStrategy, Optional[OcrOutput]]] = []
        for strategy, future in futures:
            try:
                results.append((strategy, future.result()))
            except Exception as exc:
                logger.warning("OCR failed on variant %s: %s", strategy.name, exc)
                results.append((strategy, None))
        return results


class RecognitionOrchestrator:
    """Chooses and combines backend output into one RecognitionResult."""

    def __init__(
        self,
        engine: RecognitionEngine,
        variant_generator: VariantGenerator,
        remote: Optional[RemoteBackend] = None,
    ):
        self.engine = engine
        self.variant_generator = variant_generator
        self.remote = remote

    def recognize(self, image_bytes: bytes) -> RecognitionResult:
        """Recognize text in an image.

        Returns an empty result (confidence 0, method NONE) when nothing was
        read; that is "no evidence", not an error.

        Raises:
            RecognitionError: the local engine cannot start and the remote
                backend gave nothing.
            ImageProcessingError: the image cannot be preprocessed at all.
        """
        remote_text = self._try_remote(image_bytes)
        if remote_text:
            logger.info("Remote OCR (%s) returned %d chars", self.remote.name, len(remote_text))
            return RecognitionResult(
                text=remote_text,
                confidence=REMOTE_CONFIDENCE,
                method=RecognitionMethod.REMOTE,
                variant_texts=[remote_text],
            )

        try:
            self.engine.start()
        except RecognitionError:
            logger.error("Local OCR unavailable and no remote result")
            raise

        variants = self.variant_generator.generate(image_bytes)
        outputs = self.engine.recognize_variants(variants)

        texts: list[str] = []
        confidences: list[float] = []
        for strategy, output in outputs:
            if output is None:
                continue
            confidences.append(max(0.0, min(100.0, output.confidence)))
            if output.text.strip():
                texts.append(output.text.strip())
            logger.debug("Variant %s: %d chars, conf %.1f", strategy.name, len(output.text), output.confidence)

        if not texts:
            logger.info("No text recognized in any of %d variants", len(variants))
            return RecognitionResult()

        return RecognitionResult(
            text="\n".join(texts),
            confidence=max(confidences),
            method=RecognitionMethod.LOCAL,
            variant_texts=texts,
        )

    def _try_remote(self, image_bytes: bytes) -> Optional[str]:
        if self.remote is None:
            return None
        try:
            return self.remote.recognize(image_bytes)
        except Exception as exc:
            logger.warning("Remote OCR (%s) raised, falling back to local: %s", self.remote.name, exc)
            return None
