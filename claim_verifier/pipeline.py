"""
Verification attempt orchestration.

Screenshot flow:
  ┌──────────────┐
  │  Attachment  │   ← size / type checks, fail fast
  └──────┬───────┘
  ┌──────▼───────┐
  │     Gate     │   ← already verified? on cooldown? (atomic per actor)
  └──────┬───────┘
  ┌──────▼───────┐
  │    Fetch     │   ← httpx, redirects, timeout, size cap
  └──────┬───────┘
  ┌──────▼───────┐
  │  Recognize   │   ← remote or variants x local OCR, off the event loop
  └──────┬───────┘
  ┌──────▼───────┐
  │   Extract    │   ← tolerant tag / level heuristics
  └──────┬───────┘
  ┌──────▼───────┐
  │    Decide    │   ← fixed precedence, pure
  └──────┬───────┘
  ┌──────▼───────┐
  │   Outcome    │   ← stats, verified cache, typed result for the adapter
  └──────────────┘

Lookup-bot flow skips attachment, fetch and recognize: the message is parsed
directly and goes through the same gate and decision engine.

Design principles:
  - Every failure inside an attempt becomes a typed outcome, never a crash.
  - Gate rejections have their own statuses; they are not verdicts.
  - The core performs no side effects beyond its own in-memory state: role
    changes, notifications and audit logging belong to the caller.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Optional

from .attachments import validate_attachment
from .backends import build_local_backend, build_remote_backend
from .config import Settings
from .decision import decide
from .exceptions import RecognitionError, ValidationError, VerificationError
from .extractor import EntityExtractor
from .fetcher import fetch_image
from .models import (
    AttachmentInfo,
    AttemptStatus,
    EvidenceCandidate,
    GateDecision,
    RecognitionResult,
    SourceMethod,
    ThirdPartyMessage,
    Verdict,
    VerificationOutcome,
)
from .recognition import RecognitionEngine, RecognitionOrchestrator
from .state import AntiAbuseStore, format_cooldown_time
from .third_party import ThirdPartyParser, is_third_party_message
from .variants import VariantGenerator

logger = logging.getLogger(__name__)

# ─── Outcome Messages ───────────────────────────────────────────────

MSG_ALREADY_VERIFIED = "You are already verified!"
MSG_COOLDOWN = "Please wait {remaining} before trying again."
MSG_PROCESSING_FAILED = "Could not read your image. Please ensure it's clear and try again."
MSG_NOT_ELIGIBLE = "Message is not from the designated lookup bot."


def build_orchestrator(settings: Settings) -> RecognitionOrchestrator:
    """Wire the shared engine, the variant generator and the remote backend."""
    engine = RecognitionEngine(
        functools.partial(build_local_backend, settings), workers=settings.ocr_workers
    )
    return RecognitionOrchestrator(
        engine,
        VariantGenerator(settings.max_variant_width, settings.upscale_factor),
        remote=build_remote_backend(settings),
    )


class VerificationService:
    """Runs verification attempts for actors.

    Usage:
        service = VerificationService(Settings.from_env())
        await service.start()
        outcome = await service.verify_screenshot(user_id, attachment)
        if outcome.success:
            ...  # grant the role
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        store: AntiAbuseStore | None = None,
        orchestrator: RecognitionOrchestrator | None = None,
    ):
        self.settings = settings or Settings()
        self.extractor = EntityExtractor.from_settings(self.settings)
        self.third_party = ThirdPartyParser(self.extractor)
        self.store = store or AntiAbuseStore(
            cooldown_seconds=self.settings.cooldown_seconds,
            sweep_interval=self.settings.cooldown_sweep_seconds,
        )
        self.orchestrator = orchestrator or build_orchestrator(self.settings)

    # ─── Lifecycle ───────────────────────────────────────────────────

    async def start(self) -> None:
        """Start the cooldown sweeper and warm up the local OCR engine."""
        self.store.start_sweeper()
        try:
            await asyncio.to_thread(self.orchestrator.engine.start)
        except VerificationError as exc:
            # The engine retries on first use; a remote backend may still work.
            logger.warning("Local OCR warm-up failed: %s", exc)

    async def shutdown(self) -> None:
        await self.store.stop_sweeper()
        await asyncio.to_thread(self.orchestrator.engine.shutdown)

    # ─── Entry Points ────────────────────────────────────────────────

    async def verify_screenshot(
        self,
        actor_id: str,
        attachment: AttachmentInfo,
        has_verified_role: bool = False,
    ) -> VerificationOutcome:
        """Verify an actor from an uploaded screenshot."""
        source = SourceMethod.IMAGE_OCR

        try:
            validate_attachment(attachment, self.settings)
        except ValidationError as exc:
            return self._failure(actor_id, source, AttemptStatus.INVALID_ATTACHMENT, exc)

        gate = self.store.admit(actor_id, has_verified_role)
        if not gate.admitted:
            return self._gate_outcome(actor_id, source, gate)

        try:
            result = await asyncio.wait_for(
                self._recognize_url(attachment.url),
                timeout=self.settings.processing_timeout,
            )
        except ValidationError as exc:
            self.store.record_attempt(source, success=False)
            return self._failure(actor_id, source, AttemptStatus.INVALID_ATTACHMENT, exc)
        except VerificationError as exc:
            self.store.record_attempt(source, success=False)
            return self._failure(actor_id, source, AttemptStatus.PROCESSING_FAILED, exc)
        except asyncio.TimeoutError:
            logger.error(
                "Processing for %s exceeded %.0fs", actor_id, self.settings.processing_timeout
            )
            self.store.record_attempt(source, success=False)
            return VerificationOutcome(
                actor_id=actor_id,
                status=AttemptStatus.PROCESSING_FAILED,
                source_method=source,
                message=MSG_PROCESSING_FAILED,
                error_code="PROCESSING_TIMEOUT",
            )

        candidate = self.extractor.extract(result.text, confidence=result.confidence)
        verdict = self._judge(actor_id, candidate)
        return VerificationOutcome(
            actor_id=actor_id,
            status=AttemptStatus.VERDICT,
            source_method=source,
            message=verdict.message,
            verdict=verdict,
            recognition_method=result.method,
        )

    async def verify_third_party(
        self,
        actor_id: str,
        message: ThirdPartyMessage,
        has_verified_role: bool = False,
    ) -> VerificationOutcome:
        """Verify an actor from the lookup bot's reply to their query."""
        source = SourceMethod.THIRD_PARTY_TEXT

        if not is_third_party_message(message, self.settings.third_party_author_id):
            return VerificationOutcome(
                actor_id=actor_id,
                status=AttemptStatus.NOT_ELIGIBLE,
                source_method=source,
                message=MSG_NOT_ELIGIBLE,
            )

        gate = self.store.admit(actor_id, has_verified_role)
        if not gate.admitted:
            return self._gate_outcome(actor_id, source, gate)

        candidate = self.third_party.parse_message(message)
        verdict = self._judge(actor_id, candidate)
        return VerificationOutcome(
            actor_id=actor_id,
            status=AttemptStatus.VERDICT,
            source_method=source,
            message=verdict.message,
            verdict=verdict,
        )

    def evaluate_text(
        self,
        text: str,
        confidence: float | None = None,
        source_method: SourceMethod = SourceMethod.IMAGE_OCR,
    ) -> Verdict:
        """Extract and decide on already-recognized text. No gate, no state."""
        candidate = self.extractor.extract(
            text, confidence=confidence, source_method=source_method
        )
        return decide(candidate, self.settings.required_tag, self.settings.required_level)

    def recognize_bytes(self, image_bytes: bytes) -> RecognitionResult:
        """Run recognition on local image bytes (blocking)."""
        return self.orchestrator.recognize(image_bytes)

    # ─── Internals ───────────────────────────────────────────────────

    async def _recognize_url(self, url: str) -> RecognitionResult:
        data = await fetch_image(
            url,
            timeout=self.settings.fetch_timeout,
            max_bytes=self.settings.max_file_size,
        )
        try:
            return await asyncio.to_thread(self.orchestrator.recognize, data)
        except RuntimeError as exc:
            # Executor shut down underneath an in-flight attempt.
            raise RecognitionError(f"Recognition interrupted: {exc}") from exc

    def _judge(self, actor_id: str, candidate: EvidenceCandidate) -> Verdict:
        verdict = decide(candidate, self.settings.required_tag, self.settings.required_level)
        self.store.record_attempt(candidate.source_method, verdict.outcome)
        if verdict.outcome:
            self.store.mark_verified(actor_id)
        logger.info(
            "Verdict for %s via %s: %s (tag=%s, level=%s)",
            actor_id,
            candidate.source_method.value,
            verdict.reason_code.value,
            candidate.tag,
            candidate.level,
        )
        return verdict

    def _gate_outcome(
        self, actor_id: str, source: SourceMethod, gate: GateDecision
    ) -> VerificationOutcome:
        if gate.status == AttemptStatus.ON_COOLDOWN:
            message = MSG_COOLDOWN.format(remaining=format_cooldown_time(gate.retry_after_seconds))
            retry_after: Optional[float] = gate.retry_after_seconds
        else:
            message = MSG_ALREADY_VERIFIED
            retry_after = None
        logger.info("Attempt by %s rejected at gate: %s", actor_id, gate.status.value)
        return VerificationOutcome(
            actor_id=actor_id,
            status=gate.status or AttemptStatus.ALREADY_VERIFIED,
            source_method=source,
            message=message,
            retry_after_seconds=retry_after,
        )

    def _failure(
        self,
        actor_id: str,
        source: SourceMethod,
        status: AttemptStatus,
        exc: VerificationError,
    ) -> VerificationOutcome:
        if status == AttemptStatus.INVALID_ATTACHMENT:
            logger.warning("Attempt by %s rejected [%s]: %s", actor_id, exc.code, exc)
        else:
            logger.error("Attempt by %s failed [%s]: %s", actor_id, exc.code, exc)
        message = str(exc) if status == AttemptStatus.INVALID_ATTACHMENT else MSG_PROCESSING_FAILED
        return VerificationOutcome(
            actor_id=actor_id,
            status=status,
            source_method=source,
            message=message,
            error_code=exc.code,
        )
