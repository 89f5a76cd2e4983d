"""
Claim Verifier — FastAPI Server
===============================

HTTP adapter in front of the verification core. The chat bot (or any other
front end) forwards attachments and lookup-bot replies here and acts on the
returned outcome: granting roles, replying, auditing.

Endpoints:
    POST   /verify/screenshot             Verify from an image attachment
    POST   /verify/third-party            Verify from a lookup-bot reply
    POST   /evaluate                      Judge already-recognized text (no gate)
    GET    /actors/{actor_id}/status      Verified? Cooldown remaining?
    POST   /actors/{actor_id}/verification   Manual override (mark verified)
    DELETE /actors/{actor_id}/verification   Unverify (clear cache entry)
    DELETE /actors/{actor_id}/cooldown       Clear an actor's cooldown
    GET    /stats                         Running counters
    GET    /health                        Health check / readiness probe

Run:
    uvicorn api:app --reload              # Dev (http://localhost:8000)
    uvicorn api:app --host 0.0.0.0        # Production
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from claim_verifier import __version__
from claim_verifier.config import Settings
from claim_verifier.models import (
    AttachmentInfo,
    AttemptStatus,
    StatsSnapshot,
    ThirdPartyMessage,
    Verdict,
    VerificationOutcome,
)
from claim_verifier.pipeline import VerificationService
from claim_verifier.state import format_cooldown_time

load_dotenv()


# ─── Application Lifespan (warm OCR engine, start sweeper) ──────────

_service: VerificationService | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the service once; settings are read here and never again."""
    global _service  # noqa: PLW0603
    _service = VerificationService(Settings.from_env())
    await _service.start()
    yield
    await _service.shutdown()
    _service = None


# ─── FastAPI App ─────────────────────────────────────────────────────

app = FastAPI(
    title="Claim Verifier API",
    description=(
        "Verifies class/level claims from game screenshots (multi-variant OCR) "
        "and lookup-bot replies, with per-actor cooldowns and a verified cache."
    ),
    version=__version__,
    lifespan=lifespan,
)


# ─── Request / Response Schemas ─────────────────────────────────────


class ScreenshotRequest(BaseModel):
    """Request body for /verify/screenshot."""

    actor_id: str = Field(..., min_length=1)
    attachment: AttachmentInfo
    has_verified_role: bool = Field(
        default=False, description="Whether the platform reports the actor already holds the role."
    )

    model_config = {"json_schema_extra": {"example": {
        "actor_id": "123456789012345678",
        "attachment": {
            "url": "https://cdn.example.com/attachments/1/2/screenshot.png",
            "size": 482133,
            "content_type": "image/png",
        },
        "has_verified_role": False,
    }}}


class ThirdPartyRequest(BaseModel):
    """Request body for /verify/third-party."""

    actor_id: str = Field(..., min_length=1)
    message: ThirdPartyMessage
    has_verified_role: bool = False


class EvaluateRequest(BaseModel):
    """Request body for /evaluate."""

    text: str = Field(..., description="Recognized text, e.g. raw OCR output.")
    confidence: Optional[float] = Field(default=None, ge=0.0, le=100.0)


class ActorStatusResponse(BaseModel):
    actor_id: str
    verified: bool
    on_cooldown: bool
    cooldown_remaining_seconds: float
    cooldown_remaining: Optional[str] = None


class AdminActionResponse(BaseModel):
    actor_id: str
    changed: bool


class HealthResponse(BaseModel):
    status: str
    version: str
    required_tag: str
    required_level: int
    ocr_engine_ready: bool
    remote_backend: Optional[str] = None


# ─── Helpers ─────────────────────────────────────────────────────────


def _get_service() -> VerificationService:
    if _service is None:
        raise HTTPException(status_code=503, detail="Verifier not initialised")
    return _service


# ─── Endpoints ───────────────────────────────────────────────────────


@app.post(
    "/verify/screenshot",
    summary="Verify a claim from a screenshot attachment",
    tags=["Verification"],
    responses={503: {"description": "Verifier not yet initialised"}},
)
async def verify_screenshot(request: ScreenshotRequest) -> VerificationOutcome:
    """Validate, gate, download, OCR, extract and decide.

    Gate rejections (`ALREADY_VERIFIED`, `ON_COOLDOWN`), invalid attachments
    and processing failures are returned as outcomes with status 200; only
    `VERDICT` outcomes carry a verdict.
    """
    service = _get_service()
    return await service.verify_screenshot(
        request.actor_id, request.attachment, request.has_verified_role
    )


@app.post(
    "/verify/third-party",
    summary="Verify a claim from a lookup-bot reply",
    tags=["Verification"],
    responses={
        403: {"description": "Message author is not the designated lookup bot"},
        503: {"description": "Verifier not yet initialised"},
    },
)
async def verify_third_party(request: ThirdPartyRequest) -> VerificationOutcome:
    """Parse the lookup bot's embed/content and decide."""
    service = _get_service()
    outcome = await service.verify_third_party(
        request.actor_id, request.message, request.has_verified_role
    )
    if outcome.status == AttemptStatus.NOT_ELIGIBLE:
        raise HTTPException(status_code=403, detail=outcome.message)
    return outcome


@app.post(
    "/evaluate",
    summary="Judge recognized text without touching cooldowns",
    tags=["Verification"],
    responses={503: {"description": "Verifier not yet initialised"}},
)
def evaluate(request: EvaluateRequest) -> Verdict:
    service = _get_service()
    return service.evaluate_text(request.text, request.confidence)


@app.get("/actors/{actor_id}/status", summary="Verification status", tags=["Actors"])
def actor_status(actor_id: str) -> ActorStatusResponse:
    service = _get_service()
    remaining = service.store.check_cooldown(actor_id)
    return ActorStatusResponse(
        actor_id=actor_id,
        verified=service.store.is_verified(actor_id),
        on_cooldown=remaining > 0,
        cooldown_remaining_seconds=remaining,
        cooldown_remaining=format_cooldown_time(remaining) if remaining > 0 else None,
    )


@app.post("/actors/{actor_id}/verification", summary="Manually verify", tags=["Actors"])
def override_verification(actor_id: str) -> AdminActionResponse:
    service = _get_service()
    already = service.store.is_verified(actor_id)
    service.store.mark_verified(actor_id)
    return AdminActionResponse(actor_id=actor_id, changed=not already)


@app.delete("/actors/{actor_id}/verification", summary="Unverify", tags=["Actors"])
def revoke_verification(actor_id: str) -> AdminActionResponse:
    service = _get_service()
    return AdminActionResponse(actor_id=actor_id, changed=service.store.revoke(actor_id))


@app.delete("/actors/{actor_id}/cooldown", summary="Clear cooldown", tags=["Actors"])
def clear_cooldown(actor_id: str) -> AdminActionResponse:
    service = _get_service()
    return AdminActionResponse(actor_id=actor_id, changed=service.store.clear_cooldown(actor_id))


@app.get("/stats", summary="Verification statistics", tags=["System"])
def stats() -> StatsSnapshot:
    return _get_service().store.stats()


@app.get(
    "/health",
    summary="Health check",
    tags=["System"],
    responses={503: {"description": "Verifier not yet initialised"}},
)
def health_check() -> HealthResponse:
    """Returns service status and configuration info."""
    service = _get_service()
    remote = service.orchestrator.remote
    return HealthResponse(
        status="healthy",
        version=__version__,
        required_tag=service.settings.required_tag,
        required_level=service.settings.required_level,
        ocr_engine_ready=service.orchestrator.engine.started,
        remote_backend=remote.name if remote is not None else None,
    )
