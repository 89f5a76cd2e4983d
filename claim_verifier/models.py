"""
Pydantic models for verification data.

Candidates and verdicts are frozen: they are created once per attempt and
passed downstream as values. If data doesn't fit the model, it fails loudly
at the boundary, not silently inside the decision engine.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ─── Enumerations ───────────────────────────────────────────────────


class SourceMethod(str, Enum):
    """Where a candidate's evidence came from."""

    IMAGE_OCR = "IMAGE_OCR"
    THIRD_PARTY_TEXT = "THIRD_PARTY_TEXT"


class ReasonCode(str, Enum):
    """Decision reason codes, in precedence order."""

    NO_TAG = "NO_TAG"
    WRONG_TAG = "WRONG_TAG"
    NO_LEVEL = "NO_LEVEL"
    LOW_LEVEL = "LOW_LEVEL"
    OK = "OK"


class RecognitionMethod(str, Enum):
    """Which recognition path produced the text."""

    REMOTE = "REMOTE"
    LOCAL = "LOCAL"
    NONE = "NONE"  # nothing recognized


class VariantStrategy(int, Enum):
    """Preprocessing strategies. The value is the stable join order."""

    CONTRAST_SHARPEN = 1
    THRESHOLD = 2
    INVERTED_THRESHOLD = 3
    NORMALIZED = 4
    YELLOW_BADGE = 5


class AttemptStatus(str, Enum):
    """Terminal status of one verification attempt."""

    VERDICT = "VERDICT"  # reached the decision engine
    ALREADY_VERIFIED = "ALREADY_VERIFIED"
    ON_COOLDOWN = "ON_COOLDOWN"
    INVALID_ATTACHMENT = "INVALID_ATTACHMENT"
    PROCESSING_FAILED = "PROCESSING_FAILED"
    NOT_ELIGIBLE = "NOT_ELIGIBLE"  # third-party message from the wrong author


# ─── Evidence ───────────────────────────────────────────────────────


class EvidenceCandidate(BaseModel):
    """An extracted, not-yet-judged tag/level pair.

    Fields are Optional because extraction may fail for either one.
    The decision engine has an explicit branch for every absence.
    """

    model_config = ConfigDict(frozen=True)

    tag: Optional[str] = None
    level: Optional[int] = Field(default=None, ge=1)
    raw_text: str = ""
    confidence: Optional[float] = Field(default=None, ge=0.0, le=100.0)
    source_method: SourceMethod = SourceMethod.IMAGE_OCR
    name: Optional[str] = None  # character name, third-party source only


class Verdict(BaseModel):
    """Final pass/fail decision for a candidate."""

    model_config = ConfigDict(frozen=True)

    outcome: bool
    reason_code: ReasonCode
    message: str
    candidate: EvidenceCandidate

    @model_validator(mode="after")
    def _outcome_matches_reason(self) -> Verdict:
        if self.outcome != (self.reason_code == ReasonCode.OK):
            raise ValueError(
                f"outcome={self.outcome} is inconsistent with reason_code={self.reason_code.value}"
            )
        return self


# ─── Recognition ────────────────────────────────────────────────────


class PreprocessedVariant(BaseModel):
    """One preprocessed rendering of the input image (PNG bytes)."""

    model_config = ConfigDict(frozen=True)

    data: bytes
    strategy: VariantStrategy
    width: int
    height: int


class RecognitionResult(BaseModel):
    """Combined output of the recognition orchestrator."""

    text: str = ""
    confidence: float = 0.0
    method: RecognitionMethod = RecognitionMethod.NONE
    variant_texts: list[str] = Field(default_factory=list)


# ─── Inputs from the adapter layer ──────────────────────────────────


class AttachmentInfo(BaseModel):
    """Metadata of an uploaded image, as reported by the chat platform."""

    url: str
    size: Optional[int] = None  # bytes
    content_type: Optional[str] = None
    filename: Optional[str] = None


class EmbedField(BaseModel):
    name: str = ""
    value: str = ""


class Embed(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    fields: list[EmbedField] = Field(default_factory=list)


class ThirdPartyMessage(BaseModel):
    """A message posted by the cooperating lookup bot."""

    author_id: str
    content: Optional[str] = None
    embeds: list[Embed] = Field(default_factory=list)


# ─── Outcomes ───────────────────────────────────────────────────────


class GateDecision(BaseModel):
    """Result of the anti-abuse gate for one actor."""

    admitted: bool
    status: Optional[AttemptStatus] = None  # set when not admitted
    retry_after_seconds: float = 0.0


class VerificationOutcome(BaseModel):
    """What the adapter layer renders back to the actor."""

    actor_id: str
    status: AttemptStatus
    source_method: SourceMethod
    message: str
    verdict: Optional[Verdict] = None
    retry_after_seconds: Optional[float] = None
    error_code: Optional[str] = None
    recognition_method: Optional[RecognitionMethod] = None

    @property
    def success(self) -> bool:
        return self.verdict is not None and self.verdict.outcome


class StatsSnapshot(BaseModel):
    """Running counters of the anti-abuse store."""

    total_attempts: int = 0
    successful_verifications: int = 0
    failed_verifications: int = 0
    ocr_verifications: int = 0
    third_party_verifications: int = 0
    success_rate: float = 0.0  # percent
    uptime_seconds: float = 0.0
    uptime_formatted: str = "0s"
    verified_cache_size: int = 0
    active_cooldowns: int = 0
