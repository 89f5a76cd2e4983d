"""
Deterministic decision engine.

One pure function turns a candidate into a verdict. The precedence below is
a contract, not an implementation detail:

    1. tag absent                 -> NO_TAG
    2. tag != required tag        -> WRONG_TAG
    3. level absent               -> NO_LEVEL
    4. level < required level     -> LOW_LEVEL
    5. otherwise                  -> OK

A candidate with a wrong tag AND no level reports WRONG_TAG. Every
combination of present/absent inputs lands in exactly one branch, so the
engine cannot fail.
"""

from __future__ import annotations

from .models import EvidenceCandidate, ReasonCode, Verdict


# ─── User-facing Messages ───────────────────────────────────────────


def reason_message(
    reason: ReasonCode,
    required_tag: str,
    required_level: int,
    detected_level: int | None = None,
) -> str:
    """Canonical message for a reason code."""
    tag_title = required_tag.title()
    if reason == ReasonCode.OK:
        return "Verification successful! You have been assigned the Verified role."
    if reason == ReasonCode.NO_TAG:
        return "Verification failed: Could not detect class."
    if reason == ReasonCode.WRONG_TAG:
        return f"Verification failed: Class must be {tag_title}."
    if reason == ReasonCode.NO_LEVEL:
        return "Verification failed: Could not detect level."
    return (
        f"Verification failed: Level must be {required_level}+ "
        f"(Detected: {detected_level})."
    )


# ─── Engine ─────────────────────────────────────────────────────────


def evaluate(
    tag: str | None,
    level: int | None,
    required_tag: str,
    required_level: int,
) -> ReasonCode:
    """Apply the fixed precedence and return the single matching reason."""
    if not tag:
        return ReasonCode.NO_TAG
    if tag.strip().lower() != required_tag.strip().lower():
        return ReasonCode.WRONG_TAG
    if level is None:
        return ReasonCode.NO_LEVEL
    if level < required_level:
        return ReasonCode.LOW_LEVEL
    return ReasonCode.OK


def decide(
    candidate: EvidenceCandidate,
    required_tag: str,
    required_level: int,
) -> Verdict:
    """Judge a candidate against the requirements."""
    reason = evaluate(candidate.tag, candidate.level, required_tag, required_level)
    return Verdict(
        outcome=reason == ReasonCode.OK,
        reason_code=reason,
        message=reason_message(reason, required_tag, required_level, candidate.level),
        candidate=candidate,
    )
