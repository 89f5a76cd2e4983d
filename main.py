#!/usr/bin/env python3
"""
Claim Verifier — Entry Point
============================

Runs the extraction + decision pipeline on sample recognized text, and
optionally on a real screenshot (local file or URL).

Usage:
    python main.py                          # Sample texts only (no OCR needed)
    python main.py screenshot.png           # + local OCR on a file
    python main.py https://cdn/.../ss.png   # + download and OCR
    OCR_SPACE_API_KEY=... VERIFIER_REMOTE_OCR_PROVIDER=ocrspace python main.py ss.png
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from claim_verifier.config import Settings
from claim_verifier.decision import decide
from claim_verifier.exceptions import VerificationError
from claim_verifier.fetcher import fetch_image
from claim_verifier.models import ThirdPartyMessage, Verdict
from claim_verifier.pipeline import VerificationService

load_dotenv()


# ─── Sample Recognized Text (noisy on purpose) ─────────────────────

SAMPLE_TEXTS: list[tuple[str, str]] = [
    ("Clean read", "lv.264 kain"),
    ("Under the threshold", "level 180 kain"),
    ("Another class", "lv 260 warrior"),
    ("Nothing recognized", ""),
    (
        "Five variants, all mangled",
        "KAM\nLv~*64\nka1n 2 9 8 Guild: Dawn\n|v.Z64 Ka|n\nEXP 48.21%",
    ),
]

SAMPLE_LOOKUP_REPLY = ThirdPartyMessage.model_validate({
    "author_id": Settings().third_party_author_id,
    "embeds": [{
        "title": "Character Lookup",
        "description": "Kain on Scania",
        "fields": [
            {"name": "Name", "value": "Ashwind"},
            {"name": "Level", "value": "Lv. 245"},
        ],
    }],
})


# ─── ANSI Color Constants ───────────────────────────────────────────

_RED = "\033[91m"
_GREEN = "\033[92m"
_CYAN = "\033[96m"
_DIM = "\033[2m"
_BOLD = "\033[1m"
_RESET = "\033[0m"
_WIDTH = 72


# ─── Pretty Printer ─────────────────────────────────────────────────


def _one_line(text: str, limit: int = 48) -> str:
    flat = " | ".join(line.strip() for line in text.splitlines() if line.strip())
    return flat if len(flat) <= limit else flat[: limit - 3] + "..."


def print_verdict(label: str, verdict: Verdict) -> None:
    """Print one verdict with its extracted candidate."""
    candidate = verdict.candidate
    color = _GREEN if verdict.outcome else _RED
    print(f"  {_BOLD}{label}{_RESET}")
    print(f"    Text:     {_DIM}{_one_line(candidate.raw_text) or '(empty)'}{_RESET}")
    print(f"    Tag:      {candidate.tag}")
    print(f"    Level:    {candidate.level}")
    if candidate.name:
        print(f"    Name:     {candidate.name}")
    if candidate.confidence is not None:
        print(f"    Conf:     {candidate.confidence:.1f}")
    print(f"    Verdict:  {color}{_BOLD}{verdict.reason_code.value}{_RESET}  {verdict.message}")
    print()


def _header(title: str) -> None:
    print(f"\n{'=' * _WIDTH}")
    print(f"{_BOLD}{_CYAN}  {title}{_RESET}")
    print(f"{'=' * _WIDTH}")


# ─── Screenshot Helpers ─────────────────────────────────────────────


def _load_image(source: str, settings: Settings) -> bytes:
    if source.startswith(("http://", "https://")):
        return asyncio.run(
            fetch_image(source, timeout=settings.fetch_timeout, max_bytes=settings.max_file_size)
        )
    return Path(source).read_bytes()


def run_screenshot(service: VerificationService, source: str) -> int:
    """OCR one screenshot and print the verdict. Returns a process exit code."""
    _header("SCREENSHOT")
    print(f"  Source:      {source}")
    try:
        result = service.recognize_bytes(_load_image(source, service.settings))
    except VerificationError as e:
        print(f"  {_RED}[{e.code}]{_RESET} {e}")
        for k, v in e.details.items():
            print(f"    {_DIM}{k}: {v}{_RESET}")
        return 2
    except OSError as e:
        print(f"  {_RED}Cannot read {source}: {e}{_RESET}")
        return 2

    print(f"  Recognition: {result.method.value} ({len(result.variant_texts)} text block(s))")
    print(f"{'─' * _WIDTH}")
    verdict = service.evaluate_text(result.text, result.confidence)
    print_verdict("Screenshot", verdict)
    return 0 if verdict.outcome else 1


# ─── Main ────────────────────────────────────────────────────────────


def main():
    """Evaluate the sample texts, then an optional screenshot argument."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )

    settings = Settings.from_env()
    service = VerificationService(settings)

    _header(f"CLAIM VERIFIER  --  {settings.required_tag.title()} {settings.required_level}+")
    for label, text in SAMPLE_TEXTS:
        print_verdict(label, service.evaluate_text(text))

    print(f"{'─' * _WIDTH}")
    reply = service.third_party.parse_message(SAMPLE_LOOKUP_REPLY)
    print_verdict(
        "Lookup-bot reply",
        decide(reply, settings.required_tag, settings.required_level),
    )

    exit_code = 0
    if len(sys.argv) > 1:
        exit_code = run_screenshot(service, sys.argv[1])
        service.orchestrator.engine.shutdown()
    print(f"{'=' * _WIDTH}\n")
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
