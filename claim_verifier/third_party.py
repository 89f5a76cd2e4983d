"""
Secondary evidence: structured replies from the cooperating lookup bot.

The lookup bot answers a character query with an embed (labelled fields,
title, description) and/or plain content. This text is far cleaner than OCR
output, so a single labelled-number pattern is enough for the level. The
resulting candidate goes through the same decision engine as screenshots.

Note: this source is unverified third-party text. Only messages whose
author matches the configured bot identity are eligible.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from .extractor import EntityExtractor
from .models import Embed, EvidenceCandidate, SourceMethod, ThirdPartyMessage

_LEVEL_TEXT_RE = re.compile(r"(?:level|lv\.?)\s*[:\s]*(\d+)", re.IGNORECASE)
_FIRST_NUMBER_RE = re.compile(r"(\d+)")

_TAG_LABELS = ("job", "class")
_LEVEL_LABELS = ("level", "lv")
_NAME_LABELS = ("name", "ign")


def is_third_party_message(message: ThirdPartyMessage, author_id: str) -> bool:
    """True if the message was posted by the designated lookup bot."""
    return message.author_id == author_id


def _positive_int(raw: str) -> Optional[int]:
    value = int(raw)
    return value if value > 0 else None


@dataclass
class ParsedFields:
    tag: Optional[str] = None
    level: Optional[int] = None
    name: Optional[str] = None


def _level_from_text(text: str) -> Optional[int]:
    match = _LEVEL_TEXT_RE.search(text)
    return _positive_int(match.group(1)) if match else None


class ThirdPartyParser:
    """Extracts tag, level and character name from lookup-bot messages."""

    def __init__(self, extractor: EntityExtractor):
        self.extractor = extractor

    def parse_embed(self, embed: Embed) -> ParsedFields:
        """Labelled fields first, then title/description text."""
        result = ParsedFields()

        for field in embed.fields:
            label = field.name.lower()
            value = field.value.strip()

            if any(marker in label for marker in _TAG_LABELS) and value:
                # A job field naming another class is still a tag: WRONG_TAG, not NO_TAG.
                result.tag = self.extractor.detect_tag(value) or value.lower()

            if any(marker in label for marker in _LEVEL_LABELS):
                match = _FIRST_NUMBER_RE.search(value)
                if match:
                    result.level = _positive_int(match.group(1))

            if any(marker in label for marker in _NAME_LABELS) and value:
                result.name = value

        text = " ".join(part for part in (embed.description, embed.title) if part)
        if result.tag is None and self.extractor.matches_target(text):
            result.tag = self.extractor.required_tag
        if result.level is None:
            result.level = _level_from_text(text)

        return result

    def parse_message(self, message: ThirdPartyMessage) -> EvidenceCandidate:
        """Merge every embed (later ones win), then fall back to plain content."""
        tag: Optional[str] = None
        level: Optional[int] = None
        name: Optional[str] = None
        raw_parts: list[str] = []

        for embed in message.embeds:
            parsed = self.parse_embed(embed)
            tag = parsed.tag or tag
            level = parsed.level or level
            name = parsed.name or name
            raw_parts.extend(part for part in (embed.title, embed.description) if part)
            raw_parts.extend(f"{f.name}: {f.value}" for f in embed.fields)

        if message.content:
            raw_parts.append(message.content)
            if tag is None and self.extractor.matches_target(message.content):
                tag = self.extractor.required_tag
            if level is None:
                level = _level_from_text(message.content)

        return EvidenceCandidate(
            tag=tag,
            level=level,
            raw_text="\n".join(raw_parts),
            source_method=SourceMethod.THIRD_PARTY_TEXT,
            name=name,
        )
