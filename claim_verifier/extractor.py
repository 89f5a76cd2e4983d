"""
Tolerant entity extraction from recognized text.

Turns the messy, duplicated, partially wrong text coming out of OCR into a
candidate tag (character class) and a candidate level.

Philosophy: recall over precision. The recognition layer concatenates every
preprocessing variant's text, so the same field usually appears several times
in several corrupted forms. Every level heuristic below is an independent pure
function `text -> set[int]`; their union is reduced by a single, separately
tested step (`select_level`) that keeps the maximum value inside the plausible
bounds. Under-reading a level hurts more than over-reading it, because the tag
check is the primary gate.

Two views of the text are scanned:
  - normalized:  lowercase, whitespace collapsed
  - projection:  letters, digits and "%" only (everything else becomes a space)
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from .models import EvidenceCandidate, SourceMethod

logger = logging.getLogger(__name__)


# ─── Glyph Confusion Tables ─────────────────────────────────────────
# Characters OCR commonly swaps for each other on game UI fonts.

_LOOKALIKES: dict[str, str] = {
    "i": "il1|!j",
    "l": "li1|",
    "o": "o0",
    "s": "s5",
    "n": "nm",
    "m": "mn",
    "b": "b8",
    "g": "g9",
    "z": "z2",
}

# Multi-glyph confusions: (appears in target, what OCR produced instead)
_CLUSTER_SUBSTITUTIONS: tuple[tuple[str, str], ...] = (
    ("in", "m"),
    ("m", "rn"),
    ("rn", "m"),
    ("cl", "d"),
    ("d", "cl"),
)

# A tag must not be glued to other letters ("kainite" is not "kain").
_LEFT = r"(?<![a-z])"
_RIGHT = r"(?![a-z])"


# ─── Level Patterns ─────────────────────────────────────────────────

_INDICATOR = r"(?:level|lvl|lv|[i1|]v)"

# Lv.260, Lv 260, Level: 180, 1v.260 (OCR), lv~*260 (stray symbols)
_PREFIXED_RE = re.compile(_LEFT + _INDICATOR + r"[^\d\n]{0,3}?(\d{2,3})(?!\d)")
# 260 Lv
_SUFFIXED_RE = re.compile(r"(?<!\d)(\d{3})\s*(?:lv|level)")
_FREE_STANDING_RE = re.compile(r"(?<!\d)(\d{3})(?!\d)")

_SEP = r"[^\da-z\n]{1,3}"
# Percentages ("exp 29.5%") are never a split level.
_END = r"(?!\d)(?!\s*%)"
_SPLIT_DIGIT_RES: tuple[re.Pattern[str], ...] = (
    re.compile(rf"(?<!\d)(\d){_SEP}(\d){_SEP}(\d){_END}"),  # 2 9 8
    re.compile(rf"(?<!\d)(\d){_SEP}(\d{{2}}){_END}"),  # 2 98
    re.compile(rf"(?<!\d)(\d{{2}}){_SEP}(\d){_END}"),  # 29 8
)


# ─── Level Rules ────────────────────────────────────────────────────


@dataclass(frozen=True)
class LevelRules:
    """Numeric bounds steering the level heuristics.

    floor/ceiling:    plausible level range; anything outside never surfaces.
    promote_prefix:   leading digit prepended to a truncated 2-digit reading.
    promote_min:      lowest 2-digit reading that is promoted (the threshold
                      zone is promote_prefix*100 + promote_min .. +99).
    reconstruct_min:  split digits are only stitched together at or above this.
    """

    floor: int = 100
    ceiling: int = 300
    promote_prefix: int = 2
    promote_min: int = 40
    reconstruct_min: int = 290

    @classmethod
    def for_threshold(cls, required_level: int, floor: int = 100, ceiling: int = 300) -> LevelRules:
        return cls(
            floor=floor,
            ceiling=ceiling,
            promote_prefix=required_level // 100,
            promote_min=required_level % 100,
            reconstruct_min=ceiling - 10,
        )

    def in_bounds(self, value: int) -> bool:
        return self.floor <= value <= self.ceiling


# ─── Normalization ──────────────────────────────────────────────────


def normalize_text(text: str) -> str:
    """Lowercase and collapse all whitespace runs to a single space."""
    return re.sub(r"\s+", " ", text.lower()).strip()


def project_alphanumeric(text: str) -> str:
    """Keep letters, digits and '%'; everything else becomes a single space."""
    return re.sub(r"[^a-z0-9%]+", " ", text.lower()).strip()


def text_views(text: str) -> tuple[str, str]:
    return normalize_text(text), project_alphanumeric(text)


# ─── Level Heuristics ───────────────────────────────────────────────


def indicator_levels(text: str, rules: LevelRules) -> set[int]:
    """Numbers directly labelled as a level, before or after the number."""
    found = {int(m.group(1)) for m in _PREFIXED_RE.finditer(text)}
    found.update(int(m.group(1)) for m in _SUFFIXED_RE.finditer(text))
    return found


def promoted_levels(text: str, rules: LevelRules) -> set[int]:
    """Labelled 2-digit readings that only make sense with a dropped leading digit.

    "lv 64" is read as 264 when the threshold is 240: 64 sits in the 40..99
    window, which is exactly the tail of the 240..299 zone.
    """
    found: set[int] = set()
    for match in _PREFIXED_RE.finditer(text):
        digits = match.group(1)
        if len(digits) == 2 and rules.promote_min <= int(digits) <= 99:
            found.add(rules.promote_prefix * 100 + int(digits))
    return found


def free_standing_levels(text: str, rules: LevelRules) -> set[int]:
    """Any standalone 3-digit number. Low precision fallback."""
    return {int(m.group(1)) for m in _FREE_STANDING_RE.finditer(text)}


def reconstructed_levels(text: str, rules: LevelRules) -> set[int]:
    """Stitch split digit clusters ("2 9 8") back together near the level cap."""
    found: set[int] = set()
    for pattern in _SPLIT_DIGIT_RES:
        for match in pattern.finditer(text):
            value = int("".join(match.groups()))
            if rules.reconstruct_min <= value <= rules.ceiling:
                found.add(value)
    return found


LevelHeuristic = Callable[[str, LevelRules], set[int]]

LEVEL_HEURISTICS: tuple[LevelHeuristic, ...] = (
    indicator_levels,
    promoted_levels,
    free_standing_levels,
    reconstructed_levels,
)


def select_level(candidates: Iterable[int], rules: LevelRules) -> Optional[int]:
    """Reduce raw candidates to one level: the maximum inside the bounds."""
    plausible = [c for c in candidates if rules.in_bounds(c)]
    return max(plausible) if plausible else None


# ─── Tag Patterns ───────────────────────────────────────────────────


def _char_class(ch: str) -> str:
    if ch == " ":
        return r"\s*"
    alternatives = _LOOKALIKES.get(ch)
    if alternatives is None:
        return re.escape(ch)
    return "[" + "".join(re.escape(a) for a in alternatives) + "]"


def _word_pattern(word: str) -> re.Pattern[str]:
    body = r"\s+".join(re.escape(part) for part in word.split())
    return re.compile(_LEFT + body + _RIGHT)


def build_tag_patterns(target: str) -> tuple[re.Pattern[str], ...]:
    """Ordered patterns for the target tag and its known OCR misreadings.

    Order: exact word, cluster substitutions (kain -> kam), then a
    per-character look-alike pattern (kain -> ka1n, kaln, kajn, kaim).
    """
    target = normalize_text(target)
    spellings = [target]
    for source, replacement in _CLUSTER_SUBSTITUTIONS:
        if source in target:
            spellings.append(target.replace(source, replacement))

    patterns = [_word_pattern(s) for s in dict.fromkeys(spellings)]
    tolerant = "".join(_char_class(ch) for ch in target)
    patterns.append(re.compile(_LEFT + tolerant + _RIGHT))
    return tuple(patterns)


# ─── Extractor ──────────────────────────────────────────────────────


class EntityExtractor:
    """Extracts a tag/level candidate from free text.

    Holds only compiled patterns and immutable rules, so extracting the same
    text twice always yields the same candidate.
    """

    def __init__(
        self,
        required_tag: str = "kain",
        other_tags: Iterable[str] = (),
        rules: LevelRules | None = None,
    ):
        self.required_tag = normalize_text(required_tag)
        self.rules = rules or LevelRules()
        self._target_patterns = build_tag_patterns(self.required_tag)
        # Longest names first so "dawn warrior" wins over "warrior".
        others = sorted(
            {normalize_text(tag) for tag in other_tags} - {"", self.required_tag},
            key=lambda tag: (-len(tag), tag),
        )
        self._other_patterns = tuple((tag, _word_pattern(tag)) for tag in others)

    @classmethod
    def from_settings(cls, settings) -> EntityExtractor:
        return cls(
            required_tag=settings.required_tag,
            other_tags=settings.other_tags,
            rules=LevelRules.for_threshold(
                settings.required_level, settings.level_floor, settings.level_ceiling
            ),
        )

    # ── Public API ──────────────────────────────────────────────────

    def extract(
        self,
        text: str,
        *,
        confidence: float | None = None,
        source_method: SourceMethod = SourceMethod.IMAGE_OCR,
    ) -> EvidenceCandidate:
        """Extract the tag and level from raw recognized text."""
        tag = self.detect_tag(text)
        candidates = self.level_candidates(text)
        level = select_level(candidates, self.rules)

        logger.debug("Normalized text sample: %s", normalize_text(text)[:500])
        logger.debug("Level candidates: %s -> %s | tag: %s", sorted(candidates), level, tag)

        return EvidenceCandidate(
            tag=tag,
            level=level,
            raw_text=text,
            confidence=confidence,
            source_method=source_method,
        )

    def detect_tag(self, text: str) -> Optional[str]:
        """Return the target tag if any spelling of it appears, else another known tag."""
        views = text_views(text)
        for pattern in self._target_patterns:
            if any(pattern.search(view) for view in views):
                return self.required_tag
        for tag, pattern in self._other_patterns:
            if any(pattern.search(view) for view in views):
                return tag
        return None

    def matches_target(self, text: str) -> bool:
        views = text_views(text)
        return any(p.search(v) for p in self._target_patterns for v in views)

    def level_candidates(self, text: str) -> set[int]:
        """Union of every heuristic over both text views, before bounds."""
        found: set[int] = set()
        for view in text_views(text):
            for heuristic in LEVEL_HEURISTICS:
                found |= heuristic(view, self.rules)
        return found

    def detect_level(self, text: str) -> Optional[int]:
        return select_level(self.level_candidates(text), self.rules)
