"""
Tests for tolerant tag/level extraction.

Pure functions only: no images, no OCR, no network.

Run: pytest tests/ -v
"""

from __future__ import annotations

import pytest

from claim_verifier.config import Settings
from claim_verifier.extractor import (
    EntityExtractor,
    LevelRules,
    build_tag_patterns,
    free_standing_levels,
    indicator_levels,
    normalize_text,
    project_alphanumeric,
    promoted_levels,
    reconstructed_levels,
    select_level,
)
from claim_verifier.models import SourceMethod

RULES = LevelRules.for_threshold(240)


@pytest.fixture
def extractor() -> EntityExtractor:
    return EntityExtractor.from_settings(Settings())


# ═══════════════════════════════════════════════════════════════════
# Normalization
# ═══════════════════════════════════════════════════════════════════


class TestNormalization:
    def test_lowercases_and_collapses_whitespace(self) -> None:
        assert normalize_text("  Lv.264 \n\n  KAIN\t") == "lv.264 kain"

    def test_projection_keeps_only_letters_and_digits(self) -> None:
        assert project_alphanumeric("Lv.~*264 | Kain!") == "lv 264 kain"

    def test_projection_keeps_percent_sign(self) -> None:
        assert project_alphanumeric("EXP 29.5%") == "exp 29 5%"

    def test_empty(self) -> None:
        assert normalize_text("") == ""
        assert project_alphanumeric("") == ""


# ═══════════════════════════════════════════════════════════════════
# Level rules
# ═══════════════════════════════════════════════════════════════════


class TestLevelRules:
    def test_derived_from_threshold(self) -> None:
        assert RULES == LevelRules(
            floor=100, ceiling=300, promote_prefix=2, promote_min=40, reconstruct_min=290
        )

    def test_bounds_inclusive(self) -> None:
        assert RULES.in_bounds(100)
        assert RULES.in_bounds(300)
        assert not RULES.in_bounds(99)
        assert not RULES.in_bounds(301)


# ═══════════════════════════════════════════════════════════════════
# Tag detection
# ═══════════════════════════════════════════════════════════════════


class TestTagDetection:
    @pytest.mark.parametrize(
        "text",
        [
            "kain",
            "KAIN",
            "Class: Kain",
            "kam",  # "in" read as "m"
            "kaln",
            "kaim",
            "kajn",
            "ka1n",
            "ka|n",
            "ka!n",
            "lv.264kain",
        ],
    )
    def test_target_and_misreadings(self, extractor: EntityExtractor, text: str) -> None:
        assert extractor.detect_tag(text) == "kain"

    @pytest.mark.parametrize("text", ["kind", "rain", "kainite", "akain", "cain", "k a"])
    def test_lookalike_words_do_not_match(self, extractor: EntityExtractor, text: str) -> None:
        assert extractor.detect_tag(text) is None

    def test_other_known_tag(self, extractor: EntityExtractor) -> None:
        assert extractor.detect_tag("lv 260 warrior") == "warrior"

    def test_longer_other_tag_wins(self, extractor: EntityExtractor) -> None:
        assert extractor.detect_tag("Lv. 250 Dawn Warrior") == "dawn warrior"

    def test_target_beats_other_tags(self, extractor: EntityExtractor) -> None:
        assert extractor.detect_tag("warrior\nkain") == "kain"

    def test_unknown_class_is_absent(self, extractor: EntityExtractor) -> None:
        assert extractor.detect_tag("lv 250 chef") is None

    def test_pattern_order(self) -> None:
        patterns = build_tag_patterns("kain")
        assert patterns[0].search("kain")
        assert not patterns[0].search("kam")
        assert patterns[1].search("kam")
        assert patterns[-1].search("ka1n")

    def test_configurable_target(self) -> None:
        extractor = EntityExtractor(required_tag="Hero", other_tags=["kain"])
        assert extractor.detect_tag("her0") == "hero"
        assert extractor.detect_tag("kain") == "kain"


# ═══════════════════════════════════════════════════════════════════
# Level heuristics
# ═══════════════════════════════════════════════════════════════════


class TestLevelHeuristics:
    @pytest.mark.parametrize(
        "text, expected",
        [
            ("lv.264", {264}),
            ("lv 264", {264}),
            ("level: 180", {180}),
            ("lvl 250", {250}),
            ("1v.264", {264}),
            ("|v264", {264}),
            ("lv~*264", {264}),
            ("264 lv", {264}),
            ("lv.64", {64}),
        ],
    )
    def test_indicator(self, text: str, expected: set[int]) -> None:
        assert indicator_levels(text, RULES) == expected

    def test_indicator_ignores_four_digits(self) -> None:
        assert indicator_levels("lv 2640", RULES) == set()

    @pytest.mark.parametrize("text", ["silver 55", "active 55", "drive 64", "skillv 250"])
    def test_indicator_needs_word_start(self, text: str) -> None:
        assert indicator_levels(text, RULES) == set()
        assert promoted_levels(text, RULES) == set()

    @pytest.mark.parametrize(
        "text, expected",
        [
            ("lv 64", {264}),
            ("lv 40", {240}),
            ("lv 99", {299}),
            ("lv 39", set()),
            ("lv 264", set()),
            ("64", set()),
        ],
    )
    def test_promotion_only_in_threshold_zone(self, text: str, expected: set[int]) -> None:
        assert promoted_levels(text, RULES) == expected

    def test_free_standing(self) -> None:
        assert free_standing_levels("exp 123 hp 45 mp 9999", RULES) == {123}

    @pytest.mark.parametrize(
        "text, expected",
        [
            ("2 9 8", {298}),
            ("2.98", {298}),
            ("29 8", {298}),
            ("3 0 0", {300}),
            ("2 4 5", set()),
            ("3 0 5", set()),
        ],
    )
    def test_reconstruction_near_ceiling(self, text: str, expected: set[int]) -> None:
        assert reconstructed_levels(text, RULES) == expected

    @pytest.mark.parametrize("text", ["exp 29.5%", "exp 29.5 %", "exp 29 5%", "2 9 9%"])
    def test_percentages_not_reconstructed(self, text: str) -> None:
        assert reconstructed_levels(text, RULES) == set()


class TestSelectLevel:
    def test_max_within_bounds(self) -> None:
        assert select_level({180, 264, 999, 12}, RULES) == 264

    def test_nothing_plausible(self) -> None:
        assert select_level({12, 999}, RULES) is None

    def test_empty(self) -> None:
        assert select_level(set(), RULES) is None


class TestDetectLevel:
    def test_picks_highest_reading(self, extractor: EntityExtractor) -> None:
        assert extractor.detect_level("lv 64\nlv.264\n2 9 8") == 298

    def test_out_of_bounds_ignored(self, extractor: EntityExtractor) -> None:
        assert extractor.detect_level("lv 999 hp 50") is None

    def test_two_digit_below_zone(self, extractor: EntityExtractor) -> None:
        assert extractor.detect_level("lv 35 kain") is None

    def test_projection_view_reads_through_symbols(self, extractor: EntityExtractor) -> None:
        # Too much noise between label and number for the normalized view.
        assert indicator_levels(normalize_text("lv ~~ ** 254"), RULES) == set()
        assert extractor.detect_level("lv ~~ ** 254") == 254

    def test_word_ending_in_lv_is_not_a_label(self, extractor: EntityExtractor) -> None:
        assert extractor.detect_level("level 180 kain silver 55") == 180

    def test_exp_percentage_is_not_a_level(self, extractor: EntityExtractor) -> None:
        assert extractor.detect_level("Lv.180 Kain EXP 29.5%") == 180


# ═══════════════════════════════════════════════════════════════════
# Extraction end to end
# ═══════════════════════════════════════════════════════════════════


class TestExtract:
    def test_scenario_a(self, extractor: EntityExtractor) -> None:
        candidate = extractor.extract("lv.264 kain", confidence=81.5)
        assert candidate.tag == "kain"
        assert candidate.level == 264
        assert candidate.confidence == 81.5
        assert candidate.source_method == SourceMethod.IMAGE_OCR
        assert candidate.raw_text == "lv.264 kain"

    def test_empty_text(self, extractor: EntityExtractor) -> None:
        candidate = extractor.extract("")
        assert candidate.tag is None
        assert candidate.level is None

    def test_idempotent(self, extractor: EntityExtractor) -> None:
        text = "KAM\nLv~*64\nka1n 2 9 8\nEXP 48.21%"
        assert extractor.extract(text) == extractor.extract(text)

    def test_duplicated_variant_text(self, extractor: EntityExtractor) -> None:
        text = "\n".join(["Kain Lv.251", "KAIN LV 251", "ka1n |v.25", "Kaln"])
        candidate = extractor.extract(text)
        assert candidate.tag == "kain"
        assert candidate.level == 251
