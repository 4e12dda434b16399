"""
Tests for the similarity engine.

Covers:
- Exact and containment scoring
- Typo tolerance
- Levenshtein / trigram / word-overlap components
"""

import pytest

from lib.assistant.similarity import (
    levenshtein_distance,
    similarity,
    trigram_similarity,
    word_overlap_score,
)

# =============================================================================
# Combined score
# =============================================================================


class TestSimilarity:
    def test_identical_is_one(self):
        assert similarity("Youth Digital Skills", "youth digital skills") == 1.0

    def test_empty_is_zero(self):
        assert similarity("", "budget") == 0.0
        assert similarity("budget", "") == 0.0

    def test_containment_scores_high(self):
        score = similarity("budget", "Q1 budget review")
        assert 0.85 <= score < 1.0

    def test_containment_scales_with_length_ratio(self):
        close = similarity("budget review", "Q1 budget review")
        far = similarity("budget", "Q1 budget review")
        assert close > far

    def test_containment_outranks_non_containing(self):
        assert similarity("budget", "Q1 budget review") > similarity("budgte", "Q1 budget review")

    @pytest.mark.parametrize(
        "typo,target",
        [
            ("progamme", "programme"),
            ("sabitk", "sabitek"),
            ("Yuoth Digtal Skils", "Youth Digital Skills"),
        ],
    )
    def test_typos_stay_similar(self, typo, target):
        assert similarity(typo, target) >= 0.7

    def test_unrelated_strings_score_low(self):
        assert similarity("zzqx", "Community Health Outreach") < 0.25

    def test_symmetric_for_exact_case(self):
        assert similarity("ABC", "abc") == similarity("abc", "ABC")


# =============================================================================
# Components
# =============================================================================


class TestLevenshtein:
    def test_classic_example(self):
        assert levenshtein_distance("kitten", "sitting") == 3

    def test_identical(self):
        assert levenshtein_distance("same", "same") == 0

    def test_very_different_lengths_short_circuit(self):
        assert levenshtein_distance("a", "abcdefgh") == 8


class TestTrigram:
    def test_identical(self):
        assert trigram_similarity("abc", "abc") == 1.0

    def test_disjoint(self):
        assert trigram_similarity("abc", "xyz") == 0.0

    def test_partial_overlap(self):
        assert 0.0 < trigram_similarity("budget", "budgets") < 1.0


class TestWordOverlap:
    def test_all_words_present(self):
        assert word_overlap_score("budget review", "q1 budget review") == 1.0

    def test_single_letter_words_ignored(self):
        assert word_overlap_score("a b", "a b c") == 0.0

    def test_half_present(self):
        assert word_overlap_score("budget plan", "q1 budget review") == 0.5
