"""
Tests for the entity resolver.

Covers:
- Strategy order: exact substring, prefix (partial), full fetch (fuzzy)
- People matched by full name or username
- resolve_entity verdicts: resolved / ambiguous / not_found
"""

from lib import config
from lib.assistant import resolver
from lib.assistant.resolver import EntityKind, MatchType, ResolveStatus
from tests.fixtures.fixture_db import (
    BUDGET_TASK_ID,
    ESTHER_ID,
    SABITEK_ID,
    SAMUEL_ID,
    YOUTH_ID,
)

# =============================================================================
# Searches
# =============================================================================


class TestSearchProgrammes:
    def test_substring_is_exact(self, store):
        matches = resolver.search_programmes(store, "youth digital")
        assert [m.item["id"] for m in matches] == [YOUTH_ID]
        assert matches[0].match_type == MatchType.EXACT

    def test_typo_falls_back_to_fuzzy(self, store):
        matches = resolver.search_programmes(store, "Yuoth Digtal Skils")
        assert matches
        assert matches[0].item["id"] == YOUTH_ID
        assert matches[0].match_type == MatchType.FUZZY

    def test_best_only_returns_one(self, store):
        matches = resolver.search_programmes(store, "sabitek", best_only=True)
        assert len(matches) == 1
        assert matches[0].item["id"] == SABITEK_ID

    def test_blank_query_returns_nothing(self, store):
        assert resolver.search_programmes(store, "   ") == []

    def test_below_threshold_is_dropped(self, store):
        assert resolver.search_programmes(store, "zzqx") == []


class TestSearchTasks:
    def test_prefix_strategy_is_partial(self, store):
        matches = resolver.search_tasks(store, "Reviw budget")
        assert matches
        assert matches[0].item["id"] == BUDGET_TASK_ID
        assert matches[0].match_type == MatchType.PARTIAL

    def test_exact_matches_sorted_by_score(self, store):
        matches = resolver.search_tasks(store, "weekly demo")
        assert [m.item["title"] for m in matches] == ["Weekly demo notes", "Weekly demo agenda"]
        assert all(m.match_type == MatchType.EXACT for m in matches)
        assert matches[0].score >= matches[1].score


class TestSearchUsers:
    def test_username_match_scores_full(self, store):
        matches = resolver.search_users(store, "esther")
        assert matches[0].item["id"] == ESTHER_ID
        assert matches[0].score == 1.0

    def test_full_name_match(self, store):
        matches = resolver.search_users(store, "Samuel Bangura")
        assert matches[0].item["id"] == SAMUEL_ID

    def test_fuzzy_name(self, store):
        matches = resolver.search_users(store, "Samule")
        assert matches
        assert matches[0].item["id"] == SAMUEL_ID


# =============================================================================
# Verdicts
# =============================================================================


class TestResolveEntity:
    def test_resolved_programme(self, store):
        result = resolver.resolve_entity(store, EntityKind.PROGRAMME, "youth digital")
        assert result.status == ResolveStatus.RESOLVED
        assert result.resolved_id == YOUTH_ID
        assert result.resolved_name == "Youth Digital Skills"

    def test_resolved_user_uses_full_name(self, store):
        result = resolver.resolve_entity(store, "user", "esther")
        assert result.status == ResolveStatus.RESOLVED
        assert result.resolved_name == "Esther Okafor"

    def test_repeated_lookup_gives_same_verdict(self, store, monkeypatch):
        first = resolver.resolve_entity(store, EntityKind.PROGRAMME, "youth digital")
        assert resolver.resolve_entity(store, EntityKind.PROGRAMME, "youth digital") == first

        monkeypatch.setattr(config, "RESOLVE_CONFIDENT_SCORE", 1.01)
        first = resolver.resolve_entity(store, EntityKind.TASK, "weekly demo")
        second = resolver.resolve_entity(store, EntityKind.TASK, "weekly demo")
        assert second == first
        assert second.status == ResolveStatus.AMBIGUOUS

    def test_not_found(self, store):
        result = resolver.resolve_entity(store, EntityKind.PROGRAMME, "zzqx")
        assert result.status == ResolveStatus.NOT_FOUND
        assert result.suggestions == []

    def test_ambiguous_below_confident_score(self, store, monkeypatch):
        monkeypatch.setattr(config, "RESOLVE_CONFIDENT_SCORE", 1.01)
        result = resolver.resolve_entity(store, EntityKind.TASK, "weekly demo")
        assert result.status == ResolveStatus.AMBIGUOUS
        assert result.resolved_id is None
        assert [s.label for s in result.suggestions] == ["Weekly demo notes", "Weekly demo agenda"]
        assert "% match" in result.suggestions[0].detail

    def test_suggestions_capped_at_three(self, store, monkeypatch):
        monkeypatch.setattr(config, "RESOLVE_CONFIDENT_SCORE", 1.01)
        result = resolver.resolve_entity(store, EntityKind.USER, "a")
        assert result.status == ResolveStatus.AMBIGUOUS
        assert len(result.suggestions) == 3


class TestDescribeMatch:
    def test_programme_item(self, store):
        match = resolver.search_programmes(store, "sabitek", best_only=True)[0]
        item = resolver.describe_match(EntityKind.PROGRAMME, match)
        assert item.label == "Sabitek Pilot"
        assert item.href == f"/programmes/{SABITEK_ID}"
        assert item.detail.startswith("draft · ")
