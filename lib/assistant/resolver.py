"""
Entity Resolver: fuzzy search over programmes, tasks and people.

Search strategy per kind, stopping at the first non-empty result set:
  1. Case-insensitive substring match in SQL       (match_type "exact")
  2. Prefix fetch on half the first query word     (match_type "partial")
  3. Bounded full-table fetch ranked in Python     (match_type "fuzzy")

Strategies 2 and 3 are filtered by a minimum similarity threshold.
resolve_entity() turns a search into a resolved / ambiguous / not_found
verdict for the conversation layer.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from lib import config, safe_sql
from lib.assistant.models import ResultItem
from lib.assistant.similarity import similarity
from lib.state_store import StateStore

logger = logging.getLogger(__name__)


class MatchType(StrEnum):
    EXACT = "exact"
    PARTIAL = "partial"
    FUZZY = "fuzzy"


class EntityKind(StrEnum):
    PROGRAMME = "programme"
    TASK = "task"
    USER = "user"


@dataclass
class FuzzyMatch:
    """A scored candidate. Transient, never persisted."""

    item: dict[str, Any]
    score: float
    match_type: MatchType

    @property
    def percent(self) -> int:
        return round(self.score * 100)


class ResolveStatus(StrEnum):
    RESOLVED = "resolved"
    AMBIGUOUS = "ambiguous"
    NOT_FOUND = "not_found"


@dataclass
class ResolveResult:
    status: ResolveStatus
    resolved_name: str | None = None
    resolved_id: str | None = None
    suggestions: list[ResultItem] = field(default_factory=list)


# Per-kind table layout: (table, columns, label columns, prefix limit, full-table limit)
_KINDS: dict[EntityKind, tuple[str, str, tuple[str, ...], int, int]] = {
    EntityKind.PROGRAMME: ("programmes", "id, name, status", ("name",), 20, 50),
    EntityKind.TASK: ("tasks", "id, title, status, due_date, programme_id", ("title",), 30, 100),
    EntityKind.USER: ("profiles", "id, full_name, username, role", ("full_name", "username"), 0, 100),
}


def _prefix(query: str) -> str:
    first_word = query.split()[0]
    return first_word[: max(2, len(first_word) // 2)]


def _best_score(query: str, row: dict, label_cols: tuple[str, ...]) -> float:
    return max(similarity(query, row.get(c) or "") for c in label_cols)


def _rank(
    query: str,
    candidates: list[dict],
    label_cols: tuple[str, ...],
    threshold: float,
    limit: int,
    match_type: MatchType,
) -> list[FuzzyMatch]:
    scored = [
        FuzzyMatch(item=c, score=_best_score(query, c, label_cols), match_type=match_type)
        for c in candidates
    ]
    scored = [m for m in scored if m.score >= threshold]
    # sorted() is stable, so equal scores keep the SQL order
    scored.sort(key=lambda m: m.score, reverse=True)
    return scored[:limit]


def _search(
    store: StateStore,
    kind: EntityKind,
    query: str,
    threshold: float,
    limit: int,
) -> list[FuzzyMatch]:
    table, columns, label_cols, prefix_limit, all_limit = _KINDS[kind]
    trimmed = query.strip()
    if not trimmed:
        return []

    order = label_cols[0] + ", id"

    # Strategy 1: substring on any label column, scored by best label
    where = " OR ".join(safe_sql.contains_ci(c) for c in label_cols)
    exact = store.query(
        safe_sql.select(table, columns, where=where, order_by=order, suffix="LIMIT ?"),
        [trimmed] * len(label_cols) + [limit],
    )
    if exact:
        matches = [
            FuzzyMatch(
                item=row,
                score=_best_score(trimmed, row, label_cols),
                match_type=MatchType.EXACT,
            )
            for row in exact
        ]
        matches.sort(key=lambda m: m.score, reverse=True)
        return matches

    # Strategy 2: narrowed prefix fetch (people skip straight to the full fetch)
    if prefix_limit:
        candidates = store.query(
            safe_sql.select(
                table,
                columns,
                where=safe_sql.contains_ci(label_cols[0]),
                order_by=order,
                suffix="LIMIT ?",
            ),
            [_prefix(trimmed), prefix_limit],
        )
        if candidates:
            return _rank(trimmed, candidates, label_cols, threshold, limit, MatchType.PARTIAL)

    # Strategy 3: bounded full-table fetch
    everything = store.query(
        safe_sql.select(table, columns, order_by=order, suffix="LIMIT ?"), [all_limit]
    )
    return _rank(trimmed, everything, label_cols, threshold, limit, MatchType.FUZZY)


def search_programmes(
    store: StateStore,
    query: str,
    threshold: float | None = None,
    limit: int = 5,
    best_only: bool = False,
) -> list[FuzzyMatch]:
    """Fuzzy search programmes by name."""
    return _search(
        store,
        EntityKind.PROGRAMME,
        query,
        config.FUZZY_THRESHOLD if threshold is None else threshold,
        1 if best_only else limit,
    )


def search_tasks(
    store: StateStore,
    query: str,
    threshold: float | None = None,
    limit: int = 5,
    best_only: bool = False,
) -> list[FuzzyMatch]:
    """Fuzzy search tasks by title."""
    return _search(
        store,
        EntityKind.TASK,
        query,
        config.FUZZY_THRESHOLD if threshold is None else threshold,
        1 if best_only else limit,
    )


def search_users(
    store: StateStore,
    query: str,
    threshold: float | None = None,
    limit: int = 5,
    best_only: bool = False,
) -> list[FuzzyMatch]:
    """Fuzzy search people by full name or username."""
    return _search(
        store,
        EntityKind.USER,
        query,
        config.FUZZY_THRESHOLD if threshold is None else threshold,
        1 if best_only else limit,
    )


def user_label(item: dict) -> str:
    return item.get("full_name") or item.get("username") or "Unknown"


def describe_match(kind: EntityKind, match: FuzzyMatch) -> ResultItem:
    item = match.item
    if kind == EntityKind.USER:
        return ResultItem(
            label=user_label(item),
            detail=f"{item.get('role') or 'member'} · {match.percent}% match",
            href="/team",
        )
    if kind == EntityKind.TASK:
        return ResultItem(
            label=item["title"],
            detail=f"{item.get('status')} · {match.percent}% match",
            href=f"/tasks/{item['id']}",
        )
    return ResultItem(
        label=item["name"],
        detail=f"{item.get('status')} · {match.percent}% match",
        href=f"/programmes/{item['id']}",
    )


_SEARCHERS: dict[EntityKind, Callable[..., list[FuzzyMatch]]] = {
    EntityKind.PROGRAMME: search_programmes,
    EntityKind.TASK: search_tasks,
    EntityKind.USER: search_users,
}


def resolve_entity(store: StateStore, kind: EntityKind | str, query: str) -> ResolveResult:
    """
    Resolve a free-text reference to one record.

    Top score >= RESOLVE_CONFIDENT_SCORE resolves; anything else that
    cleared RESOLVE_THRESHOLD is ambiguous with up to three suggestions.
    """
    kind = EntityKind(kind)
    matches = _SEARCHERS[kind](store, query, threshold=config.RESOLVE_THRESHOLD, limit=5)
    if not matches:
        logger.debug("resolve_entity %s %r: not found", kind, query)
        return ResolveResult(status=ResolveStatus.NOT_FOUND)

    top = matches[0]
    if top.score >= config.RESOLVE_CONFIDENT_SCORE:
        if kind == EntityKind.USER:
            name = user_label(top.item)
        elif kind == EntityKind.TASK:
            name = top.item["title"]
        else:
            name = top.item["name"]
        return ResolveResult(
            status=ResolveStatus.RESOLVED, resolved_name=name, resolved_id=top.item["id"]
        )

    return ResolveResult(
        status=ResolveStatus.AMBIGUOUS,
        suggestions=[describe_match(kind, m) for m in matches[:3]],
    )
