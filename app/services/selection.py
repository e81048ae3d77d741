"""Slot filling with diversity caps and history-aware relaxation."""

from __future__ import annotations

import random
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Iterable, Mapping, Sequence

from ..models import SLOT_KEYS, Candidate, SelectedCandidate, SlotName
from ..utils import clamp, js_round

Shuffle = Callable[[Sequence[Candidate]], list[Candidate]]
CandidateFilter = Callable[[Candidate], bool]

DEFAULT_GENRE_WEIGHT = 0.4
DEFAULT_YEAR_WEIGHT = 0.35


@dataclass(frozen=True, slots=True)
class DiversityCaps:
    per_genre: int
    per_year: int


@dataclass(slots=True)
class SelectionContext:
    """Accumulator state for a single pool build."""

    pool_size: int
    caps: DiversityCaps
    history_ids: frozenset[str] = frozenset()
    selected: list[SelectedCandidate] = field(default_factory=list)
    summary: dict[str, int] = field(default_factory=lambda: {key: 0 for key in SLOT_KEYS})
    genre_counts: Counter[str] = field(default_factory=Counter)
    year_counts: Counter[int] = field(default_factory=Counter)
    selected_ids: set[str] = field(default_factory=set)

    @property
    def is_full(self) -> bool:
        return len(self.selected) >= self.pool_size

    def slot_full(self, slot: SlotName, quota: int) -> bool:
        return self.summary.get(slot, 0) >= quota

    def passes_caps(self, candidate: Candidate) -> bool:
        if self.caps.per_genre > 0:
            for genre in candidate.genres:
                if self.genre_counts[genre] >= self.caps.per_genre:
                    return False
        if self.caps.per_year > 0 and candidate.year:
            if self.year_counts[candidate.year] >= self.caps.per_year:
                return False
        return True

    def apply(self, candidate: Candidate, slot: SlotName) -> None:
        self.selected.append(SelectedCandidate(candidate=candidate, slot=slot))
        self.selected_ids.add(candidate.id)
        self.summary[slot] = self.summary.get(slot, 0) + 1
        for genre in candidate.genres:
            self.genre_counts[genre] += 1
        if candidate.year:
            self.year_counts[candidate.year] += 1


def _weight(value: object, default: float) -> float:
    try:
        weight = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        weight = 0.0
    return clamp(weight or default, 0.1, 0.9)


def compute_caps(pool_size: int, diversity: Mapping[str, float] | None) -> DiversityCaps:
    diversity = diversity or {}
    genre_weight = _weight(diversity.get("genre"), DEFAULT_GENRE_WEIGHT)
    year_weight = _weight(diversity.get("year"), DEFAULT_YEAR_WEIGHT)
    return DiversityCaps(
        per_genre=max(1, js_round(pool_size * clamp(genre_weight * 0.5, 0.1, 0.35))),
        per_year=max(1, js_round(pool_size * clamp(year_weight * 0.5, 0.1, 0.35))),
    )


def sort_new(candidates: Iterable[Candidate]) -> list[Candidate]:
    return sorted(candidates, key=lambda c: -c.added_at)


def sort_top_rated(candidates: Iterable[Candidate]) -> list[Candidate]:
    return sorted(candidates, key=lambda c: (-c.rating, -c.added_at))


def sort_old_but_gold(candidates: Iterable[Candidate]) -> list[Candidate]:
    return sorted(
        (c for c in candidates if c.is_old),
        key=lambda c: (c.year or 0, -c.rating, -c.added_at),
    )


def random_shuffle(candidates: Sequence[Candidate]) -> list[Candidate]:
    shuffled = list(candidates)
    random.shuffle(shuffled)
    return shuffled


def attempt_selection(
    candidates: Iterable[Candidate],
    quota: int,
    slot: SlotName,
    context: SelectionContext,
    *,
    allow_history: bool = False,
    candidate_filter: CandidateFilter | None = None,
    deferred: dict[str, Candidate] | None = None,
) -> None:
    """Run one pass over ``candidates`` for ``slot``.

    History members that pass every other check are remembered in ``deferred``
    instead of being selected when ``allow_history`` is false.
    """

    if quota <= 0:
        return
    for candidate in candidates:
        if context.is_full or context.slot_full(slot, quota):
            break
        if candidate.id in context.selected_ids:
            continue
        if candidate_filter is not None and not candidate_filter(candidate):
            continue
        if not context.passes_caps(candidate):
            continue
        if not allow_history and candidate.id in context.history_ids:
            if deferred is not None:
                deferred.setdefault(candidate.id, candidate)
            continue
        context.apply(candidate, slot)


def fill_slot(
    view: Sequence[Candidate],
    quota: int,
    slot: SlotName,
    context: SelectionContext,
    *,
    eligibility: CandidateFilter | None = None,
) -> None:
    """Fill a slot with the strict, broadened and history-relaxed passes."""

    deferred: dict[str, Candidate] = {}
    attempt_selection(
        view, quota, slot, context, candidate_filter=eligibility, deferred=deferred
    )
    if eligibility is not None:
        attempt_selection(view, quota, slot, context, deferred=deferred)
    attempt_selection(deferred.values(), quota, slot, context, allow_history=True)


def top_up(context: SelectionContext, candidates: Iterable[Candidate]) -> None:
    """Append leftovers in catalog order, ignoring caps and history."""

    for candidate in candidates:
        if context.is_full:
            break
        if candidate.id in context.selected_ids:
            continue
        context.apply(candidate, "random")


def select_candidates(
    candidates: Sequence[Candidate],
    plan: Mapping[str, int],
    diversity: Mapping[str, float] | None = None,
    history_ids: Iterable[str] = (),
    *,
    shuffle: Shuffle = random_shuffle,
) -> SelectionContext:
    """Classify candidates and fill the slot plan, returning the final context."""

    pool_size = sum(plan.values())
    context = SelectionContext(
        pool_size=pool_size,
        caps=compute_caps(pool_size, diversity),
        history_ids=frozenset(history_ids),
    )
    if pool_size <= 0:
        return context

    new_view = sort_new(candidates)
    fill_slot(new_view, plan.get("new", 0), "new", context, eligibility=lambda c: c.is_new)
    fill_slot(sort_top_rated(candidates), plan.get("topRated", 0), "topRated", context)
    fill_slot(sort_old_but_gold(candidates), plan.get("oldButGold", 0), "oldButGold", context)
    fill_slot(shuffle(candidates), plan.get("random", 0), "random", context)

    if not context.is_full:
        top_up(context, candidates)
    return context
