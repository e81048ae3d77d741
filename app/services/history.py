"""Time-windowed anti-repeat history of featured identifiers."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Iterable

from ..models import HeroPoolItem, HistoryEntry

HISTORY_LIMIT = 60
HISTORY_WINDOW_MS = 1000 * 60 * 60 * 24 * 7


@dataclass(frozen=True, slots=True)
class HistorySnapshot:
    entries: tuple[HistoryEntry, ...]
    ids: frozenset[str]


def build_snapshot(
    entries: Iterable[HistoryEntry],
    now: int,
    window_ms: int = HISTORY_WINDOW_MS,
    limit: int = HISTORY_LIMIT,
) -> HistorySnapshot:
    """Drop stale entries, de-duplicate by id (first wins) and truncate."""

    seen: set[str] = set()
    kept: list[HistoryEntry] = []
    for entry in entries:
        if len(kept) >= limit:
            break
        if not entry.id or entry.ts < now - window_ms or entry.id in seen:
            continue
        seen.add(entry.id)
        kept.append(entry)
    return HistorySnapshot(entries=tuple(kept), ids=frozenset(seen))


def update_history(
    entries: Iterable[HistoryEntry],
    selected: Iterable[HeroPoolItem],
    now: int,
    window_ms: int = HISTORY_WINDOW_MS,
    limit: int = HISTORY_LIMIT,
) -> list[HistoryEntry]:
    """Merge freshly featured items into the history, most recent first."""

    merged: dict[str, HistoryEntry] = {}
    for entry in entries:
        if entry.id:
            merged[entry.id] = entry
    for item in selected:
        identifier = item.pool_id or item.id
        if identifier:
            merged[identifier] = HistoryEntry(id=identifier, ts=now)
    fresh = [entry for entry in merged.values() if entry.ts >= now - window_ms]
    fresh.sort(key=lambda entry: entry.ts, reverse=True)
    return fresh[:limit]


def parse_history(raw: Any) -> list[HistoryEntry]:
    """Read persisted history, tolerating legacy ``timestamp`` keys and junk."""

    if not isinstance(raw, list):
        return []
    entries: list[HistoryEntry] = []
    for value in raw:
        if not isinstance(value, dict):
            continue
        identifier = value.get("id")
        if not isinstance(identifier, str) or not identifier:
            continue
        stamp = value.get("ts", value.get("timestamp", 0))
        try:
            ts = float(stamp)
        except (TypeError, ValueError):
            continue
        if not math.isfinite(ts):
            continue
        entries.append(HistoryEntry(id=identifier, ts=int(ts)))
    return entries


def serialize_history(entries: Iterable[HistoryEntry]) -> list[dict[str, Any]]:
    return [entry.model_dump(mode="json") for entry in entries]
