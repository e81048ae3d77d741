"""Conversion of raw catalog records into selection candidates."""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Iterable

from ..models import Candidate, MediaRecord, MediaType
from ..utils import clamp, js_round, now_ms, parse_timestamp_ms, parse_year

NEW_WINDOW_MS = 1000 * 60 * 60 * 24 * 90
OLD_THRESHOLD_YEARS = 12
MAX_GENRES = 3


def record_year(record: MediaRecord) -> int | None:
    """Return the first plausible year found across the record's date fields."""

    for value in (record.year, record.originally_available_at):
        year = parse_year(value)
        if year is not None:
            return year
    return None


def record_rating(record: MediaRecord) -> float:
    for value in (record.rating, record.audience_rating):
        if value is None or isinstance(value, bool):
            continue
        try:
            number = float(value)
        except (TypeError, ValueError):
            continue
        if math.isfinite(number) and number > 0:
            return clamp(js_round(number * 10) / 10, 0.0, 10.0)
    return 0.0


def record_genres(record: MediaRecord) -> list[str]:
    genres: list[str] = []
    for entry in record.genres or []:
        if not entry:
            continue
        name = str(entry).strip()
        if name and name not in genres:
            genres.append(name)
    return genres[:MAX_GENRES]


def prepare_candidates(
    records: Iterable[MediaRecord], *, now: int | None = None
) -> list[Candidate]:
    """Return de-duplicated candidates; the first record per native id wins."""

    timestamp = now_ms() if now is None else now
    current_year = datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc).year
    seen: set[str] = set()
    prepared: list[Candidate] = []
    for record in records:
        candidate_id = record.native_id
        if not candidate_id or candidate_id in seen:
            continue
        seen.add(candidate_id)
        added_at = parse_timestamp_ms(record.added_at or record.created_at)
        year = record_year(record)
        prepared.append(
            Candidate(
                id=candidate_id,
                record=record,
                added_at=added_at,
                year=year,
                rating=record_rating(record),
                vote_count=0,
                genres=tuple(record_genres(record)),
                is_new=added_at > 0 and timestamp - added_at <= NEW_WINDOW_MS,
                is_old=year is not None and current_year - year >= OLD_THRESHOLD_YEARS,
            )
        )
    return prepared


_MEDIA_TYPE_ALIASES = {
    "movie": {"movie", "movies", "film"},
    "tv": {"tv", "show", "shows", "series"},
}


def matches_media_type(record: MediaRecord, media_type: MediaType) -> bool:
    """Return whether the catalog record belongs to the requested kind."""

    value = (record.media_type or "").strip().lower()
    return value in _MEDIA_TYPE_ALIASES.get(media_type, {media_type})
