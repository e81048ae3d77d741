from __future__ import annotations

from datetime import datetime, timezone

from app.models import MediaRecord
from app.services.candidates import (
    matches_media_type,
    prepare_candidates,
    record_genres,
    record_rating,
    record_year,
)

NOW = int(datetime(2024, 6, 1, tzinfo=timezone.utc).timestamp() * 1000)
DAY_MS = 24 * 60 * 60 * 1000


def _iso(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat()


def _record(identifier: int, **overrides) -> MediaRecord:
    values = {
        "id": identifier,
        "native_id": str(identifier),
        "title": f"Title {identifier}",
        "media_type": "movie",
    }
    values.update(overrides)
    return MediaRecord(**values)


def test_record_year_falls_back_to_release_date():
    assert record_year(_record(1, year=1994)) == 1994
    assert record_year(_record(2, year=None, originally_available_at="2001-09-11")) == 2001
    assert record_year(_record(3, year=3000, originally_available_at=None)) is None


def test_record_rating_rounds_and_clamps():
    assert record_rating(_record(1, rating=7.26)) == 7.3
    assert record_rating(_record(2, rating=None, audience_rating=8.04)) == 8.0
    assert record_rating(_record(3, rating=0, audience_rating=6.5)) == 6.5
    assert record_rating(_record(4, rating=14.2)) == 10.0
    assert record_rating(_record(5)) == 0.0


def test_record_genres_deduplicates_case_sensitively_and_caps():
    record = _record(1, genres=["Drama", "Drama", "drama", "Crime", "Thriller"])
    assert record_genres(record) == ["Drama", "drama", "Crime"]


def test_prepare_candidates_first_record_wins_on_duplicate_ids():
    first = _record(1, native_id="abc", title="First")
    second = _record(2, native_id="abc", title="Second")

    candidates = prepare_candidates([first, second], now=NOW)

    assert [candidate.record.title for candidate in candidates] == ["First"]


def test_prepare_candidates_flags_new_and_old():
    recent = _record(1, added_at=_iso(NOW - 10 * DAY_MS), year=2023)
    stale = _record(2, added_at=_iso(NOW - 200 * DAY_MS), year=2012)
    borderline = _record(3, added_at=_iso(NOW - 90 * DAY_MS), year=2013)
    unknown = _record(4, added_at=None, year=None)

    by_id = {c.id: c for c in prepare_candidates([recent, stale, borderline, unknown], now=NOW)}

    assert by_id["1"].is_new is True
    assert by_id["1"].is_old is False
    assert by_id["2"].is_new is False
    assert by_id["2"].is_old is True
    assert by_id["3"].is_new is True
    assert by_id["3"].is_old is False
    assert by_id["4"].is_new is False
    assert by_id["4"].is_old is False
    assert by_id["4"].added_at == 0


def test_prepare_candidates_uses_created_at_when_added_at_missing():
    record = _record(1, added_at=None, created_at=_iso(NOW - DAY_MS))

    (candidate,) = prepare_candidates([record], now=NOW)

    assert candidate.added_at == NOW - DAY_MS
    assert candidate.is_new is True


def test_matches_media_type_aliases():
    assert matches_media_type(_record(1, media_type="movie"), "movie")
    assert matches_media_type(_record(2, media_type="Show"), "tv")
    assert matches_media_type(_record(3, media_type="series"), "tv")
    assert not matches_media_type(_record(4, media_type="movie"), "tv")
    assert not matches_media_type(_record(5, media_type=None), "movie")
