from app.models import (
    CallToAction,
    HeroPoolItem,
    HeroPoolPayload,
    PoolMeta,
    media_type_for_kind,
    normalize_kind,
)


def _item() -> HeroPoolItem:
    return HeroPoolItem(
        id="101",
        pool_id="101",
        slot="topRated",
        type="movie",
        title="Heat",
        vote_count=1200,
        backdrops=["https://image.tmdb.org/t/p/original/a.jpg"],
        cta=CallToAction(id="101", kind="movie", label="View movie details", target="#/movie/101"),
        ids={"catalog": "101", "tmdb": "949"},
        source="tmdb",
    )


def test_normalize_kind_aliases():
    assert normalize_kind("series") == "series"
    assert normalize_kind("Shows") == "series"
    assert normalize_kind("tv") == "series"
    assert normalize_kind("movie") == "movies"
    assert normalize_kind("anything-else") == "movies"
    assert normalize_kind(None) == "movies"
    assert media_type_for_kind("series") == "tv"
    assert media_type_for_kind("movies") == "movie"


def test_payload_response_uses_camel_case_keys():
    payload = HeroPoolPayload(
        kind="movies",
        items=[_item()],
        updated_at=1,
        expires_at=2,
        policy_hash="abc",
        slot_summary={"new": 0, "topRated": 1, "oldButGold": 0, "random": 0},
        meta=PoolMeta(plan={"new": 0, "topRated": 1, "oldButGold": 0, "random": 0}),
    )

    body = payload.to_response()

    assert body["fromCache"] is False
    assert body["policyHash"] == "abc"
    assert body["slotSummary"]["topRated"] == 1
    assert body["meta"]["totalCandidates"] == 0
    assert body["meta"]["tmdb"]["rateLimit"]["retryAfterMs"] == 0
    item = body["items"][0]
    assert item["poolId"] == "101"
    assert item["voteCount"] == 1200
    assert item["cta"]["target"] == "#/movie/101"


def test_payload_validates_from_stored_response():
    original = HeroPoolPayload(
        kind="series",
        items=[],
        updated_at=10,
        expires_at=20,
        policy_hash="hash",
    )

    restored = HeroPoolPayload.model_validate(original.to_response())

    assert restored == original
