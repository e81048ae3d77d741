from datetime import datetime, timezone

from app.utils import (
    absolute_artwork_url,
    dedupe_images,
    js_round,
    normalize_image_candidate,
    parse_guid,
    parse_timestamp_ms,
    parse_year,
)


def test_js_round_rounds_half_up():
    assert js_round(2.5) == 3
    assert js_round(0.5) == 1
    assert js_round(2.4) == 2
    assert js_round(0) == 0


def test_parse_year_accepts_numbers_and_date_strings():
    assert parse_year(1999) == 1999
    assert parse_year("2012-05-04") == 2012
    assert parse_year("Released in 1987") == 1987


def test_parse_year_rejects_out_of_range_values():
    assert parse_year(1700) is None
    assert parse_year(3000) is None
    assert parse_year("no year here") is None
    assert parse_year(None) is None
    assert parse_year(True) is None


def test_parse_timestamp_ms_handles_iso_and_naive_values():
    expected = int(datetime(2024, 1, 1, tzinfo=timezone.utc).timestamp() * 1000)
    assert parse_timestamp_ms("2024-01-01T00:00:00Z") == expected
    assert parse_timestamp_ms("2024-01-01T00:00:00") == expected
    assert parse_timestamp_ms(datetime(2024, 1, 1)) == expected
    assert parse_timestamp_ms("garbage") == 0
    assert parse_timestamp_ms(None) == 0


def test_normalize_image_candidate_rewrites_proxied_thumbnails():
    value = "http://tautulli.local/pms_image_proxy?img=/library/metadata/42/thumb/1700000000"
    assert (
        normalize_image_candidate(value)
        == "/api/thumbnails/tautulli/library/metadata/42/thumb/1700000000"
    )


def test_normalize_image_candidate_passthrough_and_rejections():
    assert normalize_image_candidate("https://img.example/a.jpg") == "https://img.example/a.jpg"
    assert normalize_image_candidate("data:image/png;base64,AAA") == "data:image/png;base64,AAA"
    assert normalize_image_candidate("//cdn.example/a.jpg") == "https://cdn.example/a.jpg"
    assert normalize_image_candidate("./movies/a.jpg") == "movies/a.jpg"
    assert normalize_image_candidate("../etc/passwd") is None
    assert normalize_image_candidate("movies/../../secret") is None
    assert normalize_image_candidate("   ") is None
    assert normalize_image_candidate(42) is None


def test_dedupe_images_preserves_order():
    values = ["b.jpg", None, "a.jpg", "./b.jpg", "", "a.jpg"]
    assert dedupe_images(values) == ["b.jpg", "a.jpg"]


def test_absolute_artwork_url_variants():
    base = "http://testserver/"
    assert (
        absolute_artwork_url("covers/Big Movie/poster.jpg", "movie", base)
        == "http://testserver/api/thumbnails/covers/Big%20Movie/poster.jpg"
    )
    assert (
        absolute_artwork_url("Show/fanart.jpg", "tv", base)
        == "http://testserver/api/thumbnails/series/Show/fanart.jpg"
    )
    assert (
        absolute_artwork_url("library/metadata/7/art/99", "movie", base)
        == "http://testserver/api/thumbnails/tautulli/library/metadata/7/art/99"
    )
    assert absolute_artwork_url("https://image.tmdb.org/x.jpg", "movie", base) == "https://image.tmdb.org/x.jpg"
    assert absolute_artwork_url("../secret.jpg", "movie", base) is None
    assert absolute_artwork_url(None, "movie", base) is None


def test_parse_guid_collects_external_ids():
    ids: dict[str, str] = {}
    parse_guid("com.plexapp.agents.imdb://tt0111161?lang=en", ids)
    parse_guid("tmdb://278", ids)
    assert ids == {"imdb": "tt0111161", "tmdb": "278"}

    ids = {}
    parse_guid("com.plexapp.agents.themoviedb://278?lang=en", ids)
    parse_guid("com.plexapp.agents.thetvdb://81189/1/1", ids)
    assert ids == {"tmdb": "278", "tvdb": "81189"}


def test_parse_guid_ignores_unknown_agents():
    ids: dict[str, str] = {}
    parse_guid("plex://movie/5d776825880197001ec967c4", ids)
    parse_guid("local://12", ids)
    assert ids == {}


def test_parse_guid_accepts_bare_imdb_ids():
    ids: dict[str, str] = {}
    parse_guid("tt1234567", ids)
    assert ids == {"imdb": "tt1234567"}
