"""Tests for hero policy loading and fingerprinting."""

from __future__ import annotations

import json
import os
from pathlib import Path

from app.policy import DEFAULT_POLICY, HeroPolicy, PolicyStore, sanitize_policy


def _write_policy(path: Path, payload: object) -> None:
    path.write_text(json.dumps(payload), encoding="utf-8")


def test_sanitize_policy_keeps_valid_fields_and_defaults_invalid_ones() -> None:
    policy, issues = sanitize_policy(
        {
            "poolSizeMovies": 12,
            "poolSizeSeries": -3,
            "slots": {"new": {"quota": 0.5}, "topRated": {"quota": 4}},
            "diversity": {"genre": 0.6},
            "cache": {"ttlHours": 6, "graceMinutes": 0},
            "language": " de-DE ",
        }
    )

    assert policy.pool_size_movies == 12
    assert policy.pool_size_series == DEFAULT_POLICY.pool_size_series
    assert policy.slots["new"].quota == 0.5
    assert policy.slots["topRated"].quota == DEFAULT_POLICY.slots["topRated"].quota
    assert policy.diversity.genre == 0.6
    assert policy.diversity.year == DEFAULT_POLICY.diversity.year
    assert policy.cache.ttl_hours == 6
    assert policy.cache.grace_minutes == 0
    assert policy.language == "de-DE"
    assert any(issue.startswith("poolSizeSeries") for issue in issues)
    assert any(issue.startswith("slots.topRated.quota") for issue in issues)


def test_sanitize_policy_accepts_zero_pool_sizes() -> None:
    policy, issues = sanitize_policy({"poolSizeMovies": 0, "poolSizeSeries": "0"})

    assert policy.pool_size_movies == 0
    assert policy.pool_size_series == 0
    assert issues == []


def test_sanitize_policy_rejects_non_mapping_payload() -> None:
    policy, issues = sanitize_policy(["not", "a", "policy"])

    assert policy == DEFAULT_POLICY
    assert issues


def test_fingerprint_is_stable_and_sensitive_to_changes() -> None:
    first = HeroPolicy()
    second = HeroPolicy()
    changed = HeroPolicy(pool_size_movies=11)

    assert first.fingerprint() == second.fingerprint()
    assert len(first.fingerprint()) == 40
    assert first.fingerprint() != changed.fingerprint()


def test_quotas_cover_every_slot() -> None:
    assert DEFAULT_POLICY.quotas() == {
        "new": 0.3,
        "topRated": 0.3,
        "oldButGold": 0.2,
        "random": 0.2,
    }
    assert DEFAULT_POLICY.pool_size("series") == 10


def test_store_without_file_uses_default(tmp_path: Path) -> None:
    store = PolicyStore(search_paths=(tmp_path / "hero.policy.json",))

    snapshot = store.load()

    assert snapshot.policy == DEFAULT_POLICY
    assert snapshot.path is None
    assert snapshot.fingerprint == DEFAULT_POLICY.fingerprint()


def test_store_falls_back_on_invalid_json(tmp_path: Path) -> None:
    path = tmp_path / "hero.policy.json"
    path.write_text("{not json", encoding="utf-8")

    snapshot = PolicyStore(path, search_paths=()).load()

    assert snapshot.policy == DEFAULT_POLICY
    assert snapshot.issues


def test_store_reloads_when_mtime_changes(tmp_path: Path) -> None:
    path = tmp_path / "hero.policy.json"
    _write_policy(path, {"poolSizeMovies": 5})
    store = PolicyStore(path, search_paths=())

    first = store.load()
    assert first.policy.pool_size_movies == 5
    assert store.load() is first

    _write_policy(path, {"poolSizeMovies": 7})
    stat = path.stat()
    os.utime(path, (stat.st_atime, stat.st_mtime + 10))

    second = store.load()
    assert second.policy.pool_size_movies == 7
    assert second.fingerprint != first.fingerprint


def test_store_searches_config_directory(tmp_path: Path) -> None:
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    _write_policy(config_dir / "hero.policy.json", {"language": "fr-FR"})

    store = PolicyStore(
        search_paths=(tmp_path / "hero.policy.json", config_dir / "hero.policy.json")
    )

    snapshot = store.load()
    assert snapshot.policy.language == "fr-FR"
    assert snapshot.path == config_dir / "hero.policy.json"
