"""Selection policy loading, sanitising and fingerprinting."""

from __future__ import annotations

import hashlib
import json
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from .models import SLOT_KEYS, PoolKind

logger = logging.getLogger(__name__)

POLICY_FILENAME = "hero.policy.json"


class _PolicyModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )


class SlotQuota(_PolicyModel):
    quota: float = Field(default=0.0, ge=0.0, le=1.0)


class DiversityWeights(_PolicyModel):
    genre: float = Field(default=0.45, ge=0.0, le=1.0)
    year: float = Field(default=0.35, ge=0.0, le=1.0)
    anti_repeat: float = Field(default=0.2, ge=0.0, le=1.0)


class CachePolicy(_PolicyModel):
    ttl_hours: int = Field(default=24, gt=0)
    grace_minutes: int = Field(default=30, ge=0)


def _default_slots() -> dict[str, SlotQuota]:
    return {
        "new": SlotQuota(quota=0.3),
        "topRated": SlotQuota(quota=0.3),
        "oldButGold": SlotQuota(quota=0.2),
        "random": SlotQuota(quota=0.2),
    }


class HeroPolicy(_PolicyModel):
    """Versioned configuration driving hero pool selection."""

    pool_size_movies: int = Field(default=10, ge=0)
    pool_size_series: int = Field(default=10, ge=0)
    slots: dict[str, SlotQuota] = Field(default_factory=_default_slots)
    diversity: DiversityWeights = Field(default_factory=DiversityWeights)
    cache: CachePolicy = Field(default_factory=CachePolicy)
    language: str = "en-US"

    def pool_size(self, kind: PoolKind) -> int:
        return self.pool_size_series if kind == "series" else self.pool_size_movies

    def quotas(self) -> dict[str, float]:
        return {key: self.slots[key].quota if key in self.slots else 0.0 for key in SLOT_KEYS}

    def fingerprint(self) -> str:
        """Return a stable SHA-1 of the canonical JSON form of the policy."""

        canonical = json.dumps(
            self.model_dump(mode="json", by_alias=True),
            sort_keys=True,
            separators=(",", ":"),
        )
        return hashlib.sha1(canonical.encode("utf-8")).hexdigest()


DEFAULT_POLICY = HeroPolicy()


def _positive_int(
    value: Any, fallback: int, name: str, issues: list[str], *, allow_zero: bool = False
) -> int:
    if value is None:
        return fallback
    if not isinstance(value, bool):
        try:
            number = float(value)
        except (TypeError, ValueError):
            number = math.nan
        if math.isfinite(number) and (number >= 0 if allow_zero else number > 0):
            return int(math.floor(number))
    issues.append(f"{name} invalid ({value!r}), using default ({fallback}).")
    return fallback


def _fraction(value: Any, fallback: float, name: str, issues: list[str]) -> float:
    if value is None:
        return fallback
    if not isinstance(value, bool):
        try:
            number = float(value)
        except (TypeError, ValueError):
            number = math.nan
        if math.isfinite(number) and 0.0 <= number <= 1.0:
            return number
    issues.append(f"{name} invalid ({value!r}), using default ({fallback}).")
    return fallback


def _section(raw: Mapping[str, Any], *names: str) -> Mapping[str, Any]:
    for name in names:
        value = raw.get(name)
        if isinstance(value, Mapping):
            return value
    return {}


def sanitize_policy(raw: object) -> tuple[HeroPolicy, list[str]]:
    """Build a policy from untrusted input, defaulting each invalid field."""

    issues: list[str] = []
    default = DEFAULT_POLICY
    if not isinstance(raw, Mapping):
        issues.append("Policy payload missing or invalid, using defaults.")
        return default, issues

    slots_raw = _section(raw, "slots")
    slots: dict[str, SlotQuota] = {}
    for key in SLOT_KEYS:
        entry = slots_raw.get(key)
        quota = entry.get("quota") if isinstance(entry, Mapping) else None
        slots[key] = SlotQuota(
            quota=_fraction(quota, default.slots[key].quota, f"slots.{key}.quota", issues)
        )

    diversity_raw = _section(raw, "diversity")
    diversity = DiversityWeights(
        genre=_fraction(diversity_raw.get("genre"), default.diversity.genre, "diversity.genre", issues),
        year=_fraction(diversity_raw.get("year"), default.diversity.year, "diversity.year", issues),
        anti_repeat=_fraction(
            diversity_raw.get("antiRepeat", diversity_raw.get("anti_repeat")),
            default.diversity.anti_repeat,
            "diversity.antiRepeat",
            issues,
        ),
    )

    cache_raw = _section(raw, "cache")
    cache = CachePolicy(
        ttl_hours=_positive_int(
            cache_raw.get("ttlHours", cache_raw.get("ttl_hours")),
            default.cache.ttl_hours,
            "cache.ttlHours",
            issues,
        ),
        grace_minutes=_positive_int(
            cache_raw.get("graceMinutes", cache_raw.get("grace_minutes")),
            default.cache.grace_minutes,
            "cache.graceMinutes",
            issues,
            allow_zero=True,
        ),
    )

    language = raw.get("language")
    if isinstance(language, str) and language.strip():
        language = language.strip()
    else:
        if language is not None:
            issues.append(f"language invalid ({language!r}), using default ({default.language}).")
        language = default.language

    policy = HeroPolicy(
        pool_size_movies=_positive_int(
            raw.get("poolSizeMovies", raw.get("pool_size_movies")),
            default.pool_size_movies,
            "poolSizeMovies",
            issues,
            allow_zero=True,
        ),
        pool_size_series=_positive_int(
            raw.get("poolSizeSeries", raw.get("pool_size_series")),
            default.pool_size_series,
            "poolSizeSeries",
            issues,
            allow_zero=True,
        ),
        slots=slots,
        diversity=diversity,
        cache=cache,
        language=language,
    )
    return policy, issues


@dataclass(slots=True)
class PolicySnapshot:
    """The effective policy, its fingerprint and where it came from."""

    policy: HeroPolicy
    fingerprint: str
    path: Path | None = None
    issues: list[str] = field(default_factory=list)


def _default_snapshot(issues: list[str] | None = None) -> PolicySnapshot:
    return PolicySnapshot(
        policy=DEFAULT_POLICY,
        fingerprint=DEFAULT_POLICY.fingerprint(),
        issues=list(issues or []),
    )


class PolicyStore:
    """Read-through cache over the policy file keyed by path and mtime."""

    def __init__(
        self,
        policy_path: Path | str | None = None,
        *,
        search_paths: tuple[Path, ...] | None = None,
    ) -> None:
        self._explicit_path = Path(policy_path) if policy_path else None
        if search_paths is None:
            cwd = Path.cwd()
            search_paths = (cwd / POLICY_FILENAME, cwd / "config" / POLICY_FILENAME)
        self._search_paths = search_paths
        self._cached: PolicySnapshot | None = None
        self._cache_key: tuple[Path | None, float | None] | None = None

    def resolve_path(self) -> Path | None:
        candidates = [self._explicit_path] if self._explicit_path else []
        candidates.extend(self._search_paths)
        for candidate in candidates:
            if candidate.is_file():
                return candidate
        return None

    def load(self, *, force: bool = False) -> PolicySnapshot:
        """Return the effective policy, re-reading the file when it changed."""

        path = self.resolve_path()
        mtime: float | None = None
        if path is not None:
            try:
                mtime = path.stat().st_mtime
            except OSError as exc:
                logger.warning("Failed to read hero policy metadata at %s: %s", path, exc)
                path = None

        cache_key = (path, mtime)
        if not force and self._cached is not None and self._cache_key == cache_key:
            return self._cached

        snapshot = self._read(path)
        self._cached = snapshot
        self._cache_key = cache_key
        return snapshot

    def _read(self, path: Path | None) -> PolicySnapshot:
        if path is None:
            return _default_snapshot()
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            policy, issues = sanitize_policy(raw)
        except (OSError, json.JSONDecodeError, ValidationError) as exc:
            logger.warning("Falling back to default hero policy: %s", exc)
            return _default_snapshot([str(exc)])
        for issue in issues:
            logger.warning("Hero policy %s: %s", path, issue)
        return PolicySnapshot(
            policy=policy,
            fingerprint=policy.fingerprint(),
            path=path,
            issues=issues,
        )
