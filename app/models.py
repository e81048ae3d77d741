"""Domain records and pydantic models describing hero pool payloads."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

PoolKind = Literal["movies", "series"]
MediaType = Literal["movie", "tv"]
SlotName = Literal["new", "topRated", "oldButGold", "random"]

SLOT_KEYS: tuple[SlotName, ...] = ("new", "topRated", "oldButGold", "random")


def normalize_kind(kind: str | None) -> PoolKind:
    """Map loose kind names (``show``, ``tv``...) onto a pool kind."""

    if not kind:
        return "movies"
    lowered = kind.strip().lower()
    if lowered in {"series", "shows", "show", "tv"}:
        return "series"
    return "movies"


def media_type_for_kind(kind: PoolKind) -> MediaType:
    return "tv" if kind == "series" else "movie"


@dataclass(slots=True)
class MediaRecord:
    """One row of the locally mirrored media catalog."""

    id: int
    native_id: str
    title: str
    media_type: str | None = None
    year: int | None = None
    originally_available_at: str | None = None
    guid: str | None = None
    summary: str | None = None
    tagline: str | None = None
    duration: int | None = None
    content_rating: str | None = None
    rating: float | None = None
    audience_rating: float | None = None
    genres: list[str] = field(default_factory=list)
    poster: str | None = None
    backdrop: str | None = None
    added_at: str | None = None
    created_at: str | None = None


@dataclass(frozen=True, slots=True)
class Candidate:
    """Normalised, immutable view of a catalog record used during selection."""

    id: str
    record: MediaRecord
    added_at: int
    year: int | None
    rating: float
    vote_count: int
    genres: tuple[str, ...]
    is_new: bool
    is_old: bool


@dataclass(frozen=True, slots=True)
class SelectedCandidate:
    """A candidate tagged with the slot that picked it."""

    candidate: Candidate
    slot: SlotName


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class HistoryEntry(_CamelModel):
    """A previously featured identifier and the time it was selected (ms)."""

    id: str
    ts: int


class CallToAction(_CamelModel):
    id: str
    kind: Literal["movie", "show"]
    label: str
    target: str


class HeroPoolItem(_CamelModel):
    """Public, enriched representation of one selected candidate."""

    id: str
    pool_id: str
    slot: SlotName
    type: MediaType
    title: str = ""
    tagline: str = ""
    overview: str = ""
    year: int | None = None
    runtime: int | None = None
    rating: float | None = None
    vote_count: int | None = None
    genres: list[str] = Field(default_factory=list)
    certification: str | None = None
    backdrops: list[str] = Field(default_factory=list)
    poster: str | None = None
    cta: CallToAction
    ids: dict[str, str] = Field(default_factory=dict)
    source: Literal["tmdb", "local"] = "local"


class RateLimitState(_CamelModel):
    active: bool = False
    until: int = 0
    retry_after_ms: int = 0
    last_status: int | None = None
    strikes: int = 0


class TMDBMeta(_CamelModel):
    enabled: bool = False
    rate_limit: RateLimitState = Field(default_factory=RateLimitState)
    hit_limit: bool = False


class PoolMeta(_CamelModel):
    source: Literal["fresh", "cache", "grace"] = "fresh"
    plan: dict[str, int] = Field(default_factory=dict)
    total_candidates: int = 0
    selection_count: int = 0
    tmdb: TMDBMeta = Field(default_factory=TMDBMeta)
    cancelled: bool = False


class HeroPoolPayload(_CamelModel):
    """The persisted and served unit for one pool kind."""

    kind: PoolKind
    items: list[HeroPoolItem] = Field(default_factory=list)
    updated_at: int
    expires_at: int
    policy_hash: str
    slot_summary: dict[str, int] = Field(default_factory=dict)
    matches_policy: bool = True
    from_cache: bool = False
    meta: PoolMeta = Field(default_factory=PoolMeta)

    def to_response(self) -> dict[str, object]:
        """Return the camelCase JSON representation."""

        return self.model_dump(mode="json", by_alias=True)
