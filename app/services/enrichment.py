"""Enrichment of selected candidates with external metadata."""

from __future__ import annotations

import asyncio
import logging
import math
import uuid
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Mapping, Protocol, Sequence, TypeVar

import httpx

from ..models import (
    CallToAction,
    HeroPoolItem,
    MediaRecord,
    MediaType,
    RateLimitState,
    SelectedCandidate,
)
from ..utils import dedupe_images, parse_guid, parse_year
from .candidates import record_genres, record_year
from .tmdb import TMDBHeroDetails, TMDBRateLimitError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_FALLBACK_LANGUAGE = "en-US"
CATALOG_ID_KEY = "catalog"


class MetadataProvider(Protocol):
    """Interface of the external metadata source used for enrichment."""

    def is_enabled(self) -> bool: ...

    def get_rate_limit_state(self) -> RateLimitState: ...

    async def fetch_details(
        self, kind: MediaType, identifier: str | int, *, language: str | None = None
    ) -> TMDBHeroDetails | None: ...

    async def fetch_details_by_external_id(
        self,
        kind: MediaType,
        external_id: str,
        *,
        source: str = "imdb",
        language: str | None = None,
    ) -> TMDBHeroDetails | None: ...


class EnrichmentCancelled(Exception):
    """Raised internally when the caller's cancellation event fires."""


@dataclass(slots=True)
class EnrichmentResult:
    items: list[HeroPoolItem]
    rate_limit_hit: bool = False
    cancelled: bool = False


def merge_details(
    primary: TMDBHeroDetails | None, fallback: TMDBHeroDetails | None
) -> TMDBHeroDetails | None:
    """Combine two language fetches; text fields come from ``primary``."""

    if primary is None or fallback is None:
        return primary or fallback
    backdrops = dedupe_images([*primary.backdrops, *fallback.backdrops])
    return replace(
        primary,
        backdrops=backdrops,
        poster=primary.poster or fallback.poster,
    )


def merge_genres(primary: Sequence[str], secondary: Sequence[str]) -> list[str]:
    seen: set[str] = set()
    merged: list[str] = []
    for value in [*primary, *secondary]:
        name = str(value or "").strip()
        if not name or name.casefold() in seen:
            continue
        seen.add(name.casefold())
        merged.append(name)
    return merged[:3]


def extract_ids(record: MediaRecord) -> dict[str, str]:
    ids: dict[str, str] = {}
    if record.native_id:
        ids[CATALOG_ID_KEY] = record.native_id
    parse_guid(record.guid, ids)
    return ids


def ensure_cta_id(ids: Mapping[str, str]) -> str:
    """Pick a clickable identifier, generating one if nothing is known."""

    for key in (CATALOG_ID_KEY, "imdb", "tmdb", "tvdb"):
        if ids.get(key):
            return ids[key]
    return str(uuid.uuid4())


def minutes_from_record_duration(value: Any) -> int | None:
    """Catalog durations are milliseconds; small values are already minutes."""

    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number <= 0:
        return None
    if number > 1000:
        return max(1, round(number / 60_000))
    return round(number)


def resolve_backdrops(
    details: TMDBHeroDetails | None,
    record: MediaRecord,
    thumbnails: Sequence[str],
) -> list[str]:
    """Return the first non-empty artwork list along the fallback chain."""

    chain: list[tuple[str, Sequence[Any]]] = [
        ("tmdb", details.backdrops if details else []),
        ("thumbnails", thumbnails),
        ("backdrop", [record.backdrop]),
        ("poster", [record.poster, details.poster if details else None]),
    ]
    for source, values in chain:
        resolved = dedupe_images(values)
        if resolved:
            logger.debug(
                "Using %s artwork for hero entry %s (%d images)",
                source,
                record.native_id,
                len(resolved),
            )
            return resolved
    logger.warning("No backdrops resolved for hero entry %s (%s)", record.native_id, record.title)
    return []


def resolve_poster(
    details: TMDBHeroDetails | None,
    record: MediaRecord,
    thumbnails: Sequence[str],
) -> str | None:
    candidates = [
        details.poster if details else None,
        record.poster,
        thumbnails[0] if thumbnails else None,
        record.backdrop,
    ]
    resolved = dedupe_images(candidates)
    return resolved[0] if resolved else None


def _details_year(details: TMDBHeroDetails | None, record: MediaRecord) -> int | None:
    if details is not None:
        source = details.first_air_date if details.type == "tv" else details.release_date
        year = parse_year(source)
        if year is not None:
            return year
    return record_year(record)


def build_item(
    selected: SelectedCandidate,
    media_type: MediaType,
    ids: dict[str, str],
    details: TMDBHeroDetails | None,
    thumbnails: Sequence[str],
) -> HeroPoolItem:
    """Assemble the public hero entry from local data plus optional details."""

    candidate = selected.candidate
    record = candidate.record
    cta_id = ensure_cta_id(ids)
    cta_kind = "show" if media_type == "tv" else "movie"
    runtime = details.runtime_minutes if details and details.runtime_minutes else None
    rating = details.vote_average if details and details.vote_average is not None else None
    return HeroPoolItem(
        id=record.native_id or f"{cta_kind}-{cta_id}",
        pool_id=candidate.id,
        slot=selected.slot,
        type=media_type,
        title=((details.title if details else "") or record.title or "").strip(),
        tagline=((details.tagline if details else "") or record.tagline or "").strip(),
        overview=((details.overview if details else "") or record.summary or "").strip(),
        year=_details_year(details, record),
        runtime=runtime or minutes_from_record_duration(record.duration),
        rating=rating if rating is not None else (candidate.rating or None),
        vote_count=details.vote_count if details else None,
        genres=merge_genres(details.genres if details else [], record_genres(record)),
        certification=(details.certification if details else None) or record.content_rating or None,
        backdrops=resolve_backdrops(details, record, thumbnails),
        poster=resolve_poster(details, record, thumbnails),
        cta=CallToAction(
            id=cta_id,
            kind=cta_kind,
            label="View show details" if cta_kind == "show" else "View movie details",
            target=f"#/{cta_kind}/{cta_id}",
        ),
        ids=ids,
        source="tmdb" if details else "local",
    )


async def _await_unless_cancelled(
    awaitable: Awaitable[T], cancel_event: asyncio.Event | None
) -> T:
    if cancel_event is None:
        return await awaitable
    if cancel_event.is_set():
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise EnrichmentCancelled()
    fetch = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(cancel_event.wait())
    try:
        await asyncio.wait({fetch, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        abandoned = not fetch.done()
        if abandoned:
            fetch.cancel()
    if abandoned:
        await asyncio.wait({fetch})
        raise EnrichmentCancelled()
    return fetch.result()


class EnrichmentAdapter:
    """Fetches provider details per candidate with a language fallback."""

    def __init__(
        self,
        provider: MetadataProvider | None,
        *,
        fallback_language: str = DEFAULT_FALLBACK_LANGUAGE,
    ):
        self._provider = provider
        self._fallback_language = fallback_language

    @property
    def provider(self) -> MetadataProvider | None:
        return self._provider

    def languages(self, preferred: str | None) -> list[str]:
        ordered: list[str] = []
        for value in (preferred, self._fallback_language):
            if isinstance(value, str) and value.strip() and value.strip() not in ordered:
                ordered.append(value.strip())
        return ordered

    async def fetch_details(
        self,
        candidate_id: str,
        media_type: MediaType,
        ids: Mapping[str, str],
        language: str | None,
        cancel_event: asyncio.Event | None = None,
    ) -> tuple[TMDBHeroDetails | None, bool]:
        """Return merged details and whether a rate limit was encountered."""

        provider = self._provider
        if provider is None or not provider.is_enabled():
            return None, False
        if not (ids.get("tmdb") or ids.get("imdb") or ids.get("tvdb")):
            return None, False

        languages = self.languages(language)
        primary: TMDBHeroDetails | None = None
        fallback: TMDBHeroDetails | None = None
        hit_limit = False

        for index, lang in enumerate(languages):
            try:
                if ids.get("tmdb"):
                    request = provider.fetch_details(media_type, ids["tmdb"], language=lang)
                elif ids.get("imdb"):
                    request = provider.fetch_details_by_external_id(
                        media_type, ids["imdb"], source="imdb", language=lang
                    )
                else:
                    request = provider.fetch_details_by_external_id(
                        media_type, ids["tvdb"], source="tvdb", language=lang
                    )
                fetched = await _await_unless_cancelled(request, cancel_event)
            except TMDBRateLimitError:
                hit_limit = True
                logger.warning(
                    "TMDB rate limit hit while enriching %s (%s)", candidate_id, lang
                )
                break
            except (httpx.HTTPError, ValueError) as exc:
                logger.warning(
                    "Failed to enrich hero entry %s via TMDB (%s): %s",
                    candidate_id,
                    lang,
                    exc,
                )
                continue

            if fetched is None:
                continue
            if index == 0:
                primary = fetched
                if primary.backdrops or len(languages) == 1:
                    break
                logger.debug(
                    "TMDB details for %s lack backdrops in %s, trying %s",
                    candidate_id,
                    lang,
                    languages[1],
                )
                continue
            fallback = fetched
            break

        return merge_details(primary, fallback), hit_limit

    async def enrich(
        self,
        selection: Sequence[SelectedCandidate],
        media_type: MediaType,
        language: str | None,
        thumbnails: Mapping[int, Sequence[str]],
        cancel_event: asyncio.Event | None = None,
    ) -> EnrichmentResult:
        """Build hero items for the selection, enriching sequentially."""

        result = EnrichmentResult(items=[])
        for selected in selection:
            record = selected.candidate.record
            ids = extract_ids(record)
            details: TMDBHeroDetails | None = None
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
            if not result.cancelled:
                try:
                    details, hit_limit = await self.fetch_details(
                        selected.candidate.id, media_type, ids, language, cancel_event
                    )
                except EnrichmentCancelled:
                    logger.info("Hero enrichment cancelled; using local data for the rest")
                    result.cancelled = True
                else:
                    result.rate_limit_hit = result.rate_limit_hit or hit_limit
            if details is not None and details.id and not ids.get("tmdb"):
                ids["tmdb"] = str(details.id)
            result.items.append(
                build_item(selected, media_type, ids, details, thumbnails.get(record.id, []))
            )
        return result
