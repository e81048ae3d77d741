"""Client for fetching hero artwork and details from The Movie Database (TMDB)."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from email.utils import parsedate_to_datetime
from typing import Any, Callable

import httpx

from ..config import Settings
from ..models import MediaType, RateLimitState
from ..utils import now_ms

logger = logging.getLogger(__name__)

IMAGE_BASE_URL = "https://image.tmdb.org/t/p"
MAX_RATE_LIMIT_STRIKES = 5
MAX_BACKDROPS = 6
CERTIFICATION_COUNTRIES = ("US", "GB", "DE")
EXTERNAL_SOURCES = {"imdb": "imdb_id", "tvdb": "tvdb_id"}


class TMDBRateLimitError(RuntimeError):
    """Raised while TMDB rate limiting is in effect."""

    def __init__(self, message: str, *, retry_after_ms: int, until: int):
        super().__init__(message)
        self.retry_after_ms = retry_after_ms
        self.until = until


@dataclass(slots=True)
class TMDBHeroDetails:
    """Subset of TMDB detail fields needed to render a hero entry."""

    id: int
    type: MediaType
    title: str = ""
    original_title: str = ""
    overview: str = ""
    tagline: str = ""
    release_date: str | None = None
    first_air_date: str | None = None
    runtime_minutes: int | None = None
    vote_average: float | None = None
    vote_count: int | None = None
    genres: list[str] = field(default_factory=list)
    certification: str | None = None
    backdrops: list[str] = field(default_factory=list)
    poster: str | None = None


def parse_retry_after(value: str | None, *, now: int) -> int:
    """Return the Retry-After header as milliseconds (seconds or HTTP date)."""

    if not value:
        return 0
    text = value.strip()
    if not text:
        return 0
    try:
        seconds = float(text)
    except ValueError:
        seconds = None
    if seconds is not None and math.isfinite(seconds):
        return max(0, round(seconds * 1000))
    try:
        moment = parsedate_to_datetime(text)
    except (TypeError, ValueError):
        return 0
    return max(0, int(moment.timestamp() * 1000) - now)


def minutes_from_duration(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number <= 0:
        return None
    if number > 1000:
        return max(1, round(number / 60))
    return round(number)


def build_image_url(path: Any, size: str) -> str | None:
    if not isinstance(path, str) or not path.strip():
        return None
    normalized = path if path.startswith("/") else f"/{path}"
    return f"{IMAGE_BASE_URL}/{size}{normalized}"


def _select_certification(payload: dict[str, Any], kind: MediaType, language: str) -> str | None:
    parts = language.split("-")
    preferred = [parts[1].upper()] if len(parts) > 1 and parts[1] else []
    preferred.extend(code for code in CERTIFICATION_COUNTRIES if code not in preferred)

    if kind == "movie":
        results = (payload.get("release_dates") or {}).get("results") or []
        for country in preferred:
            match = next(
                (entry for entry in results if isinstance(entry, dict) and entry.get("iso_3166_1") == country),
                None,
            )
            if not match or not isinstance(match.get("release_dates"), list):
                continue
            for release in match["release_dates"]:
                certification = release.get("certification") if isinstance(release, dict) else None
                if isinstance(certification, str) and certification.strip():
                    return certification.strip()
        return None

    results = (payload.get("content_ratings") or {}).get("results") or []
    for country in preferred:
        for entry in results:
            if not isinstance(entry, dict) or entry.get("iso_3166_1") != country:
                continue
            rating = entry.get("rating")
            if isinstance(rating, str) and rating.strip():
                return rating.strip()
    return None


def _collect_genres(payload: dict[str, Any]) -> list[str]:
    seen: set[str] = set()
    genres: list[str] = []
    for entry in payload.get("genres") or []:
        name = entry.get("name") if isinstance(entry, dict) else None
        if not isinstance(name, str) or not name.strip():
            continue
        name = name.strip()
        if name.casefold() in seen:
            continue
        seen.add(name.casefold())
        genres.append(name)
    return genres


def _collect_backdrops(payload: dict[str, Any]) -> list[str]:
    images = (payload.get("images") or {}).get("backdrops") or []
    ranked = sorted(
        (entry for entry in images if isinstance(entry, dict) and entry.get("file_path")),
        key=lambda entry: float(entry.get("vote_average") or 0),
        reverse=True,
    )
    urls: list[str] = []
    for entry in ranked:
        url = build_image_url(entry["file_path"], "original")
        if url:
            urls.append(url)
        if len(urls) >= MAX_BACKDROPS:
            break
    return urls


def _resolve_poster(payload: dict[str, Any]) -> str | None:
    poster_path = payload.get("poster_path")
    if isinstance(poster_path, str) and poster_path:
        return build_image_url(poster_path, "w780")
    for entry in (payload.get("images") or {}).get("posters") or []:
        if isinstance(entry, dict) and entry.get("file_path"):
            return build_image_url(entry["file_path"], "w780")
    return None


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def map_details(payload: Any, kind: MediaType, language: str) -> TMDBHeroDetails | None:
    """Translate a TMDB detail response into :class:`TMDBHeroDetails`."""

    if not isinstance(payload, dict):
        return None
    if kind == "tv":
        title_keys = ("name", "original_name")
        run_times = payload.get("episode_run_time")
        runtime = minutes_from_duration(run_times[0] if isinstance(run_times, list) and run_times else None)
    else:
        title_keys = ("title", "original_title")
        runtime = minutes_from_duration(payload.get("runtime"))
    titles = [_text(payload.get(key)) for key in title_keys]
    title = next((value for value in titles if value), "")
    vote_average = payload.get("vote_average")
    vote_count = payload.get("vote_count")
    try:
        identifier = int(payload.get("id") or 0)
    except (TypeError, ValueError):
        identifier = 0
    return TMDBHeroDetails(
        id=identifier,
        type=kind,
        title=title,
        original_title=titles[1] or title,
        overview=_text(payload.get("overview")),
        tagline=_text(payload.get("tagline")),
        release_date=payload.get("release_date") if kind == "movie" and isinstance(payload.get("release_date"), str) else None,
        first_air_date=payload.get("first_air_date") if kind == "tv" and isinstance(payload.get("first_air_date"), str) else None,
        runtime_minutes=runtime,
        vote_average=float(vote_average) if isinstance(vote_average, (int, float)) and not isinstance(vote_average, bool) else None,
        vote_count=int(vote_count) if isinstance(vote_count, (int, float)) and not isinstance(vote_count, bool) else None,
        genres=_collect_genres(payload),
        certification=_select_certification(payload, kind, language),
        backdrops=_collect_backdrops(payload),
        poster=_resolve_poster(payload),
    )


@dataclass(slots=True)
class _CacheEntry:
    expires_at: int
    details: TMDBHeroDetails


class TMDBClient:
    """Rate-limit aware TMDB client used for hero enrichment."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        *,
        clock: Callable[[], int] = now_ms,
    ):
        self._client = http_client
        self._token = (settings.tmdb_access_token or "").strip()
        self._enabled = bool(self._token)
        self._cache_ttl_ms = settings.tmdb_cache_ttl_seconds * 1000
        self._max_cache_entries = settings.tmdb_max_cache_entries
        self._cache: dict[str, _CacheEntry] = {}
        self._rate_limit = RateLimitState()
        self._clock = clock

    def is_enabled(self) -> bool:
        return self._enabled

    def get_rate_limit_state(self) -> RateLimitState:
        return self._rate_limit.model_copy()

    async def fetch_details(
        self, kind: MediaType, identifier: str | int, *, language: str | None = None
    ) -> TMDBHeroDetails | None:
        """Fetch details (with images and ratings) for a TMDB id."""

        if not self._enabled:
            return None
        media = "tv" if kind == "tv" else "movie"
        normalized_id = str(identifier or "").strip()
        if not normalized_id:
            return None
        lang = self._normalize_language(language)
        cache_key = f"{media}:{normalized_id}:{lang}"

        self._ensure_not_limited()
        now = self._clock()
        cached = self._cache.get(cache_key)
        if cached and cached.expires_at > now:
            return cached.details

        payload = await self._get(
            f"/{media}/{normalized_id}",
            {"append_to_response": "images,release_dates,content_ratings", "language": lang},
        )
        if payload is None:
            return None
        details = map_details(payload, media, lang)
        if details is None:
            return None
        if self._cache_ttl_ms > 0:
            self._cache[cache_key] = _CacheEntry(expires_at=now + self._cache_ttl_ms, details=details)
            self._prune_cache()
        return details

    async def fetch_details_by_external_id(
        self,
        kind: MediaType,
        external_id: str,
        *,
        source: str = "imdb",
        language: str | None = None,
    ) -> TMDBHeroDetails | None:
        """Resolve an IMDb/TVDB identifier via ``/find`` and fetch its details."""

        if not self._enabled:
            return None
        normalized = str(external_id or "").strip()
        external_source = EXTERNAL_SOURCES.get(source)
        if not normalized or external_source is None:
            return None
        lang = self._normalize_language(language)

        self._ensure_not_limited()
        payload = await self._get(
            f"/find/{normalized}",
            {"external_source": external_source, "language": lang},
        )
        if not isinstance(payload, dict):
            return None
        results = payload.get("tv_results" if kind == "tv" else "movie_results") or []
        resolved = next(
            (entry.get("id") for entry in results if isinstance(entry, dict) and entry.get("id") is not None),
            None,
        )
        if resolved is None:
            return None
        return await self.fetch_details(kind, resolved, language=lang)

    async def fetch_details_by_imdb(
        self, kind: MediaType, imdb_id: str, *, language: str | None = None
    ) -> TMDBHeroDetails | None:
        return await self.fetch_details_by_external_id(
            kind, imdb_id, source="imdb", language=language
        )

    async def _get(self, path: str, params: dict[str, Any]) -> Any:
        headers = {
            "Authorization": f"Bearer {self._token}",
            "Accept": "application/json;charset=utf-8",
        }
        try:
            response = await self._client.get(path, params=params, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("TMDB request %s failed: %s", path, exc)
            raise

        status = response.status_code
        if status in (401, 403):
            self._enabled = False
            logger.error("TMDB token rejected (%s); disabling enrichment", status)
            return None
        if status == 429:
            retry_after = parse_retry_after(
                response.headers.get("retry-after"), now=self._clock()
            )
            self._register_rate_limit(status, retry_after)
            raise TMDBRateLimitError(
                "TMDB rate limit exceeded",
                retry_after_ms=self._rate_limit.retry_after_ms,
                until=self._rate_limit.until,
            )
        if status == 404:
            return None
        if status >= 400:
            logger.warning("TMDB request %s failed: %s %s", path, status, response.text)
            response.raise_for_status()

        # Each successful response forgives one earlier strike.
        self._rate_limit = RateLimitState(strikes=max(0, self._rate_limit.strikes - 1))
        return response.json()

    def _ensure_not_limited(self) -> None:
        self._relax_rate_limit()
        state = self._rate_limit
        if state.active and state.until > self._clock():
            raise TMDBRateLimitError(
                "TMDB rate limit active",
                retry_after_ms=state.retry_after_ms,
                until=state.until,
            )

    def _register_rate_limit(self, status: int, retry_after_ms: int) -> None:
        delay = max(retry_after_ms, 1_000)
        strikes = min(MAX_RATE_LIMIT_STRIKES, max(1, self._rate_limit.strikes + 1))
        until = self._clock() + delay * strikes
        self._rate_limit = RateLimitState(
            active=True,
            until=until,
            retry_after_ms=delay * strikes,
            last_status=status,
            strikes=strikes,
        )
        logger.warning(
            "TMDB rate limit hit (strikes=%s, retry in %sms)", strikes, delay * strikes
        )

    def _relax_rate_limit(self) -> None:
        state = self._rate_limit
        if state.active and self._clock() >= state.until:
            self._rate_limit = RateLimitState(strikes=state.strikes)

    def _prune_cache(self) -> None:
        excess = len(self._cache) - self._max_cache_entries
        if excess <= 0:
            return
        oldest = sorted(self._cache.items(), key=lambda item: item[1].expires_at)[:excess]
        for key, _ in oldest:
            del self._cache[key]

    @staticmethod
    def _normalize_language(language: str | None) -> str:
        if not language or not language.strip():
            return "en-US"
        return language.strip()
