"""Utility helpers for the hero pool service."""

from __future__ import annotations

import re
import time
from datetime import datetime, timezone
from typing import Any, Iterable
from urllib.parse import quote, urlsplit


YEAR_RE = re.compile(r"(19|20|21)\d{2}")
PROXIED_THUMB_RE = re.compile(r"/library/metadata/(\d+)/(thumb|art)/(\d+)")
PROXIED_THUMB_RELATIVE_RE = re.compile(r"^library/metadata/(\d+)/(thumb|art)/(\d+)")
TRAVERSAL_RE = re.compile(r"(^|/)\.\.(/|$)")
THUMBNAIL_PREFIX = "/api/thumbnails"


def now_ms() -> int:
    """Return the current wall clock time in milliseconds since the epoch."""

    return int(time.time() * 1000)


def clamp(value: float, lower: float, upper: float) -> float:
    return min(upper, max(lower, value))


def js_round(value: float) -> int:
    """Round half away from zero for positive values (``Math.round`` semantics)."""

    return int(value + 0.5) if value >= 0 else -int(-value + 0.5)


def parse_year(value: Any) -> int | None:
    """Extract a plausible release year from an int or a date-like string."""

    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if 1800 < value < 2100:
            return int(value)
        return None
    if isinstance(value, str):
        match = YEAR_RE.search(value)
        if match:
            return int(match.group(0))
    return None


def parse_timestamp_ms(value: Any) -> int:
    """Return milliseconds since the epoch for ISO strings or datetimes, else 0."""

    if value is None:
        return 0
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return 0
        if text.endswith("Z"):
            text = f"{text[:-1]}+00:00"
        try:
            moment = datetime.fromisoformat(text)
        except ValueError:
            return 0
    else:
        return 0
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp() * 1000)


def normalize_image_candidate(value: Any) -> str | None:
    """Normalise a stored artwork reference, rejecting directory traversal."""

    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    if not trimmed:
        return None

    candidate = trimmed.replace("\\", "/")

    probe = candidate
    if re.match(r"^https?://", candidate, re.IGNORECASE):
        parts = urlsplit(candidate)
        probe = parts.path + (f"?{parts.query}" if parts.query else "")
    elif candidate.startswith("//"):
        slash_index = candidate.find("/", 2)
        probe = candidate[slash_index:] if slash_index >= 0 else ""

    match = PROXIED_THUMB_RE.search(probe) or PROXIED_THUMB_RELATIVE_RE.match(probe)
    if match:
        media_id, art_type, stamp = match.groups()
        return f"{THUMBNAIL_PREFIX}/tautulli/library/metadata/{media_id}/{art_type}/{stamp}"

    if re.match(r"^https?://", trimmed, re.IGNORECASE) or trimmed.startswith("data:"):
        return trimmed
    if trimmed.startswith("//"):
        return f"https:{trimmed}"

    if candidate.startswith(f"{THUMBNAIL_PREFIX}/"):
        return candidate
    if candidate.startswith("api/thumbnails/"):
        return f"/{candidate}"

    if TRAVERSAL_RE.search(candidate):
        return None

    return re.sub(r"^\./+", "", candidate)


def dedupe_images(values: Iterable[Any]) -> list[str]:
    """Normalise and de-duplicate artwork references preserving order."""

    seen: set[str] = set()
    result: list[str] = []
    for value in values:
        candidate = normalize_image_candidate(value)
        if not candidate or candidate in seen:
            continue
        seen.add(candidate)
        result.append(candidate)
    return result


def _encode_path(raw_path: str) -> str:
    segments = [
        segment
        for segment in raw_path.replace("\\", "/").split("/")
        if segment and segment != "."
    ]
    return "/".join(quote(segment, safe="") for segment in segments)


def absolute_artwork_url(path: str | None, media_type: str, base_url: str) -> str | None:
    """Convert a stored artwork reference into an absolute URL served by the API."""

    if not path:
        return None
    trimmed = path.strip()
    if not trimmed:
        return None

    base = base_url.rstrip("/")
    scheme = urlsplit(base).scheme or "http"

    def build(value: str) -> str:
        return f"{base}{value if value.startswith('/') else f'/{value}'}"

    normalized = trimmed.replace("\\", "/")
    probe = normalized
    if re.match(r"^https?://", normalized, re.IGNORECASE):
        parts = urlsplit(normalized)
        probe = parts.path + (f"?{parts.query}" if parts.query else "")
    elif normalized.startswith("//"):
        slash_index = normalized.find("/", 2)
        probe = normalized[slash_index:] if slash_index >= 0 else ""

    match = PROXIED_THUMB_RE.search(probe) or PROXIED_THUMB_RELATIVE_RE.match(probe)
    if match:
        media_id, art_type, stamp = match.groups()
        return build(
            f"{THUMBNAIL_PREFIX}/tautulli/library/metadata/{media_id}/{art_type}/{stamp}"
        )

    if re.match(r"^https?://", trimmed, re.IGNORECASE) or trimmed.startswith("data:"):
        return trimmed
    if trimmed.startswith("//"):
        return f"{scheme}:{trimmed}"

    local_path = re.sub(r"^\./+", "", normalized)
    if local_path.startswith(f"{THUMBNAIL_PREFIX}/"):
        return build(local_path)
    if local_path.startswith("api/thumbnails/"):
        return build(f"/{local_path}")

    if local_path.startswith("/covers/") or local_path.startswith("covers/"):
        stripped = re.sub(r"^/?covers/?", "", local_path)
        if TRAVERSAL_RE.search(stripped):
            return None
        encoded = _encode_path(stripped)
        return build(f"{THUMBNAIL_PREFIX}/covers{f'/{encoded}' if encoded else ''}")

    if TRAVERSAL_RE.search(local_path):
        return None

    folder = "series" if media_type == "tv" else "movies"
    encoded = _encode_path(local_path.lstrip("/"))
    return build(f"{THUMBNAIL_PREFIX}/{folder}{f'/{encoded}' if encoded else ''}")


def parse_guid(guid: str | None, ids: dict[str, str]) -> None:
    """Collect imdb/tmdb/tvdb identifiers from an agent GUID into ``ids``."""

    if not guid:
        return
    trimmed = guid.strip()
    if not trimmed:
        return
    if "://" not in trimmed:
        if trimmed.startswith("tt"):
            ids["imdb"] = trimmed
        return
    scheme_part, rest_part = trimmed.split("://", 1)
    if not rest_part:
        return
    scheme = scheme_part.lower()
    rest = rest_part.split("?", 1)[0].lstrip("/")
    head = rest.split("/", 1)[0]
    if not head:
        return
    if "imdb" in scheme:
        ids["imdb"] = head
    elif "themoviedb" in scheme or scheme.endswith("tmdb"):
        ids["tmdb"] = head
    elif "thetvdb" in scheme or scheme.endswith("tvdb"):
        ids["tvdb"] = head
