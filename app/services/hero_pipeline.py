"""Hero pool orchestration: cache lookup, selection, enrichment, persistence."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, Protocol

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Settings
from ..db_models import HeroPoolRecord
from ..models import (
    HeroPoolPayload,
    HistoryEntry,
    MediaRecord,
    PoolKind,
    PoolMeta,
    RateLimitState,
    TMDBMeta,
    media_type_for_kind,
    normalize_kind,
)
from ..policy import PolicySnapshot, PolicyStore
from ..utils import now_ms
from .candidates import matches_media_type, prepare_candidates
from .enrichment import DEFAULT_FALLBACK_LANGUAGE, EnrichmentAdapter, MetadataProvider
from .history import build_snapshot, parse_history, serialize_history, update_history
from .selection import Shuffle, random_shuffle, select_candidates
from .slots import compute_slot_plan

logger = logging.getLogger(__name__)

MS_PER_HOUR = 1000 * 60 * 60
MS_PER_MINUTE = 1000 * 60


class CatalogReader(Protocol):
    async def list_all_media_records(self) -> list[MediaRecord]: ...

    async def list_thumbnails_by_media_ids(
        self, ids: Iterable[int]
    ) -> dict[int, list[str]]: ...


@dataclass(slots=True)
class StoredPool:
    """A persisted row; ``payload`` is ``None`` when it failed validation."""

    kind: PoolKind
    policy_hash: str
    expires_at: int
    updated_at: int
    payload: HeroPoolPayload | None = None
    history: list[HistoryEntry] = field(default_factory=list)


class HeroPipelineService:
    """Serve hero pools per kind, rebuilding when stale or the policy changed."""

    def __init__(
        self,
        settings: Settings,
        policy_store: PolicyStore,
        catalog: CatalogReader,
        session_factory: async_sessionmaker[AsyncSession],
        provider: MetadataProvider | None = None,
        *,
        clock: Callable[[], int] = now_ms,
        shuffle: Shuffle = random_shuffle,
    ):
        self._settings = settings
        self._policy_store = policy_store
        self._catalog = catalog
        self._session_factory = session_factory
        self._clock = clock
        self._shuffle = shuffle
        self._fallback_language = (
            settings.hero_fallback_language or DEFAULT_FALLBACK_LANGUAGE
        )
        self._adapter = EnrichmentAdapter(
            provider, fallback_language=self._fallback_language
        )
        self._locks: dict[str, asyncio.Lock] = {}

    def set_metadata_provider(self, provider: MetadataProvider | None) -> None:
        """Swap the enrichment provider; later builds use the new one."""

        self._adapter = EnrichmentAdapter(
            provider, fallback_language=self._fallback_language
        )
        logger.info(
            "Hero pipeline metadata provider %s",
            "disabled" if provider is None else "updated",
        )

    async def get_pool(
        self,
        kind: str,
        *,
        force: bool = False,
        cancel_event: asyncio.Event | None = None,
    ) -> HeroPoolPayload:
        """Return the hero pool for ``kind`` from cache or a fresh build."""

        pool_kind = normalize_kind(kind)
        lock = self._locks.setdefault(pool_kind, asyncio.Lock())
        async with lock:
            return await self._get_pool_locked(pool_kind, force, cancel_event)

    async def _get_pool_locked(
        self,
        kind: PoolKind,
        force: bool,
        cancel_event: asyncio.Event | None,
    ) -> HeroPoolPayload:
        snapshot = self._policy_store.load()
        now = self._clock()
        stored = await self._load_stored(kind)

        if (
            not force
            and stored is not None
            and stored.payload is not None
            and stored.policy_hash == snapshot.fingerprint
            and stored.expires_at > now
        ):
            logger.debug("Serving cached %s hero pool (expires %s)", kind, stored.expires_at)
            return self._from_store(stored.payload, "cache")

        try:
            return await self._build(kind, snapshot, stored, now, cancel_event)
        except Exception:
            grace_ms = snapshot.policy.cache.grace_minutes * MS_PER_MINUTE
            if (
                stored is not None
                and stored.payload is not None
                and stored.policy_hash == snapshot.fingerprint
                and now <= stored.expires_at + grace_ms
            ):
                logger.exception(
                    "Failed to build %s hero pool; serving stored pool within grace period",
                    kind,
                )
                return self._from_store(stored.payload, "grace")
            raise

    async def _build(
        self,
        kind: PoolKind,
        snapshot: PolicySnapshot,
        stored: StoredPool | None,
        now: int,
        cancel_event: asyncio.Event | None,
    ) -> HeroPoolPayload:
        policy = snapshot.policy
        media_type = media_type_for_kind(kind)
        ttl_ms = policy.cache.ttl_hours * MS_PER_HOUR
        pool_size = policy.pool_size(kind)
        plan = compute_slot_plan(pool_size, policy.quotas())

        if pool_size <= 0:
            logger.info("Hero pool size for %s is %s; returning empty pool", kind, pool_size)
            return HeroPoolPayload(
                kind=kind,
                updated_at=now,
                expires_at=now + ttl_ms,
                policy_hash=snapshot.fingerprint,
                slot_summary=dict(plan),
                meta=PoolMeta(source="fresh", plan=plan, tmdb=self._tmdb_meta(False)),
            )

        records = await self._catalog.list_all_media_records()
        candidates = prepare_candidates(
            (record for record in records if matches_media_type(record, media_type)),
            now=now,
        )
        history = build_snapshot(stored.history if stored else [], now)
        selection = select_candidates(
            candidates,
            plan,
            {"genre": policy.diversity.genre, "year": policy.diversity.year},
            history.ids,
            shuffle=self._shuffle,
        )
        logger.info(
            "Selected %d of %d %s candidates (plan %s, %d in history)",
            len(selection.selected),
            len(candidates),
            kind,
            plan,
            len(history.ids),
        )

        thumbnails = await self._catalog.list_thumbnails_by_media_ids(
            selected.candidate.record.id for selected in selection.selected
        )
        result = await self._adapter.enrich(
            selection.selected, media_type, policy.language, thumbnails, cancel_event
        )
        if result.rate_limit_hit:
            logger.warning("TMDB rate limit reached while building %s hero pool", kind)

        payload = HeroPoolPayload(
            kind=kind,
            items=result.items,
            updated_at=now,
            expires_at=now + ttl_ms,
            policy_hash=snapshot.fingerprint,
            slot_summary=dict(selection.summary),
            meta=PoolMeta(
                source="fresh",
                plan=plan,
                total_candidates=len(candidates),
                selection_count=len(result.items),
                tmdb=self._tmdb_meta(result.rate_limit_hit),
                cancelled=result.cancelled,
            ),
        )
        if result.cancelled:
            logger.info("Hero pool build for %s was cancelled; not persisting", kind)
            return payload

        next_history = update_history(history.entries, result.items, now)
        await self._store(kind, payload, next_history)
        return payload

    def _tmdb_meta(self, hit_limit: bool) -> TMDBMeta:
        provider = self._adapter.provider
        if provider is None:
            return TMDBMeta(enabled=False, rate_limit=RateLimitState(), hit_limit=hit_limit)
        return TMDBMeta(
            enabled=provider.is_enabled(),
            rate_limit=provider.get_rate_limit_state(),
            hit_limit=hit_limit,
        )

    def _from_store(self, payload: HeroPoolPayload, source: str) -> HeroPoolPayload:
        meta = payload.meta.model_copy(
            update={
                "source": source,
                "tmdb": self._tmdb_meta(payload.meta.tmdb.hit_limit),
            }
        )
        return payload.model_copy(
            update={"from_cache": True, "matches_policy": True, "meta": meta}
        )

    async def _load_stored(self, kind: PoolKind) -> StoredPool | None:
        try:
            async with self._session_factory() as session:
                row = await session.get(HeroPoolRecord, kind)
                if row is None:
                    return None
                stored = StoredPool(
                    kind=kind,
                    policy_hash=row.policy_hash or "",
                    expires_at=int(row.expires_at or 0),
                    updated_at=int(row.updated_at or 0),
                    history=parse_history(row.history),
                )
                raw_payload = row.payload
        except SQLAlchemyError as exc:
            logger.warning("Failed to read stored %s hero pool: %s", kind, exc)
            return None

        try:
            stored.payload = HeroPoolPayload.model_validate(raw_payload)
        except ValidationError as exc:
            logger.warning("Stored %s hero pool is invalid, rebuilding: %s", kind, exc)
        return stored

    async def _store(
        self,
        kind: PoolKind,
        payload: HeroPoolPayload,
        history: list[HistoryEntry],
    ) -> None:
        record = HeroPoolRecord(
            kind=kind,
            policy_hash=payload.policy_hash,
            payload=payload.to_response(),
            history=serialize_history(history),
            expires_at=payload.expires_at,
            updated_at=payload.updated_at,
        )
        try:
            async with self._session_factory() as session:
                await session.merge(record)
                await session.commit()
        except SQLAlchemyError:
            logger.exception("Failed to persist %s hero pool", kind)
