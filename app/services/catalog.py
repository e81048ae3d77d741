"""Read access to the locally mirrored media catalog."""

from __future__ import annotations

from collections import defaultdict
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import MediaItem, MediaThumbnail
from ..models import MediaRecord


def _to_record(item: MediaItem) -> MediaRecord:
    return MediaRecord(
        id=item.id,
        native_id=item.native_id,
        title=item.title,
        media_type=item.media_type,
        year=item.year,
        originally_available_at=item.originally_available_at,
        guid=item.guid,
        summary=item.summary,
        tagline=item.tagline,
        duration=item.duration,
        content_rating=item.content_rating,
        rating=item.rating,
        audience_rating=item.audience_rating,
        genres=[str(genre) for genre in item.genres or [] if genre],
        poster=item.poster,
        backdrop=item.backdrop,
        added_at=item.added_at,
        created_at=item.created_at.isoformat() if item.created_at else None,
    )


class CatalogRepository:
    """Query helper returning plain records in catalog order."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def list_all_media_records(self) -> list[MediaRecord]:
        async with self._session_factory() as session:
            result = await session.execute(select(MediaItem).order_by(MediaItem.id))
            items = result.scalars().all()
        return [_to_record(item) for item in items]

    async def list_thumbnails_by_media_ids(
        self, ids: Iterable[int]
    ) -> dict[int, list[str]]:
        """Return cached artwork paths grouped by media id, oldest first."""

        unique_ids = sorted({int(identifier) for identifier in ids})
        if not unique_ids:
            return {}
        async with self._session_factory() as session:
            stmt = (
                select(MediaThumbnail)
                .where(MediaThumbnail.media_item_id.in_(unique_ids))
                .order_by(MediaThumbnail.created_at, MediaThumbnail.id)
            )
            result = await session.execute(stmt)
            rows = result.scalars().all()
        grouped: dict[int, list[str]] = defaultdict(list)
        for row in rows:
            if row.path:
                grouped[row.media_item_id].append(row.path)
        return dict(grouped)
