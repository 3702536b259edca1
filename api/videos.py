"""Video record queries. All access goes through the retry wrappers."""

import logging
import uuid
from typing import List, Optional

from api.database import utcnow, videos
from api.db_retry import db_execute_with_retry, fetch_all_with_retry, fetch_one_with_retry
from api.errors import BadRequestError, NotFoundError

logger = logging.getLogger(__name__)

# Columns a caller may change through update_video
UPDATABLE_FIELDS = frozenset({"title", "description", "thumbnail_url", "video_url"})


def parse_video_id(video_id: str) -> str:
    """Normalize a path parameter to the canonical UUID string, or raise BadRequestError."""
    try:
        return str(uuid.UUID(video_id))
    except (ValueError, AttributeError, TypeError):
        raise BadRequestError("Invalid video ID")


async def get_video(video_id: str) -> Optional[dict]:
    row = await fetch_one_with_retry(videos.select().where(videos.c.id == video_id))
    return dict(row._mapping) if row is not None else None


async def list_videos_for_user(user_id: str) -> List[dict]:
    rows = await fetch_all_with_retry(
        videos.select().where(videos.c.user_id == user_id).order_by(videos.c.created_at.desc())
    )
    return [dict(row._mapping) for row in rows]


async def create_video(user_id: str, title: str, description: str = "") -> dict:
    now = utcnow()
    record = {
        "id": str(uuid.uuid4()),
        "user_id": user_id,
        "title": title,
        "description": description,
        "thumbnail_url": None,
        "video_url": None,
        "created_at": now,
        "updated_at": now,
    }
    await db_execute_with_retry(videos.insert().values(**record))
    logger.info(f"Created video {record['id']} for user {user_id}")
    return record


async def update_video(video_id: str, **fields) -> dict:
    """
    Apply field changes to a record and return the updated record.

    ``updated_at`` is always bumped. Unknown fields raise ValueError.
    """
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update video fields: {sorted(unknown)}")

    values = dict(fields, updated_at=utcnow())
    await db_execute_with_retry(videos.update().where(videos.c.id == video_id).values(**values))

    record = await get_video(video_id)
    if record is None:
        # Deleted between the caller's ownership check and this write
        raise NotFoundError("Video not found")
    return record


async def delete_video(video_id: str) -> None:
    await db_execute_with_retry(videos.delete().where(videos.c.id == video_id))
