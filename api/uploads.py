"""
Video and thumbnail upload pipeline.

Every upload runs the same gates before any bytes are written:
record lookup, ownership, form field, size ceiling, declared media type.

Videos then go through a fixed chain of stages inside a StagingArea:
stream to a staged file -> ffprobe aspect ratio -> ffmpeg fast-start remux
-> S3 put under ``{aspect}/{random}.mp4`` -> record update. The staging
area removes every file it handed out when the block exits, whatever the
outcome, including cancellation.

Thumbnails are streamed to a staged file and then moved into ASSETS_DIR
under a random name, so a rejected upload never leaves a partial image
behind in the public directory.
"""

import asyncio
import logging
import re
import secrets
import shutil
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from fastapi import Request
from starlette.datastructures import UploadFile

from api.enums import AspectRatio, UploadKind
from api.errors import (
    BadRequestError,
    InternalServerError,
    NotFoundError,
    ServiceUnavailableError,
    UserForbiddenError,
    sanitize_error_message,
)
from api.metrics import (
    STAGING_CLEANUP_FAILURES_TOTAL,
    UPLOAD_BYTES_TOTAL,
    UPLOADS_TOTAL,
    VIDEO_ASPECT_RATIO_TOTAL,
)
from api.object_store import ObjectStore, ObjectStoreError
from api.videos import get_video, parse_video_id, update_video
from config import (
    ALLOWED_THUMBNAIL_TYPES,
    ALLOWED_VIDEO_TYPES,
    ASSETS_BASE_URL,
    ASSETS_DIR,
    MAX_THUMBNAIL_UPLOAD_SIZE,
    MAX_VIDEO_UPLOAD_SIZE,
    STAGING_DIR,
    UPLOAD_CHUNK_SIZE,
)
from worker.transcoder import (
    MediaProcessingError,
    fast_start_output_path,
    get_video_aspect_ratio,
    process_video_for_fast_start,
)

logger = logging.getLogger(__name__)

# 32 random bytes, hex encoded
ASSET_KEY_BYTES = 32
ASSET_NAME_RE = re.compile(r"^[0-9a-f]{64}\.[a-z0-9]+$")


def new_asset_key() -> str:
    """Random 64-char lowercase hex name for staged files and stored objects."""
    return secrets.token_hex(ASSET_KEY_BYTES)


class StagingArea:
    """
    Scope owning the local files of one upload.

    Paths handed out by ``path()`` or registered with ``track()`` are deleted
    when the ``async with`` block exits. Deletion failures are logged and
    counted, never raised, so they cannot mask the upload's real outcome.
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory)
        self.paths: List[Path] = []

    async def __aenter__(self) -> "StagingArea":
        await asyncio.to_thread(self.directory.mkdir, parents=True, exist_ok=True)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        self.cleanup()
        return False

    def path(self, extension: str) -> Path:
        return self.track(self.directory / f"{new_asset_key()}.{extension}")

    def track(self, path: Union[str, Path]) -> Path:
        path = Path(path)
        self.paths.append(path)
        return path

    def cleanup(self) -> None:
        # Synchronous so it also completes while the request task is being cancelled
        while self.paths:
            path = self.paths.pop()
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                STAGING_CLEANUP_FAILURES_TOTAL.inc()
                logger.warning(f"Failed to remove staged file {path}: {e}")


def normalize_media_type(content_type: Optional[str]) -> str:
    """``"Image/PNG; charset=binary"`` -> ``"image/png"``."""
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


async def load_owned_video(video_id: str, user_id: str) -> dict:
    """Fetch a video record and check that user_id owns it."""
    video = await get_video(parse_video_id(video_id))
    if video is None:
        raise NotFoundError("Couldn't find video")
    if video["user_id"] != user_id:
        raise UserForbiddenError("You are not the owner of this video")
    return video


def extract_upload(form, field: str, label: str) -> UploadFile:
    upload = form.get(field)
    if not isinstance(upload, UploadFile):
        raise BadRequestError(f"{label} file missing")
    return upload


def check_declared_size(upload: UploadFile, max_size: int, label: str) -> None:
    # size is None when the client did not announce it; the streaming copy enforces the limit then
    if upload.size is not None and upload.size > max_size:
        raise BadRequestError(size_limit_message(label, max_size))


def size_limit_message(label: str, max_size: int) -> str:
    return f"{label} exceeds the max upload size of {max_size // (1024 * 1024)} MB"


def check_media_type(upload: UploadFile, allowed: Dict[str, str], message: str) -> str:
    """Return the normalized declared type if it is allow-listed."""
    media_type = normalize_media_type(upload.content_type)
    if media_type not in allowed:
        raise BadRequestError(message)
    return media_type


async def save_upload_with_size_limit(upload: UploadFile, path: Path, max_size: int, label: str) -> int:
    """
    Stream an upload to disk, enforcing max_size on the bytes actually received.

    The partially written file is left for the caller's StagingArea to remove.
    Returns the number of bytes written.
    """
    total_size = 0
    await upload.seek(0)
    try:
        with open(path, "wb") as f:
            while True:
                chunk = await upload.read(UPLOAD_CHUNK_SIZE)
                if not chunk:
                    break
                total_size += len(chunk)
                if total_size > max_size:
                    raise BadRequestError(size_limit_message(label, max_size))
                await asyncio.to_thread(f.write, chunk)
    except OSError as e:
        logger.warning(f"Storage error while staging upload to {path}: {e}")
        raise ServiceUnavailableError("Upload storage temporarily unavailable. Please try again later.")

    return total_size


async def process_video_upload(
    request: Request, video_id: str, user_id: str, store: ObjectStore
) -> Tuple[dict, AspectRatio]:
    """
    Run the full video pipeline for one request.

    Returns the updated record and the aspect classification. The record is
    only written after the object store accepted the file.
    """
    video = await load_owned_video(video_id, user_id)
    logger.info(f"Uploading video {video['id']} by user {user_id}")

    async with request.form(max_files=1) as form:
        upload = extract_upload(form, "video", "Video")
        try:
            check_declared_size(upload, MAX_VIDEO_UPLOAD_SIZE, "Video")
            media_type = check_media_type(upload, ALLOWED_VIDEO_TYPES, "Invalid video type (must be mp4)")
        except BadRequestError:
            UPLOADS_TOTAL.labels(kind=UploadKind.VIDEO.value, result="rejected").inc()
            raise

        async with StagingArea(STAGING_DIR) as staging:
            staged = staging.path(ALLOWED_VIDEO_TYPES[media_type])
            try:
                size = await save_upload_with_size_limit(upload, staged, MAX_VIDEO_UPLOAD_SIZE, "Video")
            except BadRequestError:
                UPLOADS_TOTAL.labels(kind=UploadKind.VIDEO.value, result="rejected").inc()
                raise
            UPLOAD_BYTES_TOTAL.labels(kind=UploadKind.VIDEO.value).inc(size)

            try:
                aspect = await get_video_aspect_ratio(staged)
                processed = staging.track(fast_start_output_path(staged))
                await process_video_for_fast_start(staged)
                key = f"{aspect.value}/{new_asset_key()}.mp4"
                video_url = await store.put_file(key, processed, "video/mp4")
            except (MediaProcessingError, ObjectStoreError) as e:
                UPLOADS_TOTAL.labels(kind=UploadKind.VIDEO.value, result="failed").inc()
                logger.exception(f"Video pipeline failed for {video['id']}: {e}")
                raise InternalServerError(sanitize_error_message(str(e), log_original=False)) from e

            updated = await update_video(video["id"], video_url=video_url)

    UPLOADS_TOTAL.labels(kind=UploadKind.VIDEO.value, result="success").inc()
    VIDEO_ASPECT_RATIO_TOTAL.labels(aspect_ratio=aspect.value).inc()
    logger.info(f"Video {video['id']} stored as {key} ({size} bytes, {aspect.value})")
    return updated, aspect


def thumbnail_path_from_url(url: Optional[str]) -> Optional[Path]:
    """Map a thumbnail URL we issued back to its file in ASSETS_DIR, or None."""
    prefix = f"{ASSETS_BASE_URL}/"
    if not url or not url.startswith(prefix):
        return None
    name = url[len(prefix) :]
    if not ASSET_NAME_RE.match(name):
        return None
    return ASSETS_DIR / name


def thumbnail_media_type(path: Path) -> str:
    extension = path.suffix.lstrip(".").lower()
    for media_type, ext in ALLOWED_THUMBNAIL_TYPES.items():
        if ext == extension:
            return media_type
    return "application/octet-stream"


def remove_previous_thumbnail(url: Optional[str]) -> None:
    path = thumbnail_path_from_url(url)
    if path is None:
        return
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Failed to remove replaced thumbnail {path}: {e}")


async def process_thumbnail_upload(request: Request, video_id: str, user_id: str) -> dict:
    """Validate a thumbnail, publish it under ASSETS_DIR and point the record at it."""
    video = await load_owned_video(video_id, user_id)
    logger.info(f"Uploading thumbnail for video {video['id']} by user {user_id}")

    async with request.form(max_files=1) as form:
        upload = extract_upload(form, "thumbnail", "Thumbnail")
        try:
            check_declared_size(upload, MAX_THUMBNAIL_UPLOAD_SIZE, "Thumbnail")
            media_type = check_media_type(
                upload, ALLOWED_THUMBNAIL_TYPES, "Invalid thumbnail type (must be jpeg or png)"
            )
        except BadRequestError:
            UPLOADS_TOTAL.labels(kind=UploadKind.THUMBNAIL.value, result="rejected").inc()
            raise
        extension = ALLOWED_THUMBNAIL_TYPES[media_type]

        async with StagingArea(STAGING_DIR) as staging:
            staged = staging.path(extension)
            try:
                size = await save_upload_with_size_limit(upload, staged, MAX_THUMBNAIL_UPLOAD_SIZE, "Thumbnail")
            except BadRequestError:
                UPLOADS_TOTAL.labels(kind=UploadKind.THUMBNAIL.value, result="rejected").inc()
                raise

            name = f"{new_asset_key()}.{extension}"
            final_path = ASSETS_DIR / name
            try:
                await asyncio.to_thread(ASSETS_DIR.mkdir, parents=True, exist_ok=True)
                # staging and assets may live on different filesystems
                await asyncio.to_thread(shutil.move, str(staged), str(final_path))
            except OSError as e:
                UPLOADS_TOTAL.labels(kind=UploadKind.THUMBNAIL.value, result="failed").inc()
                logger.warning(f"Failed to publish thumbnail {final_path}: {e}")
                raise ServiceUnavailableError("Thumbnail storage temporarily unavailable. Please try again later.")

    try:
        updated = await update_video(video["id"], thumbnail_url=f"{ASSETS_BASE_URL}/{name}")
    except Exception:
        final_path.unlink(missing_ok=True)
        raise

    remove_previous_thumbnail(video.get("thumbnail_url"))
    UPLOADS_TOTAL.labels(kind=UploadKind.THUMBNAIL.value, result="success").inc()
    UPLOAD_BYTES_TOTAL.labels(kind=UploadKind.THUMBNAIL.value).inc(size)
    return updated
