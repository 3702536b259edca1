"""
Tubely API - video records, video/thumbnail uploads and thumbnail serving.
Runs on TUBELY_PORT (default 8091).
"""

import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded

from api.audit import AuditAction, log_audit
from api.auth import get_current_user_id
from api.common import (
    MetricsMiddleware,
    RequestIDMiddleware,
    SecurityHeadersMiddleware,
    check_health,
    get_real_ip,
    get_request_id,
    rate_limit_exceeded_handler,
)
from api.database import database
from api.db_retry import DatabaseRetryableError
from api.errors import APIError, NotFoundError, ServiceUnavailableError
from api.metrics import get_metrics, init_app_info
from api.object_store import ObjectStore, ObjectStoreError, get_object_store
from api.schemas import VideoCreate, VideoResponse
from api.uploads import (
    load_owned_video,
    process_thumbnail_upload,
    process_video_upload,
    remove_previous_thumbnail,
    thumbnail_media_type,
    thumbnail_path_from_url,
)
from api.videos import create_video, delete_video, get_video, list_videos_for_user, parse_video_id
from config import (
    ASSETS_DIR,
    CORS_ALLOWED_ORIGINS,
    PRESIGN_TTL,
    RATE_LIMIT_DEFAULT,
    RATE_LIMIT_ENABLED,
    RATE_LIMIT_STORAGE_URL,
    RATE_LIMIT_UPLOAD,
)

logger = logging.getLogger(__name__)

APP_VERSION = "0.1.0"

limiter = Limiter(
    key_func=get_real_ip,
    storage_uri=RATE_LIMIT_STORAGE_URL if RATE_LIMIT_ENABLED else None,
    enabled=RATE_LIMIT_ENABLED,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application startup and shutdown."""
    if RATE_LIMIT_ENABLED and RATE_LIMIT_STORAGE_URL == "memory://":
        logger.warning(
            "Rate limiting is using in-memory storage. "
            "For deployments with multiple instances, configure Redis: "
            "TUBELY_RATE_LIMIT_STORAGE_URL=redis://localhost:6379"
        )
    init_app_info(APP_VERSION)
    await database.connect()
    yield
    await database.disconnect()


app = FastAPI(title="Tubely", description="Video upload and hosting API", lifespan=lifespan)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)


@app.exception_handler(APIError)
async def api_error_handler(request: Request, exc: APIError):
    headers = None
    if isinstance(exc, ServiceUnavailableError):
        headers = {"Retry-After": str(exc.retry_after)}
    if exc.status_code >= 500:
        logger.warning(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message}, headers=headers)


@app.exception_handler(DatabaseRetryableError)
async def database_retryable_handler(request: Request, exc: DatabaseRetryableError):
    logger.warning(f"Database unavailable: {exc}")
    return JSONResponse(
        status_code=503,
        content={"error": "Database temporarily unavailable, please retry"},
        headers={"Retry-After": "1"},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return JSONResponse(status_code=400, content={"error": message})


app.add_middleware(MetricsMiddleware)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestIDMiddleware)

# If CORS_ALLOWED_ORIGINS is empty, allow same-origin only (no CORS headers)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOWED_ORIGINS,
    allow_credentials=bool(CORS_ALLOWED_ORIGINS),
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
)

# Thumbnails uploaded through the API; names are random so they can be cached by URL
app.mount("/assets", StaticFiles(directory=str(ASSETS_DIR), check_dir=False), name="assets")


def _audit_context(request: Request) -> dict:
    return {
        "client_ip": get_real_ip(request),
        "user_agent": request.headers.get("user-agent"),
        "request_id": get_request_id(request),
    }


async def _to_response(video: dict, store: Optional[ObjectStore]) -> VideoResponse:
    """Build the response model, presigning private-bucket video URLs."""
    data = dict(video)
    if store is not None and data.get("video_url"):
        try:
            data["video_url"] = await store.sign_video_url(data["video_url"], PRESIGN_TTL)
        except ObjectStoreError as e:
            logger.warning(f"Could not presign video URL for {video['id']}: {e}")
            data["video_url"] = None
    return VideoResponse(**data)


@app.get("/health")
async def health_check():
    """
    Health check endpoint for monitoring and load balancers.

    Returns 503 if the database or a local asset directory is unusable.
    """
    result = await check_health()
    return JSONResponse(
        status_code=result["status_code"],
        content={
            "status": "healthy" if result["healthy"] else "unhealthy",
            "checks": result["checks"],
        },
    )


@app.get("/metrics")
async def metrics():
    return Response(content=get_metrics(), media_type="text/plain; version=0.0.4; charset=utf-8")


@app.post("/api/videos", status_code=201, response_model=VideoResponse)
@limiter.limit(RATE_LIMIT_DEFAULT)
async def create_video_draft(
    request: Request,
    body: VideoCreate,
    user_id: str = Depends(get_current_user_id),
):
    """Create an empty video record owned by the caller."""
    video = await create_video(user_id, body.title, body.description)
    log_audit(
        AuditAction.VIDEO_CREATE,
        user_id=user_id,
        video_id=video["id"],
        details={"title": body.title},
        **_audit_context(request),
    )
    return VideoResponse(**video)


@app.get("/api/videos", response_model=List[VideoResponse])
async def list_videos(
    user_id: str = Depends(get_current_user_id),
    store: ObjectStore = Depends(get_object_store),
):
    records = await list_videos_for_user(user_id)
    return [await _to_response(video, store) for video in records]


@app.get("/api/videos/{video_id}", response_model=VideoResponse)
async def get_video_by_id(
    video_id: str,
    user_id: str = Depends(get_current_user_id),
    store: ObjectStore = Depends(get_object_store),
):
    video = await load_owned_video(video_id, user_id)
    return await _to_response(video, store)


@app.delete("/api/videos/{video_id}", status_code=204)
async def delete_video_by_id(
    request: Request,
    video_id: str,
    user_id: str = Depends(get_current_user_id),
):
    video = await load_owned_video(video_id, user_id)
    await delete_video(video["id"])
    # The stored video object is left in the bucket; only local thumbnails are ours to remove
    remove_previous_thumbnail(video.get("thumbnail_url"))
    log_audit(AuditAction.VIDEO_DELETE, user_id=user_id, video_id=video["id"], **_audit_context(request))
    return Response(status_code=204)


@app.post("/api/videos/{video_id}")
@limiter.limit(RATE_LIMIT_UPLOAD)
async def upload_video(
    request: Request,
    video_id: str,
    user_id: str = Depends(get_current_user_id),
    store: ObjectStore = Depends(get_object_store),
):
    """
    Upload the video file for a record (multipart field ``video``).

    Responds with JSON null on success; the record's video_url now points
    at the fast-start MP4 in the object store.
    """
    try:
        updated, aspect = await process_video_upload(request, video_id, user_id, store)
    except APIError as e:
        log_audit(
            AuditAction.VIDEO_UPLOAD,
            user_id=user_id,
            video_id=video_id,
            success=False,
            error=e.message,
            **_audit_context(request),
        )
        raise

    log_audit(
        AuditAction.VIDEO_UPLOAD,
        user_id=user_id,
        video_id=updated["id"],
        details={"aspect_ratio": aspect.value, "video_url": updated["video_url"]},
        **_audit_context(request),
    )
    return JSONResponse(status_code=200, content=None)


@app.post("/api/thumbnails/{video_id}", response_model=VideoResponse)
@limiter.limit(RATE_LIMIT_UPLOAD)
async def upload_thumbnail(
    request: Request,
    video_id: str,
    user_id: str = Depends(get_current_user_id),
):
    """Upload a JPEG or PNG thumbnail (multipart field ``thumbnail``); returns the updated record."""
    try:
        updated = await process_thumbnail_upload(request, video_id, user_id)
    except APIError as e:
        log_audit(
            AuditAction.THUMBNAIL_UPLOAD,
            user_id=user_id,
            video_id=video_id,
            success=False,
            error=e.message,
            **_audit_context(request),
        )
        raise

    log_audit(
        AuditAction.THUMBNAIL_UPLOAD,
        user_id=user_id,
        video_id=updated["id"],
        details={"thumbnail_url": updated["thumbnail_url"]},
        **_audit_context(request),
    )
    return VideoResponse(**updated)


@app.get("/api/thumbnails/{video_id}")
async def get_thumbnail(video_id: str):
    video = await get_video(parse_video_id(video_id))
    if video is None:
        raise NotFoundError("Couldn't find video")

    path = thumbnail_path_from_url(video.get("thumbnail_url"))
    if path is None or not path.is_file():
        raise NotFoundError("Thumbnail not found")

    return FileResponse(
        path,
        media_type=thumbnail_media_type(path),
        headers={"Cache-Control": "no-store"},
    )


def main():
    import uvicorn

    from config import PORT

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run("api.public:app", host="0.0.0.0", port=PORT)


if __name__ == "__main__":
    main()
