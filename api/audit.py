"""
Audit trail for changes made to video records.

Every create, upload and delete is written as one JSON line to a rotating
file so that "who replaced this video and when" can be answered without
the database.
"""

import json
import logging
import os
from datetime import datetime, timezone
from enum import Enum
from logging.handlers import RotatingFileHandler
from typing import Any, Optional

from api.errors import truncate_string
from config import (
    AUDIT_LOG_BACKUP_COUNT,
    AUDIT_LOG_ENABLED,
    AUDIT_LOG_LEVEL,
    AUDIT_LOG_MAX_BYTES,
    AUDIT_LOG_PATH,
    ERROR_DETAIL_MAX_LENGTH,
)

logger = logging.getLogger(__name__)

if not os.environ.get("TUBELY_TEST_MODE") and AUDIT_LOG_ENABLED:
    try:
        AUDIT_LOG_PATH.parent.mkdir(parents=True, exist_ok=True)
    except PermissionError:
        logger.warning(f"Cannot create audit log directory {AUDIT_LOG_PATH.parent}, using console")


class AuditAction(str, Enum):
    VIDEO_CREATE = "video_create"
    VIDEO_DELETE = "video_delete"
    VIDEO_UPLOAD = "video_upload"
    THUMBNAIL_UPLOAD = "thumbnail_upload"


class AuditLogger:
    """
    JSON-lines audit logger.

    Writes to AUDIT_LOG_PATH with size-based rotation; falls back to stderr
    when the file cannot be opened.
    """

    def __init__(self):
        self.logger = logging.getLogger("tubely.audit")
        self.logger.setLevel(getattr(logging, AUDIT_LOG_LEVEL, logging.INFO))
        self.logger.propagate = False

        if not self.logger.handlers:
            self._setup_handlers()

    def _setup_handlers(self):
        formatter = logging.Formatter("%(message)s")

        if not AUDIT_LOG_ENABLED:
            self.logger.addHandler(logging.NullHandler())
            return

        try:
            handler = RotatingFileHandler(
                AUDIT_LOG_PATH,
                maxBytes=AUDIT_LOG_MAX_BYTES,
                backupCount=AUDIT_LOG_BACKUP_COUNT,
                encoding="utf-8",
            )
        except OSError:
            handler = logging.StreamHandler()
        handler.setFormatter(formatter)
        self.logger.addHandler(handler)

    def log(
        self,
        action: AuditAction,
        user_id: Optional[str] = None,
        client_ip: Optional[str] = None,
        user_agent: Optional[str] = None,
        video_id: Optional[str] = None,
        details: Optional[dict] = None,
        success: bool = True,
        error: Optional[str] = None,
        request_id: Optional[str] = None,
    ):
        if not AUDIT_LOG_ENABLED:
            return

        entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "action": action.value,
            "success": success,
        }
        if request_id:
            entry["request_id"] = request_id
        if user_id:
            entry["user_id"] = user_id
        if client_ip:
            entry["client_ip"] = client_ip
        if user_agent:
            entry["user_agent"] = truncate_string(user_agent, ERROR_DETAIL_MAX_LENGTH)
        if video_id:
            entry["video_id"] = video_id
        if details:
            entry["details"] = details
        if error:
            entry["error"] = truncate_string(error, ERROR_DETAIL_MAX_LENGTH)

        try:
            self.logger.info(json.dumps(entry, default=str))
        except (TypeError, ValueError, OSError) as e:
            # An unwritable audit entry must not fail the request that caused it
            logger.warning(f"Failed to write audit entry for {action.value}: {e}")


audit_logger = AuditLogger()


def log_audit(action: AuditAction, **kwargs):
    """
    Record an audit event.

    Example:
        log_audit(
            AuditAction.VIDEO_UPLOAD,
            user_id=user_id,
            video_id=video_id,
            client_ip=get_real_ip(request),
            details={"aspect_ratio": "landscape"},
            request_id=get_request_id(request),
        )
    """
    audit_logger.log(action, **kwargs)
