"""
API error types and helpers for keeping error messages safe to return.

Handlers raise the typed errors below; the app's exception handler renders
them as ``{"error": message}`` with the matching status code. Messages that
originate from ffmpeg, boto3 or the database are sanitized first so that
paths, bucket names and driver internals stay in the logs.
"""
import logging
import re
from typing import Optional

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Base class for errors that map directly to an HTTP response."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class BadRequestError(APIError):
    status_code = 400


class UnauthorizedError(APIError):
    status_code = 401


class UserForbiddenError(APIError):
    status_code = 403


class NotFoundError(APIError):
    status_code = 404


class InternalServerError(APIError):
    status_code = 500


class ServiceUnavailableError(APIError):
    """Local storage or another dependency is temporarily unusable."""

    status_code = 503

    def __init__(self, message: str, retry_after: int = 30):
        super().__init__(message)
        self.retry_after = retry_after


def truncate_string(text: Optional[str], max_length: int) -> Optional[str]:
    """Truncate text to max_length, ending with "..." when there is room for it."""
    if text is None:
        return None
    if len(text) <= max_length:
        return text
    if max_length < 4:
        return text[:max_length]
    return text[: max_length - 3] + "..."


def truncate_error(error: Optional[str], max_length: int) -> Optional[str]:
    """Truncate tool or driver output before it goes into a log line or exception."""
    if error is None:
        return None
    return truncate_string(error.strip(), max_length)


# Patterns that indicate internal details
INTERNAL_PATTERNS = [
    r"/home/\w+/",  # Home directory paths
    r"/tmp/\w+",  # Temp paths
    r"/var/\w+/",  # Var paths
    r"line \d+",  # Line numbers in stack traces
    r'File "[^"]+\.py"',  # Python file paths
    r"s3://",  # Object keys
    r"amazonaws\.com",  # Bucket endpoints
    r"Permission denied",
    r"No such file or directory",
    r"UNIQUE constraint failed",
    r"sqlite3?\.",
]

# Generic user-friendly messages for common error types
ERROR_MESSAGES = {
    "ffmpeg": "Video processing failed. Please try uploading again.",
    "ffprobe": "Could not read video file. The file may be corrupted or in an unsupported format.",
    "timeout": "Video processing timed out. Please try again.",
    "no_video_stream": "No video stream found. Please upload a valid video file.",
    "storage": "Could not store the uploaded file. Please try again.",
    "database": "A database error occurred. Please try again.",
    "permission": "A file access error occurred. Please contact support.",
    "general": "An error occurred while processing your request. Please try again.",
}


def sanitize_error_message(error: Optional[str], log_original: bool = True, context: str = "") -> Optional[str]:
    """
    Map an internal error message to one that is safe to show API clients.

    Args:
        error: The original error message (may contain internal details)
        log_original: Whether to log the original message before sanitizing
        context: Additional context for logging (e.g., "video_id=...")

    Returns:
        A user-friendly message, or None if input was None
    """
    if error is None:
        return None

    if log_original and error:
        suffix = f" ({context})" if context else ""
        logger.warning(f"Original error{suffix}: {error}")

    error_lower = error.lower()

    if "timed out" in error_lower or "timeout" in error_lower:
        return ERROR_MESSAGES["timeout"]

    if "no video stream" in error_lower:
        return ERROR_MESSAGES["no_video_stream"]

    if "ffprobe" in error_lower:
        return ERROR_MESSAGES["ffprobe"]

    if "ffmpeg" in error_lower:
        return ERROR_MESSAGES["ffmpeg"]

    if "s3" in error_lower or "bucket" in error_lower or "object store" in error_lower:
        return ERROR_MESSAGES["storage"]

    if "sqlite" in error_lower or "database" in error_lower or "constraint" in error_lower:
        return ERROR_MESSAGES["database"]

    if "permission" in error_lower:
        return ERROR_MESSAGES["permission"]

    for pattern in INTERNAL_PATTERNS:
        if re.search(pattern, error, re.IGNORECASE):
            return ERROR_MESSAGES["general"]

    # Short messages without path-like segments are passed through
    if len(error) < 100 and "/" not in error and "\\" not in error:
        return error

    return ERROR_MESSAGES["general"]
