"""
Tests for API error types, truncation helpers and error message sanitization.
"""

import logging

import pytest

from api.errors import (
    ERROR_MESSAGES,
    APIError,
    BadRequestError,
    InternalServerError,
    NotFoundError,
    ServiceUnavailableError,
    UnauthorizedError,
    UserForbiddenError,
    sanitize_error_message,
    truncate_error,
    truncate_string,
)
from config import ERROR_DETAIL_MAX_LENGTH, ERROR_SUMMARY_MAX_LENGTH


class TestErrorTypes:
    @pytest.mark.parametrize(
        "cls,status",
        [
            (BadRequestError, 400),
            (UnauthorizedError, 401),
            (UserForbiddenError, 403),
            (NotFoundError, 404),
            (InternalServerError, 500),
            (ServiceUnavailableError, 503),
        ],
    )
    def test_status_codes(self, cls, status):
        err = cls("boom")
        assert isinstance(err, APIError)
        assert err.status_code == status
        assert err.message == "boom"
        assert str(err) == "boom"

    def test_service_unavailable_retry_after(self):
        assert ServiceUnavailableError("later").retry_after == 30
        assert ServiceUnavailableError("later", retry_after=5).retry_after == 5


class TestTruncateString:
    def test_short_text_unchanged(self):
        assert truncate_string("Short text", 50) == "Short text"

    def test_long_text_gets_ellipsis(self):
        result = truncate_string("a" * 100, 50)
        assert len(result) == 50
        assert result == "a" * 47 + "..."

    def test_none_and_empty(self):
        assert truncate_string(None, 50) is None
        assert truncate_string("", 50) == ""

    def test_small_max_length_has_no_ellipsis(self):
        assert truncate_string("abcdef", 3) == "abc"


class TestTruncateError:
    def test_strips_whitespace(self):
        assert truncate_error("  ffmpeg failed\n", 100) == "ffmpeg failed"

    def test_long_stderr(self):
        stderr = "frame=  100 fps=25 q=-1.0 size=1024kB " * 50
        result = truncate_error(stderr, ERROR_DETAIL_MAX_LENGTH)
        assert len(result) == ERROR_DETAIL_MAX_LENGTH
        assert result.endswith("...")

    def test_summary_shorter_than_detail(self):
        assert ERROR_SUMMARY_MAX_LENGTH < ERROR_DETAIL_MAX_LENGTH

    def test_none(self):
        assert truncate_error(None, 10) is None


class TestSanitizeErrorMessage:
    @pytest.mark.parametrize(
        "error,key",
        [
            ("ffprobe timed out after 30.0s", "timeout"),
            ("ffmpeg timed out after 600.0s", "timeout"),
            ("no video streams found", "no_video_stream"),
            ("ffprobe failed (exit 1): /tmp/abc.mp4: Invalid data", "ffprobe"),
            ("ffmpeg failed (exit 1): moov atom not found", "ffmpeg"),
            ("S3 upload of landscape/abc.mp4 failed: AccessDenied", "storage"),
            ("NoSuchBucket: the bucket tubely-prod does not exist", "storage"),
            ("sqlite3.IntegrityError: UNIQUE constraint failed", "database"),
            ("[Errno 13] Permission denied: '/var/lib/tubely'", "permission"),
        ],
    )
    def test_known_categories(self, error, key):
        assert sanitize_error_message(error, log_original=False) == ERROR_MESSAGES[key]

    def test_path_like_message_is_generic(self):
        result = sanitize_error_message('File "/srv/app/api/uploads.py", line 10', log_original=False)
        assert result == ERROR_MESSAGES["general"]

    def test_short_safe_message_passes_through(self):
        assert sanitize_error_message("Video not found", log_original=False) == "Video not found"

    def test_long_message_is_generic(self):
        assert sanitize_error_message("x" * 200, log_original=False) == ERROR_MESSAGES["general"]

    def test_none(self):
        assert sanitize_error_message(None) is None

    def test_logs_original(self, caplog):
        with caplog.at_level(logging.WARNING, logger="api.errors"):
            sanitize_error_message("ffmpeg failed: secret path /home/alice/x", context="video_id=abc")
        assert "secret path" in caplog.text
        assert "video_id=abc" in caplog.text
