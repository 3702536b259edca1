#!/usr/bin/env python3
"""
Tubely CLI - create video records and upload their assets over the API.
"""

import argparse
import mimetypes
import os
import sys
from pathlib import Path

import httpx
from rich.console import Console
from rich.progress import (
    BarColumn,
    FileSizeColumn,
    Progress,
    TextColumn,
    TimeRemainingColumn,
    TotalFileSizeColumn,
    TransferSpeedColumn,
)
from rich.table import Table

from api.errors import truncate_error
from config import (
    ALLOWED_THUMBNAIL_TYPES,
    ALLOWED_VIDEO_TYPES,
    ERROR_DETAIL_MAX_LENGTH,
    ERROR_SUMMARY_MAX_LENGTH,
    JWT_EXPIRY_SECONDS,
    JWT_SECRET,
    MAX_THUMBNAIL_UPLOAD_SIZE,
    MAX_VIDEO_UPLOAD_SIZE,
    PORT,
)

console = Console()

# Default timeout for API requests (30 seconds)
DEFAULT_API_TIMEOUT = int(os.getenv("TUBELY_API_TIMEOUT", "30"))

# Uploads include server-side ffprobe/ffmpeg and the S3 put
UPLOAD_TIMEOUT = int(os.getenv("TUBELY_UPLOAD_TIMEOUT", "3600"))

API_BASE = os.getenv("TUBELY_API_URL", f"http://localhost:{PORT}").rstrip("/") + "/api"


class CLIError(Exception):
    """Error reported to the user with exit status 1."""


class ProgressFileWrapper:
    """File wrapper that advances a rich progress task as bytes are read."""

    def __init__(self, file, progress, task_id):
        self.file = file
        self.progress = progress
        self.task_id = task_id

    def read(self, size=-1):
        data = self.file.read(size)
        if data:
            self.progress.update(self.task_id, advance=len(data))
        return data

    def seek(self, *args, **kwargs):
        return self.file.seek(*args, **kwargs)

    def tell(self):
        return self.file.tell()

    def close(self):
        # The underlying file is owned by the caller's with-block
        pass

    def __enter__(self):
        return self

    def __exit__(self, *args):
        pass


def safe_json_response(response, default_error="Request failed"):
    """
    Return the decoded JSON body of a successful response.

    Raises:
        CLIError: non-2xx status or a body that is not JSON
    """
    if not response.is_success:
        try:
            detail = response.json().get("error", response.text)
        except (ValueError, AttributeError, httpx.ResponseNotRead):
            detail = truncate_error(response.text, ERROR_DETAIL_MAX_LENGTH) if response.text else default_error
        raise CLIError(f"API error ({response.status_code}): {detail}")

    if response.status_code == 204 or not response.content:
        return None

    try:
        return response.json()
    except (ValueError, httpx.ResponseNotRead):
        raise CLIError(f"Invalid JSON response: {truncate_error(response.text, ERROR_SUMMARY_MAX_LENGTH)}")


def get_auth_headers(token=None) -> dict:
    token = token or os.getenv("TUBELY_TOKEN", "")
    if not token:
        raise CLIError("No access token. Pass --token or set TUBELY_TOKEN (see 'tubely token').")
    return {"Authorization": f"Bearer {token}"}


def validate_upload_file(file_path: Path, allowed: dict, max_size: int) -> tuple:
    """
    Check a local file before uploading it.

    Returns:
        (size in bytes, media type)

    Raises:
        CLIError: missing, unreadable, empty, too large or of a type the server rejects
    """
    if not file_path.is_file():
        raise CLIError(f"File not found: {file_path}")
    if not os.access(file_path, os.R_OK):
        raise CLIError(f"File is not readable: {file_path}")

    file_size = file_path.stat().st_size
    if file_size == 0:
        raise CLIError(f"File is empty: {file_path}")
    if file_size > max_size:
        raise CLIError(
            f"File too large ({file_size / (1024 * 1024):.1f} MB). "
            f"Maximum upload size is {max_size // (1024 * 1024)} MB"
        )

    media_type, _ = mimetypes.guess_type(file_path.name)
    if media_type not in allowed:
        raise CLIError(f"Unsupported file type {media_type or 'unknown'}; expected one of {', '.join(sorted(allowed))}")
    return file_size, media_type


def _upload(url: str, field: str, file_path: Path, media_type: str, file_size: int, headers: dict):
    with Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        FileSizeColumn(),
        TextColumn("/"),
        TotalFileSizeColumn(),
        TransferSpeedColumn(),
        TimeRemainingColumn(),
        console=console,
    ) as progress:
        task_id = progress.add_task("Uploading...", total=file_size)
        with open(file_path, "rb") as f:
            wrapped_file = ProgressFileWrapper(f, progress, task_id)
            files = {field: (file_path.name, wrapped_file, media_type)}
            with httpx.Client(timeout=httpx.Timeout(UPLOAD_TIMEOUT)) as client:
                return client.post(url, files=files, headers=headers)


def cmd_token(args):
    """Mint an access token locally with TUBELY_JWT_SECRET (development only)."""
    from api.auth import make_jwt

    if not JWT_SECRET:
        raise CLIError("TUBELY_JWT_SECRET is not set")
    print(make_jwt(args.user_id, JWT_SECRET, expires_in=args.expires_in))


def cmd_create(args):
    response = httpx.post(
        f"{API_BASE}/videos",
        json={"title": args.title, "description": args.description or ""},
        headers=get_auth_headers(args.token),
        timeout=DEFAULT_API_TIMEOUT,
    )
    video = safe_json_response(response)
    console.print(f"Created video [bold]{video['id']}[/bold]: {video['title']}")


def cmd_list(args):
    response = httpx.get(f"{API_BASE}/videos", headers=get_auth_headers(args.token), timeout=DEFAULT_API_TIMEOUT)
    videos_list = safe_json_response(response)

    if not videos_list:
        print("No videos found.")
        return

    table = Table("ID", "Title", "Video", "Thumbnail")
    for v in videos_list:
        title = v["title"][:38] + ".." if len(v["title"]) > 40 else v["title"]
        table.add_row(v["id"], title, "yes" if v.get("video_url") else "-", "yes" if v.get("thumbnail_url") else "-")
    console.print(table)


def cmd_delete(args):
    response = httpx.delete(
        f"{API_BASE}/videos/{args.video_id}", headers=get_auth_headers(args.token), timeout=DEFAULT_API_TIMEOUT
    )
    safe_json_response(response)
    print(f"Video {args.video_id} deleted.")


def cmd_upload_video(args):
    file_path = Path(args.file)
    file_size, media_type = validate_upload_file(file_path, ALLOWED_VIDEO_TYPES, MAX_VIDEO_UPLOAD_SIZE)
    headers = get_auth_headers(args.token)

    print(f"Uploading: {file_path.name} -> video {args.video_id}")
    response = _upload(f"{API_BASE}/videos/{args.video_id}", "video", file_path, media_type, file_size, headers)
    safe_json_response(response)

    # The upload endpoint answers with null; fetch the record to show the stored URL
    video = safe_json_response(
        httpx.get(f"{API_BASE}/videos/{args.video_id}", headers=headers, timeout=DEFAULT_API_TIMEOUT)
    )
    console.print(f"Success! Video URL: {video['video_url']}")


def cmd_upload_thumbnail(args):
    file_path = Path(args.file)
    file_size, media_type = validate_upload_file(file_path, ALLOWED_THUMBNAIL_TYPES, MAX_THUMBNAIL_UPLOAD_SIZE)
    headers = get_auth_headers(args.token)

    print(f"Uploading thumbnail: {file_path.name} -> video {args.video_id}")
    response = _upload(f"{API_BASE}/thumbnails/{args.video_id}", "thumbnail", file_path, media_type, file_size, headers)
    video = safe_json_response(response)
    console.print(f"Success! Thumbnail URL: {video['thumbnail_url']}")


def cmd_init_db(args):
    from api.database import create_tables

    create_tables()
    print("Database tables created.")


def positive_int(value: str) -> int:
    """Argparse type converter that validates positive integers."""
    i = int(value)
    if i <= 0:
        raise argparse.ArgumentTypeError(f"must be a positive integer, got {i}")
    return i


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tubely", description="Tubely CLI - upload and manage videos")
    subparsers = parser.add_subparsers(dest="command", required=True)

    token_parser = subparsers.add_parser("token", help="Mint a development access token")
    token_parser.add_argument("user_id", help="User ID to put in the token subject")
    token_parser.add_argument(
        "--expires-in", type=positive_int, default=JWT_EXPIRY_SECONDS, help="Lifetime in seconds"
    )
    token_parser.set_defaults(func=cmd_token)

    subparsers.add_parser("init-db", help="Create database tables").set_defaults(func=cmd_init_db)

    def add_token_option(p):
        p.add_argument("--token", help="Access token (default: $TUBELY_TOKEN)")

    create_parser = subparsers.add_parser("create", help="Create a video record")
    create_parser.add_argument("title", help="Video title")
    create_parser.add_argument("-d", "--description", help="Video description")
    add_token_option(create_parser)
    create_parser.set_defaults(func=cmd_create)

    list_parser = subparsers.add_parser("list", help="List your videos")
    add_token_option(list_parser)
    list_parser.set_defaults(func=cmd_list)

    del_parser = subparsers.add_parser("delete", help="Delete a video record")
    del_parser.add_argument("video_id", help="Video ID")
    add_token_option(del_parser)
    del_parser.set_defaults(func=cmd_delete)

    video_parser = subparsers.add_parser("upload-video", help="Upload the MP4 for a video record")
    video_parser.add_argument("video_id", help="Video ID")
    video_parser.add_argument("file", help="MP4 file")
    add_token_option(video_parser)
    video_parser.set_defaults(func=cmd_upload_video)

    thumb_parser = subparsers.add_parser("upload-thumbnail", help="Upload a JPEG/PNG thumbnail")
    thumb_parser.add_argument("video_id", help="Video ID")
    thumb_parser.add_argument("file", help="Image file")
    add_token_option(thumb_parser)
    thumb_parser.set_defaults(func=cmd_upload_thumbnail)

    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    try:
        args.func(args)
    except httpx.ConnectError:
        print(f"Error: Could not connect to API at {API_BASE}")
        print("Make sure the server is running (or set TUBELY_API_URL).")
        sys.exit(1)
    except httpx.TimeoutException:
        print(f"Error: Request to {API_BASE} timed out")
        print("You can increase the upload timeout with the TUBELY_UPLOAD_TIMEOUT environment variable")
        sys.exit(1)
    except CLIError as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
