"""
ffprobe / ffmpeg wrappers used by the upload pipeline.

Two operations:
- get_video_aspect_ratio: probe the first video stream's dimensions and
  classify them as landscape, portrait or other.
- process_video_for_fast_start: remux an MP4 so the moov atom sits at the
  front of the file (progressive playback), without re-encoding.

Both run the tool as a subprocess with a hard timeout. A tool that does not
finish in time is killed and reaped before MediaTimeoutError is raised.
"""

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import List, Tuple, Union

from api.enums import AspectRatio
from api.errors import truncate_error
from api.metrics import MEDIA_TOOL_DURATION_SECONDS, MEDIA_TOOL_RUNS_TOTAL
from config import (
    ERROR_DETAIL_MAX_LENGTH,
    FFMPEG_PATH,
    FFMPEG_TIMEOUT,
    FFPROBE_PATH,
    FFPROBE_TIMEOUT,
)

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

PROCESSED_SUFFIX = ".processed.mp4"


class MediaProcessingError(RuntimeError):
    """ffprobe/ffmpeg failed or produced output we could not use."""


class MediaTimeoutError(MediaProcessingError):
    """ffprobe/ffmpeg did not finish within its timeout."""


async def run_media_tool(tool: str, cmd: List[str], timeout: float) -> Tuple[bytes, bytes]:
    """Run an external media tool and return (stdout, stderr).

    Args:
        tool: Short name used in errors and metrics ("ffprobe", "ffmpeg")
        cmd: Full argument vector, cmd[0] is the executable
        timeout: Seconds to wait before killing the process

    Raises:
        MediaTimeoutError: if the process outlives the timeout
        MediaProcessingError: if the executable is missing or exits non-zero
    """
    start = time.monotonic()
    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        MEDIA_TOOL_RUNS_TOTAL.labels(tool=tool, result="failed").inc()
        raise MediaProcessingError(f"{tool} is not installed or not on PATH") from e

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        MEDIA_TOOL_RUNS_TOTAL.labels(tool=tool, result="timeout").inc()
        raise MediaTimeoutError(f"{tool} timed out after {timeout}s")
    except asyncio.CancelledError:
        # Client went away; don't leave an orphaned ffmpeg behind
        if process.returncode is None:
            process.kill()
            await process.wait()
        raise
    finally:
        MEDIA_TOOL_DURATION_SECONDS.labels(tool=tool).observe(time.monotonic() - start)

    if process.returncode != 0:
        MEDIA_TOOL_RUNS_TOTAL.labels(tool=tool, result="failed").inc()
        detail = truncate_error(stderr.decode("utf-8", errors="ignore"), ERROR_DETAIL_MAX_LENGTH)
        raise MediaProcessingError(f"{tool} failed (exit {process.returncode}): {detail}")

    MEDIA_TOOL_RUNS_TOTAL.labels(tool=tool, result="success").inc()
    return stdout, stderr


def classify_aspect_ratio(width: int, height: int) -> AspectRatio:
    """Classify dimensions by exact 16:9 match.

    Integer floor division, so 1920x1080 is landscape but 1918x1080 is other.
    """
    if width <= 0 or height <= 0:
        return AspectRatio.OTHER
    if width == 16 * height // 9:
        return AspectRatio.LANDSCAPE
    if height == 16 * width // 9:
        return AspectRatio.PORTRAIT
    return AspectRatio.OTHER


def parse_stream_dimensions(output: bytes) -> Tuple[int, int]:
    """Extract (width, height) of the first stream from ffprobe JSON output."""
    try:
        data = json.loads(output.decode("utf-8", errors="ignore"))
    except json.JSONDecodeError as e:
        raise MediaProcessingError("no video streams found: unreadable ffprobe output") from e

    streams = data.get("streams") if isinstance(data, dict) else None
    if not streams or not isinstance(streams, list) or not isinstance(streams[0], dict):
        raise MediaProcessingError("no video streams found")

    stream = streams[0]
    width = stream.get("width")
    height = stream.get("height")
    # bool is an int subclass; ffprobe never emits it for dimensions
    if not isinstance(width, int) or not isinstance(height, int) or isinstance(width, bool) or isinstance(height, bool):
        raise MediaProcessingError(f"ffprobe reported invalid dimensions: width={width!r} height={height!r}")
    return width, height


async def get_video_aspect_ratio(input_path: PathLike, timeout: float = FFPROBE_TIMEOUT) -> AspectRatio:
    """Probe a video file and classify its first video stream.

    Raises:
        MediaProcessingError: ffprobe failed, found no video stream, or gave bad dimensions
        MediaTimeoutError: ffprobe timed out
    """
    cmd = [
        FFPROBE_PATH,
        "-v",
        "error",
        "-select_streams",
        "v:0",
        "-show_entries",
        "stream=width,height",
        "-of",
        "json",
        str(input_path),
    ]
    stdout, _ = await run_media_tool("ffprobe", cmd, timeout)
    width, height = parse_stream_dimensions(stdout)
    aspect = classify_aspect_ratio(width, height)
    logger.debug(f"Probed {width}x{height} -> {aspect.value}")
    return aspect


def fast_start_output_path(input_path: PathLike) -> Path:
    return Path(f"{input_path}{PROCESSED_SUFFIX}")


async def process_video_for_fast_start(input_path: PathLike, timeout: float = FFMPEG_TIMEOUT) -> Path:
    """Remux with ``-movflags faststart`` into ``<input>.processed.mp4``.

    Streams are copied, not re-encoded. Returns the output path; the caller
    owns the output file and must remove it.
    """
    output_path = fast_start_output_path(input_path)
    cmd = [
        FFMPEG_PATH,
        "-y",
        "-i",
        str(input_path),
        "-movflags",
        "faststart",
        "-map_metadata",
        "0",
        "-codec",
        "copy",
        "-f",
        "mp4",
        str(output_path),
    ]
    await run_media_tool("ffmpeg", cmd, timeout)
    return output_path
