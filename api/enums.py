"""
Enums shared by the API and the media worker.
Using str-based enums so values serialize directly into keys and JSON.
"""

from enum import Enum


class AspectRatio(str, Enum):
    """Aspect ratio classification of an uploaded video; used as the object key prefix."""

    LANDSCAPE = "landscape"
    PORTRAIT = "portrait"
    OTHER = "other"


class UploadKind(str, Enum):
    VIDEO = "video"
    THUMBNAIL = "thumbnail"
