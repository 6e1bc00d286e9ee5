# mediasync/schemas/media.py
from __future__ import annotations
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel


class MediaKind(str, Enum):
    photo = "photo"
    video = "video"


class Origin(str, Enum):
    device = "device"
    remote = "remote"
    local_upload = "local_upload"


class GeoPoint(BaseModel):
    lat: float
    lon: float


class MediaItem(BaseModel):
    """One entry of the merged gallery, whatever source it came from."""
    id: str
    source_ref: str
    kind: MediaKind = MediaKind.photo
    display_uri: str
    thumbnail_uri: str
    captured_at: Optional[datetime] = None
    location: Optional[GeoPoint] = None
    origin: Origin


class UploadRecord(BaseModel):
    record_id: int
    filename: str
    filepath: str
    uploaded_at: str


class CapturedMedia(BaseModel):
    """A file produced by the camera (or picker), kept around until it is uploaded."""
    uri: str
    path: Path
    kind: MediaKind = MediaKind.photo


class IngestResponse(BaseModel):
    file: str


class ErrorMessage(BaseModel):
    message: str
