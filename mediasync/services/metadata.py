# mediasync/services/metadata.py
from __future__ import annotations
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Optional

from PIL import Image, ExifTags, UnidentifiedImageError

from mediasync.core.logs import get_logger
from mediasync.schemas.media import GeoPoint

log = get_logger("metadata")

_EXIF_TAGS = {v: k for k, v in ExifTags.TAGS.items()}
_EXIF_IFD = 0x8769
_GPS_IFD = 0x8825


def _parse_exif_datetime(raw) -> Optional[datetime]:
    """'YYYY:MM:DD HH:MM:SS' (EXIF) -> naive datetime, None if unparseable."""
    if not raw:
        return None
    try:
        return datetime.strptime(str(raw).strip("\x00 "), "%Y:%m:%d %H:%M:%S")
    except ValueError:
        return None


def _to_deg(rat, ref) -> Optional[float]:
    if not rat or len(rat) < 3:
        return None
    def num(v): return float(v[0]) / float(v[1]) if isinstance(v, tuple) else float(v)
    try:
        deg = num(rat[0]) + num(rat[1]) / 60.0 + num(rat[2]) / 3600.0
    except (ZeroDivisionError, TypeError, ValueError):
        return None
    if ref in ("S", "W"):
        deg *= -1.0
    return deg


@lru_cache(maxsize=1024)
def _cached_read(path_str: str, mtime_ns: int, size: int) -> tuple[Optional[datetime], Optional[GeoPoint]]:
    taken: Optional[datetime] = None
    gps_point: Optional[GeoPoint] = None
    with Image.open(path_str) as im:
        exif = im.getexif()
        if not exif:
            return None, None
        # DateTimeOriginal lives in the Exif sub-IFD; DateTime in IFD0
        sub = exif.get_ifd(_EXIF_IFD)
        taken = (_parse_exif_datetime(sub.get(_EXIF_TAGS["DateTimeOriginal"]))
                 or _parse_exif_datetime(exif.get(_EXIF_TAGS["DateTime"])))
        gps = exif.get_ifd(_GPS_IFD)
        if gps:
            lat = _to_deg(gps.get(2), gps.get(1))
            lon = _to_deg(gps.get(4), gps.get(3))
            if lat is not None and lon is not None:
                gps_point = GeoPoint(lat=lat, lon=lon)
    return taken, gps_point


def read_capture_info(p: Path, *, allow_file_dates: bool = False) -> tuple[Optional[datetime], Optional[GeoPoint]]:
    """
    Best-effort capture time + GPS for an image file.
    EXIF first; file mtime only when allow_file_dates. Never raises for bad images.
    """
    taken: Optional[datetime] = None
    location: Optional[GeoPoint] = None
    try:
        st = p.stat()
    except OSError as e:
        # gone between listing and reading
        log.debug(f"cannot stat {p.name}: {e}")
        return None, None
    try:
        taken, location = _cached_read(str(p), st.st_mtime_ns, st.st_size)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError) as e:
        # videos and unreadable images just have no EXIF
        log.debug(f"no EXIF for {p.name}: {e}")
    if taken is None and allow_file_dates:
        taken = datetime.fromtimestamp(st.st_mtime, tz=timezone.utc)
    elif taken is not None and taken.tzinfo is None:
        # EXIF has no zone; treat as UTC so device timestamps stay comparable
        taken = taken.replace(tzinfo=timezone.utc)
    return taken, location
