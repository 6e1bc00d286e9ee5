# mediasync/services/device.py
# Device media store (a camera-roll folder) and the reader that turns its
# assets into MediaItems with device-namespaced ids.
from __future__ import annotations
import asyncio
import os
import urllib.parse
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional, Protocol

from mediasync.core.config import IMAGE_EXT, VIDEO_EXT
from mediasync.core.errors import PermissionDenied
from mediasync.core.logs import get_logger
from mediasync.schemas.media import GeoPoint, MediaItem, MediaKind, Origin
from mediasync.services.metadata import read_capture_info

log = get_logger("device")

DEVICE_PREFIX = "device:"


@dataclass
class DeviceAsset:
    """What the OS media store exposes for one asset."""
    native_id: str
    uri: str
    kind: MediaKind
    captured_at: Optional[datetime] = None
    location: Optional[GeoPoint] = None


class DeviceMediaStore(Protocol):
    def request_permission(self) -> bool: ...
    def get_assets(self, kinds: set[MediaKind]) -> list[DeviceAsset]: ...


def is_hidden(p: Path) -> bool:
    return any(part.startswith('.') for part in p.parts)


class FolderMediaStore:
    """
    A directory standing in for the OS media store (mounted DCIM, ~/Pictures, ...).
    Native ids are the URL-quoted path relative to the root, so they survive restarts.
    """

    def __init__(self, root: Path, *, recursive: bool = True, ignore_hidden: bool = True,
                 allow_file_dates: bool = False,
                 image_ext: set[str] = IMAGE_EXT, video_ext: set[str] = VIDEO_EXT) -> None:
        self.root = Path(root)
        self.recursive = recursive
        self.ignore_hidden = ignore_hidden
        self.allow_file_dates = allow_file_dates
        self.image_ext = image_ext
        self.video_ext = video_ext

    def request_permission(self) -> bool:
        return self.root.is_dir() and os.access(self.root, os.R_OK | os.X_OK)

    def _kind(self, p: Path) -> Optional[MediaKind]:
        e = p.suffix.lower()
        if e in self.image_ext:
            return MediaKind.photo
        if e in self.video_ext:
            return MediaKind.video
        return None

    def get_assets(self, kinds: set[MediaKind]) -> list[DeviceAsset]:
        files = self.root.rglob('*') if self.recursive else self.root.glob('*')
        assets: list[DeviceAsset] = []
        # sorted -> enumeration order is stable across runs
        for p in sorted(files):
            if not p.is_file():
                continue
            rel = p.relative_to(self.root)
            if self.ignore_hidden and is_hidden(rel):
                continue
            kind = self._kind(p)
            if kind is None or kind not in kinds:
                continue
            try:
                assets.append(self._asset(p, rel, kind))
            except OSError as e:
                # one unreadable file must not hide the rest of the library
                log.warning(f"skipping {rel.as_posix()}: {e}")
        return assets

    def _asset(self, p: Path, rel: Path, kind: MediaKind) -> DeviceAsset:
        taken, location = None, None
        if kind is MediaKind.photo:
            taken, location = read_capture_info(p, allow_file_dates=self.allow_file_dates)
        elif self.allow_file_dates:
            taken, _ = read_capture_info(p, allow_file_dates=True)
        return DeviceAsset(
            native_id=urllib.parse.quote(rel.as_posix(), safe="/-._~"),
            uri=p.resolve(strict=True).as_uri(),
            kind=kind,
            captured_at=taken,
            location=location,
        )


def item_from_asset(asset: DeviceAsset) -> MediaItem:
    return MediaItem(
        id=f"{DEVICE_PREFIX}{asset.native_id}",
        source_ref=asset.uri,
        kind=asset.kind,
        display_uri=asset.uri,
        thumbnail_uri=asset.uri,
        captured_at=asset.captured_at,
        location=asset.location,
        origin=Origin.device,
    )


class DeviceMediaReader:
    def __init__(self, store: DeviceMediaStore) -> None:
        self.store = store

    async def request_access(self) -> bool:
        return await asyncio.to_thread(self.store.request_permission)

    async def list_assets(self) -> list[MediaItem]:
        """Photos and videos only. Raises PermissionDenied when access is refused."""
        if not await self.request_access():
            log.warning("media library access denied")
            raise PermissionDenied("media_library")
        assets = await asyncio.to_thread(self.store.get_assets, {MediaKind.photo, MediaKind.video})
        log.debug(f"device store returned {len(assets)} assets")
        return [item_from_asset(a) for a in assets]
