# mediasync/services/upload.py
# Capture -> upload -> persist.
#
#   Idle -> PermissionCheck -> Capturing -> Transmitting -> Persisting -> Idle
#                 \______________\_______________\_____________\-> Error
#
# One attempt at a time (a second capture while busy is rejected), no
# automatic retries. A failed transmission keeps the captured file for retry().
from __future__ import annotations
import asyncio
import mimetypes
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Protocol

import httpx

from mediasync.core.config import kind_for_name
from mediasync.core.errors import (
    CaptureInProgress,
    PermissionDenied,
    PersistFailed,
    StorageWriteError,
    UploadFailed,
)
from mediasync.core.logs import component_logger, get_logger
from mediasync.repositories.db import RecordStore, iso_now
from mediasync.schemas.media import CapturedMedia, MediaItem, MediaKind, UploadRecord
from mediasync.services.device import DeviceMediaStore
from mediasync.services.reconcile import item_from_record

log = get_logger("upload")


class UploadState(str, Enum):
    idle = "idle"
    permission_check = "permission_check"
    capturing = "capturing"
    transmitting = "transmitting"
    persisting = "persisting"
    error = "error"


# ---------- collaborators ----------

class Camera(Protocol):
    async def request_permission(self) -> bool: ...
    async def capture(self) -> Optional[CapturedMedia]: ...


class PathCamera:
    """
    Picker-style camera: "captures" an existing file. Reports cancellation
    (None) when the file is gone by the time capture runs.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    async def request_permission(self) -> bool:
        return True

    async def capture(self) -> Optional[CapturedMedia]:
        p = self.path.expanduser().resolve()
        if not await asyncio.to_thread(p.is_file):
            return None
        return CapturedMedia(uri=p.as_uri(), path=p, kind=kind_for_name(p.name))


def content_type_for(captured: CapturedMedia) -> str:
    guessed, _ = mimetypes.guess_type(captured.path.name)
    if guessed:
        return guessed
    ext = captured.path.suffix.lstrip(".").lower() or "octet-stream"
    return f"video/{ext}" if captured.kind is MediaKind.video else f"image/{ext}"


class IngestClient:
    """Client side of POST /upload (single multipart field, JSON {"file": name} back)."""

    def __init__(self, client: httpx.AsyncClient, base_url: str, field: str = "file") -> None:
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.field = field

    async def upload(self, captured: CapturedMedia) -> str:
        try:
            data = await asyncio.to_thread(captured.path.read_bytes)
        except OSError as exc:
            raise UploadFailed(f"Cannot read {captured.path}: {exc}", captured=captured) from exc
        name = f"media{captured.path.suffix.lower()}"
        files = {self.field: (name, data, content_type_for(captured))}
        try:
            resp = await self.client.post(f"{self.base_url}/upload", files=files)
        except httpx.HTTPError as exc:
            raise UploadFailed(f"Upload request failed: {exc}", captured=captured) from exc

        if resp.status_code != 200:
            try:
                detail = resp.json().get("message")
            except ValueError:
                detail = None
            raise UploadFailed(
                f"Upload rejected with HTTP {resp.status_code}" + (f": {detail}" if detail else ""),
                captured=captured,
                status_code=resp.status_code,
            )
        try:
            filename = resp.json()["file"]
        except (ValueError, KeyError, TypeError) as exc:
            raise UploadFailed("Upload response did not name the stored file",
                               captured=captured, status_code=resp.status_code) from exc
        if not isinstance(filename, str) or not filename:
            raise UploadFailed("Upload response did not name the stored file",
                               captured=captured, status_code=resp.status_code)
        return filename


# ---------- pipeline ----------

class UploadPipeline:
    def __init__(
        self,
        camera: Camera,
        library: DeviceMediaStore,
        ingest: IngestClient,
        store: RecordStore,
        on_uploaded: Optional[Callable[[MediaItem], object]] = None,
    ) -> None:
        self.camera = camera
        self.library = library
        self.ingest = ingest
        self.store = store
        self.on_uploaded = on_uploaded
        self.state = UploadState.idle
        self.last_error: Optional[Exception] = None
        # kept after UploadFailed so retry() does not need a new capture
        self.pending: Optional[CapturedMedia] = None
        # server name of a file whose local record failed (PersistFailed)
        self.unpersisted: Optional[PersistFailed] = None
        self._lock = asyncio.Lock()
        self._attempts = 0

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def _enter(self, state: UploadState, alog) -> None:
        alog.debug(f"{self.state.value} -> {state.value}")
        self.state = state

    def _fail(self, exc: Exception, alog) -> Exception:
        self._enter(UploadState.error, alog)
        self.last_error = exc
        return exc

    async def capture(self) -> Optional[MediaItem]:
        """
        Run one full attempt with a fresh capture.
        Returns the new gallery item, None if the user cancelled.
        Raises PermissionDenied, UploadFailed, PersistFailed, CaptureInProgress.
        """
        return await self._run(reuse_pending=False)

    async def retry(self) -> Optional[MediaItem]:
        """User-initiated re-run after UploadFailed; reuses the captured file."""
        return await self._run(reuse_pending=True)

    async def _run(self, reuse_pending: bool) -> Optional[MediaItem]:
        if self._lock.locked():
            raise CaptureInProgress()
        async with self._lock:
            self._attempts += 1
            alog = component_logger(log, "upload", f"attempt{self._attempts}")
            self.last_error = None
            self.state = UploadState.idle

            # PermissionCheck
            self._enter(UploadState.permission_check, alog)
            camera_ok = await self.camera.request_permission()
            library_ok = await asyncio.to_thread(self.library.request_permission)
            if not (camera_ok and library_ok):
                self.pending = None
                missing = "camera" if not camera_ok else "media_library"
                alog.warning(f"capture blocked: {missing} permission denied")
                raise self._fail(PermissionDenied(
                    missing,
                    "Both camera and media library permissions are required to take photos and videos.",
                ), alog)

            # Capturing
            if reuse_pending and self.pending is not None:
                captured = self.pending
                alog.info(f"retrying upload of {captured.uri}")
            else:
                self._enter(UploadState.capturing, alog)
                captured = await self.camera.capture()
                if captured is None:
                    alog.info("capture cancelled")
                    self._enter(UploadState.idle, alog)
                    return None
            self.pending = captured

            # Already uploaded? (second tap on the same asset, or an earlier run)
            try:
                existing = await self.store.lookup_by_filepath(captured.uri)
            except StorageWriteError as exc:
                # nothing sent yet; the capture stays pending for retry()
                alog.error(f"record lookup failed for {captured.uri}: {exc.message}")
                raise self._fail(exc, alog)
            if existing is not None:
                alog.info(f"{captured.uri} already uploaded as {existing.filename}; not re-sending")
                self.pending = None
                self._enter(UploadState.idle, alog)
                return self._publish(existing)

            # Transmitting
            self._enter(UploadState.transmitting, alog)
            try:
                filename = await self.ingest.upload(captured)
            except UploadFailed as exc:
                alog.error(f"upload failed for {captured.uri}: {exc.message}")
                raise self._fail(exc, alog)

            # Persisting
            self._enter(UploadState.persisting, alog)
            record = await self._persist(filename, captured, alog)

            self.pending = None
            self._enter(UploadState.idle, alog)
            alog.info(f"uploaded {captured.uri} as {record.filename} (record {record.record_id})")
            return self._publish(record)

    async def _persist(self, filename: str, captured: CapturedMedia, alog) -> UploadRecord:
        try:
            record, created = await self.store.record_upload(filename, captured.uri, iso_now())
        except StorageWriteError as exc:
            failure = PersistFailed(filename, captured)
            failure.__cause__ = exc
            self.unpersisted = failure
            # the captured file is on the server now; never offer it for retry()
            self.pending = None
            alog.error(f"server stored {filename} but local record failed: {exc.message}")
            raise self._fail(failure, alog)
        if not created:
            alog.warning(f"{captured.uri} was recorded concurrently as {record.filename}; "
                         f"server copy {filename} is a duplicate")
        self.unpersisted = None
        return record

    async def recover_persist(self) -> Optional[MediaItem]:
        """After PersistFailed: write the missing local record, no upload."""
        if self.unpersisted is None:
            return None
        if self._lock.locked():
            raise CaptureInProgress()
        async with self._lock:
            alog = component_logger(log, "upload", "recover")
            failure = self.unpersisted
            self._enter(UploadState.persisting, alog)
            record = await self._persist(failure.filename, failure.captured, alog)
            self._enter(UploadState.idle, alog)
            alog.info(f"recovered local record for {failure.filename}")
            return self._publish(record)

    def _publish(self, record: UploadRecord) -> MediaItem:
        item = item_from_record(record)
        if self.on_uploaded is not None:
            self.on_uploaded(item)
        return item
