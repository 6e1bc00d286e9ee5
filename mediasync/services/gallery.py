# mediasync/services/gallery.py
# Session wiring: store + device reader + feed poller + upload pipeline,
# all feeding one Reconciler.
from __future__ import annotations
import asyncio
from typing import Optional

import httpx

from mediasync.core.config import Settings
from mediasync.core.errors import MediaSyncError, PermissionDenied
from mediasync.core.logs import get_logger
from mediasync.repositories.db import RecordStore
from mediasync.schemas.media import MediaItem
from mediasync.services.device import DeviceMediaReader, DeviceMediaStore, FolderMediaStore
from mediasync.services.feed import FeedPoller, RemoteFeedFetcher
from mediasync.services.reconcile import Reconciler, item_from_record
from mediasync.services.upload import Camera, IngestClient, UploadPipeline

log = get_logger("gallery")


class GallerySession:
    """
    start() opens the store (StorageInitError is fatal), loads the three
    sources concurrently and merges after each one lands, then starts polling.
    Errors meant for the user land in `notices`.
    """

    def __init__(
        self,
        store: RecordStore,
        device_store: DeviceMediaStore,
        ingest: IngestClient,
        camera: Camera,
        fetcher: Optional[RemoteFeedFetcher] = None,
        *,
        poll_interval: float = 120.0,
        poll_timeout: Optional[float] = 15.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.store = store
        self.device = DeviceMediaReader(device_store)
        self.reconciler = Reconciler()
        self.poller = (
            FeedPoller(fetcher, self.reconciler.update_remote,
                       interval=poll_interval, timeout=poll_timeout)
            if fetcher is not None else None
        )
        self.pipeline = UploadPipeline(camera, device_store, ingest, store,
                                       on_uploaded=self.reconciler.append_upload)
        self.notices: list[MediaSyncError] = []
        self._http_client = http_client

    @classmethod
    def from_settings(cls, settings: Settings, camera: Camera,
                      http_client: Optional[httpx.AsyncClient] = None) -> "GallerySession":
        client = http_client or httpx.AsyncClient(timeout=settings.upload_timeout)
        fetcher = None
        if settings.feed_enabled:
            fetcher = RemoteFeedFetcher(client, settings.feed_url, settings.feed_api_key)
        return cls(
            store=RecordStore(settings.db_path),
            device_store=FolderMediaStore(
                settings.device_dir,
                recursive=settings.recursive,
                ignore_hidden=settings.ignore_hidden,
                allow_file_dates=settings.allow_file_dates,
                image_ext=settings.image_ext,
                video_ext=settings.video_ext,
            ),
            ingest=IngestClient(client, settings.server_url, settings.upload_field),
            camera=camera,
            fetcher=fetcher,
            poll_interval=settings.feed_interval,
            poll_timeout=settings.feed_timeout,
            # only close what we opened
            http_client=None if http_client else client,
        )

    @property
    def items(self) -> list[MediaItem]:
        return self.reconciler.items

    async def __aenter__(self) -> "GallerySession":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    # ---------- loaders ----------

    async def _load_device(self) -> None:
        try:
            items = await self.device.list_assets()
        except PermissionDenied as exc:
            self.notices.append(exc)
            items = []
        self.reconciler.update_device(items)

    async def _load_local(self) -> None:
        records = await self.store.list_all()
        self.reconciler.update_local([item_from_record(r) for r in records])

    async def _load_remote(self) -> None:
        if self.poller is not None:
            await self.poller.poll_once()

    async def refresh_device(self) -> list[MediaItem]:
        await self._load_device()
        return self.items

    # ---------- lifecycle ----------

    async def start(self, *, poll: bool = True) -> list[MediaItem]:
        await self.store.initialize()
        # no ordering between sources; each merges as soon as it lands
        await asyncio.gather(self._load_device(), self._load_remote(), self._load_local())
        if poll and self.poller is not None:
            self.poller.start(skip_first=True)
        log.info(f"gallery ready: {len(self.items)} items")
        return self.items

    async def close(self) -> None:
        if self.poller is not None:
            await self.poller.stop()
        if self._http_client is not None:
            await self._http_client.aclose()
        await self.store.close()

    # ---------- user actions ----------

    async def capture(self) -> Optional[MediaItem]:
        return await self.pipeline.capture()

    async def retry(self) -> Optional[MediaItem]:
        return await self.pipeline.retry()

    async def recover_persist(self) -> Optional[MediaItem]:
        return await self.pipeline.recover_persist()
