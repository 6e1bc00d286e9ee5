# mediasync/services/feed.py
# Remote curated feed: fetch + normalize, and the poller that keeps the
# remote subset fresh (stale-retain on failure).
from __future__ import annotations
import asyncio
import inspect
from typing import Any, Callable, Optional

import httpx

from mediasync.core.errors import RemoteFetchError
from mediasync.core.logs import component_logger, get_logger
from mediasync.schemas.media import MediaItem, MediaKind, Origin

log = get_logger("feed")

REMOTE_PREFIX = "remote:"

# Pexels-style `src` keys, best first
_FULL_KEYS = ("original", "large2x", "large")
_THUMB_KEYS = ("medium", "small", "tiny")


def _first(src: dict, keys: tuple[str, ...]) -> Optional[str]:
    for k in keys:
        v = src.get(k)
        if isinstance(v, str) and v:
            return v
    return None


def item_from_photo(photo: dict) -> Optional[MediaItem]:
    """One feed descriptor -> MediaItem; None if it lacks an id or either URI."""
    pid = photo.get("id")
    src = photo.get("src")
    if pid is None or not isinstance(src, dict):
        return None
    full = _first(src, _FULL_KEYS)
    thumb = _first(src, _THUMB_KEYS)
    if not full or not thumb:
        return None
    return MediaItem(
        id=f"{REMOTE_PREFIX}{pid}",
        source_ref=full,
        kind=MediaKind.photo,
        display_uri=full,
        thumbnail_uri=thumb,
        origin=Origin.remote,
    )


def parse_feed(payload: Any) -> list[MediaItem]:
    """Accept a bare list of descriptors or an object with a `photos` list."""
    if isinstance(payload, dict):
        payload = payload.get("photos")
    if not isinstance(payload, list):
        raise RemoteFetchError("Malformed feed payload: expected a list of photos.")
    items: list[MediaItem] = []
    for entry in payload:
        item = item_from_photo(entry) if isinstance(entry, dict) else None
        if item is None:
            log.warning(f"skipping malformed feed entry: {entry!r:.120}")
            continue
        items.append(item)
    return items


class RemoteFeedFetcher:
    def __init__(self, client: httpx.AsyncClient, url: str, api_key: str = "") -> None:
        self.client = client
        self.url = url
        self.api_key = api_key

    async def fetch(self) -> list[MediaItem]:
        headers = {"Authorization": self.api_key} if self.api_key else {}
        try:
            resp = await self.client.get(self.url, headers=headers)
        except httpx.HTTPError as exc:
            raise RemoteFetchError(f"Feed request failed: {exc}") from exc
        if not resp.is_success:
            raise RemoteFetchError(f"Feed returned HTTP {resp.status_code}")
        try:
            payload = resp.json()
        except ValueError as exc:
            raise RemoteFetchError("Feed returned invalid JSON") from exc
        return parse_feed(payload)


class FeedPoller:
    """
    Calls fetch() once at start, then every `interval` seconds.
    Each success hands the full result to `on_items`; failures (including
    timeouts and cancellation of the attempt) leave the previous result alone.
    """

    def __init__(self, fetcher: RemoteFeedFetcher,
                 on_items: Callable[[list[MediaItem]], Any],
                 interval: float = 120.0, timeout: Optional[float] = 15.0) -> None:
        self.fetcher = fetcher
        self.on_items = on_items
        self.interval = interval
        self.timeout = timeout
        self.polls = 0
        self.last_error: Optional[RemoteFetchError] = None
        self._task: Optional[asyncio.Task] = None

    async def poll_once(self) -> bool:
        self.polls += 1
        plog = component_logger(log, "feed", f"poll{self.polls}")
        try:
            items = await asyncio.wait_for(self.fetcher.fetch(), timeout=self.timeout)
        except asyncio.TimeoutError:
            self.last_error = RemoteFetchError(f"Feed request timed out after {self.timeout}s")
            plog.warning(f"{self.last_error.message}; keeping previous feed")
            return False
        except RemoteFetchError as exc:
            self.last_error = exc
            plog.warning(f"{exc.message}; keeping previous feed")
            return False
        except Exception as exc:
            # e.g. httpx.InvalidURL from a bad [feed].url; the timer keeps running
            self.last_error = RemoteFetchError(f"Feed fetch crashed: {exc!r}")
            self.last_error.__cause__ = exc
            plog.exception("unexpected feed failure; keeping previous feed")
            return False
        self.last_error = None
        result = self.on_items(items)
        if inspect.isawaitable(result):
            await result
        plog.debug(f"feed refreshed: {len(items)} items")
        return True

    async def _run(self, skip_first: bool) -> None:
        if not skip_first:
            await self.poll_once()
        while True:
            await asyncio.sleep(self.interval)
            await self.poll_once()

    def start(self, *, skip_first: bool = False) -> asyncio.Task:
        """Start the timer loop; skip_first when the caller already did the startup fetch."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(skip_first), name="feed-poller")
        return self._task

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
