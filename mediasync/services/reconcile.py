# mediasync/services/reconcile.py
# Reconciliation: device + local-upload + remote snapshots -> one ordered,
# deduplicated gallery. merge() is pure; Reconciler holds the latest
# snapshot per source and recomputes on every change.
from __future__ import annotations
from datetime import timezone
from typing import Callable, Iterable, Optional

from mediasync.core.config import kind_for_name
from mediasync.core.logs import get_logger
from mediasync.schemas.media import MediaItem, Origin, UploadRecord

log = get_logger("reconcile")

UPLOAD_PREFIX = "upload:"


def item_from_record(record: UploadRecord) -> MediaItem:
    """Uploaded items are keyed by record_id, which survives restarts."""
    return MediaItem(
        id=f"{UPLOAD_PREFIX}{record.record_id}",
        source_ref=record.filepath,
        kind=kind_for_name(record.filepath),
        display_uri=record.filepath,
        thumbnail_uri=record.filepath,
        origin=Origin.local_upload,
    )


def dedupe(items: Iterable[MediaItem]) -> list[MediaItem]:
    """Drop repeated source_refs; the last one seen wins, at the first one's position."""
    by_ref: dict[str, MediaItem] = {}
    for item in items:
        by_ref[item.source_ref] = item
    return list(by_ref.values())


def _recency_key(item: MediaItem) -> tuple[bool, float]:
    # dated items first, newest first; undated keep enumeration order (stable sort)
    if item.captured_at is None:
        return (True, 0.0)
    ts = item.captured_at
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return (False, -ts.timestamp())


def _as_uploaded(upload: MediaItem, device: MediaItem) -> MediaItem:
    """Uploaded copy of a device asset; keep what only the device knows."""
    return upload.model_copy(update={
        "kind": device.kind,
        "thumbnail_uri": device.thumbnail_uri,
        "captured_at": upload.captured_at or device.captured_at,
        "location": upload.location or device.location,
    })


def merge(device_items: Iterable[MediaItem],
          remote_items: Iterable[MediaItem],
          local_upload_items: Iterable[MediaItem]) -> list[MediaItem]:
    """
    Device items (newest first), with a local upload standing in for the
    device asset it was made from; then uploads with no device counterpart;
    then the remote feed. Deterministic: same inputs, same output.
    """
    device = sorted(dedupe(device_items), key=_recency_key)
    uploads = dedupe(local_upload_items)
    remote = dedupe(remote_items)

    uploads_by_ref = {u.source_ref: u for u in uploads}
    placed: set[str] = set()

    out: list[MediaItem] = []
    for d in device:
        u = uploads_by_ref.get(d.source_ref)
        if u is not None:
            out.append(_as_uploaded(u, d))
            placed.add(u.source_ref)
        else:
            out.append(d)
    out.extend(u for u in uploads if u.source_ref not in placed)
    out.extend(remote)
    return out


Listener = Callable[[list[MediaItem], int], None]


class Reconciler:
    """
    Latest snapshot per source. A source that has not reported yet counts as
    empty; each report re-merges without waiting for the others.
    """

    def __init__(self) -> None:
        self.device: Optional[list[MediaItem]] = None
        self.remote: Optional[list[MediaItem]] = None
        self.local: Optional[list[MediaItem]] = None
        self.revision = 0
        self._items: list[MediaItem] = []
        self._listeners: list[Listener] = []

    @property
    def items(self) -> list[MediaItem]:
        return list(self._items)

    def subscribe(self, cb: Listener) -> None:
        self._listeners.append(cb)

    def _publish(self, items: list[MediaItem]) -> None:
        if items == self._items:
            return
        self._items = items
        self.revision += 1
        log.debug(f"gallery revision {self.revision}: {len(items)} items")
        for cb in list(self._listeners):
            try:
                cb(self.items, self.revision)
            except Exception:
                log.exception("gallery listener failed")

    def remerge(self) -> list[MediaItem]:
        self._publish(merge(self.device or [], self.remote or [], self.local or []))
        return self.items

    def update_device(self, items: list[MediaItem]) -> list[MediaItem]:
        self.device = list(items)
        return self.remerge()

    def update_remote(self, items: list[MediaItem]) -> list[MediaItem]:
        """Source-level replacement: the new list is the whole remote subset."""
        self.remote = list(items)
        return self.remerge()

    def update_local(self, items: list[MediaItem]) -> list[MediaItem]:
        self.local = list(items)
        return self.remerge()

    def append_upload(self, item: MediaItem) -> list[MediaItem]:
        """
        Fold one fresh upload into the current gallery without a full merge.
        Result equals merge() over the snapshots with the item added.
        """
        local = list(self.local or [])
        refs = [u.source_ref for u in local]
        if item.source_ref in refs:
            local[refs.index(item.source_ref)] = item
        else:
            local.append(item)
        self.local = local
        items = list(self._items)
        for i, cur in enumerate(items):
            if cur.source_ref != item.source_ref or cur.origin is Origin.remote:
                continue
            if cur.origin is Origin.device:
                items[i] = _as_uploaded(item, cur)
            else:
                # re-upload of an already shown upload: replace it in place
                device = next((d for d in (self.device or []) if d.source_ref == item.source_ref), None)
                items[i] = _as_uploaded(item, device) if device else item
            break
        else:
            first_remote = next((i for i, cur in enumerate(items) if cur.origin is Origin.remote), len(items))
            items.insert(first_remote, item)
        self._publish(items)
        return self.items


def remote_subset(items: Iterable[MediaItem]) -> list[MediaItem]:
    return [i for i in items if i.origin is Origin.remote]
