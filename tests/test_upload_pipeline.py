import asyncio
from pathlib import Path

import httpx
import pytest

from mediasync.core.errors import (
    CaptureInProgress,
    PermissionDenied,
    PersistFailed,
    StorageWriteError,
    UploadFailed,
)
from mediasync.repositories.db import RecordStore
from mediasync.schemas.media import CapturedMedia, MediaKind, Origin
from mediasync.services.reconcile import Reconciler
from mediasync.services.upload import IngestClient, PathCamera, UploadPipeline, UploadState

SERVER = "http://ingest.test"


class FakeCamera:
    def __init__(self, captured=None, granted=True):
        self.captured = captured
        self.granted = granted
        self.captures = 0

    async def request_permission(self):
        return self.granted

    async def capture(self):
        self.captures += 1
        await asyncio.sleep(0)
        return self.captured


class FakeLibrary:
    def __init__(self, granted=True):
        self.granted = granted

    def request_permission(self):
        return self.granted


class IngestServer:
    """MockTransport handler that records every upload it sees."""
    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request):
        self.requests.append(request)
        if self.responses:
            return self.responses.pop(0)
        return httpx.Response(200, json={"file": f"file-{len(self.requests)}.jpg"})


@pytest.fixture
def photo(tmp_path):
    p = tmp_path / "DCIM" / "IMG001.jpg"
    p.parent.mkdir()
    p.write_bytes(b"\xff\xd8fake-jpeg")
    return CapturedMedia(uri=p.as_uri(), path=p, kind=MediaKind.photo)


def _pipeline(store, server, camera, library=None, reconciler=None):
    client = httpx.AsyncClient(transport=httpx.MockTransport(server))
    return UploadPipeline(
        camera=camera,
        library=library or FakeLibrary(),
        ingest=IngestClient(client, SERVER),
        store=store,
        on_uploaded=reconciler.append_upload if reconciler else None,
    )


@pytest.mark.asyncio
async def test_successful_capture_uploads_and_records(store, photo):
    server = IngestServer(httpx.Response(200, json={"file": "file-1700000000000-42.jpg"}))
    reconciler = Reconciler()
    pipeline = _pipeline(store, server, FakeCamera(photo), reconciler=reconciler)

    item = await pipeline.capture()

    assert item.origin is Origin.local_upload
    assert item.source_ref == photo.uri
    rec = await store.lookup_by_filepath(photo.uri)
    assert rec.filename == "file-1700000000000-42.jpg"
    assert item.id == f"upload:{rec.record_id}"
    assert pipeline.state is UploadState.idle
    assert pipeline.pending is None
    assert [i.id for i in reconciler.items] == [item.id]

    req = server.requests[0]
    assert req.url.path == "/upload"
    assert b'name="file"' in req.content
    assert b"image/jpeg" in req.content


@pytest.mark.asyncio
async def test_http_400_is_upload_failed_without_store_write(store, photo):
    server = IngestServer(httpx.Response(400, json={"message": "No file uploaded"}))
    pipeline = _pipeline(store, server, FakeCamera(photo))

    with pytest.raises(UploadFailed) as exc_info:
        await pipeline.capture()

    assert exc_info.value.status_code == 400
    assert exc_info.value.captured == photo
    assert await store.list_all() == []
    assert pipeline.state is UploadState.error
    assert pipeline.pending == photo
    assert photo.path.exists()


@pytest.mark.asyncio
async def test_transport_failure_is_upload_failed(store, photo):
    def server(request):
        raise httpx.ConnectError("connection refused", request=request)

    pipeline = _pipeline(store, server, FakeCamera(photo))
    with pytest.raises(UploadFailed):
        await pipeline.capture()
    assert await store.list_all() == []
    assert pipeline.pending == photo


@pytest.mark.asyncio
async def test_retry_reuses_captured_file(store, photo):
    server = IngestServer(httpx.Response(500, json={"message": "disk full"}))
    camera = FakeCamera(photo)
    pipeline = _pipeline(store, server, camera)

    with pytest.raises(UploadFailed):
        await pipeline.capture()
    item = await pipeline.retry()

    assert camera.captures == 1
    assert len(server.requests) == 2
    assert item is not None
    assert len(await store.list_all()) == 1


@pytest.mark.asyncio
async def test_cancelled_capture_has_no_side_effects(store):
    server = IngestServer()
    pipeline = _pipeline(store, server, FakeCamera(None))

    assert await pipeline.capture() is None
    assert server.requests == []
    assert await store.list_all() == []
    assert pipeline.state is UploadState.idle


@pytest.mark.asyncio
@pytest.mark.parametrize("camera_ok, library_ok, missing", [
    (False, True, "camera"),
    (True, False, "media_library"),
])
async def test_permission_denied(store, photo, camera_ok, library_ok, missing):
    server = IngestServer()
    camera = FakeCamera(photo, granted=camera_ok)
    pipeline = _pipeline(store, server, camera, library=FakeLibrary(library_ok))

    with pytest.raises(PermissionDenied) as exc_info:
        await pipeline.capture()

    assert exc_info.value.capability == missing
    assert camera.captures == 0
    assert server.requests == []
    assert pipeline.pending is None
    assert pipeline.state is UploadState.error


@pytest.mark.asyncio
async def test_second_capture_while_busy_is_rejected(store, photo):
    server = IngestServer()
    pipeline = _pipeline(store, server, FakeCamera(photo))

    results = await asyncio.gather(pipeline.capture(), pipeline.capture(), return_exceptions=True)

    assert sum(isinstance(r, CaptureInProgress) for r in results) == 1
    assert len(server.requests) == 1
    assert len(await store.list_all()) == 1


@pytest.mark.asyncio
async def test_capturing_same_file_again_does_not_reupload(store, photo):
    server = IngestServer()
    pipeline = _pipeline(store, server, FakeCamera(photo))

    first = await pipeline.capture()
    second = await pipeline.capture()

    assert len(server.requests) == 1
    assert second.id == first.id
    assert len(await store.list_all()) == 1


class BrokenStore:
    """Lookups work, writes fail (store became unavailable mid-flight)."""
    def __init__(self, inner):
        self.inner = inner
        self.fail = True

    async def lookup_by_filepath(self, filepath):
        return await self.inner.lookup_by_filepath(filepath)

    async def record_upload(self, filename, filepath, uploaded_at=None):
        if self.fail:
            raise StorageWriteError("database is locked")
        return await self.inner.record_upload(filename, filepath, uploaded_at)


@pytest.mark.asyncio
async def test_persist_failure_is_distinct_and_recoverable(store, photo):
    server = IngestServer(httpx.Response(200, json={"file": "file-1-1.jpg"}))
    broken = BrokenStore(store)
    pipeline = _pipeline(broken, server, FakeCamera(photo))

    with pytest.raises(PersistFailed) as exc_info:
        await pipeline.capture()

    err = exc_info.value
    assert not isinstance(err, UploadFailed)
    assert err.filename == "file-1-1.jpg"
    assert err.message != UploadFailed.message
    assert pipeline.pending is None
    assert pipeline.state is UploadState.error

    broken.fail = False
    item = await pipeline.recover_persist()
    assert len(server.requests) == 1
    rec = await store.lookup_by_filepath(photo.uri)
    assert rec.filename == "file-1-1.jpg"
    assert item.id == f"upload:{rec.record_id}"
    assert pipeline.unpersisted is None


@pytest.mark.asyncio
async def test_response_without_filename_is_upload_failed(store, photo):
    server = IngestServer(httpx.Response(200, json={"ok": True}))
    pipeline = _pipeline(store, server, FakeCamera(photo))
    with pytest.raises(UploadFailed):
        await pipeline.capture()
    assert await store.list_all() == []


@pytest.mark.asyncio
async def test_video_is_declared_as_video(store, tmp_path):
    p = tmp_path / "VID001.mp4"
    p.write_bytes(b"\x00\x00\x00\x18ftypmp42")
    server = IngestServer()
    camera = PathCamera(p)
    pipeline = _pipeline(store, server, camera)

    item = await pipeline.capture()

    assert item.kind is MediaKind.video
    assert b"video/mp4" in server.requests[0].content


@pytest.mark.asyncio
async def test_path_camera_missing_file_is_cancel(tmp_path):
    assert await PathCamera(Path(tmp_path / "gone.jpg")).capture() is None


@pytest.mark.asyncio
async def test_store_failure_before_upload_is_error_state(tmp_path, photo):
    server = IngestServer()
    closed = RecordStore(tmp_path / "never-opened.sqlite3")
    pipeline = _pipeline(closed, server, FakeCamera(photo))

    with pytest.raises(StorageWriteError):
        await pipeline.capture()

    assert server.requests == []
    assert pipeline.state is UploadState.error
    assert isinstance(pipeline.last_error, StorageWriteError)
    assert pipeline.pending == photo
