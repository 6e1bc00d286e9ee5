from datetime import datetime, timezone

import pytest
from PIL import Image

from mediasync.core.errors import PermissionDenied
from mediasync.schemas.media import MediaKind, Origin
from mediasync.services import device
from mediasync.services.device import DeviceMediaReader, FolderMediaStore
from mediasync.services.metadata import read_capture_info


def _jpeg(p, taken=None):
    p.parent.mkdir(parents=True, exist_ok=True)
    img = Image.new("RGB", (8, 8), "red")
    exif = Image.Exif()
    if taken:
        exif[0x0132] = taken   # DateTime (IFD0)
    img.save(p, format="JPEG", exif=exif)


@pytest.fixture
def camera_roll(tmp_path):
    root = tmp_path / "DCIM"
    _jpeg(root / "100APPLE" / "IMG_0001.JPG", "2023:05:06 07:08:09")
    _jpeg(root / "IMG 0002.jpg")
    (root / "VID_0003.mp4").write_bytes(b"\x00\x00\x00\x18ftypmp42")
    (root / "notes.txt").write_text("not media")
    _jpeg(root / ".thumbnails" / "IMG_0001.jpg")
    return root


@pytest.mark.asyncio
async def test_lists_photos_and_videos_only(camera_roll):
    items = await DeviceMediaReader(FolderMediaStore(camera_roll)).list_assets()
    ids = [i.id for i in items]
    assert ids == [
        "device:100APPLE/IMG_0001.JPG",
        "device:IMG%200002.jpg",
        "device:VID_0003.mp4",
    ]
    assert all(i.origin is Origin.device for i in items)
    assert [i.kind for i in items] == [MediaKind.photo, MediaKind.photo, MediaKind.video]


@pytest.mark.asyncio
async def test_items_point_at_device_uri(camera_roll):
    items = await DeviceMediaReader(FolderMediaStore(camera_roll)).list_assets()
    first = items[0]
    assert first.source_ref.startswith("file://")
    assert first.display_uri == first.thumbnail_uri == first.source_ref
    assert first.captured_at == datetime(2023, 5, 6, 7, 8, 9, tzinfo=timezone.utc)
    assert items[1].captured_at is None


@pytest.mark.asyncio
async def test_ids_are_stable_across_reads(camera_roll):
    reader = DeviceMediaReader(FolderMediaStore(camera_roll))
    assert await reader.list_assets() == await reader.list_assets()


@pytest.mark.asyncio
async def test_non_recursive_skips_subfolders(camera_roll):
    items = await DeviceMediaReader(FolderMediaStore(camera_roll, recursive=False)).list_assets()
    assert [i.id for i in items] == ["device:IMG%200002.jpg", "device:VID_0003.mp4"]


@pytest.mark.asyncio
async def test_missing_library_is_permission_denied(tmp_path):
    reader = DeviceMediaReader(FolderMediaStore(tmp_path / "nowhere"))
    assert await reader.request_access() is False
    with pytest.raises(PermissionDenied) as exc_info:
        await reader.list_assets()
    assert exc_info.value.capability == "media_library"


@pytest.mark.asyncio
async def test_empty_library_is_empty_list(tmp_path):
    assert await DeviceMediaReader(FolderMediaStore(tmp_path)).list_assets() == []


def test_file_dates_only_when_allowed(tmp_path):
    p = tmp_path / "plain.jpg"
    _jpeg(p)
    assert read_capture_info(p) == (None, None)
    taken, _ = read_capture_info(p, allow_file_dates=True)
    assert taken is not None and taken.tzinfo is not None


def test_unreadable_image_has_no_capture_info(tmp_path):
    p = tmp_path / "broken.jpg"
    p.write_bytes(b"not really a jpeg")
    assert read_capture_info(p) == (None, None)


def _big_jpeg(p):
    p.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", (200, 200), "blue").save(p, format="JPEG")


def test_oversized_image_has_no_capture_info(tmp_path, monkeypatch):
    p = tmp_path / "panorama.jpg"
    _big_jpeg(p)
    # 200x200 is over twice this limit, so Pillow refuses to open it
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 5000)
    assert read_capture_info(p) == (None, None)


def test_vanished_file_has_no_capture_info(tmp_path):
    assert read_capture_info(tmp_path / "gone.jpg", allow_file_dates=True) == (None, None)


@pytest.mark.asyncio
async def test_oversized_image_is_still_listed(camera_roll, monkeypatch):
    _big_jpeg(camera_roll / "PANO_0004.jpg")
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 5000)
    items = await DeviceMediaReader(FolderMediaStore(camera_roll)).list_assets()
    pano = [i for i in items if i.id == "device:PANO_0004.jpg"]
    assert len(pano) == 1
    assert pano[0].captured_at is None
    assert len(items) == 4


@pytest.mark.asyncio
async def test_file_removed_while_listing_is_skipped(camera_roll, monkeypatch):
    real = device.read_capture_info

    def vanish_then_read(p, **kw):
        if p.name == "IMG 0002.jpg":
            p.unlink()
        return real(p, **kw)

    monkeypatch.setattr(device, "read_capture_info", vanish_then_read)
    items = await DeviceMediaReader(FolderMediaStore(camera_roll)).list_assets()
    assert [i.id for i in items] == ["device:100APPLE/IMG_0001.JPG", "device:VID_0003.mp4"]
