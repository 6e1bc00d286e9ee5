import pytest
import pytest_asyncio

from mediasync.repositories.db import RecordStore
from mediasync.schemas.media import MediaItem, MediaKind, Origin


@pytest_asyncio.fixture
async def store(tmp_path):
    s = RecordStore(tmp_path / "db" / "uploads.sqlite3")
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def make_item():
    """MediaItem factory with the boring fields filled in."""
    def _make(id, source_ref, origin=Origin.device, captured_at=None, kind=MediaKind.photo):
        return MediaItem(
            id=id,
            source_ref=source_ref,
            kind=kind,
            display_uri=source_ref,
            thumbnail_uri=source_ref,
            captured_at=captured_at,
            origin=origin,
        )
    return _make
