# mediasync/repositories/db.py
# Local record store: one SQLite table of uploads already confirmed by the server.
# All access goes through one asyncio.Lock and runs the blocking sqlite3 call
# in a worker thread, so lookups and inserts on the same filepath never interleave.
from __future__ import annotations
import asyncio
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from mediasync.core.errors import StorageInitError, StorageWriteError
from mediasync.core.logs import get_logger
from mediasync.schemas.media import UploadRecord

log = get_logger("store")

SCHEMA = """
CREATE TABLE IF NOT EXISTS files (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    filename TEXT NOT NULL,
    filepath TEXT NOT NULL,
    upload_date TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_files_filepath ON files(filepath);
"""

_COLUMNS = "id, filename, filepath, upload_date"


def iso_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def _as_iso(value: Union[str, datetime]) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _row_to_record(row: sqlite3.Row) -> UploadRecord:
    return UploadRecord(
        record_id=row["id"],
        filename=row["filename"],
        filepath=row["filepath"],
        uploaded_at=row["upload_date"],
    )


class RecordStore:
    """
    Explicit lifecycle: initialize() before use, close() when done.
    Can be used as `async with RecordStore(path) as store:`.
    """

    def __init__(self, db_path: Union[Path, str]) -> None:
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = asyncio.Lock()

    async def __aenter__(self) -> "RecordStore":
        await self.initialize()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    # ---------- lifecycle ----------

    def _open(self) -> sqlite3.Connection:
        if str(self.db_path) != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        conn.row_factory = sqlite3.Row
        try:
            conn.executescript("""
                PRAGMA journal_mode=WAL;
                PRAGMA synchronous=NORMAL;
                PRAGMA busy_timeout=5000;
            """)
            conn.executescript(SCHEMA)
        except sqlite3.Error:
            conn.close()
            raise
        return conn

    async def initialize(self) -> None:
        """Open the database and create the table if absent. Safe to call twice."""
        async with self._lock:
            if self._conn is not None:
                return
            try:
                self._conn = await asyncio.to_thread(self._open)
            except (sqlite3.Error, OSError) as exc:
                raise StorageInitError(f"Cannot open upload database at {self.db_path}: {exc}") from exc
        log.info(f"Record store ready at {self.db_path}")

    async def close(self) -> None:
        async with self._lock:
            if self._conn is not None:
                await asyncio.to_thread(self._conn.close)
                self._conn = None

    def _require(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageWriteError("Record store is not initialized.")
        return self._conn

    # ---------- sync bodies (run in a worker thread, caller holds the lock) ----------

    def _lookup(self, conn: sqlite3.Connection, filepath: str) -> Optional[UploadRecord]:
        # newest first: duplicates should not exist, but if they do the latest wins
        row = conn.execute(
            f"SELECT {_COLUMNS} FROM files WHERE filepath = ? ORDER BY id DESC LIMIT 1",
            (filepath,),
        ).fetchone()
        return _row_to_record(row) if row else None

    def _insert(self, conn: sqlite3.Connection, filename: str, filepath: str, uploaded_at: str) -> UploadRecord:
        with conn:  # commit on success, rollback on error
            cur = conn.execute(
                "INSERT INTO files (filename, filepath, upload_date) VALUES (?, ?, ?)",
                (filename, filepath, uploaded_at),
            )
        return UploadRecord(
            record_id=cur.lastrowid,
            filename=filename,
            filepath=filepath,
            uploaded_at=uploaded_at,
        )

    def _record_upload(self, conn: sqlite3.Connection, filename: str, filepath: str,
                       uploaded_at: str) -> tuple[UploadRecord, bool]:
        conn.execute("BEGIN IMMEDIATE")
        try:
            existing = self._lookup(conn, filepath)
            if existing:
                conn.rollback()
                return existing, False
            cur = conn.execute(
                "INSERT INTO files (filename, filepath, upload_date) VALUES (?, ?, ?)",
                (filename, filepath, uploaded_at),
            )
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        return UploadRecord(record_id=cur.lastrowid, filename=filename,
                            filepath=filepath, uploaded_at=uploaded_at), True

    def _list_all(self, conn: sqlite3.Connection) -> list[UploadRecord]:
        rows = conn.execute(f"SELECT {_COLUMNS} FROM files ORDER BY id ASC").fetchall()
        return [_row_to_record(r) for r in rows]

    # ---------- public API ----------

    async def lookup_by_filepath(self, filepath: str) -> Optional[UploadRecord]:
        async with self._lock:
            conn = self._require()
            try:
                return await asyncio.to_thread(self._lookup, conn, filepath)
            except sqlite3.Error as exc:
                raise StorageWriteError(f"Lookup failed for {filepath}: {exc}") from exc

    async def insert(self, filename: str, filepath: str,
                     uploaded_at: Union[str, datetime]) -> UploadRecord:
        """Append one row. Raises StorageWriteError; a failed insert leaves no row behind."""
        async with self._lock:
            conn = self._require()
            try:
                return await asyncio.to_thread(self._insert, conn, filename, filepath, _as_iso(uploaded_at))
            except sqlite3.Error as exc:
                raise StorageWriteError(f"Insert failed for {filepath}: {exc}") from exc

    async def record_upload(self, filename: str, filepath: str,
                            uploaded_at: Union[str, datetime, None] = None) -> tuple[UploadRecord, bool]:
        """
        Lookup-before-insert in one transaction.
        Returns (record, created); created is False when filepath was already recorded.
        """
        async with self._lock:
            conn = self._require()
            try:
                return await asyncio.to_thread(
                    self._record_upload, conn, filename, filepath, _as_iso(uploaded_at or iso_now())
                )
            except sqlite3.Error as exc:
                raise StorageWriteError(f"Insert failed for {filepath}: {exc}") from exc

    async def list_all(self) -> list[UploadRecord]:
        async with self._lock:
            conn = self._require()
            return await asyncio.to_thread(self._list_all, conn)
