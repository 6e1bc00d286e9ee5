#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
mediasync - gallery sync + upload from the command line.

Examples:
  mediasync serve                       # run the ingest backend (POST /upload)
  mediasync gallery                     # merged device + uploads + remote feed
  mediasync gallery --watch             # keep polling the feed, reprint on change
  mediasync upload ~/DCIM/IMG_0001.jpg  # capture -> upload -> record
  mediasync records --limit 20          # local upload records

  mediasync --config ./mediasync.toml -v gallery

Exit codes for `upload`: 0 ok/cancelled, 1 upload failed, 2 uploaded but not
recorded locally (do not re-upload), 3 permission denied, 4 busy, 5 storage.
"""

from __future__ import annotations
import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional

from mediasync.core.config import Settings, load_settings, use_settings
from mediasync.core.errors import (
    CaptureInProgress,
    PermissionDenied,
    PersistFailed,
    StorageInitError,
    StorageWriteError,
    UploadFailed,
)
from mediasync.core.logs import get_logger, setup_logging
from mediasync.repositories.db import RecordStore
from mediasync.schemas.media import MediaItem
from mediasync.services.gallery import GallerySession
from mediasync.services.upload import PathCamera
from mediasync.utils.table import print_table

log = get_logger("cli")

EXIT_OK = 0
EXIT_UPLOAD_FAILED = 1
EXIT_PERSIST_FAILED = 2
EXIT_PERMISSION = 3
EXIT_BUSY = 4
EXIT_STORAGE = 5

GALLERY_HEADERS = ["id", "origin", "kind", "captured_at", "source_ref"]


def _gallery_rows(items: list[MediaItem]) -> list[tuple]:
    return [
        (i.id, i.origin, i.kind,
         i.captured_at.isoformat(timespec="seconds") if i.captured_at else None,
         i.source_ref)
        for i in items
    ]


class _NoCamera:
    """Gallery-only sessions never capture."""
    async def request_permission(self) -> bool:
        return False

    async def capture(self):
        return None


# ------- commands -------

def cmd_serve(settings: Settings, args) -> int:
    import uvicorn

    # the app reads settings through get_settings(); pin the ones we loaded
    use_settings(settings)
    uvicorn.run("mediasync.main:app", host=args.host or settings.server_host,
                port=args.port or settings.server_port, log_level="info")
    return EXIT_OK


async def _gallery(settings: Settings, args) -> int:
    session = GallerySession.from_settings(settings, camera=_NoCamera())
    try:
        await session.start(poll=args.watch)
    except StorageInitError as e:
        log.error(f"FATAL: {e.message}")
        await session.close()
        return EXIT_STORAGE
    try:
        for notice in session.notices:
            log.warning(notice.message)
        print_table(GALLERY_HEADERS, _gallery_rows(session.items))
        if not args.watch:
            return EXIT_OK

        changed = asyncio.Event()
        session.reconciler.subscribe(lambda items, rev: changed.set())
        while True:
            await changed.wait()
            changed.clear()
            print(f"\n=== revision {session.reconciler.revision} ===")
            print_table(GALLERY_HEADERS, _gallery_rows(session.items))
    finally:
        await session.close()


def cmd_gallery(settings: Settings, args) -> int:
    try:
        return asyncio.run(_gallery(settings, args))
    except KeyboardInterrupt:
        return EXIT_OK


async def _upload(settings: Settings, args) -> int:
    session = GallerySession.from_settings(settings, camera=PathCamera(Path(args.path)))
    try:
        await session.start(poll=False)
    except StorageInitError as e:
        log.error(f"FATAL: {e.message}")
        await session.close()
        return EXIT_STORAGE
    try:
        try:
            item = await session.capture()
        except PermissionDenied as e:
            log.error(e.message)
            return EXIT_PERMISSION
        except UploadFailed as e:
            log.error(f"{e.message} ({e})")
            return EXIT_UPLOAD_FAILED
        except PersistFailed as e:
            log.error(f"{e.message} Server file: {e.filename}")
            return EXIT_PERSIST_FAILED
        except CaptureInProgress as e:
            log.error(e.message)
            return EXIT_BUSY
        except StorageWriteError as e:
            log.error(f"{e.message} ({e})")
            return EXIT_STORAGE
        if item is None:
            log.info("Nothing captured.")
            return EXIT_OK
        print_table(GALLERY_HEADERS, _gallery_rows([item]))
        return EXIT_OK
    finally:
        await session.close()


def cmd_upload(settings: Settings, args) -> int:
    return asyncio.run(_upload(settings, args))


async def _records(settings: Settings, args) -> int:
    try:
        async with RecordStore(settings.db_path) as store:
            records = await store.list_all()
    except StorageInitError as e:
        log.error(f"FATAL: {e.message}")
        return EXIT_STORAGE
    if args.limit:
        records = records[-args.limit:]
    print_table(["id", "filename", "filepath", "upload_date"],
                [(r.record_id, r.filename, r.filepath, r.uploaded_at) for r in records])
    return EXIT_OK


def cmd_records(settings: Settings, args) -> int:
    return asyncio.run(_records(settings, args))


# ------- main -------

def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="mediasync", description="Gallery sync + upload")
    ap.add_argument("--config", help="Path to mediasync.toml (default: MEDIASYNC_CONFIG or auto-detect)")
    ap.add_argument("--log-level", default=None, choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
                    help="Force log level (overrides -v/-q)")
    ap.add_argument("-v", "--verbose", action="count", default=0, help="Increase console verbosity")
    ap.add_argument("-q", "--quiet", action="store_true", help="Minimal console output")
    ap.add_argument("--json-logs", action="store_true", help="Write JSON-formatted logs to the log file")
    ap.add_argument("--no-log-file", action="store_true", help="Console logging only")
    sub = ap.add_subparsers(dest="cmd", required=True)

    sps = sub.add_parser("serve", help="Run the ingest backend (POST /upload)")
    sps.add_argument("--host", default=None)
    sps.add_argument("--port", type=int, default=None)
    sps.set_defaults(func=cmd_serve)

    spg = sub.add_parser("gallery", help="Print the merged gallery")
    spg.add_argument("--watch", action="store_true", help="Keep polling the feed and reprint on change")
    spg.set_defaults(func=cmd_gallery)

    spu = sub.add_parser("upload", help="Capture -> upload -> record one file")
    spu.add_argument("path")
    spu.set_defaults(func=cmd_upload)

    spr = sub.add_parser("records", help="List local upload records")
    spr.add_argument("--limit", type=int, default=0)
    spr.set_defaults(func=cmd_records)
    return ap


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings(Path(args.config).expanduser() if args.config else None)
    setup_logging(
        logs_dir=None if args.no_log_file else settings.logs_dir,
        verbose=args.verbose,
        quiet=args.quiet,
        log_level=args.log_level,
        json_logs=args.json_logs,
    )
    log.debug(repr(settings))
    return args.func(settings, args)


if __name__ == "__main__":
    sys.exit(main())
