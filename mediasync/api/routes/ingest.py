# mediasync/api/routes/ingest.py
# Backend ingest endpoint:
# - POST /upload   single multipart field "file" -> {"file": "<stored name>"}
# - GET  /health
# No dedup, no content validation: the client-declared type is trusted.
from __future__ import annotations

import random
import shutil
import time
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.responses import JSONResponse

from mediasync.core.config import Settings, get_settings
from mediasync.core.logs import get_logger
from mediasync.schemas.media import ErrorMessage, IngestResponse

log = get_logger("ingest")

public_router = APIRouter(tags=["ingest"])   # mounted without prefix in main

_CHUNK = 1024 * 1024


def stored_name(field: str, original: str) -> str:
    """<field>-<epoch ms>-<random>.<original ext>; no extension if the original has none."""
    suffix = f"{int(time.time() * 1000)}-{random.randint(0, 10**9)}"
    ext = Path(original or "").suffix.lower()
    return f"{field}-{suffix}{ext}"


def _unique_target(uploads_dir: Path, field: str, original: str) -> Path:
    while True:
        target = uploads_dir / stored_name(field, original)
        if not target.exists():
            return target


@public_router.post(
    "/upload",
    response_model=IngestResponse,
    responses={400: {"model": ErrorMessage}},
)
async def upload(file: Optional[UploadFile] = File(None), settings: Settings = Depends(get_settings)):
    if file is None:
        return JSONResponse({"message": "No file uploaded"}, status_code=400)

    uploads_dir = settings.uploads_dir
    uploads_dir.mkdir(parents=True, exist_ok=True)
    final = _unique_target(uploads_dir, "file", file.filename or "")

    # stream to a .part file, then rename so half-written files are never visible
    part = final.with_name(final.name + ".part")
    try:
        with part.open("wb") as out:
            while True:
                chunk = await file.read(_CHUNK)
                if not chunk:
                    break
                out.write(chunk)
        shutil.move(str(part), str(final))
    except OSError:
        part.unlink(missing_ok=True)
        log.exception(f"could not store upload {file.filename!r}")
        return JSONResponse({"message": "Could not store file"}, status_code=500)

    log.info(f"stored {file.filename!r} ({file.content_type}) as {final.name}")
    return {"file": final.name}


@public_router.get("/health")
def health():
    return {"status": "ok"}
