# mediasync/core/errors.py
# Error taxonomy shared by the pipeline components.
# Every error carries a user-facing `message`; library errors are wrapped
# at the component boundary (raise ... from exc).

from __future__ import annotations
from typing import Optional

from mediasync.schemas.media import CapturedMedia


class MediaSyncError(Exception):
    message = "Something went wrong."

    def __init__(self, message: Optional[str] = None) -> None:
        if message:
            self.message = message
        super().__init__(self.message)


class PermissionDenied(MediaSyncError):
    message = "Permission to access the media library is required."

    def __init__(self, capability: str, message: Optional[str] = None) -> None:
        self.capability = capability
        super().__init__(message)


class StorageInitError(MediaSyncError):
    message = "The local upload database could not be opened."


class StorageWriteError(MediaSyncError):
    message = "The upload could not be recorded in the local database."


class RemoteFetchError(MediaSyncError):
    message = "The curated feed could not be refreshed."


class UploadFailed(MediaSyncError):
    """Transmission failed; the captured file is kept so a retry needs no recapture."""
    message = "Upload failed. Your photo is still on the device; try again."

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        captured: Optional[CapturedMedia] = None,
        status_code: Optional[int] = None,
    ) -> None:
        self.captured = captured
        self.status_code = status_code
        super().__init__(message)


class PersistFailed(MediaSyncError):
    """The server has the file but the local record is missing. Do not re-upload."""
    message = (
        "The file reached the server but could not be saved locally. "
        "Retrying the upload would create a duplicate on the server."
    )

    def __init__(
        self,
        filename: str,
        captured: CapturedMedia,
        message: Optional[str] = None,
    ) -> None:
        self.filename = filename
        self.captured = captured
        super().__init__(message)


class CaptureInProgress(MediaSyncError):
    message = "A capture is already in progress."
