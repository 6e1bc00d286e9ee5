# mediasync/core/config.py
# Loads mediasync settings from a TOML file (defaults + overrides).
# - Reads MEDIASYNC_CONFIG or looks for mediasync.toml (CWD, parents, package dir)
# - Normalizes extension lists (lowercase, ensure leading dot)
# - Relative paths resolve under [paths].data_dir
# - Nothing here touches the filesystem beyond reading the TOML file

from __future__ import annotations
from pathlib import Path
import os
from typing import Optional
import tomli as tomllib  # py3.11+: tomllib in stdlib; using tomli for compatibility

from mediasync.schemas.media import MediaKind


# -------------------- Defaults (used if TOML omits keys) --------------------
_DEFAULTS = {
    "paths": {
        "data_dir": "./data",
        "db_path": "db/uploads.sqlite3",
        "uploads_subdir": "uploads",
        "device_subdir": "media/DCIM",
        "logs_subdir": "logs",
    },
    "server": {
        "url": "http://localhost:5000",
        "host": "0.0.0.0",
        "port": 5000,
        "field": "file",
        "timeout": 30,
    },
    "feed": {
        "enabled": True,
        "url": "https://api.pexels.com/v1/curated",
        "api_key": "",
        "interval_seconds": 120,
        "timeout": 15,
    },
    "device": {
        "allow_file_dates": False,   # mtime fallback when EXIF has no capture time
        "recursive": True,
        "ignore_hidden": True,
    },
    "ext": {
        "image": ["jpg", "jpeg", "png", "gif", "webp", "heic", "heif", "tif", "tiff", "avif", "bmp"],
        "video": ["mp4", "mov", "m4v", "avi", "webm", "mkv", "3gp"],
    },
}

FEED_API_KEY_ENV = "MEDIASYNC_FEED_API_KEY"


def _find_config_path() -> Path | None:
    """Find mediasync.toml without user input.
    Priority:
      1) MEDIASYNC_CONFIG
      2) ./mediasync.toml (CWD)
      3) ascend parents from CWD looking for mediasync.toml
      4) mediasync/mediasync.toml (package dir)
    """
    cfg_env = os.getenv("MEDIASYNC_CONFIG")
    if cfg_env:
        p = Path(cfg_env).expanduser()
        if p.exists():
            return p

    cur = Path.cwd()
    while True:
        candidate = cur / "mediasync.toml"
        if candidate.exists():
            return candidate
        if cur.parent == cur:
            break  # reached filesystem root
        cur = cur.parent

    pkg_default = Path(__file__).resolve().parents[1] / "mediasync.toml"
    if pkg_default.exists():
        return pkg_default

    return None


def _load_config_toml(path: Optional[Path] = None) -> dict:
    """Load TOML from `path` (or the best match) or return {} if not found."""
    path = path or _find_config_path()
    if path and path.exists():
        with path.open("rb") as f:
            return tomllib.load(f)
    return {}


def norm_ext_list(exts: list[str]) -> set[str]:
    """
    Normalize extension strings: ensure leading dot and lowercase.
    Accepts 'jpg' or '.jpg' and returns '.jpg'.
    """
    out: set[str] = set()
    for e in exts:
        e = (e or "").strip().lower()
        if not e:
            continue
        if not e.startswith("."):
            e = "." + e
        out.add(e)
    return out


IMAGE_EXT = norm_ext_list(_DEFAULTS["ext"]["image"])
VIDEO_EXT = norm_ext_list(_DEFAULTS["ext"]["video"])


def kind_for_name(name: str, video_ext: set[str] = VIDEO_EXT) -> MediaKind:
    """Classify by extension; anything that is not a known video is a photo."""
    suffix = Path(name.split("?", 1)[0]).suffix.lower()
    return MediaKind.video if suffix in video_ext else MediaKind.photo


def _resolve_under(base: Path, value: str) -> Path:
    p = Path(value).expanduser()
    return p if p.is_absolute() else (base / p)


class Settings:
    """
    Effective settings. Build with `load_settings()` (reads TOML) or
    `Settings.from_dict()` (tests, embedding). Paths are resolved relative
    to data_dir when given as relative strings.
    """
    def __init__(self, cfg: Optional[dict] = None) -> None:
        cfg = cfg or {}
        paths = {**_DEFAULTS["paths"], **cfg.get("paths", {})}
        server = {**_DEFAULTS["server"], **cfg.get("server", {})}
        feed = {**_DEFAULTS["feed"], **cfg.get("feed", {})}
        device = {**_DEFAULTS["device"], **cfg.get("device", {})}
        ext = {**_DEFAULTS["ext"], **cfg.get("ext", {})}

        # paths
        self.data_dir: Path = Path(paths["data_dir"]).expanduser().resolve()
        self.db_path: Path = _resolve_under(self.data_dir, paths["db_path"])
        self.uploads_dir: Path = _resolve_under(self.data_dir, paths["uploads_subdir"])
        self.device_dir: Path = _resolve_under(self.data_dir, paths["device_subdir"])
        self.logs_dir: Path = _resolve_under(self.data_dir, paths["logs_subdir"])

        # ingest server (both sides: where the client posts, where uvicorn binds)
        self.server_url: str = str(server["url"]).rstrip("/")
        self.server_host: str = str(server["host"])
        self.server_port: int = int(server["port"])
        self.upload_field: str = str(server["field"])
        self.upload_timeout: float = float(server["timeout"])

        # remote curated feed; env wins over TOML for the credential
        self.feed_enabled: bool = bool(feed["enabled"])
        self.feed_url: str = str(feed["url"])
        self.feed_api_key: str = os.getenv(FEED_API_KEY_ENV) or str(feed["api_key"]).strip()
        self.feed_interval: float = float(feed["interval_seconds"])
        self.feed_timeout: float = float(feed["timeout"])

        # device media store
        self.allow_file_dates: bool = bool(device["allow_file_dates"])
        self.recursive: bool = bool(device["recursive"])
        self.ignore_hidden: bool = bool(device["ignore_hidden"])

        self.image_ext: set[str] = norm_ext_list(list(ext.get("image", [])))
        self.video_ext: set[str] = norm_ext_list(list(ext.get("video", [])))

    @classmethod
    def from_dict(cls, cfg: dict) -> "Settings":
        return cls(cfg)

    def __repr__(self) -> str:
        return (
            f"Settings(data_dir={self.data_dir}, db_path={self.db_path}, "
            f"uploads_dir={self.uploads_dir}, device_dir={self.device_dir}, "
            f"server_url={self.server_url}, feed_enabled={self.feed_enabled}, "
            f"feed_url={self.feed_url}, feed_api_key={'***' if self.feed_api_key else ''}, "
            f"feed_interval={self.feed_interval})"
        )


def load_settings(path: Optional[Path] = None) -> Settings:
    """Read mediasync.toml (explicit path or discovered) and merge with defaults."""
    return Settings(_load_config_toml(path))


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Process-wide settings for the HTTP app; overridable as a FastAPI dependency."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def use_settings(settings: Settings) -> None:
    """Pin the settings get_settings() hands out (CLI --config, embedding)."""
    global _settings
    _settings = settings
