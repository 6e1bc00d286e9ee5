# mediasync/core/logs.py
from __future__ import annotations
import json
import logging
import logging.handlers
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

LOGGER_NAME = "mediasync"


def get_logger(area: str) -> logging.Logger:
    return logging.getLogger(f"{LOGGER_NAME}.{area}")


def component_logger(logger: logging.Logger, component: str, token: str = "-") -> logging.LoggerAdapter:
    """Attach component + token (capture id, poll number) to every record."""
    return logging.LoggerAdapter(logger, {"component": component, "token": token})


class EnsureContext(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "component"): record.component = record.name.rsplit(".", 1)[-1]
        if not hasattr(record, "token"): record.token = "-"
        return True


class MaxLevelFilter(logging.Filter):
    """Allow records up to and including `levelno` (drop anything higher)."""
    def __init__(self, levelno: int): super().__init__(); self.levelno = levelno
    def filter(self, record: logging.LogRecord) -> bool: return record.levelno <= self.levelno


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "msg": record.getMessage(),
            "name": record.name,
            "component": getattr(record, "component", None),
            "token": getattr(record, "token", None),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def setup_logging(logs_dir: Optional[Path], verbose: int = 0, quiet: bool = False,
                  log_level: Optional[str] = None, json_logs: bool = False) -> logging.Logger:
    """
    Console/File matrix:
      - -q:   console = silent;        file = INFO only (drop WARNING+)
      - none: console = INFO+;         file = INFO+
      - -v:   console = INFO+;         file = DEBUG
      - -vv:  console = DEBUG;         file = DEBUG
      - --log-level=X: both console & file use X (no special filters)
    No file handler when logs_dir is None.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    for h in list(logger.handlers): logger.removeHandler(h)

    file_max = None
    if log_level:
        console_level = getattr(logging, log_level.upper())
        file_level = console_level
    elif quiet:
        console_level = logging.CRITICAL   # prints nothing (we don't emit CRITICAL)
        file_level = logging.INFO
        file_max = MaxLevelFilter(logging.INFO)
    elif verbose >= 2:
        console_level = logging.DEBUG
        file_level = logging.DEBUG
    elif verbose == 1:
        console_level = logging.INFO
        file_level = logging.DEBUG
    else:
        # WARNING+ stays on the console: CLI notices and failures are logged, not printed
        console_level = logging.INFO
        file_level = logging.INFO

    ch = logging.StreamHandler()
    ch.setLevel(console_level)
    ch.addFilter(EnsureContext())
    ch.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(ch)

    if logs_dir is None:
        return logger

    logs_dir.mkdir(parents=True, exist_ok=True)
    log_path = logs_dir / "mediasync.log"
    fh = logging.handlers.TimedRotatingFileHandler(
        log_path, when="midnight", backupCount=14, encoding="utf-8"
    )
    fh.setLevel(file_level)
    fh.addFilter(EnsureContext())
    if file_max: fh.addFilter(file_max)
    if json_logs:
        fh.setFormatter(JsonFormatter())
    else:
        fh.setFormatter(logging.Formatter(
            "%(asctime)s [%(levelname)s] [%(component)s:%(token)s] %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S"
        ))
    logger.addHandler(fh)

    logger.debug(f"Log file: {log_path}")
    return logger
