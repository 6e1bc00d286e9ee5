import logging
import logging.handlers

import pytest

from mediasync.cli import EXIT_OK, EXIT_PERMISSION, EXIT_STORAGE, main
from mediasync.core.logs import LOGGER_NAME, JsonFormatter, setup_logging


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()
    logger.propagate = True


@pytest.fixture
def config(tmp_path):
    cfg = tmp_path / "mediasync.toml"
    cfg.write_text(
        '[paths]\ndata_dir = "%s"\n\n[feed]\nenabled = false\n' % tmp_path.as_posix(),
        encoding="utf-8",
    )
    return cfg


def test_records_on_fresh_store_prints_header(config, capsys):
    assert main(["--config", str(config), "--no-log-file", "records"]) == EXIT_OK
    out = capsys.readouterr().out
    assert "filename" in out and "upload_date" in out


def test_upload_without_media_library_is_permission_exit(config, tmp_path):
    shot = tmp_path / "shot.jpg"
    shot.write_bytes(b"\xff\xd8")
    # media/DCIM under data_dir does not exist
    rc = main(["--config", str(config), "--no-log-file", "-q", "upload", str(shot)])
    assert rc == EXIT_PERMISSION


def test_unopenable_store_is_storage_exit(tmp_path):
    (tmp_path / "db").mkdir()
    (tmp_path / "db" / "uploads.sqlite3").mkdir()
    cfg = tmp_path / "mediasync.toml"
    cfg.write_text('[paths]\ndata_dir = "%s"\n' % tmp_path.as_posix(), encoding="utf-8")
    assert main(["--config", str(cfg), "--no-log-file", "-q", "records"]) == EXIT_STORAGE


def test_log_file_is_written(config, tmp_path):
    main(["--config", str(config), "-v", "--json-logs", "records"])
    log_file = tmp_path / "logs" / "mediasync.log"
    assert log_file.exists()


def test_json_formatter_carries_component():
    rec = logging.LogRecord("mediasync.upload", logging.INFO, __file__, 1, "hello", None, None)
    rec.component, rec.token = "upload", "attempt1"
    out = JsonFormatter().format(rec)
    assert '"component": "upload"' in out
    assert '"token": "attempt1"' in out


@pytest.mark.parametrize("verbose, console, file", [
    (0, logging.INFO, logging.INFO),
    (1, logging.INFO, logging.DEBUG),
    (2, logging.DEBUG, logging.DEBUG),
])
def test_verbosity_matrix(tmp_path, verbose, console, file):
    logger = setup_logging(tmp_path / "logs", verbose=verbose)
    stream, rotating = logger.handlers
    assert isinstance(rotating, logging.handlers.TimedRotatingFileHandler)
    assert (stream.level, rotating.level) == (console, file)


def test_quiet_keeps_info_only_in_file(tmp_path):
    logger = setup_logging(tmp_path / "logs", quiet=True)
    _, rotating = logger.handlers
    warn = logging.LogRecord("mediasync.x", logging.WARNING, __file__, 1, "w", None, None)
    info = logging.LogRecord("mediasync.x", logging.INFO, __file__, 1, "i", None, None)
    assert rotating.filter(info) and not rotating.filter(warn)
