"""
Logging Config Tests
====================
"""
import logging

from fixloop.utils.logging_config import ColoredFormatter, setup_logging


def test_setup_logging_writes_daily_file(tmp_path):
    log_dir = tmp_path / "logs"
    setup_logging(level=logging.DEBUG, log_dir=str(log_dir))

    logging.getLogger("fixloop.test").info("diagnosis started")
    for handler in logging.getLogger().handlers:
        handler.flush()

    files = list(log_dir.glob("fixloop_*.log"))
    assert len(files) == 1
    assert "diagnosis started" in files[0].read_text()
    assert logging.getLogger("httpx").level == logging.WARNING


def test_setup_logging_without_file(tmp_path):
    setup_logging(log_dir="")
    assert all(not isinstance(h, logging.FileHandler) for h in logging.getLogger().handlers)


def test_colored_formatter_wraps_level_color():
    record = logging.LogRecord("fixloop", logging.ERROR, __file__, 1, "boom", None, None)
    text = ColoredFormatter().format(record)
    assert text.startswith(ColoredFormatter.red)
    assert "boom" in text
