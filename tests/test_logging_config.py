import io
import json
import logging
import os
from contextlib import contextmanager

import structlog

from common.config import Settings
from common.logging_config import configure_logging


@contextmanager
def _isolated_root_logger():
    """Give the test a root logger without handlers and restore it afterwards."""
    root = logging.getLogger()
    original_handlers = list(root.handlers)
    original_level = root.level
    root.handlers[:] = []
    try:
        yield root
    finally:
        root.handlers[:] = original_handlers
        root.setLevel(original_level)
        structlog.reset_defaults()


def _settings(mocker, log_format: str, log_level: str) -> Settings:
    mocker.patch.dict(
        os.environ,
        {"PAPERLESS_TOKEN": "test_token", "LOG_FORMAT": log_format, "LOG_LEVEL": log_level},
        clear=True,
    )
    return Settings()


def _has_processor(formatter, processor_type):
    return any(isinstance(proc, processor_type) for proc in formatter.processors or [])


def test_console_format_and_quiet_libraries(mocker):
    settings = _settings(mocker, "console", "debug")

    with _isolated_root_logger() as root_logger:
        configure_logging(settings)

        assert root_logger.getEffectiveLevel() == logging.DEBUG
        (handler,) = root_logger.handlers
        assert isinstance(handler.formatter, structlog.stdlib.ProcessorFormatter)
        assert _has_processor(handler.formatter, structlog.dev.ConsoleRenderer)
        for name in ("urllib3", "sqlalchemy.engine", "PIL"):
            assert logging.getLogger(name).level == logging.WARNING


def test_json_records_go_to_the_given_stream(mocker):
    settings = _settings(mocker, "json", "info")
    stream = io.StringIO()

    with _isolated_root_logger():
        configure_logging(settings, stream=stream)

        log = structlog.get_logger("ocr.test")
        log.info("Processing document", doc_id=42)
        log.debug("hidden", doc_id=1)

    (line,) = stream.getvalue().splitlines()
    record = json.loads(line)
    assert record["event"] == "Processing document"
    assert record["doc_id"] == 42
    assert record["level"] == "info"
    assert record["logger"] == "ocr.test"
    assert "timestamp" in record
