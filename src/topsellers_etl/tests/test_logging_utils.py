from __future__ import annotations

import io
import json
import logging

from topsellers_etl.logging_utils import JsonFormatter, log_json, setup_logging, warn_json


class _Capture(logging.Handler):
    def __init__(self) -> None:
        super().__init__()
        self.setFormatter(JsonFormatter())
        self.lines = []

    def emit(self, record: logging.LogRecord) -> None:
        self.lines.append(json.loads(self.format(record)))


def _logger():
    logger = logging.getLogger("topsellers_etl.tests.logging")
    logger.setLevel(logging.INFO)
    logger.propagate = False
    handler = _Capture()
    logger.handlers = [handler]
    return logger, handler


def test_log_json_flattens_fields():
    logger, handler = _logger()
    log_json(logger, "partition_scraped", partition="us", rows=250)
    (line,) = handler.lines
    assert line["message"] == "partition_scraped"
    assert line["level"] == "INFO"
    assert (line["partition"], line["rows"]) == ("us", 250)
    assert "ts" in line


def test_warn_json_level():
    logger, handler = _logger()
    warn_json(logger, "partition_rejected", partition="jp")
    assert handler.lines[0]["level"] == "WARNING"


def test_exception_is_rendered():
    logger, handler = _logger()
    try:
        raise ValueError("bad page")
    except ValueError:
        logger.exception("cycle_failed", extra={"extra": {"error": "bad page"}})
    line = handler.lines[0]
    assert line["error"] == "bad page"
    assert "ValueError" in line["exc"]


def test_fields_never_replace_the_envelope():
    logger, handler = _logger()
    log_json(logger, "cycle_start", ts=123, message="shadow")
    line = handler.lines[0]
    assert line["message"] == "cycle_start"
    assert line["ts"].endswith("+00:00")
    assert (line["field_ts"], line["field_message"]) == (123, "shadow")


def test_setup_logging_writes_json_to_stream(monkeypatch):
    root = logging.getLogger()
    monkeypatch.setattr(root, "handlers", [])
    monkeypatch.setattr(root, "level", root.level)
    stream = io.StringIO()
    logger = setup_logging("INFO", stream=stream)
    try:
        log_json(logging.getLogger("topsellers_etl.cycle"), "cycle_done", ok=["us"])
        line = json.loads(stream.getvalue().splitlines()[-1])
        assert (line["message"], line["ok"]) == ("cycle_done", ["us"])
        assert logging.getLogger("httpx").level == logging.WARNING
    finally:
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
