import io
import logging

from webq.webq_logging import FlushingStreamHandler, configure_logging, resolve_level


def test_resolve_level(monkeypatch):
    monkeypatch.delenv("WEBQ_DEBUG", raising=False)
    monkeypatch.delenv("WEBQ_LOG_LEVEL", raising=False)
    assert resolve_level() == logging.WARNING
    assert resolve_level("info") == logging.INFO
    assert resolve_level("bogus") == logging.WARNING
    monkeypatch.setenv("WEBQ_LOG_LEVEL", "ERROR")
    assert resolve_level() == logging.ERROR
    monkeypatch.setenv("WEBQ_DEBUG", "1")
    assert resolve_level("info") == logging.DEBUG


def test_configure_logging_replaces_handler(monkeypatch):
    monkeypatch.delenv("WEBQ_DEBUG", raising=False)
    first, second = io.StringIO(), io.StringIO()
    configure_logging("INFO", first)
    logger = configure_logging("INFO", second)
    handlers = [h for h in logger.handlers if isinstance(h, FlushingStreamHandler)]
    assert len(handlers) == 1

    logging.getLogger("webq.webq_transforms").warning("Unknown transform: %s", "nope")
    assert first.getvalue() == ""
    assert "WARNING webq.webq_transforms: Unknown transform: nope" in second.getvalue()
