import logging

import pytest


@pytest.fixture(autouse=True)
def _restore_webq_logger():
    """Keeps handlers bound to a test's captured streams from leaking into later tests."""
    logger = logging.getLogger("webq")
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate
