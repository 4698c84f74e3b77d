import logging

import pytest


@pytest.fixture(autouse=True)
def reset_engine_logger():
    """setup_logging() detaches the package logger from root; undo it so caplog keeps working"""
    yield
    logger = logging.getLogger("loan_engine")
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
