import io

import pytest

from consolidate.logger import LogLevel, StructuredLogger, set_logger


@pytest.fixture(autouse=True)
def captured_log():
    """Route the default logger into buffers for every test."""
    out, err = io.StringIO(), io.StringIO()
    set_logger(StructuredLogger(min_level=LogLevel.DEBUG, stdout=out, stderr=err))
    yield out, err
    set_logger(None)
