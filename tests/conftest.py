from __future__ import annotations

import logging

import pytest

from snag.session_manager import active_session


@pytest.fixture(autouse=True)
def _reset_snag_state():
    yield
    logger = logging.getLogger("snag")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
    logging.getLogger("snag.cdp").setLevel(logging.NOTSET)
    active_session.release()
