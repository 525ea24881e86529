import logging

import pytest


@pytest.fixture(autouse=True)
def _restore_logger_state():
    """Undo in-process logging.config.fileConfig side effects (e.g. Alembic's env.py
    disabling existing loggers) so later tests see the loggers they expect."""
    manager = logging.Logger.manager
    before = {
        name: logger.disabled
        for name, logger in manager.loggerDict.items()
        if isinstance(logger, logging.Logger)
    }
    yield
    for name, logger in list(manager.loggerDict.items()):
        if isinstance(logger, logging.Logger):
            logger.disabled = before.get(name, False)
