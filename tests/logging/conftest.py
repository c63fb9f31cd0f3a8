import logging.handlers

import pytest

from steward._cogs.structs.references import GVK, ObjectKey
from steward._core.actions.loggers import ObjectLogger


def _record(key):
    handler = logging.handlers.BufferingHandler(capacity=100)
    logger = ObjectLogger(gvk=GVK('api1', 'v1', 'Kind1'), key=key,
                          body={'metadata': {'uid': 'uid1'}})
    level = logger.logger.level
    logger.logger.addHandler(handler)
    logger.logger.setLevel(logging.DEBUG)
    try:
        logger.info("hello")
    finally:
        logger.logger.removeHandler(handler)
        logger.logger.setLevel(level)
    return handler.buffer[0]


@pytest.fixture()
def ns_record():
    return _record(ObjectKey('namespace1', 'name1'))


@pytest.fixture()
def cluster_record():
    return _record(ObjectKey('', 'name1'))


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    lowlevel = logging.getLogger('asyncio')
    handlers, level = root.handlers[:], root.level
    lowlevel_handlers, propagate = lowlevel.handlers[:], lowlevel.propagate
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    lowlevel.handlers[:] = lowlevel_handlers
    lowlevel.propagate = propagate
