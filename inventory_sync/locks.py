import logging
import uuid

from django.conf import settings
from django.core.cache import cache

from .exceptions import SyncAlreadyRunning

logger = logging.getLogger(__name__)

KEY_PREFIX = 'inventory_sync:run-lock:'


def _key(name):
    return f"{KEY_PREFIX}{name}"


class RunLock:
    """Cache-backed mutual exclusion for one sync strategy.

    `cache.add` only stores the key when it is absent, so exactly one caller
    wins. The key carries a TTL: a worker that dies mid-run cannot wedge
    future runs past `timeout` seconds.
    """

    def __init__(self, name, timeout=None):
        self.name = name
        self.timeout = timeout if timeout is not None else settings.SYNC_LOCK_TIMEOUT
        self.token = uuid.uuid4().hex
        self.acquired = False

    def acquire(self):
        self.acquired = cache.add(_key(self.name), self.token, self.timeout)
        if self.acquired:
            logger.debug("Acquired run-lock %s", self.name)
        return self.acquired

    def release(self):
        if not self.acquired:
            return
        self.acquired = False
        if cache.get(_key(self.name)) == self.token:
            cache.delete(_key(self.name))
            logger.debug("Released run-lock %s", self.name)
        else:
            logger.warning("Run-lock %s expired before release", self.name)

    def __enter__(self):
        if not self.acquire():
            raise SyncAlreadyRunning(self.name)
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False


def is_locked(name):
    return cache.get(_key(name)) is not None
