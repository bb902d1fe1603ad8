import logging
import threading
from contextlib import contextmanager

from django.conf import settings

from inventory.exceptions import Busy

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT = 5.0


def stock_key(code, location):
    """Normalized (code, location) lock key; unassigned stock sorts first."""
    return (str(code), location or "")


class KeyLockRegistry:
    """In-process mutual exclusion per (code, location) key.

    Locks are created on demand and dropped once no caller holds or waits on
    them. Several keys are always acquired in sorted order so two moves with
    swapped source/destination cannot deadlock.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = {}
        self._refcounts = {}

    def _checkout(self, key):
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            self._refcounts[key] = self._refcounts.get(key, 0) + 1
            return lock

    def _checkin(self, key):
        with self._guard:
            remaining = self._refcounts[key] - 1
            if remaining:
                self._refcounts[key] = remaining
            else:
                del self._refcounts[key]
                del self._locks[key]

    def active_keys(self):
        with self._guard:
            return sorted(self._locks)

    @contextmanager
    def hold(self, *keys, timeout=None):
        if timeout is None:
            timeout = getattr(settings, "INVENTORY_LOCK_TIMEOUT", DEFAULT_LOCK_TIMEOUT)

        ordered = sorted(set(keys))
        acquired = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                if not lock.acquire(timeout=timeout):
                    self._checkin(key)
                    logger.warning(
                        "stock_lock_timeout",
                        extra={"item_code": key[0], "location": key[1] or None},
                    )
                    raise Busy(item_code=key[0], location=key[1] or None)
                acquired.append((key, lock))
            yield
        finally:
            for key, lock in reversed(acquired):
                lock.release()
                self._checkin(key)


key_locks = KeyLockRegistry()
