# studyhub/utils/locks.py

import logging
from contextlib import contextmanager
from threading import Lock, RLock

logger = logging.getLogger(__name__)


class KeyedLock:
    """
    Registry of re-entrant locks keyed by an aggregate identifier.

    Serializes mutations of one aggregate (an event's enrollments, a study's
    member set) inside this process. Callers that also need cross-process
    safety pair it with a row lock (``SELECT ... FOR UPDATE``).
    """

    # Class-level registries, one per namespace
    _registries = {}
    _lock = Lock()

    def __init__(self, namespace):
        """
        Args:
            namespace (str): Name of the aggregate kind, e.g. ``"event"``
        """
        self.namespace = namespace
        self._locks = {}
        self._locks_guard = Lock()

    @classmethod
    def get_or_create(cls, namespace):
        """Get existing registry or create new one"""
        with cls._lock:
            if namespace not in cls._registries:
                cls._registries[namespace] = KeyedLock(namespace)
            return cls._registries[namespace]

    def lock_for(self, key):
        """Return the lock guarding ``key``; the same key always maps to the same lock."""
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = RLock()
                self._locks[key] = lock
            return lock

    def discard(self, key):
        """Forget the lock of an aggregate that no longer exists."""
        with self._locks_guard:
            self._locks.pop(key, None)

    @contextmanager
    def hold(self, key):
        lock = self.lock_for(key)
        with lock:
            logger.debug(f"Acquired {self.namespace} lock for {key}")
            yield


def event_lock(event_id):
    """Critical section for mutations of one event's enrollment collection."""
    return KeyedLock.get_or_create("event").hold(event_id)


def study_lock(study_id):
    """Critical section for mutations of one study's member set."""
    return KeyedLock.get_or_create("study").hold(study_id)
