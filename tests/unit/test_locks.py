"""Keyed locks serialize work per aggregate."""

import threading
import time

from studyhub.utils.locks import KeyedLock, event_lock


class TestKeyedLock:

    def test_same_key_same_lock(self):
        registry = KeyedLock.get_or_create("test-same")

        assert registry.lock_for(1) is registry.lock_for(1)
        assert registry.lock_for(1) is not registry.lock_for(2)
        assert KeyedLock.get_or_create("test-same") is registry

    def test_lock_is_reentrant(self):
        with event_lock(99):
            with event_lock(99):
                pass

    def test_critical_sections_do_not_overlap(self):
        active, overlaps = [], []

        def worker():
            with event_lock(7):
                active.append(1)
                if len(active) > 1:
                    overlaps.append(True)
                time.sleep(0.01)
                active.pop()

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert overlaps == []

    def test_discard_forgets_key(self):
        registry = KeyedLock.get_or_create("test-discard")
        lock = registry.lock_for("a")

        registry.discard("a")

        assert registry.lock_for("a") is not lock
