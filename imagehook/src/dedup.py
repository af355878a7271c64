from __future__ import annotations

import threading


class DedupCache:
    """Process-lifetime set of image identity keys that already triggered a pipeline.

    Shared by every watcher thread.  Keys are not namespaced by resource kind,
    so a Pod and a Deployment running the same ``repository:tag`` are
    deduplicated against each other.  The set only grows.
    """

    def __init__(self) -> None:
        self._keys: set[str] = set()
        self._lock = threading.Lock()

    def check_and_mark(self, key: str) -> bool:
        """Insert *key* if absent.  Returns True only for the call that inserted it."""
        with self._lock:
            if key in self._keys:
                return False
            self._keys.add(key)
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)
