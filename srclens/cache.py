"""Memoize computed Code per func."""

import threading
from typing import Callable, Hashable
from srclens.common import Code


class CodeCache:
    """Key -> Code store with insert-if-absent semantics.

    Every key gets its own lock, so concurrent loads of the same func compute
    it once while loads of different funcs proceed independently.
    """

    def __init__(self):
        self._codes: dict[Hashable, Code] = {}
        self._locks: dict[Hashable, threading.Lock] = {}
        self._guard = threading.Lock()

    def get(self, key: Hashable, compute: Callable[[], Code]) -> Code:
        code = self._codes.get(key)
        if code is not None:
            return code

        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())

        with lock:
            code = self._codes.get(key)
            if code is None:
                code = compute()
                self._codes[key] = code
        return code

    def __contains__(self, key):
        return key in self._codes

    def __len__(self):
        return len(self._codes)

    def clear(self):
        with self._guard:
            self._codes.clear()
            self._locks.clear()
