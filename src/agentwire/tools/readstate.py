"""
Read tracking for the read-before-write guard.

The file toolset records, per absolute path, when the model last saw the
file (by reading it, or by writing or editing it). An overwrite of an
existing file is only allowed when such a record exists and the file's
mtime is not later than it.

This is an optimistic single-writer check. It catches writes based on
stale knowledge and files changed by someone else, but two writers in
one process that both read before either writes can both pass.

The registry is the only shared mutable state of a toolset; access goes
through a readers-writer lock held just for the dict operation, never
across file I/O.
"""

import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager

from agentwire.errors import ReadBeforeWriteError, StaleReadError


class ReadWriteLock:
    """
    Many concurrent readers or one writer.

    Writers are preferred: once a writer waits, new readers queue behind it.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._waiting_writers += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._waiting_writers -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class ReadRegistry:
    """
    Maps absolute paths to the time (ns since epoch) they were last observed.

    Entries are never pruned; the registry lives as long as its toolset.
    """

    def __init__(self, clock=time.time_ns) -> None:
        self._entries: dict[str, int] = {}
        self._lock = ReadWriteLock()
        self._clock = clock

    def record(self, path: str) -> int:
        """Mark ``path`` as observed now and return the timestamp."""
        now = self._clock()
        with self._lock.write():
            self._entries[path] = now
        return now

    def last_read(self, path: str) -> int | None:
        """Timestamp of the last observation, or None if never observed."""
        with self._lock.read():
            return self._entries.get(path)

    def check_writable(self, path: str, mtime_ns: int) -> None:
        """
        Enforce read-before-write for an existing file.

        Args:
            path: Absolute path about to be overwritten
            mtime_ns: Current on-disk modification time of the file

        Raises:
            ReadBeforeWriteError: If the file was never read
            StaleReadError: If the file changed after it was last read
        """
        read_at = self.last_read(path)
        if read_at is None:
            raise ReadBeforeWriteError(path=path)
        if mtime_ns > read_at:
            raise StaleReadError(path=path, read_at_ns=read_at, modified_at_ns=mtime_ns)

    def __contains__(self, path: object) -> bool:
        with self._lock.read():
            return path in self._entries

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._entries)
