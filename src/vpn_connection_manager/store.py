"""Concurrency-safe cache of connection records.

The store is the only mutable state shared between the periodic tick,
input handling and the connect/disconnect operation in flight.  It is
an explicit object passed to every component, so tests can give each
component its own store.

**Locking discipline:**

A reader-writer lock guards the record map: many readers at once,
writers exclusive with readers and with each other.  Writers are
preferred so a steady stream of status reads cannot starve the tick.

The lock is a ``threading`` primitive, not an ``asyncio`` one, so the
store stays safe when callers run on worker threads.  It is only ever
held for the in-memory read or write itself; no method awaits, sleeps
or runs an external command while holding it, so it can never stall
the event loop for longer than a dict operation.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager

from .models import DISCONNECTED, ConnectionRecord, VpnStatus

_LOGGER = logging.getLogger(__name__)


class ReadWriteLock:
    """A writer-preferring reader-writer lock."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        with self._cond:
            self._waiting_writers += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._waiting_writers -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class StateStore:
    """Map of profile name to its last known :class:`ConnectionRecord`.

    Profiles that were never stored read as ``Disconnected``.
    """

    def __init__(self) -> None:
        self._records: dict[str, ConnectionRecord] = {}
        self._lock = ReadWriteLock()

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._records)

    def __contains__(self, name: object) -> bool:
        with self._lock.read_locked():
            return name in self._records

    def get(self, name: str) -> ConnectionRecord:
        """Return the record for *name*, or a default ``Disconnected`` one."""
        with self._lock.read_locked():
            record = self._records.get(name)
        if record is None:
            return ConnectionRecord(profile_name=name)
        return record

    def get_status(self, name: str) -> VpnStatus:
        return self.get(name).status

    def set(self, name: str, status: VpnStatus) -> ConnectionRecord:
        """Upsert *name* with *status*, keeping the record's other fields.

        Field invariants still hold: leaving ``Connected`` clears
        ``connected_since`` and ``ip_address``; entering it stamps
        ``connected_since`` if it was not already running.
        """

        def _transition(record: ConnectionRecord) -> ConnectionRecord:
            return record.with_status(status, ip_address=record.ip_address)

        return self.update(name, _transition)

    def update(
        self,
        name: str,
        func: Callable[[ConnectionRecord], ConnectionRecord],
    ) -> ConnectionRecord:
        """Atomically replace the record for *name* with ``func(record)``.

        *func* receives the existing record (or a fresh ``Disconnected``
        one) and runs under the write lock, so it must be a plain
        in-memory transformation.
        """
        with self._lock.write_locked():
            current = self._records.get(name) or ConnectionRecord(profile_name=name)
            updated = func(current)
            self._records[name] = updated
        if updated.status != current.status:
            _LOGGER.debug(
                "%s: %s -> %s", name, current.status.label, updated.status.label
            )
        return updated

    def upsert_all(self, names: Iterable[str]) -> None:
        """Make sure every name has a record, without touching existing ones."""
        with self._lock.write_locked():
            for name in names:
                if name not in self._records:
                    self._records[name] = ConnectionRecord(
                        profile_name=name, status=DISCONNECTED
                    )

    def apply(
        self,
        func: Callable[[dict[str, ConnectionRecord]], None],
    ) -> None:
        """Run *func* against the live record map under the write lock.

        Used for whole-map passes such as reconciliation, which must
        not let a reader see half of the pass applied.
        """
        with self._lock.write_locked():
            func(self._records)

    def snapshot(self) -> list[ConnectionRecord]:
        """Return a point-in-time copy of all records."""
        with self._lock.read_locked():
            return list(self._records.values())
