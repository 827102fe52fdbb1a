"""Rewrite the cached connection state with what the OS reports.

Reconciliation is the only way changes made outside this process
become visible: a user disconnecting from the OS menu, a tunnel that
dropped, a VPN started by another tool.  One pass lists the active
VPNs once, then under a single store write:

- every known profile gets a record (``Disconnected`` by default),
- every record named in the active list becomes ``Connected`` with
  the reported address, keeping ``connected_since`` if it was already
  ``Connected``,
- every other record becomes ``Disconnected``.

Probe truth always wins, including over a cached ``Error``.

A pass may race with a connect or disconnect in flight; whichever
writes last wins.  That is acceptable because the orchestrator
re-polls before it declares success.

Usage of the periodic tick::

    loop = ReconciliationLoop(store, probe)
    loop.start(lambda: [p.name for p in profiles], interval=5.0)
    ...
    loop.stop()
"""

from __future__ import annotations

import asyncio
import datetime
import logging
from collections.abc import Awaitable, Callable, Iterable

from .const import RECONCILE_INTERVAL
from .models import CONNECTED, DISCONNECTED, ActiveConnection, ConnectionRecord
from .probe import SystemProbe
from .store import StateStore

_LOGGER = logging.getLogger(__name__)


class ReconciliationLoop:
    """Keep a :class:`StateStore` in line with a :class:`SystemProbe`.

    Parameters
    ----------
    store:
        The shared state cache.
    probe:
        Source of ground truth.
    on_connection_lost:
        Optional async callback ``(profile_name) -> None`` invoked by any
        reconciliation pass, periodic or on demand, that finds a profile
        it last saw ``Connected`` no longer active without a disconnect
        having been requested.
    """

    def __init__(
        self,
        store: StateStore,
        probe: SystemProbe,
        on_connection_lost: Callable[[str], Awaitable[None]] | None = None,
    ) -> None:
        self._store = store
        self._probe = probe
        self._on_connection_lost = on_connection_lost
        self._task: asyncio.Task[None] | None = None
        self._started = False

    @property
    def is_running(self) -> bool:
        """Return whether the periodic tick is active."""
        return self._started and self._task is not None and not self._task.done()

    async def reconcile(
        self,
        known_profile_names: Iterable[str] = (),
        *,
        in_flight: Iterable[str] = (),
    ) -> list[ActiveConnection]:
        """Run one reconciliation pass and return the active list it used.

        Drops are reported to ``on_connection_lost``, except for the
        *in_flight* profiles whose operation is watching them already.

        Raises ``CommandError`` if the probe tool cannot be run; the
        store is left untouched in that case.
        """
        active = await self._probe.list_active()
        dropped = self.apply(known_profile_names, active)
        skip = set(in_flight)
        await self._report_dropped([name for name in dropped if name not in skip])
        return active

    async def _report_dropped(self, dropped: list[str]) -> None:
        if self._on_connection_lost is None:
            return
        for name in dropped:
            try:
                await self._on_connection_lost(name)
            except Exception:
                _LOGGER.exception(
                    "ReconciliationLoop: on_connection_lost callback failed for %s",
                    name,
                )

    def apply(
        self,
        known_profile_names: Iterable[str],
        active: list[ActiveConnection],
    ) -> list[str]:
        """Write *active* into the store and return the profiles that dropped.

        A profile "dropped" when its record was ``Connected`` before
        this pass and is ``Disconnected`` after it.
        """
        by_name = {conn.name: conn.ip_address for conn in active}
        known = list(known_profile_names)
        now = datetime.datetime.now().astimezone()
        dropped: list[str] = []

        def _apply(records: dict[str, ConnectionRecord]) -> None:
            for name in known:
                if name not in records:
                    records[name] = ConnectionRecord(profile_name=name)
            for name, record in records.items():
                if name in by_name:
                    if not record.status.is_connected:
                        _LOGGER.debug(
                            "%s: Observed active (was %s)", name, record.status.label
                        )
                    records[name] = record.with_status(
                        CONNECTED, ip_address=by_name[name], now=now
                    )
                else:
                    if record.status.is_connected:
                        dropped.append(name)
                    records[name] = record.with_status(DISCONNECTED)

        self._store.apply(_apply)
        for name in dropped:
            _LOGGER.info("%s: No longer reported active", name)
        return dropped

    # ── Periodic tick ──────────────────────────────────────────────

    def start(
        self,
        profile_names: Callable[[], Iterable[str]],
        interval: float = RECONCILE_INTERVAL,
    ) -> None:
        """Start reconciling every *interval* seconds.

        *profile_names* is called on every tick, so profiles added or
        removed while running are picked up.  Calling ``start()`` on a
        running loop is a no-op.
        """
        if self._started:
            return
        self._started = True
        self._task = asyncio.ensure_future(self._run(profile_names, interval))

    def stop(self) -> None:
        """Stop the periodic tick.  Safe to call multiple times."""
        self._started = False
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _tick(self, profile_names: Callable[[], Iterable[str]]) -> None:
        await self.reconcile(profile_names())

    async def _run(
        self,
        profile_names: Callable[[], Iterable[str]],
        interval: float,
    ) -> None:
        try:
            while self._started:
                try:
                    await self._tick(profile_names)
                except Exception:
                    _LOGGER.exception("ReconciliationLoop: tick failed")
                await asyncio.sleep(interval)
        finally:
            # A stop() followed by start() already owns the flag
            if self._task is None or self._task is asyncio.current_task():
                self._started = False
