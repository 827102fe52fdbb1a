"""Single connect/disconnect operations and the single-active rule.

The OS happily runs several VPNs at once; this system does not allow
it.  :meth:`ConnectionController.connect` therefore starts by tearing
down every other active VPN and waits, with a bounded number of status
polls, until each one is confirmed down.  Only then is the target
marked ``Connecting`` and the connect command issued, so a failure to
clear a conflict is reported before any connect is attempted.

State machine per profile::

    Disconnected -> Connecting -> Connected | Error
    Connected -> Disconnecting -> Disconnected | Error

``Error`` ends the current operation only.  The next attempt starts
from whatever reconciliation last observed.

The controller performs exactly one attempt.  Retries, timeouts and
stabilization live in :mod:`.orchestrator`.
"""

from __future__ import annotations

import asyncio
import logging

from .actuator import ExternalActuator
from .const import ConflictConfig
from .exceptions import ActuatorError, ConflictResolutionError
from .models import (
    CONNECTED,
    CONNECTING,
    DISCONNECTED,
    DISCONNECTING,
    ActiveConnection,
    VpnProfile,
    VpnStatus,
)
from .probe import SystemProbe
from .store import StateStore

_LOGGER = logging.getLogger(__name__)


class ConnectionController:
    """Drive one profile through a connect or disconnect transition.

    Parameters
    ----------
    store:
        The shared state cache.
    probe:
        Ground-truth queries, used to find and watch conflicting VPNs.
    actuator:
        Issues the connect and disconnect commands.
    conflict_config:
        Bounds for waiting on conflicting VPNs.  Defaults to
        :class:`ConflictConfig`.
    """

    def __init__(
        self,
        store: StateStore,
        probe: SystemProbe,
        actuator: ExternalActuator,
        conflict_config: ConflictConfig | None = None,
    ) -> None:
        self._store = store
        self._probe = probe
        self._actuator = actuator
        self._conflict = conflict_config or ConflictConfig()

    @property
    def store(self) -> StateStore:
        return self._store

    @property
    def probe(self) -> SystemProbe:
        return self._probe

    async def _wait_until_down(self, profile_name: str) -> bool:
        """Poll the per-name status until it reads ``Disconnected``."""
        await asyncio.sleep(self._conflict.settle_delay)
        for _ in range(self._conflict.max_polls):
            status = await self._probe.status_of(profile_name)
            if status.is_disconnected:
                return True
            await asyncio.sleep(self._conflict.poll_interval)
        return False

    async def resolve_conflicts(self, target: str) -> list[str]:
        """Disconnect every active or activating VPN other than *target*.

        Returns the names that were disconnected.

        Raises
        ------
        ConflictResolutionError
            If one of them still is not ``Disconnected`` once the
            bounded wait is over.
        """
        # Tunnels still activating count as conflicts too
        present: list[ActiveConnection] = await self._probe.list_present()
        resolved: list[str] = []
        for conn in present:
            if conn.name == target:
                continue
            _LOGGER.info(
                "%s: Closing previous VPN %s before connecting",
                target,
                conn.name,
            )
            try:
                await self.disconnect(conn.name)
            except ActuatorError as exc:
                # It may already be on its way down; the poll decides
                _LOGGER.warning(
                    "%s: Disconnect request for %s failed: %s",
                    target,
                    conn.name,
                    exc,
                )
            if not await self._wait_until_down(conn.name):
                raise ConflictResolutionError(conn.name)
            resolved.append(conn.name)
        return resolved

    async def connect(self, profile: VpnProfile) -> None:
        """Connect *profile* after disconnecting every other active VPN.

        Raises
        ------
        ConflictResolutionError
            A conflicting VPN could not be brought down.  No connect
            command was issued.
        ActuatorError
            The connect command failed.  The record holds ``Error``.
        CommandError
            The probe tool could not be run while checking conflicts.
        """
        await self.resolve_conflicts(profile.name)

        self._store.set(profile.name, CONNECTING)
        _LOGGER.debug("%s: Requesting connect", profile.name)

        try:
            await self._actuator.request_connect(profile)
        except ActuatorError as exc:
            self._store.set(profile.name, VpnStatus.error(exc.message))
            _LOGGER.info("%s: Connect failed: %s", profile.name, exc.message)
            raise

        self._store.set(profile.name, CONNECTED)
        _LOGGER.info("%s: Connect command succeeded", profile.name)

    async def disconnect(self, profile_name: str) -> None:
        """Disconnect *profile_name*.

        Raises ``ActuatorError`` if the disconnect command failed; the
        record then holds ``Error``.
        """
        self._store.set(profile_name, DISCONNECTING)
        _LOGGER.debug("%s: Requesting disconnect", profile_name)

        try:
            await self._actuator.request_disconnect(profile_name)
        except ActuatorError as exc:
            self._store.set(profile_name, VpnStatus.error(exc.message))
            _LOGGER.info("%s: Disconnect failed: %s", profile_name, exc.message)
            raise

        self._store.set(profile_name, DISCONNECTED)
        _LOGGER.info("%s: Disconnected", profile_name)
