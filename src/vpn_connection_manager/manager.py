"""The connection manager exposed to command-line and interactive callers.

:class:`VpnManager` wires one state store, one platform backend, the
controller, the reconciliation loop and the orchestrator together.
Callers get cache reads, probe passthrough, single-attempt
connect/disconnect, orchestrated connect/disconnect, and the periodic
status tick with optional auto-reconnect.

Everything is injectable, so tests build a manager around a fake
probe and actuator::

    manager = VpnManager(profiles, probe=FakeProbe(), actuator=FakeActuator())
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable

from .actuator import ExternalActuator
from .const import (
    PROFILE_INTERACTIVE_CONNECT,
    PROFILE_INTERACTIVE_DISCONNECT,
    ConflictConfig,
    OperationConfig,
)
from .controller import ConnectionController
from .exceptions import ActuatorError, VpnError
from .models import (
    ActiveConnection,
    ConnectionRecord,
    Settings,
    VpnProfile,
    VpnStatus,
    resolve_profile,
)
from .networkmanager import close_bus
from .orchestrator import OperationOrchestrator, ProgressCallback
from .platforms import select_platform
from .probe import SystemProbe
from .reconcile import ReconciliationLoop
from .store import StateStore

_LOGGER = logging.getLogger(__name__)


class VpnManager:
    """Facade over the connection core.

    Parameters
    ----------
    profiles:
        The configured profiles.  Their names seed reconciliation.
    settings:
        Application settings (tick interval, auto-reconnect).
    probe, actuator:
        Override the platform backend.  Both default to the pair
        :func:`select_platform` picks for the host.
    store:
        Override the state store.
    conflict_config:
        Bounds for clearing conflicting VPNs before a connect.
    """

    def __init__(
        self,
        profiles: Iterable[VpnProfile] = (),
        settings: Settings | None = None,
        *,
        probe: SystemProbe | None = None,
        actuator: ExternalActuator | None = None,
        store: StateStore | None = None,
        conflict_config: ConflictConfig | None = None,
    ) -> None:
        if probe is None or actuator is None:
            backend = select_platform()
            probe = probe or backend.probe
            actuator = actuator or backend.actuator

        self._profiles: list[VpnProfile] = list(profiles)
        self._settings = settings or Settings()
        self._store = store if store is not None else StateStore()
        self._probe = probe
        self._controller = ConnectionController(
            self._store, probe, actuator, conflict_config
        )
        self._reconciler = ReconciliationLoop(
            self._store, probe, on_connection_lost=self._on_connection_lost
        )
        self._orchestrator = OperationOrchestrator(
            self._controller, self._reconciler, self.profile_names
        )
        self._reconnect_tasks: dict[str, asyncio.Task[None]] = {}

    # ── Profiles and settings ──────────────────────────────────────

    @property
    def profiles(self) -> list[VpnProfile]:
        return list(self._profiles)

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def store(self) -> StateStore:
        return self._store

    @property
    def orchestrator(self) -> OperationOrchestrator:
        return self._orchestrator

    def set_profiles(self, profiles: Iterable[VpnProfile]) -> None:
        """Replace the configured profiles (e.g. after an import)."""
        self._profiles = list(profiles)

    def profile_names(self) -> list[str]:
        return [p.name for p in self._profiles]

    def resolve(self, key: str) -> VpnProfile | None:
        """Find a configured profile by name or alias."""
        return resolve_profile(self._profiles, key)

    # ── Cache reads ────────────────────────────────────────────────

    def get_status(self, name: str) -> VpnStatus:
        return self._store.get_status(name)

    def get_all_connections(self) -> list[ConnectionRecord]:
        return self._store.snapshot()

    def get_connected(self) -> list[ConnectionRecord]:
        """Return the records currently cached as ``Connected``."""
        return [r for r in self._store.snapshot() if r.status.is_connected]

    # ── Probe passthrough and reconciliation ───────────────────────

    async def get_active_vpns(self) -> list[ActiveConnection]:
        return await self._probe.list_active()

    async def refresh_all_status(
        self, profiles: Iterable[VpnProfile] | None = None
    ) -> None:
        """Run one reconciliation pass over *profiles* (default: configured)."""
        names = (
            [p.name for p in profiles] if profiles is not None else self.profile_names()
        )
        await self._reconciler.reconcile(names)

    # ── Single attempts ────────────────────────────────────────────

    async def connect(self, profile: VpnProfile) -> None:
        await self._controller.connect(profile)

    async def disconnect(self, name: str) -> None:
        await self._controller.disconnect(name)

    async def disconnect_all(
        self, profiles: Iterable[VpnProfile] | None = None
    ) -> dict[str, ActuatorError]:
        """Disconnect every profile, collecting failures instead of stopping.

        Returns a mapping of profile name to the error its disconnect
        raised.  An empty mapping means every request succeeded.
        """
        failures: dict[str, ActuatorError] = {}
        for profile in self._profiles if profiles is None else profiles:
            try:
                await self._controller.disconnect(profile.name)
            except ActuatorError as exc:
                _LOGGER.warning("Error while disconnecting %s: %s", profile.name, exc)
                failures[profile.name] = exc
        return failures

    # ── Orchestrated operations ────────────────────────────────────

    async def connect_with_retry(
        self,
        profile: VpnProfile,
        config: OperationConfig = PROFILE_INTERACTIVE_CONNECT,
        on_progress: ProgressCallback | None = None,
    ) -> ConnectionRecord:
        """Connect with retries, confirmation and optional stabilization."""
        return await self._orchestrator.connect(profile, config, on_progress)

    async def disconnect_with_retry(
        self,
        name: str,
        config: OperationConfig = PROFILE_INTERACTIVE_DISCONNECT,
        on_progress: ProgressCallback | None = None,
    ) -> ConnectionRecord:
        """Disconnect and wait until the OS confirms it."""
        return await self._orchestrator.disconnect(name, config, on_progress)

    # ── Periodic tick and auto-reconnect ───────────────────────────

    @property
    def is_monitoring(self) -> bool:
        return self._reconciler.is_running

    def start_monitoring(self, interval: float | None = None) -> None:
        """Start the periodic reconciliation tick."""
        if interval is None:
            interval = self._settings.status_check_interval_seconds
        self._reconciler.start(self.profile_names, interval)

    def stop_monitoring(self) -> None:
        """Stop the tick and any pending auto-reconnects."""
        self._reconciler.stop()
        for task in self._reconnect_tasks.values():
            task.cancel()
        self._reconnect_tasks.clear()

    async def _on_connection_lost(self, name: str) -> None:
        if not self._settings.auto_reconnect:
            return
        profile = self.resolve(name)
        if profile is None:
            return
        existing = self._reconnect_tasks.get(name)
        if existing is not None and not existing.done():
            return
        _LOGGER.info(
            "%s: Connection lost, reconnecting in %.0fs",
            name,
            self._settings.reconnect_delay_seconds,
        )
        self._reconnect_tasks[name] = asyncio.ensure_future(self._reconnect(profile))

    async def _reconnect(self, profile: VpnProfile) -> None:
        try:
            await asyncio.sleep(self._settings.reconnect_delay_seconds)
            if self._store.get_status(profile.name).is_connected:
                return
            await self._orchestrator.connect(profile, PROFILE_INTERACTIVE_CONNECT)
        except VpnError as exc:
            _LOGGER.warning("%s: Auto-reconnect failed: %s", profile.name, exc)
        except Exception:
            _LOGGER.exception("%s: Auto-reconnect crashed", profile.name)
        finally:
            if self._reconnect_tasks.get(profile.name) is asyncio.current_task():
                del self._reconnect_tasks[profile.name]

    async def close(self) -> None:
        """Stop background work and release the shared D-Bus connection."""
        self.stop_monitoring()
        await close_bus()
