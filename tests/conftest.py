"""Shared fakes and fixtures.

``FakeProbe`` and ``FakeActuator`` stand in for the OS: the actuator
edits the probe's ``active`` mapping the way a real connect or
disconnect would change what ``nmcli`` reports.
"""

from __future__ import annotations

from collections.abc import Callable

import pytest

from vpn_connection_manager.actuator import ExternalActuator
from vpn_connection_manager.const import ConflictConfig, OperationConfig
from vpn_connection_manager.controller import ConnectionController
from vpn_connection_manager.exceptions import ActuatorError
from vpn_connection_manager.models import (
    CONNECTED,
    CONNECTING,
    DISCONNECTED,
    ActiveConnection,
    VpnProfile,
    VpnStatus,
)
from vpn_connection_manager.orchestrator import OperationOrchestrator
from vpn_connection_manager.probe import SystemProbe
from vpn_connection_manager.reconcile import ReconciliationLoop
from vpn_connection_manager.store import StateStore


class FakeProbe(SystemProbe):
    """In-memory OS view.

    ``hooks`` maps a 1-based ``list_active`` call number to a callable
    run just before that call answers, to script changes mid-operation.
    Names in ``pending`` are still activating: only ``list_present``
    reports them.
    """

    name = "fake"

    def __init__(self, active: dict[str, str | None] | None = None) -> None:
        self.active: dict[str, str | None] = dict(active or {})
        self.list_calls = 0
        self.status_calls: list[str] = []
        self.hooks: dict[int, Callable[[FakeProbe], None]] = {}
        self.stuck: set[str] = set()
        self.pending: set[str] = set()

    async def list_active(self) -> list[ActiveConnection]:
        self.list_calls += 1
        hook = self.hooks.get(self.list_calls)
        if hook is not None:
            hook(self)
        return [ActiveConnection(name, ip) for name, ip in self.active.items()]

    async def list_present(self) -> list[ActiveConnection]:
        active = await self.list_active()
        return active + [ActiveConnection(name) for name in sorted(self.pending)]

    async def status_of(self, profile_name: str) -> VpnStatus:
        self.status_calls.append(profile_name)
        if profile_name in self.active or profile_name in self.stuck:
            return CONNECTED
        if profile_name in self.pending:
            return CONNECTING
        return DISCONNECTED


class FakeActuator(ExternalActuator):
    """Records requests and applies them to a :class:`FakeProbe`.

    ``connect_failures`` / ``disconnect_failures`` are messages raised,
    one per call, before requests start succeeding.  With
    ``connect_takes_effect`` off, a successful connect is never seen by
    the probe.
    """

    name = "fake"

    def __init__(self, probe: FakeProbe, ip: str = "10.0.0.5") -> None:
        self.probe = probe
        self.ip = ip
        self.connect_calls: list[str] = []
        self.disconnect_calls: list[str] = []
        self.connect_failures: list[str] = []
        self.disconnect_failures: list[str] = []
        self.connect_takes_effect = True

    async def request_connect(self, profile: VpnProfile) -> None:
        self.connect_calls.append(profile.name)
        if self.connect_failures:
            raise ActuatorError(profile.name, self.connect_failures.pop(0))
        if self.connect_takes_effect:
            self.probe.active[profile.name] = self.ip

    async def request_disconnect(self, profile_name: str) -> None:
        self.disconnect_calls.append(profile_name)
        if self.disconnect_failures:
            raise ActuatorError(profile_name, self.disconnect_failures.pop(0))
        self.probe.active.pop(profile_name, None)
        self.probe.pending.discard(profile_name)


FAST_CONFLICT = ConflictConfig(settle_delay=0.0, poll_interval=0.001, max_polls=5)


def make_profile(name: str = "office", **kwargs) -> VpnProfile:
    kwargs.setdefault("gateway_address", f"{name}.vpn.example.com")
    return VpnProfile(name=name, **kwargs)


@pytest.fixture
def probe() -> FakeProbe:
    return FakeProbe()


@pytest.fixture
def actuator(probe: FakeProbe) -> FakeActuator:
    return FakeActuator(probe)


@pytest.fixture
def store() -> StateStore:
    return StateStore()


@pytest.fixture
def controller(store, probe, actuator) -> ConnectionController:
    return ConnectionController(store, probe, actuator, FAST_CONFLICT)


@pytest.fixture
def reconciler(store, probe) -> ReconciliationLoop:
    return ReconciliationLoop(store, probe)


@pytest.fixture
def orchestrator(controller, reconciler) -> OperationOrchestrator:
    return OperationOrchestrator(controller, reconciler)


@pytest.fixture
def profile() -> VpnProfile:
    return make_profile("office")


@pytest.fixture
def fast_config() -> Callable[..., OperationConfig]:
    """Factory for quick orchestrator configs."""

    def _make(**kwargs) -> OperationConfig:
        kwargs.setdefault("attempt_timeout", 0.2)
        kwargs.setdefault("poll_interval", 0.01)
        kwargs.setdefault("retry_delay", 0.0)
        kwargs.setdefault("stabilization_interval", 0.001)
        return OperationConfig(**kwargs)

    return _make


@pytest.fixture
def new_profile() -> Callable[..., VpnProfile]:
    return make_profile


@pytest.fixture
def conflict_config() -> ConflictConfig:
    return FAST_CONFLICT
