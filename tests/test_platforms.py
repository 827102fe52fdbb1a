"""Tests for platforms module."""

from unittest.mock import patch

import pytest

from vpn_connection_manager.actuator import (
    NmcliActuator,
    NullActuator,
    RasdialActuator,
    ScutilActuator,
)
from vpn_connection_manager.exceptions import ActuatorError
from vpn_connection_manager.models import VpnProfile
from vpn_connection_manager.platforms import select_platform
from vpn_connection_manager.probe import NmcliProbe, NullProbe, RasdialProbe, ScutilProbe


@pytest.mark.parametrize(
    ("system", "name", "probe_cls", "actuator_cls"),
    [
        ("Linux", "linux", NmcliProbe, NmcliActuator),
        ("Darwin", "macos", ScutilProbe, ScutilActuator),
        ("Windows", "windows", RasdialProbe, RasdialActuator),
    ],
)
def test_select_platform_supported(system, name, probe_cls, actuator_cls):
    backend = select_platform(system)
    assert backend.name == name
    assert isinstance(backend.probe, probe_cls)
    assert isinstance(backend.actuator, actuator_cls)


def test_select_platform_unsupported():
    backend = select_platform("FreeBSD")
    assert backend.name == "freebsd"
    assert isinstance(backend.probe, NullProbe)
    assert isinstance(backend.actuator, NullActuator)


@patch("vpn_connection_manager.platforms.IS_WINDOWS", False)
@patch("vpn_connection_manager.platforms.IS_MACOS", True)
@patch("vpn_connection_manager.platforms.IS_LINUX", False)
def test_select_platform_uses_host_flags():
    backend = select_platform()
    assert backend.name == "macos"
    assert isinstance(backend.probe, ScutilProbe)


@patch("vpn_connection_manager.platforms.IS_WINDOWS", False)
@patch("vpn_connection_manager.platforms.IS_MACOS", False)
@patch("vpn_connection_manager.platforms.IS_LINUX", False)
@patch("vpn_connection_manager.platforms.platform.system", return_value="Haiku")
def test_select_platform_unknown_host(mock_system):
    backend = select_platform()
    assert backend.name == "haiku"
    assert isinstance(backend.actuator, NullActuator)


@pytest.mark.asyncio
async def test_unsupported_backend_fails_requests():
    backend = select_platform("FreeBSD")
    assert await backend.probe.list_active() == []
    with pytest.raises(ActuatorError, match="FreeBSD"):
        await backend.actuator.request_connect(VpnProfile("office", "gw"))
