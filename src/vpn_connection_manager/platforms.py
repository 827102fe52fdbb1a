"""Pick the probe and actuator implementations for the host platform.

The controller, reconciliation loop and orchestrator never branch on
the operating system.  They receive a :class:`PlatformBackend` built
here once at startup.
"""

from __future__ import annotations

import logging
import platform
from dataclasses import dataclass

from .actuator import (
    ExternalActuator,
    NmcliActuator,
    NullActuator,
    RasdialActuator,
    ScutilActuator,
)
from .const import IS_LINUX, IS_MACOS, IS_WINDOWS
from .probe import NmcliProbe, NullProbe, RasdialProbe, ScutilProbe, SystemProbe

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlatformBackend:
    """A matched probe/actuator pair for one platform."""

    name: str
    probe: SystemProbe
    actuator: ExternalActuator


def select_platform(system: str | None = None) -> PlatformBackend:
    """Return the backend for *system* (defaults to the host platform).

    Unsupported platforms get a backend that reports nothing active and
    fails every connect or disconnect request.
    """
    if system is None:
        if IS_LINUX:
            system = "Linux"
        elif IS_MACOS:
            system = "Darwin"
        elif IS_WINDOWS:
            system = "Windows"
        else:
            system = platform.system()

    if system == "Linux":
        backend = PlatformBackend("linux", NmcliProbe(), NmcliActuator())
    elif system == "Darwin":
        backend = PlatformBackend("macos", ScutilProbe(), ScutilActuator())
    elif system == "Windows":
        backend = PlatformBackend("windows", RasdialProbe(), RasdialActuator())
    else:
        _LOGGER.warning("No VPN control backend for platform %r", system)
        backend = PlatformBackend(
            system.lower() or "unknown",
            NullProbe(),
            NullActuator(system or "this platform"),
        )

    _LOGGER.debug(
        "Using %s backend (probe=%s, actuator=%s)",
        backend.name,
        backend.probe.name,
        backend.actuator.name,
    )
    return backend
