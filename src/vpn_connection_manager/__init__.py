"""vpn-connection-manager: Single-active VPN connection lifecycle manager.

Keeps a concurrently readable cache of VPN connection state in line
with what the OS network tools report, and drives connects and
disconnects through those tools with conflict clearing, bounded
retries, timeouts and post-connect stabilization.
"""

from __future__ import annotations

__version__ = "0.1.0"

from .actuator import (
    ExternalActuator,
    NmcliActuator,
    NullActuator,
    RasdialActuator,
    ScutilActuator,
)
from .command import CommandResult, run_command
from .const import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_DELAY,
    IS_LINUX,
    IS_MACOS,
    IS_WINDOWS,
    NM_STARTUP_TIMEOUT,
    PROFILE_INTERACTIVE_CONNECT,
    PROFILE_INTERACTIVE_DISCONNECT,
    PROFILE_ONE_SHOT_CONNECT,
    PROFILE_ONE_SHOT_DISCONNECT,
    RECONCILE_INTERVAL,
    ConflictConfig,
    OperationConfig,
)
from .controller import ConnectionController
from .exceptions import (
    ActuatorError,
    CommandError,
    ConflictResolutionError,
    OperationError,
    OperationTimeoutError,
    StabilizationError,
    StatusError,
    VpnError,
)
from .manager import VpnManager
from .models import (
    CONNECTED,
    CONNECTING,
    DISCONNECTED,
    DISCONNECTING,
    ActiveConnection,
    ConnectionRecord,
    Settings,
    StatusKind,
    VpnProfile,
    VpnStatus,
    resolve_profile,
)
from .networkmanager import close_bus, is_networkmanager_running, wait_for_networkmanager
from .orchestrator import OperationOrchestrator
from .platforms import PlatformBackend, select_platform
from .probe import NmcliProbe, NullProbe, RasdialProbe, ScutilProbe, SystemProbe
from .reconcile import ReconciliationLoop
from .store import StateStore

__all__ = [
    # Facade
    "VpnManager",
    # Core components
    "StateStore",
    "ConnectionController",
    "ReconciliationLoop",
    "OperationOrchestrator",
    # Data model
    "ActiveConnection",
    "ConnectionRecord",
    "Settings",
    "StatusKind",
    "VpnProfile",
    "VpnStatus",
    "CONNECTED",
    "CONNECTING",
    "DISCONNECTED",
    "DISCONNECTING",
    "resolve_profile",
    # Platform backends
    "PlatformBackend",
    "select_platform",
    "SystemProbe",
    "NmcliProbe",
    "ScutilProbe",
    "RasdialProbe",
    "NullProbe",
    "ExternalActuator",
    "NmcliActuator",
    "ScutilActuator",
    "RasdialActuator",
    "NullActuator",
    # External commands
    "CommandResult",
    "run_command",
    # NetworkManager over D-Bus
    "is_networkmanager_running",
    "wait_for_networkmanager",
    "close_bus",
    # Errors
    "VpnError",
    "CommandError",
    "ActuatorError",
    "ConflictResolutionError",
    "OperationError",
    "OperationTimeoutError",
    "StatusError",
    "StabilizationError",
    # Configuration
    "ConflictConfig",
    "OperationConfig",
    "PROFILE_INTERACTIVE_CONNECT",
    "PROFILE_INTERACTIVE_DISCONNECT",
    "PROFILE_ONE_SHOT_CONNECT",
    "PROFILE_ONE_SHOT_DISCONNECT",
    # Constants
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_RETRY_DELAY",
    "IS_LINUX",
    "IS_MACOS",
    "IS_WINDOWS",
    "NM_STARTUP_TIMEOUT",
    "RECONCILE_INTERVAL",
]
