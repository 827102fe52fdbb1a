"""Constants and configuration dataclasses for vpn-connection-manager."""

from __future__ import annotations

import platform
from dataclasses import dataclass

_SYSTEM = platform.system()

IS_LINUX = _SYSTEM == "Linux"
IS_MACOS = _SYSTEM == "Darwin"
IS_WINDOWS = _SYSTEM == "Windows"

# How often the periodic tick reconciles the cache with the OS.
RECONCILE_INTERVAL = 5.0

# Default number of extra attempts after the first one.
DEFAULT_MAX_RETRIES = 2

# Delay between two orchestrated attempts.
DEFAULT_RETRY_DELAY = 2.0

# How long a connect waits for NetworkManager to appear on the bus.
NM_STARTUP_TIMEOUT = 5.0


@dataclass
class ConflictConfig:
    """Bounds for waiting on a conflicting profile to go down.

    Before a new profile is connected, every other active VPN is asked
    to disconnect and then polled through the per-name status command
    until it reports ``Disconnected``.

    Parameters
    ----------
    settle_delay:
        Seconds to wait after the disconnect request before the first
        status poll.  The OS needs a moment to start tearing down.
    poll_interval:
        Seconds between status polls.
    max_polls:
        Maximum number of status polls.  When exhausted, the connect
        is aborted with a ``ConflictResolutionError``.
    """

    settle_delay: float = 0.8
    poll_interval: float = 0.2
    max_polls: int = 40


@dataclass
class OperationConfig:
    """Retry, timeout and stabilization settings for one orchestrated operation.

    Parameters
    ----------
    attempt_timeout:
        Seconds to wait, per attempt, for the expected terminal status.
    poll_interval:
        Seconds between reconcile-and-read iterations while waiting.
    max_retries:
        Extra attempts after the first one.  ``2`` means three attempts.
    retry_delay:
        Seconds to sleep between attempts.
    stabilization_samples:
        Number of post-connect samples that must all still show the
        profile as ``Connected``.  ``0`` disables stabilization.
    stabilization_interval:
        Seconds between stabilization samples.
    """

    attempt_timeout: float
    poll_interval: float
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay: float = DEFAULT_RETRY_DELAY
    stabilization_samples: int = 0
    stabilization_interval: float = 0.2

    @property
    def total_attempts(self) -> int:
        """Return the number of attempts including the first one."""
        return self.max_retries + 1


# Pre-built profiles for the two kinds of callers
PROFILE_INTERACTIVE_CONNECT = OperationConfig(
    attempt_timeout=30.0,
    poll_interval=1.0,
)

PROFILE_INTERACTIVE_DISCONNECT = OperationConfig(
    attempt_timeout=20.0,
    poll_interval=1.0,
)

PROFILE_ONE_SHOT_CONNECT = OperationConfig(
    attempt_timeout=10.0,
    poll_interval=0.5,
    retry_delay=0.5,
    stabilization_samples=15,
    stabilization_interval=0.2,
)

PROFILE_ONE_SHOT_DISCONNECT = OperationConfig(
    attempt_timeout=10.0,
    poll_interval=0.5,
)
