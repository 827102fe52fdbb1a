"""Exception hierarchy for vpn-connection-manager.

Probe parse problems never raise; everything here represents a failure
a caller can act on at its next attempt.
"""

from __future__ import annotations


class VpnError(Exception):
    """Base class for every error raised by this package."""


class CommandError(VpnError):
    """The external control tool could not be run to completion."""


class ActuatorError(VpnError):
    """The external connect or disconnect command reported a failure."""

    def __init__(self, profile_name: str, message: str) -> None:
        super().__init__(message)
        self.profile_name = profile_name
        self.message = message


class ConflictResolutionError(VpnError):
    """Another active profile could not be confirmed disconnected."""

    def __init__(self, profile_name: str) -> None:
        super().__init__(
            f"Failed to disconnect previous VPN: {profile_name}. "
            "Current state still not Disconnected."
        )
        self.profile_name = profile_name


class OperationError(VpnError):
    """An orchestrated operation did not reach its expected outcome."""

    def __init__(self, profile_name: str, attempts: int, message: str) -> None:
        super().__init__(message)
        self.profile_name = profile_name
        self.attempts = attempts


class OperationTimeoutError(OperationError):
    """The expected status was never observed within the attempt timeout."""


class StatusError(OperationError):
    """The profile was observed in the ``Error`` status."""


class StabilizationError(OperationError):
    """A fresh connection did not survive the observation window."""
