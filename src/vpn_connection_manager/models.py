"""Value types shared by every layer of the connection manager.

Records are frozen dataclasses.  The state store hands the instances
out directly: a caller holding a record can never observe a later
write, and can never mutate what another caller sees.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, NamedTuple


class StatusKind(str, Enum):
    """The kind of a connection status."""

    CONNECTED = "connected"
    CONNECTING = "connecting"
    RETRYING = "retrying"
    DISCONNECTED = "disconnected"
    DISCONNECTING = "disconnecting"
    ERROR = "error"


@dataclass(frozen=True)
class VpnStatus:
    """Status of one VPN profile.

    ``RETRYING`` only exists for display: the orchestrator reports it
    through its progress callback, the store never holds it.
    """

    kind: StatusKind
    message: str | None = None
    attempt: int = 0
    max_attempts: int = 0

    @classmethod
    def error(cls, message: str) -> VpnStatus:
        return cls(StatusKind.ERROR, message=message)

    @classmethod
    def retrying(cls, attempt: int, max_attempts: int) -> VpnStatus:
        return cls(StatusKind.RETRYING, attempt=attempt, max_attempts=max_attempts)

    @property
    def is_connected(self) -> bool:
        return self.kind is StatusKind.CONNECTED

    @property
    def is_disconnected(self) -> bool:
        return self.kind is StatusKind.DISCONNECTED

    @property
    def is_error(self) -> bool:
        return self.kind is StatusKind.ERROR

    @property
    def label(self) -> str:
        """Return a short human-readable label."""
        if self.kind is StatusKind.RETRYING:
            return f"Retry {self.attempt}/{self.max_attempts}..."
        return _LABELS[self.kind]

    def __str__(self) -> str:
        if self.kind is StatusKind.ERROR and self.message:
            return f"Error: {self.message}"
        return self.label


_LABELS = {
    StatusKind.CONNECTED: "Connected",
    StatusKind.CONNECTING: "Connecting...",
    StatusKind.DISCONNECTED: "Disconnected",
    StatusKind.DISCONNECTING: "Disconnecting...",
    StatusKind.ERROR: "Error",
}

CONNECTED = VpnStatus(StatusKind.CONNECTED)
CONNECTING = VpnStatus(StatusKind.CONNECTING)
DISCONNECTED = VpnStatus(StatusKind.DISCONNECTED)
DISCONNECTING = VpnStatus(StatusKind.DISCONNECTING)


def _now() -> datetime.datetime:
    return datetime.datetime.now().astimezone()


@dataclass(frozen=True)
class ConnectionRecord:
    """Last known state of one profile.

    Attributes
    ----------
    profile_name:
        The profile this record belongs to.
    status:
        The cached :class:`VpnStatus`.
    connected_since:
        When the connection was first observed up.  Only set while
        ``status`` is ``Connected``.
    ip_address:
        Address reported by the OS.  Only set while ``Connected``.
    bytes_sent, bytes_received:
        Reserved for traffic counters, always ``0`` for now.
    """

    profile_name: str
    status: VpnStatus = DISCONNECTED
    connected_since: datetime.datetime | None = None
    ip_address: str | None = None
    bytes_sent: int = 0
    bytes_received: int = 0

    def with_status(
        self,
        status: VpnStatus,
        *,
        ip_address: str | None = None,
        now: datetime.datetime | None = None,
    ) -> ConnectionRecord:
        """Return a copy moved to *status*, keeping the field invariants.

        Moving to ``Connected`` keeps an existing ``connected_since``
        so repeated observations do not reset the duration clock.
        Leaving ``Connected`` clears ``connected_since`` and the address.
        """
        if not status.is_connected:
            return replace(self, status=status, connected_since=None, ip_address=None)
        since = self.connected_since if self.status.is_connected else None
        if since is None:
            since = now or _now()
        return replace(
            self,
            status=status,
            connected_since=since,
            ip_address=ip_address,
        )


class ActiveConnection(NamedTuple):
    """A VPN connection the OS currently reports as active."""

    name: str
    ip_address: str | None = None


@dataclass
class VpnProfile:
    """A configured VPN endpoint.

    Only ``name``, ``username`` and ``protocol`` mean anything to the
    connection core.  The other fields are carried for the actuators
    and for the profile store that owns them.
    """

    name: str
    gateway_address: str
    category: str = "Uncategorized"
    cert_path: str | None = None
    username: str | None = None
    aliases: str | None = None
    protocol: str = "IKEv2"
    auto_connect: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VpnProfile:
        """Build a profile from a loaded configuration mapping."""
        return cls(
            name=data["name"],
            gateway_address=data.get("gateway_address", ""),
            category=data.get("category") or "Uncategorized",
            cert_path=data.get("cert_path"),
            username=data.get("username"),
            aliases=data.get("aliases"),
            protocol=data.get("protocol") or "IKEv2",
            auto_connect=bool(data.get("auto_connect", False)),
        )

    def matches(self, key: str) -> bool:
        """Return whether *key* is this profile's name or alias."""
        return key == self.name or (self.aliases is not None and key == self.aliases)


@dataclass
class Settings:
    """Application settings relevant to the connection core."""

    auto_reconnect: bool = False
    reconnect_delay_seconds: float = 30.0
    status_check_interval_seconds: float = 5.0
    log_level: str = "info"
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Settings:
        known = {
            "auto_reconnect",
            "reconnect_delay_seconds",
            "status_check_interval_seconds",
            "log_level",
        }
        defaults = cls()
        return cls(
            auto_reconnect=bool(data.get("auto_reconnect", defaults.auto_reconnect)),
            reconnect_delay_seconds=float(
                data.get("reconnect_delay_seconds", defaults.reconnect_delay_seconds)
            ),
            status_check_interval_seconds=float(
                data.get(
                    "status_check_interval_seconds",
                    defaults.status_check_interval_seconds,
                )
            ),
            log_level=str(data.get("log_level", defaults.log_level)),
            extra={k: v for k, v in data.items() if k not in known},
        )


def resolve_profile(profiles: list[VpnProfile], key: str) -> VpnProfile | None:
    """Find a profile by name or alias."""
    for profile in profiles:
        if profile.matches(key):
            return profile
    return None
