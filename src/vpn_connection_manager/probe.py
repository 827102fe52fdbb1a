"""Ground-truth queries against the OS network configuration.

A :class:`SystemProbe` answers two questions: which VPN profiles are
active right now, and what state one named profile is in.  Each
platform answers through its own command-line tool:

- Linux: ``nmcli`` (NetworkManager), terse output.
- macOS: ``scutil --nc`` plus ``ifconfig`` for the tunnel address.
- Windows: ``rasdial``.

Parsing is best-effort.  Lines that do not look like the expected
format are skipped, and a profile the output says nothing about is
``Disconnected``.  Probes never touch the state store; callers
reconcile with what they return.

The ``parse_*`` functions are pure so the text formats can be tested
without running any tool.
"""

from __future__ import annotations

import logging
import re

from .command import run_command
from .exceptions import CommandError
from .models import (
    CONNECTED,
    CONNECTING,
    DISCONNECTED,
    DISCONNECTING,
    ActiveConnection,
    VpnStatus,
)

_LOGGER = logging.getLogger(__name__)

# Connection types nmcli reports for VPN-like profiles
_NMCLI_VPN_TYPES = ("vpn", "wireguard")

_SCUTIL_LIST_RE = re.compile(r"\((?P<state>[^)]*)\).*?\"(?P<name>[^\"]+)\"")


class SystemProbe:
    """Read-only view of the OS connection state.

    Subclasses implement :meth:`list_active` and :meth:`status_of` for
    one platform.  Neither method may mutate anything.
    """

    name = "none"

    async def list_active(self) -> list[ActiveConnection]:
        """Return the VPN connections the OS reports as active.

        Raises ``CommandError`` only when the tool cannot be run at all.
        """
        raise NotImplementedError

    async def list_present(self) -> list[ActiveConnection]:
        """Return active VPN connections plus ones still coming up.

        Conflict resolution uses this so a tunnel that is still
        activating is torn down too.  Defaults to :meth:`list_active`.
        """
        return await self.list_active()

    async def status_of(self, profile_name: str) -> VpnStatus:
        """Return the OS-reported status of one profile.

        Never raises: anything unrecognised reads as ``Disconnected``.
        """
        raise NotImplementedError


# ── nmcli (Linux) ──────────────────────────────────────────────────


def split_nmcli_terse(line: str) -> list[str]:
    r"""Split one line of ``nmcli -t`` output into fields.

    Terse mode separates fields with ``:`` and escapes literal colons
    and backslashes inside values as ``\:`` and ``\\``.
    """
    fields: list[str] = []
    current: list[str] = []
    chars = iter(line)
    for char in chars:
        if char == "\\":
            escaped = next(chars, "")
            current.append(escaped)
        elif char == ":":
            fields.append("".join(current))
            current = []
        else:
            current.append(char)
    fields.append("".join(current))
    return fields


def _nmcli_state_to_status(state: str) -> VpnStatus:
    state = state.strip().lower()
    if "deactivating" in state:
        return DISCONNECTING
    if "activating" in state:
        return CONNECTING
    if "activated" in state and "deactivated" not in state:
        return CONNECTED
    return DISCONNECTED


def parse_nmcli_active(
    output: str, *, include_activating: bool = False
) -> list[ActiveConnection]:
    """Parse ``nmcli -t -f NAME,TYPE,STATE,IP4.ADDRESS connection show --active``.

    Only VPN-type rows that are fully activated are returned, plus
    ``activating`` rows when *include_activating* is set.  The address
    keeps no prefix length (``10.0.0.5/24`` becomes ``10.0.0.5``).

    Example::

        >>> parse_nmcli_active("office:vpn:activated:10.0.0.5/24\\n")
        [ActiveConnection(name='office', ip_address='10.0.0.5')]
    """
    active: list[ActiveConnection] = []
    for line in output.splitlines():
        if not line.strip():
            continue
        parts = split_nmcli_terse(line)
        if len(parts) < 3 or not parts[0]:
            _LOGGER.debug("Skipping unrecognised nmcli line: %r", line)
            continue
        name, conn_type, state = parts[0], parts[1].lower(), parts[2]
        if not any(t in conn_type for t in _NMCLI_VPN_TYPES):
            continue
        if state:
            status = _nmcli_state_to_status(state)
            wanted = status.is_connected or (
                include_activating and status == CONNECTING
            )
            if not wanted:
                continue
        ip = parts[3].split("/", 1)[0].strip() if len(parts) > 3 else ""
        active.append(ActiveConnection(name, ip or None))
    return active


def parse_nmcli_status(output: str, profile_name: str) -> VpnStatus:
    """Parse ``nmcli -t -f NAME,STATE connection show --active`` for one name."""
    for line in output.splitlines():
        parts = split_nmcli_terse(line)
        if len(parts) >= 2 and parts[0] == profile_name:
            return _nmcli_state_to_status(parts[1])
    return DISCONNECTED


class NmcliProbe(SystemProbe):
    """NetworkManager probe using ``nmcli``."""

    name = "nmcli"

    def __init__(self, nmcli: str = "nmcli") -> None:
        self._nmcli = nmcli

    async def _list(self, include_activating: bool) -> list[ActiveConnection]:
        result = await run_command(
            self._nmcli,
            "-t",
            "-f",
            "NAME,TYPE,STATE,IP4.ADDRESS",
            "connection",
            "show",
            "--active",
        )
        if not result.ok:
            _LOGGER.debug("nmcli active listing failed, assuming nothing active")
            return []
        return parse_nmcli_active(result.stdout, include_activating=include_activating)

    async def list_active(self) -> list[ActiveConnection]:
        return await self._list(include_activating=False)

    async def list_present(self) -> list[ActiveConnection]:
        return await self._list(include_activating=True)

    async def status_of(self, profile_name: str) -> VpnStatus:
        try:
            result = await run_command(
                self._nmcli,
                "-t",
                "-f",
                "NAME,STATE",
                "connection",
                "show",
                "--active",
            )
        except CommandError:
            _LOGGER.debug("nmcli status query failed", exc_info=True)
            return DISCONNECTED
        return parse_nmcli_status(result.stdout, profile_name)


# ── scutil (macOS) ─────────────────────────────────────────────────


def parse_scutil_list(output: str, *, include_connecting: bool = False) -> list[str]:
    """Return the names of connected services in ``scutil --nc list`` output.

    Service lines look like::

        * (Connected)    3C0F...  IPSec  "Office VPN"  [IPSec]
    """
    states = ("Connected", "Connecting") if include_connecting else ("Connected",)
    names: list[str] = []
    for line in output.splitlines():
        match = _SCUTIL_LIST_RE.search(line)
        if match is None:
            continue
        if match.group("state").strip() in states:
            names.append(match.group("name"))
    return names


def parse_scutil_status(output: str) -> VpnStatus:
    """Map the first line of ``scutil --nc status <name>`` to a status."""
    first_line = output.splitlines()[0] if output else ""
    if "Connected" in first_line and "Disconnected" not in first_line:
        return CONNECTED
    if "Connecting" in first_line:
        return CONNECTING
    if "Disconnecting" in first_line:
        return DISCONNECTING
    return DISCONNECTED


def parse_ifconfig_tunnel_ip(output: str) -> str | None:
    """Return the first IPv4 address bound to a ``utun`` interface.

    VPN clients on macOS bring their tunnel up as ``utunN``.  The
    mapping from service to interface is not exposed by ``scutil``,
    so this is a heuristic.
    """
    interface: str | None = None
    for line in output.splitlines():
        if not line:
            continue
        if not line[0].isspace():
            interface = line.split(":", 1)[0]
            continue
        if interface is None or not interface.startswith("utun"):
            continue
        parts = line.split()
        if len(parts) >= 2 and parts[0] == "inet":
            return parts[1]
    return None


class ScutilProbe(SystemProbe):
    """macOS network-connection probe using ``scutil --nc``."""

    name = "scutil"

    async def _tunnel_ip(self) -> str | None:
        try:
            result = await run_command("ifconfig")
        except CommandError:
            return None
        return parse_ifconfig_tunnel_ip(result.stdout)

    async def _list(self, include_connecting: bool) -> list[ActiveConnection]:
        result = await run_command("scutil", "--nc", "list")
        names = parse_scutil_list(result.stdout, include_connecting=include_connecting)
        if not names:
            return []
        ip = await self._tunnel_ip()
        return [ActiveConnection(name, ip) for name in names]

    async def list_active(self) -> list[ActiveConnection]:
        return await self._list(include_connecting=False)

    async def list_present(self) -> list[ActiveConnection]:
        return await self._list(include_connecting=True)

    async def status_of(self, profile_name: str) -> VpnStatus:
        try:
            result = await run_command("scutil", "--nc", "status", profile_name)
        except CommandError:
            _LOGGER.debug("scutil status query failed", exc_info=True)
            return DISCONNECTED
        return parse_scutil_status(result.stdout)


# ── rasdial (Windows) ──────────────────────────────────────────────


def parse_rasdial(output: str) -> list[str]:
    """Return connection names listed by a bare ``rasdial`` call.

    Output with active connections looks like::

        Connected to
        Office VPN
        Command completed successfully.
    """
    names: list[str] = []
    in_list = False
    for line in output.splitlines():
        text = line.strip()
        if not text:
            continue
        if text.lower().startswith("connected to"):
            in_list = True
            continue
        if text.lower().startswith("command completed"):
            break
        if in_list:
            names.append(text)
    return names


class RasdialProbe(SystemProbe):
    """Windows RAS probe using ``rasdial``."""

    name = "rasdial"

    async def list_active(self) -> list[ActiveConnection]:
        result = await run_command("rasdial")
        return [ActiveConnection(name) for name in parse_rasdial(result.stdout)]

    async def status_of(self, profile_name: str) -> VpnStatus:
        try:
            active = await self.list_active()
        except CommandError:
            return DISCONNECTED
        if any(conn.name == profile_name for conn in active):
            return CONNECTED
        return DISCONNECTED


class NullProbe(SystemProbe):
    """Probe for unsupported platforms: nothing is ever active."""

    async def list_active(self) -> list[ActiveConnection]:
        return []

    async def status_of(self, profile_name: str) -> VpnStatus:
        return DISCONNECTED
