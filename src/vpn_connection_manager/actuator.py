"""Connect and disconnect requests against the OS control tools.

An :class:`ExternalActuator` issues exactly one external command per
call and reports the outcome.  It never retries and never imposes a
timeout; the command may block for as long as the tool takes.  Retry
and timeout policy belong to the orchestrator.

Failures raise :class:`ActuatorError` carrying the tool's error stream.
A few well-known failure texts are rephrased into something a user
can act on:

- a profile the OS has never heard of ("No service", "no such
  connection"),
- a connection that needs interactive authentication,
- NetworkManager not running (Linux, checked over D-Bus).
"""

from __future__ import annotations

import logging

from .command import CommandResult, run_command
from .const import NM_STARTUP_TIMEOUT
from .exceptions import ActuatorError, CommandError
from .models import VpnProfile
from .networkmanager import is_networkmanager_running, wait_for_networkmanager

_LOGGER = logging.getLogger(__name__)

_MISSING_SERVICE_MARKERS = (
    "no service",
    "no such service",
    "no such connection",
    "unknown connection",
)
_AUTH_MARKERS = ("authentication", "login", "secrets were required")


def _error_text(result: CommandResult) -> str:
    return result.stderr.strip() or result.stdout.strip() or f"exit status {result.returncode}"


def describe_failure(
    profile_name: str,
    result: CommandResult,
    *,
    action: str,
    start_hint: str | None = None,
) -> str:
    """Turn a failed command into a user-facing message.

    Parameters
    ----------
    profile_name:
        The profile the command was about.
    result:
        The failed command's output.
    action:
        ``"connect"`` or ``"disconnect"``.
    start_hint:
        Command the user can run by hand to see the authentication
        prompt, included in the authentication message.
    """
    combined = result.combined.lower()
    if any(marker in combined for marker in _MISSING_SERVICE_MARKERS):
        return (
            f"No system VPN service found for '{profile_name}'. "
            "Import or create a VPN connection with the same name in the "
            "operating system's network settings, then try again."
        )
    if action == "connect" and any(marker in combined for marker in _AUTH_MARKERS):
        message = "VPN authentication required. Check system pop-ups"
        if start_hint:
            message += f" or run: {start_hint}"
        return message
    return f"Failed to {action}: {_error_text(result)}"


class ExternalActuator:
    """Single-shot connect/disconnect requests for one platform."""

    name = "none"

    async def request_connect(self, profile: VpnProfile) -> None:
        """Ask the OS to bring *profile* up.

        Raises ``ActuatorError`` when the tool reports a failure.
        """
        raise NotImplementedError

    async def request_disconnect(self, profile_name: str) -> None:
        """Ask the OS to bring *profile_name* down.

        Raises ``ActuatorError`` when the tool reports a failure.
        """
        raise NotImplementedError

    async def _run(self, profile_name: str, *args: str) -> CommandResult:
        try:
            return await run_command(*args)
        except CommandError as exc:
            raise ActuatorError(profile_name, str(exc)) from exc


class NmcliActuator(ExternalActuator):
    """NetworkManager actuator using ``nmcli connection up|down``."""

    name = "nmcli"

    def __init__(
        self, nmcli: str = "nmcli", nm_timeout: float = NM_STARTUP_TIMEOUT
    ) -> None:
        self._nmcli = nmcli
        self._nm_timeout = nm_timeout

    async def _describe(self, profile_name: str, result: CommandResult, action: str) -> str:
        if await is_networkmanager_running() is False:
            return (
                f"Failed to {action}: NetworkManager is not running "
                "(start it with: systemctl start NetworkManager)"
            )
        return describe_failure(
            profile_name,
            result,
            action=action,
            start_hint=f"{self._nmcli} --ask connection up '{profile_name}'",
        )

    async def request_connect(self, profile: VpnProfile) -> None:
        # NetworkManager may still be starting right after boot or resume
        if not await wait_for_networkmanager(timeout=self._nm_timeout):
            raise ActuatorError(
                profile.name,
                "Failed to connect: NetworkManager is not running "
                "(start it with: systemctl start NetworkManager)",
            )
        result = await self._run(
            profile.name, self._nmcli, "connection", "up", profile.name
        )
        if not result.ok:
            raise ActuatorError(
                profile.name, await self._describe(profile.name, result, "connect")
            )

    async def request_disconnect(self, profile_name: str) -> None:
        result = await self._run(
            profile_name, self._nmcli, "connection", "down", profile_name
        )
        if not result.ok:
            raise ActuatorError(
                profile_name, await self._describe(profile_name, result, "disconnect")
            )


class ScutilActuator(ExternalActuator):
    """macOS actuator using ``scutil --nc start|stop``."""

    name = "scutil"

    async def request_connect(self, profile: VpnProfile) -> None:
        args = ["scutil", "--nc", "start", profile.name]
        if profile.username:
            args += ["--user", profile.username]
        result = await self._run(profile.name, *args)
        if not result.ok:
            raise ActuatorError(
                profile.name,
                describe_failure(
                    profile.name,
                    result,
                    action="connect",
                    start_hint=f"scutil --nc start '{profile.name}'",
                ),
            )

    async def request_disconnect(self, profile_name: str) -> None:
        result = await self._run(profile_name, "scutil", "--nc", "stop", profile_name)
        if not result.ok:
            raise ActuatorError(
                profile_name,
                describe_failure(profile_name, result, action="disconnect"),
            )


class RasdialActuator(ExternalActuator):
    """Windows actuator using ``rasdial``.

    Credentials are never passed on the command line: with a user name
    but no password ``rasdial`` would prompt on the console and hang.
    It uses the credentials saved with the phonebook entry instead.
    """

    name = "rasdial"

    async def request_connect(self, profile: VpnProfile) -> None:
        result = await self._run(profile.name, "rasdial", profile.name)
        if not result.ok:
            raise ActuatorError(
                profile.name,
                describe_failure(profile.name, result, action="connect"),
            )

    async def request_disconnect(self, profile_name: str) -> None:
        result = await self._run(profile_name, "rasdial", profile_name, "/disconnect")
        if not result.ok:
            raise ActuatorError(
                profile_name,
                describe_failure(profile_name, result, action="disconnect"),
            )


class NullActuator(ExternalActuator):
    """Actuator for unsupported platforms: every request fails."""

    def __init__(self, platform_name: str = "this platform") -> None:
        self._platform_name = platform_name

    async def request_connect(self, profile: VpnProfile) -> None:
        raise ActuatorError(
            profile.name, f"VPN control is not supported on {self._platform_name}"
        )

    async def request_disconnect(self, profile_name: str) -> None:
        raise ActuatorError(
            profile_name, f"VPN control is not supported on {self._platform_name}"
        )
