"""NetworkManager availability checks over the system D-Bus.

``nmcli`` reports a stopped NetworkManager with a generic error
message.  When a connect or disconnect fails on Linux, the actuator
asks the bus whether ``org.freedesktop.NetworkManager`` has an owner
so it can tell the user the daemon is down instead of passing
nmcli's text through.

One shared ``MessageBus`` is kept for the process and reused for every
query.  Queries use raw ``bus.call(Message(...))`` against the bus
daemon itself, so no proxy objects or introspection round-trips are
involved.

The bus is lazily created on first use and recreated if it drops or
if the running event loop changes.
"""

from __future__ import annotations

import asyncio
import logging

from .const import IS_LINUX

_LOGGER = logging.getLogger(__name__)

NM_BUS_NAME = "org.freedesktop.NetworkManager"

_bus: object | None = None  # dbus_fast.aio.MessageBus, typed loosely to avoid import on non-Linux
_bus_loop: object | None = None  # The event loop the bus was created on


async def get_bus():
    """Get the shared system D-Bus connection, creating or reconnecting as needed.

    Raises ``ImportError`` if ``dbus-fast`` is not available, or
    ``RuntimeError`` on non-Linux platforms.
    """
    global _bus, _bus_loop

    if not IS_LINUX:
        raise RuntimeError("Shared D-Bus bus is only available on Linux")

    from dbus_fast.aio import MessageBus
    from dbus_fast.constants import BusType

    current_loop = asyncio.get_running_loop()

    if _bus is not None:
        if _bus_loop is not current_loop:
            _LOGGER.debug(
                "Shared D-Bus bus was created on a different event loop, "
                "reconnecting on current loop"
            )
            try:
                _bus.disconnect()
            except Exception:
                _LOGGER.debug("Discarding stale bus failed", exc_info=True)
            _bus = None
        elif _bus.connected:
            return _bus
        else:
            _LOGGER.debug("Shared D-Bus bus disconnected, reconnecting")

    _bus = await MessageBus(bus_type=BusType.SYSTEM).connect()
    _bus_loop = current_loop
    _LOGGER.debug("Shared D-Bus bus connected")
    return _bus


async def is_networkmanager_running() -> bool | None:
    """Ask the bus daemon whether NetworkManager owns its well-known name.

    Returns ``True`` or ``False`` when the bus answered, and ``None``
    when the question could not be asked at all (non-Linux, no
    ``dbus-fast``, no system bus).
    """
    if not IS_LINUX:
        return None

    try:
        from dbus_fast import Message, MessageType

        bus = await get_bus()
        reply = await bus.call(
            Message(
                destination="org.freedesktop.DBus",
                path="/org/freedesktop/DBus",
                interface="org.freedesktop.DBus",
                member="NameHasOwner",
                signature="s",
                body=[NM_BUS_NAME],
            )
        )
    except Exception:
        _LOGGER.debug("Could not query the system bus", exc_info=True)
        return None

    if reply.message_type == MessageType.ERROR:
        _LOGGER.debug("NameHasOwner failed: %s", reply.error_name)
        return None
    return bool(reply.body[0])


async def wait_for_networkmanager(
    timeout: float = 10.0,
    poll_interval: float = 1.0,
) -> bool:
    """Wait until NetworkManager is on the system bus.

    Returns ``True`` as soon as it is, ``False`` on timeout.  When the
    bus cannot be queried at all the answer is ``True``, so callers
    fall through to running ``nmcli`` and reporting what it says.
    """
    elapsed = 0.0
    while True:
        running = await is_networkmanager_running()
        if running is None or running:
            if elapsed > 0:
                _LOGGER.info("NetworkManager ready on D-Bus after %.1fs", elapsed)
            return True
        if elapsed >= timeout:
            return False
        _LOGGER.debug(
            "Waiting for NetworkManager on D-Bus (%.1fs / %.0fs)...",
            elapsed,
            timeout,
        )
        await asyncio.sleep(poll_interval)
        elapsed += poll_interval


async def close_bus() -> None:
    """Disconnect the shared bus if it's open.

    Safe to call even if no bus was ever created.
    """
    global _bus, _bus_loop
    if _bus is not None:
        try:
            _bus.disconnect()
        except Exception:
            _LOGGER.debug("Closing shared bus failed", exc_info=True)
        _bus = None
        _bus_loop = None
