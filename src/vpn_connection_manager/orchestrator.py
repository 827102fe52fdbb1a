"""Retry, timeout and stabilization around controller operations.

The controller performs a single attempt and trusts the external
tool's exit status.  The orchestrator does not: after each attempt it
reconciles with the OS and re-reads the cached status until the
expected state is observed or the attempt timeout runs out.

- **Per-attempt timeout** -- covers both the controller call and the
  polling after it.  An external command that hangs is not cancelled
  (the tools are not safe to interrupt); the orchestrator stops waiting
  for it and the next reconciliation picks up whatever it settles to.
- **Bounded retries** -- timeouts and generic failures (actuator
  errors, conflicts that would not clear, probe tool failures) are
  retried after a fixed delay.  An ``Error`` status observed while
  polling is a reported condition, not a transient one, and stops the
  operation immediately.
- **Stabilization** -- optionally, after a successful connect the
  profile is sampled at a fixed cadence.  Dropping out of
  ``Connected`` fails the operation.  Another VPN showing up as active
  is disconnected on the spot and watching continues.  The operation
  fails if that disconnect fails or if the same VPN is still or again
  active on a later sample or at the end of the window.

Usage::

    orchestrator = OperationOrchestrator(controller, reconciler, names)
    record = await orchestrator.connect(profile, PROFILE_ONE_SHOT_CONNECT)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from .const import (
    PROFILE_INTERACTIVE_CONNECT,
    PROFILE_INTERACTIVE_DISCONNECT,
    OperationConfig,
)
from .controller import ConnectionController
from .exceptions import (
    ActuatorError,
    CommandError,
    OperationError,
    OperationTimeoutError,
    StabilizationError,
    StatusError,
    VpnError,
)
from .models import (
    CONNECTED,
    DISCONNECTED,
    ActiveConnection,
    ConnectionRecord,
    StatusKind,
    VpnProfile,
    VpnStatus,
)
from .reconcile import ReconciliationLoop

_LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[VpnStatus], None]


class OperationOrchestrator:
    """Drive connects and disconnects to a confirmed terminal state.

    Parameters
    ----------
    controller:
        Performs the individual attempts.
    reconciler:
        Used to re-read ground truth while polling.
    profile_names:
        Callable returning the names of all configured profiles, passed
        to every reconciliation pass.  Defaults to none, in which case
        only profiles already in the store are reconciled.
    """

    def __init__(
        self,
        controller: ConnectionController,
        reconciler: ReconciliationLoop,
        profile_names: Callable[[], Iterable[str]] | None = None,
    ) -> None:
        self._controller = controller
        self._reconciler = reconciler
        self._profile_names = profile_names or (lambda: ())
        self._store = controller.store
        # Attempts still running after their timeout expired
        self._stragglers: set[asyncio.Future[Any]] = set()

    @property
    def pending_operations(self) -> int:
        """Return how many timed-out external operations are still running."""
        return len(self._stragglers)

    # ── Helpers ────────────────────────────────────────────────────

    @staticmethod
    def _notify(on_progress: ProgressCallback | None, status: VpnStatus) -> None:
        if on_progress is None:
            return
        try:
            on_progress(status)
        except Exception:
            _LOGGER.debug("on_progress callback raised", exc_info=True)

    def _forget_straggler(self, future: asyncio.Future[Any]) -> None:
        self._stragglers.discard(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            _LOGGER.debug("Timed-out operation finished with: %s", exc)

    async def _run_attempt(
        self,
        operation: Awaitable[None],
        timeout: float,
    ) -> bool:
        """Run one controller call, waiting at most *timeout* seconds.

        Returns ``False`` if the call is still running when the time is
        up.  It is left to finish on its own.  Controller exceptions
        propagate.
        """
        future = asyncio.ensure_future(operation)
        done, _ = await asyncio.wait({future}, timeout=max(timeout, 0.0))
        if not done:
            self._stragglers.add(future)
            future.add_done_callback(self._forget_straggler)
            return False
        future.result()
        return True

    async def _refresh(self, profile_name: str) -> list[ActiveConnection] | None:
        try:
            return await self._reconciler.reconcile(
                self._profile_names(), in_flight=(profile_name,)
            )
        except CommandError as exc:
            _LOGGER.debug("Reconciliation skipped: %s", exc)
            return None

    async def _wait_for(
        self,
        profile_name: str,
        expected: StatusKind,
        deadline: float,
        poll_interval: float,
    ) -> VpnStatus | None:
        """Poll until *expected* or ``Error`` is observed.

        Returns the observed status, or ``None`` once *deadline* (event
        loop time) has passed.
        """
        loop = asyncio.get_running_loop()
        while True:
            await self._refresh(profile_name)
            status = self._store.get_status(profile_name)
            if status.kind is expected or status.is_error:
                return status
            if loop.time() >= deadline:
                return None
            _LOGGER.debug(
                "%s: Waiting for %s, currently %s",
                profile_name,
                expected.value,
                status.label,
            )
            await asyncio.sleep(poll_interval)

    async def _stabilize(
        self,
        profile_name: str,
        config: OperationConfig,
        attempt: int,
    ) -> None:
        """Watch a fresh connection for the configured number of samples."""
        samples = config.stabilization_samples
        _LOGGER.debug(
            "%s: Verifying connection stability (%d samples every %.1fs)",
            profile_name,
            samples,
            config.stabilization_interval,
        )
        intruders: set[str] = set()
        for sample in range(1, samples + 1):
            await asyncio.sleep(config.stabilization_interval)
            active = await self._refresh(profile_name)
            status = self._store.get_status(profile_name)
            if not status.is_connected:
                raise StabilizationError(
                    profile_name,
                    attempt,
                    f"Connection to {profile_name} dropped during stabilization "
                    f"(sample {sample}/{samples}, status {status.label})",
                )
            for conn in active or ():
                if conn.name == profile_name:
                    continue
                if conn.name in intruders:
                    raise StabilizationError(
                        profile_name,
                        attempt,
                        f"{conn.name} stayed active alongside {profile_name} "
                        "after being disconnected",
                    )
                intruders.add(conn.name)
                _LOGGER.warning(
                    "%s: %s became active during stabilization, disconnecting it",
                    profile_name,
                    conn.name,
                )
                try:
                    await self._controller.disconnect(conn.name)
                except ActuatorError as exc:
                    raise StabilizationError(
                        profile_name,
                        attempt,
                        f"{conn.name} stayed active alongside {profile_name}: {exc}",
                    ) from exc

        if not intruders:
            return
        # Intruders must be gone by the end of the window
        active = await self._refresh(profile_name)
        lingering = sorted(
            conn.name for conn in active or () if conn.name in intruders
        )
        if lingering:
            raise StabilizationError(
                profile_name,
                attempt,
                f"{', '.join(lingering)} stayed active alongside {profile_name} "
                "after being disconnected",
            )

    # ── Operations ─────────────────────────────────────────────────

    async def connect(
        self,
        profile: VpnProfile,
        config: OperationConfig = PROFILE_INTERACTIVE_CONNECT,
        on_progress: ProgressCallback | None = None,
    ) -> ConnectionRecord:
        """Connect *profile* and confirm it against the OS.

        Returns the confirmed record.

        Raises
        ------
        StatusError
            ``Error`` was observed while polling.  Not retried.
        StabilizationError
            The connection did not survive the observation window.
        OperationTimeoutError
            Every attempt ran out of time.
        OperationError
            Every attempt failed; the last failure is in the message.
        """
        name = profile.name
        return await self._drive(
            name,
            lambda: self._controller.connect(profile),
            StatusKind.CONNECTED,
            config,
            on_progress,
            verb="connect to",
        )

    async def disconnect(
        self,
        profile_name: str,
        config: OperationConfig = PROFILE_INTERACTIVE_DISCONNECT,
        on_progress: ProgressCallback | None = None,
    ) -> ConnectionRecord:
        """Disconnect *profile_name* and confirm it against the OS.

        Raises the same errors as :meth:`connect`, except
        ``StabilizationError``.
        """
        return await self._drive(
            profile_name,
            lambda: self._controller.disconnect(profile_name),
            StatusKind.DISCONNECTED,
            config,
            on_progress,
            verb="disconnect from",
        )

    async def _drive(
        self,
        name: str,
        operation: Callable[[], Awaitable[None]],
        expected: StatusKind,
        config: OperationConfig,
        on_progress: ProgressCallback | None,
        *,
        verb: str,
    ) -> ConnectionRecord:
        loop = asyncio.get_running_loop()
        total = config.total_attempts
        last_error: VpnError | None = None
        timed_out = False

        for attempt in range(1, total + 1):
            if attempt > 1:
                self._notify(on_progress, VpnStatus.retrying(attempt, total))
                _LOGGER.warning(
                    "%s: Retrying %s (attempt %d/%d)",
                    name,
                    verb.split()[0],
                    attempt,
                    total,
                )
            else:
                _LOGGER.info(
                    "%s: Attempt 1/%d to %s", name, total, verb.split()[0]
                )

            deadline = loop.time() + config.attempt_timeout
            timed_out = False
            try:
                finished = await self._run_attempt(operation(), config.attempt_timeout)
            except VpnError as exc:
                last_error = exc
                _LOGGER.warning(
                    "%s: Attempt %d/%d failed: %s", name, attempt, total, exc
                )
            else:
                if not finished:
                    _LOGGER.warning(
                        "%s: External command still running after %.0fs",
                        name,
                        config.attempt_timeout,
                    )
                    timed_out = True
                else:
                    status = await self._wait_for(
                        name, expected, deadline, config.poll_interval
                    )
                    if status is None:
                        timed_out = True
                        _LOGGER.warning(
                            "%s: Timeout waiting for %s (attempt %d/%d)",
                            name,
                            expected.value,
                            attempt,
                            total,
                        )
                    elif status.is_error:
                        self._notify(on_progress, status)
                        raise StatusError(
                            name,
                            attempt,
                            f"Failed to {verb} {name}: {status.message}",
                        )
                    else:
                        if expected is StatusKind.CONNECTED and config.stabilization_samples:
                            try:
                                await self._stabilize(name, config, attempt)
                            except StabilizationError as exc:
                                self._notify(on_progress, VpnStatus.error(str(exc)))
                                raise
                        self._notify(
                            on_progress,
                            CONNECTED if expected is StatusKind.CONNECTED else DISCONNECTED,
                        )
                        _LOGGER.info(
                            "%s: Confirmed %s on attempt %d/%d",
                            name,
                            expected.value,
                            attempt,
                            total,
                        )
                        return self._store.get(name)

            if attempt < total:
                await asyncio.sleep(config.retry_delay)

        message = f"Failed to {verb} {name} after {total} attempts"
        if timed_out:
            error: OperationError = OperationTimeoutError(
                name, total, f"{message}: timed out waiting for {expected.value}"
            )
        else:
            error = OperationError(
                name, total, message + (f": {last_error}" if last_error else "")
            )
        self._notify(on_progress, VpnStatus.error(str(error)))
        raise error
