"""Async runner for the external network control tools.

Every probe and actuator call ends up here.  Commands run through
``asyncio.create_subprocess_exec`` so a slow tool only suspends the
task that issued it, never the event loop.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from .exceptions import CommandError

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandResult:
    """Exit status and decoded output of one external command."""

    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def combined(self) -> str:
        """Return stdout and stderr joined, for substring matching."""
        return f"{self.stdout}\n{self.stderr}"


async def run_command(*args: str, timeout: float | None = None) -> CommandResult:
    """Run *args* and capture its output.

    A non-zero exit status is not an error at this level; callers
    decide what a failure means.

    Parameters
    ----------
    args:
        Program and arguments.  No shell is involved.
    timeout:
        Optional ceiling in seconds.  When exceeded the child is killed
        and ``CommandError`` is raised.  Connect and disconnect requests
        run without one; bounding those is the orchestrator's job.

    Raises
    ------
    CommandError
        If the program cannot be started or exceeds *timeout*.
    """
    _LOGGER.debug("Running %s", " ".join(args))
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise CommandError(f"Cannot run {args[0]}: {exc}") from exc

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise CommandError(
            f"{args[0]} did not finish within {timeout:.0f}s"
        ) from None

    result = CommandResult(
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout=(stdout or b"").decode(errors="replace"),
        stderr=(stderr or b"").decode(errors="replace"),
    )
    if not result.ok:
        _LOGGER.debug(
            "%s exited %d: %s",
            args[0],
            result.returncode,
            result.stderr.strip() or result.stdout.strip(),
        )
    return result
