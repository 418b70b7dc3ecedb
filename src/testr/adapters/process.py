"""Framework process spawning with cooperative cancellation.

Each adapter run spawns exactly one process and waits for whichever comes
first: the process exiting, the cancellation signal firing, or the optional
timeout. Output is buffered in memory; there is no streaming backpressure.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)


class CancellationSignal:
    """One-shot cancellation signal shared by every layer of a run.

    Cancellation is a value, not an exception: adapters check it and resolve
    their run with an empty result.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        """Fire the signal. Calling it again has no effect."""
        if self._event.is_set():
            return
        self._event.set()
        for callback in self._callbacks:
            callback()
        self._callbacks.clear()

    def add_callback(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` on cancellation (immediately if already cancelled)."""
        if self._event.is_set():
            callback()
        else:
            self._callbacks.append(callback)

    async def wait(self) -> None:
        await self._event.wait()


@dataclass
class ProcessOutcome:
    """What happened to one spawned framework process.

    ``exited`` is set when the process was left running after a cancel or a
    timeout; it resolves once the process has actually exited.
    """

    argv: tuple[str, ...] = ()
    stdout: str = ""
    stderr: str = ""
    exit_code: int | None = None
    cancelled: bool = False
    timed_out: bool = False
    spawn_error: str | None = None
    exited: asyncio.Future | None = field(default=None, repr=False, compare=False)

    @property
    def completed(self) -> bool:
        """True if the process ran to its natural exit."""
        return not (self.cancelled or self.timed_out or self.spawn_error)

    @property
    def output(self) -> str:
        return self.stdout + "\n" + self.stderr


def split_command(command: str) -> list[str]:
    """Split a fallback invocation such as ``npx jest`` into argv."""
    return shlex.split(command, posix=os.name != "nt")


async def run_process(
    argv: Sequence[str],
    cwd: Path,
    env: dict[str, str] | None = None,
    cancel: CancellationSignal | None = None,
    timeout: float | None = None,
) -> ProcessOutcome:
    """Spawn ``argv`` in ``cwd`` and collect its output.

    Args:
        argv: Executable and arguments.
        cwd: Working directory (the project root).
        env: Extra environment variables.
        cancel: Signal that terminates the process when fired.
        timeout: Seconds before the process is terminated. None or 0 waits forever.

    Returns:
        ProcessOutcome. Never raises for spawn failures, cancellation or timeouts.
    """
    argv = tuple(argv)
    if cancel is not None and cancel.is_cancelled:
        logger.debug("Not spawning %s: run already cancelled", argv[0])
        return ProcessOutcome(argv=argv, cancelled=True)

    proc_env = os.environ.copy()
    if env:
        proc_env.update(env)

    logger.debug("Spawning %s in %s", shlex.join(argv), cwd)
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            cwd=str(cwd),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=proc_env,
        )
    except OSError as e:
        logger.error("Failed to spawn %s: %s", argv[0], e)
        return ProcessOutcome(argv=argv, spawn_error=str(e))

    communicate = asyncio.ensure_future(process.communicate())
    waiters: set[asyncio.Future] = {communicate}
    cancel_waiter: asyncio.Future | None = None
    if cancel is not None:
        cancel_waiter = asyncio.ensure_future(cancel.wait())
        waiters.add(cancel_waiter)

    try:
        done, _ = await asyncio.wait(
            waiters,
            timeout=timeout or None,
            return_when=asyncio.FIRST_COMPLETED,
        )
    finally:
        if cancel_waiter is not None and not cancel_waiter.done():
            cancel_waiter.cancel()

    if communicate in done and not (cancel is not None and cancel.is_cancelled):
        stdout, stderr = communicate.result()
        logger.debug("%s exited with code %s", argv[0], process.returncode)
        return ProcessOutcome(
            argv=argv,
            stdout=_decode(stdout),
            stderr=_decode(stderr),
            exit_code=process.returncode,
        )

    # Cancelled or timed out: output from the late exit is discarded.
    cancelled = cancel is not None and cancel.is_cancelled
    _terminate(process)
    communicate.add_done_callback(_discard)
    if cancelled:
        logger.info("Cancelled %s", argv[0])
    else:
        logger.warning("%s timed out after %ss", argv[0], timeout)
    return ProcessOutcome(
        argv=argv, cancelled=cancelled, timed_out=not cancelled, exited=communicate
    )


def _terminate(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    try:
        process.terminate()
    except ProcessLookupError:
        logger.debug("Process %s already gone", process.pid)


def _discard(future: asyncio.Future) -> None:
    if not future.cancelled():
        future.exception()


def _decode(data: bytes | None) -> str:
    return data.decode("utf-8", errors="replace") if data else ""
