"""Running caller-supplied emulation code without letting it take the run down."""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
import traceback
from typing import Any, Awaitable, Callable, Union

from emusnap.models.candidate import TestCandidate
from emusnap.models.frame import FrameBuffer
from emusnap.models.test_result import EmulationError

logger = logging.getLogger(__name__)

EmulateFn = Callable[[TestCandidate], Union[FrameBuffer, Awaitable[FrameBuffer]]]


class EmulationTimeout(Exception):
    """The emulation callback did not return within the per-test timeout."""


class EmulatorAborted(Exception):
    """The emulation callback tried to exit the process or raised a non-Exception."""


def _settle(future: asyncio.Future, outcome: tuple[str, Any]) -> None:
    # The worker may have given up on this attempt already
    if not future.done():
        future.set_result(outcome)


def _run_in_thread(emulate: EmulateFn, candidate: TestCandidate) -> asyncio.Future:
    """Start ``emulate(candidate)`` on a daemon thread and return a future for its outcome.

    The future resolves to ``("ok", value)`` or ``("error", exception)``; it
    never raises. A thread still running after its timeout is simply
    abandoned: being a daemon, it cannot keep the process alive.
    """
    loop = asyncio.get_running_loop()
    future = loop.create_future()

    def target() -> None:
        try:
            outcome = ("ok", emulate(candidate))
        except BaseException as e:  # emulator code is untrusted, SystemExit included
            outcome = ("error", e)
        try:
            loop.call_soon_threadsafe(_settle, future, outcome)
        except RuntimeError:
            logger.debug("Run finished before abandoned emulation of %s returned", candidate.id)

    threading.Thread(target=target, name=f"emusnap-emulate-{candidate.id}", daemon=True).start()
    return future


async def _run_coroutine(emulate: EmulateFn, candidate: TestCandidate) -> tuple[str, Any]:
    try:
        return "ok", await emulate(candidate)
    except asyncio.CancelledError as e:
        # Requested cancellation (timeout or shutdown) must reach wait_for
        task = asyncio.current_task()
        if task is not None and task.cancelling():
            raise
        return "error", e
    except BaseException as e:  # SystemExit and KeyboardInterrupt included
        return "error", e


async def call_emulator(emulate: EmulateFn, candidate: TestCandidate, timeout: float | None) -> FrameBuffer:
    """Invoke the emulation callback under ``timeout`` seconds.

    Synchronous callbacks run on a thread of their own; coroutine functions
    run on the event loop and are cancelled on timeout. Raises
    ``EmulationTimeout`` on timeout and re-raises whatever the callback raised.
    """
    if inspect.iscoroutinefunction(emulate):
        pending = _run_coroutine(emulate, candidate)
    else:
        pending = _run_in_thread(emulate, candidate)

    try:
        status, value = await asyncio.wait_for(pending, timeout)
    except asyncio.TimeoutError:
        raise EmulationTimeout(f"Emulation did not finish within {timeout:g}s") from None

    if status == "error":
        if not isinstance(value, Exception):
            raise EmulatorAborted(f"Emulator raised {type(value).__name__}: {value}") from value
        raise value
    if not isinstance(value, FrameBuffer):
        raise TypeError(f"Emulator returned {type(value).__name__}, expected FrameBuffer")
    return value


def error_from_exception(exc: BaseException) -> EmulationError:
    """Convert whatever the emulation raised into a per-candidate error record."""
    if isinstance(exc, EmulationTimeout):
        return EmulationError(kind="timeout", message=str(exc))
    return EmulationError(
        kind="exception",
        message=f"{type(exc).__name__}: {exc}",
        traceback="".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
    )
