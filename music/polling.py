"""Fixed-interval polling of task status endpoints."""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar, Union

T = TypeVar("T")


@dataclass
class PollOutcome(Generic[T]):
    """Result of :func:`poll_until`.

    ``value`` is the last observed fetch result. A non-terminal, non-cancelled
    outcome means the attempt budget ran out.
    """

    value: Optional[T]
    attempts: int
    terminal: bool
    cancelled: bool = False
    elapsed: float = 0.0

    @property
    def timed_out(self) -> bool:
        return not self.terminal and not self.cancelled


async def _wait(interval: float, cancel_event: Optional[asyncio.Event]) -> bool:
    """Sleep for ``interval`` seconds; return True when cancelled meanwhile."""

    if cancel_event is None:
        await asyncio.sleep(interval)
        return False
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=interval)
    except asyncio.TimeoutError:
        return False
    return True


async def poll_until(
    fetch: Callable[[], Union[Awaitable[T], T]],
    is_terminal: Callable[[T], bool],
    *,
    max_attempts: int,
    interval: float,
    cancel_event: Optional[asyncio.Event] = None,
    logger: Optional[logging.Logger] = None,
    log_context: Optional[dict[str, Any]] = None,
) -> PollOutcome[T]:
    """Call ``fetch`` until ``is_terminal`` accepts its result.

    ``fetch`` may be synchronous or asynchronous. At most ``max_attempts``
    calls are made, strictly one after another, with ``interval`` seconds
    between them. Errors raised by ``fetch`` propagate to the caller; an
    exhausted budget does not raise and returns the last result instead.
    """

    if max_attempts < 1:
        raise ValueError("max_attempts must be positive")

    log_extra = dict(log_context or {})
    start = time.monotonic()
    attempts = 0
    last: Optional[T] = None

    while attempts < max_attempts:
        if cancel_event is not None and cancel_event.is_set():
            return PollOutcome(last, attempts, False, cancelled=True, elapsed=time.monotonic() - start)
        attempts += 1
        result = fetch()
        if inspect.isawaitable(result):
            result = await result
        last = result
        if is_terminal(result):
            return PollOutcome(result, attempts, True, elapsed=time.monotonic() - start)
        if attempts >= max_attempts:
            break
        if logger:
            logger.debug(
                "poll.pending",
                extra={"meta": {**log_extra, "attempt": attempts, "max_attempts": max_attempts}},
            )
        if await _wait(interval, cancel_event):
            return PollOutcome(last, attempts, False, cancelled=True, elapsed=time.monotonic() - start)

    if logger:
        logger.warning(
            "poll.exhausted",
            extra={"meta": {**log_extra, "attempts": attempts, "interval": interval}},
        )
    return PollOutcome(last, attempts, False, elapsed=time.monotonic() - start)


__all__ = ["PollOutcome", "poll_until"]
