from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Protocol

from apscheduler.jobstores.base import JobLookupError
from telegram.ext import CallbackContext

from anniversary_bot.clock import Clock, utc_now
from anniversary_bot.errors import SchedulingFault

LOGGER = logging.getLogger(__name__)

# Signed 32-bit millisecond ceiling shared by most single-shot timer backends.
MAX_TIMER_DELAY = timedelta(milliseconds=2**31 - 1)
RECHECK_INTERVAL = timedelta(hours=24)

FaultHandler = Callable[[SchedulingFault], None]


class ScheduledJob(Protocol):
    def schedule_removal(self) -> None: ...


class OneShotJobQueue(Protocol):
    def run_once(
        self,
        callback: Callable[[Any], Awaitable[None]],
        when: float,
        data: object | None = None,
        name: str | None = None,
    ) -> ScheduledJob: ...


class TimerHandle:
    def __init__(
        self,
        instant: datetime,
        name: str,
        callback: Callable[[], object],
        on_fault: FaultHandler | None,
    ) -> None:
        self.instant = instant
        self.name = name
        self.hops = 0
        self._due = instant.astimezone(timezone.utc)
        self._callback = callback
        self._on_fault = on_fault
        self._job: ScheduledJob | None = None
        self._cancelled = False
        self._fired = False

    @property
    def active(self) -> bool:
        return not (self._cancelled or self._fired)

    @property
    def fired(self) -> bool:
        return self._fired

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if not self.active:
            return

        self._cancelled = True
        job, self._job = self._job, None
        if job is None:
            return
        try:
            job.schedule_removal()
        except JobLookupError:
            # Already taken off the queue; the hop sees the handle cancelled.
            LOGGER.debug("Timer %s already left the job queue", self.name)


class TimerArmer:
    # Delays above max_delay are armed as a chain of recheck_interval hops.
    # Every hop compares the wall clock with the target again, so the
    # callback never runs before its instant.

    def __init__(
        self,
        job_queue: OneShotJobQueue,
        *,
        clock: Clock = utc_now,
        max_delay: timedelta = MAX_TIMER_DELAY,
        recheck_interval: timedelta = RECHECK_INTERVAL,
    ) -> None:
        if max_delay <= timedelta(0) or recheck_interval <= timedelta(0):
            raise ValueError("max_delay and recheck_interval must be positive")
        self._job_queue = job_queue
        self._clock = clock
        self._max_delay = max_delay
        self._recheck_interval = min(recheck_interval, max_delay)

    def now(self) -> datetime:
        return self._clock()

    def arm(
        self,
        instant: datetime,
        callback: Callable[[], object],
        *,
        name: str = "timer",
        on_fault: FaultHandler | None = None,
    ) -> TimerHandle:
        handle = TimerHandle(instant, name, callback, on_fault)
        self._schedule_hop(handle)
        return handle

    def cancel(self, handle: TimerHandle | None) -> None:
        if handle is not None:
            handle.cancel()

    def _schedule_hop(self, handle: TimerHandle) -> None:
        remaining = handle._due - self._clock()
        if remaining > self._max_delay:
            delay = self._recheck_interval
            LOGGER.info(
                "Timer %s is %s away, beyond the %s limit; rechecking in %s",
                handle.name,
                remaining,
                self._max_delay,
                delay,
            )
        else:
            delay = max(remaining, timedelta(0))

        try:
            handle._job = self._job_queue.run_once(
                self._run_hop,
                delay.total_seconds(),
                data=handle,
                name=f"{handle.name}#{handle.hops + 1}",
            )
        except (RuntimeError, OverflowError, ValueError) as exc:
            raise SchedulingFault(f"Could not arm timer {handle.name}") from exc
        handle.hops += 1

    async def _run_hop(self, context: CallbackContext) -> None:
        self._on_hop(context.job.data)

    def _on_hop(self, handle: TimerHandle) -> None:
        if not handle.active:
            return
        handle._job = None

        if self._clock() < handle._due:
            try:
                self._schedule_hop(handle)
            except SchedulingFault as exc:
                handle._cancelled = True
                if handle._on_fault is None:
                    raise
                handle._on_fault(exc)
            return

        handle._fired = True
        handle._callback()
