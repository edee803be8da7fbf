from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import partial
from typing import Awaitable, Callable, Coroutine, Mapping

from anniversary_bot.errors import PersistenceFault, SchedulingFault
from anniversary_bot.models import AnnouncementSettings, TaskKind, TaskState
from anniversary_bot.recurrence import next_fire
from anniversary_bot.store import SettingsStore
from anniversary_bot.timer import TimerArmer, TimerHandle

LOGGER = logging.getLogger(__name__)

SCHEDULING_RETRY_DELAY = timedelta(seconds=60)

AnnouncementCallback = Callable[[AnnouncementSettings], Awaitable[None]]


@dataclass
class ScheduledTask:
    kind: TaskKind
    state: TaskState = TaskState.UNARMED
    next_fire: datetime | None = None
    generation: int = 0
    handle: TimerHandle | None = None
    retry: TimerHandle | None = None


class AnnouncementScheduler:
    # Locked sections never await, so timer callbacks cannot interleave with
    # them. Every arm bumps the task generation, which makes a late callback
    # from a replaced timer a no-op.

    def __init__(
        self,
        *,
        armer: TimerArmer,
        settings_store: SettingsStore,
        callbacks: Mapping[TaskKind, AnnouncementCallback],
    ) -> None:
        missing = [kind.value for kind in TaskKind if kind not in callbacks]
        if missing:
            raise ValueError(f"Missing announcement callbacks: {missing}")

        self._armer = armer
        self._settings_store = settings_store
        self._callbacks = dict(callbacks)
        self._tasks = {kind: ScheduledTask(kind=kind) for kind in TaskKind}
        self._lock = asyncio.Lock()
        self._inflight: set[asyncio.Task[None]] = set()
        self._stopped = False

    def task(self, kind: TaskKind) -> ScheduledTask:
        return self._tasks[kind]

    def next_fire_instants(self) -> dict[TaskKind, datetime | None]:
        return {kind: task.next_fire for kind, task in self._tasks.items()}

    def settings(self) -> AnnouncementSettings:
        return self._settings_store.current()

    async def start(self) -> None:
        async with self._lock:
            self._stopped = False
            settings = self._settings_store.current()
            for task in self._tasks.values():
                if task.state is TaskState.UNARMED:
                    self._arm(task, settings)

    async def reconfigure(self) -> None:
        async with self._lock:
            self._reconfigure_locked()

    async def update_settings(self, settings: AnnouncementSettings) -> AnnouncementSettings:
        async with self._lock:
            try:
                updated = self._settings_store.replace(settings)
            except PersistenceFault:
                # The new settings are active in memory even though the write failed.
                self._reconfigure_locked()
                raise
            self._reconfigure_locked()
            return updated

    async def force_fire(self, kind: TaskKind) -> None:
        async with self._lock:
            snapshot = self._settings_store.current()
        LOGGER.info("Forcing %s announcement", kind.value)
        await self._invoke(kind, snapshot)

    async def stop(self) -> None:
        async with self._lock:
            self._stopped = True
            for task in self._tasks.values():
                self._disarm(task)

        pending = list(self._inflight)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def wait_idle(self) -> None:
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    def _reconfigure_locked(self) -> None:
        if self._stopped:
            return
        settings = self._settings_store.current()
        for task in self._tasks.values():
            # A FIRED task rearms from current settings once its callback ends.
            if task.state is not TaskState.ARMED:
                continue
            self._disarm(task)
            self._arm(task, settings)

    def _arm(self, task: ScheduledTask, settings: AnnouncementSettings) -> None:
        now = self._armer.now()
        instant = next_fire(task.kind, now, settings.hour, settings.minute, settings.timezone)
        task.generation += 1
        generation = task.generation

        try:
            handle = self._armer.arm(
                instant,
                partial(self._on_timer, task.kind, generation),
                name=f"{task.kind.value}-announcement",
                on_fault=partial(self._on_fault, task.kind, generation),
            )
        except SchedulingFault:
            LOGGER.exception("Could not arm the %s announcement", task.kind.value)
            self._schedule_retry(task)
            return

        task.handle = handle
        task.next_fire = instant
        task.state = TaskState.ARMED
        LOGGER.info(
            "Scheduled %s announcement at %s (in %s)",
            task.kind.value,
            instant.isoformat(),
            instant - now,
        )

    def _disarm(self, task: ScheduledTask) -> None:
        task.generation += 1
        self._armer.cancel(task.handle)
        self._armer.cancel(task.retry)
        task.handle = None
        task.retry = None
        task.next_fire = None
        task.state = TaskState.UNARMED

    def _schedule_retry(self, task: ScheduledTask) -> None:
        task.handle = None
        task.next_fire = None
        task.state = TaskState.UNARMED
        generation = task.generation
        try:
            task.retry = self._armer.arm(
                self._armer.now() + SCHEDULING_RETRY_DELAY,
                partial(self._on_retry, task.kind, generation),
                name=f"{task.kind.value}-retry",
            )
        except SchedulingFault:
            LOGGER.exception("Could not schedule a retry for the %s announcement", task.kind.value)
            return
        LOGGER.warning("Retrying the %s announcement in %s", task.kind.value, SCHEDULING_RETRY_DELAY)

    def _on_timer(self, kind: TaskKind, generation: int) -> None:
        task = self._tasks[kind]
        if generation != task.generation or task.state is not TaskState.ARMED:
            LOGGER.debug("Ignoring stale %s timer", kind.value)
            return

        task.state = TaskState.FIRED
        task.handle = None
        self._spawn(self._fire(kind, generation))

    def _on_fault(self, kind: TaskKind, generation: int, exc: SchedulingFault) -> None:
        task = self._tasks[kind]
        if generation != task.generation:
            return
        LOGGER.error("Timer for the %s announcement failed: %s", kind.value, exc)
        self._schedule_retry(task)

    def _on_retry(self, kind: TaskKind, generation: int) -> None:
        self._spawn(self._rearm_after_fault(kind, generation))

    async def _rearm_after_fault(self, kind: TaskKind, generation: int) -> None:
        async with self._lock:
            task = self._tasks[kind]
            if self._stopped or generation != task.generation or task.state is not TaskState.UNARMED:
                return
            task.retry = None
            self._arm(task, self._settings_store.current())

    async def _fire(self, kind: TaskKind, generation: int) -> None:
        async with self._lock:
            task = self._tasks[kind]
            if generation != task.generation or task.state is not TaskState.FIRED:
                return
            snapshot = self._settings_store.current()

        LOGGER.info("Running %s announcement", kind.value)
        await self._invoke(kind, snapshot)

        async with self._lock:
            task = self._tasks[kind]
            if generation != task.generation or task.state is not TaskState.FIRED:
                return
            self._arm(task, self._settings_store.current())

    async def _invoke(self, kind: TaskKind, settings: AnnouncementSettings) -> None:
        try:
            await self._callbacks[kind](settings)
        except Exception:
            LOGGER.exception("The %s announcement callback failed", kind.value)

    def _spawn(self, coro: Coroutine[object, object, None]) -> None:
        fire = asyncio.get_running_loop().create_task(coro)
        self._inflight.add(fire)
        fire.add_done_callback(self._inflight.discard)
