import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from telegram.ext import Application

from anniversary_bot.clock import utc_now
from anniversary_bot.errors import SchedulingFault
from anniversary_bot.timer import MAX_TIMER_DELAY, TimerArmer

from fakes import FakeContext, FakeJobQueue

START = datetime(2024, 3, 10, 7, 59, tzinfo=timezone.utc)


def _armer(queue: FakeJobQueue, **kwargs) -> TimerArmer:
    return TimerArmer(queue, clock=queue.clock, **kwargs)


def test_short_delay_fires_once_at_instant() -> None:
    async def scenario() -> None:
        queue = FakeJobQueue(now=START)
        fired: list[datetime] = []
        handle = _armer(queue).arm(START + timedelta(seconds=90), lambda: fired.append(queue.now))

        await queue.advance(89)
        assert fired == []

        await queue.advance(1)
        assert fired == [START + timedelta(seconds=90)]
        assert handle.fired is True
        assert handle.active is False

        await queue.advance(3600)
        assert len(fired) == 1

    asyncio.run(scenario())


def test_delay_beyond_platform_limit_rearms_until_reachable() -> None:
    async def scenario() -> None:
        queue = FakeJobQueue(now=START)
        armer = _armer(queue, max_delay=timedelta(milliseconds=1000))
        fired: list[datetime] = []
        target = START + timedelta(milliseconds=3500)

        handle = armer.arm(target, lambda: fired.append(queue.now))

        await queue.advance(3.499)
        assert fired == []

        await queue.advance(0.001)
        assert fired == [target]
        assert queue.delays == [1.0, 1.0, 1.0, 0.5]
        assert handle.hops == 4

        await queue.advance(10)
        assert len(fired) == 1

    asyncio.run(scenario())


def test_default_limit_uses_daily_rechecks() -> None:
    queue = FakeJobQueue(now=START)
    target = START + MAX_TIMER_DELAY + timedelta(days=3)

    _armer(queue).arm(target, lambda: None)

    assert queue.delays == [timedelta(hours=24).total_seconds()]


def test_early_wakeup_rearms_for_the_remainder() -> None:
    async def scenario() -> None:
        queue = FakeJobQueue(now=START)
        fired: list[datetime] = []
        _armer(queue).arm(START + timedelta(seconds=60), lambda: fired.append(queue.now))

        early = queue.jobs[-1]
        queue.now = START + timedelta(seconds=59)
        await queue.run(early)

        assert fired == []
        assert queue.delays[-1] == 1.0

        await queue.advance(1)
        assert fired == [START + timedelta(seconds=60)]

    asyncio.run(scenario())


def test_past_instant_fires_on_next_run() -> None:
    async def scenario() -> None:
        queue = FakeJobQueue(now=START)
        fired: list[int] = []
        _armer(queue).arm(START - timedelta(minutes=5), lambda: fired.append(1))

        assert queue.delays == [0.0]
        await queue.advance(0)
        assert fired == [1]

    asyncio.run(scenario())


def test_cancel_is_idempotent_and_removes_job() -> None:
    async def scenario() -> None:
        queue = FakeJobQueue(now=START)
        armer = _armer(queue, max_delay=timedelta(seconds=1))
        fired: list[int] = []
        handle = armer.arm(START + timedelta(seconds=5), lambda: fired.append(1))

        await queue.advance(2)
        handle.cancel()
        handle.cancel()
        armer.cancel(handle)
        armer.cancel(None)

        await queue.advance(10)
        assert fired == []
        assert handle.cancelled is True
        assert queue.pending() == []

    asyncio.run(scenario())


def test_cancel_after_job_left_queue_is_tolerated() -> None:
    async def scenario() -> None:
        queue = FakeJobQueue(now=START)
        fired: list[int] = []
        handle = _armer(queue).arm(START + timedelta(seconds=1), lambda: fired.append(1))

        # The queue has dropped the job but its callback has not started yet.
        job = queue.jobs[-1]
        job.ran = True
        handle.cancel()
        await job.callback(FakeContext(job=job))

        assert fired == []
        assert handle.cancelled is True

    asyncio.run(scenario())


def test_cancel_after_fire_is_a_no_op() -> None:
    async def scenario() -> None:
        queue = FakeJobQueue(now=START)
        fired: list[int] = []
        handle = _armer(queue).arm(START + timedelta(seconds=1), lambda: fired.append(1))

        await queue.advance(1)
        handle.cancel()

        assert fired == [1]
        assert handle.cancelled is False

    asyncio.run(scenario())


def test_arm_failure_raises_scheduling_fault() -> None:
    queue = FakeJobQueue(now=START, fail_next=1)

    with pytest.raises(SchedulingFault):
        _armer(queue).arm(START + timedelta(seconds=1), lambda: None)


def test_failed_recheck_reports_fault() -> None:
    async def scenario() -> None:
        queue = FakeJobQueue(now=START)
        faults: list[SchedulingFault] = []
        fired: list[int] = []
        handle = _armer(queue, max_delay=timedelta(seconds=1)).arm(
            START + timedelta(seconds=3),
            lambda: fired.append(1),
            on_fault=faults.append,
        )

        queue.fail_next = 1
        await queue.advance(5)

        assert len(faults) == 1
        assert fired == []
        assert handle.active is False

    asyncio.run(scenario())


def test_non_positive_limits_are_rejected() -> None:
    with pytest.raises(ValueError):
        TimerArmer(FakeJobQueue(now=START), max_delay=timedelta(0))


def test_application_job_queue_fires_once_after_rechecks() -> None:
    async def scenario() -> None:
        application = Application.builder().token("123456:TEST-TOKEN").build()
        job_queue = application.job_queue
        await job_queue.start()
        try:
            fired: list[datetime] = []
            armer = TimerArmer(job_queue, max_delay=timedelta(milliseconds=100))
            target = utc_now() + timedelta(milliseconds=350)

            handle = armer.arm(target, lambda: fired.append(utc_now()))
            await asyncio.sleep(1.0)
        finally:
            await job_queue.stop()

        assert len(fired) == 1
        assert fired[0] >= target
        assert handle.hops > 1

    asyncio.run(scenario())
