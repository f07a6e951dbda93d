"""
Tests for single-flight periodic tasks
"""
import pytest
import asyncio

from app.core.scheduler import PeriodicTask, ScheduledTaskRun
from app.modules.loans.jobs import build_periodic_tasks, DELINQUENCY_TASK, ROLLOVER_TASK


async def load_run(session_factory, name):
    async with session_factory() as db:
        return await db.get(ScheduledTaskRun, name)


class TestPeriodicTask:
    """Tests for PeriodicTask.run_once"""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_runs_once_per_interval(self, session_factory):
        calls = []

        async def job(db):
            calls.append(db)
            return "ok"

        task = PeriodicTask("test_job", 3600, job, session_factory=session_factory)

        assert await task.run_once() is True
        assert await task.run_once() is False
        assert await task.run_once(force=True) is True
        assert len(calls) == 2

        run = await load_run(session_factory, "test_job")
        assert run.last_status == "success"
        assert run.last_success_at is not None

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_failure_is_recorded_and_raised(self, session_factory):
        async def job(db):
            raise RuntimeError("payroll feed unavailable")

        task = PeriodicTask("failing_job", 60, job, session_factory=session_factory)

        with pytest.raises(RuntimeError):
            await task.run_once()

        run = await load_run(session_factory, "failing_job")
        assert run.last_status == "failed"
        assert run.last_error == "payroll feed unavailable"
        assert run.last_success_at is None
        assert task.is_running is False

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_overlapping_ticks_are_skipped(self, session_factory):
        release = asyncio.Event()
        calls = []

        async def job(db):
            calls.append(db)
            await release.wait()

        task = PeriodicTask("slow_job", 60, job, session_factory=session_factory)

        first = asyncio.create_task(task.run_once(force=True))
        while not calls:
            await asyncio.sleep(0)
        skipped = await task.run_once(force=True)
        release.set()

        assert skipped is False
        assert await first is True
        assert len(calls) == 1


class TestJobs:
    """Tests for the registered background jobs"""

    @pytest.mark.unit
    def test_periodic_tasks(self):
        tasks = build_periodic_tasks()

        assert [task.name for task in tasks] == [ROLLOVER_TASK, DELINQUENCY_TASK]
        assert all(task.interval_seconds > 0 for task in tasks)
