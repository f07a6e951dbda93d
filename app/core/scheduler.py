"""
Single-flight periodic tasks.

A tick is skipped while the previous run of the same task is still in
progress (in-process lock), and optionally while another process holds the
Redis lease for the task. The last successful run is persisted so that a
restarted process does not repeat work that finished inside the interval.
"""
from sqlalchemy import Column, String, DateTime, Text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from typing import Any, Awaitable, Callable, Optional
from datetime import datetime, timedelta
import asyncio
import logging
import secrets

from app.core.database import Base, AsyncSessionLocal, get_redis

logger = logging.getLogger(__name__)

Job = Callable[[AsyncSession], Awaitable[Any]]


class ScheduledTaskRun(Base):
    """Last run bookkeeping per periodic task"""
    __tablename__ = "scheduled_task_runs"

    task_name = Column(String(100), primary_key=True)
    last_started_at = Column(DateTime, nullable=True)
    last_success_at = Column(DateTime, nullable=True)
    last_status = Column(String(20), nullable=True)  # running, success, failed
    last_error = Column(Text, nullable=True)

    def __repr__(self):
        return f"<ScheduledTaskRun(task={self.task_name}, status={self.last_status})>"


class PeriodicTask:
    """Runs a job every `interval_seconds`, never overlapping itself"""

    def __init__(
        self,
        name: str,
        interval_seconds: int,
        job: Job,
        session_factory: async_sessionmaker = AsyncSessionLocal,
        use_redis_lock: bool = False,
    ):
        self.name = name
        self.interval_seconds = interval_seconds
        self.job = job
        self.session_factory = session_factory
        self.use_redis_lock = use_redis_lock
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    async def run_once(self, force: bool = False) -> bool:
        """
        Execute one tick.

        Returns False when the tick was skipped (still running, lease held
        elsewhere, or not yet due), True when the job completed.
        Job failures are recorded and re-raised.
        """
        if self._lock.locked():
            logger.info(f"Skipping {self.name}: previous run still in progress")
            return False

        async with self._lock:
            lease = await self._acquire_lease()
            if lease is False:
                logger.info(f"Skipping {self.name}: lease held by another process")
                return False
            try:
                if not force and not await self._is_due():
                    return False
                return await self._execute()
            finally:
                await self._release_lease(lease)

    async def _execute(self) -> bool:
        await self._record(status="running", started=True)
        try:
            async with self.session_factory() as db:
                result = await self.job(db)
                await db.commit()
        except Exception as exc:
            logger.exception(f"Periodic task {self.name} failed")
            await self._record(status="failed", error=str(exc))
            raise
        await self._record(status="success", succeeded=True)
        logger.info(f"Periodic task {self.name} completed: {result}")
        return True

    async def _is_due(self) -> bool:
        async with self.session_factory() as db:
            run = await db.get(ScheduledTaskRun, self.name)
        if run is None or run.last_success_at is None:
            return True
        return datetime.utcnow() - run.last_success_at >= timedelta(seconds=self.interval_seconds)

    async def _record(
        self,
        status: str,
        started: bool = False,
        succeeded: bool = False,
        error: Optional[str] = None,
    ) -> None:
        async with self.session_factory() as db:
            run = await db.get(ScheduledTaskRun, self.name)
            if run is None:
                run = ScheduledTaskRun(task_name=self.name)
                db.add(run)
            now = datetime.utcnow()
            if started:
                run.last_started_at = now
            if succeeded:
                run.last_success_at = now
            run.last_status = status
            run.last_error = error
            await db.commit()

    async def _acquire_lease(self):
        """Returns None when leases are disabled, the lease token, or False when taken"""
        if not self.use_redis_lock:
            return None
        redis = await get_redis()
        token = secrets.token_hex(8)
        acquired = await redis.set(
            f"scheduler:lease:{self.name}",
            token,
            nx=True,
            px=self.interval_seconds * 1000,
        )
        return token if acquired else False

    async def _release_lease(self, lease) -> None:
        if not lease:
            return
        redis = await get_redis()
        key = f"scheduler:lease:{self.name}"
        if await redis.get(key) == lease:
            await redis.delete(key)

    async def _loop(self) -> None:
        while True:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error(f"Tick for {self.name} failed, retrying next interval: {exc}")
            await asyncio.sleep(min(self.interval_seconds, 3600))

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._loop(), name=f"periodic:{self.name}")
            logger.info(f"Started periodic task {self.name} every {self.interval_seconds}s")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
