"""
Concurrent allocation against one period.

Each caller gets its own connection to a file-backed SQLite database, so
the guarded update is the only thing standing between them and an
overspent month.
"""
import pytest
import asyncio
from decimal import Decimal

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from app.core.database import Base
from app.modules.threshold.services import AllocationStatus, ThresholdService


@pytest.fixture
async def shared_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'allocator.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

    await engine.dispose()


async def allocate(factory, year, month, application_id, amount):
    async with factory() as session:
        return await ThresholdService.try_allocate(session, year, month, application_id, Decimal(amount))


async def load(factory, threshold_id):
    async with factory() as session:
        return await ThresholdService.load_by_id(session, threshold_id)


@pytest.fixture
async def million_ceiling(shared_factory, current_period):
    async with shared_factory() as session:
        threshold, _ = await ThresholdService.adjust_maximum(session, *current_period, Decimal("1000000"))
        return threshold.id


class TestConcurrentAllocation:
    """Tests that simultaneous requests never overspend"""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_two_requests_that_cannot_both_fit(self, shared_factory, current_period, million_ceiling):
        outcomes = await asyncio.gather(
            allocate(shared_factory, *current_period, 1, "700000"),
            allocate(shared_factory, *current_period, 2, "600000"),
        )

        assert sorted(o.status.value for o in outcomes) == ["admitted", "queued"]
        threshold = await load(shared_factory, million_ceiling)
        assert threshold.allocated_amount + threshold.remaining_amount == Decimal("1000000")
        assert threshold.remaining_amount in (Decimal("300000"), Decimal("400000"))
        assert threshold.total_applications_queued == 1

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_many_equal_requests(self, shared_factory, current_period, million_ceiling):
        outcomes = await asyncio.gather(*[
            allocate(shared_factory, *current_period, application_id, "150000")
            for application_id in range(1, 11)
        ])

        admitted = [o for o in outcomes if o.status == AllocationStatus.ADMITTED]
        queued = [o for o in outcomes if o.status == AllocationStatus.QUEUED]
        assert len(admitted) == 6
        assert len(queued) == 4

        threshold = await load(shared_factory, million_ceiling)
        assert threshold.allocated_amount == Decimal("900000")
        assert threshold.remaining_amount == Decimal("100000")
