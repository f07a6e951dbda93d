"""
Test configuration and fixtures for the lending engine tests.
"""
import pytest
import itertools
from typing import AsyncGenerator
from decimal import Decimal
from datetime import datetime, date

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool
from httpx import AsyncClient, ASGITransport

from app.core.database import Base, get_db
from app.core.security import create_access_token
from main import app


# ============================================================
# Database Fixtures
# ============================================================

# Use SQLite for testing (in-memory, one database per test)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def test_engine():
    """Create test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker:
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False
    )


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for each test"""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
async def client(db_session) -> AsyncGenerator[AsyncClient, None]:
    """Create test client with database override"""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ============================================================
# Auth Fixtures
# ============================================================

@pytest.fixture
def headers_for():
    """Bearer headers for an actor as the identity service would issue them"""

    def _headers(subject: str, role: str = "member") -> dict:
        token = create_access_token(data={"sub": subject, "role": role})
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def admin_headers(headers_for):
    return headers_for("ADM-1", "admin")


@pytest.fixture
def officer_headers(headers_for):
    return headers_for("OFF-1", "loan_officer")


# ============================================================
# Member / Application Fixtures
# ============================================================

@pytest.fixture
def make_member(db_session):
    """Replicate a member credit profile"""
    from app.modules.members.schemas import MemberProfileSync
    from app.modules.members.services import MemberProfileService

    async def _make(
        member_id: str,
        total_savings: Decimal = Decimal("600000"),
        monthly_contribution: Decimal = Decimal("100000"),
        membership_date: date = date(2020, 1, 1),
        **overrides
    ):
        data = MemberProfileSync(
            total_savings=total_savings,
            monthly_contribution=monthly_contribution,
            membership_date=membership_date,
            **overrides
        )
        return await MemberProfileService.sync_profile(db_session, member_id, data)

    return _make


@pytest.fixture
def make_application(db_session):
    """
    Insert an application directly in a given state.
    Defaults to one approved by the committee with no guarantors required.
    """
    from app.modules.applications.models import LoanApplication, ApplicationStatus, CommitteeDecision
    from app.modules.loans.models import LoanType
    from app.modules.loans.products import get_product_rules

    counter = itertools.count(1)

    async def _make(
        amount: Decimal = Decimal("500000"),
        tenor_months: int = 12,
        status: ApplicationStatus = ApplicationStatus.APPROVED,
        member_id: str = None,
        loan_type: LoanType = LoanType.NORMAL,
    ):
        number = next(counter)
        approved = status not in (ApplicationStatus.DRAFT, ApplicationStatus.COMMITTEE_REVIEW)
        application = LoanApplication(
            application_number=f"LA-TEST{number:04d}",
            member_id=member_id or f"M-{number:03d}",
            loan_type=loan_type,
            requested_amount=amount,
            tenor_months=tenor_months,
            interest_rate=get_product_rules(loan_type).interest_rate,
            status=status,
            required_guarantors=0,
            nomination_round=1,
            committee_decision=CommitteeDecision.APPROVED if approved else CommitteeDecision.PENDING,
            approved_amount=amount if approved else None,
            approved_tenor_months=tenor_months if approved else None,
            submitted_at=datetime.utcnow(),
        )
        db_session.add(application)
        await db_session.commit()
        await db_session.refresh(application)
        return application

    return _make


@pytest.fixture
def current_period():
    """(year, month) the services consider current"""
    today = datetime.utcnow().date()
    return today.year, today.month
