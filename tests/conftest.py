"""
PayCore - Test Configuration

Pytest fixtures and configuration.
"""

import os

# Point the application at SQLite before app.config is first imported
os.environ.setdefault("DATABASE_URL_ASYNC", "sqlite+aiosqlite://")
os.environ.setdefault("APP_ENV", "testing")

from collections import defaultdict
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import AsyncGenerator, Dict, List, Optional, Sequence

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base, get_async_session
from app.dependencies import get_hr_client
from app.models.payroll import ComponentType
from app.schemas.compensation import (
    AllowanceDefinition,
    CompensationRecord,
    DeductionDetail,
    EmployeeAllowanceAssignment,
    EmployeeRef,
    NotificationReceipt,
)
from app.utils.error_handling import UpstreamServiceError
from main import app


# In-memory SQLite shared by every connection of the test engine
TEST_DATABASE_URL = "sqlite+aiosqlite://"

test_engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


# ===========================================
# HR SERVICES FAKE
# ===========================================

class FakeHRGateway:
    """
    In-memory stand-in for HRServicesClient.

    Exposes the same coroutine methods; failures can be injected per
    method and employee to simulate an unavailable collaborator.
    """

    def __init__(self):
        self.compensation: Dict[int, List[CompensationRecord]] = defaultdict(list)
        self.assignments: Dict[int, List[EmployeeAllowanceAssignment]] = defaultdict(list)
        self.overtime: Dict[int, Decimal] = {}
        self.deductions: Dict[int, List[DeductionDetail]] = defaultdict(list)
        self.employees: Dict[int, EmployeeRef] = {}
        self.departments: Dict[int, List[int]] = defaultdict(list)
        self.failures: Dict[str, set] = defaultdict(set)
        self.notification_down = False
        self.sent_emails: List[dict] = []

    # ---- setup helpers ----

    def add_employee(
        self,
        employee_id: int,
        base_salary: Optional[str] = "10000000",
        department_id: Optional[int] = None,
        email: Optional[str] = None,
        effective_date: date = date(2024, 1, 1),
        overtime: str = "0",
    ) -> EmployeeRef:
        employee = EmployeeRef(
            id=employee_id,
            employee_code=f"EMP{employee_id:04d}",
            full_name=f"Employee {employee_id}",
            email=email or f"employee{employee_id}@example.com",
            department_id=department_id,
            status="ACTIVE",
        )
        self.employees[employee_id] = employee
        if department_id is not None:
            self.departments[department_id].append(employee_id)
        if base_salary is not None:
            self.add_compensation(employee_id, base_salary, effective_date=effective_date)
        self.overtime[employee_id] = Decimal(overtime)
        return employee

    def add_compensation(
        self,
        employee_id: int,
        base_salary: str,
        effective_date: date = date(2024, 1, 1),
        end_date: Optional[date] = None,
        active: bool = True,
    ) -> CompensationRecord:
        record = CompensationRecord(
            id=len(self.compensation[employee_id]) + 1,
            employee_id=employee_id,
            base_salary=Decimal(base_salary),
            gross_salary=Decimal(base_salary),
            currency="VND",
            effective_date=effective_date,
            end_date=end_date,
            active=active,
        )
        self.compensation[employee_id].append(record)
        return record

    def add_allowance(
        self,
        employee_id: int,
        name: str,
        amount: str,
        allowance_type: ComponentType = ComponentType.FIXED,
        custom_amount: Optional[str] = None,
        effective_date: date = date(2024, 1, 1),
        end_date: Optional[date] = None,
    ) -> EmployeeAllowanceAssignment:
        allowance_id = sum(len(v) for v in self.assignments.values()) + 1
        assignment = EmployeeAllowanceAssignment(
            id=allowance_id,
            employee_id=employee_id,
            allowance=AllowanceDefinition(
                id=allowance_id,
                name=name,
                type=allowance_type,
                amount=Decimal(amount),
            ),
            custom_amount=Decimal(custom_amount) if custom_amount is not None else None,
            effective_date=effective_date,
            end_date=end_date,
        )
        self.assignments[employee_id].append(assignment)
        return assignment

    def add_deduction(
        self,
        employee_id: int,
        name: str,
        amount: str,
        mandatory: bool = True,
    ) -> DeductionDetail:
        detail = DeductionDetail(name=name, amount=Decimal(amount), mandatory=mandatory)
        self.deductions[employee_id].append(detail)
        return detail

    def fail(self, method: str, employee_id: int) -> None:
        self.failures[method].add(employee_id)

    def _check(self, method: str, employee_id: int) -> None:
        if employee_id in self.failures[method]:
            raise UpstreamServiceError("fake-hr", f"{method} unavailable for employee {employee_id}")

    # ---- HRServicesClient interface ----

    async def get_compensation_history(self, employee_id: int) -> List[CompensationRecord]:
        self._check("get_compensation_history", employee_id)
        return list(self.compensation.get(employee_id, []))

    async def get_allowance_assignments(
        self, employee_id: int, start: date, end: date,
    ) -> List[EmployeeAllowanceAssignment]:
        self._check("get_allowance_assignments", employee_id)
        return list(self.assignments.get(employee_id, []))

    async def get_overtime_pay(self, employee_id: int, month: int, year: int) -> Decimal:
        self._check("get_overtime_pay", employee_id)
        return self.overtime.get(employee_id, Decimal("0"))

    async def get_deduction_breakdown(
        self, employee_id: int, month: int, year: int,
    ) -> List[DeductionDetail]:
        self._check("get_deduction_breakdown", employee_id)
        return list(self.deductions.get(employee_id, []))

    async def get_employee(self, employee_id: int) -> Optional[EmployeeRef]:
        self._check("get_employee", employee_id)
        return self.employees.get(employee_id)

    async def list_active_employee_ids(self) -> List[int]:
        return [e.id for e in self.employees.values() if e.status == "ACTIVE"]

    async def list_department_employee_ids(self, department_id: int) -> List[int]:
        return list(self.departments.get(department_id, []))

    async def dispatch_email(
        self,
        to: str,
        subject: str,
        body_text: str,
        body_html: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> NotificationReceipt:
        if self.notification_down:
            raise UpstreamServiceError("notification-service", "service unavailable")
        self.sent_emails.append({
            "to": to,
            "subject": subject,
            "body_text": body_text,
            "body_html": body_html,
            "metadata": metadata or {},
        })
        return NotificationReceipt(
            message_id=f"msg-{len(self.sent_emails)}",
            accepted_at=datetime.now(timezone.utc),
        )


def scenario_a(gateway: FakeHRGateway, employee_id: int = 1, department_id: Optional[int] = None) -> None:
    """Base 10,000,000 + FIXED 500,000 + overtime 200,000 - mandatory 1,030,000."""
    gateway.add_employee(employee_id, "10000000", department_id=department_id, overtime="200000")
    gateway.add_allowance(employee_id, "Lunch", "500000")
    gateway.add_deduction(employee_id, "Social insurance", "1030000")


# ===========================================
# FIXTURES
# ===========================================

@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionLocal() as session:
        yield session
        await session.rollback()

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def hr_gateway() -> FakeHRGateway:
    return FakeHRGateway()


@pytest.fixture
def scenario_a_gateway(hr_gateway: FakeHRGateway) -> FakeHRGateway:
    scenario_a(hr_gateway, employee_id=1, department_id=10)
    return hr_gateway


@pytest_asyncio.fixture(scope="function")
async def client(
    db_session: AsyncSession,
    hr_gateway: FakeHRGateway,
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with database session and HR services overrides."""

    async def override_get_session():
        yield db_session

    async def override_get_hr_client():
        return hr_gateway

    app.dependency_overrides[get_async_session] = override_get_session
    app.dependency_overrides[get_hr_client] = override_get_hr_client

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
