"""
PayCore - FastAPI Dependencies

Shared dependencies for database sessions, the HR services client and
the payroll service.
"""

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_async_session
from app.services.hr_client import HRServicesClient
from app.services.notification_service import PayslipNotifier
from app.services.payroll_service import PayrollService


async def get_hr_client(request: Request) -> HRServicesClient:
    """
    HR services client shared by the application.

    Created in main.lifespan and kept on app.state so connections are
    pooled across requests.
    """
    return request.app.state.hr_client


async def get_payslip_notifier(
    hr_client: HRServicesClient = Depends(get_hr_client),
) -> PayslipNotifier:
    return PayslipNotifier(hr_client)


async def get_payroll_service(
    db: AsyncSession = Depends(get_async_session),
    hr_client: HRServicesClient = Depends(get_hr_client),
    notifier: PayslipNotifier = Depends(get_payslip_notifier),
) -> PayrollService:
    return PayrollService(db, hr_client, notifier=notifier)
