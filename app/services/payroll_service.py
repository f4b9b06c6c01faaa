"""
PayCore - Payroll Service

Entry point for every payroll operation exposed over HTTP:
- preview and commit calculations
- payslip lookups, history and listings
- lifecycle actions (approve, complete, cancel, edit, delete)
- period summaries and department reports
- payslip email delivery
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import asc, desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.payroll import Payslip, PayslipAuditEvent, PayrollAction, PayrollStatus
from app.services.audit_service import PayslipAuditService
from app.services.hr_client import HRServicesClient
from app.services.notification_service import DeliveryReceipt, PayslipNotifier
from app.services.payroll_calculator import (
    CalculationOptions, CalculationResult, PayrollCalculator,
)
from app.services.payroll_lifecycle import PayrollLifecycleManager
from app.services.payroll_rules import PayPeriod
from app.services.payroll_summary import PayrollSummary, PayrollSummaryAggregator
from app.utils.error_handling import (
    AppException,
    EmptyBatchError,
    InvalidDateRangeException,
    NotFoundException,
    PayslipNotDeliverableError,
    PayslipNotFoundError,
)

logger = logging.getLogger(__name__)


DELIVERABLE_STATUSES = frozenset({PayrollStatus.PROCESSED, PayrollStatus.PAID})

PERIOD_ORDINAL = Payslip.pay_period_year * 100 + Payslip.pay_period_month

SORT_COLUMNS = {
    "created_at": (Payslip.created_at,),
    "updated_at": (Payslip.updated_at,),
    "employee_id": (Payslip.employee_id,),
    "pay_period": (Payslip.pay_period_year, Payslip.pay_period_month),
    "gross_pay": (Payslip.gross_pay,),
    "net_pay": (Payslip.net_pay,),
    "status": (Payslip.status,),
}


@dataclass
class DeliveryFailure:
    payslip_id: int
    code: str
    message: str


@dataclass
class BulkDeliveryResult:
    requested: int
    sent: List[DeliveryReceipt] = field(default_factory=list)
    failed: List[DeliveryFailure] = field(default_factory=list)


class PayrollService:
    """
    Payroll service for calculating, tracking and delivering payslips.
    """

    def __init__(
        self,
        db: AsyncSession,
        gateway: HRServicesClient,
        notifier: Optional[PayslipNotifier] = None,
    ):
        self.db = db
        self.gateway = gateway
        self.calculator = PayrollCalculator(db, gateway)
        self.lifecycle = PayrollLifecycleManager(db, gateway)
        self.aggregator = PayrollSummaryAggregator(db, gateway)
        self.notifier = notifier or PayslipNotifier(gateway)
        self.audit = PayslipAuditService(db)

    # ===========================================
    # CALCULATION
    # ===========================================

    async def preview_payroll(
        self,
        month: int,
        year: int,
        department_id: Optional[int] = None,
        options: Optional[CalculationOptions] = None,
    ) -> CalculationResult:
        """Preview payslips for a department, or for every active employee."""
        period = PayPeriod(month, year)
        if department_id is not None:
            employee_ids = await self.gateway.list_department_employee_ids(department_id)
            if not employee_ids:
                raise EmptyBatchError(f"Department {department_id} has no employees to preview")
        else:
            employee_ids = await self.gateway.list_active_employee_ids()
            if not employee_ids:
                raise EmptyBatchError("There are no active employees to preview")

        return await self.calculator.preview(period, employee_ids, options)

    async def calculate_payroll(
        self,
        month: int,
        year: int,
        employee_ids: Optional[Sequence[int]] = None,
        department_id: Optional[int] = None,
        options: Optional[CalculationOptions] = None,
        actor_id: Optional[int] = None,
    ) -> CalculationResult:
        """Commit-mode calculation for explicit employees or a department's members."""
        period = PayPeriod(month, year)
        if department_id is not None:
            employee_ids = await self.gateway.list_department_employee_ids(department_id)
            if not employee_ids:
                raise EmptyBatchError(f"Department {department_id} has no employees to calculate")

        return await self.calculator.commit(period, employee_ids or [], options, actor_id=actor_id)

    # ===========================================
    # LOOKUPS
    # ===========================================

    async def get_payroll(self, payslip_id: int) -> Payslip:
        result = await self.db.execute(select(Payslip).where(Payslip.id == payslip_id))
        payslip = result.scalar_one_or_none()
        if not payslip:
            raise PayslipNotFoundError(payslip_id)
        return payslip

    async def get_employee_payroll(self, employee_id: int, month: int, year: int) -> Payslip:
        period = PayPeriod(month, year)
        result = await self.db.execute(
            select(Payslip).where(
                Payslip.employee_id == employee_id,
                Payslip.pay_period_month == period.month,
                Payslip.pay_period_year == period.year,
            )
        )
        payslip = result.scalar_one_or_none()
        if not payslip:
            raise PayslipNotFoundError(
                message=f"No payslip for employee {employee_id} in {period}",
            )
        return payslip

    async def get_employee_payroll_history(
        self,
        employee_id: int,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        page: int = 0,
        size: int = 12,
    ) -> Tuple[List[Payslip], int]:
        """Payslips of an employee whose period falls in [start_date, end_date], newest first."""
        if start_date and end_date and start_date > end_date:
            raise InvalidDateRangeException(str(start_date), str(end_date))

        query = select(Payslip).where(Payslip.employee_id == employee_id)
        if start_date:
            query = query.where(PERIOD_ORDINAL >= PayPeriod.containing(start_date).ordinal)
        if end_date:
            query = query.where(PERIOD_ORDINAL <= PayPeriod.containing(end_date).ordinal)

        query = query.order_by(desc(Payslip.pay_period_year), desc(Payslip.pay_period_month))
        return await self._paginate(query, page, size)

    async def list_payrolls(
        self,
        month: Optional[int] = None,
        year: Optional[int] = None,
        department_id: Optional[int] = None,
        status: Optional[PayrollStatus] = None,
        page: int = 0,
        size: int = 20,
        sort_by: str = "created_at",
        sort_direction: str = "desc",
    ) -> Tuple[List[Payslip], int]:
        query = select(Payslip)

        if month is not None and year is not None:
            period = PayPeriod(month, year)
            query = query.where(
                Payslip.pay_period_month == period.month,
                Payslip.pay_period_year == period.year,
            )
        elif year is not None:
            query = query.where(Payslip.pay_period_year == year)
        elif month is not None:
            query = query.where(Payslip.pay_period_month == month)

        if status:
            query = query.where(Payslip.status == status)

        if department_id is not None:
            member_ids = await self.gateway.list_department_employee_ids(department_id)
            if not member_ids:
                return [], 0
            query = query.where(Payslip.employee_id.in_(member_ids))

        direction = asc if sort_direction == "asc" else desc
        columns = SORT_COLUMNS.get(sort_by, SORT_COLUMNS["created_at"])
        query = query.order_by(*(direction(c) for c in columns), direction(Payslip.id))

        return await self._paginate(query, page, size)

    async def get_payslip_audit_trail(self, payslip_id: int) -> List[PayslipAuditEvent]:
        await self.get_payroll(payslip_id)
        return await self.audit.get_payslip_history(payslip_id)

    # ===========================================
    # LIFECYCLE
    # ===========================================

    async def approve_payroll(self, payslip_id: int, approver_id: int) -> Payslip:
        payslip = await self.get_payroll(payslip_id)
        return await self.lifecycle.approve(payslip, approver_id)

    async def complete_payroll(
        self,
        payslip_id: int,
        pay_date: Optional[date] = None,
        actor_id: Optional[int] = None,
    ) -> Payslip:
        payslip = await self.get_payroll(payslip_id)
        return await self.lifecycle.complete(payslip, pay_date=pay_date, actor_id=actor_id)

    async def cancel_payroll(
        self,
        payslip_id: int,
        actor_id: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> Payslip:
        payslip = await self.get_payroll(payslip_id)
        return await self.lifecycle.cancel(payslip, actor_id=actor_id, reason=reason)

    async def update_payroll(
        self,
        payslip_id: int,
        options: Optional[CalculationOptions] = None,
        notes: Optional[str] = None,
        actor_id: Optional[int] = None,
    ) -> Payslip:
        payslip = await self.get_payroll(payslip_id)
        return await self.lifecycle.update(payslip, options=options, notes=notes, actor_id=actor_id)

    async def delete_payroll(self, payslip_id: int, actor_id: Optional[int] = None) -> None:
        payslip = await self.get_payroll(payslip_id)
        await self.lifecycle.delete(payslip, actor_id=actor_id)

    # ===========================================
    # SUMMARY & REPORTS
    # ===========================================

    async def get_payroll_summary(
        self,
        month: int,
        year: int,
        department_id: Optional[int] = None,
    ) -> PayrollSummary:
        return await self.aggregator.summarize(PayPeriod(month, year), department_id)

    async def get_department_payroll_report(
        self,
        department_id: int,
        month: int,
        year: int,
        page: int = 0,
        size: int = 20,
    ) -> Tuple[List[Payslip], int]:
        """Non-cancelled payslips of the department's current members for a period."""
        period = PayPeriod(month, year)
        member_ids = await self.gateway.list_department_employee_ids(department_id)
        if not member_ids:
            return [], 0

        query = (
            select(Payslip)
            .where(
                Payslip.employee_id.in_(member_ids),
                Payslip.pay_period_month == period.month,
                Payslip.pay_period_year == period.year,
                Payslip.status != PayrollStatus.CANCELLED,
            )
            .order_by(Payslip.employee_id)
        )
        return await self._paginate(query, page, size)

    # ===========================================
    # EMAIL
    # ===========================================

    async def send_payslip_email(
        self,
        payslip_id: int,
        custom_subject: Optional[str] = None,
        custom_message: Optional[str] = None,
        sent_by: Optional[int] = None,
    ) -> DeliveryReceipt:
        """Email a PROCESSED or PAID payslip to its employee."""
        payslip = await self.get_payroll(payslip_id)
        if payslip.status not in DELIVERABLE_STATUSES:
            raise PayslipNotDeliverableError(payslip.id, payslip.status.value)

        employee = await self.gateway.get_employee(payslip.employee_id)
        if employee is None:
            raise NotFoundException("Employee", payslip.employee_id)

        receipt = await self.notifier.send_payslip(
            payslip, employee,
            custom_subject=custom_subject,
            custom_message=custom_message,
            sent_by=sent_by,
        )

        await self.audit.log_action(
            payslip, PayrollAction.SEND_EMAIL,
            from_status=payslip.status,
            to_status=payslip.status,
            actor_id=sent_by,
            extra={"recipient": receipt.recipient, "message_id": receipt.message_id},
        )
        await self.db.commit()

        return receipt

    async def send_bulk_payslip_emails(
        self,
        payslip_ids: Sequence[int],
        custom_subject: Optional[str] = None,
        custom_message: Optional[str] = None,
        sent_by: Optional[int] = None,
    ) -> BulkDeliveryResult:
        """Email several payslips; one failure does not stop the others."""
        payslip_ids = list(dict.fromkeys(payslip_ids))
        if not payslip_ids:
            raise EmptyBatchError("At least one payslip is required")

        result = BulkDeliveryResult(requested=len(payslip_ids))
        for payslip_id in payslip_ids:
            try:
                receipt = await self.send_payslip_email(
                    payslip_id,
                    custom_subject=custom_subject,
                    custom_message=custom_message,
                    sent_by=sent_by,
                )
            except AppException as e:
                logger.warning(f"Bulk email: payslip {payslip_id} not sent ({e.code.value}): {e.message}")
                result.failed.append(DeliveryFailure(payslip_id, e.code.value, e.message))
            else:
                result.sent.append(receipt)

        logger.info(
            f"Bulk payslip email: {len(result.sent)} sent, {len(result.failed)} failed "
            f"of {result.requested}"
        )
        return result

    # ===========================================
    # HELPERS
    # ===========================================

    async def _paginate(self, query, page: int, size: int) -> Tuple[List[Payslip], int]:
        page = max(page, 0)
        size = max(1, min(size, settings.payroll_max_page_size))

        count_result = await self.db.execute(
            select(func.count()).select_from(query.order_by(None).subquery())
        )
        total = count_result.scalar() or 0

        result = await self.db.execute(query.offset(page * size).limit(size))
        return list(result.scalars().all()), total
