"""
PayCore - Payroll Summary Aggregator

Read-side rollup of committed payslips for a pay period. Totals are
always a reduction over the current rows; nothing is stored.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.payroll import Payslip, PayrollStatus
from app.services.hr_client import HRServicesClient
from app.services.payroll_rules import ZERO, PayPeriod

logger = logging.getLogger(__name__)


@dataclass
class PayrollSummary:
    """Totals for a period, optionally scoped to a department."""
    period: PayPeriod
    department_id: Optional[int] = None
    total_employees: int = 0
    total_base_salary: Decimal = ZERO
    total_overtime_pay: Decimal = ZERO
    total_allowances: Decimal = ZERO
    total_deductions: Decimal = ZERO
    total_gross_pay: Decimal = ZERO
    total_net_pay: Decimal = ZERO
    negative_net_pay_count: int = 0
    status_counts: dict = field(default_factory=dict)
    payslips: List[Payslip] = field(default_factory=list)


def summarize_payslips(
    period: PayPeriod,
    payslips: Sequence[Payslip],
    department_id: Optional[int] = None,
) -> PayrollSummary:
    """Reduce a set of payslips to a summary. Cancelled rows are left out."""
    summary = PayrollSummary(period=period, department_id=department_id)
    employees = set()

    for payslip in payslips:
        if payslip.status == PayrollStatus.CANCELLED:
            continue
        employees.add(payslip.employee_id)
        summary.total_base_salary += payslip.base_salary
        summary.total_overtime_pay += payslip.overtime_pay
        summary.total_allowances += payslip.total_allowances
        summary.total_deductions += payslip.total_deductions
        summary.total_gross_pay += payslip.gross_pay
        summary.total_net_pay += payslip.net_pay
        if payslip.net_pay < 0:
            summary.negative_net_pay_count += 1
        status = payslip.status.value
        summary.status_counts[status] = summary.status_counts.get(status, 0) + 1
        summary.payslips.append(payslip)

    summary.total_employees = len(employees)
    return summary


class PayrollSummaryAggregator:
    """Builds period summaries from the persisted payslips."""

    def __init__(self, db: AsyncSession, gateway: HRServicesClient):
        self.db = db
        self.gateway = gateway

    async def summarize(
        self,
        period: PayPeriod,
        department_id: Optional[int] = None,
    ) -> PayrollSummary:
        """
        Summarize the committed payslips of a period.

        Department scoping uses the department's members as of now, so
        moving an employee between departments changes which report the
        employee appears in, not the stored payslips.
        """
        query = select(Payslip).where(
            Payslip.pay_period_month == period.month,
            Payslip.pay_period_year == period.year,
            Payslip.status != PayrollStatus.CANCELLED,
        )

        if department_id is not None:
            member_ids = await self.gateway.list_department_employee_ids(department_id)
            if not member_ids:
                return PayrollSummary(period=period, department_id=department_id)
            query = query.where(Payslip.employee_id.in_(member_ids))

        query = query.order_by(Payslip.employee_id)
        result = await self.db.execute(query)
        payslips = list(result.scalars().all())

        summary = summarize_payslips(period, payslips, department_id=department_id)
        logger.debug(
            f"Summary {period} (department={department_id}): "
            f"{summary.total_employees} employee(s), net {summary.total_net_pay}"
        )
        return summary
