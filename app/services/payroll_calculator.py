"""
PayCore - Payroll Calculator

Turns compensation inputs into payslips for one pay period.

gross_pay = base_salary + total_allowances + overtime_pay
net_pay   = gross_pay - total_deductions

Two modes:
- preview: nothing is written; rows carry is_preview=True and synthetic
  negative ids (-1, -2, ...). Safe to call repeatedly and concurrently.
- commit: one row per (employee, month, year). New rows are inserted as
  DRAFT; existing non-terminal rows get their computed fields
  overwritten and keep their status. PAID/CANCELLED rows are never
  touched.

Employees that cannot be computed are omitted with a reason; the batch
itself only fails for an empty request.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.payroll import (
    ComponentType, Payslip, PayslipDeduction, PayrollAction, PayrollStatus,
)
from app.services.audit_service import PayslipAuditService, snapshot_figures
from app.services.hr_client import HRServicesClient
from app.services.payroll_rules import (
    ZERO, AllowanceLine, PayPeriod, resolve_active_compensation,
    resolve_allowances, to_money,
)
from app.utils.error_handling import (
    CompensationNotResolvedError,
    EmptyBatchError,
    ImmutablePayslipError,
    UpstreamServiceError,
)

logger = logging.getLogger(__name__)


# ===========================================
# RESULT TYPES
# ===========================================

class OmissionReason(str, Enum):
    """Why an employee is missing from a calculation result."""
    NO_ACTIVE_COMPENSATION = "NO_ACTIVE_COMPENSATION"
    UPSTREAM_FAILURE = "UPSTREAM_FAILURE"
    INVALID_COLLABORATOR_DATA = "INVALID_COLLABORATOR_DATA"
    IMMUTABLE_PAYSLIP = "IMMUTABLE_PAYSLIP"


class CalculationOutcome(str, Enum):
    """Whole-batch outcome."""
    COMPLETE = "COMPLETE"
    PARTIAL = "PARTIAL"
    EMPTY = "EMPTY"


@dataclass
class CalculationOptions:
    """Which components to include in a calculation."""
    include_overtime: bool = True
    include_allowances: bool = True
    include_deductions: bool = True


@dataclass
class DeductionLine:
    name: str
    amount: Decimal
    deduction_type: ComponentType = ComponentType.FIXED
    mandatory: bool = False
    description: Optional[str] = None


@dataclass
class ComputedPayslip:
    """
    Payslip figures for one employee, before or without persistence.

    Attribute names mirror the Payslip model so both serialize through
    the same response schema.
    """
    employee_id: int
    pay_period_month: int
    pay_period_year: int
    currency: str
    base_salary: Decimal
    total_allowances: Decimal
    overtime_pay: Decimal
    total_deductions: Decimal
    allowances: List[AllowanceLine] = field(default_factory=list)
    deductions: List[DeductionLine] = field(default_factory=list)
    employee_code: Optional[str] = None
    employee_name: Optional[str] = None
    id: Optional[int] = None
    is_preview: bool = True
    status: Optional[PayrollStatus] = None
    pay_date: Any = None
    approved_by_id: Optional[int] = None
    approved_at: Any = None
    notes: Optional[str] = None
    created_at: Any = None
    updated_at: Any = None

    @property
    def gross_pay(self) -> Decimal:
        return self.base_salary + self.total_allowances + self.overtime_pay

    @property
    def net_pay(self) -> Decimal:
        return self.gross_pay - self.total_deductions

    @property
    def negative_net_pay(self) -> bool:
        return self.net_pay < 0

    @property
    def allowance_breakdown(self) -> List[Dict[str, Any]]:
        return [line.to_dict() for line in self.allowances]


@dataclass
class EmployeeOmission:
    """An employee that was requested but is not in the result."""
    employee_id: int
    reason: OmissionReason
    message: str


PayslipLike = Union[Payslip, ComputedPayslip]


@dataclass
class CalculationResult:
    """Explicit value returned by every calculator invocation."""
    period: PayPeriod
    is_preview: bool
    requested: int
    payslips: List[PayslipLike] = field(default_factory=list)
    omissions: List[EmployeeOmission] = field(default_factory=list)

    @property
    def outcome(self) -> CalculationOutcome:
        if not self.payslips:
            return CalculationOutcome.EMPTY
        if self.omissions:
            return CalculationOutcome.PARTIAL
        return CalculationOutcome.COMPLETE

    @property
    def warnings(self) -> List[str]:
        messages = [f"Employee {o.employee_id}: {o.message}" for o in self.omissions]
        for payslip in self.payslips:
            if payslip.negative_net_pay:
                messages.append(
                    f"Employee {payslip.employee_id}: net pay is negative ({payslip.net_pay})"
                )
        return messages


# ===========================================
# CALCULATOR
# ===========================================

async def _resolved(value):
    return value


class PayrollCalculator:
    """
    Payroll calculator for one pay period and a batch of employees.

    Collaborator lookups for different employees run concurrently; all
    database work happens afterwards, sequentially, on the one session.
    """

    def __init__(self, db: AsyncSession, gateway: HRServicesClient):
        self.db = db
        self.gateway = gateway
        self.audit = PayslipAuditService(db)

    # ===========================================
    # ENTRY POINTS
    # ===========================================

    async def calculate(
        self,
        period: PayPeriod,
        employee_ids: Sequence[int],
        options: Optional[CalculationOptions] = None,
        commit: bool = False,
        actor_id: Optional[int] = None,
    ) -> CalculationResult:
        if commit:
            return await self.commit(period, employee_ids, options, actor_id=actor_id)
        return await self.preview(period, employee_ids, options)

    async def preview(
        self,
        period: PayPeriod,
        employee_ids: Sequence[int],
        options: Optional[CalculationOptions] = None,
    ) -> CalculationResult:
        """Compute payslips without writing anything."""
        employee_ids = self._normalize_batch(employee_ids)
        options = options or CalculationOptions()

        computed, omissions = await self._compute_batch(employee_ids, period, options)
        for index, payslip in enumerate(computed, start=1):
            payslip.id = -index

        self._log_omissions(period, omissions, preview=True)
        return CalculationResult(
            period=period,
            is_preview=True,
            requested=len(employee_ids),
            payslips=list(computed),
            omissions=omissions,
        )

    async def commit(
        self,
        period: PayPeriod,
        employee_ids: Sequence[int],
        options: Optional[CalculationOptions] = None,
        actor_id: Optional[int] = None,
    ) -> CalculationResult:
        """
        Compute and persist payslips.

        Re-running for the same period overwrites the computed fields of
        existing non-terminal rows in place. Existing rows are read before
        new ones are inserted, so a retry racing the original request
        fails on the unique (employee, month, year) key and rolls back the
        whole batch; no duplicates are written and the caller re-runs the
        commit, which then sees the stored rows.
        """
        employee_ids = self._normalize_batch(employee_ids)
        options = options or CalculationOptions()

        existing = await self._load_existing(employee_ids, period)
        omissions: List[EmployeeOmission] = []
        computable: List[int] = []

        for employee_id in employee_ids:
            row = existing.get(employee_id)
            if row is not None and row.is_terminal:
                error = ImmutablePayslipError(
                    employee_id, period.month, period.year, row.status.value, payslip_id=row.id,
                )
                omissions.append(EmployeeOmission(
                    employee_id, OmissionReason.IMMUTABLE_PAYSLIP, error.message,
                ))
            else:
                computable.append(employee_id)

        computed, compute_omissions = await self._compute_batch(computable, period, options)
        omissions.extend(compute_omissions)

        persisted: List[Payslip] = []
        for result in computed:
            row = existing.get(result.employee_id)
            if row is None:
                row = Payslip(
                    employee_id=result.employee_id,
                    pay_period_month=period.month,
                    pay_period_year=period.year,
                    status=PayrollStatus.DRAFT,
                    created_by_id=actor_id,
                )
                self.apply_computation(row, result, actor_id=actor_id)
                self.db.add(row)
                await self.db.flush()
                await self.audit.log_action(
                    row, PayrollAction.CALCULATE,
                    to_status=PayrollStatus.DRAFT,
                    actor_id=actor_id,
                    new_values=snapshot_figures(row),
                )
            else:
                old_values = snapshot_figures(row)
                self.apply_computation(row, result, actor_id=actor_id)
                await self.db.flush()
                await self.audit.log_action(
                    row, PayrollAction.RECALCULATE,
                    from_status=row.status,
                    to_status=row.status,
                    actor_id=actor_id,
                    old_values=old_values,
                    new_values=snapshot_figures(row),
                )
            persisted.append(row)

        await self.db.commit()

        order = {employee_id: index for index, employee_id in enumerate(employee_ids)}
        omissions.sort(key=lambda o: order[o.employee_id])
        self._log_omissions(period, omissions, preview=False)
        logger.info(
            f"Committed payroll for {period}: {len(persisted)} payslip(s), "
            f"{len(omissions)} omission(s)"
        )

        return CalculationResult(
            period=period,
            is_preview=False,
            requested=len(employee_ids),
            payslips=persisted,
            omissions=omissions,
        )

    # ===========================================
    # PER-EMPLOYEE COMPUTATION
    # ===========================================

    async def compute_employee(
        self,
        employee_id: int,
        period: PayPeriod,
        options: Optional[CalculationOptions] = None,
    ) -> ComputedPayslip:
        """
        Compute one employee's payslip figures.

        Raises CompensationNotResolvedError when no compensation record is
        in force for the period and UpstreamServiceError when any lookup
        fails; in neither case is a partial payslip produced.
        """
        options = options or CalculationOptions()

        history, employee = await asyncio.gather(
            self.gateway.get_compensation_history(employee_id),
            self.gateway.get_employee(employee_id),
        )
        compensation = resolve_active_compensation(history, period)
        if compensation is None:
            raise CompensationNotResolvedError(employee_id, period.month, period.year)

        base_salary = to_money(compensation.base_salary)

        assignments, overtime, deduction_details = await asyncio.gather(
            self.gateway.get_allowance_assignments(employee_id, period.start, period.end)
            if options.include_allowances else _resolved([]),
            self.gateway.get_overtime_pay(employee_id, period.month, period.year)
            if options.include_overtime else _resolved(ZERO),
            self.gateway.get_deduction_breakdown(employee_id, period.month, period.year)
            if options.include_deductions else _resolved([]),
        )

        allowances = resolve_allowances(assignments, base_salary, period)
        deductions = [
            DeductionLine(
                name=detail.name,
                amount=to_money(detail.amount),
                deduction_type=detail.type,
                mandatory=detail.mandatory,
                description=detail.description,
            )
            for detail in deduction_details
        ]

        return ComputedPayslip(
            employee_id=employee_id,
            employee_code=employee.employee_code if employee else None,
            employee_name=employee.full_name if employee else None,
            pay_period_month=period.month,
            pay_period_year=period.year,
            currency=compensation.currency or settings.payroll_currency,
            base_salary=base_salary,
            total_allowances=sum((line.amount for line in allowances), ZERO),
            overtime_pay=to_money(overtime),
            total_deductions=sum((line.amount for line in deductions), ZERO),
            allowances=allowances,
            deductions=deductions,
        )

    @staticmethod
    def apply_computation(
        payslip: Payslip,
        computed: ComputedPayslip,
        actor_id: Optional[int] = None,
    ) -> Payslip:
        """Copy computed figures onto a persisted payslip, replacing its deduction lines."""
        payslip.employee_code = computed.employee_code or payslip.employee_code
        payslip.employee_name = computed.employee_name or payslip.employee_name
        payslip.currency = computed.currency
        payslip.base_salary = computed.base_salary
        payslip.total_allowances = computed.total_allowances
        payslip.overtime_pay = computed.overtime_pay
        payslip.gross_pay = computed.gross_pay
        payslip.total_deductions = computed.total_deductions
        payslip.net_pay = computed.net_pay
        payslip.allowance_breakdown = computed.allowance_breakdown
        payslip.deductions = [
            PayslipDeduction(
                name=line.name,
                description=line.description,
                amount=line.amount,
                deduction_type=line.deduction_type,
                mandatory=line.mandatory,
                sort_order=index,
            )
            for index, line in enumerate(computed.deductions)
        ]
        if actor_id is not None:
            payslip.updated_by_id = actor_id
        return payslip

    # ===========================================
    # HELPERS
    # ===========================================

    @staticmethod
    def _normalize_batch(employee_ids: Sequence[int]) -> List[int]:
        if not employee_ids:
            raise EmptyBatchError()
        # Keep first occurrence order, drop repeats
        return list(dict.fromkeys(employee_ids))

    async def _compute_batch(
        self,
        employee_ids: Sequence[int],
        period: PayPeriod,
        options: CalculationOptions,
    ) -> Tuple[List[ComputedPayslip], List[EmployeeOmission]]:
        outcomes = await asyncio.gather(
            *(self._compute_or_omit(employee_id, period, options) for employee_id in employee_ids)
        )
        computed = [o for o in outcomes if isinstance(o, ComputedPayslip)]
        omissions = [o for o in outcomes if isinstance(o, EmployeeOmission)]
        return computed, omissions

    async def _compute_or_omit(
        self,
        employee_id: int,
        period: PayPeriod,
        options: CalculationOptions,
    ) -> Union[ComputedPayslip, EmployeeOmission]:
        try:
            return await self.compute_employee(employee_id, period, options)
        except CompensationNotResolvedError as e:
            return EmployeeOmission(employee_id, OmissionReason.NO_ACTIVE_COMPENSATION, e.message)
        except UpstreamServiceError as e:
            reason = (
                OmissionReason.INVALID_COLLABORATOR_DATA
                if e.reason == OmissionReason.INVALID_COLLABORATOR_DATA.value
                else OmissionReason.UPSTREAM_FAILURE
            )
            return EmployeeOmission(employee_id, reason, e.message)

    async def _load_existing(
        self,
        employee_ids: Sequence[int],
        period: PayPeriod,
    ) -> Dict[int, Payslip]:
        result = await self.db.execute(
            select(Payslip).where(
                Payslip.employee_id.in_(employee_ids),
                Payslip.pay_period_month == period.month,
                Payslip.pay_period_year == period.year,
            )
        )
        return {row.employee_id: row for row in result.scalars().all()}

    @staticmethod
    def _log_omissions(
        period: PayPeriod,
        omissions: List[EmployeeOmission],
        preview: bool,
    ) -> None:
        mode = "preview" if preview else "commit"
        for omission in omissions:
            logger.warning(
                f"Payroll {mode} {period}: employee {omission.employee_id} omitted "
                f"({omission.reason.value}): {omission.message}"
            )
