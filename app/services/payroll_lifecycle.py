"""
PayCore - Payroll Lifecycle Manager

State machine over Payslip.status:

    DRAFT --approve--> PROCESSED (or PENDING_APPROVAL with secondary approval)
    PENDING_APPROVAL / PROCESSED --complete--> PAID
    DRAFT / PENDING_APPROVAL / PROCESSED --cancel--> CANCELLED
    DRAFT --edit/delete--> DRAFT / removed

PAID and CANCELLED are terminal. A rejected action never mutates the row.
"""

import logging
from datetime import date, datetime, timezone
from typing import Dict, FrozenSet, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.payroll import Payslip, PayrollAction, PayrollStatus
from app.services.audit_service import PayslipAuditService, snapshot_figures
from app.services.hr_client import HRServicesClient
from app.services.payroll_calculator import CalculationOptions, PayrollCalculator
from app.services.payroll_rules import PayPeriod
from app.utils.error_handling import (
    ImmutablePayslipError,
    InvalidActorError,
    InvalidTransitionError,
)

logger = logging.getLogger(__name__)


# Statuses each action may start from
ALLOWED_FROM: Dict[PayrollAction, FrozenSet[PayrollStatus]] = {
    PayrollAction.APPROVE: frozenset({PayrollStatus.DRAFT}),
    PayrollAction.COMPLETE: frozenset({PayrollStatus.PENDING_APPROVAL, PayrollStatus.PROCESSED}),
    PayrollAction.CANCEL: frozenset({
        PayrollStatus.DRAFT, PayrollStatus.PENDING_APPROVAL, PayrollStatus.PROCESSED,
    }),
    PayrollAction.EDIT: frozenset({PayrollStatus.DRAFT}),
    PayrollAction.DELETE: frozenset({PayrollStatus.DRAFT}),
}


def approval_target() -> PayrollStatus:
    """Status a DRAFT payslip moves to when approved."""
    if settings.payroll_require_secondary_approval:
        return PayrollStatus.PENDING_APPROVAL
    return PayrollStatus.PROCESSED


def ensure_transition(payslip: Payslip, action: PayrollAction) -> None:
    """
    Raise if the action is not allowed from the payslip's status.

    Edits and deletes of a PAID/CANCELLED payslip raise ImmutablePayslipError
    so the caller gets the "already paid" explanation; every other rejected
    action raises InvalidTransitionError.
    """
    if payslip.status in ALLOWED_FROM[action]:
        return
    if payslip.is_terminal and action in (PayrollAction.EDIT, PayrollAction.DELETE):
        raise ImmutablePayslipError(
            payslip.employee_id,
            payslip.pay_period_month,
            payslip.pay_period_year,
            payslip.status.value,
            payslip_id=payslip.id,
        )
    raise InvalidTransitionError(payslip.status.value, action.value, payslip_id=payslip.id)


class PayrollLifecycleManager:
    """Moves committed payslips through their lifecycle."""

    def __init__(self, db: AsyncSession, gateway: HRServicesClient):
        self.db = db
        self.gateway = gateway
        self.audit = PayslipAuditService(db)

    async def approve(self, payslip: Payslip, approver_id: int) -> Payslip:
        """Approve a DRAFT payslip."""
        ensure_transition(payslip, PayrollAction.APPROVE)
        await self._validate_actor(approver_id, "approver_id")

        from_status = payslip.status
        now = datetime.now(timezone.utc)
        payslip.status = approval_target()
        payslip.approved_by_id = approver_id
        payslip.approved_at = now
        if payslip.status == PayrollStatus.PROCESSED:
            payslip.processed_at = now
        payslip.updated_by_id = approver_id

        return await self._record(payslip, PayrollAction.APPROVE, from_status, approver_id)

    async def complete(
        self,
        payslip: Payslip,
        pay_date: Optional[date] = None,
        actor_id: Optional[int] = None,
    ) -> Payslip:
        """Mark a payslip as paid. After this the row is an immutable financial record."""
        ensure_transition(payslip, PayrollAction.COMPLETE)
        if actor_id is not None:
            await self._validate_actor(actor_id, "actor_id")

        from_status = payslip.status
        now = datetime.now(timezone.utc)
        if payslip.processed_at is None:
            payslip.processed_at = now
        payslip.status = PayrollStatus.PAID
        payslip.pay_date = pay_date or now.date()
        payslip.paid_at = now
        if actor_id is not None:
            payslip.updated_by_id = actor_id

        return await self._record(payslip, PayrollAction.COMPLETE, from_status, actor_id)

    async def cancel(
        self,
        payslip: Payslip,
        actor_id: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> Payslip:
        ensure_transition(payslip, PayrollAction.CANCEL)
        if actor_id is not None:
            await self._validate_actor(actor_id, "actor_id")

        from_status = payslip.status
        payslip.status = PayrollStatus.CANCELLED
        payslip.cancelled_by_id = actor_id
        payslip.cancelled_at = datetime.now(timezone.utc)
        if actor_id is not None:
            payslip.updated_by_id = actor_id
        if reason:
            note = f"Cancelled: {reason}"
            payslip.notes = f"{payslip.notes}\n{note}" if payslip.notes else note

        return await self._record(
            payslip, PayrollAction.CANCEL, from_status, actor_id,
            extra={"reason": reason} if reason else None,
        )

    async def update(
        self,
        payslip: Payslip,
        options: Optional[CalculationOptions] = None,
        notes: Optional[str] = None,
        actor_id: Optional[int] = None,
    ) -> Payslip:
        """
        Recalculate a DRAFT payslip in place.

        Collaborator failures propagate and leave the stored figures as
        they were.
        """
        ensure_transition(payslip, PayrollAction.EDIT)

        calculator = PayrollCalculator(self.db, self.gateway)
        period = PayPeriod(payslip.pay_period_month, payslip.pay_period_year)
        computed = await calculator.compute_employee(payslip.employee_id, period, options)

        old_values = snapshot_figures(payslip)
        calculator.apply_computation(payslip, computed, actor_id=actor_id)
        if notes is not None:
            payslip.notes = notes

        await self.db.flush()
        await self.audit.log_action(
            payslip, PayrollAction.EDIT,
            from_status=payslip.status,
            to_status=payslip.status,
            actor_id=actor_id,
            old_values=old_values,
            new_values=snapshot_figures(payslip),
        )
        await self.db.commit()

        logger.info(f"Recalculated payslip {payslip.id} for employee {payslip.employee_id} ({period})")
        return payslip

    async def delete(self, payslip: Payslip, actor_id: Optional[int] = None) -> None:
        ensure_transition(payslip, PayrollAction.DELETE)

        await self.audit.log_action(
            payslip, PayrollAction.DELETE,
            from_status=payslip.status,
            actor_id=actor_id,
            extra={"figures": snapshot_figures(payslip)},
        )
        await self.db.delete(payslip)
        await self.db.commit()

        logger.info(
            f"Deleted draft payslip {payslip.id} for employee {payslip.employee_id} "
            f"({payslip.pay_period_month:02d}/{payslip.pay_period_year})"
        )

    async def _validate_actor(self, actor_id: int, field: str) -> None:
        if actor_id is None or actor_id <= 0:
            raise InvalidActorError(actor_id, field=field)
        if await self.gateway.get_employee(actor_id) is None:
            raise InvalidActorError(actor_id, field=field)

    async def _record(
        self,
        payslip: Payslip,
        action: PayrollAction,
        from_status: PayrollStatus,
        actor_id: Optional[int],
        extra: Optional[dict] = None,
    ) -> Payslip:
        await self.db.flush()
        await self.audit.log_action(
            payslip, action,
            from_status=from_status,
            to_status=payslip.status,
            actor_id=actor_id,
            extra=extra,
        )
        await self.db.commit()

        logger.info(
            f"Payslip {payslip.id} {action.value.lower()}: "
            f"{from_status.value} -> {payslip.status.value}"
        )
        return payslip
