"""
PayCore - Payslip Audit Trail Service

Append-only audit logging for payslip calculations and lifecycle actions.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.payroll import Payslip, PayslipAuditEvent, PayrollAction, PayrollStatus


# Figures compared between a payslip before and after recalculation
AUDITED_FIGURES = (
    "base_salary",
    "total_allowances",
    "overtime_pay",
    "gross_pay",
    "total_deductions",
    "net_pay",
)


def snapshot_figures(payslip: Payslip) -> Dict[str, Any]:
    """Money figures of a payslip as strings, for JSON audit details."""
    return {
        name: (str(getattr(payslip, name)) if getattr(payslip, name) is not None else None)
        for name in AUDITED_FIGURES
    }


class PayslipAuditService:
    """Service for writing and reading the payslip audit trail."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log_action(
        self,
        payslip: Payslip,
        action: PayrollAction,
        from_status: Optional[PayrollStatus] = None,
        to_status: Optional[PayrollStatus] = None,
        actor_id: Optional[int] = None,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> PayslipAuditEvent:
        """
        Log an action taken on a payslip.

        The event is added to the caller's session and flushed; the caller
        owns the transaction so the event commits or rolls back together
        with the change it describes.

        Args:
            payslip: The payslip acted on (must already have an id)
            action: Action performed
            from_status: Status before the action
            to_status: Status after the action (None when the row was deleted)
            actor_id: Employee id of whoever performed the action
            old_values: Figures before a recalculation
            new_values: Figures after a calculation
            extra: Additional details to keep with the event
        """
        details: Dict[str, Any] = dict(extra or {})
        if old_values and new_values:
            changes = self._calculate_changes(old_values, new_values)
            if changes:
                details["changes"] = changes
        elif new_values:
            details["figures"] = new_values

        event = PayslipAuditEvent(
            payslip_id=payslip.id,
            employee_id=payslip.employee_id,
            pay_period_month=payslip.pay_period_month,
            pay_period_year=payslip.pay_period_year,
            action=action,
            from_status=from_status,
            to_status=to_status,
            actor_id=actor_id,
            details=details or None,
        )

        self.db.add(event)
        await self.db.flush()

        return event

    def _calculate_changes(
        self,
        old_values: Dict[str, Any],
        new_values: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Calculate what changed between old and new values."""
        changes = {}

        for key in set(old_values.keys()) | set(new_values.keys()):
            old_val = old_values.get(key)
            new_val = new_values.get(key)
            if old_val != new_val:
                changes[key] = {"old": old_val, "new": new_val}

        return changes

    async def get_payslip_history(self, payslip_id: int) -> List[PayslipAuditEvent]:
        """Audit events recorded for a payslip, oldest first."""
        result = await self.db.execute(
            select(PayslipAuditEvent)
            .where(PayslipAuditEvent.payslip_id == payslip_id)
            .order_by(PayslipAuditEvent.created_at, PayslipAuditEvent.id)
        )
        return list(result.scalars().all())

    async def get_period_history(
        self,
        employee_id: int,
        month: int,
        year: int,
    ) -> List[PayslipAuditEvent]:
        """Audit events for an employee and period, including deleted drafts."""
        result = await self.db.execute(
            select(PayslipAuditEvent)
            .where(
                PayslipAuditEvent.employee_id == employee_id,
                PayslipAuditEvent.pay_period_month == month,
                PayslipAuditEvent.pay_period_year == year,
            )
            .order_by(PayslipAuditEvent.created_at, PayslipAuditEvent.id)
        )
        return list(result.scalars().all())
