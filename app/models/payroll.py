"""
PayCore - Payroll Models

Persisted payroll records:
- payslips: one committed payslip per (employee, pay period month, year)
- payslip_deductions: itemized deduction lines kept for display and audit
- payslip_audit_events: append-only trail of lifecycle actions

Preview payslips are never stored; they share the response shape only.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    Boolean, CheckConstraint, Date, DateTime, ForeignKey, Integer, Numeric,
    String, Text, Enum as SQLEnum, JSON, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import BaseModel, AuditMixin


# ===========================================
# ENUMS
# ===========================================

class PayrollStatus(str, Enum):
    """Payslip lifecycle status."""
    DRAFT = "DRAFT"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    PROCESSED = "PROCESSED"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


TERMINAL_STATUSES = frozenset({PayrollStatus.PAID, PayrollStatus.CANCELLED})


class PayrollAction(str, Enum):
    """Actions recorded against a payslip."""
    CALCULATE = "CALCULATE"
    RECALCULATE = "RECALCULATE"
    APPROVE = "APPROVE"
    COMPLETE = "COMPLETE"
    CANCEL = "CANCEL"
    EDIT = "EDIT"
    DELETE = "DELETE"
    SEND_EMAIL = "SEND_EMAIL"


class ComponentType(str, Enum):
    """How an allowance or deduction amount is derived."""
    FIXED = "FIXED"
    PERCENTAGE = "PERCENTAGE"
    VARIABLE = "VARIABLE"


# ===========================================
# PAYSLIP
# ===========================================

class Payslip(BaseModel, AuditMixin):
    """
    Committed payslip for one employee and one pay period.

    gross_pay = base_salary + total_allowances + overtime_pay
    net_pay = gross_pay - total_deductions (may be negative, never clamped)
    """

    __tablename__ = "payslips"

    employee_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    employee_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    employee_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    pay_period_month: Mapped[int] = mapped_column(Integer, nullable=False)
    pay_period_year: Mapped[int] = mapped_column(Integer, nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    # Earnings
    base_salary: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        default=Decimal("0.00"),
        nullable=False,
    )
    total_allowances: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        default=Decimal("0.00"),
        nullable=False,
    )
    overtime_pay: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        default=Decimal("0.00"),
        nullable=False,
    )
    gross_pay: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        default=Decimal("0.00"),
        nullable=False,
    )

    # Deductions
    total_deductions: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        default=Decimal("0.00"),
        nullable=False,
    )

    # Net Pay
    net_pay: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        default=Decimal("0.00"),
        nullable=False,
    )

    # Allowance lines as resolved at calculation time
    allowance_breakdown: Mapped[Optional[list]] = mapped_column(
        JSON, nullable=True,
    )

    status: Mapped[PayrollStatus] = mapped_column(
        SQLEnum(PayrollStatus, name="payroll_status"),
        default=PayrollStatus.DRAFT,
        nullable=False,
        index=True,
    )

    # Lifecycle stamps
    approved_by_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    pay_date: Mapped[Optional[date]] = mapped_column(
        Date, nullable=True,
        comment="Set only when the payslip is completed (PAID)",
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    cancelled_by_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Relationships
    deductions: Mapped[List["PayslipDeduction"]] = relationship(
        "PayslipDeduction",
        back_populates="payslip",
        cascade="all, delete-orphan",
        order_by="PayslipDeduction.sort_order",
        lazy="selectin",
    )

    __table_args__ = (
        UniqueConstraint(
            'employee_id', 'pay_period_month', 'pay_period_year',
            name='uq_payslip_employee_period',
        ),
        CheckConstraint(
            'pay_period_month BETWEEN 1 AND 12',
            name='pay_period_month_range',
        ),
    )

    @property
    def is_preview(self) -> bool:
        return False

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def negative_net_pay(self) -> bool:
        return self.net_pay < 0

    def __repr__(self) -> str:
        return (
            f"<Payslip(id={self.id}, employee={self.employee_id}, "
            f"period={self.pay_period_month}/{self.pay_period_year}, status={self.status})>"
        )


# ===========================================
# PAYSLIP DEDUCTION (LINE ITEM)
# ===========================================

class PayslipDeduction(BaseModel):
    """
    Individual deduction line item on a payslip.
    """

    __tablename__ = "payslip_deductions"

    payslip_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("payslips.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=False,
    )
    deduction_type: Mapped[ComponentType] = mapped_column(
        SQLEnum(ComponentType, name="component_type"),
        nullable=False,
    )
    mandatory: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False,
    )

    sort_order: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False,
    )

    # Relationship
    payslip: Mapped["Payslip"] = relationship(
        "Payslip", back_populates="deductions",
    )

    def __repr__(self) -> str:
        return f"<PayslipDeduction(name={self.name}, amount={self.amount})>"


# ===========================================
# AUDIT TRAIL
# ===========================================

class PayslipAuditEvent(BaseModel):
    """
    Append-only record of an action taken on a payslip.

    Keeps the employee/period key so the trail outlives a deleted draft.
    """

    __tablename__ = "payslip_audit_events"

    payslip_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("payslips.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    employee_id: Mapped[int] = mapped_column(Integer, nullable=False)
    pay_period_month: Mapped[int] = mapped_column(Integer, nullable=False)
    pay_period_year: Mapped[int] = mapped_column(Integer, nullable=False)

    action: Mapped[PayrollAction] = mapped_column(
        SQLEnum(PayrollAction, name="payroll_action"),
        nullable=False,
    )
    from_status: Mapped[Optional[PayrollStatus]] = mapped_column(
        SQLEnum(PayrollStatus, name="payroll_status"),
        nullable=True,
    )
    to_status: Mapped[Optional[PayrollStatus]] = mapped_column(
        SQLEnum(PayrollStatus, name="payroll_status"),
        nullable=True,
    )
    actor_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<PayslipAuditEvent(payslip={self.payslip_id}, action={self.action}, "
            f"{self.from_status}->{self.to_status})>"
        )
