"""
PayCore - SQLAlchemy Models Package

This package contains all database models for the application.
"""

from app.models.base import BaseModel, TimestampMixin, AuditMixin
from app.models.payroll import (
    Payslip,
    PayslipDeduction,
    PayslipAuditEvent,
    PayrollStatus,
    PayrollAction,
    ComponentType,
    TERMINAL_STATUSES,
)

__all__ = [
    "BaseModel",
    "TimestampMixin",
    "AuditMixin",
    # Payroll
    "Payslip",
    "PayslipDeduction",
    "PayslipAuditEvent",
    "PayrollStatus",
    "PayrollAction",
    "ComponentType",
    "TERMINAL_STATUSES",
]
