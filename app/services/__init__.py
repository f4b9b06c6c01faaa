"""
PayCore - Services Package

Business logic services.
"""

from app.services.hr_client import HRServicesClient
from app.services.audit_service import PayslipAuditService
from app.services.payroll_calculator import (
    PayrollCalculator,
    CalculationOptions,
    CalculationResult,
    CalculationOutcome,
    ComputedPayslip,
    EmployeeOmission,
    OmissionReason,
)
from app.services.payroll_lifecycle import PayrollLifecycleManager
from app.services.payroll_summary import PayrollSummaryAggregator, PayrollSummary
from app.services.notification_service import PayslipNotifier, DeliveryReceipt
from app.services.payroll_service import PayrollService

__all__ = [
    "HRServicesClient",
    "PayslipAuditService",
    "PayrollCalculator",
    "CalculationOptions",
    "CalculationResult",
    "CalculationOutcome",
    "ComputedPayslip",
    "EmployeeOmission",
    "OmissionReason",
    "PayrollLifecycleManager",
    "PayrollSummaryAggregator",
    "PayrollSummary",
    "PayslipNotifier",
    "DeliveryReceipt",
    "PayrollService",
]
