"""
PayCore - Schemas Package

Pydantic schemas for request/response validation and for the data
contracts read from the HR services.
"""

from app.schemas.compensation import (
    PayFrequency,
    CompensationRecord,
    AllowanceDefinition,
    EmployeeAllowanceAssignment,
    DeductionDetail,
    EmployeeRef,
    NotificationReceipt,
)
from app.schemas.payroll import (
    ApiResponse,
    Page,
    CalculatePayrollRequest,
    UpdatePayrollRequest,
    CompletePayrollRequest,
    CancelPayrollRequest,
    SendPayslipEmailRequest,
    SendBulkPayslipEmailRequest,
    PayslipResponse,
    CalculationResultResponse,
    PayrollSummaryResponse,
    DeliveryReceiptResponse,
    BulkDeliveryResponse,
    PayslipAuditEventResponse,
)

__all__ = [
    # HR service contracts
    "PayFrequency",
    "CompensationRecord",
    "AllowanceDefinition",
    "EmployeeAllowanceAssignment",
    "DeductionDetail",
    "EmployeeRef",
    "NotificationReceipt",
    # Payroll
    "ApiResponse",
    "Page",
    "CalculatePayrollRequest",
    "UpdatePayrollRequest",
    "CompletePayrollRequest",
    "CancelPayrollRequest",
    "SendPayslipEmailRequest",
    "SendBulkPayslipEmailRequest",
    "PayslipResponse",
    "CalculationResultResponse",
    "PayrollSummaryResponse",
    "DeliveryReceiptResponse",
    "BulkDeliveryResponse",
    "PayslipAuditEventResponse",
]
