"""
PayCore - Payroll Schemas

Pydantic schemas for payroll requests and responses.
"""

from datetime import date, datetime
from decimal import Decimal
from math import ceil
from typing import Any, Dict, Generic, List, Literal, Optional, Sequence, TypeVar

from pydantic import BaseModel, Field, model_validator

from app.models.payroll import ComponentType, PayrollAction, PayrollStatus


# ===========================================
# ENUMS AS LITERALS
# ===========================================

SortFieldEnum = Literal[
    "created_at", "updated_at", "employee_id", "pay_period", "gross_pay", "net_pay", "status"
]

SortDirectionEnum = Literal["asc", "desc"]


T = TypeVar("T")


# ===========================================
# ENVELOPE & PAGINATION
# ===========================================

class ApiResponse(BaseModel, Generic[T]):
    """Standard response envelope."""
    success: bool = True
    message: Optional[str] = None
    data: Optional[T] = None


class Page(BaseModel, Generic[T]):
    """Page of results; number is zero-based."""
    content: List[T]
    total_elements: int
    total_pages: int
    size: int
    number: int
    first: bool
    last: bool
    empty: bool

    @classmethod
    def build(cls, content: Sequence[Any], total_elements: int, number: int, size: int) -> "Page":
        total_pages = ceil(total_elements / size) if size else 0
        return cls(
            content=list(content),
            total_elements=total_elements,
            total_pages=total_pages,
            size=size,
            number=number,
            first=number == 0,
            last=number >= total_pages - 1,
            empty=len(content) == 0,
        )


# ===========================================
# REQUESTS
# ===========================================

class CalculationOptionsRequest(BaseModel):
    """Components to include; each can be switched off independently."""
    include_overtime: bool = True
    include_allowances: bool = True
    include_deductions: bool = True


class CalculatePayrollRequest(CalculationOptionsRequest):
    """Commit-mode payroll calculation for a list of employees or a department."""
    month: int
    year: int
    employee_ids: Optional[List[int]] = None
    department_id: Optional[int] = None
    actor_id: Optional[int] = None

    @model_validator(mode='after')
    def validate_target(self):
        if self.employee_ids is not None and self.department_id is not None:
            raise ValueError("Provide either employee_ids or department_id, not both")
        return self


class UpdatePayrollRequest(CalculationOptionsRequest):
    """Recalculate a DRAFT payslip."""
    notes: Optional[str] = Field(None, max_length=2000)
    actor_id: Optional[int] = None


class CompletePayrollRequest(BaseModel):
    pay_date: Optional[date] = None
    actor_id: Optional[int] = None


class CancelPayrollRequest(BaseModel):
    actor_id: Optional[int] = None
    reason: Optional[str] = Field(None, max_length=2000)


class SendPayslipEmailRequest(BaseModel):
    custom_subject: Optional[str] = Field(None, max_length=255)
    custom_message: Optional[str] = Field(None, max_length=5000)
    sent_by: Optional[int] = None


class SendBulkPayslipEmailRequest(SendPayslipEmailRequest):
    payslip_ids: List[int] = Field(..., min_length=1)


# ===========================================
# PAYSLIP RESPONSES
# ===========================================

class AllowanceLineResponse(BaseModel):
    """Allowance resolved for the payslip's period."""
    allowance_id: Optional[int] = None
    name: str
    type: ComponentType
    amount: Decimal
    taxable: bool = True


class DeductionLineResponse(BaseModel):
    """Itemized deduction."""
    name: str
    description: Optional[str] = None
    amount: Decimal
    deduction_type: ComponentType
    mandatory: bool = False

    class Config:
        from_attributes = True


class PayslipResponse(BaseModel):
    """
    Payslip in committed or preview form.

    Preview rows have is_preview=True, no status and a negative id that
    is only meaningful within the response that carries it.
    """
    id: int
    is_preview: bool
    employee_id: int
    employee_code: Optional[str] = None
    employee_name: Optional[str] = None

    pay_period_month: int
    pay_period_year: int
    currency: str

    # Earnings
    base_salary: Decimal
    total_allowances: Decimal
    overtime_pay: Decimal
    gross_pay: Decimal

    # Deductions
    total_deductions: Decimal

    # Net
    net_pay: Decimal
    negative_net_pay: bool

    allowance_breakdown: Optional[List[AllowanceLineResponse]] = None
    deductions: List[DeductionLineResponse] = []

    status: Optional[PayrollStatus] = None
    approved_by_id: Optional[int] = None
    approved_at: Optional[datetime] = None
    pay_date: Optional[date] = None
    notes: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class EmployeeOmissionResponse(BaseModel):
    employee_id: int
    reason: str
    message: str

    class Config:
        from_attributes = True


class CalculationResultResponse(BaseModel):
    """Result of a preview or commit calculation."""
    month: int
    year: int
    is_preview: bool
    outcome: Literal["COMPLETE", "PARTIAL", "EMPTY"]
    requested: int
    computed: int
    payslips: List[PayslipResponse]
    omissions: List[EmployeeOmissionResponse]
    warnings: List[str] = []

    @classmethod
    def from_result(cls, result) -> "CalculationResultResponse":
        return cls(
            month=result.period.month,
            year=result.period.year,
            is_preview=result.is_preview,
            outcome=result.outcome.value,
            requested=result.requested,
            computed=len(result.payslips),
            payslips=[PayslipResponse.model_validate(p) for p in result.payslips],
            omissions=[
                EmployeeOmissionResponse(
                    employee_id=o.employee_id, reason=o.reason.value, message=o.message,
                )
                for o in result.omissions
            ],
            warnings=result.warnings,
        )


# ===========================================
# SUMMARY
# ===========================================

class PayrollSummaryResponse(BaseModel):
    """Totals over the non-cancelled payslips of a period."""
    month: int
    year: int
    department_id: Optional[int] = None
    total_employees: int
    total_base_salary: Decimal
    total_overtime_pay: Decimal
    total_allowances: Decimal
    total_deductions: Decimal
    total_gross_pay: Decimal
    total_net_pay: Decimal
    negative_net_pay_count: int = 0
    status_counts: Dict[str, int] = {}
    payslips: List[PayslipResponse] = []

    @classmethod
    def from_summary(cls, summary) -> "PayrollSummaryResponse":
        return cls(
            month=summary.period.month,
            year=summary.period.year,
            department_id=summary.department_id,
            total_employees=summary.total_employees,
            total_base_salary=summary.total_base_salary,
            total_overtime_pay=summary.total_overtime_pay,
            total_allowances=summary.total_allowances,
            total_deductions=summary.total_deductions,
            total_gross_pay=summary.total_gross_pay,
            total_net_pay=summary.total_net_pay,
            negative_net_pay_count=summary.negative_net_pay_count,
            status_counts=summary.status_counts,
            payslips=[PayslipResponse.model_validate(p) for p in summary.payslips],
        )


# ===========================================
# EMAIL & AUDIT
# ===========================================

class DeliveryReceiptResponse(BaseModel):
    payslip_id: int
    recipient: str
    subject: str
    sent_at: datetime
    sent_by: Optional[int] = None
    message_id: Optional[str] = None

    class Config:
        from_attributes = True


class DeliveryFailureResponse(BaseModel):
    payslip_id: int
    code: str
    message: str

    class Config:
        from_attributes = True


class BulkDeliveryResponse(BaseModel):
    requested: int
    sent: List[DeliveryReceiptResponse]
    failed: List[DeliveryFailureResponse]

    class Config:
        from_attributes = True


class PayslipAuditEventResponse(BaseModel):
    id: int
    payslip_id: Optional[int] = None
    employee_id: int
    pay_period_month: int
    pay_period_year: int
    action: PayrollAction
    from_status: Optional[PayrollStatus] = None
    to_status: Optional[PayrollStatus] = None
    actor_id: Optional[int] = None
    details: Optional[Dict[str, Any]] = None
    created_at: datetime

    class Config:
        from_attributes = True
