"""
PayCore - Compensation Schemas

Data contracts consumed from the HR services: compensation records,
allowance definitions and assignments, deduction breakdowns and the
employee directory. Field aliases follow the camelCase JSON those
services return.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.models.payroll import ComponentType


class PayFrequency(str, Enum):
    """Pay frequency of a compensation record."""
    MONTHLY = "MONTHLY"
    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"


class CollaboratorModel(BaseModel):
    """Base for payloads read from the HR services."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ===========================================
# COMPENSATION
# ===========================================

class CompensationRecord(CollaboratorModel):
    """Effective-dated base salary record for an employee."""
    id: Optional[int] = None
    employee_id: int = Field(..., alias="employeeId")
    base_salary: Decimal = Field(..., alias="baseSalary", ge=0)
    gross_salary: Decimal = Field(..., alias="grossSalary", ge=0)
    currency: str = "VND"
    pay_frequency: PayFrequency = Field(PayFrequency.MONTHLY, alias="payFrequency")
    effective_date: date = Field(..., alias="effectiveDate")
    end_date: Optional[date] = Field(None, alias="endDate")
    active: bool = True
    deleted: bool = False

    @model_validator(mode='after')
    def validate_salaries(self):
        if self.gross_salary < self.base_salary:
            raise ValueError("gross_salary must be greater than or equal to base_salary")
        if self.end_date and self.end_date < self.effective_date:
            raise ValueError("end_date must be on or after effective_date")
        return self

    @property
    def is_open(self) -> bool:
        """Active, not revoked and without an end date."""
        return self.active and not self.deleted and self.end_date is None

    def overlaps(self, start: date, end: date) -> bool:
        """Whether the record is in force at any point of [start, end]."""
        if self.deleted or not self.active:
            return False
        if self.effective_date > end:
            return False
        return self.end_date is None or self.end_date >= start


# ===========================================
# ALLOWANCES
# ===========================================

class AllowanceDefinition(CollaboratorModel):
    """Catalog entry describing an allowance."""
    id: int
    name: str
    description: Optional[str] = None
    type: ComponentType
    amount: Decimal = Field(..., ge=0)
    taxable: bool = True
    active: bool = True


class EmployeeAllowanceAssignment(CollaboratorModel):
    """
    Allowance assigned to an employee.

    The HR service flattens the definition into the assignment
    (allowanceId, allowanceName, allowanceType, allowanceAmount); those
    fields are folded back into ``allowance`` on parse.
    """
    id: Optional[int] = None
    employee_id: int = Field(..., alias="employeeId")
    allowance: AllowanceDefinition
    custom_amount: Optional[Decimal] = Field(None, alias="customAmount", ge=0)
    effective_date: date = Field(..., alias="effectiveDate")
    end_date: Optional[date] = Field(None, alias="endDate")
    notes: Optional[str] = None

    @model_validator(mode='before')
    @classmethod
    def fold_flattened_definition(cls, data: Any) -> Any:
        if isinstance(data, dict) and "allowance" not in data and "allowanceId" in data:
            data = dict(data)
            data["allowance"] = {
                "id": data.get("allowanceId"),
                "name": data.get("allowanceName") or f"Allowance #{data.get('allowanceId')}",
                "type": data.get("allowanceType"),
                "amount": data.get("allowanceAmount", 0),
                "taxable": data.get("allowanceTaxable", True),
                "active": data.get("allowanceActive", True),
            }
        return data

    @model_validator(mode='after')
    def validate_dates(self):
        if self.end_date and self.end_date < self.effective_date:
            raise ValueError("end_date must be on or after effective_date")
        return self

    @property
    def effective_amount(self) -> Decimal:
        """customAmount when present, otherwise the definition amount."""
        if self.custom_amount is not None:
            return self.custom_amount
        return self.allowance.amount

    def intersects(self, start: date, end: date) -> bool:
        """Whether [effective_date, end_date] overlaps [start, end]."""
        if self.effective_date > end:
            return False
        return self.end_date is None or self.end_date >= start


# ===========================================
# DEDUCTIONS
# ===========================================

class DeductionDetail(CollaboratorModel):
    """One line of the deduction breakdown computed by the HR services."""
    name: str
    description: Optional[str] = None
    amount: Decimal
    type: ComponentType = ComponentType.FIXED
    mandatory: bool = False


# ===========================================
# EMPLOYEE DIRECTORY
# ===========================================

class EmployeeRef(CollaboratorModel):
    """Directory entry used for snapshots, department scoping and email."""
    id: int
    employee_code: Optional[str] = Field(None, alias="employeeCode")
    full_name: Optional[str] = Field(None, alias="fullName")
    email: Optional[str] = None
    department_id: Optional[int] = Field(None, alias="departmentId")
    status: Optional[str] = None


class NotificationReceipt(CollaboratorModel):
    """Acknowledgement returned by the notification service."""
    message_id: str = Field(..., alias="messageId")
    accepted_at: Optional[datetime] = Field(None, alias="acceptedAt")
