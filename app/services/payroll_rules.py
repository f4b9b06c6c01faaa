"""
PayCore - Payroll Rules

Shared helpers used by the calculator, lifecycle manager and summary:
- pay period value object and validation
- active compensation resolution
- allowance resolvers, one per ComponentType
- money rounding
"""

from calendar import monthrange
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Callable, Dict, Iterable, List, Optional

from app.models.payroll import ComponentType
from app.schemas.compensation import CompensationRecord, EmployeeAllowanceAssignment
from app.utils.error_handling import InvalidPeriodError, UpstreamServiceError


CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Any) -> Decimal:
    """Quantize to two decimal places, half up."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


# ===========================================
# PAY PERIOD
# ===========================================

@dataclass(frozen=True)
class PayPeriod:
    """A calendar month pay period."""
    month: int
    year: int

    def __post_init__(self):
        if not isinstance(self.month, int) or not isinstance(self.year, int):
            raise InvalidPeriodError(self.month, self.year)
        if not 1 <= self.month <= 12 or not 1900 <= self.year <= 9999:
            raise InvalidPeriodError(self.month, self.year)

    @property
    def start(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def end(self) -> date:
        return date(self.year, self.month, monthrange(self.year, self.month)[1])

    @property
    def ordinal(self) -> int:
        """Sortable yyyymm key."""
        return self.year * 100 + self.month

    @classmethod
    def containing(cls, day: date) -> "PayPeriod":
        return cls(month=day.month, year=day.year)

    def __str__(self) -> str:
        return f"{self.month:02d}/{self.year}"


# ===========================================
# COMPENSATION
# ===========================================

def resolve_active_compensation(
    records: Iterable[CompensationRecord],
    period: PayPeriod,
) -> Optional[CompensationRecord]:
    """
    Pick the compensation record in force for the period.

    Records superseded inside the period lose to the one with the latest
    effective date. More than one open active record for the same
    employee breaks the compensation source's contract and is reported
    as upstream data corruption rather than guessed around.
    """
    records = list(records)
    open_records = [r for r in records if r.is_open]
    if len(open_records) > 1:
        raise UpstreamServiceError(
            service_name="compensation-service",
            message=(
                f"employee {open_records[0].employee_id} has {len(open_records)} "
                "open active compensation records"
            ),
            reason="INVALID_COLLABORATOR_DATA",
            details={"record_ids": [r.id for r in open_records]},
        )

    candidates = [r for r in records if r.overlaps(period.start, period.end)]
    if not candidates:
        return None
    return max(candidates, key=lambda r: (r.effective_date, r.end_date is None))


# ===========================================
# ALLOWANCES
# ===========================================

@dataclass
class AllowanceLine:
    """Resolved allowance amount for one assignment."""
    allowance_id: int
    name: str
    allowance_type: ComponentType
    amount: Decimal
    taxable: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowance_id": self.allowance_id,
            "name": self.name,
            "type": self.allowance_type.value,
            "amount": str(self.amount),
            "taxable": self.taxable,
        }


def _resolve_fixed(assignment: EmployeeAllowanceAssignment, base_salary: Decimal) -> Decimal:
    return to_money(assignment.effective_amount)


def _resolve_percentage(assignment: EmployeeAllowanceAssignment, base_salary: Decimal) -> Decimal:
    # Recomputed against the base salary in force now, never frozen at assignment time
    return to_money(base_salary * assignment.effective_amount / Decimal("100"))


def _resolve_variable(assignment: EmployeeAllowanceAssignment, base_salary: Decimal) -> Decimal:
    # Variable allowances carry this period's figure in customAmount
    return to_money(assignment.effective_amount)


ALLOWANCE_RESOLVERS: Dict[ComponentType, Callable[[EmployeeAllowanceAssignment, Decimal], Decimal]] = {
    ComponentType.FIXED: _resolve_fixed,
    ComponentType.PERCENTAGE: _resolve_percentage,
    ComponentType.VARIABLE: _resolve_variable,
}


def resolve_allowances(
    assignments: Iterable[EmployeeAllowanceAssignment],
    base_salary: Decimal,
    period: PayPeriod,
) -> List[AllowanceLine]:
    """Resolve every assignment whose validity window intersects the period."""
    lines = []
    for assignment in assignments:
        if not assignment.intersects(period.start, period.end):
            continue
        definition = assignment.allowance
        if not definition.active:
            continue
        resolver = ALLOWANCE_RESOLVERS[definition.type]
        lines.append(AllowanceLine(
            allowance_id=definition.id,
            name=definition.name,
            allowance_type=definition.type,
            amount=resolver(assignment, base_salary),
            taxable=definition.taxable,
        ))
    return lines
