"""
PayCore - Payroll Rules Tests

Unit tests for pay periods, compensation resolution and allowance resolvers.
"""

import pytest
from datetime import date
from decimal import Decimal

from app.models.payroll import ComponentType
from app.schemas.compensation import (
    AllowanceDefinition,
    CompensationRecord,
    EmployeeAllowanceAssignment,
)
from app.services.payroll_rules import (
    PayPeriod,
    resolve_active_compensation,
    resolve_allowances,
    to_money,
)
from app.utils.error_handling import ErrorCode, InvalidPeriodError, UpstreamServiceError


def _record(base, effective, end=None, active=True, deleted=False, record_id=1):
    return CompensationRecord(
        id=record_id,
        employee_id=7,
        base_salary=Decimal(base),
        gross_salary=Decimal(base),
        effective_date=effective,
        end_date=end,
        active=active,
        deleted=deleted,
    )


def _assignment(allowance_type, amount, custom=None, effective=date(2024, 1, 1), end=None, active=True):
    return EmployeeAllowanceAssignment(
        employee_id=7,
        allowance=AllowanceDefinition(
            id=1, name="Allowance", type=allowance_type, amount=Decimal(amount), active=active,
        ),
        custom_amount=Decimal(custom) if custom is not None else None,
        effective_date=effective,
        end_date=end,
    )


class TestPayPeriod:
    """Test cases for PayPeriod."""

    def test_bounds_of_february_in_leap_year(self):
        period = PayPeriod(2, 2024)

        assert period.start == date(2024, 2, 1)
        assert period.end == date(2024, 2, 29)
        assert str(period) == "02/2024"

    def test_ordinal_sorts_chronologically(self):
        assert PayPeriod(12, 2024).ordinal < PayPeriod(1, 2025).ordinal

    @pytest.mark.parametrize("month,year", [(0, 2025), (13, 2025), (1, 1800), (1, 10000)])
    def test_rejects_malformed_period(self, month, year):
        with pytest.raises(InvalidPeriodError) as exc_info:
            PayPeriod(month, year)

        assert exc_info.value.code == ErrorCode.INVALID_PERIOD

    def test_containing_day(self):
        assert PayPeriod.containing(date(2025, 3, 17)) == PayPeriod(3, 2025)


class TestMoney:
    """Test cases for money rounding."""

    def test_rounds_half_up(self):
        assert to_money("10.005") == Decimal("10.01")
        assert to_money(Decimal("10.004")) == Decimal("10.00")


class TestResolveActiveCompensation:
    """Test cases for compensation resolution."""

    def test_open_record_in_force(self):
        record = _record("10000000", date(2024, 1, 1))

        assert resolve_active_compensation([record], PayPeriod(1, 2025)) is record

    def test_no_record_in_force(self):
        future = _record("10000000", date(2025, 6, 1))

        assert resolve_active_compensation([future], PayPeriod(1, 2025)) is None

    def test_record_superseded_mid_period_loses_to_newer(self):
        old = _record("9000000", date(2024, 1, 1), end=date(2025, 1, 14), record_id=1)
        new = _record("11000000", date(2025, 1, 15), record_id=2)

        assert resolve_active_compensation([old, new], PayPeriod(1, 2025)) is new

    def test_deleted_and_inactive_records_ignored(self):
        revoked = _record("9000000", date(2024, 1, 1), deleted=True, record_id=1)
        inactive = _record("9500000", date(2024, 1, 1), end=date(2024, 12, 31), active=False, record_id=2)

        assert resolve_active_compensation([revoked, inactive], PayPeriod(1, 2025)) is None

    def test_two_open_records_is_upstream_corruption(self):
        first = _record("9000000", date(2024, 1, 1), record_id=1)
        second = _record("11000000", date(2024, 6, 1), record_id=2)

        with pytest.raises(UpstreamServiceError) as exc_info:
            resolve_active_compensation([first, second], PayPeriod(1, 2025))

        assert exc_info.value.reason == "INVALID_COLLABORATOR_DATA"

    def test_gross_below_base_rejected(self):
        with pytest.raises(ValueError):
            CompensationRecord(
                employee_id=7,
                base_salary=Decimal("100"),
                gross_salary=Decimal("50"),
                effective_date=date(2024, 1, 1),
            )


class TestResolveAllowances:
    """Test cases for allowance resolvers."""

    def test_fixed_uses_definition_amount(self):
        lines = resolve_allowances(
            [_assignment(ComponentType.FIXED, "500000")],
            Decimal("10000000"),
            PayPeriod(1, 2025),
        )

        assert [line.amount for line in lines] == [Decimal("500000.00")]

    def test_custom_amount_overrides_definition(self):
        lines = resolve_allowances(
            [_assignment(ComponentType.FIXED, "500000", custom="750000")],
            Decimal("10000000"),
            PayPeriod(1, 2025),
        )

        assert lines[0].amount == Decimal("750000.00")

    def test_percentage_computed_against_current_base(self):
        assignment = _assignment(ComponentType.PERCENTAGE, "10")

        low = resolve_allowances([assignment], Decimal("10000000"), PayPeriod(1, 2025))
        high = resolve_allowances([assignment], Decimal("12000000"), PayPeriod(1, 2025))

        assert low[0].amount == Decimal("1000000.00")
        assert high[0].amount == Decimal("1200000.00")

    def test_variable_uses_custom_amount(self):
        lines = resolve_allowances(
            [_assignment(ComponentType.VARIABLE, "0", custom="123456.789")],
            Decimal("10000000"),
            PayPeriod(1, 2025),
        )

        assert lines[0].amount == Decimal("123456.79")

    def test_assignments_outside_period_skipped(self):
        expired = _assignment(ComponentType.FIXED, "100", end=date(2024, 12, 31))
        future = _assignment(ComponentType.FIXED, "200", effective=date(2025, 2, 1))
        ending_mid_period = _assignment(ComponentType.FIXED, "300", end=date(2025, 1, 10))

        lines = resolve_allowances(
            [expired, future, ending_mid_period], Decimal("1000"), PayPeriod(1, 2025),
        )

        assert [line.amount for line in lines] == [Decimal("300.00")]

    def test_inactive_definition_skipped(self):
        lines = resolve_allowances(
            [_assignment(ComponentType.FIXED, "100", active=False)],
            Decimal("1000"),
            PayPeriod(1, 2025),
        )

        assert lines == []

    def test_flattened_wire_payload(self):
        assignment = EmployeeAllowanceAssignment.model_validate({
            "id": 3,
            "employeeId": 7,
            "allowanceId": 9,
            "allowanceName": "Housing",
            "allowanceType": "FIXED",
            "allowanceAmount": 250000,
            "customAmount": None,
            "effectiveDate": "2024-01-01",
        })

        assert assignment.allowance.name == "Housing"
        assert assignment.effective_amount == Decimal("250000")

    def test_assignment_end_before_start_rejected(self):
        with pytest.raises(ValueError):
            _assignment(ComponentType.FIXED, "100", effective=date(2025, 2, 1), end=date(2025, 1, 1))
