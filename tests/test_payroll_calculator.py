"""
PayCore - Payroll Calculator Tests

Unit tests for preview and commit calculations.
"""

import pytest
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from app.models.payroll import (
    ComponentType, Payslip, PayslipAuditEvent, PayrollAction, PayrollStatus,
)
from app.services.payroll_calculator import (
    CalculationOptions,
    CalculationOutcome,
    OmissionReason,
    PayrollCalculator,
)
from app.services.payroll_rules import PayPeriod
from app.utils.error_handling import EmptyBatchError


JANUARY = PayPeriod(1, 2025)


async def _count_payslips(db_session) -> int:
    result = await db_session.execute(select(func.count()).select_from(Payslip))
    return result.scalar()


def _assert_identities(payslip):
    assert payslip.gross_pay == payslip.base_salary + payslip.total_allowances + payslip.overtime_pay
    assert payslip.net_pay == payslip.gross_pay - payslip.total_deductions


class TestPayrollPreview:
    """Test cases for preview mode."""

    @pytest.mark.asyncio
    async def test_scenario_a_figures(self, db_session, scenario_a_gateway):
        """Base + fixed allowance + overtime - mandatory deduction."""
        calculator = PayrollCalculator(db_session, scenario_a_gateway)

        result = await calculator.preview(JANUARY, [1])

        payslip = result.payslips[0]
        assert payslip.gross_pay == Decimal("10700000.00")
        assert payslip.net_pay == Decimal("9670000.00")
        assert payslip.total_deductions == Decimal("1030000.00")
        assert payslip.deductions[0].mandatory is True
        _assert_identities(payslip)

    @pytest.mark.asyncio
    async def test_preview_rows_are_flagged_and_not_persisted(self, db_session, hr_gateway):
        for employee_id in (1, 2, 3):
            hr_gateway.add_employee(employee_id, "5000000")
        calculator = PayrollCalculator(db_session, hr_gateway)

        first = await calculator.preview(JANUARY, [1, 2, 3])
        second = await calculator.preview(JANUARY, [1, 2, 3])

        assert [p.id for p in first.payslips] == [-1, -2, -3]
        assert all(p.is_preview for p in first.payslips)
        assert all(p.status is None for p in first.payslips)
        assert [p.net_pay for p in first.payslips] == [p.net_pay for p in second.payslips]
        assert await _count_payslips(db_session) == 0

    @pytest.mark.asyncio
    async def test_scenario_b_empty_batch(self, db_session, hr_gateway):
        """An empty batch is an input error and writes nothing."""
        calculator = PayrollCalculator(db_session, hr_gateway)

        with pytest.raises(EmptyBatchError):
            await calculator.preview(JANUARY, [])
        with pytest.raises(EmptyBatchError):
            await calculator.commit(JANUARY, [])

        assert await _count_payslips(db_session) == 0

    @pytest.mark.asyncio
    async def test_options_switch_components_off(self, db_session, scenario_a_gateway):
        calculator = PayrollCalculator(db_session, scenario_a_gateway)

        result = await calculator.preview(
            JANUARY, [1],
            CalculationOptions(include_overtime=False, include_allowances=True, include_deductions=False),
        )

        payslip = result.payslips[0]
        assert payslip.overtime_pay == Decimal("0.00")
        assert payslip.total_allowances == Decimal("500000.00")
        assert payslip.total_deductions == Decimal("0.00")
        assert payslip.deductions == []
        _assert_identities(payslip)

    @pytest.mark.asyncio
    async def test_percentage_allowance_uses_resolved_base(self, db_session, hr_gateway):
        hr_gateway.add_employee(1, "8000000")
        hr_gateway.add_allowance(1, "Responsibility", "5", allowance_type=ComponentType.PERCENTAGE)
        calculator = PayrollCalculator(db_session, hr_gateway)

        result = await calculator.preview(JANUARY, [1])

        assert result.payslips[0].total_allowances == Decimal("400000.00")

    @pytest.mark.asyncio
    async def test_negative_net_pay_is_flagged_not_clamped(self, db_session, hr_gateway):
        hr_gateway.add_employee(1, "1000000")
        hr_gateway.add_deduction(1, "Advance repayment", "1500000")
        calculator = PayrollCalculator(db_session, hr_gateway)

        result = await calculator.preview(JANUARY, [1])

        payslip = result.payslips[0]
        assert payslip.net_pay == Decimal("-500000.00")
        assert payslip.negative_net_pay is True
        assert any("negative" in warning for warning in result.warnings)


class TestPayrollOmissions:
    """Test cases for per-employee omissions."""

    @pytest.mark.asyncio
    async def test_no_compensation_is_omitted(self, db_session, hr_gateway):
        hr_gateway.add_employee(1, "5000000")
        hr_gateway.add_employee(2, base_salary=None)
        calculator = PayrollCalculator(db_session, hr_gateway)

        result = await calculator.preview(JANUARY, [1, 2])

        assert [p.employee_id for p in result.payslips] == [1]
        assert result.omissions[0].employee_id == 2
        assert result.omissions[0].reason == OmissionReason.NO_ACTIVE_COMPENSATION
        assert result.outcome == CalculationOutcome.PARTIAL

    @pytest.mark.asyncio
    async def test_zero_computed_is_distinguishable(self, db_session, hr_gateway):
        hr_gateway.add_employee(1, base_salary=None)
        calculator = PayrollCalculator(db_session, hr_gateway)

        result = await calculator.preview(JANUARY, [1])

        assert result.payslips == []
        assert result.outcome == CalculationOutcome.EMPTY

    @pytest.mark.asyncio
    async def test_all_computed_is_complete(self, db_session, scenario_a_gateway):
        calculator = PayrollCalculator(db_session, scenario_a_gateway)

        result = await calculator.preview(JANUARY, [1])

        assert result.outcome == CalculationOutcome.COMPLETE
        assert result.omissions == []

    @pytest.mark.asyncio
    async def test_upstream_failure_omits_whole_employee(self, db_session, hr_gateway):
        hr_gateway.add_employee(1, "5000000")
        hr_gateway.add_employee(2, "6000000")
        hr_gateway.fail("get_deduction_breakdown", 2)
        calculator = PayrollCalculator(db_session, hr_gateway)

        result = await calculator.commit(JANUARY, [1, 2])

        assert [p.employee_id for p in result.payslips] == [1]
        assert result.omissions[0].reason == OmissionReason.UPSTREAM_FAILURE
        assert await _count_payslips(db_session) == 1

    @pytest.mark.asyncio
    async def test_duplicate_ids_computed_once(self, db_session, scenario_a_gateway):
        calculator = PayrollCalculator(db_session, scenario_a_gateway)

        result = await calculator.commit(JANUARY, [1, 1])

        assert result.requested == 1
        assert len(result.payslips) == 1


class TestPayrollCommit:
    """Test cases for commit mode."""

    @pytest.mark.asyncio
    async def test_commit_persists_draft_rows(self, db_session, scenario_a_gateway):
        calculator = PayrollCalculator(db_session, scenario_a_gateway)

        result = await calculator.commit(JANUARY, [1], actor_id=99)

        payslip = result.payslips[0]
        assert payslip.id > 0
        assert payslip.is_preview is False
        assert payslip.status == PayrollStatus.DRAFT
        assert payslip.pay_date is None
        assert payslip.net_pay == Decimal("9670000.00")
        assert payslip.employee_code == "EMP0001"
        assert [d.name for d in payslip.deductions] == ["Social insurance"]
        assert payslip.allowance_breakdown[0]["name"] == "Lunch"

    @pytest.mark.asyncio
    async def test_commit_is_idempotent(self, db_session, hr_gateway):
        for employee_id in (1, 2):
            hr_gateway.add_employee(employee_id, "7000000", overtime="150000")
        calculator = PayrollCalculator(db_session, hr_gateway)

        first = await calculator.commit(JANUARY, [1, 2])
        second = await calculator.commit(JANUARY, [1, 2])

        assert await _count_payslips(db_session) == 2
        assert [p.id for p in first.payslips] == [p.id for p in second.payslips]
        assert sum(p.net_pay for p in first.payslips) == sum(p.net_pay for p in second.payslips)

    @pytest.mark.asyncio
    async def test_recommit_overwrites_draft_figures(self, db_session, hr_gateway):
        hr_gateway.add_employee(1, "7000000")
        calculator = PayrollCalculator(db_session, hr_gateway)
        first = await calculator.commit(JANUARY, [1])
        payslip_id = first.payslips[0].id

        hr_gateway.overtime[1] = Decimal("300000")
        hr_gateway.add_deduction(1, "Union fee", "50000", mandatory=False)
        second = await calculator.commit(JANUARY, [1])

        payslip = second.payslips[0]
        assert payslip.id == payslip_id
        assert payslip.overtime_pay == Decimal("300000.00")
        assert payslip.net_pay == Decimal("7250000.00")
        assert len(payslip.deductions) == 1
        _assert_identities(payslip)

    @pytest.mark.asyncio
    async def test_scenario_c_paid_row_untouched(self, db_session, scenario_a_gateway):
        """A PAID payslip is reported as a conflict and left unchanged."""
        calculator = PayrollCalculator(db_session, scenario_a_gateway)
        committed = await calculator.commit(JANUARY, [1])
        payslip = committed.payslips[0]
        payslip.status = PayrollStatus.PAID
        await db_session.commit()

        scenario_a_gateway.overtime[1] = Decimal("999999")
        result = await calculator.commit(JANUARY, [1])

        assert result.payslips == []
        assert result.omissions[0].reason == OmissionReason.IMMUTABLE_PAYSLIP
        assert "already paid" in result.omissions[0].message
        refreshed = await db_session.get(Payslip, payslip.id)
        assert refreshed.overtime_pay == Decimal("200000.00")
        assert refreshed.status == PayrollStatus.PAID

    @pytest.mark.asyncio
    async def test_cancelled_row_is_immutable(self, db_session, scenario_a_gateway):
        calculator = PayrollCalculator(db_session, scenario_a_gateway)
        committed = await calculator.commit(JANUARY, [1])
        committed.payslips[0].status = PayrollStatus.CANCELLED
        await db_session.commit()

        result = await calculator.commit(JANUARY, [1])

        assert result.omissions[0].reason == OmissionReason.IMMUTABLE_PAYSLIP
        assert "cancelled" in result.omissions[0].message

    @pytest.mark.asyncio
    async def test_recommit_overwrites_processed_row_keeping_status(self, db_session, scenario_a_gateway):
        scenario_a_gateway.add_employee(2, "4000000")
        calculator = PayrollCalculator(db_session, scenario_a_gateway)
        committed = await calculator.commit(JANUARY, [1, 2])
        payslip = committed.payslips[0]
        payslip.status = PayrollStatus.PROCESSED
        await db_session.commit()

        scenario_a_gateway.overtime[1] = Decimal("999999")
        result = await calculator.commit(JANUARY, [1, 2], actor_id=7)

        assert result.omissions == []
        assert result.outcome == CalculationOutcome.COMPLETE
        refreshed = await db_session.get(Payslip, payslip.id)
        assert refreshed.status == PayrollStatus.PROCESSED
        assert refreshed.overtime_pay == Decimal("999999.00")
        _assert_identities(refreshed)

        events = await db_session.execute(
            select(PayslipAuditEvent)
            .where(PayslipAuditEvent.payslip_id == payslip.id)
            .order_by(PayslipAuditEvent.id)
        )
        last = list(events.scalars().all())[-1]
        assert last.action == PayrollAction.RECALCULATE
        assert last.from_status == last.to_status == PayrollStatus.PROCESSED

    @pytest.mark.asyncio
    async def test_racing_insert_fails_without_duplicates(self, db_session, scenario_a_gateway, monkeypatch):
        """A commit that misses the stored row hits the unique key and writes nothing."""
        calculator = PayrollCalculator(db_session, scenario_a_gateway)
        await calculator.commit(JANUARY, [1])

        async def nothing_stored(employee_ids, period):
            return {}

        monkeypatch.setattr(calculator, "_load_existing", nothing_stored)
        with pytest.raises(IntegrityError):
            await calculator.commit(JANUARY, [1])
        await db_session.rollback()

        assert await _count_payslips(db_session) == 1

    @pytest.mark.asyncio
    async def test_commit_writes_audit_events(self, db_session, scenario_a_gateway):
        calculator = PayrollCalculator(db_session, scenario_a_gateway)

        await calculator.commit(JANUARY, [1], actor_id=5)
        await calculator.commit(JANUARY, [1], actor_id=5)

        result = await db_session.execute(
            select(PayslipAuditEvent).order_by(PayslipAuditEvent.id)
        )
        events = list(result.scalars().all())
        assert [e.action for e in events] == [PayrollAction.CALCULATE, PayrollAction.RECALCULATE]
        assert events[0].to_status == PayrollStatus.DRAFT
        assert events[0].actor_id == 5

    @pytest.mark.asyncio
    async def test_preview_does_not_disturb_committed_rows(self, db_session, scenario_a_gateway):
        calculator = PayrollCalculator(db_session, scenario_a_gateway)
        committed = await calculator.commit(JANUARY, [1])

        scenario_a_gateway.overtime[1] = Decimal("0")
        preview = await calculator.preview(JANUARY, [1])

        assert preview.payslips[0].net_pay == Decimal("9470000.00")
        stored = await db_session.get(Payslip, committed.payslips[0].id)
        assert stored.net_pay == Decimal("9670000.00")
