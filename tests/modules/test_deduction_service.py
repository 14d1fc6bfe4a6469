"""
Tests for DeductionService.

Covers:
- Creation rules and validation
- Scheduling on finalisation: due-ness, caps, completion
- Idempotency per invoice week
- Per-invoice overrides, skips and all-or-nothing rollback
- Optimistic balance guard
- Reversal on unfinalise
- Update/delete restrictions
- Pending preview and per-invoice summary
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from rcti_engines.schedule import DeductionType, Frequency
from rcti_kernel.exceptions import (
    DeductionAlreadyAppliedError,
    DeductionCompletedError,
    DeductionNotFoundError,
    IneligiblePayeeError,
    InvalidDeductionError,
    InvalidOverrideError,
    RctiNotFoundError,
)
from rcti_modules.invoicing.models import DeductionStatus, Driver, RctiStatus
from tests.modules.conftest import WEEK_1, WEEK_2, WEEK_3, make_job

START = date(2025, 11, 3)


@pytest.fixture
def rental(deduction_service, driver):
    """$2000 truck rental, $150 a week from 3 Nov 2025."""
    return deduction_service.create_deduction(
        driver=driver,
        type=DeductionType.DEDUCTION,
        description="Truck rental",
        total_amount=Decimal("2000"),
        frequency=Frequency.WEEKLY,
        amount_per_cycle=Decimal("150"),
        start_date=START,
    )


@pytest.fixture
def uniform(deduction_service, driver):
    """One-off $300 uniform charge."""
    return deduction_service.create_deduction(
        driver=driver,
        type="deduction",
        description="Uniform",
        total_amount="300",
        frequency="once",
        start_date=START,
    )


class TestCreateDeduction:

    def test_recurring(self, rental):
        assert rental.status is DeductionStatus.ACTIVE
        assert rental.amount_paid == Decimal("0.00")
        assert rental.amount_remaining == Decimal("2000.00")
        assert rental.amount_per_cycle == Decimal("150.00")

    def test_once_per_cycle_is_total(self, uniform):
        assert uniform.frequency is Frequency.ONCE
        assert uniform.amount_per_cycle == Decimal("300.00")

    def test_start_defaults_to_today(self, deduction_service, driver):
        deduction = deduction_service.create_deduction(
            driver, "reimbursement", "Fuel card", "400", "weekly", "40",
        )
        assert deduction.start_date == date(2025, 11, 10)

    def test_recurring_requires_per_cycle(self, deduction_service, driver):
        with pytest.raises(InvalidDeductionError) as exc_info:
            deduction_service.create_deduction(driver, "deduction", "Rental", "2000", "weekly")
        assert exc_info.value.field == "amount_per_cycle"

    @pytest.mark.parametrize("total", ["0", "-10"])
    def test_total_must_be_positive(self, deduction_service, driver, total):
        with pytest.raises(InvalidDeductionError):
            deduction_service.create_deduction(driver, "deduction", "Rental", total, "once")

    def test_description_required(self, deduction_service, driver):
        with pytest.raises(InvalidDeductionError):
            deduction_service.create_deduction(driver, "deduction", " ", "100", "once")

    def test_unknown_frequency(self, deduction_service, driver):
        with pytest.raises(InvalidDeductionError):
            deduction_service.create_deduction(driver, "deduction", "Rental", "100", "daily", "10")

    def test_employee_rejected(self, deduction_service, employee):
        with pytest.raises(IneligiblePayeeError):
            deduction_service.create_deduction(employee, "deduction", "Rental", "100", "once")

    def test_listed(self, deduction_service, driver, rental, uniform):
        listed = deduction_service.list_deductions(driver.id)
        assert {d.id for d in listed} == {rental.id, uniform.id}
        assert deduction_service.list_deductions(driver.id, DeductionStatus.COMPLETED) == []


class TestScheduling:

    def test_first_invoice_after_start(self, deduction_service, rental, finalise_week):
        rcti, applied = finalise_week(WEEK_1)
        assert applied.applied_count == 1
        assert applied.total_deduction_amount == Decimal("150.00")
        assert applied.net_adjustment == Decimal("-150.00")
        assert deduction_service.get_deduction(rental.id).amount_remaining == Decimal("1850.00")
        assert rcti.status is RctiStatus.FINALISED

    def test_six_days_later_not_due(self, rental, finalise_week):
        finalise_week(WEEK_1)
        _, applied = finalise_week(date(2025, 11, 15))
        assert applied.applied_count == 0

    def test_seven_days_later_due(self, deduction_service, rental, finalise_week):
        finalise_week(WEEK_1)
        _, applied = finalise_week(WEEK_2)
        assert applied.applied_count == 1
        assert deduction_service.get_deduction(rental.id).amount_paid == Decimal("300.00")

    def test_not_started(self, deduction_service, driver, finalise_week):
        deduction_service.create_deduction(
            driver, "deduction", "Rental", "500", "weekly", "50", start_date=date(2025, 11, 10),
        )
        _, applied = finalise_week(WEEK_1)
        assert applied.applied_count == 0

    def test_other_drivers_untouched(self, deduction_service, driver, rental, finalise_week):
        other = Driver(id=uuid4(), name="Other Driver", rate_card=driver.rate_card)
        _, applied = finalise_week(WEEK_1, payee=other)
        assert applied.applied_count == 0
        assert deduction_service.get_deduction(rental.id).amount_paid == Decimal("0.00")

    def test_runs_to_completion(self, deduction_service, rental, finalise_week):
        """2000 at 150 a week: 13 full cycles then 50."""
        week = WEEK_1
        amounts = []
        for _ in range(14):
            _, applied = finalise_week(week)
            amounts.extend(a.amount for a in applied.applications)
            week = date.fromordinal(week.toordinal() + 7)

        assert amounts[:13] == [Decimal("150.00")] * 13
        assert amounts[13] == Decimal("50.00")

        completed = deduction_service.get_deduction(rental.id)
        assert completed.status is DeductionStatus.COMPLETED
        assert completed.amount_remaining == Decimal("0.00")
        assert completed.completed_at is not None

        _, applied = finalise_week(week)
        assert applied.applications == ()

    def test_reimbursement_adds(self, deduction_service, driver, rental, finalise_week):
        deduction_service.create_deduction(
            driver, "reimbursement", "Fuel card", "400", "weekly", "40", start_date=START,
        )
        _, applied = finalise_week(WEEK_1)
        assert applied.total_reimbursement_amount == Decimal("40.00")
        assert applied.net_adjustment == Decimal("-110.00")

    def test_fortnightly(self, deduction_service, driver, finalise_week):
        deduction_service.create_deduction(
            driver, "deduction", "Insurance", "1000", "fortnightly", "100", start_date=START,
        )
        counts = [finalise_week(week)[1].applied_count for week in (WEEK_1, WEEK_2, WEEK_3)]
        assert counts == [1, 0, 1]

    def test_logged(self, rental, finalise_week, captured_logs):
        finalise_week(WEEK_1)
        messages = [r["message"] for r in captured_logs()]
        assert "deduction_applied" in messages
        assert "deduction_scheduling_completed" in messages
        applied = next(r for r in captured_logs() if r["message"] == "deduction_applied")
        assert applied["deduction_id"] == str(rental.id)
        assert applied["amount"] == "150.00"


class TestIdempotency:

    def test_reapply_same_invoice(self, deduction_service, driver, rental, finalise_week):
        rcti, _ = finalise_week(WEEK_1)
        again = deduction_service.apply_deductions_to_rcti(rcti.id, driver.id, WEEK_1)
        assert again.applications == ()
        assert deduction_service.get_deduction(rental.id).amount_remaining == Decimal("1850.00")

    def test_second_invoice_same_week(self, deduction_service, rental, finalise_week):
        finalise_week(WEEK_1)
        second, applied = finalise_week(WEEK_1)
        assert second.invoice_number.endswith("-1")
        assert applied.applications == ()

    def test_unknown_rcti(self, deduction_service, driver, rental):
        with pytest.raises(RctiNotFoundError):
            deduction_service.apply_deductions_to_rcti(uuid4(), driver.id, WEEK_1)


class TestOutOfOrderFinalisation:
    """Invoices for earlier weeks finalised after later ones."""

    def test_back_dated_week_inside_charged_cycle(self, deduction_service, driver, finalise_week):
        lease = deduction_service.create_deduction(
            driver, "deduction", "Trailer lease", "1500", "monthly", "150",
            start_date=date(2025, 1, 1),
        )
        charged = []
        for week in (date(2025, 1, 5), date(2025, 2, 9), date(2025, 2, 4)):
            _, applied = finalise_week(week)
            charged.append([a.amount for a in applied.applications])

        assert charged == [[Decimal("150.00")], [Decimal("150.00")], []]
        assert deduction_service.get_deduction(lease.id).amount_paid == Decimal("300.00")

    def test_missed_week_billed_when_a_full_interval_apart(
        self, deduction_service, rental, finalise_week,
    ):
        finalise_week(WEEK_1)
        finalise_week(WEEK_3)
        _, applied = finalise_week(WEEK_2)
        assert applied.applied_count == 1
        assert deduction_service.get_deduction(rental.id).amount_paid == Decimal("450.00")

    def test_back_dated_week_before_fortnightly_cycle(
        self, deduction_service, driver, finalise_week,
    ):
        deduction_service.create_deduction(
            driver, "deduction", "Insurance", "1000", "fortnightly", "100", start_date=START,
        )
        finalise_week(WEEK_2)
        _, applied = finalise_week(WEEK_1)
        assert applied.applied_count == 0


class TestOverrides:

    def test_amount_override(self, deduction_service, rental, finalise_week):
        _, applied = finalise_week(WEEK_1, overrides={rental.id: Decimal("75")})
        assert applied.applications[0].amount == Decimal("75.00")
        assert deduction_service.get_deduction(rental.id).amount_remaining == Decimal("1925.00")

    def test_string_key(self, deduction_service, rental, finalise_week):
        _, applied = finalise_week(WEEK_1, overrides={str(rental.id): "80"})
        assert applied.total_deduction_amount == Decimal("80.00")

    def test_override_capped_at_remaining(self, deduction_service, uniform, finalise_week):
        _, applied = finalise_week(WEEK_1, overrides={uniform.id: Decimal("999")})
        assert applied.applications[0].amount == Decimal("300.00")
        assert deduction_service.get_deduction(uniform.id).status is DeductionStatus.COMPLETED

    def test_skip_records_zero_application(self, deduction_service, rental, finalise_week):
        rcti, applied = finalise_week(WEEK_1, overrides={rental.id: None})
        assert applied.applied_count == 0
        assert len(applied.applications) == 1
        assert applied.applications[0].is_skip
        assert deduction_service.get_deduction(rental.id).amount_remaining == Decimal("2000.00")

        summary = deduction_service.get_rcti_deduction_summary(rcti.id)
        assert summary.applications[0].amount == Decimal("0.00")

    def test_skip_counts_as_cycle(self, rental, finalise_week):
        finalise_week(WEEK_1, overrides={rental.id: None})
        _, applied = finalise_week(date(2025, 11, 15))
        assert applied.applications == ()

    def test_skip_does_not_forfeit_once(self, deduction_service, uniform, finalise_week):
        finalise_week(WEEK_1, overrides={uniform.id: None})
        assert deduction_service.get_deduction(uniform.id).status is DeductionStatus.ACTIVE

        _, applied = finalise_week(WEEK_2)
        assert applied.applications[0].amount == Decimal("300.00")
        assert deduction_service.get_deduction(uniform.id).status is DeductionStatus.COMPLETED

    def test_negative_override_rolls_back_everything(
        self, deduction_service, rcti_service, driver, finalise_week,
    ):
        early = deduction_service.create_deduction(
            driver, "deduction", "Rental", "2000", "weekly", "150", start_date=date(2025, 11, 1),
        )
        late = deduction_service.create_deduction(
            driver, "deduction", "Insurance", "500", "weekly", "50", start_date=START,
        )
        draft = rcti_service.create_draft(driver, WEEK_1, [make_job("N-1", date(2025, 11, 5), hours="6")])

        with pytest.raises(InvalidOverrideError):
            rcti_service.finalise(draft.id, {early.id: Decimal("100"), late.id: Decimal("-5")})

        assert rcti_service.get_rcti(draft.id).status is RctiStatus.DRAFT
        assert deduction_service.get_deduction(early.id).amount_remaining == Decimal("2000.00")
        assert deduction_service.get_rcti_deduction_summary(draft.id).applications == ()


class TestBalanceGuard:

    def test_stale_balance_rejected(self, session, deduction_service, rental):
        assert deduction_service.debit_balance(rental.id, Decimal("1999.00"), Decimal("150")) is False
        session.commit()
        assert deduction_service.get_deduction(rental.id).amount_remaining == Decimal("2000.00")

    def test_current_balance_accepted(self, session, deduction_service, rental):
        assert deduction_service.debit_balance(rental.id, Decimal("2000.00"), Decimal("150")) is True
        session.commit()
        stored = deduction_service.get_deduction(rental.id)
        assert stored.amount_paid == Decimal("150.00")
        assert stored.amount_remaining == Decimal("1850.00")

    def test_conflict_skips_deduction(self, rcti_service, rental, finalise_week, monkeypatch, captured_logs):
        monkeypatch.setattr(rcti_service.deductions, "debit_balance", lambda *args: False)
        _, applied = finalise_week(WEEK_1)
        assert applied.applications == ()
        conflicts = [r for r in captured_logs() if r["message"] == "deduction_balance_conflict"]
        assert conflicts[0]["level"] == "WARNING"


class TestReversal:

    def test_unfinalise_restores_balance(self, deduction_service, rcti_service, rental, finalise_week):
        rcti, _ = finalise_week(WEEK_1)
        rcti_service.unfinalise(rcti.id)

        restored = deduction_service.get_deduction(rental.id)
        assert restored.amount_remaining == Decimal("2000.00")
        assert restored.amount_paid == Decimal("0.00")
        assert deduction_service.get_rcti_deduction_summary(rcti.id).applications == ()

    def test_unfinalise_reactivates_completed(self, deduction_service, rcti_service, uniform, finalise_week):
        rcti, _ = finalise_week(WEEK_1)
        assert deduction_service.get_deduction(uniform.id).status is DeductionStatus.COMPLETED

        rcti_service.unfinalise(rcti.id)
        restored = deduction_service.get_deduction(uniform.id)
        assert restored.status is DeductionStatus.ACTIVE
        assert restored.completed_at is None

    def test_refinalise_charges_again(self, deduction_service, rcti_service, rental, finalise_week):
        rcti, _ = finalise_week(WEEK_1)
        rcti_service.unfinalise(rcti.id)
        _, applied = rcti_service.finalise(rcti.id)
        assert applied.applied_count == 1
        assert deduction_service.get_deduction(rental.id).amount_remaining == Decimal("1850.00")

    def test_skip_reversed_without_balance_change(self, deduction_service, rcti_service, rental, finalise_week):
        rcti, _ = finalise_week(WEEK_1, overrides={rental.id: None})
        assert deduction_service.remove_deductions_from_rcti(rcti.id) == 1
        assert deduction_service.get_deduction(rental.id).amount_remaining == Decimal("2000.00")


class TestUpdateAndDelete:

    def test_update_total_recomputes_remaining(self, deduction_service, rental):
        updated = deduction_service.update_deduction(rental.id, total_amount="2500", description="Rental v2")
        assert updated.amount_remaining == Decimal("2500.00")
        assert updated.description == "Rental v2"

    def test_update_to_once(self, deduction_service, rental):
        updated = deduction_service.update_deduction(rental.id, frequency="once")
        assert updated.amount_per_cycle == updated.total_amount

    def test_once_to_recurring_requires_per_cycle(self, deduction_service, uniform):
        with pytest.raises(InvalidDeductionError) as exc_info:
            deduction_service.update_deduction(uniform.id, frequency="weekly")
        assert exc_info.value.field == "amount_per_cycle"

        unchanged = deduction_service.get_deduction(uniform.id)
        assert unchanged.frequency is Frequency.ONCE
        assert unchanged.amount_per_cycle == Decimal("300.00")

    def test_once_to_recurring_with_per_cycle(self, deduction_service, uniform):
        updated = deduction_service.update_deduction(
            uniform.id, frequency="fortnightly", amount_per_cycle="75",
        )
        assert updated.frequency is Frequency.FORTNIGHTLY
        assert updated.amount_per_cycle == Decimal("75.00")

    def test_recurring_keeps_per_cycle_when_frequency_changes(self, deduction_service, rental):
        updated = deduction_service.update_deduction(rental.id, frequency="monthly")
        assert updated.amount_per_cycle == Decimal("150.00")

    def test_update_after_application(self, deduction_service, rental, finalise_week):
        finalise_week(WEEK_1)
        with pytest.raises(DeductionAlreadyAppliedError):
            deduction_service.update_deduction(rental.id, notes="late edit")

    def test_update_after_skip(self, deduction_service, rental, finalise_week):
        finalise_week(WEEK_1, overrides={rental.id: None})
        with pytest.raises(DeductionAlreadyAppliedError):
            deduction_service.update_deduction(rental.id, amount_per_cycle="100")

    def test_update_completed(self, deduction_service, uniform, finalise_week):
        finalise_week(WEEK_1)
        with pytest.raises(DeductionCompletedError):
            deduction_service.update_deduction(uniform.id, notes="x")

    def test_delete_unapplied(self, deduction_service, rental):
        deduction_service.delete_deduction(rental.id)
        with pytest.raises(DeductionNotFoundError):
            deduction_service.get_deduction(rental.id)

    def test_delete_with_only_skips(self, deduction_service, rental, finalise_week):
        rcti, _ = finalise_week(WEEK_1, overrides={rental.id: None})
        deduction_service.delete_deduction(rental.id)
        assert deduction_service.get_rcti_deduction_summary(rcti.id).applications == ()

    def test_delete_after_charge(self, deduction_service, rental, finalise_week):
        finalise_week(WEEK_1)
        with pytest.raises(DeductionAlreadyAppliedError):
            deduction_service.delete_deduction(rental.id)

    def test_missing(self, deduction_service):
        with pytest.raises(DeductionNotFoundError):
            deduction_service.delete_deduction(uuid4())


class TestPreviewAndSummary:

    def test_pending(self, deduction_service, driver, rental, uniform):
        pending = deduction_service.get_pending_deductions(driver.id, WEEK_1)
        assert {(p.description, p.amount) for p in pending} == {
            ("Truck rental", Decimal("150.00")),
            ("Uniform", Decimal("300.00")),
        }

    def test_pending_respects_history(self, deduction_service, driver, rental, finalise_week):
        finalise_week(WEEK_1)
        assert deduction_service.get_pending_deductions(driver.id, date(2025, 11, 15)) == []
        assert len(deduction_service.get_pending_deductions(driver.id, WEEK_2)) == 1

    def test_pending_is_read_only(self, deduction_service, driver, rental):
        deduction_service.get_pending_deductions(driver.id, WEEK_1)
        assert deduction_service.get_deduction(rental.id).amount_paid == Decimal("0.00")

    def test_summary(self, deduction_service, driver, rental, finalise_week):
        deduction_service.create_deduction(
            driver, "reimbursement", "Fuel card", "400", "weekly", "40", start_date=START,
        )
        rcti, _ = finalise_week(WEEK_1)
        summary = deduction_service.get_rcti_deduction_summary(rcti.id)
        assert len(summary.applications) == 2
        assert summary.total_deductions == Decimal("150.00")
        assert summary.total_reimbursements == Decimal("40.00")
        assert summary.net_adjustment == Decimal("-110.00")
        assert {a.description for a in summary.applications} == {"Truck rental", "Fuel card"}
