"""
Hypothesis property tests for the pure calculators.

Properties:
- Line amounts always reconcile: ex + GST == inc, in every regime
- Invoice totals equal the column sums of their lines
- Generated invoice numbers never collide with existing ones
- A charge never exceeds the remaining balance and is never negative
- Lunch-break hours equal break hours times qualifying jobs
- An invoice week that already carries an application is never due again
"""

from datetime import date, timedelta
from decimal import Decimal

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from rcti_engines.breaks import BreakSourceLine, calculate_lunch_break_lines
from rcti_engines.gst import GstCalculator, GstMode, GstStatus
from rcti_engines.invoice_number import generate_invoice_number, invoice_number_base
from rcti_engines.schedule import AppliedCycle, DueStatus, Frequency, compute_charge, evaluate_due
from rcti_engines.totals import calculate_rcti_totals
from rcti_kernel.domain.values import sum_money

hours = st.decimals(min_value=Decimal("-24"), max_value=Decimal("24"), places=2)
rates = st.decimals(min_value=Decimal("0"), max_value=Decimal("500"), places=2)
money = st.decimals(min_value=Decimal("0"), max_value=Decimal("100000"), places=2)
statuses = st.sampled_from(list(GstStatus))
modes = st.sampled_from(list(GstMode))
weeks = st.dates(min_value=date(2024, 1, 7), max_value=date(2027, 12, 26))

# Suite-wide autouse fixtures are function scoped
fuzz = settings(suppress_health_check=[HealthCheck.function_scoped_fixture])


class TestLineAmountProperties:

    @fuzz
    @given(h=hours, r=rates, status=statuses, mode=modes)
    def test_components_reconcile(self, h, r, status, mode):
        amounts = GstCalculator().calculate(h, r, status, mode)
        assert amounts.amount_ex_gst + amounts.gst_amount == amounts.amount_inc_gst

    @fuzz
    @given(h=hours, r=rates, mode=modes)
    def test_not_registered_has_no_gst(self, h, r, mode):
        amounts = GstCalculator().calculate(h, r, GstStatus.NOT_REGISTERED, mode)
        assert amounts.gst_amount == 0

    @fuzz
    @given(h=hours, r=rates, status=statuses, mode=modes)
    def test_two_places(self, h, r, status, mode):
        amounts = GstCalculator().calculate(h, r, status, mode)
        for value in amounts.as_dict().values():
            assert value.as_tuple().exponent == -2


class TestTotalsProperties:

    @fuzz
    @given(st.lists(st.tuples(hours, rates), max_size=20), statuses, modes)
    def test_totals_are_column_sums(self, pairs, status, mode):
        calculator = GstCalculator()
        lines = [calculator.calculate(h, r, status, mode) for h, r in pairs]
        totals = calculate_rcti_totals(lines)
        assert totals.subtotal == sum_money(line.amount_ex_gst for line in lines)
        assert totals.total == sum_money(line.amount_inc_gst for line in lines)
        assert totals.subtotal + totals.gst == totals.total


class TestInvoiceNumberProperties:

    @fuzz
    @given(
        name=st.text(max_size=30),
        week=weeks,
        taken=st.sets(st.integers(min_value=0, max_value=15), max_size=10),
    )
    def test_never_collides(self, name, week, taken):
        base = invoice_number_base(week, name)
        existing = [base if n == 0 else f"{base}-{n}" for n in taken]
        number = generate_invoice_number(existing, week, name)
        assert number not in existing
        assert number.startswith(base)


class TestChargeProperties:

    @fuzz
    @given(per_cycle=st.one_of(st.none(), money), remaining=money)
    def test_bounded_by_remaining(self, per_cycle, remaining):
        charge = compute_charge(per_cycle, remaining)
        assert Decimal("0") <= charge.amount <= remaining

    @fuzz
    @given(per_cycle=money, remaining=money, override=money)
    def test_override_bounded(self, per_cycle, remaining, override):
        charge = compute_charge(per_cycle, remaining, "d-1", {"d-1": override})
        assert charge.amount == min(override, remaining)


class TestBreakProperties:

    @fuzz
    @given(
        st.lists(
            st.tuples(
                st.sampled_from(["Tray", "Semi", "Crane"]),
                st.decimals(min_value=Decimal("0"), max_value=Decimal("14"), places=1),
                st.sampled_from([Decimal("50"), Decimal("80")]),
            ),
            max_size=15,
        ),
        st.decimals(min_value=Decimal("0.25"), max_value=Decimal("1"), places=2),
    )
    def test_total_break_hours(self, jobs, break_hours):
        lines = [
            BreakSourceLine(f"J-{i}", truck, job_hours, rate)
            for i, (truck, job_hours, rate) in enumerate(jobs)
        ]
        breaks = calculate_lunch_break_lines(lines, break_hours, GstStatus.NOT_REGISTERED)
        qualifying = sum(1 for _, job_hours, _ in jobs if job_hours > 7)
        assert sum((b.total_break_hours for b in breaks), Decimal("0")) == break_hours * qualifying
        assert len({(b.truck_type, b.rate_per_hour) for b in breaks}) == len(breaks)


class TestScheduleProperties:

    @settings(max_examples=50, suppress_health_check=[HealthCheck.function_scoped_fixture])
    @given(
        frequency=st.sampled_from(list(Frequency)),
        week=weeks,
        offsets=st.lists(st.integers(min_value=1, max_value=120), max_size=5),
    )
    def test_applied_week_never_due(self, frequency, week, offsets):
        history = [AppliedCycle(week, Decimal("10"))]
        history += [AppliedCycle(week - timedelta(days=n), Decimal("10")) for n in offsets]
        check = evaluate_due(frequency, week - timedelta(days=200), history, week)
        assert check.status is DueStatus.ALREADY_APPLIED
