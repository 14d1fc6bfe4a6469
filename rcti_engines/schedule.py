"""
Module: rcti_engines.schedule
Responsibility:
    Pure due-ness and charge rules for recurring deductions.  Given a
    deduction's frequency, start date and application history, decide
    whether a cycle falls on an invoice's week ending and how much to
    charge.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Consumed by rcti_modules.invoicing.deductions, which owns persistence,
    locking and the transaction.

Invariants enforced:
    - Every date is reduced to a UTC calendar date before comparison, so
      time-of-day never changes a decision.
    - A deduction with an application whose invoice week ending equals the
      target is never due again for that week (idempotency).
    - Elapsed days are measured from the latest applied week ending strictly
      before the target, counting zero-amount skips, so a skip advances the
      schedule.  With no earlier application the first cycle is due as soon
      as the deduction has started.
    - A week finalised out of order must also be at least one interval
      before the nearest later applied week ending, so cycles already
      charged on later invoices are never charged again.
    - ``once`` is due while no non-zero application exists.
    - Charges are capped at the remaining balance and never negative.

Failure modes:
    - InvalidOverrideError for a negative per-invoice override.
    - InvalidDeductionError for an unknown frequency or type string.

Usage:
    from rcti_engines.schedule import Frequency, evaluate_due

    check = evaluate_due(
        frequency=Frequency.WEEKLY,
        start_date=date(2025, 11, 3),
        history=[AppliedCycle(date(2025, 11, 9), Decimal("50.00"))],
        week_ending=date(2025, 11, 16),
    )
    check.is_due  # True
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

from rcti_engines.tracer import traced_engine
from rcti_kernel.domain.values import ZERO, Numeric, bankers_round, to_decimal
from rcti_kernel.exceptions import InvalidDeductionError, InvalidOverrideError


class Frequency(str, Enum):
    ONCE = "once"
    WEEKLY = "weekly"
    FORTNIGHTLY = "fortnightly"
    MONTHLY = "monthly"


class DeductionType(str, Enum):
    """Deductions reduce a payment; reimbursements add to it."""

    DEDUCTION = "deduction"
    REIMBURSEMENT = "reimbursement"


DEFAULT_FREQUENCY_INTERVALS: Mapping[Frequency, int] = {
    Frequency.WEEKLY: 7,
    Frequency.FORTNIGHTLY: 14,
    Frequency.MONTHLY: 30,
}


def parse_frequency(value: Frequency | str) -> Frequency:
    if isinstance(value, Frequency):
        return value
    try:
        return Frequency(value)
    except ValueError as e:
        allowed = ", ".join(f.value for f in Frequency)
        raise InvalidDeductionError(
            "frequency", f"{value!r} is not one of {allowed}"
        ) from e


def parse_deduction_type(value: DeductionType | str) -> DeductionType:
    if isinstance(value, DeductionType):
        return value
    try:
        return DeductionType(value)
    except ValueError as e:
        allowed = ", ".join(t.value for t in DeductionType)
        raise InvalidDeductionError("type", f"{value!r} is not one of {allowed}") from e


def normalize_to_date(value: date | datetime | str) -> date:
    """
    Reduce a date, datetime or ISO string to a UTC calendar date.

    Aware datetimes are converted to UTC first; naive ones are taken as UTC.
    """
    if isinstance(value, str):
        value = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    return value


def days_between(earlier: date | datetime | str, later: date | datetime | str) -> int:
    """Whole calendar days from ``earlier`` to ``later`` (negative if reversed)."""
    return (normalize_to_date(later) - normalize_to_date(earlier)).days


@dataclass(frozen=True)
class AppliedCycle:
    """One prior application: its invoice's week ending and the amount charged."""

    week_ending: date
    amount: Decimal

    @property
    def is_skip(self) -> bool:
        return self.amount == 0


class DueStatus(str, Enum):
    DUE = "due"
    NOT_STARTED = "not_started"
    ALREADY_APPLIED = "already_applied"
    NOT_DUE = "not_due"
    ONCE_CONSUMED = "once_consumed"


@dataclass(frozen=True)
class DueCheck:
    """Outcome of a due-ness evaluation, with what it was measured from."""

    status: DueStatus
    reference_date: date | None = None
    elapsed_days: int | None = None

    @property
    def is_due(self) -> bool:
        return self.status == DueStatus.DUE


@traced_engine(
    "schedule", "1.0",
    fingerprint_fields=("frequency", "start_date", "history", "week_ending"),
)
def evaluate_due(
    frequency: Frequency | str,
    start_date: date | datetime | str,
    history: Iterable[AppliedCycle],
    week_ending: date | datetime | str,
    intervals: Mapping[Frequency, int] | None = None,
) -> DueCheck:
    """
    Decide whether a deduction cycle falls on ``week_ending``.

    Args:
        frequency: Deduction frequency.
        start_date: First date the deduction may apply.
        history: Every prior application of the deduction.
        week_ending: Target invoice week ending.
        intervals: Minimum elapsed days per recurring frequency.

    Returns:
        DueCheck describing the decision.
    """
    frequency = parse_frequency(frequency)
    target = normalize_to_date(week_ending)
    start = normalize_to_date(start_date)
    cycles = [
        AppliedCycle(normalize_to_date(c.week_ending), to_decimal(c.amount))
        for c in history
    ]

    if start > target:
        return DueCheck(DueStatus.NOT_STARTED, reference_date=start)

    if any(c.week_ending == target for c in cycles):
        return DueCheck(DueStatus.ALREADY_APPLIED, reference_date=target, elapsed_days=0)

    if frequency == Frequency.ONCE:
        if any(not c.is_skip for c in cycles):
            return DueCheck(DueStatus.ONCE_CONSUMED)
        return DueCheck(DueStatus.DUE, reference_date=start)

    required = (intervals or DEFAULT_FREQUENCY_INTERVALS)[frequency]

    # A back-dated week must also sit a full interval before the next cycle
    later = [c.week_ending for c in cycles if c.week_ending > target]
    if later:
        following = min(later)
        if (following - target).days < required:
            return DueCheck(
                DueStatus.NOT_DUE,
                reference_date=following,
                elapsed_days=(target - following).days,
            )

    earlier = [c.week_ending for c in cycles if c.week_ending < target]
    if not earlier:
        return DueCheck(DueStatus.DUE, reference_date=start, elapsed_days=(target - start).days)

    reference = max(earlier)
    elapsed = (target - reference).days
    status = DueStatus.DUE if elapsed >= required else DueStatus.NOT_DUE
    return DueCheck(status, reference_date=reference, elapsed_days=elapsed)


def is_deduction_due(
    frequency: Frequency | str,
    start_date: date | datetime | str,
    history: Iterable[AppliedCycle],
    week_ending: date | datetime | str,
    intervals: Mapping[Frequency, int] | None = None,
) -> bool:
    """Boolean form of ``evaluate_due``."""
    return evaluate_due(frequency, start_date, history, week_ending, intervals).is_due


@dataclass(frozen=True)
class Charge:
    """Amount to record for one deduction on one invoice."""

    amount: Decimal
    skipped: bool = False
    overridden: bool = False


def lookup_override(
    overrides: Mapping[Any, Numeric | None] | None,
    deduction_id: Any,
) -> tuple[bool, Numeric | None]:
    """
    Find an override by deduction id, accepting either the id or its string.

    Returns (present, value); a present ``None`` value means skip.
    """
    if not overrides:
        return False, None
    for key in (deduction_id, str(deduction_id)):
        if key in overrides:
            return True, overrides[key]
    return False, None


def compute_charge(
    amount_per_cycle: Numeric | None,
    amount_remaining: Numeric,
    deduction_id: Any = None,
    overrides: Mapping[Any, Numeric | None] | None = None,
) -> Charge:
    """
    Charge for a due cycle.

    Default is ``min(amount_per_cycle, amount_remaining)``; with no per-cycle
    amount the whole remaining balance is charged.  An override replaces the
    default, still capped at the remaining balance; a ``None`` override is a
    skip charging zero.

    Raises:
        InvalidOverrideError: Negative override.
    """
    remaining = max(to_decimal(amount_remaining, "amount_remaining"), Decimal("0"))
    present, value = lookup_override(overrides, deduction_id)

    if present:
        if value is None:
            return Charge(amount=ZERO, skipped=True, overridden=True)
        requested = to_decimal(value, "amount_override")
        if requested < 0:
            raise InvalidOverrideError(str(deduction_id), str(requested))
        return Charge(amount=bankers_round(min(requested, remaining)), overridden=True)

    if amount_per_cycle is None:
        per_cycle = remaining
    else:
        per_cycle = to_decimal(amount_per_cycle, "amount_per_cycle")
    return Charge(amount=bankers_round(max(min(per_cycle, remaining), Decimal("0"))))
