"""
Module: rcti_engines.breaks
Responsibility:
    Carve unpaid lunch breaks back out of long imported jobs as negative
    invoice lines.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Depends on rcti_engines.gst for line pricing.

Invariants enforced:
    - Only lines with a source job and charged hours strictly above the
      threshold (default 7) qualify; exactly 7 hours does not.
    - Break hours of zero, negative or absent produce no lines at all.
    - Lines are grouped by (truck type, rate): two jobs on the same truck
      type at different rates yield two break lines.
    - Output order is the first-seen order of the groups.

Failure modes:
    - InvalidGstRegimeError / InvalidAmountError from pricing.

Usage:
    from rcti_engines.breaks import BreakSourceLine, calculate_lunch_break_lines

    lines = [BreakSourceLine(source_job_id=1, truck_type="Tray",
                             charged_hours=Decimal("8"),
                             rate_per_hour=Decimal("50"))]
    breaks = calculate_lunch_break_lines(lines, Decimal("0.5"), "registered")
    breaks[0].charged_hours  # Decimal("-0.5")
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Protocol

from rcti_engines.gst import DEFAULT_GST_RATE, GstCalculator, GstMode, GstStatus
from rcti_engines.tracer import traced_engine
from rcti_kernel.domain.values import Numeric, to_decimal
from rcti_kernel.logging_config import get_logger

logger = get_logger("engines.breaks")

BREAK_DESCRIPTION_PREFIX = "Lunch Breaks - "
DEFAULT_BREAK_THRESHOLD_HOURS = Decimal("7")


class BreakCandidate(Protocol):
    """Anything shaped like a priced job line."""

    source_job_id: Any
    truck_type: str
    charged_hours: Decimal
    rate_per_hour: Decimal


@dataclass(frozen=True)
class BreakSourceLine:
    """Minimal job line accepted by the break deriver."""

    source_job_id: Any
    truck_type: str
    charged_hours: Decimal
    rate_per_hour: Decimal


@dataclass(frozen=True)
class BreakLine:
    """A synthesised lunch-break deduction line."""

    truck_type: str
    total_break_hours: Decimal
    rate_per_hour: Decimal
    description: str
    amount_ex_gst: Decimal
    gst_amount: Decimal
    amount_inc_gst: Decimal

    @property
    def charged_hours(self) -> Decimal:
        return -self.total_break_hours

    @property
    def source_job_id(self) -> None:
        return None


def is_break_description(description: str | None) -> bool:
    """True for descriptions produced by this engine."""
    return bool(description and description.startswith(BREAK_DESCRIPTION_PREFIX))


@traced_engine(
    "breaks", "1.0",
    fingerprint_fields=("lines", "driver_break_hours", "gst_status", "gst_mode"),
)
def calculate_lunch_break_lines(
    lines: Iterable[BreakCandidate],
    driver_break_hours: Numeric | None,
    gst_status: GstStatus | str,
    gst_mode: GstMode | str | None = GstMode.EXCLUSIVE,
    threshold_hours: Numeric = DEFAULT_BREAK_THRESHOLD_HOURS,
    gst_rate: Decimal = DEFAULT_GST_RATE,
) -> list[BreakLine]:
    """
    Derive lunch-break deduction lines from job lines.

    Args:
        lines: Priced job lines; anything with source_job_id, truck_type,
            charged_hours and rate_per_hour.
        driver_break_hours: Hours deducted per qualifying job.
        gst_status: Payee GST registration.
        gst_mode: Whether rates include GST.
        threshold_hours: A job qualifies only above this many hours.
        gst_rate: GST rate for pricing.

    Returns:
        One BreakLine per (truck type, rate) group, first-seen order.
    """
    if driver_break_hours is None:
        return []
    break_hours = to_decimal(driver_break_hours, "break_hours")
    if break_hours <= 0:
        return []

    threshold = to_decimal(threshold_hours, "threshold_hours")

    # (truck_type, normalised rate) -> [truck_type, rate, accumulated hours]
    groups: dict[tuple[str, Decimal], list[Any]] = {}
    for line in lines:
        if line.source_job_id is None:
            continue
        hours = to_decimal(line.charged_hours, "charged_hours")
        if hours <= threshold:
            continue
        rate = to_decimal(line.rate_per_hour, "rate_per_hour")
        key = (line.truck_type, rate.normalize())
        if key in groups:
            groups[key][2] += break_hours
        else:
            groups[key] = [line.truck_type, rate, break_hours]

    calculator = GstCalculator(gst_rate)
    result = []
    for truck_type, rate, total in groups.values():
        amounts = calculator.calculate(-total, rate, gst_status, gst_mode)
        result.append(
            BreakLine(
                truck_type=truck_type,
                total_break_hours=total,
                rate_per_hour=rate,
                description=f"{BREAK_DESCRIPTION_PREFIX}{truck_type}",
                amount_ex_gst=amounts.amount_ex_gst,
                gst_amount=amounts.gst_amount,
                amount_inc_gst=amounts.amount_inc_gst,
            )
        )

    if result:
        logger.info("lunch_break_lines_calculated", extra={
            "break_line_count": len(result),
            "break_hours_per_job": str(break_hours),
        })
    return result
