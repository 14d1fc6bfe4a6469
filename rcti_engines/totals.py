"""
Totals Engine - Aggregate invoice lines into subtotal, GST and total.

Unlike line pricing, aggregation rounds once: each column is summed
unrounded and the sum is rounded with banker's rounding.  Lines of every
kind (job, break, toll, fuel levy, manual) are treated alike, and totals may
be negative when deductions exceed charges.

Usage:
    from rcti_engines.totals import calculate_rcti_totals

    totals = calculate_rcti_totals(rcti.lines)
    totals.total
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

from rcti_engines.tracer import traced_engine
from rcti_kernel.domain.values import ZERO, sum_money


class PricedLine(Protocol):
    amount_ex_gst: Decimal
    gst_amount: Decimal
    amount_inc_gst: Decimal


@dataclass(frozen=True)
class RctiTotals:
    subtotal: Decimal = ZERO
    gst: Decimal = ZERO
    total: Decimal = ZERO


@traced_engine("totals", "1.0", fingerprint_fields=("lines",))
def calculate_rcti_totals(lines: Iterable[PricedLine]) -> RctiTotals:
    """Sum each amount column, rounding once at the end."""
    lines = list(lines)
    return RctiTotals(
        subtotal=sum_money(line.amount_ex_gst for line in lines),
        gst=sum_money(line.gst_amount for line in lines),
        total=sum_money(line.amount_inc_gst for line in lines),
    )
