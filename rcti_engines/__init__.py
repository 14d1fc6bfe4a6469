"""
Module: rcti_engines
Responsibility:
    Re-exports the pure RCTI calculators: line pricing, rate lookup, lunch
    breaks, surcharges, totals, invoice numbers and deduction scheduling.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import rcti_kernel (domain values, exceptions, logging).
    MUST NOT import rcti_modules.

Invariants enforced:
    - Engines never read the clock; dates are passed in.
    - Decimal-only arithmetic, rounded with banker's rounding.
    - Identical inputs always produce identical outputs.
"""

from rcti_engines.breaks import (
    BreakLine,
    BreakSourceLine,
    calculate_lunch_break_lines,
    is_break_description,
)
from rcti_engines.gst import (
    DEFAULT_GST_RATE,
    GstCalculator,
    GstMode,
    GstRegime,
    GstStatus,
    LineAmounts,
    calculate_line_amounts,
)
from rcti_engines.invoice_number import generate_invoice_number, invoice_number_base
from rcti_engines.rates import DriverRateCard, TruckClass, rate_for_truck_type, resolve_job_rate
from rcti_engines.schedule import (
    AppliedCycle,
    Charge,
    DeductionType,
    DueCheck,
    DueStatus,
    Frequency,
    compute_charge,
    days_between,
    evaluate_due,
    is_deduction_due,
    normalize_to_date,
)
from rcti_engines.surcharges import SurchargeLine, TollRoad, fuel_levy_line, toll_line
from rcti_engines.totals import RctiTotals, calculate_rcti_totals

__all__ = [
    "AppliedCycle",
    "BreakLine",
    "BreakSourceLine",
    "Charge",
    "DEFAULT_GST_RATE",
    "DeductionType",
    "DriverRateCard",
    "DueCheck",
    "DueStatus",
    "Frequency",
    "GstCalculator",
    "GstMode",
    "GstRegime",
    "GstStatus",
    "LineAmounts",
    "RctiTotals",
    "SurchargeLine",
    "TollRoad",
    "TruckClass",
    "calculate_line_amounts",
    "calculate_lunch_break_lines",
    "calculate_rcti_totals",
    "compute_charge",
    "days_between",
    "evaluate_due",
    "fuel_levy_line",
    "generate_invoice_number",
    "invoice_number_base",
    "is_break_description",
    "is_deduction_due",
    "normalize_to_date",
    "rate_for_truck_type",
    "resolve_job_rate",
    "toll_line",
]
