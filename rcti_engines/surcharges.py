"""
Surcharge Engine - Toll and fuel-levy lines.

Both surcharges are synthetic one-hour lines (no source job) whose "rate"
carries the whole amount, priced through the GST engine like any other line:

    toll:      rate = passages x per-passage toll rate
    fuel levy: rate = job subtotal x percentage / 100

The levy rate is left unrounded; rounding happens in line pricing.

Usage:
    from rcti_engines.surcharges import TollRoad, toll_line, fuel_levy_line

    line = toll_line(TollRoad.EASTLINK, 3, regime)  # rate 55.50
    levy = fuel_levy_line(Decimal("1000"), Decimal("5"), regime)  # rate 50
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from rcti_engines.gst import DEFAULT_GST_RATE, GstCalculator, GstRegime
from rcti_kernel.domain.values import Numeric, to_decimal
from rcti_kernel.exceptions import InvalidLineInputError
from rcti_kernel.logging_config import get_logger

logger = get_logger("engines.surcharges")

SURCHARGE_HOURS = Decimal("1")


class TollRoad(str, Enum):
    EASTLINK = "eastlink"
    CITYLINK = "citylink"

    @property
    def label(self) -> str:
        return {"eastlink": "Eastlink", "citylink": "CityLink"}[self.value]


DEFAULT_TOLL_RATES: Mapping[TollRoad, Decimal] = {
    TollRoad.EASTLINK: Decimal("18.50"),
    TollRoad.CITYLINK: Decimal("31.00"),
}


@dataclass(frozen=True)
class SurchargeLine:
    """A priced synthetic line."""

    description: str
    charged_hours: Decimal
    rate_per_hour: Decimal
    amount_ex_gst: Decimal
    gst_amount: Decimal
    amount_inc_gst: Decimal
    truck_type: str = ""
    source_job_id: None = None


def _priced(description: str, rate: Decimal, regime: GstRegime, gst_rate: Decimal) -> SurchargeLine:
    amounts = GstCalculator(gst_rate).calculate_for(SURCHARGE_HOURS, rate, regime)
    return SurchargeLine(
        description=description,
        charged_hours=SURCHARGE_HOURS,
        rate_per_hour=rate,
        amount_ex_gst=amounts.amount_ex_gst,
        gst_amount=amounts.gst_amount,
        amount_inc_gst=amounts.amount_inc_gst,
    )


def toll_line(
    road: TollRoad | str,
    count: int,
    regime: GstRegime,
    toll_rates: Mapping[TollRoad, Decimal] | None = None,
    gst_rate: Decimal = DEFAULT_GST_RATE,
) -> SurchargeLine | None:
    """
    One line covering ``count`` passages of a toll road.

    Returns None for zero passages.

    Raises:
        InvalidLineInputError: Unknown road or negative count.
    """
    try:
        road = TollRoad(road)
    except ValueError as e:
        raise InvalidLineInputError("toll_road", f"unknown toll road {road!r}") from e
    if isinstance(count, bool) or not isinstance(count, int):
        raise InvalidLineInputError("toll_count", f"must be a whole number ({count!r})")
    if count < 0:
        raise InvalidLineInputError("toll_count", f"cannot be negative ({count})")
    if count == 0:
        return None

    rates = toll_rates if toll_rates is not None else DEFAULT_TOLL_RATES
    rate = Decimal(count) * rates[road]
    line = _priced(f"Tolls - {road.label} ({count})", rate, regime, gst_rate)
    logger.info("toll_line_calculated", extra={
        "toll_road": road.value,
        "toll_count": count,
        "amount_inc_gst": str(line.amount_inc_gst),
    })
    return line


def fuel_levy_line(
    job_subtotal: Numeric,
    percentage: Numeric | None,
    regime: GstRegime,
    gst_rate: Decimal = DEFAULT_GST_RATE,
) -> SurchargeLine | None:
    """
    Fuel levy as a percentage of the job-line subtotal (ex GST).

    Returns None when the percentage is absent or zero, or when there is
    no positive subtotal to levy against.

    Raises:
        InvalidLineInputError: Negative percentage.
    """
    if percentage is None:
        return None
    pct = to_decimal(percentage, "fuel_levy_percentage")
    if pct < 0:
        raise InvalidLineInputError("fuel_levy_percentage", f"cannot be negative ({pct})")
    subtotal = to_decimal(job_subtotal, "job_subtotal")
    if pct == 0 or subtotal <= 0:
        return None

    rate = subtotal * pct / Decimal("100")
    line = _priced(f"Fuel Levy ({pct.normalize():f}%)", rate, regime, gst_rate)
    logger.info("fuel_levy_line_calculated", extra={
        "fuel_levy_percentage": str(pct),
        "job_subtotal": str(subtotal),
        "amount_inc_gst": str(line.amount_inc_gst),
    })
    return line
