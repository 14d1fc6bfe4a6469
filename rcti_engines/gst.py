"""
GST Engine - Price a single RCTI line under an Australian GST regime.

Three regimes are supported:
    - not registered: no GST, ex-GST equals inc-GST
    - registered, exclusive: GST added on top of hours x rate
    - registered, inclusive: hours x rate already contains GST

Every step rounds independently with banker's rounding, matching statutory
invoicing convention. In inclusive mode GST is the difference of the two
already-rounded figures, so the three amounts always reconcile exactly.

Pure functions with no I/O.

Usage:
    from decimal import Decimal
    from rcti_engines.gst import GstCalculator, GstMode, GstStatus

    amounts = GstCalculator().calculate(
        charged_hours=Decimal("8"),
        rate_per_hour=Decimal("50"),
        gst_status=GstStatus.REGISTERED,
        gst_mode=GstMode.EXCLUSIVE,
    )
    print(amounts.amount_inc_gst)  # 440.00
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from rcti_kernel.domain.values import ZERO, Numeric, bankers_round, to_decimal
from rcti_kernel.exceptions import InvalidGstRegimeError, InvalidLineInputError
from rcti_kernel.logging_config import get_logger

logger = get_logger("engines.gst")

DEFAULT_GST_RATE = Decimal("0.10")


class GstStatus(str, Enum):
    """Payee GST registration."""

    NOT_REGISTERED = "not_registered"
    REGISTERED = "registered"


class GstMode(str, Enum):
    """Whether the agreed rate includes GST. Ignored when not registered."""

    EXCLUSIVE = "exclusive"
    INCLUSIVE = "inclusive"


def parse_gst_status(value: GstStatus | str) -> GstStatus:
    """Coerce a string to ``GstStatus``, rejecting unknown values."""
    if isinstance(value, GstStatus):
        return value
    try:
        return GstStatus(value)
    except ValueError as e:
        raise InvalidGstRegimeError(
            "gst_status", str(value), tuple(s.value for s in GstStatus)
        ) from e


def parse_gst_mode(value: GstMode | str | None) -> GstMode:
    """Coerce a string to ``GstMode``, rejecting unknown values.

    An absent mode means exclusive.
    """
    if value is None:
        return GstMode.EXCLUSIVE
    if isinstance(value, GstMode):
        return value
    try:
        return GstMode(value)
    except ValueError as e:
        raise InvalidGstRegimeError(
            "gst_mode", str(value), tuple(m.value for m in GstMode)
        ) from e


@dataclass(frozen=True)
class GstRegime:
    """A payee's GST status and mode."""

    status: GstStatus = GstStatus.NOT_REGISTERED
    mode: GstMode = GstMode.EXCLUSIVE

    @classmethod
    def of(cls, status: GstStatus | str, mode: GstMode | str | None = GstMode.EXCLUSIVE) -> GstRegime:
        return cls(status=parse_gst_status(status), mode=parse_gst_mode(mode))

    @property
    def is_registered(self) -> bool:
        return self.status == GstStatus.REGISTERED


@dataclass(frozen=True)
class LineAmounts:
    """
    Priced amounts for one invoice line.

    All three figures are rounded to the cent.
    """

    amount_ex_gst: Decimal
    gst_amount: Decimal
    amount_inc_gst: Decimal

    def as_dict(self) -> dict[str, Decimal]:
        return {
            "amount_ex_gst": self.amount_ex_gst,
            "gst_amount": self.gst_amount,
            "amount_inc_gst": self.amount_inc_gst,
        }


class GstCalculator:
    """
    Price invoice lines.

    Pure functions - no I/O, no database access.
    The GST rate is a constructor parameter (10% by default).
    """

    def __init__(self, gst_rate: Decimal = DEFAULT_GST_RATE):
        if gst_rate < 0:
            raise InvalidLineInputError("gst_rate", "cannot be negative")
        self._gst_rate = gst_rate
        self._inclusive_divisor = Decimal("1") + gst_rate

    @property
    def gst_rate(self) -> Decimal:
        return self._gst_rate

    def calculate(
        self,
        charged_hours: Numeric,
        rate_per_hour: Numeric,
        gst_status: GstStatus | str,
        gst_mode: GstMode | str | None = GstMode.EXCLUSIVE,
    ) -> LineAmounts:
        """
        Derive ex-GST, GST and inc-GST amounts for one line.

        Args:
            charged_hours: Hours charged; negative for deduction lines.
            rate_per_hour: Hourly (or unit) rate; must not be negative.
            gst_status: Payee GST registration.
            gst_mode: Whether the rate includes GST.

        Returns:
            LineAmounts rounded to the cent.

        Raises:
            InvalidGstRegimeError: Unknown status or mode.
            InvalidLineInputError: Negative rate.
            InvalidAmountError: Non-numeric hours or rate.
        """
        status = parse_gst_status(gst_status)
        mode = parse_gst_mode(gst_mode)
        hours = to_decimal(charged_hours, "charged_hours")
        rate = to_decimal(rate_per_hour, "rate_per_hour")

        if rate < 0:
            logger.warning("line_rate_negative", extra={"rate_per_hour": str(rate)})
            raise InvalidLineInputError("rate_per_hour", f"cannot be negative ({rate})")

        if status == GstStatus.NOT_REGISTERED:
            amount = bankers_round(hours * rate)
            result = LineAmounts(
                amount_ex_gst=amount,
                gst_amount=ZERO,
                amount_inc_gst=amount,
            )
        elif mode == GstMode.EXCLUSIVE:
            amount_ex_gst = bankers_round(hours * rate)
            gst_amount = bankers_round(amount_ex_gst * self._gst_rate)
            result = LineAmounts(
                amount_ex_gst=amount_ex_gst,
                gst_amount=gst_amount,
                amount_inc_gst=bankers_round(amount_ex_gst + gst_amount),
            )
        else:
            amount_inc_gst = bankers_round(hours * rate)
            amount_ex_gst = bankers_round(amount_inc_gst / self._inclusive_divisor)
            result = LineAmounts(
                amount_ex_gst=amount_ex_gst,
                # Difference of rounded figures, never independently rounded
                gst_amount=bankers_round(amount_inc_gst - amount_ex_gst),
                amount_inc_gst=amount_inc_gst,
            )

        logger.debug("line_amounts_calculated", extra={
            "charged_hours": str(hours),
            "rate_per_hour": str(rate),
            "gst_status": status.value,
            "gst_mode": mode.value,
            "amount_ex_gst": str(result.amount_ex_gst),
            "gst_amount": str(result.gst_amount),
            "amount_inc_gst": str(result.amount_inc_gst),
        })
        return result

    def calculate_for(
        self,
        charged_hours: Numeric,
        rate_per_hour: Numeric,
        regime: GstRegime,
    ) -> LineAmounts:
        """Convenience wrapper taking a ``GstRegime``."""
        return self.calculate(charged_hours, rate_per_hour, regime.status, regime.mode)


def calculate_line_amounts(
    charged_hours: Numeric,
    rate_per_hour: Numeric,
    gst_status: GstStatus | str,
    gst_mode: GstMode | str | None = GstMode.EXCLUSIVE,
    gst_rate: Decimal = DEFAULT_GST_RATE,
) -> LineAmounts:
    """
    Simple line pricing.

    Args:
        charged_hours: Hours charged
        rate_per_hour: Rate per hour
        gst_status: "registered" or "not_registered"
        gst_mode: "exclusive" or "inclusive"
        gst_rate: GST rate as a decimal fraction

    Returns:
        LineAmounts
    """
    return GstCalculator(gst_rate).calculate(
        charged_hours, rate_per_hour, gst_status, gst_mode
    )
