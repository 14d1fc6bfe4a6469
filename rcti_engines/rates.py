"""
Rates Engine - Resolve a driver's hourly rate for a job.

A driver's rate card carries one rate per truck class.  Truck types are free
text on imported jobs ("Semi Crane", "8t crane", "Tray Top"), so the class
is found by substring match on the lower-cased, trimmed type:

    contains "semi" and "crane"  -> semi_crane
    contains "semi"              -> semi
    contains "crane"             -> crane
    contains "tray"              -> tray
    anything else                -> tray

Usage:
    from decimal import Decimal
    from rcti_engines.rates import DriverRateCard, rate_for_truck_type

    card = DriverRateCard(tray=Decimal("50"), semi=Decimal("80"))
    rate_for_truck_type("SEMI trailer", card)  # Decimal("80")
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from rcti_engines.gst import GstMode, GstRegime, GstStatus
from rcti_kernel.domain.values import Numeric, to_decimal


class TruckClass(str, Enum):
    TRAY = "tray"
    CRANE = "crane"
    SEMI = "semi"
    SEMI_CRANE = "semi_crane"


@dataclass(frozen=True)
class DriverRateCard:
    """
    Per-driver hourly rates and break policy.

    Absent rates are ``None``; a job that resolves to an absent rate is
    priced at zero.
    """

    tray: Decimal | None = None
    crane: Decimal | None = None
    semi: Decimal | None = None
    semi_crane: Decimal | None = None
    break_hours: Decimal | None = None
    gst_status: GstStatus = GstStatus.NOT_REGISTERED
    gst_mode: GstMode = GstMode.EXCLUSIVE

    @property
    def regime(self) -> GstRegime:
        return GstRegime(status=self.gst_status, mode=self.gst_mode)

    def rate_for(self, truck_class: TruckClass) -> Decimal | None:
        return getattr(self, truck_class.value)


def classify_truck_type(truck_type: str | None) -> TruckClass:
    """Map free-text truck type to a rate-card class."""
    normalized = (truck_type or "").strip().lower()

    if "semi" in normalized and "crane" in normalized:
        return TruckClass.SEMI_CRANE
    if "semi" in normalized:
        return TruckClass.SEMI
    if "crane" in normalized:
        return TruckClass.CRANE
    # "tray" and anything unrecognised
    return TruckClass.TRAY


def rate_for_truck_type(truck_type: str | None, card: DriverRateCard) -> Decimal | None:
    """Rate-card rate for a truck type, or None when the card has no rate for it."""
    return card.rate_for(classify_truck_type(truck_type))


def resolve_job_rate(
    truck_type: str | None,
    card: DriverRateCard,
    job_driver_charge: Numeric | None = None,
) -> Decimal:
    """
    Hourly rate for one job line.

    A non-zero per-job driver charge wins over the rate card.  No resolvable
    rate prices the job at zero.
    """
    if job_driver_charge is not None:
        charge = to_decimal(job_driver_charge, "driver_charge")
        if charge != 0:
            return charge
    rate = rate_for_truck_type(truck_type, card)
    if rate is None:
        return Decimal("0")
    return to_decimal(rate, "rate_per_hour")
