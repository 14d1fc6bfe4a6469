"""Tests for truck classification and job rate resolution."""

from decimal import Decimal

import pytest

from rcti_engines.gst import GstMode, GstStatus
from rcti_engines.rates import (
    DriverRateCard,
    TruckClass,
    classify_truck_type,
    rate_for_truck_type,
    resolve_job_rate,
)


@pytest.mark.parametrize(
    "truck_type,expected",
    [
        ("Semi Crane", TruckClass.SEMI_CRANE),
        ("crane semi-trailer", TruckClass.SEMI_CRANE),
        ("Semi", TruckClass.SEMI),
        ("  SEMI trailer ", TruckClass.SEMI),
        ("Crane", TruckClass.CRANE),
        ("Tray", TruckClass.TRAY),
        ("Tipper", TruckClass.TRAY),
        ("", TruckClass.TRAY),
        (None, TruckClass.TRAY),
    ],
)
def test_classify_truck_type(truck_type, expected):
    assert classify_truck_type(truck_type) is expected


class TestResolveJobRate:

    def setup_method(self):
        self.card = DriverRateCard(
            tray=Decimal("50"),
            semi=Decimal("80"),
            semi_crane=Decimal("95"),
        )

    def test_rate_card(self):
        assert resolve_job_rate("Semi Crane", self.card) == Decimal("95")

    def test_driver_charge_wins(self):
        assert resolve_job_rate("Tray", self.card, Decimal("62.5")) == Decimal("62.5")

    def test_zero_driver_charge_falls_through(self):
        assert resolve_job_rate("Semi", self.card, Decimal("0")) == Decimal("80")

    def test_missing_rate_is_zero(self):
        assert rate_for_truck_type("Crane", self.card) is None
        assert resolve_job_rate("Crane", self.card) == Decimal("0")


class TestDriverRateCard:

    def test_regime(self):
        card = DriverRateCard(gst_status=GstStatus.REGISTERED, gst_mode=GstMode.INCLUSIVE)
        assert card.regime.is_registered
        assert card.regime.mode is GstMode.INCLUSIVE

    def test_defaults_not_registered(self):
        assert not DriverRateCard().regime.is_registered
