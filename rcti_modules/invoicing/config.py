"""
RCTI Configuration Schema.

Defines the structure and defaults for invoicing settings.  Values may be
overridden from a YAML file with ``load_rcti_config``:

    gst_rate: "0.10"
    break_threshold_hours: 7
    invoice_prefix: RCTI
    invoice_name_length: 10
    toll_rates:
      eastlink: "18.50"
      citylink: "31.00"
    frequency_intervals:
      weekly: 7
      fortnightly: 14
      monthly: 30
"""

from dataclasses import dataclass, field, fields
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from rcti_engines.gst import DEFAULT_GST_RATE
from rcti_engines.schedule import DEFAULT_FREQUENCY_INTERVALS, Frequency
from rcti_engines.surcharges import DEFAULT_TOLL_RATES, TollRoad
from rcti_kernel.domain.values import to_decimal
from rcti_kernel.logging_config import get_logger

logger = get_logger("modules.invoicing.config")


@dataclass
class RctiConfig:
    """
    Configuration schema for the invoicing module.

    Field defaults are the Australian GST rate and the billing rules the
    business runs on.
    """

    gst_rate: Decimal = DEFAULT_GST_RATE

    # Lunch breaks apply to jobs strictly longer than this
    break_threshold_hours: Decimal = Decimal("7")

    # Invoice numbers
    invoice_prefix: str = "RCTI"
    invoice_name_length: int = 10

    toll_rates: dict[TollRoad, Decimal] = field(
        default_factory=lambda: dict(DEFAULT_TOLL_RATES)
    )
    frequency_intervals: dict[Frequency, int] = field(
        default_factory=lambda: dict(DEFAULT_FREQUENCY_INTERVALS)
    )

    def __post_init__(self):
        self.gst_rate = to_decimal(self.gst_rate, "gst_rate")
        if not Decimal("0") <= self.gst_rate < Decimal("1"):
            raise ValueError(f"gst_rate must be in [0, 1), got {self.gst_rate}")

        self.break_threshold_hours = to_decimal(
            self.break_threshold_hours, "break_threshold_hours"
        )
        if self.break_threshold_hours < 0:
            raise ValueError("break_threshold_hours cannot be negative")

        if not self.invoice_prefix or not self.invoice_prefix.strip():
            raise ValueError("invoice_prefix cannot be empty")
        if self.invoice_name_length <= 0:
            raise ValueError("invoice_name_length must be positive")

        self.toll_rates = {
            TollRoad(road): to_decimal(rate, f"toll_rates.{road}")
            for road, rate in self.toll_rates.items()
        }
        for road in TollRoad:
            if road not in self.toll_rates:
                raise ValueError(f"toll_rates missing {road.value}")
            if self.toll_rates[road] < 0:
                raise ValueError(f"toll rate for {road.value} cannot be negative")

        self.frequency_intervals = {
            Frequency(freq): int(days) for freq, days in self.frequency_intervals.items()
        }
        if Frequency.ONCE in self.frequency_intervals:
            raise ValueError("frequency_intervals cannot define 'once'")
        for freq in (Frequency.WEEKLY, Frequency.FORTNIGHTLY, Frequency.MONTHLY):
            if freq not in self.frequency_intervals:
                raise ValueError(f"frequency_intervals missing {freq.value}")
            if self.frequency_intervals[freq] <= 0:
                raise ValueError(f"interval for {freq.value} must be positive")

        logger.debug(
            "rcti_config_initialized",
            extra={
                "gst_rate": str(self.gst_rate),
                "break_threshold_hours": str(self.break_threshold_hours),
                "invoice_prefix": self.invoice_prefix,
            },
        )


def load_rcti_config(path: str | Path) -> RctiConfig:
    """
    Load an ``RctiConfig`` from a YAML file, overlaying the defaults.

    Nested tables (toll rates, frequency intervals) overlay key by key.

    Raises:
        ValueError: Unknown keys or invalid values.
        yaml.YAMLError: Malformed YAML.
        FileNotFoundError: Missing file.
    """
    path = Path(path)
    with open(path) as f:
        data: dict[str, Any] = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")

    known = {f.name for f in fields(RctiConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"{path}: unknown configuration keys: {', '.join(unknown)}")

    defaults = RctiConfig()
    if "toll_rates" in data:
        data["toll_rates"] = {
            **{road.value: rate for road, rate in defaults.toll_rates.items()},
            **(data["toll_rates"] or {}),
        }
    if "frequency_intervals" in data:
        data["frequency_intervals"] = {
            **{freq.value: days for freq, days in defaults.frequency_intervals.items()},
            **(data["frequency_intervals"] or {}),
        }

    try:
        config = RctiConfig(**data)
    except (KeyError, TypeError) as e:
        raise ValueError(f"{path}: invalid configuration: {e}") from e

    logger.info("rcti_config_loaded", extra={"path": str(path)})
    return config
