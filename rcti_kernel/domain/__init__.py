"""Pure domain primitives: money values and clocks."""

from rcti_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from rcti_kernel.domain.values import ZERO, bankers_round, to_decimal

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "ZERO",
    "bankers_round",
    "to_decimal",
]
