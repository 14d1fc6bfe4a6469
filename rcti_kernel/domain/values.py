"""
Values -- money and quantity primitives.

Responsibility:
    The single rounding primitive for every monetary figure in the system,
    plus the conversion boundary that turns caller input (int, str, float,
    Decimal) into ``Decimal``.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Imported by every engine.

Invariants enforced:
    - Money is ``Decimal`` end to end; floats are converted through their
      shortest ``repr`` so ``1.135`` means the decimal literal ``1.135``,
      never its binary approximation.
    - ``bankers_round`` quantizes to two places with ROUND_HALF_EVEN.

Failure modes:
    - InvalidAmountError for non-numeric strings, NaN and infinities.
"""

from __future__ import annotations

from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation

from rcti_kernel.exceptions import InvalidAmountError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

Numeric = Decimal | int | float | str


def to_decimal(value: Numeric, field: str | None = None) -> Decimal:
    """
    Convert caller input to a finite ``Decimal`` without rounding.

    Raises:
        InvalidAmountError: If the value is not numeric or not finite.
    """
    if isinstance(value, bool):
        raise InvalidAmountError(repr(value), field)
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip() if isinstance(value, str) else repr(value))
        except (InvalidOperation, ValueError, TypeError) as e:
            raise InvalidAmountError(str(value), field) from e
    if not result.is_finite():
        raise InvalidAmountError(str(value), field)
    return result


def bankers_round(value: Numeric) -> Decimal:
    """
    Round a monetary value to 2 decimal places, ties to the even cent.

    1.125 -> 1.12, 1.135 -> 1.14, -2.675 -> -2.68.

    Postconditions:
        - Result has exactly two fractional digits.
        - Negative zero is normalised to ``0.00``.
    """
    rounded = to_decimal(value).quantize(CENT, rounding=ROUND_HALF_EVEN)
    if rounded.is_zero():
        return ZERO
    return rounded


def sum_money(values) -> Decimal:
    """Sum unrounded, then round once."""
    total = Decimal("0")
    for value in values:
        total += to_decimal(value)
    return bankers_round(total)
