"""
Invoice Number Engine - Deterministic RCTI identifiers.

Format: ``<PREFIX>-DDMMYYYY-<NAMEPART>`` with ``-1``, ``-2``, ... appended on
collision.  The name part is the first ``name_length`` characters of the
payee name, upper-cased, with anything outside ``[A-Z0-9]`` removed, so it
may come out shorter than ``name_length`` or empty.

Collision resolution is a linear scan, so identical inputs always give the
same number.

Usage:
    from datetime import date
    from rcti_engines.invoice_number import generate_invoice_number

    generate_invoice_number([], date(2025, 1, 20), "Test Driver")
    # "RCTI-20012025-TESTDRIVER"
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from datetime import date, datetime

from rcti_engines.tracer import traced_engine

DEFAULT_INVOICE_PREFIX = "RCTI"
DEFAULT_NAME_LENGTH = 10

_NON_ALNUM = re.compile(r"[^A-Z0-9]")


def invoice_name_part(payee_name: str | None, name_length: int = DEFAULT_NAME_LENGTH) -> str:
    """Truncate, upper-case, then strip non-alphanumerics."""
    return _NON_ALNUM.sub("", (payee_name or "")[:name_length].upper())


def invoice_number_base(
    week_ending: date,
    payee_name: str | None,
    prefix: str = DEFAULT_INVOICE_PREFIX,
    name_length: int = DEFAULT_NAME_LENGTH,
) -> str:
    """The un-suffixed invoice number for a week and payee."""
    if isinstance(week_ending, datetime):
        week_ending = week_ending.date()
    return f"{prefix}-{week_ending:%d%m%Y}-{invoice_name_part(payee_name, name_length)}"


@traced_engine(
    "invoice_number", "1.0",
    fingerprint_fields=("week_ending", "payee_name"),
)
def generate_invoice_number(
    existing_numbers: Iterable[str],
    week_ending: date,
    payee_name: str | None,
    prefix: str = DEFAULT_INVOICE_PREFIX,
    name_length: int = DEFAULT_NAME_LENGTH,
) -> str:
    """First unused candidate of base, base-1, base-2, ..."""
    used = set(existing_numbers)
    base = invoice_number_base(week_ending, payee_name, prefix, name_length)
    if base not in used:
        return base

    counter = 1
    while f"{base}-{counter}" in used:
        counter += 1
    return f"{base}-{counter}"
