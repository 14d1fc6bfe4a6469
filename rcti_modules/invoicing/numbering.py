"""
InvoiceNumberAllocator -- persistence-backed invoice number assignment.

Responsibility:
    Pick the next free invoice number for a (week ending, payee) pair by
    reading only the numbers that share its base prefix and handing them to
    the pure generator in ``rcti_engines.invoice_number``.

Architecture position:
    Modules layer.  Reads through the caller's session; never commits.

Invariants enforced:
    - Reads are scoped to the base prefix, never the whole invoice table.
    - ``rctis.invoice_number`` carries a unique constraint; two concurrent
      allocators that pick the same number cannot both insert, and the
      loser surfaces as ``DuplicateInvoiceNumberError`` from the service.
"""

from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from rcti_engines.invoice_number import generate_invoice_number, invoice_number_base
from rcti_kernel.logging_config import get_logger
from rcti_modules.invoicing.config import RctiConfig
from rcti_modules.invoicing.orm import RctiModel

logger = get_logger("modules.invoicing.numbering")


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class InvoiceNumberAllocator:
    """Allocates unique invoice numbers against the ``rctis`` table."""

    def __init__(self, session: Session, config: RctiConfig | None = None):
        self._session = session
        self._config = config or RctiConfig()

    def existing_numbers(self, base: str) -> list[str]:
        """The base itself plus every ``base-<n>`` already stored."""
        stmt = select(RctiModel.invoice_number).where(
            (RctiModel.invoice_number == base)
            | RctiModel.invoice_number.like(f"{_escape_like(base)}-%", escape="\\")
        )
        return list(self._session.scalars(stmt))

    def allocate(self, week_ending: date, payee_name: str | None) -> str:
        base = invoice_number_base(
            week_ending,
            payee_name,
            prefix=self._config.invoice_prefix,
            name_length=self._config.invoice_name_length,
        )
        existing = self.existing_numbers(base)
        number = generate_invoice_number(
            existing,
            week_ending,
            payee_name,
            prefix=self._config.invoice_prefix,
            name_length=self._config.invoice_name_length,
        )
        logger.info(
            "invoice_number_allocated",
            extra={
                "invoice_number": number,
                "collisions": len(existing),
            },
        )
        return number
