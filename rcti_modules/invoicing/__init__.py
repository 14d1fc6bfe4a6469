"""
Invoicing Module (``rcti_modules.invoicing``).

Responsibility
--------------
Recipient-created tax invoices for contract drivers: drafting from weekly
jobs, GST-aware line pricing, lunch-break, toll and fuel-levy lines,
invoice numbering, the draft -> finalised -> paid lifecycle, and recurring
deductions charged once per billing period.

Architecture position
---------------------
**Modules layer** -- ``RctiService`` and ``DeductionService`` are the public
entry points.  Calculations come from ``rcti_engines``; persistence from the
ORM models in ``orm.py`` on the kernel declarative base.
"""

from rcti_modules.invoicing.config import RctiConfig, load_rcti_config
from rcti_modules.invoicing.deductions import DeductionService
from rcti_modules.invoicing.models import (
    DeductionApplication,
    DeductionApplyResult,
    DeductionStatus,
    DeductionSummary,
    DeductionType,
    Driver,
    Frequency,
    InvoiceLine,
    Job,
    LineKind,
    PayeeType,
    PendingDeduction,
    Rcti,
    RctiStatus,
    RecurringDeduction,
)
from rcti_modules.invoicing.numbering import InvoiceNumberAllocator
from rcti_modules.invoicing.service import RctiService

__all__ = [
    "DeductionApplication",
    "DeductionApplyResult",
    "DeductionService",
    "DeductionStatus",
    "DeductionSummary",
    "DeductionType",
    "Driver",
    "Frequency",
    "InvoiceLine",
    "InvoiceNumberAllocator",
    "Job",
    "LineKind",
    "PayeeType",
    "PendingDeduction",
    "Rcti",
    "RctiConfig",
    "RctiService",
    "RctiStatus",
    "RecurringDeduction",
    "load_rcti_config",
]
