"""
RCTI Domain Models (``rcti_modules.invoicing.models``).

Responsibility
--------------
Frozen dataclass value objects for the nouns of recipient-created tax
invoicing: payees and their jobs, invoices and their lines, recurring
deductions and the applications that charge them against invoices.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.  Returned by
``RctiService`` and ``DeductionService``; persisted through the companions
in ``rcti_modules.invoicing.orm``.

Invariants enforced
-------------------
* All models are ``frozen=True`` (immutable after construction).
* All monetary fields use ``Decimal`` -- NEVER ``float``.
* ``amount_remaining == total_amount - amount_paid`` on every deduction.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from rcti_engines.gst import GstMode, GstRegime, GstStatus
from rcti_engines.rates import DriverRateCard
from rcti_engines.schedule import DeductionType, Frequency
from rcti_kernel.domain.values import ZERO, bankers_round

__all__ = [
    "DeductionApplication",
    "DeductionApplyResult",
    "DeductionStatus",
    "DeductionSummary",
    "DeductionType",
    "Driver",
    "Frequency",
    "GstMode",
    "GstStatus",
    "InvoiceLine",
    "Job",
    "LineKind",
    "PayeeType",
    "PendingDeduction",
    "Rcti",
    "RctiStatus",
    "RecurringDeduction",
]


class RctiStatus(str, Enum):
    """Invoice lifecycle: draft -> finalised -> paid."""

    DRAFT = "draft"
    FINALISED = "finalised"
    PAID = "paid"


class DeductionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class PayeeType(str, Enum):
    """Only contractors and subcontractors receive RCTIs."""

    CONTRACTOR = "contractor"
    SUBCONTRACTOR = "subcontractor"
    EMPLOYEE = "employee"

    @property
    def receives_rctis(self) -> bool:
        return self is not PayeeType.EMPLOYEE


class LineKind(str, Enum):
    """Where an invoice line came from."""

    JOB = "job"
    MANUAL = "manual"
    BREAK = "break"
    TOLL = "toll"
    FUEL_LEVY = "fuel_levy"


@dataclass(frozen=True)
class Driver:
    """A payee: the driver, their business, and their rate card."""

    id: UUID
    name: str
    payee_type: PayeeType = PayeeType.CONTRACTOR
    business_name: str | None = None
    abn: str | None = None
    address: str | None = None
    rate_card: DriverRateCard = field(default_factory=DriverRateCard)

    @property
    def display_name(self) -> str:
        return self.business_name or self.name


@dataclass(frozen=True)
class Job:
    """A completed job supplied by the host application."""

    id: str
    job_date: date
    truck_type: str
    charged_hours: Decimal | None = None
    driver_charge: Decimal | None = None
    customer: str | None = None
    pickup: str | None = None
    dropoff: str | None = None
    job_reference: str | None = None

    @property
    def description(self) -> str:
        if self.dropoff:
            return f"{self.pickup or ''} → {self.dropoff}"
        return self.job_reference or self.pickup or ""


@dataclass(frozen=True)
class InvoiceLine:
    """One priced line of an invoice."""

    id: UUID
    rcti_id: UUID
    line_number: int
    kind: LineKind
    description: str
    truck_type: str
    charged_hours: Decimal
    rate_per_hour: Decimal
    amount_ex_gst: Decimal
    gst_amount: Decimal
    amount_inc_gst: Decimal
    source_job_id: str | None = None
    job_date: date | None = None
    customer: str | None = None


@dataclass(frozen=True)
class Rcti:
    """A recipient-created tax invoice with its ordered lines."""

    id: UUID
    driver_id: UUID
    driver_name: str
    week_ending: date
    invoice_number: str
    status: RctiStatus
    gst_status: GstStatus
    gst_mode: GstMode
    subtotal: Decimal = ZERO
    gst: Decimal = ZERO
    total: Decimal = ZERO
    lines: tuple[InvoiceLine, ...] = ()
    business_name: str | None = None
    break_hours: Decimal | None = None
    notes: str | None = None
    finalised_at: datetime | None = None
    paid_at: datetime | None = None

    @property
    def regime(self) -> GstRegime:
        return GstRegime(status=self.gst_status, mode=self.gst_mode)

    @property
    def is_draft(self) -> bool:
        return self.status == RctiStatus.DRAFT


@dataclass(frozen=True)
class RecurringDeduction:
    """A deduction or reimbursement charged against a driver's invoices."""

    id: UUID
    driver_id: UUID
    type: DeductionType
    description: str
    total_amount: Decimal
    amount_paid: Decimal
    amount_remaining: Decimal
    frequency: Frequency
    start_date: date
    status: DeductionStatus = DeductionStatus.ACTIVE
    amount_per_cycle: Decimal | None = None
    completed_at: datetime | None = None
    notes: str | None = None

    def __post_init__(self):
        if bankers_round(self.total_amount - self.amount_paid) != bankers_round(
            self.amount_remaining
        ):
            raise ValueError(
                f"amount_remaining {self.amount_remaining} does not equal "
                f"total_amount {self.total_amount} - amount_paid {self.amount_paid}"
            )


@dataclass(frozen=True)
class DeductionApplication:
    """
    One charge (or explicit zero-amount skip) of a deduction on an invoice.

    At most one exists per (deduction, invoice) pair.
    """

    id: UUID
    deduction_id: UUID
    rcti_id: UUID
    amount: Decimal
    applied_at: datetime
    deduction_type: DeductionType
    description: str = ""

    @property
    def is_skip(self) -> bool:
        return self.amount == 0


@dataclass(frozen=True)
class DeductionApplyResult:
    """Everything one scheduling run recorded against an invoice."""

    applications: tuple[DeductionApplication, ...] = ()
    applied_count: int = 0
    total_deduction_amount: Decimal = ZERO
    total_reimbursement_amount: Decimal = ZERO

    @property
    def net_adjustment(self) -> Decimal:
        """Reimbursements minus deductions."""
        return bankers_round(self.total_reimbursement_amount - self.total_deduction_amount)


@dataclass(frozen=True)
class PendingDeduction:
    """Preview of what finalising an invoice would charge for one deduction."""

    deduction_id: UUID
    type: DeductionType
    description: str
    frequency: Frequency
    amount: Decimal
    amount_remaining: Decimal


@dataclass(frozen=True)
class DeductionSummary:
    """Applications recorded on one invoice, in applied order."""

    rcti_id: UUID
    applications: tuple[DeductionApplication, ...] = ()
    total_deductions: Decimal = ZERO
    total_reimbursements: Decimal = ZERO

    @property
    def net_adjustment(self) -> Decimal:
        return bankers_round(self.total_reimbursements - self.total_deductions)
