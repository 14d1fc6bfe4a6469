"""
RCTI ORM Persistence Models (``rcti_modules.invoicing.orm``).

Responsibility:
    SQLAlchemy ORM models that persist the frozen DTOs in
    ``rcti_modules.invoicing.models``.  Each ORM class mirrors a DTO and
    provides ``to_dto()`` and, where rows are created from DTOs,
    ``from_dto()``.

Architecture position:
    **Modules layer** -- persistence companions to the pure DTO models.
    Inherits from ``TrackedBase`` (kernel DB base): id (UUID PK),
    created_at, updated_at.

Invariants enforced:
    - Money columns are Numeric(14, 2); hours and rates keep their entered
      precision.  NEVER float.
    - Enum fields stored as String(50) containing the enum .value string.
    - ``invoice_number`` is unique (uq_rcti_invoice_number), the backstop
      behind the invoice number allocator.
    - A job is billed on at most one line (uq_rcti_line_source_job).
    - At most one application per (deduction, invoice) pair
      (uq_rcti_deduction_application).
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rcti_engines.gst import GstMode, GstStatus
from rcti_engines.schedule import DeductionType, Frequency
from rcti_kernel.db.base import TrackedBase
from rcti_kernel.db.types import Hours, LongText, Money, Rate, ShortCode
from rcti_modules.invoicing.models import (
    DeductionApplication,
    DeductionStatus,
    InvoiceLine,
    LineKind,
    Rcti,
    RctiStatus,
    RecurringDeduction,
)

# ---------------------------------------------------------------------------
# RctiModel
# ---------------------------------------------------------------------------


class RctiModel(TrackedBase):
    """
    ORM model for ``Rcti`` -- one invoice for one driver and week.

    Guarantees:
        - ``invoice_number`` is unique.
        - ``lines`` load in ``line_number`` order and are deleted with the
          invoice.
        - The payee's GST regime and break policy are snapshotted at draft
          creation so later rate-card edits never reprice the invoice.
    """

    __tablename__ = "rctis"

    driver_id: Mapped[UUID] = mapped_column(nullable=False)
    driver_name: Mapped[str] = mapped_column(String(200), nullable=False)
    business_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    week_ending: Mapped[date] = mapped_column(nullable=False)
    invoice_number: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[ShortCode] = mapped_column(nullable=False)
    gst_status: Mapped[ShortCode] = mapped_column(nullable=False)
    gst_mode: Mapped[ShortCode] = mapped_column(nullable=False)
    break_hours: Mapped[Decimal | None] = mapped_column(
        Numeric(18, 6, asdecimal=True), nullable=True,
    )
    subtotal: Mapped[Money] = mapped_column(nullable=False, default=Decimal("0"))
    gst: Mapped[Money] = mapped_column(nullable=False, default=Decimal("0"))
    total: Mapped[Money] = mapped_column(nullable=False, default=Decimal("0"))
    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    finalised_at: Mapped[datetime | None] = mapped_column(nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)

    lines: Mapped[list["RctiLineModel"]] = relationship(
        back_populates="rcti",
        cascade="all, delete-orphan",
        order_by="RctiLineModel.line_number",
    )
    applications: Mapped[list["RctiDeductionApplicationModel"]] = relationship(
        back_populates="rcti",
    )

    __table_args__ = (
        UniqueConstraint("invoice_number", name="uq_rcti_invoice_number"),
        Index("idx_rcti_driver_week", "driver_id", "week_ending"),
        Index("idx_rcti_status", "status"),
    )

    def to_dto(self) -> Rcti:
        return Rcti(
            id=self.id,
            driver_id=self.driver_id,
            driver_name=self.driver_name,
            business_name=self.business_name,
            week_ending=self.week_ending,
            invoice_number=self.invoice_number,
            status=RctiStatus(self.status),
            gst_status=GstStatus(self.gst_status),
            gst_mode=GstMode(self.gst_mode),
            break_hours=self.break_hours,
            subtotal=self.subtotal,
            gst=self.gst,
            total=self.total,
            lines=tuple(line.to_dto() for line in self.lines),
            notes=self.notes,
            finalised_at=self.finalised_at,
            paid_at=self.paid_at,
        )

    def __repr__(self) -> str:
        return f"<RctiModel {self.invoice_number} ({self.status}) total={self.total}>"


# ---------------------------------------------------------------------------
# RctiLineModel
# ---------------------------------------------------------------------------


class RctiLineModel(TrackedBase):
    """
    ORM model for ``InvoiceLine``.

    ``source_job_id`` is set only for job lines; manual and synthetic lines
    leave it NULL, which the unique constraint permits any number of times.
    """

    __tablename__ = "rcti_lines"

    rcti_id: Mapped[UUID] = mapped_column(ForeignKey("rctis.id"), nullable=False)
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    kind: Mapped[ShortCode] = mapped_column(nullable=False)
    source_job_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    job_date: Mapped[date | None] = mapped_column(nullable=True)
    customer: Mapped[str | None] = mapped_column(String(200), nullable=True)
    truck_type: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    description: Mapped[LongText] = mapped_column(nullable=False)
    charged_hours: Mapped[Hours] = mapped_column(nullable=False)
    rate_per_hour: Mapped[Rate] = mapped_column(nullable=False)
    amount_ex_gst: Mapped[Money] = mapped_column(nullable=False)
    gst_amount: Mapped[Money] = mapped_column(nullable=False)
    amount_inc_gst: Mapped[Money] = mapped_column(nullable=False)

    rcti: Mapped["RctiModel"] = relationship(back_populates="lines")

    __table_args__ = (
        UniqueConstraint("rcti_id", "line_number", name="uq_rcti_line_number"),
        UniqueConstraint("source_job_id", name="uq_rcti_line_source_job"),
        Index("idx_rcti_line_rcti", "rcti_id"),
    )

    def to_dto(self) -> InvoiceLine:
        return InvoiceLine(
            id=self.id,
            rcti_id=self.rcti_id,
            line_number=self.line_number,
            kind=LineKind(self.kind),
            description=self.description,
            truck_type=self.truck_type,
            charged_hours=self.charged_hours,
            rate_per_hour=self.rate_per_hour,
            amount_ex_gst=self.amount_ex_gst,
            gst_amount=self.gst_amount,
            amount_inc_gst=self.amount_inc_gst,
            source_job_id=self.source_job_id,
            job_date=self.job_date,
            customer=self.customer,
        )

    def __repr__(self) -> str:
        return (
            f"<RctiLineModel #{self.line_number} {self.kind}: "
            f"{self.description} {self.amount_inc_gst}>"
        )


# ---------------------------------------------------------------------------
# RctiDeductionModel
# ---------------------------------------------------------------------------


class RctiDeductionModel(TrackedBase):
    """
    ORM model for ``RecurringDeduction``.

    Guarantees:
        - ``amount_remaining`` is only ever changed by a guarded UPDATE that
          names the previously read value, so concurrent schedulers cannot
          both decrement the same balance.
        - ``status`` moves to completed when the balance reaches zero.
    """

    __tablename__ = "rcti_deductions"

    driver_id: Mapped[UUID] = mapped_column(nullable=False)
    type: Mapped[ShortCode] = mapped_column(nullable=False)
    description: Mapped[LongText] = mapped_column(nullable=False)
    total_amount: Mapped[Money] = mapped_column(nullable=False)
    amount_paid: Mapped[Money] = mapped_column(nullable=False, default=Decimal("0"))
    amount_remaining: Mapped[Money] = mapped_column(nullable=False)
    frequency: Mapped[ShortCode] = mapped_column(nullable=False)
    amount_per_cycle: Mapped[Decimal | None] = mapped_column(
        Numeric(14, 2, asdecimal=True), nullable=True,
    )
    start_date: Mapped[date] = mapped_column(nullable=False)
    status: Mapped[ShortCode] = mapped_column(nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    applications: Mapped[list["RctiDeductionApplicationModel"]] = relationship(
        back_populates="deduction",
        cascade="all, delete-orphan",
        order_by="RctiDeductionApplicationModel.applied_at",
    )

    __table_args__ = (
        Index("idx_rcti_deduction_driver_status", "driver_id", "status"),
    )

    def to_dto(self) -> RecurringDeduction:
        return RecurringDeduction(
            id=self.id,
            driver_id=self.driver_id,
            type=DeductionType(self.type),
            description=self.description,
            total_amount=self.total_amount,
            amount_paid=self.amount_paid,
            amount_remaining=self.amount_remaining,
            frequency=Frequency(self.frequency),
            amount_per_cycle=self.amount_per_cycle,
            start_date=self.start_date,
            status=DeductionStatus(self.status),
            completed_at=self.completed_at,
            notes=self.notes,
        )

    @classmethod
    def from_dto(cls, dto: RecurringDeduction) -> "RctiDeductionModel":
        return cls(
            id=dto.id,
            driver_id=dto.driver_id,
            type=dto.type.value,
            description=dto.description,
            total_amount=dto.total_amount,
            amount_paid=dto.amount_paid,
            amount_remaining=dto.amount_remaining,
            frequency=dto.frequency.value,
            amount_per_cycle=dto.amount_per_cycle,
            start_date=dto.start_date,
            status=dto.status.value,
            completed_at=dto.completed_at,
            notes=dto.notes,
        )

    def __repr__(self) -> str:
        return (
            f"<RctiDeductionModel {self.type} {self.frequency} "
            f"remaining={self.amount_remaining} ({self.status})>"
        )


# ---------------------------------------------------------------------------
# RctiDeductionApplicationModel
# ---------------------------------------------------------------------------


class RctiDeductionApplicationModel(TrackedBase):
    """
    ORM model for ``DeductionApplication``.

    Its existence for an invoice's week ending is what stops a deduction
    being charged twice for the same period.  ``amount`` is zero for a
    skipped cycle.
    """

    __tablename__ = "rcti_deduction_applications"

    deduction_id: Mapped[UUID] = mapped_column(
        ForeignKey("rcti_deductions.id"), nullable=False,
    )
    rcti_id: Mapped[UUID] = mapped_column(ForeignKey("rctis.id"), nullable=False)
    amount: Mapped[Money] = mapped_column(nullable=False)
    applied_at: Mapped[datetime] = mapped_column(nullable=False)

    deduction: Mapped["RctiDeductionModel"] = relationship(back_populates="applications")
    rcti: Mapped["RctiModel"] = relationship(back_populates="applications")

    __table_args__ = (
        UniqueConstraint("deduction_id", "rcti_id", name="uq_rcti_deduction_application"),
        Index("idx_rcti_deduction_application_rcti", "rcti_id"),
    )

    def to_dto(self) -> DeductionApplication:
        return DeductionApplication(
            id=self.id,
            deduction_id=self.deduction_id,
            rcti_id=self.rcti_id,
            amount=self.amount,
            applied_at=self.applied_at,
            deduction_type=DeductionType(self.deduction.type),
            description=self.deduction.description,
        )

    def __repr__(self) -> str:
        return (
            f"<RctiDeductionApplicationModel deduction={self.deduction_id} "
            f"rcti={self.rcti_id} amount={self.amount}>"
        )
