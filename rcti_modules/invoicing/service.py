"""
RCTI Module Service (``rcti_modules.invoicing.service``).

Responsibility
--------------
Orchestrates the invoice lifecycle: drafting an RCTI from a driver's jobs,
editing lines and GST settings while in draft, toll and fuel-levy
surcharges, lunch-break recalculation, finalisation (which schedules
recurring deductions), unfinalisation (which reverses them) and payment.
Pricing and totals are delegated to ``rcti_engines``; deductions to
``DeductionService``.

Architecture position
---------------------
**Modules layer** -- thin glue.  ``RctiService`` is the sole public entry
point for invoice operations.

Invariants enforced
-------------------
* Each public method owns the transaction boundary (``commit`` on success,
  ``rollback`` on exception) unless constructed with ``auto_commit=False``.
* Totals are always recomputed from the lines; never set directly.
* Lines and GST settings change only in ``draft``.
* ``draft -> finalised -> paid``; only ``finalised`` may return to draft.
* A job is billed on at most one invoice line.
* Finalisation and deduction scheduling commit together or not at all.

Failure modes
-------------
* ``RctiNotFoundError``, ``RctiNotDraftError``, ``RctiNotFinalisedError``,
  ``EmptyRctiError``, ``NoEligibleJobsError``, ``IneligiblePayeeError``.
* ``DuplicateInvoiceNumberError`` when the unique constraint on invoice
  numbers trips at insert.
* Unexpected exception -> session rolled back, exception re-raised.

Usage::

    service = RctiService(session, clock=clock)
    rcti = service.create_draft(driver, date(2025, 1, 19), jobs)
    rcti = service.add_toll_line(rcti.id, TollRoad.EASTLINK, 2)
    rcti, applied = service.finalise(rcti.id)
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rcti_engines.breaks import calculate_lunch_break_lines
from rcti_engines.gst import GstCalculator, GstMode, GstRegime, GstStatus
from rcti_engines.rates import resolve_job_rate
from rcti_engines.schedule import normalize_to_date
from rcti_engines.surcharges import TollRoad, fuel_levy_line, toll_line
from rcti_engines.totals import calculate_rcti_totals
from rcti_kernel.domain.clock import Clock, SystemClock
from rcti_kernel.domain.values import Numeric, to_decimal
from rcti_kernel.exceptions import (
    DuplicateInvoiceNumberError,
    EmptyRctiError,
    IneligiblePayeeError,
    InvalidLineInputError,
    NoEligibleJobsError,
    RctiNotDraftError,
    RctiNotFinalisedError,
    RctiNotFoundError,
)
from rcti_kernel.logging_config import LogContext, get_logger
from rcti_modules.invoicing.config import RctiConfig
from rcti_modules.invoicing.deductions import AmountOverrides, DeductionService
from rcti_modules.invoicing.models import (
    DeductionApplyResult,
    Driver,
    Job,
    LineKind,
    Rcti,
    RctiStatus,
)
from rcti_modules.invoicing.numbering import InvoiceNumberAllocator
from rcti_modules.invoicing.orm import RctiLineModel, RctiModel

logger = get_logger("modules.invoicing.service")


class RctiService:
    """
    Invoice lifecycle operations.

    Usage::

        service = RctiService(session, clock=clock, config=load_rcti_config(path))
        rcti = service.create_draft(driver, week_ending, jobs)
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: RctiConfig | None = None,
        auto_commit: bool = True,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or RctiConfig()
        self._auto_commit = auto_commit
        self._gst = GstCalculator(self._config.gst_rate)
        self._numbers = InvoiceNumberAllocator(session, self._config)
        self._deductions = DeductionService(
            session, clock=self._clock, config=self._config, auto_commit=False,
        )

    @property
    def deductions(self) -> DeductionService:
        """Deduction service sharing this service's transaction."""
        return self._deductions

    # =========================================================================
    # Helpers
    # =========================================================================

    def _commit(self) -> None:
        if self._auto_commit:
            self._session.commit()
        else:
            self._session.flush()

    def _rollback(self) -> None:
        if self._auto_commit:
            self._session.rollback()

    def _load(self, rcti_id: UUID, for_update: bool = False) -> RctiModel:
        stmt = select(RctiModel).where(RctiModel.id == rcti_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        model = self._session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise RctiNotFoundError(str(rcti_id))
        return model

    def _load_draft(self, rcti_id: UUID, operation: str) -> RctiModel:
        model = self._load(rcti_id, for_update=True)
        if model.status != RctiStatus.DRAFT.value:
            raise RctiNotDraftError(str(rcti_id), model.status, operation)
        return model

    @staticmethod
    def _regime(model: RctiModel) -> GstRegime:
        return GstRegime.of(model.gst_status, model.gst_mode)

    @staticmethod
    def _next_line_number(model: RctiModel) -> int:
        return max((line.line_number for line in model.lines), default=0) + 1

    def _append_line(
        self,
        model: RctiModel,
        kind: LineKind,
        description: str,
        charged_hours: Decimal,
        rate_per_hour: Decimal,
        truck_type: str = "",
        source_job_id: str | None = None,
        job_date: date | None = None,
        customer: str | None = None,
    ) -> RctiLineModel:
        amounts = self._gst.calculate_for(charged_hours, rate_per_hour, self._regime(model))
        line = RctiLineModel(
            id=uuid4(),
            line_number=self._next_line_number(model),
            kind=kind.value,
            source_job_id=source_job_id,
            job_date=job_date,
            customer=customer,
            truck_type=truck_type,
            description=description,
            charged_hours=charged_hours,
            rate_per_hour=rate_per_hour,
            amount_ex_gst=amounts.amount_ex_gst,
            gst_amount=amounts.gst_amount,
            amount_inc_gst=amounts.amount_inc_gst,
        )
        model.lines.append(line)
        return line

    def _add_break_lines(self, model: RctiModel) -> int:
        regime = self._regime(model)
        job_lines = [line for line in model.lines if line.kind == LineKind.JOB.value]
        breaks = calculate_lunch_break_lines(
            job_lines,
            model.break_hours,
            regime.status,
            regime.mode,
            threshold_hours=self._config.break_threshold_hours,
            gst_rate=self._config.gst_rate,
        )
        for brk in breaks:
            self._append_line(
                model,
                LineKind.BREAK,
                brk.description,
                brk.charged_hours,
                brk.rate_per_hour,
                truck_type=brk.truck_type,
            )
        return len(breaks)

    @staticmethod
    def _retotal(model: RctiModel) -> None:
        totals = calculate_rcti_totals(model.lines)
        model.subtotal = totals.subtotal
        model.gst = totals.gst
        model.total = totals.total

    # =========================================================================
    # Drafting
    # =========================================================================

    def create_draft(
        self,
        driver: Driver,
        week_ending: date | datetime | str,
        jobs: Iterable[Job],
        include_breaks: bool = True,
        gst_status: GstStatus | str | None = None,
        gst_mode: GstMode | str | None = None,
        notes: str | None = None,
    ) -> Rcti:
        """
        Draft an invoice from a driver's jobs for one week.

        Jobs already billed on any invoice are left out.  GST settings
        default to the driver's rate card.

        Raises:
            IneligiblePayeeError: Driver is an employee.
            InvalidLineInputError: The same job id appears twice.
            NoEligibleJobsError: Every supplied job is already billed.
            DuplicateInvoiceNumberError: Invoice number taken concurrently.
        """
        if not driver.payee_type.receives_rctis:
            raise IneligiblePayeeError(str(driver.id), driver.payee_type.value)

        target = normalize_to_date(week_ending)
        card = driver.rate_card
        regime = GstRegime.of(gst_status or card.gst_status, gst_mode or card.gst_mode)
        jobs = list(jobs)
        seen: set[str] = set()
        for job in jobs:
            if str(job.id) in seen:
                raise InvalidLineInputError("jobs", f"job {job.id} is listed more than once")
            seen.add(str(job.id))

        with LogContext.bind(driver_id=driver.id):
            try:
                job_ids = [str(job.id) for job in jobs]
                billed = set()
                if job_ids:
                    billed = set(self._session.scalars(
                        select(RctiLineModel.source_job_id)
                        .where(RctiLineModel.source_job_id.in_(job_ids))
                    ))
                eligible = sorted(
                    (job for job in jobs if str(job.id) not in billed),
                    key=lambda job: job.job_date,
                )
                if not eligible:
                    raise NoEligibleJobsError(str(driver.id), target.isoformat())

                model = RctiModel(
                    id=uuid4(),
                    driver_id=driver.id,
                    driver_name=driver.name,
                    business_name=driver.business_name,
                    week_ending=target,
                    invoice_number=self._numbers.allocate(target, driver.display_name),
                    status=RctiStatus.DRAFT.value,
                    gst_status=regime.status.value,
                    gst_mode=regime.mode.value,
                    break_hours=card.break_hours,
                    notes=notes,
                )

                for job in eligible:
                    hours = (
                        to_decimal(job.charged_hours, "charged_hours")
                        if job.charged_hours is not None else Decimal("0")
                    )
                    self._append_line(
                        model,
                        LineKind.JOB,
                        job.description,
                        hours,
                        resolve_job_rate(job.truck_type, card, job.driver_charge),
                        truck_type=job.truck_type,
                        source_job_id=str(job.id),
                        job_date=job.job_date,
                        customer=job.customer,
                    )

                break_count = self._add_break_lines(model) if include_breaks else 0
                self._retotal(model)
                self._session.add(model)

                try:
                    self._session.flush()
                except IntegrityError as e:
                    if "invoice_number" in str(e.orig):
                        raise DuplicateInvoiceNumberError(model.invoice_number) from e
                    raise

                dto = model.to_dto()
                self._commit()
            except Exception:
                self._rollback()
                raise

            logger.info("rcti_draft_created", extra={
                "rcti_id": str(dto.id),
                "invoice_number": dto.invoice_number,
                "week_ending": target.isoformat(),
                "job_line_count": len(eligible),
                "break_line_count": break_count,
                "excluded_job_count": len(jobs) - len(eligible),
                "total": str(dto.total),
            })
            return dto

    def add_manual_line(
        self,
        rcti_id: UUID,
        description: str,
        charged_hours: Numeric,
        rate_per_hour: Numeric,
        truck_type: str = "",
    ) -> Rcti:
        """
        Add a line with no source job.

        Manual lines never attract lunch breaks.

        Raises:
            RctiNotDraftError: Invoice is not a draft.
            InvalidLineInputError: Empty description or negative rate.
        """
        if not description or not description.strip():
            raise InvalidLineInputError("description", "is required")
        hours = to_decimal(charged_hours, "charged_hours")
        rate = to_decimal(rate_per_hour, "rate_per_hour")

        with LogContext.bind(rcti_id=rcti_id):
            try:
                model = self._load_draft(rcti_id, "add a line to")
                line = self._append_line(
                    model, LineKind.MANUAL, description.strip(), hours, rate,
                    truck_type=truck_type,
                )
                self._retotal(model)
                dto = model.to_dto()
                self._commit()
            except Exception:
                self._rollback()
                raise

            logger.info("rcti_line_added", extra={
                "line_kind": LineKind.MANUAL.value,
                "line_number": line.line_number,
                "amount_inc_gst": str(line.amount_inc_gst),
                "total": str(dto.total),
            })
            return dto

    def remove_line(self, rcti_id: UUID, line_id: UUID) -> Rcti:
        """
        Remove one line from a draft.  A removed job line frees the job to
        be billed again.
        """
        with LogContext.bind(rcti_id=rcti_id):
            try:
                model = self._load_draft(rcti_id, "remove a line from")
                line = next((ln for ln in model.lines if ln.id == line_id), None)
                if line is None:
                    raise InvalidLineInputError(
                        "line_id", f"line {line_id} is not on RCTI {rcti_id}"
                    )
                line_kind = line.kind
                model.lines.remove(line)
                self._retotal(model)
                dto = model.to_dto()
                self._commit()
            except Exception:
                self._rollback()
                raise

            logger.info("rcti_line_removed", extra={
                "line_id": str(line_id),
                "line_kind": line_kind,
                "total": str(dto.total),
            })
            return dto

    def update_gst_settings(
        self,
        rcti_id: UUID,
        gst_status: GstStatus | str,
        gst_mode: GstMode | str | None = None,
    ) -> Rcti:
        """Change a draft's GST regime and reprice every line."""
        regime = GstRegime.of(gst_status, gst_mode)

        with LogContext.bind(rcti_id=rcti_id):
            try:
                model = self._load_draft(rcti_id, "change GST settings of")
                model.gst_status = regime.status.value
                model.gst_mode = regime.mode.value
                for line in model.lines:
                    amounts = self._gst.calculate_for(
                        line.charged_hours, line.rate_per_hour, regime,
                    )
                    line.amount_ex_gst = amounts.amount_ex_gst
                    line.gst_amount = amounts.gst_amount
                    line.amount_inc_gst = amounts.amount_inc_gst
                self._retotal(model)
                dto = model.to_dto()
                self._commit()
            except Exception:
                self._rollback()
                raise

            logger.info("rcti_gst_settings_updated", extra={
                "gst_status": regime.status.value,
                "gst_mode": regime.mode.value,
                "total": str(dto.total),
            })
            return dto

    def recalculate_break_lines(
        self,
        rcti_id: UUID,
        break_hours: Numeric | None = None,
    ) -> Rcti:
        """
        Replace a draft's lunch-break lines with freshly derived ones.

        ``break_hours`` replaces the invoice's break policy when given.
        """
        with LogContext.bind(rcti_id=rcti_id):
            try:
                model = self._load_draft(rcti_id, "recalculate breaks of")
                if break_hours is not None:
                    model.break_hours = to_decimal(break_hours, "break_hours")

                stale = [ln for ln in model.lines if ln.kind == LineKind.BREAK.value]
                for line in stale:
                    model.lines.remove(line)
                self._session.flush()

                added = self._add_break_lines(model)
                self._retotal(model)
                dto = model.to_dto()
                self._commit()
            except Exception:
                self._rollback()
                raise

            logger.info("rcti_break_lines_recalculated", extra={
                "removed_count": len(stale),
                "added_count": added,
                "total": str(dto.total),
            })
            return dto

    def add_toll_line(self, rcti_id: UUID, road: TollRoad | str, count: int) -> Rcti:
        """Add a toll line for ``count`` passages; zero passages is a no-op."""
        with LogContext.bind(rcti_id=rcti_id):
            try:
                model = self._load_draft(rcti_id, "add tolls to")
                priced = toll_line(
                    road, count, self._regime(model),
                    toll_rates=self._config.toll_rates,
                    gst_rate=self._config.gst_rate,
                )
                if priced is not None:
                    self._append_line(
                        model, LineKind.TOLL, priced.description,
                        priced.charged_hours, priced.rate_per_hour,
                    )
                    self._retotal(model)
                dto = model.to_dto()
                self._commit()
            except Exception:
                self._rollback()
                raise
            return dto

    def add_fuel_levy_line(self, rcti_id: UUID, percentage: Numeric | None) -> Rcti:
        """
        Levy a percentage of the job-line subtotal.

        An invoice carries one fuel levy: any existing levy line is
        replaced.  A zero or absent percentage just removes it.
        """
        with LogContext.bind(rcti_id=rcti_id):
            try:
                model = self._load_draft(rcti_id, "add a fuel levy to")
                job_subtotal = sum(
                    (ln.amount_ex_gst for ln in model.lines if ln.kind == LineKind.JOB.value),
                    Decimal("0"),
                )
                priced = fuel_levy_line(
                    job_subtotal, percentage, self._regime(model),
                    gst_rate=self._config.gst_rate,
                )

                for line in [ln for ln in model.lines if ln.kind == LineKind.FUEL_LEVY.value]:
                    model.lines.remove(line)
                self._session.flush()

                if priced is not None:
                    self._append_line(
                        model, LineKind.FUEL_LEVY, priced.description,
                        priced.charged_hours, priced.rate_per_hour,
                    )
                self._retotal(model)
                dto = model.to_dto()
                self._commit()
            except Exception:
                self._rollback()
                raise
            return dto

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def finalise(
        self,
        rcti_id: UUID,
        amount_overrides: AmountOverrides | None = None,
    ) -> tuple[Rcti, DeductionApplyResult]:
        """
        Lock a draft and charge due recurring deductions against it.

        Args:
            rcti_id: Draft invoice.
            amount_overrides: Per-deduction amounts; ``None`` values skip.

        Returns:
            Tuple of (Rcti, DeductionApplyResult).

        Raises:
            RctiNotDraftError: Not a draft.
            EmptyRctiError: No lines.
            InvalidOverrideError: Negative override; nothing is changed.
        """
        with LogContext.bind(rcti_id=rcti_id):
            try:
                model = self._load_draft(rcti_id, "finalise")
                if not model.lines:
                    raise EmptyRctiError(str(rcti_id))

                model.status = RctiStatus.FINALISED.value
                model.finalised_at = self._clock.now()
                self._session.flush()

                applied = self._deductions.apply_deductions_to_rcti(
                    rcti_id, model.driver_id, model.week_ending, amount_overrides,
                )
                dto = model.to_dto()
                self._commit()
            except Exception:
                self._rollback()
                raise

            logger.info("rcti_finalised", extra={
                "invoice_number": dto.invoice_number,
                "total": str(dto.total),
                "deductions_applied": applied.applied_count,
                "net_adjustment": str(applied.net_adjustment),
            })
            return dto, applied

    def unfinalise(self, rcti_id: UUID) -> Rcti:
        """
        Return a finalised invoice to draft, reversing its deductions.

        Raises:
            RctiNotFinalisedError: Draft or paid.
        """
        with LogContext.bind(rcti_id=rcti_id):
            try:
                model = self._load(rcti_id, for_update=True)
                if model.status != RctiStatus.FINALISED.value:
                    raise RctiNotFinalisedError(str(rcti_id), model.status, "unfinalise")

                reversed_count = self._deductions.remove_deductions_from_rcti(rcti_id)
                model.status = RctiStatus.DRAFT.value
                model.finalised_at = None
                dto = model.to_dto()
                self._commit()
            except Exception:
                self._rollback()
                raise

            logger.info("rcti_unfinalised", extra={
                "invoice_number": dto.invoice_number,
                "applications_reversed": reversed_count,
            })
            return dto

    def mark_paid(self, rcti_id: UUID) -> Rcti:
        """
        Record payment of a finalised invoice.  Paid is terminal.

        Raises:
            RctiNotFinalisedError: Not finalised.
        """
        with LogContext.bind(rcti_id=rcti_id):
            try:
                model = self._load(rcti_id, for_update=True)
                if model.status != RctiStatus.FINALISED.value:
                    raise RctiNotFinalisedError(str(rcti_id), model.status, "mark paid")
                model.status = RctiStatus.PAID.value
                model.paid_at = self._clock.now()
                dto = model.to_dto()
                self._commit()
            except Exception:
                self._rollback()
                raise

            logger.info("rcti_paid", extra={
                "invoice_number": dto.invoice_number,
                "total": str(dto.total),
            })
            return dto

    def get_rcti(self, rcti_id: UUID) -> Rcti:
        return self._load(rcti_id).to_dto()

    def list_rctis(
        self,
        driver_id: UUID | None = None,
        status: RctiStatus | None = None,
    ) -> list[Rcti]:
        """Invoices, newest week first."""
        stmt = select(RctiModel)
        if driver_id is not None:
            stmt = stmt.where(RctiModel.driver_id == driver_id)
        if status is not None:
            stmt = stmt.where(RctiModel.status == status.value)
        stmt = stmt.order_by(RctiModel.week_ending.desc(), RctiModel.invoice_number)
        return [m.to_dto() for m in self._session.scalars(stmt)]
