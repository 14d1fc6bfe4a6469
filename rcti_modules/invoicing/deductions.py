"""
Recurring Deduction Service (``rcti_modules.invoicing.deductions``).

Responsibility
--------------
Manages recurring deductions and reimbursements for RCTI payees and
schedules them onto invoices: create/update/delete, a read-only preview of
what the next invoice would charge, applying due cycles when an invoice is
finalised, per-invoice summaries, and reversal when an invoice is
unfinalised.  Due-ness and charge rules live in ``rcti_engines.schedule``.

Architecture position
---------------------
**Modules layer**.  ``DeductionService`` owns persistence, row locking and
the transaction boundary; the pure schedule engine owns every decision.
``RctiService`` calls it with ``auto_commit=False`` so deductions commit
or roll back together with finalisation.

Invariants enforced
-------------------
* At most one application per (deduction, invoice week ending); reapplying
  the same week never charges twice.
* ``amount_remaining == total_amount - amount_paid`` after every change.
* Balance decrements are guarded UPDATEs naming the previously read
  ``amount_remaining`` and ``status = active``; a guard miss skips the
  deduction for this invoice and logs ``deduction_balance_conflict``.
* Every application of one ``apply_deductions_to_rcti`` call is written
  inside one savepoint: all or none.
* Deductions are read ``FOR UPDATE`` in (start_date, id) order so
  concurrent finalisations for one driver serialise on the same rows.

Failure modes
-------------
* ``InvalidDeductionError`` / ``IneligiblePayeeError`` on create/update.
* ``DeductionNotFoundError``, ``DeductionCompletedError``,
  ``DeductionAlreadyAppliedError`` on update/delete.
* ``InvalidOverrideError`` for a negative amount override; the whole batch
  is rolled back.
* SQLAlchemy errors propagate after rollback; nothing is retried.

Usage::

    service = DeductionService(session, clock=clock)
    deduction = service.create_deduction(
        driver=driver,
        type=DeductionType.DEDUCTION,
        description="Truck rental",
        total_amount=Decimal("2000"),
        frequency=Frequency.WEEKLY,
        amount_per_cycle=Decimal("150"),
    )
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from rcti_engines.schedule import (
    AppliedCycle,
    DeductionType,
    Frequency,
    compute_charge,
    evaluate_due,
    normalize_to_date,
    parse_deduction_type,
    parse_frequency,
)
from rcti_kernel.domain.clock import Clock, SystemClock
from rcti_kernel.domain.values import ZERO, Numeric, bankers_round, to_decimal
from rcti_kernel.exceptions import (
    DeductionAlreadyAppliedError,
    DeductionCompletedError,
    DeductionNotFoundError,
    IneligiblePayeeError,
    InvalidDeductionError,
    RctiNotFoundError,
)
from rcti_kernel.logging_config import LogContext, get_logger
from rcti_modules.invoicing.config import RctiConfig
from rcti_modules.invoicing.models import (
    DeductionApplication,
    DeductionApplyResult,
    DeductionStatus,
    DeductionSummary,
    Driver,
    PendingDeduction,
    RecurringDeduction,
)
from rcti_modules.invoicing.orm import (
    RctiDeductionApplicationModel,
    RctiDeductionModel,
    RctiModel,
)

logger = get_logger("modules.invoicing.deductions")

AmountOverrides = Mapping[Any, Numeric | None]


def _positive_money(value: Numeric, field: str) -> Decimal:
    amount = bankers_round(to_decimal(value, field))
    if amount <= 0:
        raise InvalidDeductionError(field, f"must be greater than 0 (got {amount})")
    return amount


class DeductionService:
    """
    Recurring deduction management and scheduling.

    Each public method owns its transaction boundary unless constructed
    with ``auto_commit=False``.
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

    def _commit(self) -> None:
        if self._auto_commit:
            self._session.commit()
        else:
            self._session.flush()

    def _rollback(self) -> None:
        if self._auto_commit:
            self._session.rollback()

    def _load(self, deduction_id: UUID, for_update: bool = False) -> RctiDeductionModel:
        stmt = select(RctiDeductionModel).where(RctiDeductionModel.id == deduction_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        model = self._session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise DeductionNotFoundError(str(deduction_id))
        return model

    # =========================================================================
    # Management
    # =========================================================================

    def create_deduction(
        self,
        driver: Driver,
        type: DeductionType | str,
        description: str,
        total_amount: Numeric,
        frequency: Frequency | str,
        amount_per_cycle: Numeric | None = None,
        start_date: date | datetime | str | None = None,
        notes: str | None = None,
    ) -> RecurringDeduction:
        """
        Create an active deduction or reimbursement for a driver.

        For ``once`` the per-cycle amount is the total.  Start date defaults
        to today (UTC).

        Raises:
            IneligiblePayeeError: Driver is an employee.
            InvalidDeductionError: Bad type, frequency or amounts.
        """
        if not driver.payee_type.receives_rctis:
            raise IneligiblePayeeError(str(driver.id), driver.payee_type.value)

        deduction_type = parse_deduction_type(type)
        freq = parse_frequency(frequency)
        if not description or not description.strip():
            raise InvalidDeductionError("description", "is required")
        total = _positive_money(total_amount, "total_amount")

        if freq == Frequency.ONCE:
            per_cycle = total
        else:
            if amount_per_cycle is None:
                raise InvalidDeductionError(
                    "amount_per_cycle", f"is required for {freq.value} deductions"
                )
            per_cycle = _positive_money(amount_per_cycle, "amount_per_cycle")

        start = normalize_to_date(start_date) if start_date is not None else self._clock.today()

        dto = RecurringDeduction(
            id=uuid4(),
            driver_id=driver.id,
            type=deduction_type,
            description=description.strip(),
            total_amount=total,
            amount_paid=ZERO,
            amount_remaining=total,
            frequency=freq,
            amount_per_cycle=per_cycle,
            start_date=start,
            status=DeductionStatus.ACTIVE,
            notes=notes,
        )

        try:
            self._session.add(RctiDeductionModel.from_dto(dto))
            self._commit()
        except Exception:
            self._rollback()
            raise

        logger.info("deduction_created", extra={
            "deduction_id": str(dto.id),
            "driver_id": str(driver.id),
            "deduction_type": deduction_type.value,
            "frequency": freq.value,
            "total_amount": str(total),
            "amount_per_cycle": str(per_cycle),
            "start_date": start.isoformat(),
        })
        return dto

    def get_deduction(self, deduction_id: UUID) -> RecurringDeduction:
        return self._load(deduction_id).to_dto()

    def list_deductions(
        self,
        driver_id: UUID,
        status: DeductionStatus | None = None,
    ) -> list[RecurringDeduction]:
        stmt = select(RctiDeductionModel).where(RctiDeductionModel.driver_id == driver_id)
        if status is not None:
            stmt = stmt.where(RctiDeductionModel.status == status.value)
        stmt = stmt.order_by(RctiDeductionModel.start_date, RctiDeductionModel.id)
        return [m.to_dto() for m in self._session.scalars(stmt)]

    def update_deduction(
        self,
        deduction_id: UUID,
        *,
        description: str | None = None,
        total_amount: Numeric | None = None,
        frequency: Frequency | str | None = None,
        amount_per_cycle: Numeric | None = None,
        start_date: date | datetime | str | None = None,
        notes: str | None = None,
    ) -> RecurringDeduction:
        """
        Edit a deduction that has never been applied.

        Changing ``total_amount`` recomputes ``amount_remaining``.

        Raises:
            DeductionCompletedError: Deduction is completed.
            DeductionAlreadyAppliedError: Any application exists.
        """
        try:
            model = self._load(deduction_id, for_update=True)
            if model.status == DeductionStatus.COMPLETED.value:
                raise DeductionCompletedError(str(deduction_id))
            if model.applications:
                raise DeductionAlreadyAppliedError(
                    str(deduction_id), "update", str(model.amount_paid)
                )

            if description is not None:
                if not description.strip():
                    raise InvalidDeductionError("description", "is required")
                model.description = description.strip()
            previous_frequency = model.frequency
            if frequency is not None:
                model.frequency = parse_frequency(frequency).value
            if total_amount is not None:
                model.total_amount = _positive_money(total_amount, "total_amount")
                model.amount_remaining = bankers_round(model.total_amount - model.amount_paid)
            if model.frequency == Frequency.ONCE.value:
                model.amount_per_cycle = model.total_amount
            elif amount_per_cycle is not None:
                model.amount_per_cycle = _positive_money(amount_per_cycle, "amount_per_cycle")
            elif model.amount_per_cycle is None or previous_frequency == Frequency.ONCE.value:
                raise InvalidDeductionError(
                    "amount_per_cycle", f"is required for {model.frequency} deductions"
                )
            if start_date is not None:
                model.start_date = normalize_to_date(start_date)
            if notes is not None:
                model.notes = notes

            dto = model.to_dto()
            self._commit()
        except Exception:
            self._rollback()
            raise

        logger.info("deduction_updated", extra={
            "deduction_id": str(deduction_id),
            "total_amount": str(dto.total_amount),
            "frequency": dto.frequency.value,
        })
        return dto

    def delete_deduction(self, deduction_id: UUID) -> None:
        """
        Delete a deduction that has never charged anything.

        Zero-amount skip applications go with it.

        Raises:
            DeductionAlreadyAppliedError: ``amount_paid`` is non-zero.
        """
        try:
            model = self._load(deduction_id, for_update=True)
            if model.amount_paid != 0:
                raise DeductionAlreadyAppliedError(
                    str(deduction_id), "delete", str(model.amount_paid)
                )
            skips = len(model.applications)
            self._session.delete(model)
            self._commit()
        except Exception:
            self._rollback()
            raise

        logger.info("deduction_deleted", extra={
            "deduction_id": str(deduction_id),
            "skip_applications_removed": skips,
        })

    # =========================================================================
    # Scheduling
    # =========================================================================

    def _active_deductions(
        self,
        driver_id: UUID,
        week_ending: date,
        for_update: bool,
    ) -> list[RctiDeductionModel]:
        stmt = (
            select(RctiDeductionModel)
            .where(
                RctiDeductionModel.driver_id == driver_id,
                RctiDeductionModel.status == DeductionStatus.ACTIVE.value,
                RctiDeductionModel.start_date <= week_ending,
            )
            .order_by(RctiDeductionModel.start_date, RctiDeductionModel.id)
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return list(self._session.scalars(stmt))

    def _history(self, deduction_ids: list[UUID]) -> dict[UUID, list[AppliedCycle]]:
        """Every application of the given deductions with its invoice week ending."""
        history: dict[UUID, list[AppliedCycle]] = {d: [] for d in deduction_ids}
        if not deduction_ids:
            return history
        stmt = (
            select(
                RctiDeductionApplicationModel.deduction_id,
                RctiDeductionApplicationModel.amount,
                RctiModel.week_ending,
            )
            .join(RctiModel, RctiModel.id == RctiDeductionApplicationModel.rcti_id)
            .where(RctiDeductionApplicationModel.deduction_id.in_(deduction_ids))
        )
        for deduction_id, amount, week_ending in self._session.execute(stmt):
            history[deduction_id].append(AppliedCycle(week_ending, amount))
        return history

    def debit_balance(
        self,
        deduction_id: UUID,
        expected_remaining: Decimal,
        amount: Decimal,
    ) -> bool:
        """
        Decrement a deduction's balance if it still holds ``expected_remaining``.

        Marks the deduction completed when the balance reaches zero.

        Returns:
            False when another writer changed the balance or status first.
        """
        new_remaining = bankers_round(expected_remaining - amount)
        completed = new_remaining <= 0
        stmt = (
            update(RctiDeductionModel)
            .where(
                RctiDeductionModel.id == deduction_id,
                RctiDeductionModel.amount_remaining == expected_remaining,
                RctiDeductionModel.status == DeductionStatus.ACTIVE.value,
            )
            .values(
                amount_paid=RctiDeductionModel.amount_paid + amount,
                amount_remaining=new_remaining,
                status=(
                    DeductionStatus.COMPLETED.value if completed
                    else DeductionStatus.ACTIVE.value
                ),
                completed_at=self._clock.now() if completed else None,
            )
            .execution_options(synchronize_session="fetch")
        )
        result = self._session.execute(stmt)
        return result.rowcount == 1

    def apply_deductions_to_rcti(
        self,
        rcti_id: UUID,
        driver_id: UUID,
        week_ending: date | datetime | str,
        amount_overrides: AmountOverrides | None = None,
    ) -> DeductionApplyResult:
        """
        Charge every due deduction of a driver against one invoice.

        Args:
            rcti_id: Invoice being finalised.
            driver_id: Its payee.
            week_ending: Its week ending.
            amount_overrides: Per-deduction amounts keyed by deduction id
                (UUID or string).  ``None`` skips the cycle with a zero
                application; a number replaces the default, capped at the
                remaining balance.

        Returns:
            DeductionApplyResult with the applications created.

        Raises:
            InvalidOverrideError: Negative override; nothing is recorded.
        """
        target = normalize_to_date(week_ending)
        now = self._clock.now()
        applications: list[DeductionApplication] = []
        total_deductions = Decimal("0")
        total_reimbursements = Decimal("0")

        with LogContext.bind(rcti_id=rcti_id, driver_id=driver_id):
            logger.info("deduction_scheduling_started", extra={
                "week_ending": target.isoformat(),
                "override_count": len(amount_overrides or {}),
            })

            savepoint = self._session.begin_nested()
            try:
                rcti = self._session.get(RctiModel, rcti_id)
                if rcti is None:
                    raise RctiNotFoundError(str(rcti_id))
                deductions = self._active_deductions(driver_id, target, for_update=True)
                history = self._history([d.id for d in deductions])

                for deduction in deductions:
                    check = evaluate_due(
                        deduction.frequency,
                        deduction.start_date,
                        history[deduction.id],
                        target,
                        self._config.frequency_intervals,
                    )
                    if not check.is_due:
                        logger.debug("deduction_not_due", extra={
                            "deduction_id": str(deduction.id),
                            "reason": check.status.value,
                            "elapsed_days": check.elapsed_days,
                        })
                        continue

                    expected_remaining = deduction.amount_remaining
                    charge = compute_charge(
                        deduction.amount_per_cycle,
                        expected_remaining,
                        deduction.id,
                        amount_overrides,
                    )

                    if charge.skipped:
                        model = RctiDeductionApplicationModel(
                            id=uuid4(), deduction=deduction, rcti=rcti,
                            amount=ZERO, applied_at=now,
                        )
                        self._session.add(model)
                        self._session.flush()
                        applications.append(model.to_dto())
                        logger.info("deduction_skipped", extra={
                            "deduction_id": str(deduction.id),
                        })
                        continue

                    if charge.amount <= 0:
                        logger.debug("deduction_zero_charge", extra={
                            "deduction_id": str(deduction.id),
                            "amount_remaining": str(expected_remaining),
                        })
                        continue

                    if not self.debit_balance(deduction.id, expected_remaining, charge.amount):
                        logger.warning("deduction_balance_conflict", extra={
                            "deduction_id": str(deduction.id),
                            "expected_remaining": str(expected_remaining),
                        })
                        continue

                    model = RctiDeductionApplicationModel(
                        id=uuid4(), deduction=deduction, rcti=rcti,
                        amount=charge.amount, applied_at=now,
                    )
                    self._session.add(model)
                    self._session.flush()
                    applications.append(model.to_dto())

                    if deduction.type == DeductionType.DEDUCTION.value:
                        total_deductions += charge.amount
                    else:
                        total_reimbursements += charge.amount

                    logger.info("deduction_applied", extra={
                        "deduction_id": str(deduction.id),
                        "deduction_type": deduction.type,
                        "amount": str(charge.amount),
                        "overridden": charge.overridden,
                        "amount_remaining": str(deduction.amount_remaining),
                        "deduction_status": deduction.status,
                    })

                savepoint.commit()
            except Exception:
                if savepoint.is_active:
                    savepoint.rollback()
                logger.warning("deduction_scheduling_rolled_back", exc_info=True)
                self._rollback()
                raise

            try:
                self._commit()
            except Exception:
                self._rollback()
                raise

            result = DeductionApplyResult(
                applications=tuple(applications),
                applied_count=sum(1 for a in applications if not a.is_skip),
                total_deduction_amount=bankers_round(total_deductions),
                total_reimbursement_amount=bankers_round(total_reimbursements),
            )
            logger.info("deduction_scheduling_completed", extra={
                "applied_count": result.applied_count,
                "skipped_count": len(applications) - result.applied_count,
                "total_deduction_amount": str(result.total_deduction_amount),
                "total_reimbursement_amount": str(result.total_reimbursement_amount),
                "net_adjustment": str(result.net_adjustment),
            })
            return result

    def get_pending_deductions(
        self,
        driver_id: UUID,
        week_ending: date | datetime | str,
    ) -> list[PendingDeduction]:
        """What finalising an invoice for ``week_ending`` would charge by default."""
        target = normalize_to_date(week_ending)
        deductions = self._active_deductions(driver_id, target, for_update=False)
        history = self._history([d.id for d in deductions])

        pending = []
        for deduction in deductions:
            if not evaluate_due(
                deduction.frequency,
                deduction.start_date,
                history[deduction.id],
                target,
                self._config.frequency_intervals,
            ).is_due:
                continue
            charge = compute_charge(deduction.amount_per_cycle, deduction.amount_remaining)
            if charge.amount <= 0:
                continue
            pending.append(
                PendingDeduction(
                    deduction_id=deduction.id,
                    type=DeductionType(deduction.type),
                    description=deduction.description,
                    frequency=Frequency(deduction.frequency),
                    amount=charge.amount,
                    amount_remaining=deduction.amount_remaining,
                )
            )
        return pending

    def get_rcti_deduction_summary(self, rcti_id: UUID) -> DeductionSummary:
        """Applications recorded on an invoice, oldest first, with totals."""
        stmt = (
            select(RctiDeductionApplicationModel)
            .where(RctiDeductionApplicationModel.rcti_id == rcti_id)
            .order_by(
                RctiDeductionApplicationModel.applied_at,
                RctiDeductionApplicationModel.created_at,
            )
        )
        applications = [m.to_dto() for m in self._session.scalars(stmt)]
        deductions = sum(
            (a.amount for a in applications if a.deduction_type == DeductionType.DEDUCTION),
            Decimal("0"),
        )
        reimbursements = sum(
            (a.amount for a in applications if a.deduction_type == DeductionType.REIMBURSEMENT),
            Decimal("0"),
        )
        return DeductionSummary(
            rcti_id=rcti_id,
            applications=tuple(applications),
            total_deductions=bankers_round(deductions),
            total_reimbursements=bankers_round(reimbursements),
        )

    def remove_deductions_from_rcti(self, rcti_id: UUID) -> int:
        """
        Reverse every application recorded on an invoice.

        Balances are restored, deductions that regain a balance are
        reactivated, and the applications are deleted.

        Returns:
            Number of applications removed.
        """
        with LogContext.bind(rcti_id=rcti_id):
            try:
                stmt = select(RctiDeductionApplicationModel).where(
                    RctiDeductionApplicationModel.rcti_id == rcti_id
                )
                applications = list(self._session.scalars(stmt))
                for application in applications:
                    deduction = self._load(application.deduction_id, for_update=True)
                    if application.amount > 0:
                        deduction.amount_paid = bankers_round(
                            deduction.amount_paid - application.amount
                        )
                        deduction.amount_remaining = bankers_round(
                            deduction.total_amount - deduction.amount_paid
                        )
                        deduction.status = DeductionStatus.ACTIVE.value
                        deduction.completed_at = None
                    deduction.applications.remove(application)
                    logger.info("deduction_application_reversed", extra={
                        "deduction_id": str(deduction.id),
                        "amount": str(application.amount),
                        "amount_remaining": str(deduction.amount_remaining),
                    })
                self._commit()
            except Exception:
                self._rollback()
                raise

            return len(applications)
