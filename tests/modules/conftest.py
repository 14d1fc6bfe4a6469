"""
Shared fixtures for invoicing module tests.

Every fixture is opt-in.  Services are built on the per-test ``session``
from the root conftest and share its deterministic clock.  Week endings
and ``make_job`` are importable so tests can build their own job sets.
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from rcti_modules.invoicing.deductions import DeductionService
from rcti_modules.invoicing.models import Job
from rcti_modules.invoicing.service import RctiService

# Week endings used across the module tests (Sundays)
WEEK_1 = date(2025, 11, 9)
WEEK_2 = date(2025, 11, 16)
WEEK_3 = date(2025, 11, 23)


def make_job(job_id, day, truck_type="Tray", hours="8", driver_charge=None, **kwargs):
    return Job(
        id=str(job_id),
        job_date=day,
        truck_type=truck_type,
        charged_hours=Decimal(hours) if hours is not None else None,
        driver_charge=Decimal(driver_charge) if driver_charge is not None else None,
        **kwargs,
    )


@pytest.fixture
def week_jobs():
    """Three jobs in the week ending WEEK_1, supplied out of date order."""
    return [
        make_job("J-1", date(2025, 11, 4), "Tray", "8", pickup="Dandenong", dropoff="Clayton"),
        make_job("J-2", date(2025, 11, 3), "Semi", "6", job_reference="REF-22"),
        make_job("J-3", date(2025, 11, 5), "Tray", "7.5", customer="Acme", pickup="Laverton"),
    ]


@pytest.fixture
def rcti_service(session, clock):
    return RctiService(session, clock=clock)


@pytest.fixture
def deduction_service(session, clock):
    return DeductionService(session, clock=clock)


@pytest.fixture
def finalise_week(rcti_service, driver):
    """
    Draft and finalise a one-job invoice for ``driver``.

    The job is 6 hours of Tray work, so no lunch break applies.

    Usage::

        rcti, applied = finalise_week(WEEK_1)
        rcti, applied = finalise_week(WEEK_2, overrides={deduction.id: None})
    """
    counter = iter(range(1, 10_000))

    def _finalise(week_ending, overrides=None, payee=None):
        job = make_job(
            f"FW-{next(counter)}", week_ending - timedelta(days=2), "Tray", "6",
        )
        draft = rcti_service.create_draft(payee or driver, week_ending, [job])
        return rcti_service.finalise(draft.id, overrides)

    return _finalise
