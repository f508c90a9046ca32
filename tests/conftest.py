"""
Shared fixtures: an in-memory store, sinks, services and record builders.
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from recordmatch.models import ReconcilableRecord, Record, RecordType
from recordmatch.services import DeduplicationService, ReconciliationService
from recordmatch.store import InMemoryAuditSink, InMemoryNotificationSink, InMemoryStore

TENANT = "tenant-1"
OTHER_TENANT = "tenant-2"
PAYROLL_DATE = date(2024, 3, 15)
BASE_TIME = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_contribution(
    record_id,
    employee_id="E1",
    payroll_date=PAYROLL_DATE,
    pre_tax=50000,
    roth=0,
    match=2500,
    tenant_id=TENANT,
    created_at=None,
    record_type=RecordType.CONTRIBUTION,
):
    return Record(
        id=record_id,
        tenant_id=tenant_id,
        record_type=record_type,
        fields={
            "employee_id": employee_id,
            "payroll_date": payroll_date,
            "employee_pre_tax": pre_tax,
            "employee_roth": roth,
            "employer_match": match,
        },
        created_at=created_at or BASE_TIME,
    )


def make_employee(
    record_id,
    ssn="123-45-6789",
    first_name="Maria",
    last_name="Gonzalez",
    date_of_birth=date(1985, 6, 1),
    employee_number="1001",
    tenant_id=TENANT,
    created_at=None,
):
    return Record(
        id=record_id,
        tenant_id=tenant_id,
        record_type=RecordType.EMPLOYEE,
        fields={
            "ssn": ssn,
            "first_name": first_name,
            "last_name": last_name,
            "date_of_birth": date_of_birth,
            "employee_number": employee_number,
        },
        created_at=created_at or BASE_TIME,
    )


def make_side(amounts, record_date=PAYROLL_DATE, prefix="r"):
    """ReconcilableRecords from (key, amount_cents) pairs."""
    return [
        ReconcilableRecord(
            id=f"{prefix}{i}",
            key=key,
            amount_cents=amount,
            record_date=record_date,
        )
        for i, (key, amount) in enumerate(amounts)
    ]


def later(minutes):
    return BASE_TIME + timedelta(minutes=minutes)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def audit_sink():
    return InMemoryAuditSink()


@pytest.fixture
def notification_sink():
    return InMemoryNotificationSink()


@pytest.fixture
def dedup_service(store, audit_sink, notification_sink):
    return DeduplicationService(store, store, audit_sink, notification_sink)


@pytest.fixture
def recon_service(store, audit_sink, notification_sink):
    return ReconciliationService(store, store, audit_sink, notification_sink, findings=store)
