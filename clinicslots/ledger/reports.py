"""Daily and monthly reports over the booking ledger."""

from __future__ import annotations

import calendar
import datetime as dt
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable

from .models import BookingRecord, RequestType
from .store import LedgerStore

logger = logging.getLogger(__name__)

MONDAY = 0

_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")

# Presentation columns per bucket: (row key, header).
BUCKET_COLUMNS: dict[RequestType, tuple[tuple[str, str], ...]] = {
    RequestType.CONSULTATION: (
        ("ticket_number", "Ticket"),
        ("patient_given_name", "Given name"),
        ("patient_family_name", "Family name"),
        ("patient_id", "Patient ID"),
        ("consultation_detail", "Consultation type"),
        ("payroll_number", "Payroll"),
        ("department", "Department"),
        ("registered_at", "Registered at"),
    ),
    RequestType.ANNUAL_EXAM: (
        ("ticket_number", "Ticket"),
        ("patient_given_name", "Given name"),
        ("patient_family_name", "Family name"),
        ("patient_id", "Patient ID"),
        ("payroll_number", "Payroll"),
        ("department", "Department"),
        ("registered_at", "Registered at"),
    ),
    RequestType.REIMBURSEMENT: (
        ("ticket_number", "Ticket"),
        ("patient_given_name", "Given name"),
        ("patient_family_name", "Family name"),
        ("patient_id", "Patient ID"),
        ("registered_at", "Registered at"),
    ),
    RequestType.EMERGENCY: (
        ("request_date", "Date"),
        ("registered_at", "Time"),
        ("message", "Message"),
    ),
}

BUCKET_TITLES: dict[RequestType, str] = {
    RequestType.CONSULTATION: "Consultations",
    RequestType.ANNUAL_EXAM: "Annual exams",
    RequestType.REIMBURSEMENT: "Reimbursements",
    RequestType.EMERGENCY: "Emergencies",
}


def month_bounds(year_month: str) -> tuple[dt.date, dt.date]:
    """Return the first and last calendar day of a ``YYYY-MM`` period."""

    match = _MONTH_RE.match(year_month.strip())
    if not match:
        raise ValueError(f"Month must look like YYYY-MM, got {year_month!r}")
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        raise ValueError(f"Month out of range in {year_month!r}")
    last_day = calendar.monthrange(year, month)[1]
    return dt.date(year, month, 1), dt.date(year, month, last_day)


def report_date_for(trigger_day: dt.date) -> dt.date:
    """Day covered by a report triggered on ``trigger_day``.

    Mondays report the preceding Friday; every other day reports the day
    before.
    """

    if trigger_day.weekday() == MONDAY:
        return trigger_day - dt.timedelta(days=3)
    return trigger_day - dt.timedelta(days=1)


def registered_time(record: BookingRecord, timezone: dt.tzinfo | None = None) -> str | None:
    """Intake time of ``record``: the channel's own stamp, else ``created_at`` as HH:MM."""

    stamped = record.details.get("registered_at")
    if stamped:
        return stamped
    if record.created_at is None:
        return None
    created = record.created_at.astimezone(timezone) if timezone else record.created_at
    return created.strftime("%H:%M")


def _row(
    record: BookingRecord, columns: Iterable[tuple[str, str]], timezone: dt.tzinfo | None = None
) -> dict[str, Any]:
    values = record.to_dict()
    values["registered_at"] = registered_time(record, timezone)
    details = record.details
    return {key: values[key] if key in values else details.get(key) for key, _ in columns}


@dataclass
class CategorizedReport:
    period_label: str
    buckets: dict[RequestType, list[BookingRecord]] = field(default_factory=dict)
    # Clinic-local zone used to render record creation times.
    timezone: dt.tzinfo | None = None

    @property
    def total(self) -> int:
        return sum(len(records) for records in self.buckets.values())

    @property
    def is_empty(self) -> bool:
        return self.total == 0

    def records(self, request_type: RequestType) -> list[BookingRecord]:
        return self.buckets.get(request_type, [])

    def rows(self, request_type: RequestType) -> list[dict[str, Any]]:
        columns = BUCKET_COLUMNS[request_type]
        return [_row(record, columns, self.timezone) for record in self.records(request_type)]

    def to_dict(self) -> dict[str, Any]:
        return {
            "period": self.period_label,
            "total": self.total,
            "buckets": {
                request_type.value: self.rows(request_type) for request_type in BUCKET_COLUMNS
            },
        }


def categorize(
    records: Iterable[BookingRecord], period_label: str, timezone: dt.tzinfo | None = None
) -> CategorizedReport:
    report = CategorizedReport(
        period_label=period_label,
        buckets={request_type: [] for request_type in BUCKET_COLUMNS},
        timezone=timezone,
    )
    ordered = sorted(
        records,
        key=lambda r: (r.request_date, r.ticket_number or "", r.id or 0),
    )
    for record in ordered:
        report.buckets[record.request_type].append(record)
    return report


class ReportAggregator:
    def __init__(self, store: LedgerStore, timezone: dt.tzinfo | None = None) -> None:
        self.store = store
        self.timezone = timezone

    def daily_report(self, day: dt.date) -> list[BookingRecord]:
        return self.store.find_by_date_range(day, day)

    def monthly_report(self, year_month: str) -> list[BookingRecord]:
        start, end = month_bounds(year_month)
        return self.store.find_by_date_range(start, end)

    def monthly_count(self, year_month: str, request_types: Iterable[RequestType]) -> int:
        start, end = month_bounds(year_month)
        return self.store.count_matching_range(request_types, start, end)

    def daily(self, day: dt.date) -> CategorizedReport:
        records = self.daily_report(day)
        logger.info("Daily report for %s: %s records", day.isoformat(), len(records))
        return categorize(records, day.strftime("%d/%m/%Y"), self.timezone)

    def monthly(self, year_month: str) -> CategorizedReport:
        records = self.monthly_report(year_month)
        logger.info("Monthly report for %s: %s records", year_month, len(records))
        return categorize(records, year_month.strip(), self.timezone)
