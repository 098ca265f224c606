"""Ledger records, request types and the error taxonomy."""

from __future__ import annotations

import datetime as dt
import enum
from dataclasses import dataclass, field, replace
from typing import Any, Mapping


class RequestType(str, enum.Enum):
    CONSULTATION = "consultation"
    ANNUAL_EXAM = "annual_exam"
    REIMBURSEMENT = "reimbursement"
    EMERGENCY = "emergency"


class TicketFamily(str, enum.Enum):
    """Capacity and ticket-sequence sharing group of a request type."""

    CONSULTATION = "consultation"
    REIMBURSEMENT = "reimbursement"

    @property
    def prefix(self) -> str:
        return "R" if self is TicketFamily.REIMBURSEMENT else "C"

    @property
    def request_types(self) -> frozenset[RequestType]:
        return FAMILY_MEMBERS[self]


FAMILY_MEMBERS: dict[TicketFamily, frozenset[RequestType]] = {
    TicketFamily.CONSULTATION: frozenset({RequestType.CONSULTATION, RequestType.ANNUAL_EXAM}),
    TicketFamily.REIMBURSEMENT: frozenset({RequestType.REIMBURSEMENT}),
}

# Only the consultation family is protected against same-day duplicates.
DUPLICATE_GUARDED = FAMILY_MEMBERS[TicketFamily.CONSULTATION]


def family_of(request_type: RequestType) -> TicketFamily | None:
    """Return the ticket family of ``request_type``; emergencies have none."""

    for family, members in FAMILY_MEMBERS.items():
        if request_type in members:
            return family
    return None


def format_ticket(family: TicketFamily, sequence: int) -> str:
    return f"{family.prefix}-{sequence:03d}"


@dataclass(frozen=True)
class BookingRecord:
    request_type: RequestType
    request_date: dt.date
    patient_id: str | None = None
    patient_given_name: str | None = None
    patient_family_name: str | None = None
    ticket_number: str | None = None
    details: Mapping[str, Any] = field(default_factory=dict)
    id: int | None = None
    created_at: dt.datetime | None = None

    @property
    def ticket_family(self) -> TicketFamily | None:
        return family_of(self.request_type)

    def persisted(self, *, record_id: int, created_at: dt.datetime) -> "BookingRecord":
        return replace(self, id=record_id, created_at=created_at)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "request_type": self.request_type.value,
            "request_date": self.request_date.isoformat(),
            "patient_id": self.patient_id,
            "patient_given_name": self.patient_given_name,
            "patient_family_name": self.patient_family_name,
            "ticket_number": self.ticket_number,
            "details": dict(self.details),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class StoreError(RuntimeError):
    """Raised when the ledger backend cannot complete an operation."""


class TicketConflictError(StoreError):
    """Raised when a ticket number was already taken for the same day and family."""


class ConfigurationError(RuntimeError):
    """Raised when settings are present but malformed."""


class AllocationError(RuntimeError):
    """Base class for user-correctable booking outcomes."""

    code = "allocation_error"


class CapacityExceededError(AllocationError):
    code = "capacity_exceeded"

    def __init__(self, request_type: RequestType, request_date: dt.date, limit: int) -> None:
        super().__init__(
            f"No {request_type.value} slots left on {request_date.isoformat()} (limit {limit})"
        )
        self.request_type = request_type
        self.request_date = request_date
        self.limit = limit


class DuplicateBookingError(AllocationError):
    code = "duplicate_booking"

    def __init__(self, patient_id: str, request_date: dt.date) -> None:
        super().__init__(
            f"Patient {patient_id} already has an appointment on {request_date.isoformat()}"
        )
        self.patient_id = patient_id
        self.request_date = request_date


@dataclass(frozen=True)
class BookingResult:
    """Outcome of a booking attempt: a persisted record or a typed refusal."""

    record: BookingRecord | None = None
    error: AllocationError | None = None

    @property
    def ok(self) -> bool:
        return self.record is not None

    @property
    def status(self) -> str:
        return "booked" if self.error is None else self.error.code

    def unwrap(self) -> BookingRecord:
        if self.error is not None:
            raise self.error
        assert self.record is not None
        return self.record
