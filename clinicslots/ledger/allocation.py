"""Booking allocation: duplicate guard, capacity check, ticket numbering."""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import replace
from typing import Any, Mapping

from tenacity import RetryCallState, retry, retry_if_exception_type, stop_after_attempt

from .capacity import CapacityPolicy
from .models import (
    DUPLICATE_GUARDED,
    BookingRecord,
    BookingResult,
    CapacityExceededError,
    DuplicateBookingError,
    RequestType,
    TicketConflictError,
    TicketFamily,
    family_of,
    format_ticket,
)
from .store import LedgerStore

logger = logging.getLogger(__name__)


def _log_conflict(retry_state: RetryCallState) -> None:
    logger.warning(
        "Ticket conflict on attempt %s; recomputing allocation", retry_state.attempt_number
    )


class AllocationService:
    """Turns a validated booking request into a ledger record.

    For the consultation family and reimbursements the duplicate check,
    capacity check, ticket computation and insert run under the store's
    allocation lock for that family and day. Emergencies are logged straight
    to the ledger without a ticket.
    """

    def __init__(
        self,
        store: LedgerStore,
        policy: CapacityPolicy | None = None,
        *,
        attempts: int = 3,
    ) -> None:
        self.store = store
        self.policy = policy or CapacityPolicy()
        self.attempts = max(1, attempts)

    def book_slot(
        self,
        request_type: RequestType | str,
        request_date: dt.date,
        patient_id: str | None,
        patient_fields: Mapping[str, Any] | None = None,
    ) -> BookingResult:
        request_type = RequestType(request_type)
        if isinstance(request_date, dt.datetime):
            request_date = request_date.date()
        fields = dict(patient_fields or {})
        record = BookingRecord(
            request_type=request_type,
            request_date=request_date,
            patient_id=patient_id,
            patient_given_name=fields.pop("patient_given_name", None),
            patient_family_name=fields.pop("patient_family_name", None),
            details=fields,
        )

        family = family_of(request_type)
        if family is None:
            stored = self.store.insert(record)
            logger.info("Emergency entry %s logged for %s", stored.id, request_date.isoformat())
            return BookingResult(record=stored)

        if not patient_id:
            raise ValueError(f"{request_type.value} bookings require a patient id")

        allocate = retry(
            retry=retry_if_exception_type(TicketConflictError),
            stop=stop_after_attempt(self.attempts),
            before_sleep=_log_conflict,
            reraise=True,
        )(self._allocate)
        return allocate(record, family)

    def _allocate(self, record: BookingRecord, family: TicketFamily) -> BookingResult:
        day = record.request_date
        with self.store.allocation_lock(family, day):
            if record.request_type in DUPLICATE_GUARDED and self.store.exists_for_patient_on_date(
                record.patient_id, day, DUPLICATE_GUARDED
            ):
                logger.info(
                    "Duplicate %s for patient %s on %s", record.request_type.value, record.patient_id, day
                )
                return BookingResult(error=DuplicateBookingError(record.patient_id, day))

            limit = self.policy.capacity_for(record.request_type, day)
            booked = self.store.count_matching(family.request_types, day)
            if limit - booked <= 0:
                logger.info("No %s capacity left on %s (%s/%s)", family.value, day, booked, limit)
                return BookingResult(error=CapacityExceededError(record.request_type, day, limit))

            ticket = format_ticket(family, booked + 1)
            stored = self.store.insert(replace(record, ticket_number=ticket))
        logger.info(
            "Booked %s %s on %s for patient %s", stored.request_type.value, ticket, day, stored.patient_id
        )
        return BookingResult(record=stored)
