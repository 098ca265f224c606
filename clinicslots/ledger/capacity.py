"""Daily capacity limits per request type."""

from __future__ import annotations

import datetime as dt
import logging
from typing import Mapping

from .models import RequestType, TicketFamily, family_of

logger = logging.getLogger(__name__)

WEDNESDAY = 2

DEFAULT_LIMITS: dict[str, int] = {
    "consultation": 15,
    "consultation_wednesday": 10,
    "reimbursement": 20,
}


class CapacityPolicy:
    """Map a request type and calendar date to the number of bookings allowed.

    Consultations and annual exams share one limit, lowered on Wednesdays for
    reduced staffing. Reimbursements have a flat limit. A limit missing from
    the configuration counts as zero so the clinic never over-books.
    """

    def __init__(self, limits: Mapping[str, int] | None = None) -> None:
        self.limits = dict(DEFAULT_LIMITS if limits is None else limits)

    def _limit_key(self, family: TicketFamily, day: dt.date) -> str:
        if family is TicketFamily.CONSULTATION and day.weekday() == WEDNESDAY:
            return "consultation_wednesday"
        return family.value

    def capacity_for(self, request_type: RequestType, day: dt.date) -> int | None:
        family = family_of(request_type)
        if family is None:
            return None
        key = self._limit_key(family, day)
        limit = self.limits.get(key)
        if limit is None:
            logger.error("Capacity limit %r is not configured; treating %s as full", key, day)
            return 0
        return limit
