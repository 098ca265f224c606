"""Booking ledger: capacity policy, stores, allocation and reporting."""

from .allocation import AllocationService
from .capacity import CapacityPolicy
from .models import (
    AllocationError,
    BookingRecord,
    BookingResult,
    CapacityExceededError,
    ConfigurationError,
    DuplicateBookingError,
    RequestType,
    StoreError,
    TicketConflictError,
    TicketFamily,
)
from .reports import CategorizedReport, ReportAggregator, report_date_for
from .store import LedgerStore, MemoryLedgerStore, SQLiteLedgerStore, select_store

__all__ = [
    "AllocationError",
    "AllocationService",
    "BookingRecord",
    "BookingResult",
    "CapacityExceededError",
    "CapacityPolicy",
    "CategorizedReport",
    "ConfigurationError",
    "DuplicateBookingError",
    "LedgerStore",
    "MemoryLedgerStore",
    "ReportAggregator",
    "RequestType",
    "SQLiteLedgerStore",
    "StoreError",
    "TicketConflictError",
    "TicketFamily",
    "report_date_for",
    "select_store",
]
