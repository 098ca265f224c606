"""Append-only ledger stores: a durable SQLite backend and an in-memory backend."""

from __future__ import annotations

import contextlib
import copy
import datetime as dt
import json
import logging
import sqlite3
import threading
from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Iterator

from .database import get_connection, initialize_database
from .models import (
    BookingRecord,
    RequestType,
    StoreError,
    TicketConflictError,
    TicketFamily,
)

if TYPE_CHECKING:
    from clinicslots.config import Settings

logger = logging.getLogger(__name__)


TICKET_CONSTRAINT = "bookings.request_date, bookings.ticket_family, bookings.ticket_number"


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _detached(record: BookingRecord) -> BookingRecord:
    return replace(record, details=copy.deepcopy(dict(record.details)))


class _KeyedLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class LedgerStore:
    """Operations every ledger backend provides.

    Implementations must return identical results for identical sequences of
    calls; the allocation service and the report aggregator only see this
    interface.
    """

    backend = "abstract"

    def __init__(self) -> None:
        self._locks: dict[tuple[TicketFamily, dt.date], _KeyedLock] = {}
        self._locks_guard = threading.Lock()

    @contextlib.contextmanager
    def allocation_lock(self, family: TicketFamily, day: dt.date) -> Iterator[None]:
        """Serialize allocations for one ticket family on one day.

        A key's lock lives only while some thread holds or waits for it.
        """

        key = (family, day)
        with self._locks_guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = _KeyedLock()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._locks_guard:
                entry.users -= 1
                if not entry.users:
                    del self._locks[key]

    def count_matching(self, request_types: Iterable[RequestType], day: dt.date) -> int:
        return self.count_matching_range(request_types, day, day)

    def count_matching_range(
        self, request_types: Iterable[RequestType], start_date: dt.date, end_date: dt.date
    ) -> int:
        raise NotImplementedError

    def insert(self, record: BookingRecord) -> BookingRecord:
        raise NotImplementedError

    def find_by_date_range(self, start_date: dt.date, end_date: dt.date) -> list[BookingRecord]:
        raise NotImplementedError

    def exists_for_patient_on_date(
        self, patient_id: str, day: dt.date, request_types: Iterable[RequestType]
    ) -> bool:
        raise NotImplementedError

    def reset(self) -> None:
        raise NotImplementedError(f"{self.backend} ledger cannot be reset")

    def close(self) -> None:
        pass


class MemoryLedgerStore(LedgerStore):
    """Keeps records in process memory; used when no database is configured."""

    backend = "memory"

    def __init__(self) -> None:
        super().__init__()
        self._records: list[BookingRecord] = []
        self._next_id = 1
        self._data_lock = threading.RLock()

    def _scan(self, request_types: Iterable[RequestType], start_date: dt.date, end_date: dt.date):
        wanted = set(request_types)
        with self._data_lock:
            snapshot = list(self._records)
        return [
            _detached(record)
            for record in snapshot
            if record.request_type in wanted and start_date <= record.request_date <= end_date
        ]

    def count_matching_range(
        self, request_types: Iterable[RequestType], start_date: dt.date, end_date: dt.date
    ) -> int:
        return len(self._scan(request_types, start_date, end_date))

    def insert(self, record: BookingRecord) -> BookingRecord:
        with self._data_lock:
            if record.ticket_number is not None and any(
                existing.request_date == record.request_date
                and existing.ticket_family == record.ticket_family
                and existing.ticket_number == record.ticket_number
                for existing in self._records
            ):
                raise TicketConflictError(
                    f"Ticket {record.ticket_number} already issued for {record.request_date.isoformat()}"
                )
            stored = _detached(record).persisted(record_id=self._next_id, created_at=_utcnow())
            self._next_id += 1
            self._records.append(stored)
        logger.debug("Stored %s record %s in memory", stored.request_type.value, stored.id)
        return _detached(stored)

    def find_by_date_range(self, start_date: dt.date, end_date: dt.date) -> list[BookingRecord]:
        return self._scan(RequestType, start_date, end_date)

    def exists_for_patient_on_date(
        self, patient_id: str, day: dt.date, request_types: Iterable[RequestType]
    ) -> bool:
        return any(record.patient_id == patient_id for record in self._scan(request_types, day, day))

    def reset(self) -> None:
        """Drop every record. Only meant for tests."""

        with self._data_lock:
            self._records = []
            self._next_id = 1


class SQLiteLedgerStore(LedgerStore):
    """Durable backend; filtering happens in SQL and a unique index guards tickets."""

    backend = "sqlite"

    def __init__(self, db_path: str | Path = ":memory:", *, timeout: float = 5.0) -> None:
        super().__init__()
        self._db_lock = threading.RLock()
        try:
            self.conn = get_connection(db_path, timeout=timeout)
        except sqlite3.Error as exc:
            raise StoreError(f"Could not open ledger database {db_path}: {exc}") from exc
        try:
            initialize_database(self.conn)
        except sqlite3.Error as exc:
            self.conn.close()
            raise StoreError(f"Could not initialize ledger database {db_path}: {exc}") from exc

    @contextlib.contextmanager
    def _query(self, action: str) -> Iterator[sqlite3.Connection]:
        with self._db_lock:
            try:
                yield self.conn
            except sqlite3.IntegrityError as exc:
                self.conn.rollback()
                if TICKET_CONSTRAINT in str(exc):
                    raise TicketConflictError(f"Could not {action}: {exc}") from exc
                raise StoreError(f"Could not {action}: {exc}") from exc
            except sqlite3.Error as exc:
                self.conn.rollback()
                raise StoreError(f"Could not {action}: {exc}") from exc

    @staticmethod
    def _placeholders(request_types: Iterable[RequestType]) -> tuple[str, list[str]]:
        values = sorted({RequestType(value).value for value in request_types})
        return ", ".join("?" for _ in values), values

    @staticmethod
    def _to_record(row: dict) -> BookingRecord:
        return BookingRecord(
            id=row["id"],
            request_type=RequestType(row["request_type"]),
            request_date=dt.date.fromisoformat(row["request_date"]),
            patient_id=row["patient_id"],
            patient_given_name=row["patient_given_name"],
            patient_family_name=row["patient_family_name"],
            ticket_number=row["ticket_number"],
            details=json.loads(row["details"]) if row["details"] else {},
            created_at=dt.datetime.fromisoformat(row["created_at"]),
        )

    def count_matching_range(
        self, request_types: Iterable[RequestType], start_date: dt.date, end_date: dt.date
    ) -> int:
        marks, values = self._placeholders(request_types)
        if not values:
            return 0
        with self._query("count bookings") as conn:
            row = conn.execute(
                f"""
                SELECT COUNT(id) AS total FROM bookings
                WHERE request_type IN ({marks})
                  AND request_date >= ? AND request_date <= ?
                """,
                (*values, start_date.isoformat(), end_date.isoformat()),
            ).fetchone()
        return row["total"] if row else 0

    def insert(self, record: BookingRecord) -> BookingRecord:
        created_at = _utcnow()
        family = record.ticket_family
        with self._query("insert booking") as conn:
            cur = conn.execute(
                """
                INSERT INTO bookings(
                    request_type, ticket_family, request_date, patient_id, patient_given_name,
                    patient_family_name, ticket_number, details, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.request_type.value,
                    family.value if family else None,
                    record.request_date.isoformat(),
                    record.patient_id,
                    record.patient_given_name,
                    record.patient_family_name,
                    record.ticket_number,
                    json.dumps(dict(record.details)),
                    created_at.isoformat(),
                ),
            )
            conn.commit()
        logger.debug("Stored %s record %s in sqlite", record.request_type.value, cur.lastrowid)
        return _detached(record).persisted(record_id=cur.lastrowid, created_at=created_at)

    def find_by_date_range(self, start_date: dt.date, end_date: dt.date) -> list[BookingRecord]:
        with self._query("read bookings") as conn:
            rows = conn.execute(
                """
                SELECT * FROM bookings
                WHERE request_date >= ? AND request_date <= ?
                ORDER BY id
                """,
                (start_date.isoformat(), end_date.isoformat()),
            ).fetchall()
        return [self._to_record(row) for row in rows]

    def exists_for_patient_on_date(
        self, patient_id: str, day: dt.date, request_types: Iterable[RequestType]
    ) -> bool:
        marks, values = self._placeholders(request_types)
        if not values:
            return False
        with self._query("check existing booking") as conn:
            row = conn.execute(
                f"""
                SELECT id FROM bookings
                WHERE patient_id = ? AND request_date = ?
                  AND request_type IN ({marks})
                LIMIT 1
                """,
                (patient_id, day.isoformat(), *values),
            ).fetchone()
        return row is not None

    def close(self) -> None:
        with self._db_lock:
            self.conn.close()


def select_store(settings: "Settings") -> LedgerStore:
    """Pick the backend once at startup from the configured database path."""

    if settings.database_path:
        logger.info("Ledger backend: sqlite (%s)", settings.database_path)
        return SQLiteLedgerStore(settings.database_path)
    logger.warning("CLINIC_DATABASE_PATH not set; ledger kept in memory only")
    return MemoryLedgerStore()
