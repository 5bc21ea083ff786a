"""Repository layer responsible for all database access."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional, Sequence

from booking_engine.domain.models import (
    Booking,
    BookingPage,
    BookingRequest,
    BookingStatus,
    Priority,
    ResolutionOutcome,
    ResolutionRecord,
    Resource,
    TimeInterval,
    WaitlistEntry,
    WaitlistStatus,
)
from booking_engine.repository.base import (
    AuditSink,
    BookingRepository,
    ConstraintViolation,
    RepositoryUnavailable,
    WaitlistStore,
)
from booking_engine.utils.config import Settings, get_settings
from booking_engine.utils.logger import get_logger


logger = get_logger(__name__)

_DEMO_RESOURCES = [
    ("Room A", 8, "Block 1"),
    ("Room B", 20, "Block 1"),
    ("Room C", 4, "Block 2"),
    ("Room D", 12, "Block 2"),
    ("Room E", 6, "Block 3"),
    ("Room F", 40, "Block 3"),
]


def _format_ts(value: datetime) -> str:
    # Fixed-width text keeps lexical order equal to chronological order.
    return value.isoformat(timespec="microseconds")


def _parse_ts(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _row_to_booking(row: sqlite3.Row) -> Booking:
    return Booking(
        booking_id=str(row["id"]),
        resource_id=int(row["resource_id"]),
        title=str(row["title"]),
        interval=TimeInterval(
            start=_parse_ts(row["start_time"]),
            end=_parse_ts(row["end_time"]),
        ),
        owner_id=str(row["owner_id"]),
        priority=Priority(int(row["priority"])),
        recurring_group_id=row["recurring_group_id"],
        status=BookingStatus(row["status"]),
    )


def _row_to_waitlist_entry(row: sqlite3.Row) -> WaitlistEntry:
    return WaitlistEntry(
        entry_id=str(row["id"]),
        booking_request=BookingRequest(
            resource_id=int(row["resource_id"]),
            title=str(row["title"]),
            owner_id=str(row["owner_id"]),
            interval=TimeInterval(
                start=_parse_ts(row["start_time"]),
                end=_parse_ts(row["end_time"]),
            ),
            priority=Priority(int(row["priority"])),
            min_capacity=int(row["min_capacity"]),
        ),
        requested_at=_parse_ts(row["requested_at"]),
        status=WaitlistStatus(row["status"]),
    )


class DataRepository(BookingRepository, AuditSink, WaitlistStore):
    """Encapsulates SQLite access so scheduling logic stays storage-agnostic."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        # Autocommit mode; write paths open explicit transactions.
        connection = sqlite3.connect(self._db_path, isolation_level=None, timeout=30.0)
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise RepositoryUnavailable(f"Database connection failed: {exc}") from exc
        try:
            yield conn
        except sqlite3.Error as exc:
            if conn.in_transaction:
                conn.execute("ROLLBACK;")
            raise RepositoryUnavailable(f"Database operation failed: {exc}") from exc
        finally:
            conn.close()

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        with self._connection() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS Resources (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL UNIQUE,
                    capacity INTEGER NOT NULL CHECK (capacity > 0),
                    location TEXT,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                );

                CREATE TABLE IF NOT EXISTS Bookings (
                    id TEXT PRIMARY KEY,
                    resource_id INTEGER NOT NULL,
                    title TEXT NOT NULL,
                    start_time TEXT NOT NULL,
                    end_time TEXT NOT NULL,
                    owner_id TEXT NOT NULL,
                    priority INTEGER NOT NULL CHECK (priority BETWEEN 1 AND 4),
                    recurring_group_id TEXT,
                    status TEXT NOT NULL DEFAULT 'confirmed',
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                    CHECK (start_time < end_time),
                    FOREIGN KEY (resource_id) REFERENCES Resources(id)
                );

                CREATE TABLE IF NOT EXISTS ResolutionLogs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    conflict_id TEXT NOT NULL,
                    outcome TEXT NOT NULL,
                    resolved_by TEXT NOT NULL,
                    resolved_at TEXT NOT NULL,
                    notes TEXT NOT NULL DEFAULT ''
                );

                CREATE TABLE IF NOT EXISTS Waitlist (
                    id TEXT PRIMARY KEY,
                    resource_id INTEGER NOT NULL,
                    title TEXT NOT NULL,
                    owner_id TEXT NOT NULL,
                    start_time TEXT NOT NULL,
                    end_time TEXT NOT NULL,
                    priority INTEGER NOT NULL,
                    min_capacity INTEGER NOT NULL DEFAULT 1,
                    requested_at TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    FOREIGN KEY (resource_id) REFERENCES Resources(id)
                );

                CREATE INDEX IF NOT EXISTS idx_bookings_resource_status_start
                ON Bookings(resource_id, status, start_time);

                CREATE INDEX IF NOT EXISTS idx_waitlist_status_requested
                ON Waitlist(status, requested_at);
                """
            )
        logger.info("Database initialized at %s", self._db_path)

    def seed_demo_resources(self) -> None:
        """Seed demo rooms only when the Resources table is empty."""
        with self._connection() as conn:
            row = conn.execute("SELECT COUNT(*) AS count FROM Resources;").fetchone()
            if int(row["count"]) > 0:
                logger.info("Resources already present; skipping seed")
                return
            conn.execute("BEGIN;")
            conn.executemany(
                "INSERT INTO Resources (name, capacity, location) VALUES (?, ?, ?);",
                _DEMO_RESOURCES,
            )
            conn.execute("COMMIT;")
        logger.info("Demo resource seed completed with %s rooms", len(_DEMO_RESOURCES))

    def create_resource(self, name: str, capacity: int, location: str = "") -> int:
        """Insert a resource row and return the created id."""
        with self._connection() as conn:
            cursor = conn.execute(
                "INSERT INTO Resources (name, capacity, location) VALUES (?, ?, ?);",
                (name, capacity, location),
            )
            return int(cursor.lastrowid)

    def get_resource(self, resource_id: int) -> Optional[Resource]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT id, name, capacity FROM Resources WHERE id = ?;",
                (resource_id,),
            ).fetchone()
            if row is None:
                return None
            return Resource(
                resource_id=int(row["id"]),
                name=str(row["name"]),
                capacity=int(row["capacity"]),
            )

    def list_resources(self) -> list[Resource]:
        return self.list_resources_by_min_capacity(1)

    def list_resources_by_min_capacity(self, capacity: int) -> list[Resource]:
        """Return candidate rooms ordered closest-fit first, then by name."""
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT id, name, capacity
                FROM Resources
                WHERE capacity >= ?
                ORDER BY capacity ASC, name ASC;
                """,
                (capacity,),
            ).fetchall()
            return [
                Resource(
                    resource_id=int(row["id"]),
                    name=str(row["name"]),
                    capacity=int(row["capacity"]),
                )
                for row in rows
            ]

    def list_confirmed_bookings(
        self,
        resource_id: int,
        interval_range: TimeInterval,
    ) -> list[Booking]:
        with self._connection() as conn:
            return self._select_overlapping(conn, resource_id, interval_range)

    @staticmethod
    def _select_overlapping(
        conn: sqlite3.Connection,
        resource_id: int,
        interval_range: TimeInterval,
        exclude_ids: Sequence[str] = (),
    ) -> list[Booking]:
        rows = conn.execute(
            """
            SELECT id, resource_id, title, start_time, end_time, owner_id,
                   priority, recurring_group_id, status
            FROM Bookings
            WHERE resource_id = ?
              AND status = 'confirmed'
              AND start_time < ?
              AND end_time > ?
            ORDER BY start_time ASC, id ASC;
            """,
            (
                resource_id,
                _format_ts(interval_range.end),
                _format_ts(interval_range.start),
            ),
        ).fetchall()
        excluded = set(exclude_ids)
        return [
            _row_to_booking(row)
            for row in rows
            if str(row["id"]) not in excluded
        ]

    def get_booking(self, booking_id: str) -> Optional[Booking]:
        with self._connection() as conn:
            row = conn.execute(
                """
                SELECT id, resource_id, title, start_time, end_time, owner_id,
                       priority, recurring_group_id, status
                FROM Bookings
                WHERE id = ?;
                """,
                (booking_id,),
            ).fetchone()
            if row is None:
                return None
            return _row_to_booking(row)

    def list_bookings_for_group(self, recurring_group_id: str) -> list[Booking]:
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT id, resource_id, title, start_time, end_time, owner_id,
                       priority, recurring_group_id, status
                FROM Bookings
                WHERE recurring_group_id = ?
                ORDER BY start_time ASC, id ASC;
                """,
                (recurring_group_id,),
            ).fetchall()
            return [_row_to_booking(row) for row in rows]

    def list_bookings(
        self,
        resource_id: Optional[int] = None,
        starts_from: Optional[datetime] = None,
        ends_by: Optional[datetime] = None,
        status: Optional[BookingStatus] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> BookingPage:
        """Return one page of bookings matching every filter that is set.

        ``starts_from`` keeps bookings starting at or after it and ``ends_by``
        keeps bookings ending at or before it.
        """
        clauses: list[str] = []
        params: list[object] = []
        if resource_id is not None:
            clauses.append("resource_id = ?")
            params.append(resource_id)
        if starts_from is not None:
            clauses.append("start_time >= ?")
            params.append(_format_ts(starts_from))
        if ends_by is not None:
            clauses.append("end_time <= ?")
            params.append(_format_ts(ends_by))
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        with self._connection() as conn:
            total_row = conn.execute(
                f"SELECT COUNT(*) AS count FROM Bookings {where};",
                tuple(params),
            ).fetchone()
            rows = conn.execute(
                f"""
                SELECT id, resource_id, title, start_time, end_time, owner_id,
                       priority, recurring_group_id, status
                FROM Bookings
                {where}
                ORDER BY start_time ASC, id ASC
                LIMIT ? OFFSET ?;
                """,
                (*params, limit, offset),
            ).fetchall()
            return BookingPage(
                bookings=[_row_to_booking(row) for row in rows],
                total=int(total_row["count"]),
                limit=limit,
                offset=offset,
            )

    def commit_bookings(
        self,
        bookings: Sequence[Booking],
        cancel_booking_ids: Sequence[str] = (),
    ) -> None:
        """Insert bookings all-or-nothing under a database write lock.

        ``BEGIN IMMEDIATE`` serializes writers, and the overlap re-check runs
        inside the same transaction, so two racing requests cannot both land.
        """
        if not bookings and not cancel_booking_ids:
            return
        with self._connection() as conn:
            conn.execute("BEGIN IMMEDIATE;")
            try:
                if cancel_booking_ids:
                    placeholders = ",".join("?" for _ in cancel_booking_ids)
                    conn.execute(
                        f"""
                        UPDATE Bookings
                        SET status = 'cancelled'
                        WHERE id IN ({placeholders}) AND status = 'confirmed';
                        """,
                        tuple(cancel_booking_ids),
                    )
                for booking in bookings:
                    clashes = self._select_overlapping(
                        conn,
                        booking.resource_id,
                        booking.interval,
                    )
                    if clashes:
                        raise ConstraintViolation(booking, clashes)
                    conn.execute(
                        """
                        INSERT INTO Bookings (
                            id, resource_id, title, start_time, end_time,
                            owner_id, priority, recurring_group_id, status
                        )
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
                        """,
                        (
                            booking.booking_id,
                            booking.resource_id,
                            booking.title,
                            _format_ts(booking.interval.start),
                            _format_ts(booking.interval.end),
                            booking.owner_id,
                            int(booking.priority),
                            booking.recurring_group_id,
                            booking.status.value,
                        ),
                    )
            except ConstraintViolation:
                conn.execute("ROLLBACK;")
                raise
            conn.execute("COMMIT;")
        logger.info(
            "Bookings committed | inserted=%s | cancelled=%s",
            len(bookings),
            len(cancel_booking_ids),
        )

    def cancel_bookings(self, booking_ids: Sequence[str]) -> int:
        if not booking_ids:
            return 0
        placeholders = ",".join("?" for _ in booking_ids)
        with self._connection() as conn:
            cursor = conn.execute(
                f"""
                UPDATE Bookings
                SET status = 'cancelled'
                WHERE id IN ({placeholders}) AND status = 'confirmed';
                """,
                tuple(booking_ids),
            )
            return int(cursor.rowcount)

    def count_confirmed_bookings(self, resource_id: Optional[int] = None) -> int:
        """Return confirmed booking count for diagnostics and tests."""
        with self._connection() as conn:
            if resource_id is None:
                row = conn.execute(
                    "SELECT COUNT(*) AS count FROM Bookings WHERE status = 'confirmed';"
                ).fetchone()
            else:
                row = conn.execute(
                    """
                    SELECT COUNT(*) AS count
                    FROM Bookings
                    WHERE status = 'confirmed' AND resource_id = ?;
                    """,
                    (resource_id,),
                ).fetchone()
            return int(row["count"])

    def append_resolution_record(self, record: ResolutionRecord) -> None:
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO ResolutionLogs (conflict_id, outcome, resolved_by, resolved_at, notes)
                VALUES (?, ?, ?, ?, ?);
                """,
                (
                    record.conflict_id,
                    record.outcome.value,
                    record.resolved_by,
                    _format_ts(record.timestamp),
                    record.notes,
                ),
            )

    def list_resolution_records(self, conflict_id: Optional[str] = None) -> list[ResolutionRecord]:
        with self._connection() as conn:
            if conflict_id is None:
                rows = conn.execute(
                    """
                    SELECT conflict_id, outcome, resolved_by, resolved_at, notes
                    FROM ResolutionLogs
                    ORDER BY id ASC;
                    """
                ).fetchall()
            else:
                rows = conn.execute(
                    """
                    SELECT conflict_id, outcome, resolved_by, resolved_at, notes
                    FROM ResolutionLogs
                    WHERE conflict_id = ?
                    ORDER BY id ASC;
                    """,
                    (conflict_id,),
                ).fetchall()
            return [
                ResolutionRecord(
                    conflict_id=str(row["conflict_id"]),
                    outcome=ResolutionOutcome(row["outcome"]),
                    resolved_by=str(row["resolved_by"]),
                    timestamp=_parse_ts(row["resolved_at"]),
                    notes=str(row["notes"]),
                )
                for row in rows
            ]

    def save_waitlist_entry(self, entry: WaitlistEntry) -> None:
        request = entry.booking_request
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO Waitlist (
                    id, resource_id, title, owner_id, start_time, end_time,
                    priority, min_capacity, requested_at, status
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    entry.entry_id,
                    request.resource_id,
                    request.title,
                    request.owner_id,
                    _format_ts(request.interval.start),
                    _format_ts(request.interval.end),
                    int(request.priority),
                    request.min_capacity,
                    _format_ts(entry.requested_at),
                    entry.status.value,
                ),
            )

    def get_waitlist_entry(self, entry_id: str) -> Optional[WaitlistEntry]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM Waitlist WHERE id = ?;",
                (entry_id,),
            ).fetchone()
            if row is None:
                return None
            return _row_to_waitlist_entry(row)

    def update_waitlist_status(self, entry_id: str, status: WaitlistStatus) -> None:
        with self._connection() as conn:
            conn.execute(
                "UPDATE Waitlist SET status = ? WHERE id = ?;",
                (status.value, entry_id),
            )

    def list_waitlist_entries(
        self,
        status: Optional[WaitlistStatus] = None,
    ) -> list[WaitlistEntry]:
        """Return waitlist entries oldest first, optionally filtered by status."""
        with self._connection() as conn:
            if status is None:
                rows = conn.execute(
                    "SELECT * FROM Waitlist ORDER BY requested_at ASC, id ASC;"
                ).fetchall()
            else:
                rows = conn.execute(
                    """
                    SELECT * FROM Waitlist
                    WHERE status = ?
                    ORDER BY requested_at ASC, id ASC;
                    """,
                    (status.value,),
                ).fetchall()
            return [_row_to_waitlist_entry(row) for row in rows]
