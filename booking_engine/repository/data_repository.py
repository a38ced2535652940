"""Repository layer responsible for all database access."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import date, datetime, time
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from booking_engine.domain.constraints import (
    validate_operating_windows,
    validate_priority_entry,
    validate_restriction_policy,
    validate_schedule_exception,
)
from booking_engine.domain.models import (
    ExceptionStatus,
    OperatingWindow,
    PriorityEntry,
    Reservation,
    ReservationStatus,
    Resource,
    RestrictionPolicy,
    ScheduleException,
)
from booking_engine.utils.config import Settings, get_settings
from booking_engine.utils.logger import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class ReservationEventRecord:
    """Status change audit row."""

    reservation_id: str
    from_status: Optional[str]
    to_status: str
    occurred_at: str


def _format_time(value: Optional[time]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


def _parse_time(value: Optional[str]) -> Optional[time]:
    if value is None:
        return None
    return time.fromisoformat(value)


def _row_to_reservation(row: sqlite3.Row) -> Reservation:
    return Reservation(
        reservation_id=str(row["id"]),
        code=str(row["code"]),
        resource_id=str(row["resource_id"]),
        requester_id=str(row["requester_id"]),
        requester_category=str(row["requester_category"]),
        priority_score=int(row["priority_score"]),
        start=datetime.fromisoformat(row["start_at"]),
        end=datetime.fromisoformat(row["end_at"]),
        submitted_at=datetime.fromisoformat(row["submitted_at"]),
        status=ReservationStatus(row["status"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
        preempted_by=row["preempted_by"],
    )


class DataRepository:
    """Encapsulates SQLite access so arbitration logic stays storage-agnostic."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(self._db_path, timeout=30.0)
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            with self._connect() as conn:
                cursor = conn.cursor()

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Resources (
                        id TEXT PRIMARY KEY,
                        category TEXT NOT NULL,
                        capacity INTEGER NOT NULL CHECK (capacity > 0),
                        active INTEGER NOT NULL DEFAULT 1 CHECK (active IN (0,1))
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS OperatingWindows (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        resource_id TEXT NOT NULL,
                        day_of_week INTEGER NOT NULL CHECK (day_of_week BETWEEN 0 AND 6),
                        start_time TEXT NOT NULL,
                        end_time TEXT NOT NULL,
                        FOREIGN KEY (resource_id) REFERENCES Resources(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS ScheduleExceptions (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        resource_id TEXT NOT NULL,
                        exception_date TEXT NOT NULL,
                        status TEXT NOT NULL CHECK (status IN ('CLOSED','CUSTOM_WINDOW')),
                        override_start TEXT,
                        override_end TEXT,
                        UNIQUE (resource_id, exception_date),
                        FOREIGN KEY (resource_id) REFERENCES Resources(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS RestrictionPolicies (
                        resource_id TEXT PRIMARY KEY,
                        allowed_categories TEXT NOT NULL,
                        min_duration_minutes INTEGER NOT NULL,
                        max_duration_minutes INTEGER NOT NULL,
                        min_advance_notice_hours REAL NOT NULL,
                        max_advance_days INTEGER,
                        FOREIGN KEY (resource_id) REFERENCES Resources(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS PriorityEntries (
                        category TEXT PRIMARY KEY,
                        priority_score INTEGER NOT NULL
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Reservations (
                        id TEXT PRIMARY KEY,
                        code TEXT NOT NULL UNIQUE,
                        resource_id TEXT NOT NULL,
                        requester_id TEXT NOT NULL,
                        requester_category TEXT NOT NULL,
                        priority_score INTEGER NOT NULL,
                        start_at TEXT NOT NULL,
                        end_at TEXT NOT NULL,
                        submitted_at TEXT NOT NULL,
                        status TEXT NOT NULL,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        preempted_by TEXT,
                        FOREIGN KEY (resource_id) REFERENCES Resources(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS ReservationEvents (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        reservation_id TEXT NOT NULL,
                        from_status TEXT,
                        to_status TEXT NOT NULL,
                        occurred_at TEXT NOT NULL,
                        FOREIGN KEY (reservation_id) REFERENCES Reservations(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_windows_resource_day
                    ON OperatingWindows(resource_id, day_of_week);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_reservations_resource_start
                    ON Reservations(resource_id, start_at);
                    """
                )
                conn.commit()
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc

    def seed_demo_catalog(self) -> None:
        """Seed a deterministic demo catalog only when no resources exist."""
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT COUNT(*) AS count FROM Resources;")
                if int(cursor.fetchone()["count"]) > 0:
                    logger.info("Catalog already present; skipping seed")
                    return
        except sqlite3.Error as exc:
            raise RuntimeError(f"Catalog seeding failed: {exc}") from exc

        resources = [
            Resource("AUD-101", "AUDITORIUM", 120),
            Resource("LAB-201", "LAB", 30),
            Resource("ROOM-301", "CLASSROOM", 40),
            Resource("EQP-401", "EQUIPMENT", 1),
        ][: self._settings.demo_resource_count]
        priorities = [
            PriorityEntry("STUDENT", 1),
            PriorityEntry("TEACHER", 5),
            PriorityEntry("COORDINATOR", 7),
            PriorityEntry("ADMIN", 10),
        ]
        weekday_window = (time(8, 0), time(18, 0))

        for entry in priorities:
            self.upsert_priority_entry(entry)
        for resource in resources:
            self.upsert_resource(resource)
            windows = [
                OperatingWindow(day, *weekday_window) for day in range(5)
            ]
            windows.append(OperatingWindow(5, time(8, 0), time(12, 0)))
            self.replace_operating_windows(resource.resource_id, windows)
            allowed = {"TEACHER", "COORDINATOR", "ADMIN"}
            if resource.category in {"LAB", "CLASSROOM"}:
                allowed.add("STUDENT")
            self.upsert_restriction_policy(
                RestrictionPolicy(
                    resource_id=resource.resource_id,
                    allowed_categories=frozenset(allowed),
                    min_duration_minutes=30,
                    max_duration_minutes=240,
                    min_advance_notice_hours=24,
                    max_advance_days=90,
                )
            )
        logger.info(
            "Demo catalog seeded | resources=%s | priorities=%s",
            len(resources),
            len(priorities),
        )

    # --- Resource catalog -------------------------------------------------

    def upsert_resource(self, resource: Resource) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO Resources (id, category, capacity, active)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    category = excluded.category,
                    capacity = excluded.capacity,
                    active = excluded.active;
                """,
                (
                    resource.resource_id,
                    resource.category,
                    resource.capacity,
                    1 if resource.active else 0,
                ),
            )
            conn.commit()

    def get_resource(self, resource_id: str) -> Optional[Resource]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT id, category, capacity, active FROM Resources WHERE id = ?;",
                (resource_id,),
            )
            row = cursor.fetchone()
            if row is None:
                return None
            return Resource(
                resource_id=str(row["id"]),
                category=str(row["category"]),
                capacity=int(row["capacity"]),
                active=bool(row["active"]),
            )

    def list_resource_ids(self) -> list[str]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT id FROM Resources ORDER BY id ASC;")
            return [str(row["id"]) for row in cursor.fetchall()]

    # --- Schedules --------------------------------------------------------

    def replace_operating_windows(
        self,
        resource_id: str,
        windows: Iterable[OperatingWindow],
    ) -> None:
        """Swap the weekly schedule of a resource in one transaction."""
        window_list = list(windows)
        validate_operating_windows(window_list)
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "DELETE FROM OperatingWindows WHERE resource_id = ?;",
                (resource_id,),
            )
            cursor.executemany(
                """
                INSERT INTO OperatingWindows (resource_id, day_of_week, start_time, end_time)
                VALUES (?, ?, ?, ?);
                """,
                [
                    (
                        resource_id,
                        window.day_of_week,
                        _format_time(window.start_time),
                        _format_time(window.end_time),
                    )
                    for window in window_list
                ],
            )
            conn.commit()

    def list_operating_windows(
        self,
        resource_id: str,
        day_of_week: Optional[int] = None,
    ) -> List[OperatingWindow]:
        query = """
            SELECT day_of_week, start_time, end_time
            FROM OperatingWindows
            WHERE resource_id = ?
        """
        params: tuple = (resource_id,)
        if day_of_week is not None:
            query += " AND day_of_week = ?"
            params = (resource_id, day_of_week)
        query += " ORDER BY day_of_week ASC, start_time ASC;"
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return [
                OperatingWindow(
                    day_of_week=int(row["day_of_week"]),
                    start_time=_parse_time(row["start_time"]),
                    end_time=_parse_time(row["end_time"]),
                )
                for row in cursor.fetchall()
            ]

    def upsert_schedule_exception(
        self,
        resource_id: str,
        exception: ScheduleException,
    ) -> None:
        validate_schedule_exception(exception)
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO ScheduleExceptions (
                    resource_id, exception_date, status, override_start, override_end
                )
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(resource_id, exception_date) DO UPDATE SET
                    status = excluded.status,
                    override_start = excluded.override_start,
                    override_end = excluded.override_end;
                """,
                (
                    resource_id,
                    exception.exception_date.isoformat(),
                    exception.status.value,
                    _format_time(exception.override_start),
                    _format_time(exception.override_end),
                ),
            )
            conn.commit()

    def get_schedule_exception(
        self,
        resource_id: str,
        exception_date: date,
    ) -> Optional[ScheduleException]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT exception_date, status, override_start, override_end
                FROM ScheduleExceptions
                WHERE resource_id = ? AND exception_date = ?;
                """,
                (resource_id, exception_date.isoformat()),
            )
            row = cursor.fetchone()
            if row is None:
                return None
            return ScheduleException(
                exception_date=date.fromisoformat(row["exception_date"]),
                status=ExceptionStatus(row["status"]),
                override_start=_parse_time(row["override_start"]),
                override_end=_parse_time(row["override_end"]),
            )

    # --- Restrictions and priorities ------------------------------------

    def upsert_restriction_policy(self, policy: RestrictionPolicy) -> None:
        """Replace the single active policy of a resource atomically."""
        validate_restriction_policy(policy)
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO RestrictionPolicies (
                    resource_id,
                    allowed_categories,
                    min_duration_minutes,
                    max_duration_minutes,
                    min_advance_notice_hours,
                    max_advance_days
                )
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(resource_id) DO UPDATE SET
                    allowed_categories = excluded.allowed_categories,
                    min_duration_minutes = excluded.min_duration_minutes,
                    max_duration_minutes = excluded.max_duration_minutes,
                    min_advance_notice_hours = excluded.min_advance_notice_hours,
                    max_advance_days = excluded.max_advance_days;
                """,
                (
                    policy.resource_id,
                    ",".join(sorted(policy.allowed_categories)),
                    policy.min_duration_minutes,
                    policy.max_duration_minutes,
                    policy.min_advance_notice_hours,
                    policy.max_advance_days,
                ),
            )
            conn.commit()

    def get_restriction_policy(self, resource_id: str) -> Optional[RestrictionPolicy]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT * FROM RestrictionPolicies WHERE resource_id = ?;",
                (resource_id,),
            )
            row = cursor.fetchone()
            if row is None:
                return None
            categories = str(row["allowed_categories"])
            return RestrictionPolicy(
                resource_id=str(row["resource_id"]),
                allowed_categories=frozenset(
                    item for item in categories.split(",") if item
                ),
                min_duration_minutes=int(row["min_duration_minutes"]),
                max_duration_minutes=int(row["max_duration_minutes"]),
                min_advance_notice_hours=float(row["min_advance_notice_hours"]),
                max_advance_days=(
                    int(row["max_advance_days"])
                    if row["max_advance_days"] is not None
                    else None
                ),
            )

    def upsert_priority_entry(self, entry: PriorityEntry) -> None:
        validate_priority_entry(entry)
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO PriorityEntries (category, priority_score)
                VALUES (?, ?)
                ON CONFLICT(category) DO UPDATE SET
                    priority_score = excluded.priority_score;
                """,
                (entry.category, entry.priority_score),
            )
            conn.commit()

    def get_priority_entry(self, category: str) -> Optional[PriorityEntry]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT category, priority_score FROM PriorityEntries WHERE category = ?;",
                (category,),
            )
            row = cursor.fetchone()
            if row is None:
                return None
            return PriorityEntry(
                category=str(row["category"]),
                priority_score=int(row["priority_score"]),
            )

    def list_priority_entries(self) -> list[PriorityEntry]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT category, priority_score
                FROM PriorityEntries
                ORDER BY priority_score DESC, category ASC;
                """
            )
            return [
                PriorityEntry(
                    category=str(row["category"]),
                    priority_score=int(row["priority_score"]),
                )
                for row in cursor.fetchall()
            ]

    # --- Reservations -----------------------------------------------------

    def commit_changes(
        self,
        inserted: Sequence[Reservation],
        updates: Sequence[tuple[Reservation, Reservation]],
    ) -> None:
        """Persist one ledger batch (new rows, status changes, audit events) in one transaction."""
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                for reservation in inserted:
                    self._insert_reservation_row(cursor, reservation)
                for previous, updated in updates:
                    self._update_reservation_row(cursor, previous, updated)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Reservation commit failed: {exc}") from exc

    def _insert_reservation_row(self, cursor: sqlite3.Cursor, reservation: Reservation) -> None:
        cursor.execute(
            """
            INSERT INTO Reservations (
                id, code, resource_id, requester_id, requester_category,
                priority_score, start_at, end_at, submitted_at, status,
                created_at, updated_at, preempted_by
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                reservation.reservation_id,
                reservation.code,
                reservation.resource_id,
                reservation.requester_id,
                reservation.requester_category,
                reservation.priority_score,
                reservation.start.isoformat(),
                reservation.end.isoformat(),
                reservation.submitted_at.isoformat(),
                reservation.status.value,
                reservation.created_at.isoformat(),
                reservation.updated_at.isoformat(),
                reservation.preempted_by,
            ),
        )
        cursor.execute(
            """
            INSERT INTO ReservationEvents (reservation_id, from_status, to_status, occurred_at)
            VALUES (?, NULL, ?, ?);
            """,
            (
                reservation.reservation_id,
                reservation.status.value,
                reservation.created_at.isoformat(),
            ),
        )

    def _update_reservation_row(
        self,
        cursor: sqlite3.Cursor,
        previous: Reservation,
        updated: Reservation,
    ) -> None:
        cursor.execute(
            """
            UPDATE Reservations
            SET status = ?, updated_at = ?, preempted_by = ?
            WHERE id = ?;
            """,
            (
                updated.status.value,
                updated.updated_at.isoformat(),
                updated.preempted_by,
                updated.reservation_id,
            ),
        )
        cursor.execute(
            """
            INSERT INTO ReservationEvents (reservation_id, from_status, to_status, occurred_at)
            VALUES (?, ?, ?, ?);
            """,
            (
                updated.reservation_id,
                previous.status.value,
                updated.status.value,
                updated.updated_at.isoformat(),
            ),
        )

    def list_reservations(self, resource_id: Optional[str] = None) -> list[Reservation]:
        """Return reservations in creation order, optionally for one resource."""
        query = "SELECT * FROM Reservations"
        params: tuple = ()
        if resource_id is not None:
            query += " WHERE resource_id = ?"
            params = (resource_id,)
        query += " ORDER BY created_at ASC, rowid ASC;"
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return [_row_to_reservation(row) for row in cursor.fetchall()]

    def list_reservation_events(self, reservation_id: str) -> list[ReservationEventRecord]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT reservation_id, from_status, to_status, occurred_at
                FROM ReservationEvents
                WHERE reservation_id = ?
                ORDER BY id ASC;
                """,
                (reservation_id,),
            )
            return [
                ReservationEventRecord(
                    reservation_id=str(row["reservation_id"]),
                    from_status=row["from_status"],
                    to_status=str(row["to_status"]),
                    occurred_at=str(row["occurred_at"]),
                )
                for row in cursor.fetchall()
            ]

    def count_reservations(self) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) AS count FROM Reservations;")
            return int(cursor.fetchone()["count"])
