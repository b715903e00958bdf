"""Repository layer responsible for all database access."""

from __future__ import annotations

import sqlite3
import uuid
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, Iterator, List, Optional, Sequence
from zoneinfo import ZoneInfo

from backend.domain.errors import (
    ConcurrentModificationError,
    DeviceNotFoundError,
    LedgerValidationError,
)
from backend.domain.models import (
    CheckoutEvent,
    Device,
    DeviceStatus,
    HistoryAction,
    Holder,
    Session,
)
from backend.domain.time_policy import DAY_NAMES
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


_DEVICE_COLUMNS = """
    id,
    label,
    status,
    holder_id,
    holder_name,
    checked_out_at,
    expected_return_at,
    last_returned_at,
    last_holder_id,
    last_holder_name,
    version
"""

_SESSION_COLUMNS = "id, holder_id, holder_name, course, location, day, start_time, end_time"

_HISTORY_COLUMNS = "id, device_id, holder_id, holder_name, action, timestamp"

_DAY_ORDER_SQL = "CASE day {} END".format(
    " ".join(f"WHEN '{name}' THEN {index}" for index, name in enumerate(DAY_NAMES))
)

_DEMO_HOLDERS = [
    ("Prof. James Mugabo", "james.mugabo@kepler.edu", "Computer Science"),
    ("Dr. Marie Claire", "marie.claire@kepler.edu", "Business"),
    ("Prof. Emmanuel Nziza", "emmanuel.nziza@kepler.edu", "Mathematics"),
    ("Dr. Aline Uwimana", "aline.uwimana@kepler.edu", "Health Sciences"),
    ("Prof. David Habimana", "david.habimana@kepler.edu", "Engineering"),
]

# (holder index, course, location, day, start, end)
_DEMO_SESSIONS = [
    (0, "Introduction to Programming", "Lab 1", "Monday", "08:00", "10:00"),
    (0, "Data Structures", "Lab 1", "Wednesday", "14:00", "16:00"),
    (1, "Marketing Fundamentals", "Room 4", "Tuesday", "10:00", "12:00"),
    (2, "Calculus I", "Room 2", "Monday", "10:00", "12:00"),
    (3, "Public Health", "Room 7", "Thursday", "08:00", "10:00"),
    (4, "Electronics", "Workshop", "Friday", "13:00", "15:00"),
]

_DEMO_DEVICE_COUNT = 10


def _to_db_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Store every instant as fixed-width UTC text so string order is time order."""
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _is_lock_contention(exc: sqlite3.OperationalError) -> bool:
    message = str(exc).lower()
    return "locked" in message or "busy" in message


class DataRepository:
    """Encapsulates SQLite access so business logic stays storage-agnostic."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._zone = ZoneInfo(self._settings.timezone)

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        # Autocommit mode; multi-statement writes open BEGIN IMMEDIATE themselves.
        connection = sqlite3.connect(
            self._db_path,
            timeout=self._settings.sqlite_busy_timeout_seconds,
            isolation_level=None,
        )
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        connection = self._connect()
        try:
            yield connection
        finally:
            connection.close()

    @contextmanager
    def transaction(self) -> Iterator[LedgerTransaction]:
        """Open one serialized write unit; everything inside commits or nothing does."""
        connection = self._connect()
        try:
            try:
                connection.execute("BEGIN IMMEDIATE;")
            except sqlite3.OperationalError as exc:
                if _is_lock_contention(exc):
                    raise ConcurrentModificationError(
                        f"Could not acquire the write lock: {exc}"
                    ) from exc
                raise
            try:
                yield LedgerTransaction(self, connection)
            except BaseException:
                if connection.in_transaction:
                    connection.execute("ROLLBACK;")
                raise
            try:
                connection.execute("COMMIT;")
            except sqlite3.OperationalError as exc:
                if connection.in_transaction:
                    connection.execute("ROLLBACK;")
                if _is_lock_contention(exc):
                    raise ConcurrentModificationError(f"Commit failed: {exc}") from exc
                raise
        finally:
            connection.close()

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            with self._connection() as conn:
                conn.execute("PRAGMA journal_mode = WAL;")
                cursor = conn.cursor()

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Holders (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        email TEXT UNIQUE,
                        department TEXT,
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Devices (
                        id TEXT PRIMARY KEY,
                        label TEXT NOT NULL UNIQUE,
                        status TEXT NOT NULL DEFAULT 'available'
                            CHECK (status IN ('available', 'in_use', 'overdue')),
                        holder_id TEXT,
                        holder_name TEXT,
                        checked_out_at TEXT,
                        expected_return_at TEXT,
                        last_returned_at TEXT,
                        last_holder_id TEXT,
                        last_holder_name TEXT,
                        version INTEGER NOT NULL DEFAULT 0,
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS TimetableEntries (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        holder_id TEXT NOT NULL,
                        holder_name TEXT NOT NULL,
                        course TEXT NOT NULL,
                        location TEXT,
                        day TEXT NOT NULL,
                        start_time TEXT NOT NULL,
                        end_time TEXT NOT NULL,
                        FOREIGN KEY (holder_id) REFERENCES Holders(id) ON DELETE CASCADE
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS DeviceHistory (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        device_id TEXT NOT NULL,
                        holder_id TEXT NOT NULL,
                        holder_name TEXT NOT NULL,
                        action TEXT NOT NULL CHECK (action IN ('pickup', 'return')),
                        timestamp TEXT NOT NULL
                    );
                    """
                )
                self._detach_history_from_devices(conn)

                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_devices_status
                    ON Devices(status);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_timetable_holder_day
                    ON TimetableEntries(holder_id, day);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_history_device_holder_action_ts
                    ON DeviceHistory(device_id, holder_id, action, timestamp);
                    """
                )
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc

    @staticmethod
    def _detach_history_from_devices(conn: sqlite3.Connection) -> None:
        """Rebuild DeviceHistory created by older schemas that cascaded device deletes."""
        foreign_keys = conn.execute("PRAGMA foreign_key_list(DeviceHistory);").fetchall()
        if not foreign_keys:
            return
        logger.info("Migrating DeviceHistory | dropping device foreign key")
        conn.execute("BEGIN IMMEDIATE;")
        try:
            conn.execute(
                """
                CREATE TABLE DeviceHistory_migrated (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    device_id TEXT NOT NULL,
                    holder_id TEXT NOT NULL,
                    holder_name TEXT NOT NULL,
                    action TEXT NOT NULL CHECK (action IN ('pickup', 'return')),
                    timestamp TEXT NOT NULL
                );
                """
            )
            conn.execute(
                """
                INSERT INTO DeviceHistory_migrated
                    (id, device_id, holder_id, holder_name, action, timestamp)
                SELECT id, device_id, holder_id, holder_name, action, timestamp
                FROM DeviceHistory;
                """
            )
            conn.execute("DROP TABLE DeviceHistory;")
            conn.execute("ALTER TABLE DeviceHistory_migrated RENAME TO DeviceHistory;")
            conn.execute("COMMIT;")
        except sqlite3.Error:
            conn.execute("ROLLBACK;")
            raise

    def seed_demo_data_if_empty(self) -> int:
        """Seed demo holders, devices and timetable only when no devices exist."""
        try:
            with self.transaction() as txn:
                conn = txn.connection
                row = conn.execute("SELECT COUNT(*) AS count FROM Devices;").fetchone()
                if int(row["count"]) > 0:
                    logger.info("Demo data already present; skipping seed")
                    return 0

                holder_ids: list[str] = []
                for name, email, department in _DEMO_HOLDERS:
                    holder_id = uuid.uuid4().hex
                    conn.execute(
                        """
                        INSERT OR IGNORE INTO Holders (id, name, email, department)
                        VALUES (?, ?, ?, ?);
                        """,
                        (holder_id, name, email, department),
                    )
                    existing = conn.execute(
                        "SELECT id FROM Holders WHERE email = ?;",
                        (email,),
                    ).fetchone()
                    holder_ids.append(str(existing["id"]))

                conn.executemany(
                    """
                    INSERT INTO TimetableEntries (
                        holder_id, holder_name, course, location, day, start_time, end_time
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?);
                    """,
                    [
                        (
                            holder_ids[holder_index],
                            _DEMO_HOLDERS[holder_index][0],
                            course,
                            location,
                            day,
                            start_time,
                            end_time,
                        )
                        for holder_index, course, location, day, start_time, end_time in _DEMO_SESSIONS
                    ],
                )

                conn.executemany(
                    "INSERT INTO Devices (id, label) VALUES (?, ?);",
                    [
                        (uuid.uuid4().hex, f"TAP-{number:03d}")
                        for number in range(1, _DEMO_DEVICE_COUNT + 1)
                    ],
                )
            logger.info("Demo seed completed with %s devices", _DEMO_DEVICE_COUNT)
            return _DEMO_DEVICE_COUNT
        except sqlite3.Error as exc:
            raise RuntimeError(f"Demo data seeding failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    def _from_db_timestamp(self, value: Optional[str]) -> Optional[datetime]:
        if value is None:
            return None
        return datetime.fromisoformat(value).astimezone(self._zone)

    def _row_to_device(self, row: sqlite3.Row) -> Device:
        return Device(
            device_id=str(row["id"]),
            label=str(row["label"]),
            status=DeviceStatus(row["status"]),
            holder_id=row["holder_id"],
            holder_name=row["holder_name"],
            checked_out_at=self._from_db_timestamp(row["checked_out_at"]),
            expected_return_at=self._from_db_timestamp(row["expected_return_at"]),
            last_returned_at=self._from_db_timestamp(row["last_returned_at"]),
            last_holder_id=row["last_holder_id"],
            last_holder_name=row["last_holder_name"],
            version=int(row["version"]),
        )

    @staticmethod
    def _row_to_session(row: sqlite3.Row) -> Session:
        return Session(
            session_id=int(row["id"]),
            holder_id=str(row["holder_id"]),
            holder_name=str(row["holder_name"]),
            course=str(row["course"]),
            location=row["location"],
            day=str(row["day"]),
            start_time=str(row["start_time"]),
            end_time=str(row["end_time"]),
        )

    def _row_to_event(self, row: sqlite3.Row) -> CheckoutEvent:
        return CheckoutEvent(
            event_id=int(row["id"]),
            device_id=str(row["device_id"]),
            holder_id=str(row["holder_id"]),
            holder_name=str(row["holder_name"]),
            action=HistoryAction(row["action"]),
            timestamp=self._from_db_timestamp(row["timestamp"]),
        )

    @staticmethod
    def _row_to_holder(row: sqlite3.Row) -> Holder:
        return Holder(
            holder_id=str(row["id"]),
            name=str(row["name"]),
            email=row["email"],
            department=row["department"],
        )

    # ------------------------------------------------------------------
    # Connection-scoped statements shared by plain reads and transactions
    # ------------------------------------------------------------------

    def _select_device(self, conn: sqlite3.Connection, device_id: str) -> Optional[Device]:
        row = conn.execute(
            f"SELECT {_DEVICE_COLUMNS} FROM Devices WHERE id = ?;",
            (device_id,),
        ).fetchone()
        if row is None:
            return None
        return self._row_to_device(row)

    def _select_device_held_by(
        self,
        conn: sqlite3.Connection,
        holder_id: str,
    ) -> list[Device]:
        rows = conn.execute(
            f"""
            SELECT {_DEVICE_COLUMNS}
            FROM Devices
            WHERE holder_id = ? AND status IN ('in_use', 'overdue')
            ORDER BY label ASC;
            """,
            (holder_id,),
        ).fetchall()
        return [self._row_to_device(row) for row in rows]

    def _update_device(
        self,
        conn: sqlite3.Connection,
        device: Device,
        expected_version: int,
    ) -> Device:
        try:
            cursor = conn.execute(
                """
                UPDATE Devices
                SET label = ?,
                    status = ?,
                    holder_id = ?,
                    holder_name = ?,
                    checked_out_at = ?,
                    expected_return_at = ?,
                    last_returned_at = ?,
                    last_holder_id = ?,
                    last_holder_name = ?,
                    version = version + 1
                WHERE id = ? AND version = ?;
                """,
                (
                    device.label,
                    device.status.value,
                    device.holder_id,
                    device.holder_name,
                    _to_db_timestamp(device.checked_out_at),
                    _to_db_timestamp(device.expected_return_at),
                    _to_db_timestamp(device.last_returned_at),
                    device.last_holder_id,
                    device.last_holder_name,
                    device.device_id,
                    expected_version,
                ),
            )
        except sqlite3.IntegrityError as exc:
            raise LedgerValidationError(
                f"Device label '{device.label}' already exists"
            ) from exc
        if cursor.rowcount == 0:
            raise ConcurrentModificationError(
                f"Device {device.device_id} changed concurrently (expected version {expected_version})"
            )
        return replace(device, version=expected_version + 1)

    def _insert_history_event(
        self,
        conn: sqlite3.Connection,
        event: CheckoutEvent,
    ) -> CheckoutEvent:
        cursor = conn.execute(
            """
            INSERT INTO DeviceHistory (device_id, holder_id, holder_name, action, timestamp)
            VALUES (?, ?, ?, ?, ?);
            """,
            (
                event.device_id,
                event.holder_id,
                event.holder_name,
                event.action.value,
                _to_db_timestamp(event.timestamp),
            ),
        )
        return replace(event, event_id=int(cursor.lastrowid))

    def _select_recent_history_event(
        self,
        conn: sqlite3.Connection,
        device_id: str,
        holder_id: str,
        action: HistoryAction,
        since: datetime,
    ) -> Optional[CheckoutEvent]:
        row = conn.execute(
            f"""
            SELECT {_HISTORY_COLUMNS}
            FROM DeviceHistory
            WHERE device_id = ?
              AND holder_id = ?
              AND action = ?
              AND timestamp >= ?
            ORDER BY timestamp DESC, id DESC
            LIMIT 1;
            """,
            (device_id, holder_id, action.value, _to_db_timestamp(since)),
        ).fetchone()
        if row is None:
            return None
        return self._row_to_event(row)

    # ------------------------------------------------------------------
    # Devices
    # ------------------------------------------------------------------

    def create_device(self, label: str) -> Device:
        device_id = uuid.uuid4().hex
        try:
            with self._connection() as conn:
                conn.execute(
                    "INSERT INTO Devices (id, label, status) VALUES (?, ?, 'available');",
                    (device_id, label),
                )
        except sqlite3.IntegrityError as exc:
            raise LedgerValidationError(f"Device label '{label}' already exists") from exc
        return Device(device_id=device_id, label=label)

    def read_device(self, device_id: str) -> Optional[Device]:
        with self._connection() as conn:
            return self._select_device(conn, device_id)

    def list_devices(self) -> List[Device]:
        with self._connection() as conn:
            rows = conn.execute(
                f"SELECT {_DEVICE_COLUMNS} FROM Devices ORDER BY label ASC;"
            ).fetchall()
            return [self._row_to_device(row) for row in rows]

    def list_devices_by_status(self, statuses: Sequence[DeviceStatus]) -> List[Device]:
        if not statuses:
            return []
        placeholders = ",".join("?" for _ in statuses)
        with self._connection() as conn:
            rows = conn.execute(
                f"""
                SELECT {_DEVICE_COLUMNS}
                FROM Devices
                WHERE status IN ({placeholders})
                ORDER BY label ASC;
                """,
                tuple(DeviceStatus(status).value for status in statuses),
            ).fetchall()
            return [self._row_to_device(row) for row in rows]

    def atomic_update_device(
        self,
        device_id: str,
        mutator: Callable[[Device], Optional[Device]],
    ) -> Optional[Device]:
        """Read-modify-write one device under the write lock.

        ``mutator`` receives the current snapshot and returns the new one, or
        ``None`` to leave the row untouched.
        """
        with self.transaction() as txn:
            current = txn.read_device(device_id)
            if current is None:
                raise DeviceNotFoundError(f"Device {device_id} does not exist")
            updated = mutator(current)
            if updated is None:
                return None
            return txn.save_device(updated, expected_version=current.version)

    def delete_device(self, device_id: str) -> bool:
        with self._connection() as conn:
            cursor = conn.execute("DELETE FROM Devices WHERE id = ?;", (device_id,))
            return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Holders
    # ------------------------------------------------------------------

    def create_holder(
        self,
        name: str,
        email: Optional[str] = None,
        department: Optional[str] = None,
    ) -> Holder:
        holder_id = uuid.uuid4().hex
        try:
            with self._connection() as conn:
                conn.execute(
                    "INSERT INTO Holders (id, name, email, department) VALUES (?, ?, ?, ?);",
                    (holder_id, name, email, department),
                )
        except sqlite3.IntegrityError as exc:
            raise LedgerValidationError(f"Holder email '{email}' already exists") from exc
        return Holder(holder_id=holder_id, name=name, email=email, department=department)

    def get_holder(self, holder_id: str) -> Optional[Holder]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT id, name, email, department FROM Holders WHERE id = ?;",
                (holder_id,),
            ).fetchone()
            if row is None:
                return None
            return self._row_to_holder(row)

    def list_holders(self) -> List[Holder]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT id, name, email, department FROM Holders ORDER BY name ASC;"
            ).fetchall()
            return [self._row_to_holder(row) for row in rows]

    def update_holder(self, holder: Holder) -> bool:
        """Update one holder and copy the name onto their timetable entries."""
        try:
            with self.transaction() as txn:
                cursor = txn.connection.execute(
                    "UPDATE Holders SET name = ?, email = ?, department = ? WHERE id = ?;",
                    (holder.name, holder.email, holder.department, holder.holder_id),
                )
                if cursor.rowcount == 0:
                    return False
                txn.connection.execute(
                    "UPDATE TimetableEntries SET holder_name = ? WHERE holder_id = ?;",
                    (holder.name, holder.holder_id),
                )
                return True
        except sqlite3.IntegrityError as exc:
            raise LedgerValidationError(f"Holder email '{holder.email}' already exists") from exc

    def _delete_holder(self, conn: sqlite3.Connection, holder_id: str) -> bool:
        cursor = conn.execute("DELETE FROM Holders WHERE id = ?;", (holder_id,))
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Timetable
    # ------------------------------------------------------------------

    def create_session(
        self,
        holder_id: str,
        holder_name: str,
        course: str,
        day: str,
        start_time: str,
        end_time: str,
        location: Optional[str] = None,
    ) -> Session:
        with self._connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO TimetableEntries (
                    holder_id, holder_name, course, location, day, start_time, end_time
                )
                VALUES (?, ?, ?, ?, ?, ?, ?);
                """,
                (holder_id, holder_name, course, location, day, start_time, end_time),
            )
            return Session(
                session_id=int(cursor.lastrowid),
                holder_id=holder_id,
                holder_name=holder_name,
                course=course,
                location=location,
                day=day,
                start_time=start_time,
                end_time=end_time,
            )

    def update_session(self, session: Session) -> bool:
        with self._connection() as conn:
            cursor = conn.execute(
                """
                UPDATE TimetableEntries
                SET holder_id = ?,
                    holder_name = ?,
                    course = ?,
                    location = ?,
                    day = ?,
                    start_time = ?,
                    end_time = ?
                WHERE id = ?;
                """,
                (
                    session.holder_id,
                    session.holder_name,
                    session.course,
                    session.location,
                    session.day,
                    session.start_time,
                    session.end_time,
                    session.session_id,
                ),
            )
            return cursor.rowcount > 0

    def get_session(self, session_id: int) -> Optional[Session]:
        with self._connection() as conn:
            row = conn.execute(
                f"SELECT {_SESSION_COLUMNS} FROM TimetableEntries WHERE id = ?;",
                (session_id,),
            ).fetchone()
            if row is None:
                return None
            return self._row_to_session(row)

    def delete_session(self, session_id: int) -> bool:
        with self._connection() as conn:
            cursor = conn.execute(
                "DELETE FROM TimetableEntries WHERE id = ?;",
                (session_id,),
            )
            return cursor.rowcount > 0

    def list_sessions(self) -> List[Session]:
        with self._connection() as conn:
            rows = conn.execute(
                f"""
                SELECT {_SESSION_COLUMNS}
                FROM TimetableEntries
                ORDER BY {_DAY_ORDER_SQL} ASC, start_time ASC, id ASC;
                """
            ).fetchall()
            return [self._row_to_session(row) for row in rows]

    def list_sessions_for_holder(self, holder_id: str) -> List[Session]:
        with self._connection() as conn:
            rows = conn.execute(
                f"""
                SELECT {_SESSION_COLUMNS}
                FROM TimetableEntries
                WHERE holder_id = ?
                ORDER BY {_DAY_ORDER_SQL} ASC, start_time ASC, id ASC;
                """,
                (holder_id,),
            ).fetchall()
            return [self._row_to_session(row) for row in rows]

    def get_sessions_for_holder_on_day(self, holder_id: str, day_name: str) -> List[Session]:
        """Schedule lookup used by checkout and reconciliation; empty when free."""
        with self._connection() as conn:
            rows = conn.execute(
                f"""
                SELECT {_SESSION_COLUMNS}
                FROM TimetableEntries
                WHERE holder_id = ? AND day = ?
                ORDER BY start_time ASC, id ASC;
                """,
                (holder_id, day_name),
            ).fetchall()
            return [self._row_to_session(row) for row in rows]

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def append_history_event(self, event: CheckoutEvent) -> CheckoutEvent:
        with self._connection() as conn:
            return self._insert_history_event(conn, event)

    def find_recent_history_event(
        self,
        device_id: str,
        holder_id: str,
        action: HistoryAction,
        since: datetime,
    ) -> Optional[CheckoutEvent]:
        with self._connection() as conn:
            return self._select_recent_history_event(conn, device_id, holder_id, action, since)

    def list_history_events(
        self,
        limit: Optional[int] = None,
        device_id: Optional[str] = None,
    ) -> List[CheckoutEvent]:
        """Return history newest first."""
        query = f"SELECT {_HISTORY_COLUMNS} FROM DeviceHistory"
        params: list[object] = []
        if device_id is not None:
            query += " WHERE device_id = ?"
            params.append(device_id)
        query += " ORDER BY timestamp DESC, id DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        with self._connection() as conn:
            rows = conn.execute(query + ";", tuple(params)).fetchall()
            return [self._row_to_event(row) for row in rows]

    def list_history_events_chronological(self) -> List[CheckoutEvent]:
        with self._connection() as conn:
            rows = conn.execute(
                f"SELECT {_HISTORY_COLUMNS} FROM DeviceHistory ORDER BY timestamp ASC, id ASC;"
            ).fetchall()
            return [self._row_to_event(row) for row in rows]

    def delete_history_events(self, event_ids: Iterable[int]) -> int:
        ids = list(event_ids)
        if not ids:
            return 0
        placeholders = ",".join("?" for _ in ids)
        with self.transaction() as txn:
            cursor = txn.connection.execute(
                f"DELETE FROM DeviceHistory WHERE id IN ({placeholders});",
                tuple(ids),
            )
            return int(cursor.rowcount)

    def count_history_events(
        self,
        device_id: Optional[str] = None,
        action: Optional[HistoryAction] = None,
    ) -> int:
        """Return persisted history count for diagnostics and tests."""
        query = "SELECT COUNT(*) AS count FROM DeviceHistory WHERE 1 = 1"
        params: list[object] = []
        if device_id is not None:
            query += " AND device_id = ?"
            params.append(device_id)
        if action is not None:
            query += " AND action = ?"
            params.append(action.value)
        with self._connection() as conn:
            return int(conn.execute(query + ";", tuple(params)).fetchone()["count"])


class LedgerTransaction:
    """Repository statements bound to one open ``BEGIN IMMEDIATE`` transaction."""

    def __init__(self, repository: DataRepository, connection: sqlite3.Connection) -> None:
        self._repository = repository
        self._connection = connection

    @property
    def connection(self) -> sqlite3.Connection:
        return self._connection

    def read_device(self, device_id: str) -> Optional[Device]:
        return self._repository._select_device(self._connection, device_id)

    def devices_held_by(self, holder_id: str) -> list[Device]:
        return self._repository._select_device_held_by(self._connection, holder_id)

    def delete_holder(self, holder_id: str) -> bool:
        return self._repository._delete_holder(self._connection, holder_id)

    def save_device(self, device: Device, *, expected_version: int) -> Device:
        return self._repository._update_device(self._connection, device, expected_version)

    def append_history_event(self, event: CheckoutEvent) -> CheckoutEvent:
        return self._repository._insert_history_event(self._connection, event)

    def find_recent_history_event(
        self,
        device_id: str,
        holder_id: str,
        action: HistoryAction,
        since: datetime,
    ) -> Optional[CheckoutEvent]:
        return self._repository._select_recent_history_event(
            self._connection,
            device_id,
            holder_id,
            action,
            since,
        )
