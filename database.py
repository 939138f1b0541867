"""
Database setup and QSO storage for Ham Radio Cloud.

This is the persistence side of ADIF import: create_qso() raises
QuotaExceeded or ConstraintViolation, which the importer reports per record.
"""

import json
import os
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from adif_decoder import FLOAT, INT, OPTIONAL_FIELDS, Contact
from adif_import import ConstraintViolation, QuotaExceeded


# Use a function to get the path so tests can override it before imports
def _get_database_path():
    return os.getenv("DATABASE_PATH", "ham_radio_cloud.db")


_SQL_TYPES = {FLOAT: "REAL", INT: "INTEGER"}
_OPTIONAL_COLUMNS = [(attr, _SQL_TYPES.get(kind, "TEXT")) for attr, _, kind in OPTIONAL_FIELDS]
_DATETIME_FORMAT = "%Y-%m-%dT%H:%M:%S"


@dataclass
class QSOFilter:
    """Filter for listing a user's QSOs (e.g. for ADIF export)."""
    callsign: Optional[str] = None
    band: Optional[str] = None
    mode: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    limit: Optional[int] = None
    offset: int = 0


def get_connection() -> sqlite3.Connection:
    """Get a database connection with row factory."""
    conn = sqlite3.connect(_get_database_path())
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def get_db():
    """Context manager for database connections."""
    conn = get_connection()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


@contextmanager
def get_db_exclusive():
    """Context manager with IMMEDIATE transaction for exclusive write access.

    Used for the quota check, which reads the QSO count and then inserts.
    """
    conn = get_connection()
    try:
        conn.execute("BEGIN IMMEDIATE")
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_db():
    """Initialize the database schema."""
    optional_columns = ",\n".join(f"                {name} {sql_type}" for name, sql_type in _OPTIONAL_COLUMNS)
    with get_db() as conn:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY,
                callsign TEXT NOT NULL UNIQUE,
                qso_limit INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL
            )
        """)

        conn.execute(f"""
            CREATE TABLE IF NOT EXISTS qsos (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                callsign TEXT NOT NULL,
                qso_datetime_utc TEXT NOT NULL,
                qso_datetime_off_utc TEXT,
{optional_columns},
                extra_fields TEXT,
                created_at TEXT NOT NULL,
                FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
            )
        """)
        # One QSO per user, station, time, band and mode
        conn.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS idx_qsos_unique
            ON qsos(user_id, callsign, qso_datetime_utc, IFNULL(band, ''), IFNULL(mode, ''))
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_qsos_user_time ON qsos(user_id, qso_datetime_utc)")

        conn.execute("""
            CREATE TABLE IF NOT EXISTS audit_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                user_id INTEGER,
                action TEXT NOT NULL,
                details TEXT,
                ip_address TEXT
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_audit_log_timestamp ON audit_log(timestamp)")


def reset_db():
    """Reset the database (for testing)."""
    db_path = _get_database_path()
    if os.path.exists(db_path):
        os.remove(db_path)
    init_db()


def _format_datetime(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc)
    return dt.strftime(_DATETIME_FORMAT)


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.strptime(value, _DATETIME_FORMAT).replace(tzinfo=timezone.utc)


def _row_to_contact(row: sqlite3.Row) -> Contact:
    optional = {attr: row[attr] for attr, _ in _OPTIONAL_COLUMNS if row[attr] is not None}
    return Contact(
        callsign=row["callsign"],
        qso_datetime=_parse_datetime(row["qso_datetime_utc"]),
        qso_datetime_off=_parse_datetime(row["qso_datetime_off_utc"]),
        extra_fields=json.loads(row["extra_fields"]) if row["extra_fields"] else {},
        **optional,
    )


def ensure_user(user_id: int, callsign: str, qso_limit: int = 0) -> None:
    """Create the user if it does not exist yet."""
    with get_db() as conn:
        conn.execute(
            "INSERT OR IGNORE INTO users (id, callsign, qso_limit, created_at) VALUES (?, ?, ?, ?)",
            (user_id, callsign.upper(), qso_limit, datetime.now(timezone.utc).isoformat()),
        )


def set_qso_limit(user_id: int, qso_limit: int) -> None:
    """Set a user's QSO quota; 0 means unlimited."""
    with get_db() as conn:
        conn.execute("UPDATE users SET qso_limit = ? WHERE id = ?", (qso_limit, user_id))


def get_user(user_id: int) -> Optional[Dict[str, Any]]:
    """Get a user with its current QSO count."""
    with get_db() as conn:
        row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
    if row is None:
        return None
    user = dict(row)
    user["qso_count"] = count_qsos(user_id)
    return user


def count_qsos(user_id: int) -> int:
    """Number of QSOs stored for a user."""
    with get_db() as conn:
        return conn.execute("SELECT COUNT(*) FROM qsos WHERE user_id = ?", (user_id,)).fetchone()[0]


def create_qso(user_id: int, contact: Contact) -> int:
    """
    Store a contact for a user.

    Args:
        user_id: Owning user
        contact: Decoded and validated contact

    Returns:
        The new QSO id

    Raises:
        QuotaExceeded: The user has reached its QSO limit
        ConstraintViolation: Unknown user or duplicate QSO
    """
    columns = ["user_id", "callsign", "qso_datetime_utc", "qso_datetime_off_utc"]
    columns += [attr for attr, _ in _OPTIONAL_COLUMNS]
    columns += ["extra_fields", "created_at"]
    values = [
        user_id,
        contact.callsign,
        _format_datetime(contact.qso_datetime),
        _format_datetime(contact.qso_datetime_off),
    ]
    values += [getattr(contact, attr) for attr, _ in _OPTIONAL_COLUMNS]
    values += [
        json.dumps(contact.extra_fields, sort_keys=True) if contact.extra_fields else None,
        datetime.now(timezone.utc).isoformat(),
    ]

    with get_db_exclusive() as conn:
        user = conn.execute("SELECT qso_limit FROM users WHERE id = ?", (user_id,)).fetchone()
        if user is None:
            raise ConstraintViolation(f"unknown user {user_id}")

        qso_limit = user["qso_limit"]
        if qso_limit:
            qso_count = conn.execute("SELECT COUNT(*) FROM qsos WHERE user_id = ?", (user_id,)).fetchone()[0]
            if qso_count >= qso_limit:
                raise QuotaExceeded(f"QSO limit reached ({qso_count}/{qso_limit})")

        try:
            cursor = conn.execute(
                f"INSERT INTO qsos ({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)})",
                values,
            )
        except sqlite3.IntegrityError:
            raise ConstraintViolation(
                f"duplicate QSO with {contact.callsign} at {_format_datetime(contact.qso_datetime)}"
            )
        return cursor.lastrowid


def list_qsos(user_id: int, qso_filter: Optional[QSOFilter] = None) -> List[Contact]:
    """
    List a user's QSOs in chronological order.

    Args:
        user_id: Owning user
        qso_filter: Optional callsign/band/mode/date range/limit filter

    Returns:
        List of Contact objects
    """
    qso_filter = qso_filter or QSOFilter()
    query = "SELECT * FROM qsos WHERE user_id = ?"
    params: List[Any] = [user_id]

    if qso_filter.callsign:
        query += " AND callsign = ?"
        params.append(qso_filter.callsign.strip().upper())

    if qso_filter.band:
        query += " AND band = ?"
        params.append(qso_filter.band.strip().lower())

    if qso_filter.mode:
        query += " AND mode = ?"
        params.append(qso_filter.mode.strip().upper())

    if qso_filter.date_from:
        query += " AND qso_datetime_utc >= ?"
        params.append(qso_filter.date_from.strftime("%Y-%m-%d"))

    if qso_filter.date_to:
        # Inclusive: everything before the start of the next day
        query += " AND qso_datetime_utc < ?"
        params.append((qso_filter.date_to + timedelta(days=1)).strftime("%Y-%m-%d"))

    query += " ORDER BY qso_datetime_utc ASC, id ASC"
    if qso_filter.limit:
        query += " LIMIT ? OFFSET ?"
        params.extend([qso_filter.limit, max(0, qso_filter.offset)])

    with get_db() as conn:
        cursor = conn.execute(query, params)
        return [_row_to_contact(row) for row in cursor.fetchall()]
