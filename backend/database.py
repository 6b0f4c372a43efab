"""
Credential Ledger Database

Uses SQLite as the hosting ledger for registrations, credential records,
pending oracle requests, used commitments and the audit event log.

All state transitions are serialized through a single write lock and run
inside one SQLite transaction each: a failed call rolls back and leaves every
entity exactly as it was.
"""

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

logger = logging.getLogger("securevote.ledger")

DEFAULT_DB_PATH = Path(__file__).parent / "credential_ledger.db"

SCHEMA = """
    CREATE TABLE IF NOT EXISTS registrations (
        id                INTEGER PRIMARY KEY AUTOINCREMENT,
        national_id       TEXT NOT NULL,
        date_of_birth     TEXT NOT NULL,
        address_hash      TEXT NOT NULL,
        eligibility_flags TEXT NOT NULL,
        status            TEXT NOT NULL DEFAULT 'submitted',
        created_at        TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS credentials (
        id          INTEGER PRIMARY KEY REFERENCES registrations(id),
        value       TEXT NOT NULL DEFAULT '',
        issued      INTEGER NOT NULL DEFAULT 0,
        issued_at   TEXT
    );

    CREATE TABLE IF NOT EXISTS pending_requests (
        request_id   TEXT PRIMARY KEY,
        kind         TEXT NOT NULL,
        target_id    INTEGER NOT NULL REFERENCES registrations(id),
        context      TEXT NOT NULL,
        created_at   TEXT NOT NULL,
        processed_at TEXT
    );

    CREATE TABLE IF NOT EXISTS used_commitments (
        commitment  TEXT PRIMARY KEY,
        used_by     TEXT NOT NULL,
        used_at     TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS events (
        id          INTEGER PRIMARY KEY AUTOINCREMENT,
        kind        TEXT NOT NULL,
        subject     TEXT NOT NULL,
        payload     TEXT NOT NULL,
        created_at  TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS service_keys (
        id                 INTEGER PRIMARY KEY CHECK (id = 1),
        oracle_public_key  TEXT NOT NULL,
        oracle_private_key TEXT,
        registrar_secret   TEXT NOT NULL,
        created_at         TEXT NOT NULL
    );
"""


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S.%f")


class Ledger:
    """Handle on one ledger database, passed explicitly to every component."""

    def __init__(self, path=DEFAULT_DB_PATH):
        self.path = Path(path)
        self._local = threading.local()
        self._write_lock = threading.RLock()

    def get_connection(self) -> sqlite3.Connection:
        if getattr(self._local, "conn", None) is None:
            conn = sqlite3.connect(str(self.path), check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA foreign_keys=ON")
            self._local.conn = conn
        return self._local.conn

    def close(self):
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None

    @contextmanager
    def transaction(self):
        """Serialize a state transition: commit on success, roll back on any error."""
        with self._write_lock:
            conn = self.get_connection()
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def init_db(self):
        """Create tables if they do not exist."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.transaction() as conn:
            conn.executescript(SCHEMA)

    # ------------------------------------------------------------------
    # Audit events
    # ------------------------------------------------------------------

    def record_event(self, conn: sqlite3.Connection, kind: str, subject, /, **payload) -> str:
        """Append an audit event inside the caller's transaction; return its timestamp."""
        created_at = utc_now()
        conn.execute(
            "INSERT INTO events (kind, subject, payload, created_at) VALUES (?, ?, ?, ?)",
            (kind, str(subject), json.dumps(payload, sort_keys=True), created_at),
        )
        return created_at

    def events(self, kind: Optional[str] = None, subject=None) -> list:
        query = "SELECT id, kind, subject, payload, created_at FROM events"
        clauses, params = [], []
        if kind is not None:
            clauses.append("kind = ?")
            params.append(kind)
        if subject is not None:
            clauses.append("subject = ?")
            params.append(str(subject))
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY id"
        rows = self.get_connection().execute(query, params).fetchall()
        return [
            {
                "id": row["id"],
                "kind": row["kind"],
                "subject": row["subject"],
                "payload": json.loads(row["payload"]),
                "created_at": row["created_at"],
            }
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Service key operations
    # ------------------------------------------------------------------

    def store_service_keys(self, oracle_public_key: str, oracle_private_key: Optional[str],
                           registrar_secret: str):
        with self.transaction() as conn:
            conn.execute(
                """INSERT INTO service_keys
                       (id, oracle_public_key, oracle_private_key, registrar_secret, created_at)
                   VALUES (1, ?, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE
                   SET oracle_public_key=excluded.oracle_public_key,
                       oracle_private_key=excluded.oracle_private_key,
                       registrar_secret=excluded.registrar_secret,
                       created_at=excluded.created_at""",
                (oracle_public_key, oracle_private_key, registrar_secret, utc_now()),
            )

    def get_service_keys(self) -> Optional[dict]:
        """Return the stored service keys, or None before bootstrap."""
        row = self.get_connection().execute(
            "SELECT oracle_public_key, oracle_private_key, registrar_secret "
            "FROM service_keys WHERE id=1"
        ).fetchone()
        if row is None:
            return None
        return dict(row)
