"""
Pending Oracle Requests

Typed ledger of in-flight oracle requests, keyed by the oracle-assigned request
id. Each id maps to exactly one registration and is processed at most once:
once a callback has been handled, the id is invalidated and any replay is
rejected with UnknownRequest.
"""

import json
import logging
from dataclasses import dataclass

from database import utc_now
from errors import DuplicateRequest, UnknownRequest
from oracle import RequestKind

logger = logging.getLogger("securevote.pending")


@dataclass(frozen=True)
class PendingRequest:
    request_id: str
    kind: RequestKind
    target_id: int
    handles: list
    created_at: str


def _from_row(row) -> PendingRequest:
    return PendingRequest(
        request_id=row["request_id"],
        kind=RequestKind(row["kind"]),
        target_id=row["target_id"],
        handles=json.loads(row["context"]),
        created_at=row["created_at"],
    )


class PendingRequests:
    def __init__(self, ledger):
        self.ledger = ledger

    def record(self, conn, request_id: str, kind: RequestKind, target_id: int, handles: list):
        exists = conn.execute(
            "SELECT 1 FROM pending_requests WHERE request_id = ?", (request_id,)
        ).fetchone()
        if exists:
            # The oracle must only ever hand out fresh ids.
            raise DuplicateRequest(f"Oracle reissued request id {request_id[:16]}")
        conn.execute(
            """INSERT INTO pending_requests (request_id, kind, target_id, context, created_at)
               VALUES (?, ?, ?, ?, ?)""",
            (request_id, kind.value, target_id, json.dumps(list(handles)), utc_now()),
        )

    def take(self, conn, request_id: str, kind: RequestKind) -> PendingRequest:
        """Look up an unprocessed request of the given kind, or raise UnknownRequest."""
        row = None
        if isinstance(request_id, str):
            row = conn.execute(
                "SELECT * FROM pending_requests WHERE request_id = ? AND kind = ? "
                "AND processed_at IS NULL",
                (request_id, kind.value),
            ).fetchone()
        if row is None:
            raise UnknownRequest(f"No pending {kind.value} request with id {str(request_id)[:16]}")
        return _from_row(row)

    def mark_processed(self, conn, request_id: str):
        conn.execute(
            "UPDATE pending_requests SET processed_at = ? WHERE request_id = ? "
            "AND processed_at IS NULL",
            (utc_now(), request_id),
        )

    def in_flight(self, conn, kind: RequestKind, target_id: int) -> bool:
        row = conn.execute(
            "SELECT 1 FROM pending_requests WHERE kind = ? AND target_id = ? "
            "AND processed_at IS NULL",
            (kind.value, target_id),
        ).fetchone()
        return row is not None

    def unprocessed(self) -> list:
        rows = self.ledger.get_connection().execute(
            "SELECT * FROM pending_requests WHERE processed_at IS NULL ORDER BY created_at"
        ).fetchall()
        return [_from_row(row) for row in rows]

    def audit_rejection(self, kind: RequestKind, request_id, error: Exception):
        """Record a rejected callback after the failed transaction has rolled back."""
        logger.warning(
            "Rejected %s callback for request %s: %s", kind.value, str(request_id)[:16], error
        )
        with self.ledger.transaction() as conn:
            self.ledger.record_event(
                conn, "callback_rejected", str(request_id)[:64],
                kind=kind.value, reason=getattr(error, "code", "error"),
            )
