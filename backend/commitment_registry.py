"""
Commitment Registry

The set of anonymous-credential commitments that have been used. It is shared
by credential issuance (which reserves a commitment when a request is made) and
by the ballot system's consumption gate (which spends it at vote time).

A commitment, once marked used, is never unmarked.
"""

from Crypto.Hash import SHA256

from database import utc_now
from errors import CommitmentReused


def commitment_digest(commitment: str) -> str:
    """Public identifier of a commitment for audit events."""
    return SHA256.new(commitment.encode()).hexdigest()


class CommitmentRegistry:
    def __init__(self, ledger):
        self.ledger = ledger

    def is_used(self, commitment: str, conn=None) -> bool:
        conn = conn or self.ledger.get_connection()
        row = conn.execute(
            "SELECT commitment FROM used_commitments WHERE commitment = ?", (commitment,)
        ).fetchone()
        return row is not None

    def mark_used(self, conn, commitment: str, used_by: str, error=CommitmentReused):
        """Mark a commitment used inside the caller's transaction, raising `error` if already used."""
        if not isinstance(commitment, str) or not commitment:
            raise ValueError("commitment is required")
        if self.is_used(commitment, conn):
            raise error(f"Commitment {commitment_digest(commitment)[:16]} already used")
        conn.execute(
            "INSERT INTO used_commitments (commitment, used_by, used_at) VALUES (?, ?, ?)",
            (commitment, used_by, utc_now()),
        )

    def count(self) -> int:
        row = self.ledger.get_connection().execute(
            "SELECT COUNT(*) AS n FROM used_commitments"
        ).fetchone()
        return row["n"]
