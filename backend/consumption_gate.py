"""
Credential Consumption Gate

Invoked by the independently operated ballot-casting system at vote time.
Check-and-set against the same commitment registry that issuance reserves
into, so a credential is spent exactly once. There is no reversal.
"""

import logging

from commitment_registry import commitment_digest
from errors import AlreadyConsumed

logger = logging.getLogger("securevote.consumption")


class ConsumptionGate:
    def __init__(self, ledger, commitments):
        self.ledger = ledger
        self.commitments = commitments

    def consume(self, commitment: str) -> dict:
        digest = commitment_digest(commitment) if isinstance(commitment, str) else None
        with self.ledger.transaction() as conn:
            self.commitments.mark_used(conn, commitment, "consumption", error=AlreadyConsumed)
            consumed_at = self.ledger.record_event(
                conn, "commitment_consumed", digest, commitment_digest=digest,
            )
        logger.info("Commitment %s consumed", digest[:16])
        return {"commitment_digest": digest, "consumed_at": consumed_at}

    def is_spent(self, commitment: str) -> bool:
        return self.commitments.is_used(commitment)
