"""
Credential Issuance Coordinator

Issues one anonymous credential per verified registration:
  1. A registrar requests issuance, binding a fresh commitment
  2. The commitment is reserved in the registry immediately
  3. The minimal ciphertext handles are dispatched to the oracle
  4. The oracle calls back with the credential value and a proof
  5. The credential record is written, exactly once

The issuance callback is the only place a credential value is ever written.
"""

import logging

from commitment_registry import commitment_digest
from database import utc_now
from errors import AlreadyIssued, InvalidState, NotEligible
from oracle import RequestKind, decode_result
from registration_store import INELIGIBLE, VERIFIED, load_registration
from verification import REJECTED_CALLBACK_ERRORS

logger = logging.getLogger("securevote.issuance")

# A commitment is marked used when issuance is requested, not when it is
# confirmed. Two concurrent requests can never both hold the same commitment;
# a request that later fails (oracle silence, bad proof) burns its commitment
# and the registrant must come back with a fresh one.
COMMITMENT_POLICY = "reserve-on-request"


def _is_issued(conn, registration_id: int) -> bool:
    row = conn.execute(
        "SELECT issued FROM credentials WHERE id = ?", (registration_id,)
    ).fetchone()
    return bool(row["issued"])


class CredentialIssuanceCoordinator:
    def __init__(self, ledger, oracle, verifier, authorizer, pending, commitments):
        self.ledger = ledger
        self.oracle = oracle
        self.verifier = verifier
        self.authorizer = authorizer
        self.pending = pending
        self.commitments = commitments

    def request_issuance(self, assertion: str, registration_id: int, commitment: str) -> str:
        """Reserve `commitment` and dispatch an issuance request; return the request id."""
        registrar = self.authorizer.require(assertion)

        with self.ledger.transaction() as conn:
            row = load_registration(conn, registration_id)
            if _is_issued(conn, registration_id):
                raise AlreadyIssued(f"Credential {registration_id} already issued")
            # Raises CommitmentReused; rolled back if a later check fails.
            self.commitments.mark_used(conn, commitment, "issuance")
            if row["status"] == INELIGIBLE:
                raise NotEligible(f"Registration {registration_id} is not eligible")
            if row["status"] != VERIFIED:
                raise InvalidState(
                    f"Registration {registration_id} is {row['status']}, not verified"
                )
            if self.pending.in_flight(conn, RequestKind.ISSUANCE, registration_id):
                raise InvalidState(f"Issuance for registration {registration_id} already in flight")

            handles = [row["national_id"], row["eligibility_flags"]]
            request_id = self.oracle.dispatch(handles, RequestKind.ISSUANCE)
            self.pending.record(conn, request_id, RequestKind.ISSUANCE, registration_id, handles)
            self.ledger.record_event(
                conn, "issuance_requested", registration_id,
                registration_id=registration_id, request_id=request_id, registrar=registrar,
                commitment_digest=commitment_digest(commitment),
            )

        logger.info("Issuance requested for registration %d", registration_id)
        return request_id

    def on_issuance_result(self, request_id: str, clear_result: bytes, proof: bytes) -> int:
        """Process an oracle issuance callback; return the credential id."""
        try:
            with self.ledger.transaction() as conn:
                request = self.pending.take(conn, request_id, RequestKind.ISSUANCE)
                self.verifier.verify(request_id, request.handles, clear_result, proof)
                result = decode_result(RequestKind.ISSUANCE, clear_result)

                credential_id = request.target_id
                # Write-once: the guard on issued = 0 also covers racing duplicates.
                cursor = conn.execute(
                    "UPDATE credentials SET value = ?, issued = 1, issued_at = ? "
                    "WHERE id = ? AND issued = 0",
                    (result.credential, utc_now(), credential_id),
                )
                if cursor.rowcount != 1:
                    raise AlreadyIssued(f"Credential {credential_id} already issued")
                self.pending.mark_processed(conn, request_id)
                self.ledger.record_event(
                    conn, "credential_issued", credential_id,
                    credential_id=credential_id, request_id=request_id,
                    reserved_count=len(result.reserved),
                )
        except REJECTED_CALLBACK_ERRORS as e:
            self.pending.audit_rejection(RequestKind.ISSUANCE, request_id, e)
            raise

        if result.reserved:
            logger.warning(
                "Issuance result for credential %d carried %d reserved element(s)",
                credential_id, len(result.reserved),
            )
        logger.info("Credential %d issued", credential_id)
        return credential_id
