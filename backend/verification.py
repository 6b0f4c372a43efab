"""
Eligibility Verification Coordinator

Orchestrates the verification flow:
  1. A registrar requests verification of a registration
  2. The four ciphertext handles are dispatched to the oracle
  3. The oracle calls back with a clear eligibility result and a proof
  4. The proof is checked, then the registration becomes verified or
     (terminally) ineligible

The callback is the security boundary: it is invoked by an only partially
trusted oracle, so unknown or replayed request ids and unverifiable proofs
are rejected before any state is touched.
"""

import logging

from errors import InvalidProof, InvalidState, MalformedResult, NotEligible, UnknownRequest
from oracle import RequestKind, decode_result
from registration_store import (
    INELIGIBLE,
    SUBMITTED,
    VERIFICATION_PENDING,
    VERIFIED,
    load_registration,
)

logger = logging.getLogger("securevote.verification")

REJECTED_CALLBACK_ERRORS = (UnknownRequest, InvalidProof, MalformedResult)


class EligibilityVerificationCoordinator:
    def __init__(self, ledger, oracle, verifier, authorizer, pending):
        self.ledger = ledger
        self.oracle = oracle
        self.verifier = verifier
        self.authorizer = authorizer
        self.pending = pending

    def request_verification(self, assertion: str, registration_id: int) -> str:
        """Dispatch a registration's ciphertexts for verification; return the request id."""
        registrar = self.authorizer.require(assertion)

        with self.ledger.transaction() as conn:
            row = load_registration(conn, registration_id)
            if row["status"] == INELIGIBLE:
                raise NotEligible(f"Registration {registration_id} is not eligible")
            if row["status"] != SUBMITTED:
                raise InvalidState(
                    f"Registration {registration_id} is already {row['status']}"
                )

            handles = [
                row["national_id"],
                row["date_of_birth"],
                row["address_hash"],
                row["eligibility_flags"],
            ]
            request_id = self.oracle.dispatch(handles, RequestKind.VERIFICATION)
            self.pending.record(conn, request_id, RequestKind.VERIFICATION, registration_id, handles)
            conn.execute(
                "UPDATE registrations SET status = ? WHERE id = ?",
                (VERIFICATION_PENDING, registration_id),
            )
            self.ledger.record_event(
                conn, "verification_requested", registration_id,
                registration_id=registration_id, request_id=request_id, registrar=registrar,
            )

        logger.info("Verification requested for registration %d", registration_id)
        return request_id

    def on_verification_result(self, request_id: str, clear_result: bytes, proof: bytes) -> int:
        """Process an oracle verification callback; return the verified registration id."""
        try:
            with self.ledger.transaction() as conn:
                request = self.pending.take(conn, request_id, RequestKind.VERIFICATION)
                self.verifier.verify(request_id, request.handles, clear_result, proof)
                result = decode_result(RequestKind.VERIFICATION, clear_result)

                registration_id = request.target_id
                new_status = VERIFIED if result.eligible else INELIGIBLE
                conn.execute(
                    "UPDATE registrations SET status = ? WHERE id = ?",
                    (new_status, registration_id),
                )
                self.pending.mark_processed(conn, request_id)
                self.ledger.record_event(
                    conn,
                    "eligibility_verified" if result.eligible else "eligibility_rejected",
                    registration_id,
                    registration_id=registration_id, request_id=request_id,
                )
        except REJECTED_CALLBACK_ERRORS as e:
            self.pending.audit_rejection(RequestKind.VERIFICATION, request_id, e)
            raise

        # The ineligible outcome is committed before it is reported: it is terminal.
        if not result.eligible:
            logger.info("Registration %d is not eligible", registration_id)
            raise NotEligible(f"Registration {registration_id} is not eligible")

        logger.info("Registration %d verified eligible", registration_id)
        return registration_id
