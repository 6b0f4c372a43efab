"""
Error kinds raised by the credential ledger.

Every failure surfaces to the caller as one of these. None of them is ever
masked: idempotency guards (AlreadyIssued, CommitmentReused, AlreadyConsumed)
and the security signal UnknownRequest are always raised, never swallowed.
"""


class CredentialError(Exception):
    code = "error"
    status = 400

    def to_dict(self) -> dict:
        return {"success": False, "error": str(self), "code": self.code}


class NotFound(CredentialError):
    code = "not_found"
    status = 404


class UnknownRequest(CredentialError):
    """Callback for a request id that was never dispatched or was already processed."""
    code = "unknown_request"
    status = 409


class InvalidProof(CredentialError):
    code = "invalid_proof"
    status = 400


class MalformedResult(CredentialError):
    code = "malformed_result"
    status = 400


class NotEligible(CredentialError):
    """Terminal: the registration can never be verified or issued a credential."""
    code = "not_eligible"
    status = 403


class AlreadyIssued(CredentialError):
    code = "already_issued"
    status = 409


class CommitmentReused(CredentialError):
    code = "commitment_reused"
    status = 409


class AlreadyConsumed(CredentialError):
    code = "already_consumed"
    status = 409


class InvalidState(CredentialError):
    code = "invalid_state"
    status = 409


class Unauthorized(CredentialError):
    code = "unauthorized"
    status = 401


class DuplicateRequest(CredentialError):
    """The oracle handed out a request id that is already on the ledger."""
    code = "duplicate_request"
    status = 502
