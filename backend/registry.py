"""
Credential Registry — Service Wiring

Builds every component around one explicit ledger handle:

  Registration Store -> Eligibility Verification -> Credential Issuance
                                                        |
                         Consumption Gate  <-  Commitment Registry

Service keys (the oracle's verification key and the registrar secret) are
generated only if they don't exist yet, then reused across restarts.
"""

import logging
import secrets
import sys
from pathlib import Path

# Ensure backend directory is on path when run standalone
sys.path.insert(0, str(Path(__file__).parent))

from authorization import RegistrarAuthorizer
from commitment_registry import CommitmentRegistry
from consumption_gate import ConsumptionGate
from database import Ledger
from issuance import CredentialIssuanceCoordinator
from oracle import LocalOracle, ProofVerifier, RequestKind, generate_oracle_keypair
from pending_requests import PendingRequests
from registration_store import RegistrationStore
from settings import Settings
from verification import EligibilityVerificationCoordinator

logger = logging.getLogger("securevote.registry")


def load_service_keys(ledger: Ledger, settings: Settings) -> dict:
    """Return the stored service keys, creating any that are missing."""
    keys = ledger.get_service_keys()
    if keys is not None and settings.oracle_public_key_path is None \
            and settings.registrar_secret is None:
        logger.info("Service keys already exist.")
        return keys

    keys = dict(keys or {})
    if settings.oracle_public_key_path is not None:
        keys["oracle_public_key"] = settings.oracle_public_key_path.read_text()
        keys["oracle_private_key"] = None
    elif not keys.get("oracle_public_key"):
        logger.info("Generating local oracle RSA keypair...")
        keys["oracle_private_key"], keys["oracle_public_key"] = generate_oracle_keypair()

    if settings.registrar_secret is not None:
        keys["registrar_secret"] = settings.registrar_secret
    elif not keys.get("registrar_secret"):
        keys["registrar_secret"] = secrets.token_hex(32)

    ledger.store_service_keys(
        keys["oracle_public_key"], keys["oracle_private_key"], keys["registrar_secret"],
    )
    logger.info("Service keys stored.")
    return keys


class CredentialRegistry:
    def __init__(self, ledger: Ledger, oracle, verifier: ProofVerifier,
                 authorizer: RegistrarAuthorizer):
        self.ledger = ledger
        self.oracle = oracle
        self.authorizer = authorizer
        self.pending = PendingRequests(ledger)
        self.registrations = RegistrationStore(ledger)
        self.commitments = CommitmentRegistry(ledger)
        self.verification = EligibilityVerificationCoordinator(
            ledger, oracle, verifier, authorizer, self.pending,
        )
        self.issuance = CredentialIssuanceCoordinator(
            ledger, oracle, verifier, authorizer, self.pending, self.commitments,
        )
        self.gate = ConsumptionGate(ledger, self.commitments)

    @classmethod
    def bootstrap(cls, settings: Settings = None, oracle=None) -> "CredentialRegistry":
        """
        Initialize the ledger, load or generate service keys, and wire the
        components. Without an external oracle, a LocalOracle is built from the
        stored private key.
        """
        settings = settings or Settings.from_env()
        ledger = Ledger(settings.db_path)
        ledger.init_db()
        keys = load_service_keys(ledger, settings)

        if oracle is None:
            if not keys["oracle_private_key"]:
                raise RuntimeError(
                    "No oracle configured and no local oracle key available."
                )
            oracle = LocalOracle(keys["oracle_private_key"])

        return cls(
            ledger,
            oracle,
            ProofVerifier(keys["oracle_public_key"]),
            RegistrarAuthorizer(keys["registrar_secret"].encode()),
        )

    def handle_callback(self, kind, request_id: str, clear_result: bytes, proof: bytes) -> int:
        """Route an oracle callback to the verified entry point for its kind."""
        kind = RequestKind(kind)
        if kind == RequestKind.VERIFICATION:
            return self.verification.on_verification_result(request_id, clear_result, proof)
        return self.issuance.on_issuance_result(request_id, clear_result, proof)

    def pending_requests(self) -> list:
        """Unprocessed oracle requests, for out-of-band recovery."""
        return [
            {
                "request_id": p.request_id,
                "kind": p.kind.value,
                "target_id": p.target_id,
                "created_at": p.created_at,
            }
            for p in self.pending.unprocessed()
        ]
