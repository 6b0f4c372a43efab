"""
Oracle Request / Callback Contract

The oracle is the external service that decrypts homomorphic ciphertext
handles and proves the decryption correct. This module defines:

  1. The outbound request interface (`Oracle.dispatch`)
  2. Proof verification against the oracle's published RSA public key
  3. The tagged clear-result variants and their canonical byte encoding
  4. `LocalOracle`, an in-process oracle for development and tests

A proof is an RSA PKCS#1 v1.5 signature over a canonical message binding the
request id, the original request context (the dispatched handles) and the
exact clear-result bytes. Nothing in a clear result is trusted before its
proof verifies.
"""

import enum
import json
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Union

from Crypto.Hash import SHA256
from Crypto.PublicKey import RSA
from Crypto.Signature import pkcs1_15

from errors import InvalidProof, MalformedResult

KEY_SIZE = 2048  # bits


class RequestKind(str, enum.Enum):
    """Request type, also used as the callback selector."""
    VERIFICATION = "verification"
    ISSUANCE = "issuance"


# ---------------------------------------------------------------------------
# Clear results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EligibilityResult:
    eligible: bool


@dataclass(frozen=True)
class IssuanceResult:
    credential: str
    # Elements after the first have no assigned meaning yet; kept, never dropped.
    reserved: tuple = field(default_factory=tuple)


ClearResult = Union[EligibilityResult, IssuanceResult]


def _canonical(value) -> bytes:
    return json.dumps(value, sort_keys=True, separators=(",", ":")).encode()


def encode_eligibility(eligible: bool) -> bytes:
    return _canonical({"eligible": bool(eligible)})


def encode_credentials(credentials: list) -> bytes:
    return _canonical({"credentials": list(credentials)})


def decode_result(kind: RequestKind, clear_result: bytes) -> ClearResult:
    """Decode verified clear-result bytes into the variant for `kind`."""
    try:
        data = json.loads(clear_result.decode())
    except (UnicodeDecodeError, ValueError) as e:
        raise MalformedResult(f"Clear result is not valid JSON: {e}")
    if not isinstance(data, dict):
        raise MalformedResult("Clear result must be a JSON object")

    if kind == RequestKind.VERIFICATION:
        eligible = data.get("eligible")
        if not isinstance(eligible, bool):
            raise MalformedResult("Eligibility result must carry a boolean 'eligible'")
        return EligibilityResult(eligible=eligible)

    credentials = data.get("credentials")
    if (
        not isinstance(credentials, list)
        or not credentials
        or not all(isinstance(c, str) for c in credentials)
    ):
        raise MalformedResult("Issuance result must carry a non-empty list of strings")
    if not credentials[0]:
        raise MalformedResult("Issued credential value is empty")
    return IssuanceResult(credential=credentials[0], reserved=tuple(credentials[1:]))


# ---------------------------------------------------------------------------
# Proofs
# ---------------------------------------------------------------------------

def proof_message(request_id: str, handles: list, clear_result: bytes) -> SHA256.SHA256Hash:
    """Hash of the statement an oracle proof attests to."""
    return SHA256.new(_canonical({
        "request_id": request_id,
        "handles": list(handles),
        "clear_result": clear_result.hex(),
    }))


class ProofVerifier:
    """Checks oracle proofs against the oracle's published verification key."""

    def __init__(self, public_key_pem: str):
        self._key = RSA.import_key(public_key_pem)

    def verify(self, request_id: str, handles: list, clear_result: bytes, proof: bytes):
        try:
            pkcs1_15.new(self._key).verify(proof_message(request_id, handles, clear_result), proof)
        except (ValueError, TypeError):
            raise InvalidProof(f"Proof for request {request_id[:16]} failed verification")


# ---------------------------------------------------------------------------
# Oracle interface
# ---------------------------------------------------------------------------

class Oracle(ABC):
    @abstractmethod
    def dispatch(self, handles: list, callback: RequestKind) -> str:
        """Submit ciphertext handles for decryption; return an unguessable request id."""


def generate_oracle_keypair() -> tuple:
    """Generate an RSA keypair for a local oracle: (private_pem, public_pem)."""
    key = RSA.generate(KEY_SIZE)
    return key.export_key().decode(), key.publickey().export_key().decode()


class LocalOracle(Oracle):
    """
    In-process oracle. It records dispatched requests and, when told what the
    decryption yielded, signs the result the same way a real oracle would.
    """

    def __init__(self, private_key_pem: str):
        self._key = RSA.import_key(private_key_pem)
        self.requests = {}

    @property
    def public_key(self) -> str:
        return self._key.publickey().export_key().decode()

    def dispatch(self, handles: list, callback: RequestKind) -> str:
        request_id = secrets.token_hex(32)
        self.requests[request_id] = (list(handles), RequestKind(callback))
        return request_id

    def sign(self, request_id: str, handles: list, clear_result: bytes) -> bytes:
        return pkcs1_15.new(self._key).sign(proof_message(request_id, handles, clear_result))

    def fulfil(self, request_id: str, clear_result: bytes) -> tuple:
        """Return the callback arguments (request_id, clear_result, proof)."""
        handles, _ = self.requests[request_id]
        return request_id, clear_result, self.sign(request_id, handles, clear_result)
