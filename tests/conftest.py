"""
pytest configuration for SecureVote credential tests.
Adds the backend directory to sys.path and provides an isolated ledger per test.
"""
import sys
import os

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, os.path.join(ROOT, 'backend'))

import pytest

from authorization import RegistrarAuthorizer
from database import Ledger
from oracle import LocalOracle, ProofVerifier, encode_eligibility, generate_oracle_keypair
from registration_store import Ciphertexts
from registry import CredentialRegistry

REGISTRAR_SECRET = b"test-registrar-secret"


@pytest.fixture(scope="session")
def oracle_keys():
    """(private_pem, public_pem) for the local oracle; RSA generation is slow."""
    return generate_oracle_keypair()


@pytest.fixture
def ledger(tmp_path):
    """Each test gets its own SQLite ledger."""
    ledger = Ledger(tmp_path / "test_ledger.db")
    ledger.init_db()
    yield ledger
    ledger.close()


@pytest.fixture
def registry(ledger, oracle_keys):
    private_key, public_key = oracle_keys
    return CredentialRegistry(
        ledger,
        LocalOracle(private_key),
        ProofVerifier(public_key),
        RegistrarAuthorizer(REGISTRAR_SECRET),
    )


@pytest.fixture
def registrar(registry):
    return registry.authorizer.assertion_for("registrar-1")


_counter = iter(range(1, 1_000_000))


def make_ciphertexts() -> Ciphertexts:
    n = next(_counter)
    return Ciphertexts(
        national_id=f"0xct-nid-{n}",
        date_of_birth=f"0xct-dob-{n}",
        address_hash=f"0xct-addr-{n}",
        eligibility_flags=f"0xct-flags-{n}",
    )


@pytest.fixture
def verified_registration(registry, registrar):
    """Factory: submit a registration and drive it through a successful verification."""
    def _make() -> int:
        registration_id = registry.registrations.submit(make_ciphertexts())
        request_id = registry.verification.request_verification(registrar, registration_id)
        registry.verification.on_verification_result(
            *registry.oracle.fulfil(request_id, encode_eligibility(True))
        )
        return registration_id
    return _make


def snapshot(ledger) -> dict:
    """Every entity table, for asserting that a failed call mutated nothing."""
    conn = ledger.get_connection()
    return {
        table: [tuple(row) for row in conn.execute(f"SELECT * FROM {table} ORDER BY 1")]
        for table in ("registrations", "credentials", "pending_requests", "used_commitments")
    }
