"""
Registration Store

Holds one encrypted record per registrant together with its (initially empty)
credential record. The store only carries opaque ciphertext handles: their
content is never inspected here, correctness is established later through
eligibility verification.
"""

import logging
from dataclasses import dataclass

from database import utc_now
from errors import NotFound

logger = logging.getLogger("securevote.registrations")

SUBMITTED = "submitted"
VERIFICATION_PENDING = "verification_pending"
VERIFIED = "verified"
INELIGIBLE = "ineligible"


@dataclass(frozen=True)
class Ciphertexts:
    national_id: str
    date_of_birth: str
    address_hash: str
    eligibility_flags: str

    def as_list(self) -> list:
        return [self.national_id, self.date_of_birth, self.address_hash, self.eligibility_flags]


@dataclass(frozen=True)
class EncryptedRegistration:
    id: int
    ciphertexts: Ciphertexts
    created_at: str


def load_registration(conn, registration_id: int):
    """Fetch a registration row inside an open transaction, or raise NotFound."""
    row = conn.execute(
        "SELECT * FROM registrations WHERE id = ?", (registration_id,)
    ).fetchone()
    if row is None:
        raise NotFound(f"Registration {registration_id} not found")
    return row


class RegistrationStore:
    def __init__(self, ledger):
        self.ledger = ledger

    def submit(self, ciphertexts: Ciphertexts) -> int:
        """Store an encrypted registration and its empty credential record; return the new id."""
        for name, handle in vars(ciphertexts).items():
            if not isinstance(handle, str) or not handle:
                raise ValueError(f"Ciphertext handle '{name}' is required")

        with self.ledger.transaction() as conn:
            created_at = utc_now()
            cursor = conn.execute(
                """INSERT INTO registrations
                       (national_id, date_of_birth, address_hash, eligibility_flags,
                        status, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (*ciphertexts.as_list(), SUBMITTED, created_at),
            )
            registration_id = cursor.lastrowid
            conn.execute("INSERT INTO credentials (id) VALUES (?)", (registration_id,))
            self.ledger.record_event(
                conn, "registration_submitted", registration_id,
                registration_id=registration_id, timestamp=created_at,
            )

        logger.info("Registration %d submitted", registration_id)
        return registration_id

    def get(self, registration_id: int) -> EncryptedRegistration:
        row = load_registration(self.ledger.get_connection(), registration_id)
        return EncryptedRegistration(
            id=row["id"],
            ciphertexts=Ciphertexts(
                national_id=row["national_id"],
                date_of_birth=row["date_of_birth"],
                address_hash=row["address_hash"],
                eligibility_flags=row["eligibility_flags"],
            ),
            created_at=row["created_at"],
        )

    def get_credential(self, registration_id: int) -> tuple:
        """Return (value, issued). Before issuance this is ("", False)."""
        row = self.ledger.get_connection().execute(
            "SELECT value, issued FROM credentials WHERE id = ?", (registration_id,)
        ).fetchone()
        if row is None:
            raise NotFound(f"Credential {registration_id} not found")
        return row["value"], bool(row["issued"])

    def status(self, registration_id: int) -> dict:
        """Operator view of a registration: lifecycle state only, never ciphertexts."""
        row = self.ledger.get_connection().execute(
            """SELECT r.id, r.status, r.created_at, c.issued, c.issued_at
               FROM registrations r JOIN credentials c ON c.id = r.id
               WHERE r.id = ?""",
            (registration_id,),
        ).fetchone()
        if row is None:
            raise NotFound(f"Registration {registration_id} not found")
        return {
            "registration_id": row["id"],
            "status": row["status"],
            "created_at": row["created_at"],
            "issued": bool(row["issued"]),
            "issued_at": row["issued_at"],
        }
