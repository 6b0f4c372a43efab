"""
Unit tests for the commitment registry and the consumption gate.
"""

import pytest

from commitment_registry import CommitmentRegistry, commitment_digest
from consumption_gate import ConsumptionGate
from errors import AlreadyConsumed, CommitmentReused


@pytest.fixture
def commitments(ledger):
    return CommitmentRegistry(ledger)


@pytest.fixture
def gate(ledger, commitments):
    return ConsumptionGate(ledger, commitments)


class TestCommitmentRegistry:
    def test_mark_used(self, ledger, commitments):
        with ledger.transaction() as conn:
            commitments.mark_used(conn, "C-1", "issuance")
        assert commitments.is_used("C-1")
        assert not commitments.is_used("C-2")
        assert commitments.count() == 1

    def test_reuse_rejected(self, ledger, commitments):
        with ledger.transaction() as conn:
            commitments.mark_used(conn, "C-1", "issuance")
        with pytest.raises(CommitmentReused):
            with ledger.transaction() as conn:
                commitments.mark_used(conn, "C-1", "issuance")

    def test_rolled_back_mark_is_not_kept(self, ledger, commitments):
        with pytest.raises(RuntimeError):
            with ledger.transaction() as conn:
                commitments.mark_used(conn, "C-1", "issuance")
                raise RuntimeError("later step failed")
        assert not commitments.is_used("C-1")

    def test_empty_commitment_rejected(self, ledger, commitments):
        with pytest.raises(ValueError):
            with ledger.transaction() as conn:
                commitments.mark_used(conn, "", "issuance")

    def test_digest_is_deterministic_hex(self):
        d = commitment_digest("C-1")
        assert d == commitment_digest("C-1")
        assert len(d) == 64
        assert d != commitment_digest("C-2")


class TestConsumptionGate:
    def test_consume_once(self, gate):
        result = gate.consume("C-vote")
        assert result["commitment_digest"] == commitment_digest("C-vote")
        assert gate.is_spent("C-vote")

    def test_double_consumption_prevented(self, gate, commitments):
        gate.consume("C-vote")
        with pytest.raises(AlreadyConsumed):
            gate.consume("C-vote")
        assert commitments.count() == 1

    def test_commitment_reserved_by_issuance_cannot_be_consumed_again(self, ledger, gate, commitments):
        with ledger.transaction() as conn:
            commitments.mark_used(conn, "C-issued", "issuance")
        with pytest.raises(AlreadyConsumed):
            gate.consume("C-issued")

    def test_consumption_event_hides_commitment(self, gate, ledger):
        gate.consume("C-secret")
        events = ledger.events(kind="commitment_consumed")
        assert len(events) == 1
        assert "C-secret" not in str(events[0])
        assert events[0]["payload"]["commitment_digest"] == commitment_digest("C-secret")

    def test_failed_consumption_records_no_event(self, gate, ledger):
        gate.consume("C-vote")
        with pytest.raises(AlreadyConsumed):
            gate.consume("C-vote")
        assert len(ledger.events(kind="commitment_consumed")) == 1
