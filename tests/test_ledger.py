"""Credit ledger tests — reserve / commit / release, conservation, concurrency.

Maps to BDD specs: TestReservation, TestCreditConservation,
TestConcurrentReservations, TestSettlement, TestManualAdjustment,
TestStaleReservations, TestTransactionJournal
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest

from applicant_qualifier.credits import CreditLedger
from applicant_qualifier.errors import (
    ActionableError,
    ErrorType,
    InsufficientCreditsError,
    ReservationMismatchError,
)
from applicant_qualifier.models import CreditType
from applicant_qualifier.store import TransactionJournal

if TYPE_CHECKING:
    from pathlib import Path

CV = CreditType.CV_PROCESSING


def _history_sum(ledger: CreditLedger, org: str, ctype: CreditType = CV) -> int:
    return sum(t.delta for t in ledger.history(org, limit=10_000, credit_type=ctype))


class TestReservation:
    """REQUIREMENT: Reserving debits the balance immediately or not at all.

    WHO: The orchestrator paying for a batch before scoring it
    WHAT: a successful reserve lowers the balance by the count and records
          a negative "reserved" transaction; an unaffordable reserve raises
          InsufficientCreditsError and changes nothing; non-positive counts
          are rejected
    WHY: Debiting at reserve time is what makes overselling impossible
    """

    async def test_reserve_debits_balance(self, ledger: CreditLedger) -> None:
        """Reserving 3 of 10 leaves 7."""
        await ledger.grant("org", CV, 10)
        token = await ledger.reserve("org", CV, 3)
        assert ledger.balance("org", CV) == 7
        assert token.amount == 3
        latest = ledger.history("org", 1)[0]
        assert (latest.delta, latest.reason, latest.reservation_id) == (-3, "reserved", token.id)

    async def test_insufficient_balance_raises_and_leaves_balance(self, ledger: CreditLedger) -> None:
        """Reserving 3 against 2 fails with a CREDITS error and no debit."""
        await ledger.grant("org", CV, 2)
        with pytest.raises(InsufficientCreditsError) as exc_info:
            await ledger.reserve("org", CV, 3)
        assert exc_info.value.error_type == ErrorType.CREDITS
        assert exc_info.value.context == {
            "org_id": "org",
            "credit_type": "cv_processing",
            "required": 3,
            "available": 2,
        }
        assert ledger.balance("org", CV) == 2
        assert [t.reason for t in ledger.history("org")] == ["manual_adjustment"]

    async def test_exact_balance_can_be_reserved(self, ledger: CreditLedger) -> None:
        """Reserving the whole balance succeeds and leaves zero."""
        await ledger.grant("org", CV, 4)
        await ledger.reserve("org", CV, 4)
        assert ledger.balance("org", CV) == 0

    @pytest.mark.parametrize("count", [0, -1, True])
    async def test_non_positive_count_is_rejected(self, ledger: CreditLedger, count: int) -> None:
        """Zero, negative and boolean counts raise VALIDATION."""
        await ledger.grant("org", CV, 5)
        with pytest.raises(ActionableError) as exc_info:
            await ledger.reserve("org", CV, count)
        assert exc_info.value.error_type == ErrorType.VALIDATION

    async def test_credit_types_are_separate_accounts(self, ledger: CreditLedger) -> None:
        """Interview credits cannot pay for CV processing."""
        await ledger.grant("org", CreditType.INTERVIEW, 10)
        with pytest.raises(InsufficientCreditsError):
            await ledger.reserve("org", CV, 1)
        assert ledger.balance("org", "interview") == 10


class TestCreditConservation:
    """REQUIREMENT: The balance always equals the sum of its transaction deltas.

    WHO: Finance reconciling what an organization paid for
    WHAT: reserve+commit moves the balance by exactly the count; commit
          itself has zero delta; history sums to the balance at every step
    WHY: A balance that drifts from its audit trail cannot be trusted
    """

    async def test_reserve_then_commit_consumes_exactly_count(self, ledger: CreditLedger) -> None:
        """balance_before - balance_after == 5 after reserving and committing 5."""
        await ledger.grant("org", CV, 12)
        before = ledger.balance("org", CV)
        token = await ledger.reserve("org", CV, 5)
        commit = await ledger.commit(token)
        after = ledger.balance("org", CV)
        assert before - after == 5
        assert commit.delta == 0
        assert commit.reason == "committed"
        assert _history_sum(ledger, "org") == after

    async def test_history_matches_balance_through_mixed_operations(self, ledger: CreditLedger) -> None:
        """Grant, reserve, partial commit, release and adjust all reconcile."""
        await ledger.grant("org", CV, 20)
        a = await ledger.reserve("org", CV, 6)
        b = await ledger.reserve("org", CV, 4)
        await ledger.commit(a, 2)
        await ledger.release(a)
        await ledger.release(b)
        await ledger.adjust("org", CV, -3, "refund correction")
        assert ledger.balance("org", CV) == 15
        assert _history_sum(ledger, "org") == 15

    async def test_history_is_newest_first_and_limited(self, ledger: CreditLedger) -> None:
        """history() returns the latest entries first, capped at limit."""
        await ledger.grant("org", CV, 5)
        token = await ledger.reserve("org", CV, 2)
        await ledger.commit(token)
        reasons = [t.reason for t in ledger.history("org", 2)]
        assert reasons == ["committed", "reserved"]

    @pytest.mark.parametrize("limit", [-1, -50])
    async def test_negative_history_limit_is_rejected(self, ledger: CreditLedger, limit: int) -> None:
        """A negative limit raises VALIDATION instead of silently dropping entries."""
        await ledger.grant("org", CV, 5)
        with pytest.raises(ActionableError) as exc_info:
            ledger.history("org", limit)
        assert exc_info.value.error_type == ErrorType.VALIDATION

    async def test_zero_history_limit_is_empty(self, ledger: CreditLedger) -> None:
        await ledger.grant("org", CV, 5)
        assert ledger.history("org", 0) == []

    async def test_history_is_scoped_to_organization(self, ledger: CreditLedger) -> None:
        """Another organization's transactions never appear."""
        await ledger.grant("org-a", CV, 5)
        await ledger.grant("org-b", CV, 7)
        assert all(t.org_id == "org-a" for t in ledger.history("org-a"))
        assert len(ledger.history("org-a")) == 1

    async def test_usage_aggregates_history(self, ledger: CreditLedger) -> None:
        """usage() counts debits, credits and each transaction reason."""
        await ledger.grant("org", CV, 10)
        token = await ledger.reserve("org", CV, 4)
        await ledger.commit(token, 3)
        await ledger.release(token)
        usage = ledger.usage("org", CV)
        assert usage.total_debited == 4
        assert usage.total_credited == 11
        assert (usage.reserved_count, usage.committed_count, usage.released_count) == (1, 1, 1)
        assert usage.manual_adjustments == 1


class TestConcurrentReservations:
    """REQUIREMENT: Concurrent reservations can never oversell an account.

    WHO: Two recruiters in one organization submitting batches at once
    WHAT: two concurrent reserves of 2 against a balance of 3 yield exactly
          one success and one InsufficientCreditsError; many small
          concurrent reserves never drive the balance negative
    WHY: A stale read of the balance would hand out credits that do not exist
    """

    async def test_two_concurrent_reserves_one_succeeds(self, ledger: CreditLedger) -> None:
        """Balance 3, two reserves of 2 → one token, one error, balance 1."""
        await ledger.grant("org", CV, 3)
        outcomes = await asyncio.gather(
            ledger.reserve("org", CV, 2),
            ledger.reserve("org", CV, 2),
            return_exceptions=True,
        )
        errors = [o for o in outcomes if isinstance(o, InsufficientCreditsError)]
        tokens = [o for o in outcomes if not isinstance(o, BaseException)]
        assert len(tokens) == 1
        assert len(errors) == 1
        assert ledger.balance("org", CV) == 1

    async def test_many_concurrent_reserves_never_go_negative(self, ledger: CreditLedger) -> None:
        """Fifty single-unit reserves against 20 credits produce exactly 20 tokens."""
        await ledger.grant("org", CV, 20)
        outcomes = await asyncio.gather(
            *(ledger.reserve("org", CV, 1) for _ in range(50)),
            return_exceptions=True,
        )
        assert sum(1 for o in outcomes if not isinstance(o, BaseException)) == 20
        assert ledger.balance("org", CV) == 0
        assert _history_sum(ledger, "org") == 0


class TestSettlement:
    """REQUIREMENT: Reservations settle exactly once, in whole or in parts.

    WHO: The orchestrator finishing, cancelling or aborting a run
    WHAT: release refunds the open remainder; partial commit + release
          splits a reservation; settling a finalized or foreign token
          raises ReservationMismatchError; over-settling is refused
    WHY: Double refunds mint free credits; double commits hide leaks
    """

    async def test_release_restores_balance(self, ledger: CreditLedger) -> None:
        """Releasing an untouched reservation refunds all of it."""
        await ledger.grant("org", CV, 5)
        token = await ledger.reserve("org", CV, 5)
        txn = await ledger.release(token)
        assert (txn.delta, txn.reason) == (5, "released")
        assert ledger.balance("org", CV) == 5
        assert ledger.open_reservations("org") == []

    async def test_partial_commit_then_release_remainder(self, ledger: CreditLedger) -> None:
        """Commit 2 of 5, release the other 3."""
        await ledger.grant("org", CV, 5)
        token = await ledger.reserve("org", CV, 5)
        await ledger.commit(token, 2)
        assert ledger.remaining(token) == 3
        await ledger.release(token)
        assert ledger.balance("org", CV) == 3
        assert ledger.remaining(token) == 0

    async def test_commit_after_commit_is_mismatch(self, ledger: CreditLedger) -> None:
        """A finalized reservation cannot be committed again."""
        await ledger.grant("org", CV, 2)
        token = await ledger.reserve("org", CV, 2)
        await ledger.commit(token)
        with pytest.raises(ReservationMismatchError):
            await ledger.commit(token)

    async def test_release_after_commit_is_mismatch(self, ledger: CreditLedger) -> None:
        """A committed reservation cannot be refunded."""
        await ledger.grant("org", CV, 2)
        token = await ledger.reserve("org", CV, 2)
        await ledger.commit(token)
        with pytest.raises(ReservationMismatchError):
            await ledger.release(token)
        assert ledger.balance("org", CV) == 0

    async def test_foreign_token_is_mismatch(self, ledger: CreditLedger) -> None:
        """A token from another ledger is unknown here."""
        other = CreditLedger()
        await other.grant("org", CV, 1)
        token = await other.reserve("org", CV, 1)
        with pytest.raises(ReservationMismatchError) as exc_info:
            await ledger.release(token)
        assert exc_info.value.error_type == ErrorType.RESERVATION

    async def test_over_settling_is_refused(self, ledger: CreditLedger) -> None:
        """Committing more than remains open raises and changes nothing."""
        await ledger.grant("org", CV, 3)
        token = await ledger.reserve("org", CV, 3)
        with pytest.raises(ReservationMismatchError):
            await ledger.commit(token, 4)
        assert ledger.remaining(token) == 3


class TestManualAdjustment:
    """REQUIREMENT: Operators can add or correct credits without overdrawing.

    WHO: The support team granting or clawing back credits
    WHAT: grant adds credits; negative adjustments that would go below
          zero are refused; zero adjustments are invalid
    WHY: Manual corrections must never drive the balance below zero either
    """

    async def test_grant_adds_credits(self, ledger: CreditLedger) -> None:
        """grant() raises the balance and records a manual_adjustment."""
        txn = await ledger.grant("org", CV, 8, "Purchased starter pack")
        assert ledger.balance("org", CV) == 8
        assert (txn.delta, txn.reason, txn.description) == (8, "manual_adjustment", "Purchased starter pack")

    async def test_negative_adjustment_cannot_overdraw(self, ledger: CreditLedger) -> None:
        """Removing 5 from a balance of 3 is refused."""
        await ledger.grant("org", CV, 3)
        with pytest.raises(InsufficientCreditsError):
            await ledger.adjust("org", CV, -5)
        assert ledger.balance("org", CV) == 3

    async def test_zero_adjustment_is_invalid(self, ledger: CreditLedger) -> None:
        """A zero delta is a validation error."""
        with pytest.raises(ActionableError) as exc_info:
            await ledger.adjust("org", CV, 0)
        assert exc_info.value.error_type == ErrorType.VALIDATION


class TestStaleReservations:
    """REQUIREMENT: Reservations abandoned by crashed runs can be reconciled.

    WHO: The operator's reconciliation job
    WHAT: release_stale releases only open reservations older than the cutoff
    WHY: A crash between reserve and commit would otherwise strand credits
    """

    async def test_only_old_open_reservations_are_released(self) -> None:
        """An hour-old reservation is released; a fresh one is kept."""
        now = [datetime(2026, 1, 1, 12, 0, tzinfo=UTC)]
        ledger = CreditLedger(clock=lambda: now[0])
        await ledger.grant("org", CV, 10)
        old = await ledger.reserve("org", CV, 4)
        now[0] += timedelta(hours=1)
        fresh = await ledger.reserve("org", CV, 2)

        released = await ledger.release_stale(timedelta(minutes=30))

        assert released == [old]
        assert ledger.open_reservations("org") == [fresh]
        assert ledger.balance("org", CV) == 8


class TestTransactionJournal:
    """REQUIREMENT: Every transaction is durably journaled when a journal is set.

    WHO: Finance auditing credit movements after the process exits
    WHAT: each ledger operation appends one JSON line with its delta and reason
    WHY: The in-memory history disappears with the process
    """

    async def test_each_transaction_is_appended(self, tmp_path: Path) -> None:
        """Grant, reserve and commit produce three journal lines in order."""
        journal = TransactionJournal(tmp_path / "txns")
        ledger = CreditLedger(journal=journal)
        await ledger.grant("org", CV, 3)
        token = await ledger.reserve("org", CV, 3)
        await ledger.commit(token)
        records = journal.read()
        assert [r["reason"] for r in records] == ["manual_adjustment", "reserved", "committed"]
        assert sum(r["delta"] for r in records) == ledger.balance("org", CV)


class _UnwritableJournal(TransactionJournal):
    """Journal whose writes start failing once ``broken`` is set."""

    def __init__(self, journal_dir: Path) -> None:
        super().__init__(journal_dir)
        self.broken = False

    def append(self, transaction) -> None:  # type: ignore[no-untyped-def]
        if self.broken:
            raise OSError("disk full")
        super().append(transaction)


class TestJournalFailure:
    """REQUIREMENT: A failed journal write leaves the ledger exactly as it was.

    WHO: Finance reconciling the journal against account balances
    WHAT: when the journal raises, reserve/commit/release/adjust propagate the
          error and change neither balance, reservations nor history
    WHY: A debit with no audit record is a charge nobody can explain
    """

    async def test_reserve_with_failing_journal_keeps_balance(self, tmp_path: Path) -> None:
        """The balance stays at 5 and no reservation is left open."""
        journal = _UnwritableJournal(tmp_path / "txns")
        ledger = CreditLedger(journal=journal)
        await ledger.grant("org", CV, 5)
        before = ledger.history("org")
        journal.broken = True

        with pytest.raises(OSError):
            await ledger.reserve("org", CV, 3)

        assert ledger.balance("org", CV) == 5
        assert ledger.open_reservations("org") == []
        assert ledger.history("org") == before
        assert _history_sum(ledger, "org") == 5

    async def test_release_with_failing_journal_keeps_reservation_open(self, tmp_path: Path) -> None:
        """The refund is not applied, and the token can be released once the journal recovers."""
        journal = _UnwritableJournal(tmp_path / "txns")
        ledger = CreditLedger(journal=journal)
        await ledger.grant("org", CV, 5)
        token = await ledger.reserve("org", CV, 3)
        journal.broken = True

        with pytest.raises(OSError):
            await ledger.release(token)

        assert ledger.balance("org", CV) == 2
        assert ledger.remaining(token) == 3

        journal.broken = False
        await ledger.release(token)
        assert ledger.balance("org", CV) == 5
        assert _history_sum(ledger, "org") == 5

    async def test_commit_with_failing_journal_keeps_reservation_open(self, tmp_path: Path) -> None:
        journal = _UnwritableJournal(tmp_path / "txns")
        ledger = CreditLedger(journal=journal)
        await ledger.grant("org", CV, 5)
        token = await ledger.reserve("org", CV, 2)
        journal.broken = True

        with pytest.raises(OSError):
            await ledger.commit(token)

        assert ledger.remaining(token) == 2
        assert ledger.usage("org").committed_count == 0

    async def test_adjust_with_failing_journal_keeps_balance(self, tmp_path: Path) -> None:
        journal = _UnwritableJournal(tmp_path / "txns")
        ledger = CreditLedger(journal=journal)
        await ledger.grant("org", CV, 5)
        journal.broken = True

        with pytest.raises(OSError):
            await ledger.adjust("org", CV, 4, "bonus")

        assert ledger.balance("org", CV) == 5
        assert _history_sum(ledger, "org") == 5
