"""Prepaid credit accounting with reserve / commit / release semantics.

Credits are **decremented at reserve time** and refunded on release.
Many reservations may be outstanding at once and the balance still
cannot be oversold, because every reservation has already been paid for
by the time it is handed out.  Commit only records the consumption for
audit; it never moves the balance.

Each ``(org_id, credit_type)`` account is serialized by its own
:class:`asyncio.Lock` (the in-process equivalent of a row lock), so two
concurrent ``reserve`` calls can never both observe the same balance.

Every operation appends an immutable :class:`CreditTransaction`.  The
balance of an account always equals the sum of its transaction deltas:

    reserved  → delta = -count
    released  → delta = +count
    committed → delta = 0
    manual_adjustment → delta = ±amount
"""

from __future__ import annotations

import asyncio
import uuid
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from applicant_qualifier.errors import ActionableError
from applicant_qualifier.logging import logger
from applicant_qualifier.models import CreditType

if TYPE_CHECKING:
    from applicant_qualifier.store import TransactionJournal

REASON_RESERVED = "reserved"
REASON_COMMITTED = "committed"
REASON_RELEASED = "released"
REASON_MANUAL = "manual_adjustment"


@dataclass(frozen=True)
class CreditTransaction:
    """Append-only ledger entry.  Never mutated or deleted."""

    id: str
    org_id: str
    credit_type: CreditType
    delta: int
    reason: str
    created_at: datetime
    reservation_id: str | None = None
    description: str = ""

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "credit_type": self.credit_type.value,
            "delta": self.delta,
            "reason": self.reason,
            "created_at": self.created_at.isoformat(),
            "reservation_id": self.reservation_id,
            "description": self.description,
        }


@dataclass(frozen=True)
class ReservationToken:
    """Handle for a provisional debit.  Settle it with commit or release."""

    id: str
    org_id: str
    credit_type: CreditType
    amount: int
    created_at: datetime


@dataclass
class CreditUsage:
    total_debited: int = 0
    total_credited: int = 0
    reserved_count: int = 0
    committed_count: int = 0
    released_count: int = 0
    manual_adjustments: int = 0


@dataclass
class _OpenReservation:
    token: ReservationToken
    committed: int = 0
    released: int = 0

    @property
    def remaining(self) -> int:
        return self.token.amount - self.committed - self.released


@dataclass
class _Account:
    balance: int = 0
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class CreditLedger:
    """In-process credit ledger.

    Usage::

        ledger = CreditLedger()
        await ledger.grant("org-1", CreditType.CV_PROCESSING, 10)
        token = await ledger.reserve("org-1", CreditType.CV_PROCESSING, 3)
        ...                                   # do the work
        await ledger.commit(token)            # or: await ledger.release(token)

    Parameters
    ----------
    journal:
        Optional sink that durably appends every transaction.
    clock:
        Returns the current time; injectable so stale-reservation
        reconciliation can be tested without sleeping.
    """

    def __init__(
        self,
        *,
        journal: TransactionJournal | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._journal = journal
        self._clock = clock
        self._accounts: dict[tuple[str, CreditType], _Account] = defaultdict(_Account)
        self._transactions: list[CreditTransaction] = []
        self._reservations: dict[str, _OpenReservation] = {}

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def balance(self, org_id: str, credit_type: CreditType | str) -> int:
        return self._accounts[(org_id, CreditType(credit_type))].balance

    def history(
        self,
        org_id: str,
        limit: int = 50,
        *,
        credit_type: CreditType | str | None = None,
    ) -> list[CreditTransaction]:
        """Return the organization's transactions, newest first."""
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 0:
            raise ActionableError.validation(
                field_name="limit",
                reason=f"is {limit!r} — must be a non-negative integer",
            )
        wanted = CreditType(credit_type) if credit_type is not None else None
        matches = [
            t
            for t in reversed(self._transactions)
            if t.org_id == org_id and (wanted is None or t.credit_type == wanted)
        ]
        return matches[:limit]

    def usage(self, org_id: str, credit_type: CreditType | str | None = None) -> CreditUsage:
        """Aggregate the organization's transaction history."""
        stats = CreditUsage()
        for txn in self.history(org_id, limit=len(self._transactions), credit_type=credit_type):
            if txn.delta < 0:
                stats.total_debited += -txn.delta
            else:
                stats.total_credited += txn.delta
            if txn.reason == REASON_RESERVED:
                stats.reserved_count += 1
            elif txn.reason == REASON_COMMITTED:
                stats.committed_count += 1
            elif txn.reason == REASON_RELEASED:
                stats.released_count += 1
            elif txn.reason == REASON_MANUAL:
                stats.manual_adjustments += 1
        return stats

    def open_reservations(self, org_id: str | None = None) -> list[ReservationToken]:
        return [
            r.token
            for r in self._reservations.values()
            if r.remaining > 0 and (org_id is None or r.token.org_id == org_id)
        ]

    def remaining(self, token: ReservationToken) -> int:
        """Units of *token* not yet committed or released (0 once finalized)."""
        state = self._reservations.get(token.id)
        return state.remaining if state is not None else 0

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def reserve(
        self,
        org_id: str,
        credit_type: CreditType | str,
        count: int,
    ) -> ReservationToken:
        """Atomically check ``balance >= count`` and debit it.

        Raises:
            InsufficientCreditsError: balance is too low; nothing is debited.
            ActionableError (VALIDATION): *count* is not a positive integer.
        """
        ctype = CreditType(credit_type)
        _require_positive("count", count)
        account = self._accounts[(org_id, ctype)]

        async with account.lock:
            if account.balance < count:
                logger.warning(
                    "Reservation refused for %s: %d %s credits required, %d available",
                    org_id,
                    count,
                    ctype.value,
                    account.balance,
                )
                raise ActionableError.insufficient_credits(
                    org_id, ctype.value, required=count, available=account.balance
                )
            token = ReservationToken(
                id=uuid.uuid4().hex,
                org_id=org_id,
                credit_type=ctype,
                amount=count,
                created_at=self._clock(),
            )
            self._append(org_id, ctype, -count, REASON_RESERVED, reservation_id=token.id)
            account.balance -= count
            self._reservations[token.id] = _OpenReservation(token=token)

        logger.info(
            "Reserved %d %s credits for %s (balance now %d)",
            count,
            ctype.value,
            org_id,
            account.balance,
        )
        return token

    async def commit(
        self,
        token: ReservationToken,
        count: int | None = None,
    ) -> CreditTransaction:
        """Mark *count* reserved units (default: all remaining) as consumed.

        The balance does not change — it was debited at reserve time.

        Raises:
            ReservationMismatchError: unknown token, token already finalized,
                or *count* exceeds what remains open.
        """
        account = self._accounts[(token.org_id, token.credit_type)]
        async with account.lock:
            state = self._settleable(token, count)
            amount = state.remaining if count is None else count
            txn = self._append(
                token.org_id,
                token.credit_type,
                0,
                REASON_COMMITTED,
                reservation_id=token.id,
                description=f"{amount} consumed",
            )
            state.committed += amount
        logger.info("Committed %d %s credits for %s", amount, token.credit_type.value, token.org_id)
        return txn

    async def release(
        self,
        token: ReservationToken,
        count: int | None = None,
    ) -> CreditTransaction:
        """Refund *count* reserved units (default: all remaining).

        Raises:
            ReservationMismatchError: unknown token, token already finalized,
                or *count* exceeds what remains open.
        """
        account = self._accounts[(token.org_id, token.credit_type)]
        async with account.lock:
            state = self._settleable(token, count)
            amount = state.remaining if count is None else count
            txn = self._append(
                token.org_id,
                token.credit_type,
                amount,
                REASON_RELEASED,
                reservation_id=token.id,
            )
            state.released += amount
            account.balance += amount
        logger.info(
            "Released %d %s credits for %s (balance now %d)",
            amount,
            token.credit_type.value,
            token.org_id,
            account.balance,
        )
        return txn

    async def grant(
        self,
        org_id: str,
        credit_type: CreditType | str,
        amount: int,
        description: str = "Manual credit addition",
    ) -> CreditTransaction:
        """Add purchased or complimentary credits to an account."""
        _require_positive("amount", amount)
        return await self.adjust(org_id, credit_type, amount, description)

    async def adjust(
        self,
        org_id: str,
        credit_type: CreditType | str,
        delta: int,
        description: str = "",
    ) -> CreditTransaction:
        """Apply a manual correction of *delta* credits.

        Raises:
            InsufficientCreditsError: a negative *delta* would overdraw the account.
        """
        ctype = CreditType(credit_type)
        if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
            raise ActionableError.validation(
                field_name="delta",
                reason=f"is {delta!r} — must be a non-zero integer",
            )
        account = self._accounts[(org_id, ctype)]
        async with account.lock:
            if account.balance + delta < 0:
                raise ActionableError.insufficient_credits(
                    org_id, ctype.value, required=-delta, available=account.balance
                )
            txn = self._append(org_id, ctype, delta, REASON_MANUAL, description=description)
            account.balance += delta
        logger.info(
            "Manual adjustment of %+d %s credits for %s (balance now %d)",
            delta,
            ctype.value,
            org_id,
            account.balance,
        )
        return txn

    async def release_stale(self, older_than: timedelta) -> list[ReservationToken]:
        """Release every open reservation created more than *older_than* ago.

        Reconciles reservations left behind by interrupted runs.  Returns
        the tokens that were released.
        """
        cutoff = self._clock() - older_than
        stale = [
            r.token
            for r in list(self._reservations.values())
            if r.remaining > 0 and r.token.created_at < cutoff
        ]
        for token in stale:
            logger.warning(
                "Releasing stale reservation %s for %s (created %s)",
                token.id,
                token.org_id,
                token.created_at.isoformat(),
            )
            await self.release(token)
        return stale

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _settleable(self, token: ReservationToken, count: int | None) -> _OpenReservation:
        state = self._reservations.get(token.id)
        if state is None or state.token != token:
            raise ActionableError.reservation_mismatch(token.id, "unknown reservation token")
        if state.remaining == 0:
            raise ActionableError.reservation_mismatch(token.id, "reservation already finalized")
        if count is not None:
            if isinstance(count, bool) or not isinstance(count, int) or count < 1:
                raise ActionableError.reservation_mismatch(
                    token.id, f"settle count {count!r} must be a positive integer"
                )
            if count > state.remaining:
                raise ActionableError.reservation_mismatch(
                    token.id, f"settle count {count} exceeds {state.remaining} open units"
                )
        return state

    def _append(
        self,
        org_id: str,
        credit_type: CreditType,
        delta: int,
        reason: str,
        *,
        reservation_id: str | None = None,
        description: str = "",
    ) -> CreditTransaction:
        txn = CreditTransaction(
            id=uuid.uuid4().hex,
            org_id=org_id,
            credit_type=credit_type,
            delta=delta,
            reason=reason,
            created_at=self._clock(),
            reservation_id=reservation_id,
            description=description,
        )
        # Journal first: a failed write must leave balance and reservations untouched.
        if self._journal is not None:
            self._journal.append(txn)
        self._transactions.append(txn)
        return txn


def _require_positive(name: str, value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ActionableError.validation(
            field_name=name,
            reason=f"is {value!r} — must be a positive integer",
        )
