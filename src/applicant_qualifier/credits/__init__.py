"""Credit accounting — reserve before work, commit or release after."""

from applicant_qualifier.credits.ledger import (
    CreditLedger,
    CreditTransaction,
    CreditUsage,
    ReservationToken,
)

__all__ = ["CreditLedger", "CreditTransaction", "CreditUsage", "ReservationToken"]
