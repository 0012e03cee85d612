"""
Santa Ledger

Per-user deed ledgers with a ratio-weighted reward lottery:
- Append-only deed history with good/bad tallies
- Self-recorded and peer-reported deeds
- Shared reward pool owned by a single admin
- Lottery whose win chance equals the good-deed ratio
- Reward balances that only the ledger owner can withdraw
"""

from .balance import Balance, Coin
from .models import (
    Deed,
    UserLedger,
    SantaRegistry,
    DeedRecorded,
    RewardClaimed,
)
from .service import (
    SantaLedgerService,
    LedgerServiceError,
    NotAuthorized,
    InvalidDeedType,
    InsufficientBalance,
)

__all__ = [
    "Balance",
    "Coin",
    "Deed",
    "UserLedger",
    "SantaRegistry",
    "DeedRecorded",
    "RewardClaimed",
    "SantaLedgerService",
    "LedgerServiceError",
    "NotAuthorized",
    "InvalidDeedType",
    "InsufficientBalance",
]
