"""
Commission Ledger & Prize Pool Lottery

This package provides:
- Immutable sale records with affiliate commission accrual
- Per-affiliate commission statements and revenue totals
- Weighted lottery entries from commission balances and loyalty points
- Revenue threshold gating for prize drawings
- Provably fair drawings with flat-rate tax withholding
- All-or-nothing persistence of a drawing and its winners
"""

from .errors import (
    PrizePoolError,
    ValidationError,
    NotFoundError,
    ConflictError,
    InvalidStateTransitionError,
    TransactionError,
    SelectionError,
)
from .models import (
    EntrySource,
    WinnerStatus,
    ProductCategory,
    Entry,
    Sale,
    Affiliate,
    User,
    PrizeTier,
    LotteryDrawing,
    LotteryWinner,
)
from .service import PrizePoolService
from .storage import make_engine, setup_database

__all__ = [
    "PrizePoolError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "InvalidStateTransitionError",
    "TransactionError",
    "SelectionError",
    "EntrySource",
    "WinnerStatus",
    "ProductCategory",
    "Entry",
    "Sale",
    "Affiliate",
    "User",
    "PrizeTier",
    "LotteryDrawing",
    "LotteryWinner",
    "PrizePoolService",
    "make_engine",
    "setup_database",
]
