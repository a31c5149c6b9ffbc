import logging
from decimal import Decimal

from sqlalchemy.engine import Connection

from .commissions import CommissionLedger
from .entries import EntryGenerator
from .errors import ValidationError
from .models import ThresholdResult, to_money

logger = logging.getLogger(__name__)


class ThresholdEvaluator:
    def __init__(self, ledger: CommissionLedger, entries: EntryGenerator):
        self.ledger = ledger
        self.entries = entries

    def evaluate(self, conn: Connection, revenue_threshold: Decimal) -> ThresholdResult:
        if revenue_threshold <= 0:
            raise ValidationError("Revenue threshold must be positive")
        threshold = to_money(revenue_threshold)
        revenue = self.ledger.total_revenue(conn)

        if revenue < threshold:
            logger.info(f"Revenue {revenue} below threshold {threshold}")
            return ThresholdResult(
                threshold_reached=False,
                revenue_threshold=threshold,
                current_revenue=revenue,
            )

        pool = self.entries.generate(conn)
        logger.info(f"Revenue {revenue} reached threshold {threshold}; {len(pool)} eligible entries")
        return ThresholdResult(
            threshold_reached=True,
            revenue_threshold=threshold,
            current_revenue=revenue,
            total_entries=len(pool),
            entries=pool,
        )
