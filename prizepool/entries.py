"""
Lottery entry generation.

Every full unit of affiliate commission balance and every full unit of
consumer loyalty points is worth one entry. Entries are never stored; they
are derived fresh from the ledger each time they are needed.
"""

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.engine import Connection

from . import config
from .models import Entry, EntrySource, from_cents
from .storage import affiliates, users

logger = logging.getLogger(__name__)


def entry_count(value, unit) -> int:
    """floor(value / unit), never negative."""
    if value is None or value <= 0:
        return 0
    return int(value // unit)


class EntryGenerator:
    def __init__(self, affiliate_unit: Optional[Decimal] = None, consumer_unit: Optional[int] = None):
        self.affiliate_unit = affiliate_unit or config.AFFILIATE_ENTRY_UNIT
        self.consumer_unit = consumer_unit or config.CONSUMER_ENTRY_UNIT

    def generate(self, conn: Connection) -> list[Entry]:
        """
        Build the flat entry pool from current balances.

        Order is deterministic for a given snapshot: affiliate entries by
        user id, then consumer entries by user id.
        """
        entries: list[Entry] = []

        affiliate_rows = conn.execute(
            select(affiliates.c.user_id, affiliates.c.commission_cents)
            .order_by(affiliates.c.user_id, affiliates.c.affiliate_id)
        )
        for row in affiliate_rows:
            count = entry_count(from_cents(row.commission_cents), self.affiliate_unit)
            entries.extend(Entry(user_id=row.user_id, source=EntrySource.AFFILIATE) for _ in range(count))

        consumer_rows = conn.execute(
            select(users.c.user_id, users.c.loyalty_points)
            .where(users.c.loyalty_points >= self.consumer_unit)
            .order_by(users.c.user_id)
        )
        for row in consumer_rows:
            count = entry_count(row.loyalty_points, self.consumer_unit)
            entries.extend(Entry(user_id=row.user_id, source=EntrySource.CONSUMER) for _ in range(count))

        logger.debug(f"Generated {len(entries)} lottery entries")
        return entries
