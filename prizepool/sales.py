import logging
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.engine import Connection

from . import config
from .accounts import AccountRegistry
from .errors import ConflictError, TransactionError
from .models import RecordSaleRequest, Sale, SaleResult, from_cents, to_cents, to_money
from .storage import affiliates, as_utc, sales, utcnow

logger = logging.getLogger(__name__)


class SaleRecorder:
    """Records immutable sales and credits the referring affiliate in the same transaction."""

    def __init__(self, accounts: AccountRegistry, rate_tables: Optional[dict] = None,
                 default_rate: Optional[Decimal] = None):
        self.accounts = accounts
        self.rate_tables = rate_tables or config.COMMISSION_RATE_TABLES
        self.default_rate = default_rate if default_rate is not None else config.DEFAULT_COMMISSION_RATE

    def commission_rate(self, category: str, rate_table: str = config.STANDARD_RATE_TABLE) -> tuple[Decimal, bool]:
        """Return (rate, default_applied) for a product category."""
        rates = self.rate_tables.get(rate_table)
        if rates is None:
            logger.warning(
                f"Unknown rate table '{rate_table}', applying the "
                f"'{config.STANDARD_RATE_TABLE}' rate for category '{category}'"
            )
            rate = self.rate_tables[config.STANDARD_RATE_TABLE].get(category, self.default_rate)
            return rate, True
        rate = rates.get(category)
        if rate is None:
            logger.warning(
                f"Unrecognized product category '{category}' in rate table '{rate_table}', "
                f"applying default commission rate {self.default_rate}"
            )
            return self.default_rate, True
        return rate, False

    def record(self, conn: Connection, request: RecordSaleRequest) -> SaleResult:
        sale_id = request.sale_id or str(uuid4())
        if conn.execute(select(sales.c.sale_id).where(sales.c.sale_id == sale_id)).first():
            raise ConflictError(f"Sale {sale_id} already recorded")

        affiliate = None
        if request.referral_code:
            affiliate = self.accounts.find_affiliate_by_code(conn, request.referral_code)
            if affiliate is None:
                logger.info(f"Referral code {request.referral_code} not found; sale {sale_id} credits no affiliate")

        rate_table = affiliate.rate_table if affiliate else config.STANDARD_RATE_TABLE
        rate, default_applied = self.commission_rate(request.category, rate_table)
        amount = to_money(request.amount)
        commission = to_money(amount * rate)

        sale = Sale(
            sale_id=sale_id,
            buyer_id=request.buyer_id,
            amount=amount,
            category=request.category,
            referral_code=request.referral_code,
            affiliate_id=affiliate.affiliate_id if affiliate else None,
            commission_amount=commission,
            created_at=utcnow(),
        )
        conn.execute(sales.insert().values(
            sale_id=sale.sale_id,
            buyer_id=sale.buyer_id,
            amount_cents=to_cents(sale.amount),
            category=sale.category,
            referral_code=sale.referral_code,
            affiliate_id=sale.affiliate_id,
            commission_cents=to_cents(sale.commission_amount),
            created_at=sale.created_at,
        ))

        if affiliate:
            # Atomic increment in SQL; never read-modify-write here
            result = conn.execute(
                update(affiliates)
                .where(affiliates.c.affiliate_id == affiliate.affiliate_id)
                .values(commission_cents=affiliates.c.commission_cents + to_cents(commission))
            )
            if result.rowcount != 1:
                raise TransactionError(f"Affiliate {affiliate.affiliate_id} vanished while crediting sale {sale_id}")
            logger.info(f"Sale {sale_id}: credited {commission} to affiliate {affiliate.affiliate_id}")

        if affiliate:
            message = "Sale recorded and affiliate credited"
        elif request.referral_code:
            message = "Sale recorded; referral code not recognized, no affiliate credited"
        else:
            message = "Sale recorded"

        return SaleResult(
            sale=sale,
            affiliate_credited=affiliate is not None,
            default_rate_applied=default_applied,
            message=message,
        )


def sale_from_row(row) -> Sale:
    data = row._mapping
    return Sale(
        sale_id=data["sale_id"],
        buyer_id=data["buyer_id"],
        amount=from_cents(data["amount_cents"]),
        category=data["category"],
        referral_code=data["referral_code"],
        affiliate_id=data["affiliate_id"],
        commission_amount=from_cents(data["commission_cents"]),
        created_at=as_utc(data["created_at"]),
    )
