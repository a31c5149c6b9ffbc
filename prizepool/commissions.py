from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.engine import Connection

from .errors import NotFoundError
from .models import AffiliateTotal, CommissionStatement, from_cents
from .sales import sale_from_row
from .storage import affiliates, sales


class CommissionLedger:
    """Read-only projection over recorded sales and affiliate balances.

    Each answer is read with a single statement, so its figures come from
    one committed state even while sales are being recorded.
    """

    def statement(self, conn: Connection, user_id: str) -> CommissionStatement:
        rows = conn.execute(
            select(
                affiliates.c.referral_code.label("affiliate_code"),
                affiliates.c.commission_cents.label("balance_cents"),
                *sales.c,
            )
            .select_from(affiliates.outerjoin(sales, sales.c.referral_code == affiliates.c.referral_code))
            .where(affiliates.c.user_id == user_id)
            .order_by(sales.c.created_at, sales.c.sale_id)
        ).fetchall()
        if not rows:
            raise NotFoundError(f"User {user_id} is not an affiliate")

        sale_list = [sale_from_row(row) for row in rows if row.sale_id is not None]
        return CommissionStatement(
            user_id=user_id,
            referral_code=rows[0].affiliate_code,
            sales=sale_list,
            total_commissions=sum((s.commission_amount for s in sale_list), Decimal("0.00")),
            commission_balance=from_cents(rows[0].balance_cents),
        )

    def total_revenue(self, conn: Connection) -> Decimal:
        cents = conn.execute(select(func.coalesce(func.sum(sales.c.amount_cents), 0))).scalar_one()
        return from_cents(cents)

    def affiliate_totals(self, conn: Connection) -> list[AffiliateTotal]:
        query = (
            select(
                affiliates.c.affiliate_id,
                affiliates.c.user_id,
                affiliates.c.referral_code,
                affiliates.c.commission_cents,
                func.count(sales.c.sale_id).label("sale_count"),
                func.coalesce(func.sum(sales.c.commission_cents), 0).label("sales_commission_cents"),
            )
            .select_from(affiliates.outerjoin(sales, sales.c.referral_code == affiliates.c.referral_code))
            .group_by(
                affiliates.c.affiliate_id,
                affiliates.c.user_id,
                affiliates.c.referral_code,
                affiliates.c.commission_cents,
            )
            .order_by(affiliates.c.user_id)
        )
        return [
            AffiliateTotal(
                affiliate_id=row.affiliate_id,
                user_id=row.user_id,
                referral_code=row.referral_code,
                sale_count=row.sale_count,
                total_commissions=from_cents(row.sales_commission_cents),
                commission_balance=from_cents(row.commission_cents),
            )
            for row in conn.execute(query)
        ]
