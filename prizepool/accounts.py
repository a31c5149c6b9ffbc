"""
Users and affiliates.

User registration and loyalty awards belong to outside collaborators; these
are the hooks they call so the ledger has balances to convert into entries.
"""

import logging
from datetime import timedelta
from typing import Optional
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.engine import Connection

from . import config
from .errors import ConflictError, NotFoundError, ValidationError
from .models import (
    Affiliate,
    ReferralSession,
    RegisterUserRequest,
    User,
    from_cents,
)
from .storage import affiliates, as_utc, referral_sessions, users, utcnow

logger = logging.getLogger(__name__)


def _user_from_row(row) -> User:
    data = dict(row._mapping)
    data["created_at"] = as_utc(data["created_at"])
    return User(**data)


def affiliate_from_row(row) -> Affiliate:
    data = dict(row._mapping)
    return Affiliate(
        affiliate_id=data["affiliate_id"],
        user_id=data["user_id"],
        referral_code=data["referral_code"],
        rate_table=data["rate_table"],
        commission_balance=from_cents(data["commission_cents"]),
        created_at=as_utc(data["created_at"]),
    )


class AccountRegistry:
    def __init__(self, rate_tables: Optional[dict] = None, referral_base_url: Optional[str] = None,
                 session_days: Optional[int] = None):
        self.rate_tables = rate_tables or config.COMMISSION_RATE_TABLES
        self.referral_base_url = referral_base_url or config.REFERRAL_BASE_URL
        self.session_days = session_days or config.REFERRAL_SESSION_DAYS

    def register_user(self, conn: Connection, request: RegisterUserRequest) -> User:
        user_id = request.user_id or str(uuid4())
        if self.get_user(conn, user_id, required=False):
            raise ConflictError(f"User {user_id} already exists")

        data = {
            "user_id": user_id,
            "name": request.name,
            "email": request.email,
            "contact_handle": request.contact_handle,
            "loyalty_points": request.loyalty_points,
            "created_at": utcnow(),
        }
        conn.execute(users.insert().values(**data))
        return User(**data)

    def get_user(self, conn: Connection, user_id: str, required: bool = True) -> Optional[User]:
        row = conn.execute(select(users).where(users.c.user_id == user_id)).first()
        if row is None:
            if required:
                raise NotFoundError(f"User {user_id} not found")
            return None
        return _user_from_row(row)

    def award_points(self, conn: Connection, user_id: str, points: int) -> User:
        if points <= 0:
            raise ValidationError("Points awarded must be positive")
        result = conn.execute(
            update(users)
            .where(users.c.user_id == user_id)
            .values(loyalty_points=users.c.loyalty_points + points)
        )
        if result.rowcount == 0:
            raise NotFoundError(f"User {user_id} not found")
        return self.get_user(conn, user_id)

    def create_affiliate(self, conn: Connection, user_id: str, rate_table: str) -> Affiliate:
        self.get_user(conn, user_id)
        if rate_table not in self.rate_tables:
            raise ValidationError(f"Unknown commission rate table: {rate_table}")
        if self.get_affiliate_for_user(conn, user_id, required=False):
            raise ConflictError(f"User {user_id} is already an affiliate")

        data = {
            "affiliate_id": str(uuid4()),
            "user_id": user_id,
            "referral_code": f"{user_id[:8]}_{uuid4().hex[:12]}",
            "rate_table": rate_table,
            "commission_cents": 0,
            "created_at": utcnow(),
        }
        conn.execute(affiliates.insert().values(**data))
        logger.info(f"Issued referral code {data['referral_code']} to user {user_id}")
        return Affiliate(
            affiliate_id=data["affiliate_id"],
            user_id=user_id,
            referral_code=data["referral_code"],
            rate_table=rate_table,
            commission_balance=from_cents(0),
            created_at=data["created_at"],
        )

    def referral_url(self, affiliate: Affiliate) -> str:
        return f"{self.referral_base_url}?ref={affiliate.referral_code}"

    def get_affiliate_for_user(self, conn: Connection, user_id: str,
                               required: bool = True) -> Optional[Affiliate]:
        row = conn.execute(select(affiliates).where(affiliates.c.user_id == user_id)).first()
        if row is None:
            if required:
                raise NotFoundError(f"User {user_id} is not an affiliate")
            return None
        return affiliate_from_row(row)

    def find_affiliate_by_code(self, conn: Connection, referral_code: str) -> Optional[Affiliate]:
        row = conn.execute(
            select(affiliates).where(affiliates.c.referral_code == referral_code)
        ).first()
        return affiliate_from_row(row) if row else None

    def track_referral(self, conn: Connection, referral_code: str) -> ReferralSession:
        if self.find_affiliate_by_code(conn, referral_code) is None:
            raise NotFoundError(f"Referral code {referral_code} not found")
        now = utcnow()
        data = {
            "session_id": str(uuid4()),
            "referral_code": referral_code,
            "created_at": now,
            "expires_at": now + timedelta(days=self.session_days),
        }
        conn.execute(referral_sessions.insert().values(**data))
        return ReferralSession(**data)
