"""
Database schema and transaction handling for the prize pool ledger.

Currency columns hold integer minor units (cents) so balance increments are
exact SQL arithmetic on every backend.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    MetaData,
    String,
    Table,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from . import config
from .errors import ConflictError, PrizePoolError, TransactionError

logger = logging.getLogger(__name__)

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("user_id", String(64), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("email", String(255)),
    Column("contact_handle", String(255)),
    Column("loyalty_points", BigInteger, nullable=False, default=0),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

affiliates = Table(
    "affiliates",
    metadata,
    Column("affiliate_id", String(64), primary_key=True),
    Column("user_id", String(64), ForeignKey("users.user_id"), nullable=False, unique=True),
    Column("referral_code", String(64), nullable=False, unique=True),
    Column("rate_table", String(64), nullable=False),
    Column("commission_cents", BigInteger, nullable=False, default=0),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

sales = Table(
    "sales",
    metadata,
    Column("sale_id", String(64), primary_key=True),
    Column("buyer_id", String(64), nullable=False),
    Column("amount_cents", BigInteger, nullable=False),
    Column("category", String(64), nullable=False),
    Column("referral_code", String(64), index=True),
    Column("affiliate_id", String(64), ForeignKey("affiliates.affiliate_id")),
    Column("commission_cents", BigInteger, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

referral_sessions = Table(
    "referral_sessions",
    metadata,
    Column("session_id", String(64), primary_key=True),
    Column("referral_code", String(64), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("expires_at", DateTime(timezone=True), nullable=False),
)

lottery_drawings = Table(
    "lottery_drawings",
    metadata,
    Column("drawing_id", String(64), primary_key=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("prize_tiers", JSON, nullable=False),
    Column("entry_count", Integer, nullable=False),
    Column("server_seed", String(128), nullable=False),
    Column("client_seed", String(255), nullable=False),
    Column("proof_hash", String(128), nullable=False),
)

lottery_winners = Table(
    "lottery_winners",
    metadata,
    Column("winner_id", String(64), primary_key=True),
    Column("drawing_id", String(64), ForeignKey("lottery_drawings.drawing_id"), nullable=False),
    Column("user_id", String(64), nullable=False),
    Column("slot", Integer, nullable=False),
    Column("prize_cents", BigInteger, nullable=False),
    Column("tax_cents", BigInteger, nullable=False),
    Column("net_cents", BigInteger, nullable=False),
    Column("status", String(16), nullable=False),
    Column("paid_at", DateTime(timezone=True)),
    UniqueConstraint("drawing_id", "slot"),
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def make_engine(database_url: Optional[str] = None, **kwargs) -> Engine:
    return create_engine(database_url or config.DATABASE_URL, pool_pre_ping=True, **kwargs)


def setup_database(engine: Engine) -> None:
    """Create all prize pool tables that do not exist yet."""
    metadata.create_all(engine)
    logger.info("Prize pool schema ready")


@contextmanager
def transaction(engine: Engine, operation: str) -> Iterator[Connection]:
    """
    Run a block inside one database transaction.

    Commits when the block exits cleanly, rolls back on any exception.
    Integrity violations surface as ConflictError, other persistence
    failures as TransactionError; domain errors pass through unchanged.

    Usage:
        with transaction(engine, "record_sale") as conn:
            conn.execute(...)
    """
    try:
        with engine.begin() as conn:
            yield conn
    except PrizePoolError:
        raise
    except IntegrityError as e:
        logger.warning(f"{operation}: integrity violation, rolled back: {e.orig}")
        raise ConflictError(f"{operation} conflicts with an existing record") from e
    except SQLAlchemyError as e:
        logger.error(f"{operation}: transaction failed and was rolled back: {e}")
        raise TransactionError(f"{operation} failed; no changes were applied") from e
