from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator

from . import config


CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(value: Decimal) -> int:
    return int(to_money(value) * 100)


def from_cents(cents: int) -> Decimal:
    return to_money(Decimal(cents or 0) / 100)


class ProductCategory(str, Enum):
    PRODUCTS = "products"
    SERVICES = "services"
    COURSES = "courses"


class EntrySource(str, Enum):
    AFFILIATE = "affiliate"
    CONSUMER = "consumer"


class WinnerStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"


# ---- Requests ----

class RecordSaleRequest(BaseModel):
    buyer_id: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0, max_digits=15, decimal_places=2)
    category: str = Field(default=ProductCategory.PRODUCTS.value, min_length=1)
    referral_code: Optional[str] = None
    sale_id: Optional[str] = Field(default=None, description="Caller-supplied id; generated when omitted")

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "buyer_id": "550e8400-e29b-41d4-a716-446655440000",
            "amount": "10000.00",
            "category": "services",
            "referral_code": "550e8400_9f1c2a7b",
        }
    })

    @field_validator("referral_code")
    @classmethod
    def blank_code_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            return None
        return value


class RegisterUserRequest(BaseModel):
    user_id: Optional[str] = None
    name: str = Field(..., min_length=1)
    email: Optional[str] = None
    contact_handle: Optional[str] = Field(default=None, description="Messaging-bot user id")
    loyalty_points: int = Field(default=0, ge=0)


class AwardPointsRequest(BaseModel):
    points: int = Field(..., gt=0)


class CreateAffiliateRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    rate_table: str = "standard"


class PrizeTier(BaseModel):
    prize: Decimal = Field(..., gt=0, max_digits=15, decimal_places=2)
    count: int = Field(..., gt=0, le=config.MAX_WINNERS_PER_TIER)


class CheckThresholdRequest(BaseModel):
    revenue_threshold: Decimal = Field(..., gt=0, max_digits=15, decimal_places=2)


class ExecuteDrawRequest(BaseModel):
    prize_tiers: list[PrizeTier] = Field(..., min_length=1)

    model_config = ConfigDict(json_schema_extra={
        "example": {"prize_tiers": [{"prize": 50000, "count": 2}, {"prize": 10000, "count": 5}]}
    })


# ---- Records ----

class User(BaseModel):
    user_id: str
    name: str
    email: Optional[str] = None
    contact_handle: Optional[str] = None
    loyalty_points: int = 0
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Affiliate(BaseModel):
    affiliate_id: str
    user_id: str
    referral_code: str
    rate_table: str
    commission_balance: Decimal
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Sale(BaseModel):
    sale_id: str
    buyer_id: str
    amount: Decimal
    category: str
    referral_code: Optional[str] = None
    affiliate_id: Optional[str] = None
    commission_amount: Decimal
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, frozen=True)


class ReferralSession(BaseModel):
    session_id: str
    referral_code: str
    created_at: datetime
    expires_at: datetime


class Entry(BaseModel):
    user_id: str
    source: EntrySource

    model_config = ConfigDict(frozen=True)


class LotteryWinner(BaseModel):
    winner_id: str
    drawing_id: str
    user_id: str
    slot: int
    prize_amount: Decimal
    tax_withheld: Decimal
    net_amount: Decimal
    status: WinnerStatus = WinnerStatus.PENDING
    paid_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    def can_mark_paid(self) -> bool:
        return self.status == WinnerStatus.PENDING


class LotteryDrawing(BaseModel):
    drawing_id: str
    created_at: datetime
    prize_tiers: list[PrizeTier]
    entry_count: int
    server_seed: str
    client_seed: str
    proof_hash: str
    winners: list[LotteryWinner] = Field(default_factory=list)


# ---- Results ----

class SaleResult(BaseModel):
    sale: Sale
    affiliate_credited: bool
    default_rate_applied: bool
    message: str

    @property
    def sale_id(self) -> str:
        return self.sale.sale_id

    @property
    def commission_amount(self) -> Decimal:
        return self.sale.commission_amount


class AffiliateResponse(BaseModel):
    affiliate: Affiliate
    referral_url: str


class CommissionStatement(BaseModel):
    user_id: str
    referral_code: str
    sales: list[Sale]
    total_commissions: Decimal
    commission_balance: Decimal

    @property
    def reconciled(self) -> bool:
        return self.total_commissions == self.commission_balance


class AffiliateTotal(BaseModel):
    affiliate_id: str
    user_id: str
    referral_code: str
    sale_count: int
    total_commissions: Decimal
    commission_balance: Decimal


class ThresholdResult(BaseModel):
    threshold_reached: bool
    revenue_threshold: Decimal
    current_revenue: Decimal
    total_entries: Optional[int] = None
    entries: Optional[list[Entry]] = None


class WinnerSelection(BaseModel):
    slot: int
    user_id: str
    source: EntrySource
    prize_amount: Decimal
    tax_withheld: Decimal
    net_amount: Decimal


class DrawOutcome(BaseModel):
    prize_tiers: list[PrizeTier]
    entry_count: int
    server_seed: str
    client_seed: str
    proof_hash: str
    selections: list[WinnerSelection]


class DrawingResult(BaseModel):
    drawing_id: str
    winners_count: int
    winners: list[LotteryWinner]
    server_seed: str
    proof_hash: str


class WinnerDetail(LotteryWinner):
    drawing_created_at: datetime
    name: Optional[str] = None
    email: Optional[str] = None
    contact_handle: Optional[str] = None
