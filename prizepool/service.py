import logging
from decimal import Decimal
from typing import Optional, Type, TypeVar, Union

import pydantic
from sqlalchemy.engine import Engine

from .accounts import AccountRegistry
from .commissions import CommissionLedger
from .draw import DrawEngine, verify_draw
from .drawings import DrawingRecorder
from .entries import EntryGenerator
from .errors import ValidationError
from .models import (
    AffiliateResponse,
    AffiliateTotal,
    AwardPointsRequest,
    CheckThresholdRequest,
    CommissionStatement,
    CreateAffiliateRequest,
    DrawingResult,
    Entry,
    ExecuteDrawRequest,
    LotteryDrawing,
    LotteryWinner,
    RecordSaleRequest,
    ReferralSession,
    RegisterUserRequest,
    SaleResult,
    ThresholdResult,
    User,
    WinnerDetail,
    WinnerStatus,
)
from .sales import SaleRecorder
from .storage import transaction
from .threshold import ThresholdEvaluator

logger = logging.getLogger(__name__)

RequestT = TypeVar("RequestT", bound=pydantic.BaseModel)


def _validated(model: Type[RequestT], payload: Union[RequestT, dict]) -> RequestT:
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload)
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid {model.__name__}: {e.error_count()} error(s)", errors=e.errors()) from e


class PrizePoolService:
    """
    Operations of the commission ledger and lottery engine.

    The engine is owned by the hosting process; every operation opens its
    own transaction on it.
    """

    def __init__(self, engine: Engine, accounts: Optional[AccountRegistry] = None,
                 sale_recorder: Optional[SaleRecorder] = None,
                 entry_generator: Optional[EntryGenerator] = None,
                 draw_engine: Optional[DrawEngine] = None,
                 drawing_recorder: Optional[DrawingRecorder] = None):
        self.engine = engine
        self.accounts = accounts or AccountRegistry()
        self.sale_recorder = sale_recorder or SaleRecorder(self.accounts)
        self.ledger = CommissionLedger()
        self.entry_generator = entry_generator or EntryGenerator()
        self.threshold = ThresholdEvaluator(self.ledger, self.entry_generator)
        self.draw_engine = draw_engine or DrawEngine()
        self.drawing_recorder = drawing_recorder or DrawingRecorder()

    # ---- Users & affiliates ----

    def register_user(self, request: Union[RegisterUserRequest, dict]) -> User:
        request = _validated(RegisterUserRequest, request)
        with transaction(self.engine, "register_user") as conn:
            return self.accounts.register_user(conn, request)

    def award_loyalty_points(self, user_id: str, request: Union[AwardPointsRequest, dict, int]) -> User:
        if isinstance(request, int):
            request = {"points": request}
        request = _validated(AwardPointsRequest, request)
        with transaction(self.engine, "award_loyalty_points") as conn:
            return self.accounts.award_points(conn, user_id, request.points)

    def create_affiliate(self, request: Union[CreateAffiliateRequest, dict]) -> AffiliateResponse:
        request = _validated(CreateAffiliateRequest, request)
        with transaction(self.engine, "create_affiliate") as conn:
            affiliate = self.accounts.create_affiliate(conn, request.user_id, request.rate_table)
        return AffiliateResponse(affiliate=affiliate, referral_url=self.accounts.referral_url(affiliate))

    def track_referral(self, referral_code: str) -> ReferralSession:
        if not referral_code:
            raise ValidationError("No referral code")
        with transaction(self.engine, "track_referral") as conn:
            return self.accounts.track_referral(conn, referral_code)

    # ---- Sales & commissions ----

    def record_sale(self, request: Union[RecordSaleRequest, dict]) -> SaleResult:
        request = _validated(RecordSaleRequest, request)
        with transaction(self.engine, "record_sale") as conn:
            return self.sale_recorder.record(conn, request)

    def get_affiliate_report(self, user_id: str) -> CommissionStatement:
        with transaction(self.engine, "get_affiliate_report") as conn:
            return self.ledger.statement(conn, user_id)

    def get_affiliate_totals(self) -> list[AffiliateTotal]:
        with transaction(self.engine, "get_affiliate_totals") as conn:
            return self.ledger.affiliate_totals(conn)

    def get_total_revenue(self) -> Decimal:
        with transaction(self.engine, "get_total_revenue") as conn:
            return self.ledger.total_revenue(conn)

    # ---- Lottery ----

    def generate_entries(self) -> list[Entry]:
        with transaction(self.engine, "generate_entries") as conn:
            return self.entry_generator.generate(conn)

    def check_threshold(self, request: Union[CheckThresholdRequest, dict]) -> ThresholdResult:
        request = _validated(CheckThresholdRequest, request)
        with transaction(self.engine, "check_threshold") as conn:
            return self.threshold.evaluate(conn, request.revenue_threshold)

    def execute_draw(self, request: Union[ExecuteDrawRequest, dict],
                     server_seed: Optional[str] = None) -> DrawingResult:
        """Draw from a freshly generated entry pool and commit the drawing with all winners, or nothing.

        server_seed is for in-process replays only; the HTTP layer never passes it.
        """
        request = _validated(ExecuteDrawRequest, request)
        with transaction(self.engine, "execute_draw") as conn:
            entries = self.entry_generator.generate(conn)
            outcome = self.draw_engine.draw(request.prize_tiers, entries, server_seed=server_seed)
            return self.drawing_recorder.commit(conn, outcome)

    def get_drawing(self, drawing_id: str) -> LotteryDrawing:
        with transaction(self.engine, "get_drawing") as conn:
            return self.drawing_recorder.get(conn, drawing_id)

    def get_winners(self, status: Optional[WinnerStatus] = None) -> list[WinnerDetail]:
        with transaction(self.engine, "get_winners") as conn:
            return self.drawing_recorder.list_winners(conn, status)

    def mark_winner_paid(self, winner_id: str) -> LotteryWinner:
        with transaction(self.engine, "mark_winner_paid") as conn:
            return self.drawing_recorder.mark_paid(conn, winner_id)

    def verify_drawing(self, drawing_id: str, entries: Optional[list[Entry]] = None) -> bool:
        """Replay a drawing against an entry snapshot (the current pool when none is given)."""
        with transaction(self.engine, "verify_drawing") as conn:
            drawing = self.drawing_recorder.get(conn, drawing_id)
            if entries is None:
                entries = self.entry_generator.generate(conn)
        verified = verify_draw(drawing, entries, self.draw_engine)
        if not verified:
            logger.warning(f"Drawing {drawing_id} did not verify against the supplied entry snapshot")
        return verified
