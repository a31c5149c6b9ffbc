from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware

from .errors import (
    ConflictError,
    NotFoundError,
    PrizePoolError,
    SelectionError,
    TransactionError,
    ValidationError,
)
from .logging_config import setup_logging
from .models import (
    AffiliateResponse,
    AwardPointsRequest,
    CheckThresholdRequest,
    CommissionStatement,
    CreateAffiliateRequest,
    DrawingResult,
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
)
from .service import PrizePoolService
from .storage import make_engine, setup_database

_STATUS_BY_ERROR = [
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (SelectionError, status.HTTP_409_CONFLICT),
    (TransactionError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def to_http_error(error: PrizePoolError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=str(error))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(error))


def create_app(service: Optional[PrizePoolService] = None, root_path: str = "") -> FastAPI:
    service = service or PrizePoolService(make_engine())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging()
        setup_database(service.engine)
        yield

    app = FastAPI(
        title="Prize Pool Ledger API",
        description="Affiliate commission ledger and prize pool lottery with auditable drawings",
        version="1.0.0",
        root_path=root_path,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.service = service

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": "prize-pool-ledger"}

    @app.post("/users", response_model=User, status_code=status.HTTP_201_CREATED, tags=["Users"])
    def register_user(request: RegisterUserRequest) -> User:
        try:
            return service.register_user(request)
        except PrizePoolError as e:
            raise to_http_error(e)

    @app.post("/users/{user_id}/points", response_model=User, tags=["Users"])
    def award_points(user_id: str, request: AwardPointsRequest) -> User:
        try:
            return service.award_loyalty_points(user_id, request)
        except PrizePoolError as e:
            raise to_http_error(e)

    @app.post("/affiliates", response_model=AffiliateResponse, status_code=status.HTTP_201_CREATED,
              tags=["Affiliates"])
    def create_affiliate(request: CreateAffiliateRequest) -> AffiliateResponse:
        try:
            return service.create_affiliate(request)
        except PrizePoolError as e:
            raise to_http_error(e)

    @app.get("/affiliates/track", response_model=ReferralSession, tags=["Affiliates"])
    def track_referral(ref: str) -> ReferralSession:
        try:
            return service.track_referral(ref)
        except PrizePoolError as e:
            raise to_http_error(e)

    @app.post("/affiliates/sales", response_model=SaleResult, status_code=status.HTTP_201_CREATED,
              tags=["Affiliates"])
    def record_sale(request: RecordSaleRequest) -> SaleResult:
        try:
            return service.record_sale(request)
        except PrizePoolError as e:
            raise to_http_error(e)

    @app.get("/affiliates/{user_id}/report", response_model=CommissionStatement, tags=["Affiliates"])
    def affiliate_report(user_id: str) -> CommissionStatement:
        try:
            return service.get_affiliate_report(user_id)
        except PrizePoolError as e:
            raise to_http_error(e)

    @app.post("/lottery/check-threshold", response_model=ThresholdResult, tags=["Lottery"])
    def check_threshold(request: CheckThresholdRequest) -> ThresholdResult:
        try:
            return service.check_threshold(request)
        except PrizePoolError as e:
            raise to_http_error(e)

    @app.post("/lottery/draw", response_model=DrawingResult, status_code=status.HTTP_201_CREATED,
              tags=["Lottery"])
    def execute_draw(request: ExecuteDrawRequest) -> DrawingResult:
        try:
            return service.execute_draw(request)
        except PrizePoolError as e:
            raise to_http_error(e)

    @app.get("/lottery/winners", response_model=list[WinnerDetail], tags=["Lottery"])
    def list_winners() -> list[WinnerDetail]:
        try:
            return service.get_winners()
        except PrizePoolError as e:
            raise to_http_error(e)

    @app.get("/lottery/drawings/{drawing_id}", response_model=LotteryDrawing, tags=["Lottery"])
    def get_drawing(drawing_id: str) -> LotteryDrawing:
        try:
            return service.get_drawing(drawing_id)
        except PrizePoolError as e:
            raise to_http_error(e)

    @app.post("/lottery/winners/{winner_id}/paid", response_model=LotteryWinner, tags=["Lottery"])
    def mark_winner_paid(winner_id: str) -> LotteryWinner:
        try:
            return service.mark_winner_paid(winner_id)
        except PrizePoolError as e:
            raise to_http_error(e)

    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
