import logging
from typing import Optional
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.engine import Connection

from .errors import InvalidStateTransitionError, NotFoundError
from .models import (
    DrawOutcome,
    DrawingResult,
    LotteryDrawing,
    LotteryWinner,
    PrizeTier,
    WinnerDetail,
    WinnerSelection,
    WinnerStatus,
    from_cents,
    to_cents,
)
from .storage import as_utc, lottery_drawings, lottery_winners, users, utcnow

logger = logging.getLogger(__name__)


def _winner_from_row(row) -> LotteryWinner:
    data = row._mapping
    return LotteryWinner(
        winner_id=data["winner_id"],
        drawing_id=data["drawing_id"],
        user_id=data["user_id"],
        slot=data["slot"],
        prize_amount=from_cents(data["prize_cents"]),
        tax_withheld=from_cents(data["tax_cents"]),
        net_amount=from_cents(data["net_cents"]),
        status=WinnerStatus(data["status"]),
        paid_at=as_utc(data["paid_at"]),
    )


class DrawingRecorder:
    """Persists a drawing and all of its winners as one unit."""

    def commit(self, conn: Connection, outcome: DrawOutcome) -> DrawingResult:
        """
        Insert the drawing header and one winner row per selection.

        Must run inside a transaction: any failed insert propagates and the
        caller's transaction discards the header along with every winner.
        """
        drawing_id = str(uuid4())
        conn.execute(lottery_drawings.insert().values(
            drawing_id=drawing_id,
            created_at=utcnow(),
            prize_tiers=[tier.model_dump(mode="json") for tier in outcome.prize_tiers],
            entry_count=outcome.entry_count,
            server_seed=outcome.server_seed,
            client_seed=outcome.client_seed,
            proof_hash=outcome.proof_hash,
        ))

        winners = [self._insert_winner(conn, drawing_id, selection) for selection in outcome.selections]

        logger.info(f"Recorded drawing {drawing_id} with {len(winners)} winners")
        return DrawingResult(
            drawing_id=drawing_id,
            winners_count=len(winners),
            winners=winners,
            server_seed=outcome.server_seed,
            proof_hash=outcome.proof_hash,
        )

    def _insert_winner(self, conn: Connection, drawing_id: str, selection: WinnerSelection) -> LotteryWinner:
        winner = LotteryWinner(
            winner_id=str(uuid4()),
            drawing_id=drawing_id,
            user_id=selection.user_id,
            slot=selection.slot,
            prize_amount=selection.prize_amount,
            tax_withheld=selection.tax_withheld,
            net_amount=selection.net_amount,
            status=WinnerStatus.PENDING,
        )
        conn.execute(lottery_winners.insert().values(
            winner_id=winner.winner_id,
            drawing_id=drawing_id,
            user_id=winner.user_id,
            slot=winner.slot,
            prize_cents=to_cents(winner.prize_amount),
            tax_cents=to_cents(winner.tax_withheld),
            net_cents=to_cents(winner.net_amount),
            status=winner.status.value,
        ))
        return winner

    def get(self, conn: Connection, drawing_id: str) -> LotteryDrawing:
        row = conn.execute(
            select(lottery_drawings).where(lottery_drawings.c.drawing_id == drawing_id)
        ).first()
        if row is None:
            raise NotFoundError(f"Drawing {drawing_id} not found")

        winner_rows = conn.execute(
            select(lottery_winners)
            .where(lottery_winners.c.drawing_id == drawing_id)
            .order_by(lottery_winners.c.slot)
        )
        data = row._mapping
        return LotteryDrawing(
            drawing_id=data["drawing_id"],
            created_at=as_utc(data["created_at"]),
            prize_tiers=[PrizeTier(**tier) for tier in data["prize_tiers"]],
            entry_count=data["entry_count"],
            server_seed=data["server_seed"],
            client_seed=data["client_seed"],
            proof_hash=data["proof_hash"],
            winners=[_winner_from_row(w) for w in winner_rows],
        )

    def list_winners(self, conn: Connection, status: Optional[WinnerStatus] = None) -> list[WinnerDetail]:
        query = (
            select(
                lottery_winners,
                lottery_drawings.c.created_at.label("drawing_created_at"),
                users.c.name,
                users.c.email,
                users.c.contact_handle,
            )
            .select_from(
                lottery_winners
                .join(lottery_drawings, lottery_drawings.c.drawing_id == lottery_winners.c.drawing_id)
                .outerjoin(users, users.c.user_id == lottery_winners.c.user_id)
            )
            .order_by(lottery_drawings.c.created_at, lottery_winners.c.drawing_id, lottery_winners.c.slot)
        )
        if status is not None:
            query = query.where(lottery_winners.c.status == status.value)

        details = []
        for row in conn.execute(query):
            winner = _winner_from_row(row)
            details.append(WinnerDetail(
                **winner.model_dump(),
                drawing_created_at=as_utc(row.drawing_created_at),
                name=row.name,
                email=row.email,
                contact_handle=row.contact_handle,
            ))
        return details

    def mark_paid(self, conn: Connection, winner_id: str) -> LotteryWinner:
        row = conn.execute(
            select(lottery_winners).where(lottery_winners.c.winner_id == winner_id)
        ).first()
        if row is None:
            raise NotFoundError(f"Winner {winner_id} not found")
        winner = _winner_from_row(row)
        if not winner.can_mark_paid():
            raise InvalidStateTransitionError(f"Cannot mark winner {winner_id} paid from {winner.status.value}")

        # Only a row still pending may flip to paid
        paid_at = utcnow()
        result = conn.execute(
            update(lottery_winners)
            .where(lottery_winners.c.winner_id == winner_id)
            .where(lottery_winners.c.status == WinnerStatus.PENDING.value)
            .values(status=WinnerStatus.PAID.value, paid_at=paid_at)
        )
        if result.rowcount != 1:
            raise InvalidStateTransitionError(f"Winner {winner_id} was paid concurrently")

        logger.info(f"Winner {winner_id} marked paid")
        return winner.model_copy(update={"status": WinnerStatus.PAID, "paid_at": paid_at})
