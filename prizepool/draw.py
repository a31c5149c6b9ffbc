"""
Prize Draw Logic
Weighted selection with replacement using provably fair SHA-256 hashing
"""

import hashlib
import logging
import secrets
from decimal import Decimal
from typing import Optional

from . import config
from .errors import SelectionError, ValidationError
from .models import (
    DrawOutcome,
    Entry,
    LotteryDrawing,
    PrizeTier,
    WinnerSelection,
    to_money,
)

logger = logging.getLogger(__name__)


def withholding_tax(prize: Decimal, threshold: Optional[Decimal] = None,
                    rate: Optional[Decimal] = None) -> Decimal:
    """Flat withholding: rate × prize when the prize is strictly above the threshold, else zero."""
    threshold = config.TAX_WITHHOLDING_THRESHOLD if threshold is None else threshold
    rate = config.TAX_WITHHOLDING_RATE if rate is None else rate
    if prize > threshold:
        return to_money(prize * rate)
    return to_money(0)


def snapshot_client_seed(entries: list[Entry]) -> str:
    """Client seed binding a draw to one exact entry snapshot: "<count>:<digest>"."""
    digest = hashlib.sha256(
        "\n".join(f"{e.user_id}|{e.source.value}" for e in entries).encode()
    ).hexdigest()
    return f"{len(entries)}:{digest[:32]}"


def slot_hash(server_seed: str, client_seed: str, slot: int) -> str:
    return hashlib.sha256(f"{server_seed}:{client_seed}:{slot}".encode()).hexdigest()


class DrawEngine:
    def __init__(self, tax_threshold: Optional[Decimal] = None, tax_rate: Optional[Decimal] = None):
        self.tax_threshold = config.TAX_WITHHOLDING_THRESHOLD if tax_threshold is None else tax_threshold
        self.tax_rate = config.TAX_WITHHOLDING_RATE if tax_rate is None else tax_rate

    def draw(self, prize_tiers: list[PrizeTier], entries: list[Entry],
             server_seed: Optional[str] = None) -> DrawOutcome:
        """
        Select one entry per winner slot, tier by tier.

        Entries stay in the pool after winning, so the same entry can win
        several slots and several tiers. Slot i maps to entry
        int(sha256(server_seed:client_seed:i)[:16], 16) % len(entries).

        Args:
            prize_tiers: Ordered tiers, each a prize amount and winner count
            entries: Full entry pool, in generation order
            server_seed: Fixed seed for replay; a fresh 64-char hex seed otherwise

        Returns:
            DrawOutcome: winners (not yet persisted) plus the audit seeds

        Raises:
            SelectionError: winners requested from an empty pool
        """
        if not prize_tiers:
            raise ValidationError("At least one prize tier is required")

        requested = sum(tier.count for tier in prize_tiers)
        if requested > 0 and not entries:
            raise SelectionError(f"Cannot select {requested} winners: the entry pool is empty")

        server_seed = server_seed or secrets.token_hex(32)
        client_seed = snapshot_client_seed(entries)

        selections = []
        hashes = []
        slot = 0
        for tier in prize_tiers:
            prize = to_money(tier.prize)
            tax = withholding_tax(prize, self.tax_threshold, self.tax_rate)
            for _ in range(tier.count):
                h = slot_hash(server_seed, client_seed, slot)
                hashes.append(h)
                winner = entries[int(h[:16], 16) % len(entries)]
                selections.append(WinnerSelection(
                    slot=slot,
                    user_id=winner.user_id,
                    source=winner.source,
                    prize_amount=prize,
                    tax_withheld=tax,
                    net_amount=prize - tax,
                ))
                slot += 1

        proof_hash = hashlib.sha256(":".join(hashes).encode()).hexdigest()

        logger.info(f"🎲 Drew {len(selections)} winners from {len(entries)} entries")
        logger.info(f"   Server seed: {server_seed}")
        logger.info(f"   Client seed: {client_seed}")
        logger.info(f"   Proof hash: {proof_hash}")

        return DrawOutcome(
            prize_tiers=prize_tiers,
            entry_count=len(entries),
            server_seed=server_seed,
            client_seed=client_seed,
            proof_hash=proof_hash,
            selections=selections,
        )


def verify_draw(drawing: LotteryDrawing, entries: list[Entry], engine: Optional[DrawEngine] = None) -> bool:
    """
    Replay a persisted drawing against an entry snapshot.

    Returns True only when the snapshot is the one the drawing was made
    from and replaying the stored seed reproduces every winner.
    """
    if snapshot_client_seed(entries) != drawing.client_seed:
        return False
    if not entries:
        return not drawing.winners

    replay = (engine or DrawEngine()).draw(drawing.prize_tiers, entries, server_seed=drawing.server_seed)
    if replay.proof_hash != drawing.proof_hash:
        return False

    stored = sorted(drawing.winners, key=lambda w: w.slot)
    if len(stored) != len(replay.selections):
        return False
    return all(
        w.user_id == s.user_id and w.prize_amount == s.prize_amount and w.tax_withheld == s.tax_withheld
        for w, s in zip(stored, replay.selections)
    )
