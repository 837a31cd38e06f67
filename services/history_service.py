"""
Player history service.

Builds a per-player ledger of settled rounds so the frontend can render
the authoritative balance history directly from the server.
"""
from typing import List, Dict, Any

from sqlalchemy.orm import Session

from models import Player, Round, RoundResult, Transaction
from core.exceptions import PlayerNotFound


def get_player_history(player_id: str, db: Session) -> List[Dict[str, Any]]:
    """
    Return the player's settled rounds ordered by round number.

    Each entry carries the scanned tag (None when the player was never
    scanned and lost by default), the settled amount and the running
    balance after that round.
    """
    if not db.query(Player.id).filter(Player.id == player_id).first():
        raise PlayerNotFound(player_id)

    rows = (
        db.query(Transaction, Round.round_number, RoundResult.tag)
        .join(Round, Transaction.round_id == Round.id)
        .outerjoin(
            RoundResult,
            (RoundResult.round_id == Transaction.round_id)
            & (RoundResult.player_id == Transaction.player_id)
        )
        .filter(Transaction.player_id == player_id)
        .order_by(Round.round_number)
        .all()
    )

    history: List[Dict[str, Any]] = []
    running = 0

    for transaction, round_number, scanned_tag in rows:
        running += transaction.amount
        history.append({
            "round_number": round_number,
            "scanned_tag": scanned_tag,
            "type": transaction.type,
            "amount": transaction.amount,
            "balance_after": running,
        })

    return history
