"""
結算服務：Xì Dách 每回合的輸贏金額

純計算邏輯，不涉及 transaction；RoundManager 負責原子性
"""
from typing import Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from models import ResultTag, Transaction


def calculate_payout(tag: Optional[ResultTag], bet: int) -> Tuple[int, ResultTag]:
    """
    根據 Host 掃描的結果計算玩家本回合的金額

    對照表（bet = 遊戲的下注金額）：
    ┌──────────────┬──────────┬──────────┐
    │ 掃描結果     │ 金額     │ 交易類型 │
    ├──────────────┼──────────┼──────────┤
    │ WIN          │ +bet     │ WIN      │
    │ DRAW         │ 0        │ DRAW     │
    │ X2           │ +2 × bet │ X2       │
    │ LOSE         │ -bet     │ LOSE     │
    │ （沒掃描）   │ -bet     │ LOSE     │
    └──────────────┴──────────┴──────────┘

    沒被掃描的玩家視為輸掉這一回合。
    DRAW 記成獨立的 DRAW 交易，而不是金額 0 的 LOSE。

    參數：
        tag: 掃描結果，None 表示沒有掃描
        bet: 下注金額（非負整數）

    返回：
        (amount, transaction type)
    """
    if tag is None or tag == ResultTag.LOSE:
        return (-bet, ResultTag.LOSE)
    elif tag == ResultTag.WIN:
        return (bet, ResultTag.WIN)
    elif tag == ResultTag.DRAW:
        return (0, ResultTag.DRAW)
    elif tag == ResultTag.X2:
        return (2 * bet, ResultTag.X2)
    raise ValueError(f"Unknown result tag: {tag!r}")


def calculate_ledger_balance(player_id: str, db: Session) -> int:
    """
    加總玩家所有交易的金額

    用途：
    - 驗證 Player.balance 與交易紀錄一致

    參數：
        player_id: 玩家 ID
        db: SQLAlchemy Session

    返回：
        所有交易金額總和（沒有交易時為 0）
    """
    total = db.query(func.coalesce(func.sum(Transaction.amount), 0)).filter(
        Transaction.player_id == player_id
    ).scalar()
    return int(total)
