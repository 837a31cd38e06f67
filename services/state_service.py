"""
State version 服務

每一次改變遊戲狀態的操作都在同一個 transaction 裡把 Game.state_version 加一，
並寫一筆 EventLog。前端只要比較 state_version 就知道要不要重新抓資料。
"""
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from models import EventLog, Game


def bump_state_version(
    db: Session,
    game: Game,
    reason: str,
    data: Optional[Dict[str, Any]] = None
) -> int:
    """
    提升遊戲的 state_version 並記錄事件

    參數：
        db: SQLAlchemy Session
        game: 要遞增版本的 Game
        reason: 事件類型（例如 ROUND_SETTLED）
        data: 附加資訊

    返回：
        新的 state_version

    注意：
        - 不 commit，交由外層 transaction 處理
    """
    # 以 SQL 運算式遞增，不需要先鎖 Game 也不會遺失更新
    game.state_version = Game.state_version + 1
    db.flush()
    version = game.state_version

    db.add(EventLog(
        game_id=game.id,
        event_type=reason,
        data=dict(data or {}, state_version=version)
    ))
    db.flush()
    return version
