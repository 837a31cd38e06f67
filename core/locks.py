"""
並發控制工具

提供 Database-level 的鎖定機制，防止競態條件（Race Condition）

主要使用 PostgreSQL 的 SELECT ... FOR UPDATE 來實現悲觀鎖（Pessimistic Locking）
SQLite 不支援行級鎖，SQLAlchemy 會直接省略 FOR UPDATE；
此時在鎖定點先執行一個不改值的 UPDATE，取得整個資料庫的寫入鎖，
效果等同把所有遊戲的寫入排成一列
"""
from sqlalchemy import update
from sqlalchemy.orm import Session, Query

from models import Game, Player


def _acquire_sqlite_write_lock(game_id: str, db: Session) -> None:
    # pysqlite 在第一個 DML 才送出 BEGIN，之後持有 RESERVED 鎖直到 commit / rollback；
    # 其他連線的寫入會在這裡等待（busy timeout），讀到的一定是對方 commit 之後的資料
    db.execute(
        update(Game)
        .where(Game.id == game_id)
        .values(state_version=Game.state_version)
        .execution_options(synchronize_session=False)
    )


def with_game_lock(game_id: str, db: Session) -> Query:
    """
    鎖定一個 Game（行級鎖）

    使用場景：
    - 修改 Game 狀態時（start / end）
    - 記錄掃描結果與結算回合時（兩者互斥，結算後不會再混進遲到的掃描）
    - 進入下一回合時（防止兩個請求產生同樣的 round_number）

    範例：
        game = with_game_lock(game_id, db).first()
        if not game:
            raise GameNotFound(game_id)
        game.status = GameStatus.ACTIVE

    參數：
        game_id: Game 的 id
        db: SQLAlchemy Session

    返回：
        Query object（需要呼叫 .first() 或 .one() 來取得結果）

    注意：
        - nowait=False 表示如果鎖被佔用，會等待
        - 必須在 transaction 內使用（確保有 commit 或 rollback）
        - populate_existing 讓等到鎖之後讀到的是最新的資料，而不是 identity map 裡的舊值
        - SQLite 在呼叫時就會取得寫入鎖（見 _acquire_sqlite_write_lock），
          所以要在同一個 transaction 的任何讀取之前呼叫
    """
    if db.get_bind().dialect.name == "sqlite":
        _acquire_sqlite_write_lock(game_id, db)

    return db.query(Game).filter(
        Game.id == game_id
    ).with_for_update(nowait=False).populate_existing()


def lock_game_players(game_id: str, db: Session) -> Query:
    """
    鎖定遊戲內所有非 Host 玩家（用於結算時批次更新 balance）

    參數：
        game_id: Game 的 id
        db: SQLAlchemy Session

    返回：
        Query object（呼叫 .all() 取得所有結果）
    """
    return db.query(Player).filter(
        Player.game_id == game_id,
        Player.is_host == False  # noqa: E712
    ).order_by(Player.created_at).with_for_update(nowait=False).populate_existing()
