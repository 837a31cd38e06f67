"""
狀態機：集中管理 Game 的狀態轉換

合法轉換：
    LOBBY  -> ACTIVE
    LOBBY  -> FINISHED
    ACTIVE -> FINISHED

FINISHED 是終態；狀態只會往前走，永不倒退。
"""
import logging

from sqlalchemy.orm import Session

from models import Game, GameStatus
from core.locks import with_game_lock
from core.exceptions import GameNotFound, InvalidStateTransition

logger = logging.getLogger(__name__)


class GameStateMachine:
    """Game 狀態轉換的唯一入口"""

    TRANSITIONS = {
        GameStatus.LOBBY: {GameStatus.ACTIVE, GameStatus.FINISHED},
        GameStatus.ACTIVE: {GameStatus.FINISHED},
        GameStatus.FINISHED: set(),
    }

    @classmethod
    def can_transition(cls, current: GameStatus, target: GameStatus) -> bool:
        return target in cls.TRANSITIONS.get(current, set())

    @classmethod
    def transition(cls, game_id: str, target: GameStatus, db: Session) -> Game:
        """
        將 Game 轉換到 target 狀態

        流程：
        1. 鎖定 Game（同一個 transaction 內重複鎖定不會有問題）
        2. 檢查轉換是否合法
        3. 更新狀態

        參數：
            game_id: Game id
            target: 目標狀態
            db: SQLAlchemy Session

        返回：
            更新後的 Game

        異常：
            GameNotFound: Game 不存在
            InvalidStateTransition: 不合法的轉換

        注意：
            - 不 commit，由外層的 @transactional 處理
        """
        game = with_game_lock(game_id, db).first()
        if not game:
            raise GameNotFound(game_id)

        if not cls.can_transition(game.status, target):
            raise InvalidStateTransition(
                f"Cannot transition game {game_id} from {game.status.value} to {target.value}"
            )

        previous = game.status
        game.status = target
        db.flush()

        logger.info(f"Game {game_id} transitioned {previous.value} -> {target.value}")
        return game
