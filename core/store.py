"""
GameStore：遊戲資料存取層

Manager 不直接碰全域的 session，而是在建構時收到一個 GameStore。
GameStore 只負責讀寫，不決定狀態是否合法；
也不 commit，transaction 邊界由 Manager 上的 @transactional 決定。
"""
import logging
from typing import Dict, List, Optional

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from models import (
    Game,
    GameStatus,
    Player,
    PlayerStatus,
    ResultTag,
    Round,
    RoundResult,
    Transaction,
    utcnow,
    new_id,
)
from core.locks import with_game_lock, lock_game_players
from core.exceptions import GameNotFound, PlayerNotFound

logger = logging.getLogger(__name__)


class GameStore:
    """包住一個 SQLAlchemy Session 的資料存取物件"""

    def __init__(self, db: Session):
        self.db = db

    # ============ Game ============

    def get_game(self, game_id: str) -> Game:
        game = self.db.query(Game).filter(Game.id == game_id).first()
        if not game:
            raise GameNotFound(game_id)
        return game

    def lock_game(self, game_id: str) -> Game:
        """取得並鎖定 Game（必須在 transaction 內）"""
        game = with_game_lock(game_id, self.db).first()
        if not game:
            raise GameNotFound(game_id)
        return game

    def find_game_by_pin(self, pin: str) -> Optional[Game]:
        """
        以 PIN 找遊戲

        PIN 只在未結束的遊戲之間唯一，所以優先回傳未結束的遊戲；
        只剩已結束的遊戲時回傳最新的一個。
        """
        games = self.db.query(Game).filter(Game.pin == pin).order_by(Game.created_at.desc()).all()
        for game in games:
            if game.status != GameStatus.FINISHED:
                return game
        return games[0] if games else None

    def add_game(self, pin: str, host_id: str) -> Game:
        game = Game(pin=pin, host_id=host_id, status=GameStatus.LOBBY)
        self.db.add(game)
        self.db.flush()  # 取得 game.id，並讓 unique index 立刻檢查 PIN
        return game

    # ============ Player ============

    def add_player(
        self,
        game_id: str,
        name: str,
        status: PlayerStatus,
        is_host: bool = False
    ) -> Player:
        player = Player(
            game_id=game_id,
            name=name,
            is_host=is_host,
            balance=0,
            status=status
        )
        self.db.add(player)
        self.db.flush()
        return player

    def get_player(self, player_id: str, game_id: Optional[str] = None) -> Player:
        query = self.db.query(Player).filter(Player.id == player_id)
        if game_id is not None:
            query = query.filter(Player.game_id == game_id)
        player = query.first()
        if not player:
            raise PlayerNotFound(player_id)
        return player

    def list_players(self, game_id: str, include_host: bool = True) -> List[Player]:
        query = self.db.query(Player).filter(Player.game_id == game_id)
        if not include_host:
            query = query.filter(Player.is_host == False)  # noqa: E712
        return query.order_by(Player.created_at).all()

    def lock_participants(self, game_id: str) -> List[Player]:
        """鎖定所有非 Host 玩家（結算用）"""
        return lock_game_players(game_id, self.db).all()

    def count_participants(self, game_id: str) -> int:
        return self.db.query(Player).filter(
            Player.game_id == game_id,
            Player.is_host == False  # noqa: E712
        ).count()

    def set_participants_status(self, game_id: str, status: PlayerStatus) -> int:
        return self.db.query(Player).filter(
            Player.game_id == game_id,
            Player.is_host == False  # noqa: E712
        ).update({Player.status: status}, synchronize_session="fetch")

    # ============ Round ============

    def get_current_round(self, game_id: str) -> Optional[Round]:
        """目前回合 = round_number 最大的 Round"""
        return self.db.query(Round).filter(
            Round.game_id == game_id
        ).order_by(Round.round_number.desc()).first()

    def create_round(self, game_id: str, round_number: int) -> Round:
        round_obj = Round(game_id=game_id, round_number=round_number)
        self.db.add(round_obj)
        self.db.flush()  # (game_id, round_number) 撞號會在這裡拋 IntegrityError
        return round_obj

    # ============ RoundResult ============

    def upsert_result(self, round_id: str, player_id: str, tag: ResultTag) -> None:
        """
        以 (round_id, player_id) 為 key 寫入掃描結果，最後寫入者勝

        SQLite / PostgreSQL 使用單一 INSERT ... ON CONFLICT DO UPDATE，
        重複掃描同一個玩家時不會有 lost update。
        """
        dialect = self.db.get_bind().dialect.name
        values = dict(id=new_id(), round_id=round_id, player_id=player_id, tag=tag, updated_at=utcnow())

        if dialect in ("sqlite", "postgresql"):
            insert = sqlite.insert if dialect == "sqlite" else postgresql.insert
            stmt = insert(RoundResult).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[RoundResult.round_id, RoundResult.player_id],
                set_={"tag": stmt.excluded.tag, "updated_at": stmt.excluded.updated_at}
            )
            self.db.execute(stmt)
            return

        # 其他資料庫：鎖住既有的列再更新
        existing = self.db.query(RoundResult).filter(
            RoundResult.round_id == round_id,
            RoundResult.player_id == player_id
        ).with_for_update().first()
        if existing:
            existing.tag = tag
        else:
            self.db.add(RoundResult(**values))
        self.db.flush()

    def results_for_round(self, round_id: str) -> Dict[str, ResultTag]:
        rows = self.db.query(RoundResult).filter(
            RoundResult.round_id == round_id
        ).populate_existing().all()
        return {row.player_id: row.tag for row in rows}

    # ============ Transaction ============

    def round_is_settled(self, round_id: str) -> bool:
        """回合有任何一筆 Transaction 就代表已結算"""
        return self.db.query(Transaction.id).filter(
            Transaction.round_id == round_id
        ).first() is not None

    def add_transaction(
        self,
        round_id: str,
        player_id: str,
        amount: int,
        tag: ResultTag
    ) -> Transaction:
        transaction = Transaction(round_id=round_id, player_id=player_id, amount=amount, type=tag)
        self.db.add(transaction)
        return transaction

    def transactions_for_round(self, round_id: str) -> List[Transaction]:
        return self.db.query(Transaction).filter(
            Transaction.round_id == round_id
        ).order_by(Transaction.created_at).all()
