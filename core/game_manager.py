"""
Game Manager：管理 Game 的完整生命週期

職責：
1. 建立 Game（含 Host player）
2. 玩家以 PIN 加入
3. 開始遊戲（設定下注金額並建立 Round 1），以及不下注的舊版開始流程
4. 結束遊戲
5. 查詢 Game 資訊

單一職責：只管 Game，不管 Round 的結算（由 RoundManager 負責）
所有狀態變更都經過 GameStateMachine
"""
import logging
from typing import Dict, Optional, Tuple, Any

from models import Game, GameStatus, Player, PlayerStatus
from core.store import GameStore
from core.state_machine import GameStateMachine
from core.exceptions import (
    Conflict,
    GameClosed,
    GameNotFound,
    InvalidBettingValue,
    InvalidNickname,
    InvalidStateTransition,
    JoinRejected,
    NotEnoughPlayers,
)
from services.pin_service import allocate_pin
from services.state_service import bump_state_version
from database import settings, transactional

logger = logging.getLogger(__name__)

HOST_PLAYER_NAME = "Host"


class GameManager:
    """Game 生命週期管理器"""

    def __init__(self, store: GameStore):
        self.store = store

    @property
    def db(self):
        return self.store.db

    def create_game(self, host_id: str) -> Tuple[Game, Player]:
        """
        建立新遊戲（含 Host 玩家）

        PIN 在寫入前才檢查唯一性，兩個同時建立的遊戲可能抽到同一個 PIN；
        輸的一方會在 unique index 上拿到 Conflict，這裡換一個 PIN 重來。

        參數：
            host_id: Host 識別（目前是 stub）

        返回：
            (Game, Host Player) tuple

        異常：
            PinSpaceExhausted: PIN 重試次數用盡
            Conflict: 重試 game_create_attempts 次仍然撞號
        """
        attempts = max(1, settings.game_create_attempts)
        for attempt in range(1, attempts + 1):
            try:
                return self._insert_game(host_id)
            except Conflict:
                if attempt == attempts:
                    raise
                logger.warning(f"PIN race lost while creating game (attempt {attempt}), retrying")

    @transactional
    def _insert_game(self, host_id: str) -> Tuple[Game, Player]:
        pin = allocate_pin(self.db, max_attempts=settings.pin_max_attempts, length=settings.pin_length)

        game = self.store.add_game(pin=pin, host_id=host_id)
        host = self.store.add_player(
            game_id=game.id,
            name=HOST_PLAYER_NAME,
            status=PlayerStatus.WAITING,
            is_host=True
        )
        bump_state_version(self.db, game, "GAME_CREATED", {"pin": pin})

        logger.info(f"Created game {game.id} with PIN {pin} for host {host_id}")
        return game, host

    @transactional
    def join_game(self, pin: str, nickname: str) -> Tuple[Player, Game]:
        """
        以 PIN 加入遊戲

        規則：
        - 找不到 PIN → GameNotFound
        - 遊戲已結束 → GameClosed
        - 遊戲進行中也可以加入，玩家直接是 PLAYING；大廳中的玩家是 WAITING
        - 目前回合已經結算時，玩家先是 WAITING，advance_round 後才參加結算

        返回：
            (Player, Game)
        """
        name = (nickname or "").strip()
        if not name:
            raise InvalidNickname("Nickname must not be empty")

        game = self.store.find_game_by_pin(pin)
        if not game:
            raise GameNotFound(f"with PIN {pin}")

        if game.status == GameStatus.FINISHED:
            raise GameClosed(f"Game {game.id} has ended")

        if game.status not in (GameStatus.LOBBY, GameStatus.ACTIVE):
            raise JoinRejected(f"Game {game.id} is not accepting players (status: {game.status.value})")

        # 鎖住 Game：與 finish_round 互斥，加入時看到的結算狀態不會過期
        game = self.store.lock_game(game.id)
        status = self._status_for_new_player(game)
        player = self.store.add_player(game_id=game.id, name=name, status=status)
        bump_state_version(self.db, game, "PLAYER_JOINED", {"player_id": player.id})

        logger.info(f"Player {player.id} ({name}) joined game {game.id} as {status.value}")
        return player, game

    def _status_for_new_player(self, game: Game) -> PlayerStatus:
        if game.status != GameStatus.ACTIVE:
            return PlayerStatus.WAITING

        current_round = self.store.get_current_round(game.id)
        if current_round and self.store.round_is_settled(current_round.id):
            return PlayerStatus.WAITING
        return PlayerStatus.PLAYING

    @transactional
    def start_game(self, game_id: str, betting_value: int) -> Game:
        """
        開始遊戲（LOBBY -> ACTIVE）

        流程：
        1. 狀態轉換（會鎖定 Game 並檢查是否為 LOBBY）
        2. 設定下注金額，建立 Round 1
        3. 所有非 Host 玩家改為 PLAYING

        異常：
            GameNotFound: Game 不存在
            InvalidStateTransition: Game 不是 LOBBY
            InvalidBettingValue: 下注金額為負數
        """
        # 先轉換狀態：transition 會重新鎖定並刷新 Game
        game = GameStateMachine.transition(game_id, GameStatus.ACTIVE, self.db)

        if betting_value is None or int(betting_value) != betting_value or betting_value < 0:
            raise InvalidBettingValue(f"Betting value must be a non-negative integer, got {betting_value}")

        game.betting_value = int(betting_value)
        game.current_round = 1
        self.store.create_round(game.id, 1)
        players = self.store.set_participants_status(game.id, PlayerStatus.PLAYING)
        bump_state_version(self.db, game, "GAME_STARTED", {
            "betting_value": game.betting_value,
            "player_count": players
        })

        logger.info(f"Started game {game_id} with bet {game.betting_value} and {players} players")
        return game

    @transactional
    def start_game_legacy(self, game_id: str) -> Game:
        """
        舊版開始流程（不設定下注金額）

        前置條件：
        1. Game 狀態必須是 LOBBY
        2. 非 Host 玩家 >= 2

        不建立回合；Host 第一次 advance_round 時才建立 Round 1。
        """
        game = self.store.lock_game(game_id)
        if game.status != GameStatus.LOBBY:
            raise InvalidStateTransition(
                f"Cannot start game {game_id} in status {game.status.value}"
            )

        player_count = self.store.count_participants(game_id)
        if player_count < 2:
            raise NotEnoughPlayers(
                f"Need at least 2 players to start the game, got {player_count}"
            )

        game = GameStateMachine.transition(game_id, GameStatus.ACTIVE, self.db)
        self.store.set_participants_status(game_id, PlayerStatus.PLAYING)
        bump_state_version(self.db, game, "GAME_STARTED", {"player_count": player_count})

        logger.info(f"Started game {game_id} (no betting) with {player_count} players")
        return game

    @transactional
    def end_game(self, game_id: str) -> Game:
        """
        結束遊戲（LOBBY/ACTIVE -> FINISHED）

        不檢查目前回合是否已結算；對已結束的遊戲呼叫是 no-op。
        """
        game = self.store.lock_game(game_id)
        if game.status == GameStatus.FINISHED:
            logger.info(f"Game {game_id} already finished, nothing to do")
            return game

        game = GameStateMachine.transition(game_id, GameStatus.FINISHED, self.db)
        bump_state_version(self.db, game, "GAME_ENDED")

        logger.info(f"Game {game_id} ended after round {game.current_round}")
        return game

    def get_game_view(self, game_id: str) -> Dict[str, Any]:
        """
        取得遊戲完整畫面資料

        返回：
            {
                "game": Game,
                "players": [Player, ...]（依加入順序）,
                "current_round": Round 或 None,
                "results": [{"player_id", "tag"}, ...],
                "transactions": [Transaction, ...],
            }
        """
        game = self.store.get_game(game_id)
        current_round = self.store.get_current_round(game_id)

        view: Dict[str, Any] = {
            "game": game,
            "players": self.store.list_players(game_id),
            "current_round": current_round,
            "results": [],
            "transactions": [],
        }
        if current_round:
            results = self.store.results_for_round(current_round.id)
            view["results"] = [
                {"player_id": player_id, "tag": tag} for player_id, tag in results.items()
            ]
            view["transactions"] = self.store.transactions_for_round(current_round.id)
        return view

    def get_state(self, game_id: str) -> Dict[str, Optional[Any]]:
        """短輪詢用：只回傳 status / current_round / state_version"""
        game = self.store.get_game(game_id)
        return {
            "game_id": game.id,
            "status": game.status,
            "current_round": game.current_round,
            "state_version": game.state_version,
        }
