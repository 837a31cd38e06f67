"""
Round Manager：管理回合內的掃描、結算與換回合

回合的循環（遊戲 ACTIVE 期間）：
    record_result* -> finish_round -> advance_round -> record_result* -> ...

並發設計：
- record_result：鎖定 Game 後單一 upsert，最後寫入者勝
- finish_round：鎖定 Game 後在同一個 transaction 裡檢查、加 balance、寫交易，
  全有或全無；輸掉競態的一方看到既有的交易就直接當作 no-op
- advance_round：鎖定 Game 後遞增 current_round 並建立 Round，
  (game_id, round_number) 的 unique constraint 擋住重複的回合數
"""
import logging
from typing import List, Optional, Tuple

from models import GameStatus, PlayerStatus, ResultTag, Round, SCANNABLE_TAGS, Transaction
from core.store import GameStore
from core.exceptions import (
    AlreadySettled,
    Conflict,
    GameNotActive,
    HostCannotPlay,
    InvalidResultTag,
    NoCurrentRound,
    NoParticipants,
    RoundNotSettled,
)
from services.payout_service import calculate_payout
from services.state_service import bump_state_version
from database import transactional

logger = logging.getLogger(__name__)


class RoundManager:
    """回合結算引擎"""

    def __init__(self, store: GameStore):
        self.store = store

    @property
    def db(self):
        return self.store.db

    def _require_active(self, game_id: str):
        game = self.store.lock_game(game_id)
        if game.status != GameStatus.ACTIVE:
            raise GameNotActive(f"Game {game_id} is {game.status.value}, expected ACTIVE")
        return game

    def _require_current_round(self, game_id: str) -> Round:
        current_round = self.store.get_current_round(game_id)
        if not current_round:
            raise NoCurrentRound(f"Game {game_id} has no round yet")
        return current_round

    def get_current_round(self, game_id: str) -> Optional[Round]:
        return self.store.get_current_round(game_id)

    @transactional
    def record_result(self, game_id: str, player_id: str, tag: ResultTag) -> Round:
        """
        記錄 Host 掃描到的結果（可重複掃描，最後一次為準）

        前置條件：
        1. Game 是 ACTIVE，且已有目前回合
        2. 玩家屬於這個遊戲，且不是 Host
        3. tag 只能是 WIN / DRAW / X2（LOSE 由結算推導）
        4. 目前回合尚未結算

        參數：
            game_id: Game id
            player_id: 被掃描的玩家
            tag: 掃描結果

        返回：
            寫入結果的 Round

        異常：
            GameNotActive / NoCurrentRound / PlayerNotFound /
            HostCannotPlay / InvalidResultTag / AlreadySettled

        注意：
            - 鎖定 Game：與 finish_round 互斥，結算後不會再混進遲到的掃描
            - 已結算的回合不能再改結果，否則結果和 balance 會對不上
        """
        try:
            tag = ResultTag(tag)
        except ValueError:
            raise InvalidResultTag(f"Unknown result tag {tag!r}")
        if tag not in SCANNABLE_TAGS:
            raise InvalidResultTag(f"Result tag must be one of WIN/DRAW/X2, got {tag.value}")

        game = self._require_active(game_id)
        current_round = self._require_current_round(game_id)

        player = self.store.get_player(player_id, game_id=game.id)
        if player.is_host:
            raise HostCannotPlay(f"Player {player_id} is the host of game {game_id}")

        if self.store.round_is_settled(current_round.id):
            raise AlreadySettled(
                f"Round {current_round.round_number} of game {game_id} is already settled"
            )

        self.store.upsert_result(current_round.id, player.id, tag)
        bump_state_version(self.db, game, "RESULT_RECORDED", {
            "round_number": current_round.round_number,
            "player_id": player.id,
            "tag": tag.value
        })

        logger.info(
            f"Recorded {tag.value} for player {player.id} "
            f"in round {current_round.round_number} (game={game_id})"
        )
        return current_round

    def finish_round(self, game_id: str) -> Tuple[Round, bool, List[Transaction]]:
        """
        結算目前回合（冪等）

        流程：
        1. 在 transaction 內結算（_settle_current_round）
        2. 如果 commit 時撞上 (round, player) 的 unique constraint，
           代表另一個請求已經結算完成，重新讀取後當作 no-op

        返回：
            (Round, newly_settled, transactions)
            - newly_settled=False 表示回合之前就結算過了

        異常：
            GameNotFound / GameNotActive / NoCurrentRound
            NoParticipants: 沒有 PLAYING 的玩家（回合維持未結算）
            Conflict: 撞上 unique constraint 但回合仍未結算（不應發生，交給呼叫者重試）
        """
        try:
            return self._settle_current_round(game_id)
        except Conflict:
            current_round = self.store.get_current_round(game_id)
            if current_round and self.store.round_is_settled(current_round.id):
                logger.info(
                    f"Round {current_round.round_number} of game {game_id} "
                    f"was settled by a concurrent request"
                )
                return current_round, False, self.store.transactions_for_round(current_round.id)
            raise

    @transactional
    def _settle_current_round(self, game_id: str) -> Tuple[Round, bool, List[Transaction]]:
        game = self._require_active(game_id)
        current_round = self._require_current_round(game_id)

        # 1. 冪等：已經有交易就代表結算過了
        if self.store.round_is_settled(current_round.id):
            logger.info(
                f"Round {current_round.round_number} of game {game_id} already settled, skipping"
            )
            return current_round, False, self.store.transactions_for_round(current_round.id)

        # 2. 讀取掃描結果，鎖定所有玩家；WAITING 的玩家是在本回合結算後才加入的
        results = self.store.results_for_round(current_round.id)
        players = [
            player for player in self.store.lock_participants(game_id)
            if player.status == PlayerStatus.PLAYING
        ]
        if not players:
            # 沒有交易的回合永遠不算結算，只能等玩家加入
            raise NoParticipants(
                f"Round {current_round.round_number} of game {game_id} has no players to settle"
            )
        bet = game.betting_value or 0

        # 3. 每個玩家：計算金額、加 balance、寫交易
        transactions = []
        for player in players:
            amount, tx_type = calculate_payout(results.get(player.id), bet)
            player.balance += amount
            transactions.append(
                self.store.add_transaction(current_round.id, player.id, amount, tx_type)
            )

        self.db.flush()
        bump_state_version(self.db, game, "ROUND_SETTLED", {
            "round_number": current_round.round_number,
            "transactions": len(transactions)
        })

        logger.info(
            f"Settled round {current_round.round_number} of game {game_id}: "
            f"{len(transactions)} players, bet {bet}, net {sum(t.amount for t in transactions)}"
        )
        return current_round, True, transactions

    @transactional
    def advance_round(self, game_id: str) -> Round:
        """
        進入下一回合

        前置條件：
        1. Game 是 ACTIVE
        2. 目前回合（如果有）已經結算；否則它的掃描結果會永遠不被結算

        流程：
        1. 鎖定 Game
        2. 新回合數 = 目前回合數 + 1（沒有回合時為 1）
        3. 更新 Game.current_round 並建立 Round
        4. 等待中的玩家（上一回合結算後才加入）改為 PLAYING

        異常：
            GameNotActive / RoundNotSettled
            Conflict: 同時有兩個請求建立同一個回合數（transactional 轉換）
        """
        game = self._require_active(game_id)
        current_round = self.store.get_current_round(game_id)

        if current_round and not self.store.round_is_settled(current_round.id):
            raise RoundNotSettled(
                f"Round {current_round.round_number} of game {game_id} must be finished first"
            )

        next_number = (current_round.round_number if current_round else 0) + 1
        game.current_round = next_number
        new_round = self.store.create_round(game.id, next_number)
        self.store.set_participants_status(game.id, PlayerStatus.PLAYING)
        bump_state_version(self.db, game, "ROUND_STARTED", {"round_number": next_number})

        logger.info(f"Game {game_id} advanced to round {next_number}")
        return new_round
