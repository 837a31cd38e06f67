"""
Player API Endpoints

職責：
1. 玩家以 PIN 加入遊戲
2. 查詢玩家的結算紀錄
"""
from fastapi import APIRouter, Depends
import logging

from models import PlayerStatus
from schemas import HistoryEntry, PlayerHistoryResponse, PlayerJoin, PlayerJoinResponse
from core.game_manager import GameManager
from core.store import GameStore
from core.exceptions import XiDachException
from services.history_service import get_player_history
from services.notification_service import ChangeEvent, ChangeFeed, get_change_feed
from api.dependencies import get_game_manager, get_store
from api.errors import internal_error, to_http_exception

router = APIRouter(prefix="/api", tags=["players"])
logger = logging.getLogger(__name__)


@router.post("/games/{pin}/join", response_model=PlayerJoinResponse)
def join_game(
    pin: str,
    player_data: PlayerJoin,
    manager: GameManager = Depends(get_game_manager),
    feed: ChangeFeed = Depends(get_change_feed)
):
    """
    加入遊戲（玩家 endpoint）

    前置條件：
    - PIN 對應的遊戲必須存在（404）
    - 遊戲尚未結束（410）

    流程：
    1. 透過 PIN 找到遊戲
    2. 建立 Player（大廳中 WAITING，進行中 PLAYING；目前回合已結算則等到下一回合）
    3. 返回玩家資訊與下一個畫面
    """
    try:
        player, game = manager.join_game(pin, player_data.nickname)
        feed.publish(ChangeEvent(game.id, "player", game.state_version, "PLAYER_JOINED"))

        return PlayerJoinResponse(
            player_id=player.id,
            game_id=game.id,
            status=player.status,
            next_view="player" if player.status == PlayerStatus.PLAYING else "waiting"
        )

    except XiDachException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to join game with PIN {pin}: {e}", exc_info=True)
        raise internal_error()


@router.get("/players/{player_id}/history", response_model=PlayerHistoryResponse)
def get_history(player_id: str, store: GameStore = Depends(get_store)):
    """
    取得玩家每回合的結算紀錄

    返回：
        - balance: 目前餘額
        - history: 依回合排序的紀錄（掃描結果、金額、累計餘額）
    """
    try:
        player = store.get_player(player_id)
        history = get_player_history(player_id, store.db)

        return PlayerHistoryResponse(
            player_id=player.id,
            balance=player.balance,
            history=[HistoryEntry(**entry) for entry in history]
        )

    except XiDachException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to fetch history of player {player_id}: {e}", exc_info=True)
        raise internal_error()
