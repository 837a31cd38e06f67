"""
Game API Endpoints

職責：
1. 建立遊戲（Host）
2. 開始 / 結束遊戲（Host）
3. 查詢遊戲畫面資料與短輪詢狀態
"""
from fastapi import APIRouter, Depends
import logging

from schemas import (
    ActionResponse,
    GameCreate,
    GameCreateResponse,
    GameResponse,
    GameStart,
    GameStateResponse,
    GameViewResponse,
    PlayerResponse,
    RoundResponse,
    RoundResultResponse,
    TransactionResponse,
)
from core.game_manager import GameManager
from core.exceptions import XiDachException
from services.notification_service import ChangeEvent, ChangeFeed, get_change_feed
from api.dependencies import get_game_manager
from api.errors import internal_error, to_http_exception

router = APIRouter(prefix="/api/games", tags=["games"])
logger = logging.getLogger(__name__)


def build_game_view(view: dict) -> GameViewResponse:
    current_round = view["current_round"]
    round_response = None
    if current_round is not None:
        round_response = RoundResponse(
            id=current_round.id,
            round_number=current_round.round_number,
            settled=bool(view["transactions"]),
            results=[RoundResultResponse(**result) for result in view["results"]],
            transactions=[TransactionResponse.model_validate(t) for t in view["transactions"]],
        )

    return GameViewResponse(
        game=GameResponse.model_validate(view["game"]),
        players=[PlayerResponse.model_validate(p) for p in view["players"]],
        current_round=round_response,
    )


@router.post("", response_model=GameCreateResponse)
def create_game(
    payload: GameCreate,
    manager: GameManager = Depends(get_game_manager),
    feed: ChangeFeed = Depends(get_change_feed)
):
    """
    建立遊戲（Host endpoint）

    返回：
        - game_id: 遊戲 id
        - pin: 6 位數字 PIN（玩家用來加入）
        - host_player_id: Host 的 player id
    """
    try:
        game, host = manager.create_game(payload.host_id)
        feed.publish(ChangeEvent(game.id, "game", game.state_version, "GAME_CREATED"))
        return GameCreateResponse(game_id=game.id, pin=game.pin, host_player_id=host.id)

    except XiDachException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to create game: {e}", exc_info=True)
        raise internal_error()


@router.post("/{game_id}/start", response_model=GameResponse)
def start_game(
    game_id: str,
    payload: GameStart,
    manager: GameManager = Depends(get_game_manager),
    feed: ChangeFeed = Depends(get_change_feed)
):
    """
    開始遊戲（Host endpoint）

    前置條件：
    - 遊戲狀態必須是 LOBBY

    效果：
    - 狀態 LOBBY -> ACTIVE，設定下注金額
    - 建立 Round 1，所有玩家改為 PLAYING
    """
    try:
        game = manager.start_game(game_id, payload.betting_value)
        feed.publish(ChangeEvent(game.id, "game", game.state_version, "GAME_STARTED"))
        return GameResponse.model_validate(game)

    except XiDachException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to start game {game_id}: {e}", exc_info=True)
        raise internal_error()


@router.post("/{game_id}/start-legacy", response_model=GameResponse)
def start_game_legacy(
    game_id: str,
    manager: GameManager = Depends(get_game_manager),
    feed: ChangeFeed = Depends(get_change_feed)
):
    """
    舊版開始遊戲（不設定下注金額，至少 2 位玩家）
    """
    try:
        game = manager.start_game_legacy(game_id)
        feed.publish(ChangeEvent(game.id, "game", game.state_version, "GAME_STARTED"))
        return GameResponse.model_validate(game)

    except XiDachException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to start game {game_id}: {e}", exc_info=True)
        raise internal_error()


@router.post("/{game_id}/end", response_model=ActionResponse)
def end_game(
    game_id: str,
    manager: GameManager = Depends(get_game_manager),
    feed: ChangeFeed = Depends(get_change_feed)
):
    """
    結束遊戲（Host endpoint）

    遊戲存在就一定成功；已結束的遊戲再呼叫一次不會有任何變化。
    """
    try:
        game = manager.end_game(game_id)
        feed.publish(ChangeEvent(game.id, "game", game.state_version, "GAME_ENDED"))
        return ActionResponse(status="ok")

    except XiDachException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to end game {game_id}: {e}", exc_info=True)
        raise internal_error()


@router.get("/{game_id}", response_model=GameViewResponse)
def get_game(game_id: str, manager: GameManager = Depends(get_game_manager)):
    """
    取得遊戲畫面資料

    返回：
        - game: 遊戲資訊
        - players: 玩家列表（依加入順序）
        - current_round: 目前回合（含掃描結果與交易），尚未開始時為 null
    """
    try:
        return build_game_view(manager.get_game_view(game_id))

    except XiDachException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to fetch game {game_id}: {e}", exc_info=True)
        raise internal_error()


@router.get("/{game_id}/state", response_model=GameStateResponse)
def get_game_state(game_id: str, manager: GameManager = Depends(get_game_manager)):
    """
    短輪詢：前端比較 state_version，有變才重新抓 GET /api/games/{game_id}
    """
    try:
        return GameStateResponse(**manager.get_state(game_id))

    except XiDachException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to fetch state of game {game_id}: {e}", exc_info=True)
        raise internal_error()
