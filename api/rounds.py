"""
Round API Endpoints

重點：
1. record_result 可重複呼叫，最後一次掃描為準
2. finish_round 冪等：重複呼叫只會結算一次，之後回傳同樣的結算結果
3. 所有業務邏輯集中在 RoundManager
"""
from fastapi import APIRouter, Depends, HTTPException
import logging

from schemas import (
    ActionResponse,
    AdvanceRoundResponse,
    FinishRoundResponse,
    ResultSubmit,
    RoundResponse,
    RoundResultResponse,
    TransactionResponse,
)
from core.round_manager import RoundManager
from core.exceptions import XiDachException
from services.notification_service import ChangeEvent, ChangeFeed, get_change_feed
from api.dependencies import get_round_manager
from api.errors import internal_error, to_http_exception

router = APIRouter(prefix="/api/games", tags=["rounds"])
logger = logging.getLogger(__name__)


@router.get("/{game_id}/rounds/current", response_model=RoundResponse)
def get_current_round(game_id: str, manager: RoundManager = Depends(get_round_manager)):
    """
    取得目前回合（含掃描結果與交易）
    """
    try:
        current_round = manager.get_current_round(game_id)
        if not current_round:
            raise HTTPException(status_code=404, detail={"code": "NOT_FOUND", "message": "No round yet"})

        results = manager.store.results_for_round(current_round.id)
        transactions = manager.store.transactions_for_round(current_round.id)
        return RoundResponse(
            id=current_round.id,
            round_number=current_round.round_number,
            settled=bool(transactions),
            results=[RoundResultResponse(player_id=p, tag=t) for p, t in results.items()],
            transactions=[TransactionResponse.model_validate(t) for t in transactions],
        )

    except HTTPException:
        raise
    except XiDachException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to get current round of game {game_id}: {e}", exc_info=True)
        raise internal_error()


@router.post("/{game_id}/rounds/current/results", response_model=ActionResponse)
def record_result(
    game_id: str,
    result_data: ResultSubmit,
    manager: RoundManager = Depends(get_round_manager),
    feed: ChangeFeed = Depends(get_change_feed)
):
    """
    記錄掃描結果（Host endpoint）

    參數：
        game_id: 遊戲 id
        result_data: player_id 與 tag（WIN / DRAW / X2）

    失敗：
        - 沒有目前回合 / 遊戲不是 ACTIVE：409
        - 回合已結算：409 ALREADY_SETTLED
    """
    try:
        manager.record_result(game_id, result_data.player_id, result_data.tag)
        game = manager.store.get_game(game_id)
        feed.publish(ChangeEvent(game_id, "result", game.state_version, "RESULT_RECORDED"))
        return ActionResponse(status="ok")

    except XiDachException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to record result in game {game_id}: {e}", exc_info=True)
        raise internal_error()


@router.post("/{game_id}/rounds/current/finish", response_model=FinishRoundResponse)
def finish_round(
    game_id: str,
    manager: RoundManager = Depends(get_round_manager),
    feed: ChangeFeed = Depends(get_change_feed)
):
    """
    結算目前回合（Host endpoint）

    冪等：
    - 第一次呼叫：結算並回傳 newly_settled=True
    - 之後的呼叫（或同時的重複請求）：不重複結算，newly_settled=False

    失敗時 balance 完全不變，可以安全重試。
    """
    try:
        round_obj, newly_settled, transactions = manager.finish_round(game_id)
        if newly_settled:
            game = manager.store.get_game(game_id)
            feed.publish(ChangeEvent(game_id, "transaction", game.state_version, "ROUND_SETTLED"))

        return FinishRoundResponse(
            settled=True,
            newly_settled=newly_settled,
            round_number=round_obj.round_number,
            transactions=[TransactionResponse.model_validate(t) for t in transactions]
        )

    except XiDachException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to finish round in game {game_id}: {e}", exc_info=True)
        raise internal_error()


@router.post("/{game_id}/rounds/advance", response_model=AdvanceRoundResponse)
def advance_round(
    game_id: str,
    manager: RoundManager = Depends(get_round_manager),
    feed: ChangeFeed = Depends(get_change_feed)
):
    """
    進入下一回合（Host endpoint）

    前置條件：
    - 遊戲是 ACTIVE
    - 目前回合已結算（否則 409 ROUND_NOT_SETTLED）
    """
    try:
        new_round = manager.advance_round(game_id)
        game = manager.store.get_game(game_id)
        feed.publish(ChangeEvent(game_id, "round", game.state_version, "ROUND_STARTED"))
        return AdvanceRoundResponse(round_number=new_round.round_number)

    except XiDachException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to advance round in game {game_id}: {e}", exc_info=True)
        raise internal_error()
