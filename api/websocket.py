"""
WebSocket：遊戲變更通知

連線後先送一個 hello（含目前的 state_version），之後每次有變更就推送 ChangeEvent。
通知只是提示，前端收到後應重新呼叫 GET /api/games/{game_id}。
"""
import asyncio
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from fastapi.websockets import WebSocketState
from sqlalchemy.orm import Session

from database import get_db
from core.store import GameStore
from core.exceptions import GameNotFound
from services.notification_service import ChangeFeed, get_change_feed

router = APIRouter(tags=["websocket"])
logger = logging.getLogger(__name__)


@router.websocket("/ws/games/{game_id}")
async def game_feed(
    websocket: WebSocket,
    game_id: str,
    db: Session = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed)
):
    try:
        state_version = GameStore(db).get_game(game_id).state_version
    except GameNotFound:
        await websocket.close(code=4404)
        return
    finally:
        # 只需要讀一次，不要在整個連線期間佔住資料庫連線
        db.close()

    # 先訂閱再 accept，確保 hello 之後的變更一定收得到
    subscription_id, queue = feed.subscribe_queue(game_id, asyncio.get_running_loop())

    async def forward():
        while True:
            event = await queue.get()
            await websocket.send_json(event.to_dict())

    async def drain():
        # 前端送來的訊息都忽略，只用來偵測斷線
        while True:
            await websocket.receive_text()

    try:
        await websocket.accept()
        await websocket.send_json({"type": "hello", "game_id": game_id, "state_version": state_version})

        sender = asyncio.create_task(forward())
        receiver = asyncio.create_task(drain())
        # 任一邊結束（斷線或推送失敗）就收掉另一邊
        done, pending = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        errors = [task.exception() for task in done]
        failures = [error for error in errors if not isinstance(error, WebSocketDisconnect)]
        if not failures:
            logger.info(f"Subscriber {subscription_id} disconnected from game {game_id}")
        else:
            logger.warning(f"Change feed for game {game_id} failed: {failures[0]}", exc_info=failures[0])
            if websocket.application_state == WebSocketState.CONNECTED:
                await websocket.close(code=1011)

    except WebSocketDisconnect:
        logger.info(f"Subscriber {subscription_id} disconnected from game {game_id}")
    finally:
        feed.unsubscribe(subscription_id)
