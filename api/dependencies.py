"""
FastAPI dependencies：組裝 GameStore 與 Manager

每個請求一個 Session、一個 GameStore；Manager 透過建構參數拿到 store。
"""
from fastapi import Depends
from sqlalchemy.orm import Session

from database import get_db
from core.store import GameStore
from core.game_manager import GameManager
from core.round_manager import RoundManager


def get_store(db: Session = Depends(get_db)) -> GameStore:
    return GameStore(db)


def get_game_manager(store: GameStore = Depends(get_store)) -> GameManager:
    return GameManager(store)


def get_round_manager(store: GameStore = Depends(get_store)) -> RoundManager:
    return RoundManager(store)
