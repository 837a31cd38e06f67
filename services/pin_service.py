"""
PIN 服務：產生遊戲的 6 位數字 PIN

generate_pin 是純計算；allocate_pin 只讀資料庫檢查是否已被使用。
PIN 要等呼叫者把 Game 寫入資料庫才算「保留」，
兩個同時建立的遊戲若抽到同一個 PIN，由 games 的 partial unique index 擋下後者。
"""
import logging
import random
import string

from sqlalchemy.orm import Session

from models import Game
from core.exceptions import PinSpaceExhausted

logger = logging.getLogger(__name__)


def generate_pin(length: int = 6) -> str:
    """
    生成隨機的數字 PIN

    範例：042917, 880131

    注意：
    - 不檢查唯一性（由 allocate_pin 負責）
    - 10^6 種可能
    """
    return ''.join(random.choices(string.digits, k=length))


def pin_in_use(pin: str, db: Session) -> bool:
    """任何遊戲（包含已結束）用過這個 PIN 就算佔用"""
    return db.query(Game.id).filter(Game.pin == pin).first() is not None


def allocate_pin(db: Session, max_attempts: int = 50, length: int = 6) -> str:
    """
    產生一個目前沒有任何遊戲使用的 PIN

    參數：
        db: SQLAlchemy Session
        max_attempts: 最多嘗試次數
        length: PIN 長度

    返回：
        PIN 字串

    異常：
        PinSpaceExhausted: 嘗試 max_attempts 次都撞號
    """
    for attempt in range(1, max_attempts + 1):
        pin = generate_pin(length)
        if not pin_in_use(pin, db):
            return pin
        logger.warning(f"PIN collision detected on attempt {attempt}: {pin}")

    raise PinSpaceExhausted(max_attempts)
