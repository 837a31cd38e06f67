from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import sessionmaker, Session
from pydantic_settings import BaseSettings
from functools import lru_cache, wraps
from typing import List
import logging

from core.exceptions import Conflict, XiDachException

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    database_url: str = "sqlite:///./xidach.db"
    log_level: str = "INFO"
    pin_length: int = 6
    pin_max_attempts: int = 50
    game_create_attempts: int = 3
    cors_origins: List[str] = ["*"]
    feed_queue_size: int = 100

    class Config:
        env_file = ".env"


@lru_cache()
def get_settings():
    return Settings()


settings = get_settings()


def build_engine(database_url: str):
    # SQLite 需要特殊設定：connect_args={"check_same_thread": False}
    # 這允許多執行緒存取同一個 SQLite 連線（FastAPI 的多執行緒環境需要）
    return create_engine(
        database_url,
        connect_args={"check_same_thread": False} if database_url.startswith("sqlite") else {},
        pool_pre_ping=True
    )


engine = build_engine(settings.database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    """
    FastAPI dependency：提供 Database Session

    使用 yield 確保 session 在請求結束後會被關閉
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _resolve_session(args, kwargs):
    if args and isinstance(args[0], Session):
        return args[0]
    if isinstance(kwargs.get('db'), Session):
        return kwargs['db']
    # bound method：self 持有 db（GameStore 或 Manager）
    if args and isinstance(getattr(args[0], 'db', None), Session):
        return args[0].db
    return None


def transactional(func):
    """
    Transaction decorator：確保資料庫操作的原子性

    使用方式：
        @transactional
        def some_business_logic(db: Session, ...):
            # 所有 DB 操作都在一個 transaction 內
            game = Game(...)
            db.add(game)
            # 不需要手動 commit，decorator 會處理

        class GameManager:
            @transactional
            def start_game(self, game_id, ...):
                # self.db 就是 transaction 使用的 session
                ...

    如果函式內發生異常：
        - 自動 rollback
        - IntegrityError（unique constraint 競態）轉成 Conflict
        - 其他異常會被重新拋出（讓上層處理）

    注意：
        - 第一個參數必須是 db: Session，或是帶有 db 屬性的物件
        - 不要在函式內手動 commit（decorator 會處理）
        - 不要巢狀呼叫被 decorate 的函式（內層 commit 會切斷外層的原子性）
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        db = _resolve_session(args, kwargs)

        if db is None:
            raise ValueError(
                f"@transactional requires 'db: Session' as first argument, "
                f"but got args={args}, kwargs={kwargs}"
            )

        try:
            result = func(*args, **kwargs)
            db.commit()
            return result
        except IntegrityError as e:
            logger.warning(f"Unique constraint violated in {func.__name__}: {e.orig}")
            db.rollback()
            raise Conflict(f"Concurrent write rejected in {func.__name__}") from e
        except XiDachException as e:
            # 業務規則拒絕：不是系統錯誤，不需要 traceback
            logger.info(f"{func.__name__} rejected: {e}")
            db.rollback()
            raise
        except Exception as e:
            logger.error(f"Transaction failed in {func.__name__}: {e}", exc_info=True)
            db.rollback()
            raise

    return wrapper
