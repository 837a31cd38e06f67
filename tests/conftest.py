"""
測試設定

每個測試使用自己的 SQLite 檔案資料庫（tmp_path），
API 測試透過 dependency_overrides 換掉 get_db 與 ChangeFeed。
"""
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

import models  # noqa: F401
from database import Base, build_engine, get_db
from core.store import GameStore
from core.game_manager import GameManager
from core.round_manager import RoundManager
from services.notification_service import ChangeFeed, get_change_feed


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'xidach_test.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def store(db):
    return GameStore(db)


@pytest.fixture
def game_manager(store):
    return GameManager(store)


@pytest.fixture
def round_manager(store):
    return RoundManager(store)


@pytest.fixture
def lobby_game(game_manager):
    game, _host = game_manager.create_game("host-1")
    return game


@pytest.fixture
def join_players(game_manager, lobby_game):
    """以暱稱加入 lobby_game，返回 Player 列表"""
    def _join(*names):
        return [game_manager.join_game(lobby_game.pin, name)[0] for name in names]
    return _join


@pytest.fixture
def feed():
    return ChangeFeed(queue_size=10)


@pytest.fixture
def client(session_factory, feed):
    from main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_change_feed] = lambda: feed
    yield TestClient(app)
    app.dependency_overrides.clear()
