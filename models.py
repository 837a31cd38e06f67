"""
資料表定義

Game ← Player
Game ← Round ← RoundResult(+Player)
             ← Transaction(+Player)
Game ← EventLog

「目前回合」永遠是 round_number 最大的那一個 Round；
Round 是否已結算以「是否存在 Transaction」判斷，不另存旗標。
"""
import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import relationship

from database import Base


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GameStatus(str, enum.Enum):
    LOBBY = "LOBBY"
    ACTIVE = "ACTIVE"
    FINISHED = "FINISHED"


class PlayerStatus(str, enum.Enum):
    WAITING = "WAITING"
    PLAYING = "PLAYING"


class ResultTag(str, enum.Enum):
    WIN = "WIN"
    DRAW = "DRAW"
    X2 = "X2"
    LOSE = "LOSE"


# Host 掃描時只能輸入這三種；LOSE 由結算推導
SCANNABLE_TAGS = (ResultTag.WIN, ResultTag.DRAW, ResultTag.X2)


class Game(Base):
    __tablename__ = "games"

    id = Column(String(36), primary_key=True, default=new_id)
    pin = Column(String(12), nullable=False, index=True)
    host_id = Column(String(64), nullable=False)
    status = Column(Enum(GameStatus), nullable=False, default=GameStatus.LOBBY)
    betting_value = Column(Integer, nullable=False, default=0)
    current_round = Column(Integer, nullable=False, default=0)
    state_version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    players = relationship("Player", back_populates="game", order_by="Player.created_at")
    rounds = relationship("Round", back_populates="game", order_by="Round.round_number")

    __table_args__ = (
        # PIN 只需要在未結束的遊戲之間唯一
        Index(
            "uq_games_open_pin",
            "pin",
            unique=True,
            sqlite_where=text("status != 'FINISHED'"),
            postgresql_where=text("status != 'FINISHED'"),
        ),
    )


class Player(Base):
    __tablename__ = "players"

    id = Column(String(36), primary_key=True, default=new_id)
    game_id = Column(String(36), ForeignKey("games.id"), nullable=False, index=True)
    name = Column(String(64), nullable=False)
    is_host = Column(Boolean, nullable=False, default=False)
    balance = Column(Integer, nullable=False, default=0)
    status = Column(Enum(PlayerStatus), nullable=False, default=PlayerStatus.WAITING)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    game = relationship("Game", back_populates="players")
    transactions = relationship("Transaction", back_populates="player")


class Round(Base):
    __tablename__ = "rounds"

    id = Column(String(36), primary_key=True, default=new_id)
    game_id = Column(String(36), ForeignKey("games.id"), nullable=False, index=True)
    round_number = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    game = relationship("Game", back_populates="rounds")
    results = relationship("RoundResult", back_populates="round")
    transactions = relationship("Transaction", back_populates="round")

    __table_args__ = (
        UniqueConstraint("game_id", "round_number", name="uq_rounds_game_number"),
    )


class RoundResult(Base):
    __tablename__ = "round_results"

    id = Column(String(36), primary_key=True, default=new_id)
    round_id = Column(String(36), ForeignKey("rounds.id"), nullable=False)
    player_id = Column(String(36), ForeignKey("players.id"), nullable=False)
    tag = Column(Enum(ResultTag), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    round = relationship("Round", back_populates="results")
    player = relationship("Player")

    __table_args__ = (
        UniqueConstraint("round_id", "player_id", name="uq_round_results_round_player"),
    )


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True, default=new_id)
    round_id = Column(String(36), ForeignKey("rounds.id"), nullable=False)
    player_id = Column(String(36), ForeignKey("players.id"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    type = Column(Enum(ResultTag), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    round = relationship("Round", back_populates="transactions")
    player = relationship("Player", back_populates="transactions")

    __table_args__ = (
        UniqueConstraint("round_id", "player_id", name="uq_transactions_round_player"),
    )


class EventLog(Base):
    __tablename__ = "event_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    game_id = Column(String(36), ForeignKey("games.id"), nullable=False, index=True)
    event_type = Column(String(64), nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow)
