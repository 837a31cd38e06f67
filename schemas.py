"""
API Request / Response schemas
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from models import GameStatus, PlayerStatus, ResultTag


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# ============ Requests ============

class GameCreate(BaseModel):
    # 尚未接上身分驗證，Host 識別先用 stub
    host_id: str = Field(default="temp-host-id", min_length=1, max_length=64)


class PlayerJoin(BaseModel):
    nickname: str = Field(..., min_length=1, max_length=64)


class GameStart(BaseModel):
    betting_value: int = Field(..., ge=0)


class ResultSubmit(BaseModel):
    player_id: str
    tag: ResultTag


# ============ Responses ============

class ActionResponse(BaseModel):
    status: str = "ok"


class GameCreateResponse(BaseModel):
    game_id: str
    pin: str
    host_player_id: str


class PlayerJoinResponse(BaseModel):
    player_id: str
    game_id: str
    status: PlayerStatus
    # 前端下一個畫面：PLAYING 直接進 player，其他是 waiting
    next_view: str


class GameResponse(ORMModel):
    id: str
    pin: str
    host_id: str
    status: GameStatus
    betting_value: int
    current_round: int
    state_version: int
    updated_at: Optional[datetime] = None


class PlayerResponse(ORMModel):
    id: str
    game_id: str
    name: str
    is_host: bool
    balance: int
    status: PlayerStatus
    created_at: Optional[datetime] = None


class RoundResultResponse(BaseModel):
    player_id: str
    tag: ResultTag


class TransactionResponse(ORMModel):
    player_id: str
    amount: int
    type: ResultTag


class RoundResponse(ORMModel):
    id: str
    round_number: int
    settled: bool = False
    results: List[RoundResultResponse] = []
    transactions: List[TransactionResponse] = []


class GameViewResponse(BaseModel):
    game: GameResponse
    players: List[PlayerResponse]
    current_round: Optional[RoundResponse] = None


class GameStateResponse(BaseModel):
    game_id: str
    status: GameStatus
    current_round: int
    state_version: int


class FinishRoundResponse(BaseModel):
    settled: bool = True
    newly_settled: bool
    round_number: int
    transactions: List[TransactionResponse]


class AdvanceRoundResponse(BaseModel):
    round_number: int


class HistoryEntry(BaseModel):
    round_number: int
    scanned_tag: Optional[ResultTag] = None
    type: ResultTag
    amount: int
    balance_after: int


class PlayerHistoryResponse(BaseModel):
    player_id: str
    balance: int
    history: List[HistoryEntry]
