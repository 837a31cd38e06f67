"""
自定義異常類別

集中管理所有業務邏輯異常，方便 API 層統一處理

分類（每個類別都有固定的 code，API 層據此決定 HTTP 狀態碼）：
- NotFound：引用的 Game / Player / Round 不存在
- InvalidState：操作不符合目前的生命週期狀態
- PreconditionFailed：違反業務規則（例如玩家不足）
- Conflict：unique constraint 競態，呼叫者應重試
- ResourceExhausted：PIN 空間重試上限
- GameClosed / JoinRejected：加入遊戲時的拒絕
"""


class XiDachException(Exception):
    """所有遊戲異常的基類"""
    code = "ERROR"


# ============ 分類 ============

class NotFound(XiDachException):
    code = "NOT_FOUND"


class InvalidState(XiDachException):
    code = "INVALID_STATE"


class PreconditionFailed(XiDachException):
    code = "PRECONDITION_FAILED"


class Conflict(XiDachException):
    code = "CONFLICT"


class ResourceExhausted(XiDachException):
    code = "RESOURCE_EXHAUSTED"


class GameClosed(XiDachException):
    """遊戲已結束，不能再加入"""
    code = "CLOSED"


class JoinRejected(XiDachException):
    """遊戲狀態不接受新玩家"""
    code = "REJECTED"


# ============ NotFound ============

class GameNotFound(NotFound):
    """遊戲不存在"""
    def __init__(self, game_ref):
        self.game_ref = game_ref
        super().__init__(f"Game {game_ref} not found")


class PlayerNotFound(NotFound):
    """玩家不存在（或不屬於這個遊戲）"""
    def __init__(self, player_id):
        self.player_id = player_id
        super().__init__(f"Player {player_id} not found")


class RoundNotFound(NotFound):
    """回合不存在"""
    def __init__(self, round_id):
        self.round_id = round_id
        super().__init__(f"Round {round_id} not found")


# ============ InvalidState ============

class InvalidStateTransition(InvalidState):
    """非法的狀態轉換"""
    pass


class GameNotActive(InvalidState):
    """遊戲不是 ACTIVE（尚未開始或已結束）"""
    pass


class NoCurrentRound(InvalidState):
    """遊戲還沒有任何回合"""
    pass


class AlreadySettled(InvalidState):
    """回合已結算，不再接受掃描結果"""
    code = "ALREADY_SETTLED"


class RoundNotSettled(InvalidState):
    """目前回合尚未結算，不能進入下一回合"""
    code = "ROUND_NOT_SETTLED"


# ============ PreconditionFailed ============

class NotEnoughPlayers(PreconditionFailed):
    """玩家數量不足（至少 2 人）"""
    pass


class NoParticipants(PreconditionFailed):
    """回合裡沒有可以結算的玩家"""
    code = "NO_PARTICIPANTS"


class InvalidBettingValue(PreconditionFailed):
    """下注金額必須是非負整數"""
    pass


class InvalidResultTag(PreconditionFailed):
    """掃描結果只能是 WIN / DRAW / X2"""
    pass


class InvalidNickname(PreconditionFailed):
    """暱稱為空"""
    pass


class HostCannotPlay(PreconditionFailed):
    """Host 不參與結算，不能替 Host 記錄結果"""
    pass


# ============ ResourceExhausted ============

class PinSpaceExhausted(ResourceExhausted):
    """PIN 產生重試次數用盡"""
    def __init__(self, attempts):
        self.attempts = attempts
        super().__init__(f"Could not allocate a free PIN after {attempts} attempts")
