"""
業務異常 -> HTTP 錯誤

錯誤格式：{"detail": {"code": "...", "message": "..."}}
"""
from fastapi import HTTPException

from core.exceptions import (
    Conflict,
    GameClosed,
    InvalidState,
    JoinRejected,
    NotFound,
    PreconditionFailed,
    ResourceExhausted,
    XiDachException,
)

STATUS_CODES = (
    (NotFound, 404),
    (GameClosed, 410),
    (JoinRejected, 403),
    (InvalidState, 409),
    (Conflict, 409),
    (PreconditionFailed, 400),
    (ResourceExhausted, 503),
)


def to_http_exception(exc: XiDachException) -> HTTPException:
    status_code = 500
    for exc_type, code in STATUS_CODES:
        if isinstance(exc, exc_type):
            status_code = code
            break
    return HTTPException(
        status_code=status_code,
        detail={"code": exc.code, "message": str(exc)}
    )


def internal_error() -> HTTPException:
    return HTTPException(
        status_code=500,
        detail={"code": "INTERNAL", "message": "Internal error"}
    )
