"""
PIN 產生與分配測試
"""
import pytest

from models import Game, GameStatus
from core.exceptions import PinSpaceExhausted, ResourceExhausted
from services import pin_service
from services.pin_service import allocate_pin, generate_pin, pin_in_use


def test_generate_pin_is_six_digits():
    for _ in range(50):
        pin = generate_pin()
        assert len(pin) == 6
        assert pin.isdigit()


def test_generate_pin_respects_length():
    assert len(generate_pin(8)) == 8


def test_allocate_skips_pins_in_use(db, monkeypatch):
    db.add(Game(pin="111111", host_id="h", status=GameStatus.ACTIVE))
    db.add(Game(pin="222222", host_id="h", status=GameStatus.FINISHED))
    db.commit()

    candidates = iter(["111111", "222222", "333333"])
    monkeypatch.setattr(pin_service, "generate_pin", lambda length=6: next(candidates))

    # 已結束遊戲的 PIN 也不會被分配（全域唯一是較安全的做法）
    assert allocate_pin(db) == "333333"


def test_allocate_gives_up_after_max_attempts(db, monkeypatch):
    db.add(Game(pin="999999", host_id="h", status=GameStatus.LOBBY))
    db.commit()
    monkeypatch.setattr(pin_service, "generate_pin", lambda length=6: "999999")

    with pytest.raises(PinSpaceExhausted) as exc_info:
        allocate_pin(db, max_attempts=5)

    assert isinstance(exc_info.value, ResourceExhausted)
    assert exc_info.value.attempts == 5


def test_pin_in_use(db):
    assert not pin_in_use("123456", db)
    db.add(Game(pin="123456", host_id="h"))
    db.commit()
    assert pin_in_use("123456", db)
