"""
RoundManager 測試：掃描、結算、換回合

重點：
- 結算冪等，交易只會產生一次
- 最後一次掃描為準
- 沒被掃描的玩家自動輸
- 結算全有或全無
- 玩家 balance 永遠等於交易加總
"""
import threading

import pytest

from database import transactional
from models import EventLog, Player, PlayerStatus, ResultTag, Round, RoundResult, Transaction
from core.store import GameStore
from core.round_manager import RoundManager
from core.exceptions import (
    AlreadySettled,
    Conflict,
    GameNotActive,
    HostCannotPlay,
    InvalidResultTag,
    InvalidState,
    NoCurrentRound,
    NoParticipants,
    PlayerNotFound,
    RoundNotSettled,
)
from services.payout_service import calculate_ledger_balance
import core.round_manager as round_manager_module


def balance_of(db, player):
    return db.query(Player).filter(Player.id == player.id).one().balance


def transactions_of(db, player):
    return (
        db.query(Transaction)
        .join(Round, Transaction.round_id == Round.id)
        .filter(Transaction.player_id == player.id)
        .order_by(Round.round_number)
        .all()
    )


def pause_after(store, method_name, reached, release):
    """讓 store 的查詢回傳前先停住，直到 release 被設定或等待一秒"""
    real = getattr(store, method_name)

    def paused(*args, **kwargs):
        value = real(*args, **kwargs)
        reached.set()
        release.wait(timeout=1)
        return value

    setattr(store, method_name, paused)


@pytest.fixture
def active_game(game_manager, lobby_game, join_players):
    """bet=100，兩位玩家 An / Binh，Round 1 進行中"""
    an, binh = join_players("An", "Binh")
    game_manager.start_game(lobby_game.id, 100)
    return lobby_game, an, binh


class TestScenario:

    def test_two_rounds(self, round_manager, active_game, db):
        game, an, binh = active_game

        round_manager.record_result(game.id, an.id, ResultTag.WIN)
        round_obj, newly_settled, transactions = round_manager.finish_round(game.id)

        assert newly_settled
        assert round_obj.round_number == 1
        assert balance_of(db, an) == 100
        assert balance_of(db, binh) == -100
        types = {t.player_id: t.type for t in transactions}
        assert types == {an.id: ResultTag.WIN, binh.id: ResultTag.LOSE}

        round2 = round_manager.advance_round(game.id)
        assert round2.round_number == 2

        round_manager.record_result(game.id, an.id, ResultTag.X2)
        round_manager.record_result(game.id, binh.id, ResultTag.DRAW)
        round_manager.finish_round(game.id)

        assert balance_of(db, an) == 300
        assert balance_of(db, binh) == -100
        assert [t.type for t in transactions_of(db, binh)] == [ResultTag.LOSE, ResultTag.DRAW]
        assert [t.amount for t in transactions_of(db, binh)] == [-100, 0]

    def test_balance_matches_ledger(self, round_manager, active_game, db):
        game, an, binh = active_game
        outcomes = [
            {an.id: ResultTag.WIN},
            {an.id: ResultTag.X2, binh.id: ResultTag.WIN},
            {binh.id: ResultTag.DRAW},
            {},
        ]
        for index, scans in enumerate(outcomes):
            if index:
                round_manager.advance_round(game.id)
            for player_id, tag in scans.items():
                round_manager.record_result(game.id, player_id, tag)
            round_manager.finish_round(game.id)

        for player in (an, binh):
            assert balance_of(db, player) == calculate_ledger_balance(player.id, db)
            assert len(transactions_of(db, player)) == len(outcomes)


class TestRecordResult:

    def test_rescan_last_write_wins(self, round_manager, active_game, db):
        game, an, binh = active_game

        round_manager.record_result(game.id, an.id, ResultTag.WIN)
        round_manager.record_result(game.id, an.id, ResultTag.DRAW)

        rows = db.query(RoundResult).filter(RoundResult.player_id == an.id).all()
        assert len(rows) == 1

        _, _, transactions = round_manager.finish_round(game.id)
        settled = {t.player_id: (t.amount, t.type) for t in transactions}
        assert settled[an.id] == (0, ResultTag.DRAW)
        assert balance_of(db, an) == 0

    def test_lose_cannot_be_scanned(self, round_manager, active_game):
        game, an, _ = active_game
        with pytest.raises(InvalidResultTag):
            round_manager.record_result(game.id, an.id, ResultTag.LOSE)

    def test_unknown_tag(self, round_manager, active_game):
        game, an, _ = active_game
        with pytest.raises(InvalidResultTag):
            round_manager.record_result(game.id, an.id, "BLACKJACK")

    def test_host_cannot_be_scanned(self, round_manager, active_game, store):
        game, _, _ = active_game
        host = next(p for p in store.list_players(game.id) if p.is_host)
        with pytest.raises(HostCannotPlay):
            round_manager.record_result(game.id, host.id, ResultTag.WIN)

    def test_player_from_other_game(self, round_manager, game_manager, active_game):
        game, _, _ = active_game
        other, _ = game_manager.create_game("host-2")
        stranger, _ = game_manager.join_game(other.pin, "Stranger")

        with pytest.raises(PlayerNotFound):
            round_manager.record_result(game.id, stranger.id, ResultTag.WIN)

    def test_late_scan_after_settlement_rejected(self, round_manager, active_game, db):
        game, an, binh = active_game
        round_manager.finish_round(game.id)

        with pytest.raises(AlreadySettled) as exc_info:
            round_manager.record_result(game.id, binh.id, ResultTag.X2)

        assert isinstance(exc_info.value, InvalidState)
        assert db.query(RoundResult).count() == 0

    def test_requires_active_game(self, round_manager, lobby_game, join_players):
        an, = join_players("An")
        with pytest.raises(GameNotActive):
            round_manager.record_result(lobby_game.id, an.id, ResultTag.WIN)

    def test_requires_current_round(self, round_manager, game_manager, lobby_game, join_players):
        an, _ = join_players("An", "Binh")
        game_manager.start_game_legacy(lobby_game.id)
        with pytest.raises(NoCurrentRound):
            round_manager.record_result(lobby_game.id, an.id, ResultTag.WIN)


class TestFinishRound:

    def test_idempotent(self, round_manager, active_game, db):
        game, an, _ = active_game
        round_manager.record_result(game.id, an.id, ResultTag.WIN)

        first_round, first_new, first_tx = round_manager.finish_round(game.id)
        second_round, second_new, second_tx = round_manager.finish_round(game.id)

        assert first_new is True
        assert second_new is False
        assert first_round.id == second_round.id
        assert sorted(t.id for t in first_tx) == sorted(t.id for t in second_tx)
        assert db.query(Transaction).count() == 2
        assert balance_of(db, an) == 100

    def test_unscanned_player_loses_bet(self, round_manager, active_game, db):
        game, an, binh = active_game
        _, _, transactions = round_manager.finish_round(game.id)

        assert {(t.amount, t.type) for t in transactions} == {(-100, ResultTag.LOSE)}
        assert balance_of(db, an) == -100
        assert balance_of(db, binh) == -100

    def test_host_is_not_settled(self, round_manager, active_game, store):
        game, _, _ = active_game
        _, _, transactions = round_manager.finish_round(game.id)
        host = next(p for p in store.list_players(game.id) if p.is_host)

        assert host.id not in {t.player_id for t in transactions}
        assert host.balance == 0

    def test_late_joiner_is_settled(self, round_manager, game_manager, active_game, db):
        game, _, _ = active_game
        late, _ = game_manager.join_game(game.pin, "Late")

        round_manager.finish_round(game.id)

        assert balance_of(db, late) == -100

    def test_joiner_after_settlement_waits_for_next_round(self, round_manager, game_manager, active_game, db):
        game, _, _ = active_game
        round_manager.finish_round(game.id)

        late, _ = game_manager.join_game(game.pin, "Late")
        assert late.status == PlayerStatus.WAITING

        round_manager.advance_round(game.id)
        assert late.status == PlayerStatus.PLAYING

        _, _, transactions = round_manager.finish_round(game.id)
        assert len(transactions) == 3
        assert [t.amount for t in transactions_of(db, late)] == [-100]

        # Round 1：所有參加的玩家都有交易，沒有人只有一半
        round_one = db.query(Round).filter(Round.game_id == game.id, Round.round_number == 1).one()
        assert db.query(Transaction).filter(Transaction.round_id == round_one.id).count() == 2

    def test_round_without_players_cannot_be_settled(self, round_manager, game_manager, lobby_game, db):
        game_manager.start_game(lobby_game.id, 100)

        with pytest.raises(NoParticipants):
            round_manager.finish_round(lobby_game.id)
        with pytest.raises(RoundNotSettled):
            round_manager.advance_round(lobby_game.id)
        assert db.query(EventLog).filter(EventLog.event_type == "ROUND_SETTLED").count() == 0

        # 有人加入之後就能結算，而且只結算一次
        game_manager.join_game(lobby_game.pin, "Late")
        _, newly_settled, transactions = round_manager.finish_round(lobby_game.id)
        assert newly_settled is True
        assert len(transactions) == 1
        _, again, _ = round_manager.finish_round(lobby_game.id)
        assert again is False

    def test_failure_mid_settlement_rolls_back(self, round_manager, active_game, db, monkeypatch):
        game, an, binh = active_game
        round_manager.record_result(game.id, an.id, ResultTag.WIN)

        real_payout = round_manager_module.calculate_payout
        calls = []

        def exploding_payout(tag, bet):
            calls.append(tag)
            if len(calls) == 2:
                raise RuntimeError("store went away")
            return real_payout(tag, bet)

        monkeypatch.setattr(round_manager_module, "calculate_payout", exploding_payout)
        with pytest.raises(RuntimeError):
            round_manager.finish_round(game.id)

        assert db.query(Transaction).count() == 0
        assert balance_of(db, an) == 0
        assert balance_of(db, binh) == 0

        # 修好之後重試，結算一次且只有一次
        monkeypatch.setattr(round_manager_module, "calculate_payout", real_payout)
        _, newly_settled, _ = round_manager.finish_round(game.id)
        assert newly_settled
        assert balance_of(db, an) == 100
        assert balance_of(db, binh) == -100

    def test_concurrent_finish_settles_once(self, session_factory, active_game):
        game, an, binh = active_game
        game_id, an_id, binh_id = game.id, an.id, binh.id
        session_a, session_b = session_factory(), session_factory()
        checked, b_done = threading.Event(), threading.Event()
        outcome = {}
        try:
            store_a = GameStore(session_a)
            # A 做完冪等檢查後停住，B 在這時候也來結算
            pause_after(store_a, "round_is_settled", checked, b_done)

            def finish_b():
                checked.wait(timeout=5)
                outcome["b"] = RoundManager(GameStore(session_b)).finish_round(game_id)
                b_done.set()

            worker = threading.Thread(target=finish_b)
            worker.start()
            _, a_new, a_tx = RoundManager(store_a).finish_round(game_id)
            worker.join(timeout=10)

            _, b_new, b_tx = outcome["b"]
            assert a_new is True
            assert b_new is False
            assert sorted(t.id for t in a_tx) == sorted(t.id for t in b_tx)
            session_a.expire_all()
            assert session_a.query(Transaction).count() == 2
            assert session_a.query(Player).filter(Player.id == an_id).one().balance == -100
            assert session_a.query(Player).filter(Player.id == binh_id).one().balance == -100
        finally:
            session_a.close()
            session_b.close()

    def test_scan_in_flight_is_included_in_settlement(self, session_factory, active_game):
        game, an, binh = active_game
        game_id, an_id, binh_id = game.id, an.id, binh.id
        session_a, session_b = session_factory(), session_factory()
        checked, finished = threading.Event(), threading.Event()
        outcome = {}
        try:
            store_a = GameStore(session_a)
            # 掃描已經確認回合未結算，還沒寫入；結算請求在這時候進來
            pause_after(store_a, "round_is_settled", checked, finished)

            def finish():
                checked.wait(timeout=5)
                outcome["finish"] = RoundManager(GameStore(session_b)).finish_round(game_id)
                finished.set()

            worker = threading.Thread(target=finish)
            worker.start()
            RoundManager(store_a).record_result(game_id, an_id, ResultTag.WIN)
            worker.join(timeout=10)

            _, newly_settled, transactions = outcome["finish"]
            assert newly_settled is True
            assert {t.player_id: t.amount for t in transactions} == {an_id: 100, binh_id: -100}
        finally:
            session_a.close()
            session_b.close()

    def test_scan_during_settlement_is_rejected(self, session_factory, active_game):
        game, an, binh = active_game
        game_id, an_id, binh_id = game.id, an.id, binh.id
        session_a, session_b = session_factory(), session_factory()
        results_read, scan_done = threading.Event(), threading.Event()
        outcome = {}
        try:
            store_b = GameStore(session_b)
            # 結算已經讀完掃描結果，還沒寫交易；遲到的掃描在這時候進來
            pause_after(store_b, "results_for_round", results_read, scan_done)

            def scan():
                results_read.wait(timeout=5)
                try:
                    RoundManager(GameStore(session_a)).record_result(game_id, an_id, ResultTag.WIN)
                    outcome["scan"] = "accepted"
                except AlreadySettled:
                    outcome["scan"] = "rejected"
                scan_done.set()

            worker = threading.Thread(target=scan)
            worker.start()
            _, newly_settled, transactions = RoundManager(store_b).finish_round(game_id)
            worker.join(timeout=10)

            assert newly_settled is True
            assert outcome["scan"] == "rejected"
            assert {t.player_id: t.amount for t in transactions} == {an_id: -100, binh_id: -100}
            assert session_b.query(RoundResult).count() == 0
        finally:
            session_a.close()
            session_b.close()

    def test_lost_race_on_unique_constraint_is_a_noop(self, session_factory, active_game, monkeypatch):
        game, _, _ = active_game
        session_a, session_b = session_factory(), session_factory()
        try:
            manager_a = RoundManager(GameStore(session_a))
            manager_b = RoundManager(GameStore(session_b))

            def settle_then_collide(game_id):
                # 另一個請求搶先 commit，這個請求在 commit 時撞上 unique constraint
                manager_b.finish_round(game_id)
                raise Conflict("duplicate transaction")

            monkeypatch.setattr(manager_a, "_settle_current_round", settle_then_collide)
            round_obj, newly_settled, transactions = manager_a.finish_round(game.id)

            assert newly_settled is False
            assert round_obj.round_number == 1
            assert len(transactions) == 2
        finally:
            session_a.close()
            session_b.close()

    def test_duplicate_transaction_is_conflict(self, round_manager, active_game, store):
        game, an, _ = active_game
        _, _, transactions = round_manager.finish_round(game.id)
        round_id = transactions[0].round_id

        def insert_duplicate(manager):
            manager.store.add_transaction(round_id, an.id, 999, ResultTag.WIN)

        with pytest.raises(Conflict):
            transactional(insert_duplicate)(round_manager)

    def test_requires_current_round(self, round_manager, game_manager, lobby_game, join_players):
        join_players("An", "Binh")
        game_manager.start_game_legacy(lobby_game.id)
        with pytest.raises(NoCurrentRound):
            round_manager.finish_round(lobby_game.id)

    def test_finished_game_rejected(self, round_manager, game_manager, active_game):
        game, _, _ = active_game
        game_manager.end_game(game.id)
        with pytest.raises(GameNotActive):
            round_manager.finish_round(game.id)


class TestAdvanceRound:

    def test_advance_after_finish(self, round_manager, active_game, store):
        game, _, _ = active_game
        round_manager.finish_round(game.id)

        new_round = round_manager.advance_round(game.id)

        assert new_round.round_number == 2
        assert store.get_game(game.id).current_round == 2
        assert store.get_current_round(game.id).id == new_round.id

    def test_advance_before_finish_rejected(self, round_manager, active_game, db):
        game, _, _ = active_game
        with pytest.raises(RoundNotSettled):
            round_manager.advance_round(game.id)
        assert db.query(Round).filter(Round.game_id == game.id).count() == 1

    def test_legacy_game_first_advance_creates_round_one(self, round_manager, game_manager, lobby_game, join_players):
        join_players("An", "Binh")
        game_manager.start_game_legacy(lobby_game.id)

        assert round_manager.advance_round(lobby_game.id).round_number == 1

    def test_requires_active_game(self, round_manager, lobby_game):
        with pytest.raises(GameNotActive):
            round_manager.advance_round(lobby_game.id)

    def test_round_numbers_are_unique(self, round_manager, active_game, store):
        game, _, _ = active_game
        round_manager.finish_round(game.id)
        round_manager.advance_round(game.id)

        with pytest.raises(Conflict):
            # 模擬另一個請求用舊的回合數建立回合
            transactional(lambda manager: manager.store.create_round(game.id, 2))(round_manager)
