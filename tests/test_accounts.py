"""Tests for accounts, sessions, history and the leaderboard."""

import json
import itertools

import pytest

from roomxo.accounts import AccountStore
from roomxo.errors import DuplicateAccountName, InvalidCredentials
from roomxo.models import Account
from roomxo.storage import MemoryStorage, UnavailableStorage


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def store(storage):
    ticks = itertools.count(1_700_000_000)
    return AccountStore(storage, clock=lambda: float(next(ticks)))


def test_register_then_authenticate(store, storage):
    created = store.register("alice", "s3cret")
    session = store.authenticate("alice", "s3cret")

    assert session.account.id == created.account.id
    assert (session.account.wins, session.account.losses, session.account.draws) == (0, 0, 0)
    assert session.account.created_at.endswith("Z")

    current = json.loads(storage.get("currentUser"))
    assert current["username"] == "alice"
    assert "password" not in current


def test_duplicate_name_rejected(store):
    store.register("alice", "one")
    with pytest.raises(DuplicateAccountName):
        store.register("alice", "two")
    assert len(store.accounts()) == 1


def test_names_are_case_sensitive(store):
    store.register("alice", "one")
    store.register("Alice", "two")
    assert {a.username for a in store.accounts()} == {"alice", "Alice"}


@pytest.mark.parametrize("username, password", [("alice", "wrong"), ("bob", "s3cret")])
def test_invalid_credentials(store, username, password):
    store.register("alice", "s3cret")
    with pytest.raises(InvalidCredentials):
        store.authenticate(username, password)


def test_blank_registration_rejected(store):
    with pytest.raises(ValueError):
        store.register("   ", "pw")
    with pytest.raises(ValueError):
        store.register("alice", "")


def test_account_ids_are_unique_within_one_tick(storage):
    store = AccountStore(storage, clock=lambda: 1_700_000_000.0)
    first = store.register("alice", "pw").account.id
    second = store.register("bob", "pw").account.id
    assert first != second


def test_record_result_bumps_one_counter(store, storage):
    session = store.register("alice", "pw")
    updated = store.record_result(session.account_id, "win")

    assert (updated.wins, updated.losses, updated.draws) == (1, 0, 0)
    assert store.get(session.account_id).wins == 1
    assert json.loads(storage.get("currentUser"))["wins"] == 1

    history = json.loads(storage.get("gameHistory"))
    assert len(history) == 1
    assert history[0]["userId"] == session.account_id
    assert history[0]["result"] == "win"


def test_record_result_rejects_unknown_outcome(store):
    session = store.register("alice", "pw")
    with pytest.raises(ValueError):
        store.record_result(session.account_id, "forfeit")


def test_record_result_for_unknown_account_keeps_history(store, storage):
    assert store.record_result("missing", "draw") is None
    assert len(json.loads(storage.get("gameHistory"))) == 1


def test_session_refresh_picks_up_new_stats(store):
    session = store.register("alice", "pw")
    store.record_result(session.account_id, "draw")
    assert session.account.draws == 0
    assert session.refresh(store).draws == 1


def test_legacy_account_without_stats_loads_as_zero(storage):
    storage.set("users", json.dumps([{"id": "1", "username": "old", "password": "pw"}]))
    session = AccountStore(storage).authenticate("old", "pw")
    assert session.account.total_games == 0


def test_current_session_and_end_session(store, storage):
    assert store.current_session() is None
    store.register("alice", "pw")
    assert store.current_session().username == "alice"
    store.end_session()
    assert store.current_session() is None


def test_corrupt_current_session_is_cleared(store, storage):
    storage.set("currentUser", json.dumps({"nope": True}))
    assert store.current_session() is None
    assert storage.get("currentUser") is None


def test_history_and_streak(store):
    account_id = store.register("alice", "pw").account_id
    assert store.streak(account_id) == ("", 0)
    for outcome in ("win", "loss", "draw", "draw", "draw"):
        store.record_result(account_id, outcome)

    results = [r.result for r in store.history(account_id)]
    assert results == ["draw", "draw", "draw", "loss", "win"]
    assert [r.result for r in store.history(account_id, limit=2)] == ["draw", "draw"]
    assert store.streak(account_id) == ("draw", 3)


def test_leaderboard_sorting_and_rank(store):
    alice = store.register("alice", "pw").account_id
    bob = store.register("bob", "pw").account_id
    store.register("idle", "pw")

    for _ in range(3):
        store.record_result(alice, "draw")
    store.record_result(bob, "win")
    store.record_result(bob, "loss")
    store.record_result(bob, "loss")

    by_score = store.leaderboard()
    assert [e.username for e in by_score] == ["bob", "alice"]
    assert by_score[0].score == 3 and by_score[1].score == 3
    assert by_score[0].win_rate == pytest.approx(100 / 3)

    by_games = store.leaderboard("totalGames")
    assert [e.username for e in by_games] == ["bob", "alice"]
    assert store.rank_of(alice) == 2
    assert store.rank_of("nobody") is None

    with pytest.raises(ValueError):
        store.leaderboard("losses")


def test_stats_rates():
    account = Account(id="1", username="a", wins=1, losses=1, draws=2)
    assert account.stats == {
        "totalGames": 4,
        "winRate": 25.0,
        "lossRate": 25.0,
        "drawRate": 50.0,
    }


def test_without_storage_nothing_crashes():
    store = AccountStore(UnavailableStorage())
    session = store.register("alice", "pw")
    assert session.username == "alice"
    with pytest.raises(InvalidCredentials):
        store.authenticate("alice", "pw")
    assert store.record_result(session.account_id, "win") is None
    assert store.current_session() is None
