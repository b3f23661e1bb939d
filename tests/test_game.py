"""Unit tests for tic-tac-toe game rules."""

import random

import pytest

from roomxo.errors import InvalidMove
from roomxo.game import (
    GameState,
    GameStatus,
    apply_move,
    available_moves,
    evaluate_winner,
    is_draw,
)

X, O, _ = "X", "O", None


def test_initial_state_allows_every_cell():
    game = GameState.new()
    assert available_moves(game.board) == list(range(9))
    assert game.current_player == "X"
    assert game.status is GameStatus.IN_PROGRESS


def test_move_places_mark_and_passes_turn():
    game = GameState.new()
    after = apply_move(game, 4, "X")
    assert after.board[4] == "X"
    assert after.current_player == "O"
    assert game.board[4] is None, "input state must not change"


def test_occupied_cell_rejected_and_board_unchanged():
    game = apply_move(GameState.new(), 0, "X")
    before = game.board.copy()
    with pytest.raises(InvalidMove):
        apply_move(game, 0, "O")
    assert game.board == before


def test_wrong_turn_rejected():
    with pytest.raises(InvalidMove):
        apply_move(GameState.new(), 0, "O")


def test_off_board_index_rejected():
    with pytest.raises(InvalidMove):
        apply_move(GameState.new(), 9, "X")


def test_finished_game_rejects_moves():
    game = GameState.from_board([X, X, _, O, O, _, _, _, _], "X")
    game = apply_move(game, 2, "X")
    assert game.status is GameStatus.WON
    assert game.winner == "X"
    assert game.current_player is None
    with pytest.raises(InvalidMove):
        apply_move(game, 5, "O")


@pytest.mark.parametrize(
    "board, expected",
    [
        ([X, X, X, O, O, _, _, _, _], "X"),
        ([O, X, X, O, X, _, O, _, _], "O"),
        ([X, O, O, _, X, _, _, _, X], "X"),
        ([X, X, O, X, O, _, O, _, _], "O"),
        ([X, O, X, _, _, _, _, _, _], None),
    ],
)
def test_evaluate_winner(board, expected):
    assert evaluate_winner(board) == expected


def test_full_board_without_line_is_draw():
    board = [X, O, X, X, O, O, O, X, X]
    assert evaluate_winner(board) is None
    assert is_draw(board)
    assert GameState.from_board(board).status is GameStatus.DRAWN


def test_winning_full_board_is_not_draw():
    board = [X, X, X, O, O, X, O, X, O]
    assert not is_draw(board)


def test_last_move_win_beats_draw():
    game = GameState.from_board([X, O, X, X, O, O, O, X, _], "X")
    game = apply_move(game, 8, "X")
    assert game.status is GameStatus.DRAWN
    game = GameState.from_board([X, O, X, O, X, O, O, X, _], "X")
    game = apply_move(game, 8, "X")
    assert game.status is GameStatus.WON


def test_turns_alternate_through_random_playouts():
    rng = random.Random(1234)
    for _ in range(200):
        game = GameState.new()
        while not game.is_over:
            game = apply_move(game, rng.choice(available_moves(game.board)), game.current_player)
            diff = game.board.count("X") - game.board.count("O")
            assert diff in (0, 1)
        if game.winner is not None:
            assert evaluate_winner(game.board) == game.winner


def test_from_board_derives_turn():
    assert GameState.from_board([X, _, _, _, _, _, _, _, _]).current_player == "O"
    assert GameState.from_board([X, O, _, _, _, _, _, _, _]).current_player == "X"
