"""Tests for the heuristic tic-tac-toe opponent."""

import random

import pytest

from roomxo.ai import HeuristicAI, choose_opponent_move
from roomxo.errors import InvalidMove

X, O, _ = "X", "O", None


def test_ai_takes_immediate_win_before_blocking():
    board = [X, X, _, O, O, _, _, _, _]
    assert HeuristicAI(player="O").choose(board) == 5


def test_ai_blocks_only_threat():
    board = [X, X, _, _, O, _, _, _, _]
    assert HeuristicAI(player="O").choose(board) == 2


def test_ai_blocks_column_threat():
    board = [X, O, _, X, _, _, _, _, _]
    assert choose_opponent_move(board) == 6


def test_ai_prefers_center():
    board = [X, _, _, _, _, _, _, _, _]
    assert HeuristicAI(player="O").choose(board) == 4


def test_ai_picks_free_corner_when_center_taken():
    board = [_, _, _, _, X, _, _, _, _]
    picks = {HeuristicAI(player="O", rng=random.Random(seed)).choose(board) for seed in range(30)}
    assert picks <= {0, 2, 6, 8}
    assert len(picks) > 1


def test_ai_does_not_look_ahead():
    # A perfect player answers with an edge here; the heuristic plays a corner.
    board = [X, _, _, _, O, _, _, _, X]
    assert HeuristicAI(player="O", rng=random.Random(3)).choose(board) in (2, 6)


def test_ai_can_play_as_x():
    board = [O, O, _, X, X, _, _, _, _]
    assert HeuristicAI(player="X").choose(board) == 5


def test_ai_rejects_full_board():
    with pytest.raises(InvalidMove):
        HeuristicAI().choose([X, O, X, X, O, O, O, X, X])
