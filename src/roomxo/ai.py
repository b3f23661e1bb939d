"""Greedy one-ply opponent for classic tic-tac-toe."""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import List, Optional

from .game import CENTER, CORNERS, WINNING_LINES, Board, Player, available_moves, other
from .errors import InvalidMove


@dataclass
class HeuristicAI:
    """Opponent that picks moves by fixed priority rules.

    Order: take a win, block the other side's win, centre, a random free
    corner, any random free cell. It never looks past the current move, so a
    fork beats it.
    """

    player: Player = "O"
    rng: random.Random = field(default_factory=random.Random, repr=False)

    def choose(self, board: Board) -> int:
        moves = available_moves(board)
        if not moves:
            raise InvalidMove("No free cell left")

        win = self._completing_move(board, self.player, moves)
        if win is not None:
            return win
        block = self._completing_move(board, other(self.player), moves)
        if block is not None:
            return block

        if CENTER in moves:
            return CENTER
        corners = [c for c in CORNERS if c in moves]
        if corners:
            return self.rng.choice(corners)
        return self.rng.choice(moves)

    def _completing_move(
        self, board: Board, player: Player, moves: List[int]
    ) -> Optional[int]:
        for cell in moves:
            if self._is_winning_move(board, player, cell):
                return cell
        return None

    @staticmethod
    def _is_winning_move(board: Board, player: Player, cell: int) -> bool:
        for a, b, c in WINNING_LINES:
            if cell not in (a, b, c):
                continue
            trio = [board[a], board[b], board[c]]
            if trio.count(player) == 2 and trio.count(None) == 1:
                return True
        return False


def choose_opponent_move(
    board: Board, player: Player = "O", rng: Optional[random.Random] = None
) -> int:
    ai = HeuristicAI(player=player, rng=rng or random.Random())
    return ai.choose(board)
