"""Core rules for classic 3x3 tic-tac-toe."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from .errors import InvalidMove

Player = str  # "X" or "O"
Cell = Optional[Player]
Board = List[Cell]

X: Player = "X"
O: Player = "O"
CORNERS: Tuple[int, ...] = (0, 2, 6, 8)
CENTER = 4

WINNING_LINES: Tuple[Tuple[int, int, int], ...] = (
    (0, 1, 2),
    (3, 4, 5),
    (6, 7, 8),
    (0, 3, 6),
    (1, 4, 7),
    (2, 5, 8),
    (0, 4, 8),
    (2, 4, 6),
)


class GameStatus(str, Enum):
    IN_PROGRESS = "in-progress"
    WON = "won"
    DRAWN = "drawn"


def empty_board() -> Board:
    return [None] * 9


def other(player: Player) -> Player:
    return O if player == X else X


def evaluate_winner(board: Board) -> Optional[Player]:
    """Return the mark holding a full line, checking lines in a fixed order."""

    for a, b, c in WINNING_LINES:
        v = board[a]
        if v is not None and v == board[b] == board[c]:
            return v
    return None


def is_full(board: Board) -> bool:
    return all(c is not None for c in board)


def is_draw(board: Board) -> bool:
    return evaluate_winner(board) is None and is_full(board)


def available_moves(board: Board) -> List[int]:
    return [i for i, c in enumerate(board) if c is None]


@dataclass
class GameState:
    board: Board = field(default_factory=empty_board)
    # None once the game is over
    current_player: Optional[Player] = X
    status: GameStatus = GameStatus.IN_PROGRESS
    winner: Optional[Player] = None

    @classmethod
    def new(cls) -> "GameState":
        return cls()

    @property
    def is_over(self) -> bool:
        return self.status is not GameStatus.IN_PROGRESS

    def clone(self) -> "GameState":
        return GameState(
            board=self.board.copy(),
            current_player=self.current_player,
            status=self.status,
            winner=self.winner,
        )

    @classmethod
    def from_board(
        cls, board: Board, current_player: Optional[Player] = None
    ) -> "GameState":
        """Rebuild a state from a bare board, deriving status and turn."""

        if len(board) != 9:
            raise ValueError("Board must have exactly 9 cells")
        board = list(board)
        winner = evaluate_winner(board)
        if winner is not None:
            return cls(board, None, GameStatus.WON, winner)
        if is_full(board):
            return cls(board, None, GameStatus.DRAWN, None)
        if current_player is None:
            current_player = X if board.count(X) == board.count(O) else O
        return cls(board, current_player, GameStatus.IN_PROGRESS, None)


def apply_move(state: GameState, cell_index: int, mark: Player) -> GameState:
    """Return the state after ``mark`` plays ``cell_index``.

    Raises ``InvalidMove`` for a finished game, the wrong turn, an index off
    the board, or an occupied cell. ``state`` itself is never modified.
    """

    if state.is_over:
        raise InvalidMove("Game already finished")
    if mark != state.current_player:
        raise InvalidMove(f"It is not {mark}'s turn")
    if not 0 <= cell_index < 9:
        raise InvalidMove(f"Cell {cell_index} is off the board")
    if state.board[cell_index] is not None:
        raise InvalidMove("Cell already occupied")

    board = state.board.copy()
    board[cell_index] = mark

    winner = evaluate_winner(board)
    if winner is not None:
        return GameState(board, None, GameStatus.WON, winner)
    if is_full(board):
        return GameState(board, None, GameStatus.DRAWN, None)
    return GameState(board, other(mark), GameStatus.IN_PROGRESS, None)
