"""Record schemas for everything kept in persistent storage.

Field aliases match the stored camelCase keys. Missing fields fall back to
defaults so records written by older builds still load.
"""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .game import GameState, GameStatus, Player, empty_board

Outcome = Literal["win", "loss", "draw"]
Mark = Literal["X", "O"]

# Storage keys
USERS_KEY = "users"
CURRENT_USER_KEY = "currentUser"
HISTORY_KEY = "gameHistory"
ROOMS_KEY = "ttt_rooms"


class Record(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def dump(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Account(Record):
    """Public view of an account; never carries the password."""

    id: str
    username: str
    wins: int = 0
    losses: int = 0
    draws: int = 0
    created_at: str = Field(default="", alias="createdAt")

    @field_validator("wins", "losses", "draws", mode="before")
    @classmethod
    def missing_stat_is_zero(cls, value: object) -> object:
        return 0 if value is None else value

    @property
    def total_games(self) -> int:
        return self.wins + self.losses + self.draws

    @property
    def stats(self) -> dict:
        total = self.total_games

        def rate(n: int) -> float:
            return round(n / total * 100, 1) if total else 0.0

        return {
            "totalGames": total,
            "winRate": rate(self.wins),
            "lossRate": rate(self.losses),
            "drawRate": rate(self.draws),
        }


class StoredAccount(Account):
    password: str = ""

    def public(self) -> Account:
        return Account.model_validate(self.model_dump(exclude={"password"}))


class GameHistoryRecord(Record):
    id: str
    user_id: str = Field(alias="userId")
    result: Outcome
    timestamp: str


class RoomGameState(Record):
    """Game state as embedded in a room record."""

    board: List[Optional[Mark]] = Field(
        default_factory=empty_board, min_length=9, max_length=9
    )
    current_player: Optional[Mark] = Field(default="X", alias="currentPlayer")
    winner: Optional[Mark] = None
    is_draw: bool = Field(default=False, alias="isDraw")
    game_over: bool = Field(default=False, alias="gameOver")
    # Bumped on every reset so each game in a room can be told apart.
    game_number: int = Field(default=0, alias="gameNumber")

    def dump(self) -> dict:
        # None cells and a null winner are meaningful here.
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_state(cls, state: GameState, game_number: int = 0) -> "RoomGameState":
        return cls(
            board=list(state.board),
            current_player=state.current_player,
            winner=state.winner,
            is_draw=state.status is GameStatus.DRAWN,
            game_over=state.is_over,
            game_number=game_number,
        )

    def to_state(self) -> GameState:
        return GameState.from_board(self.board, self.current_player)


class Room(Record):
    id: str
    name: str
    host: str
    guest: Optional[str] = None
    game_state: RoomGameState = Field(default_factory=RoomGameState, alias="gameState")
    created_at: int = Field(alias="createdAt")
    is_active: bool = Field(default=True, alias="isActive")

    def dump(self) -> dict:
        data = super().dump()
        data["gameState"] = self.game_state.dump()
        return data

    @property
    def status(self) -> str:
        if not self.is_active:
            return "closed"
        return "full" if self.guest else "open"

    def mark_for(self, username: str) -> Optional[Player]:
        if username == self.host:
            return "X"
        if self.guest is not None and username == self.guest:
            return "O"
        return None

    def is_my_turn(self, username: str) -> bool:
        mark = self.mark_for(username)
        return mark is not None and self.game_state.current_player == mark
