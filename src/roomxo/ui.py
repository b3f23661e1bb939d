"""FastAPI shell exposing accounts, the AI game and shared rooms over HTTP.

Each logged-in client session stands in for one browser tab: it owns its
local game against the AI and its own view of the room lobby, while all
sessions share the same persistent storage.
"""

from __future__ import annotations

import logging
import os
import threading
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Dict, List, Literal, Optional

from fastapi import APIRouter, BackgroundTasks, FastAPI, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, ConfigDict, Field

from .accounts import AccountStore, Session
from .ai import HeuristicAI
from .errors import (
    DuplicateAccountName,
    InvalidCredentials,
    InvalidMove,
    RoomFull,
    RoomNotFound,
)
from .game import GameState, GameStatus, Player, apply_move
from .models import Account, Outcome, Room
from .rooms import ROOM_REFRESH_INTERVAL, RoomDirectory, RoomPoller, RoomView
from .storage import JsonFileStorage, MemoryStorage, Storage

logger = logging.getLogger(__name__)

AI_THINK_DELAY: float = 0.8
CLIENT_IDLE_SECONDS = 60 * 60 * 2  # 2 hours
HUMAN: Player = "X"
SortKey = Literal["score", "wins", "winRate", "totalGames"]


@dataclass
class ClientSession:
    """State held for one logged-in client."""

    session: Session
    rooms: RoomView
    game: GameState = field(default_factory=GameState.new)
    ai: HeuristicAI = field(default_factory=lambda: HeuristicAI(player="O"))
    ai_pending: bool = False
    game_recorded: bool = False
    # Identifies the finished room game this client already counted.
    room_result_key: Optional[str] = None
    last_seen: float = 0.0
    cancel_ai: threading.Event = field(default_factory=threading.Event, repr=False)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


class Lobby:
    """Server-side registry of client sessions over one shared storage."""

    def __init__(self, storage: Storage, clock: Callable[[], float] = time.time) -> None:
        self.storage = storage
        self.clock = clock
        self.accounts = AccountStore(storage)
        self.directory = RoomDirectory(storage)
        self.clients: Dict[str, ClientSession] = {}

    def open_client(self, session: Session) -> str:
        self._cleanup_clients()
        client_id = uuid.uuid4().hex
        self.clients[client_id] = ClientSession(
            session=session,
            rooms=RoomView(self.directory, session.username),
            last_seen=self.clock(),
        )
        return client_id

    def get_client(self, client_id: str) -> ClientSession:
        try:
            client = self.clients[client_id]
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="Session not found") from exc
        client.last_seen = self.clock()
        return client

    def close_client(self, client_id: str) -> None:
        client = self.clients.pop(client_id, None)
        if client is not None:
            client.cancel_ai.set()

    def _cleanup_clients(self) -> None:
        """Drop sessions nobody has used for CLIENT_IDLE_SECONDS."""

        cutoff = self.clock() - CLIENT_IDLE_SECONDS
        idle = [cid for cid, c in list(self.clients.items()) if c.last_seen < cutoff]
        for client_id in idle:
            logger.info("Dropping idle session %s", client_id)
            self.close_client(client_id)

    def _settle(self, client: ClientSession) -> None:
        with client.lock:
            client.rooms.refresh()
            _settle_room_result(self, client)

    def settle_room(self, room_id: str) -> None:
        """Count a finished game for every local session sitting in ``room_id``."""

        for client in list(self.clients.values()):
            room = client.rooms.current_room
            if room is not None and room.id == room_id:
                self._settle(client)

    def refresh_all(self) -> None:
        self._cleanup_clients()
        for client in list(self.clients.values()):
            if client.rooms.in_room:
                self._settle(client)


class RegisterRequest(BaseModel):
    username: str = Field(min_length=1, max_length=64)
    password: str = Field(min_length=1)


class LoginRequest(BaseModel):
    username: str
    password: str


class MoveRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    cell_index: int = Field(alias="cellIndex", ge=0, le=8)


class CreateRoomRequest(BaseModel):
    name: str = Field(max_length=80)


# ---- helpers ----


def _lobby(request: Request) -> Lobby:
    return request.app.state.lobby


def _outcome_for(state: GameState, mark: Player) -> Outcome:
    if state.status is GameStatus.DRAWN:
        return "draw"
    return "win" if state.winner == mark else "loss"


def _record(lobby: Lobby, client: ClientSession, outcome: Outcome) -> None:
    lobby.accounts.record_result(client.session.account_id, outcome)
    client.session.refresh(lobby.accounts)


def _settle_ai_result(lobby: Lobby, client: ClientSession) -> None:
    if client.game.is_over and not client.game_recorded:
        client.game_recorded = True
        _record(lobby, client, _outcome_for(client.game, HUMAN))


def _settle_room_result(lobby: Lobby, client: ClientSession) -> None:
    room = client.rooms.current_room
    if room is None or not room.game_state.game_over:
        return
    key = f"{room.id}:{room.game_state.game_number}"
    if client.room_result_key == key:
        return
    mark = room.mark_for(client.session.username)
    if mark is None:
        return
    client.room_result_key = key
    _record(lobby, client, _outcome_for(room.game_state.to_state(), mark))


def _run_ai_turn(lobby: Lobby, client_id: str, cancelled: threading.Event) -> None:
    if cancelled.wait(max(0.0, AI_THINK_DELAY)):
        return
    client = lobby.clients.get(client_id)
    if client is None:
        return

    with client.lock:
        if client.cancel_ai is not cancelled:
            return
        try:
            game = client.game
            if game.is_over or game.current_player != client.ai.player:
                return
            cell = client.ai.choose(game.board)
            client.game = apply_move(game, cell, client.ai.player)
            _settle_ai_result(lobby, client)
        finally:
            client.ai_pending = False


def _serialize_game(state: GameState) -> Dict[str, object]:
    return {
        "board": ["" if c is None else c for c in state.board],
        "currentPlayer": state.current_player,
        "status": state.status.value,
        "winner": state.winner,
    }


def _serialize_account(account: Account) -> Dict[str, object]:
    data = account.dump()
    data.update(account.stats)
    return data


def _serialize_room(room: Room, username: Optional[str] = None) -> Dict[str, object]:
    data: Dict[str, object] = {
        "id": room.id,
        "name": room.name,
        "host": room.host,
        "guest": room.guest,
        "status": room.status,
        "createdAt": room.created_at,
        "game": _serialize_game(room.game_state.to_state()),
    }
    if username is not None:
        data["yourMark"] = room.mark_for(username)
        data["yourTurn"] = room.is_my_turn(username)
        data["waitingForOpponent"] = room.guest is None
    return data


def _client_state(client: ClientSession) -> Dict[str, object]:
    with client.lock:
        state = _serialize_game(client.game)
        state["aiPending"] = client.ai_pending
        return state


def _room_state(client: ClientSession) -> Dict[str, object]:
    room = client.rooms.current_room
    return {"room": _serialize_room(room, client.session.username) if room else None}


router = APIRouter(prefix="/api")


# ---- accounts ----


@router.post("/accounts/register")
def register(body: RegisterRequest, request: Request) -> Dict[str, object]:
    lobby = _lobby(request)
    try:
        session = lobby.accounts.register(body.username, body.password)
    except DuplicateAccountName as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    client_id = lobby.open_client(session)
    return {"sessionId": client_id, "account": _serialize_account(session.account)}


@router.post("/accounts/login")
def login(body: LoginRequest, request: Request) -> Dict[str, object]:
    lobby = _lobby(request)
    try:
        session = lobby.accounts.authenticate(body.username, body.password)
    except InvalidCredentials as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    client_id = lobby.open_client(session)
    return {"sessionId": client_id, "account": _serialize_account(session.account)}


@router.get("/session/{client_id}")
def get_session(client_id: str, request: Request) -> Dict[str, object]:
    lobby = _lobby(request)
    client = lobby.get_client(client_id)
    account = client.session.refresh(lobby.accounts)
    return {"sessionId": client_id, "account": _serialize_account(account)}


@router.post("/session/{client_id}/logout")
def logout(client_id: str, request: Request) -> Dict[str, object]:
    lobby = _lobby(request)
    lobby.get_client(client_id)
    lobby.close_client(client_id)
    lobby.accounts.end_session()
    return {"loggedOut": True}


@router.get("/leaderboard")
def leaderboard(
    request: Request, sort_by: SortKey = Query(default="score", alias="sortBy")
) -> Dict[str, object]:
    entries = _lobby(request).accounts.leaderboard(sort_by)
    return {"sortBy": sort_by, "entries": [e.as_dict() for e in entries]}


@router.get("/session/{client_id}/history")
def history(
    client_id: str, request: Request, limit: Optional[int] = Query(default=None, ge=1)
) -> Dict[str, object]:
    lobby = _lobby(request)
    client = lobby.get_client(client_id)
    account = client.session.refresh(lobby.accounts)
    kind, count = lobby.accounts.streak(account.id)
    return {
        "account": _serialize_account(account),
        "games": [r.dump() for r in lobby.accounts.history(account.id, limit)],
        "streak": {"type": kind, "count": count},
        "rank": lobby.accounts.rank_of(account.id),
    }


# ---- game against the AI ----


@router.post("/session/{client_id}/game")
def new_game(client_id: str, request: Request) -> Dict[str, object]:
    client = _lobby(request).get_client(client_id)
    with client.lock:
        client.cancel_ai.set()
        client.cancel_ai = threading.Event()
        client.game = GameState.new()
        client.ai_pending = False
        client.game_recorded = False
    return _client_state(client)


@router.get("/session/{client_id}/game")
def get_game(client_id: str, request: Request) -> Dict[str, object]:
    client = _lobby(request).get_client(client_id)
    return _client_state(client)


@router.post("/session/{client_id}/game/move")
def make_move(
    client_id: str,
    body: MoveRequest,
    request: Request,
    background_tasks: BackgroundTasks,
) -> Dict[str, object]:
    lobby = _lobby(request)
    client = lobby.get_client(client_id)
    schedule_ai = False
    with client.lock:
        if not client.ai_pending:
            try:
                client.game = apply_move(client.game, body.cell_index, HUMAN)
            except InvalidMove:
                logger.debug("Ignoring move %d for %s", body.cell_index, client_id)
            else:
                _settle_ai_result(lobby, client)
                schedule_ai = client.game.current_player == client.ai.player
                client.ai_pending = schedule_ai
        cancelled = client.cancel_ai

    if schedule_ai:
        background_tasks.add_task(_run_ai_turn, lobby, client_id, cancelled)
    return _client_state(client)


# ---- rooms ----


@router.get("/rooms")
def list_rooms(request: Request) -> Dict[str, List[Dict[str, object]]]:
    rooms = _lobby(request).directory.list_active()
    return {"rooms": [_serialize_room(r) for r in rooms]}


@router.post("/session/{client_id}/rooms")
def create_room(client_id: str, body: CreateRoomRequest, request: Request) -> Dict[str, object]:
    client = _lobby(request).get_client(client_id)
    with client.lock:
        try:
            client.rooms.create(body.name)
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return _room_state(client)


@router.post("/session/{client_id}/rooms/{room_id}/join")
def join_room(client_id: str, room_id: str, request: Request) -> Dict[str, object]:
    client = _lobby(request).get_client(client_id)
    with client.lock:
        try:
            client.rooms.join(room_id.strip())
        except RoomNotFound as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except RoomFull as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return _room_state(client)


@router.post("/session/{client_id}/room/leave")
def leave_room(client_id: str, request: Request) -> Dict[str, object]:
    client = _lobby(request).get_client(client_id)
    with client.lock:
        client.rooms.leave()
        client.room_result_key = None
        return _room_state(client)


@router.get("/session/{client_id}/room")
def get_room(client_id: str, request: Request) -> Dict[str, object]:
    lobby = _lobby(request)
    client = lobby.get_client(client_id)
    with client.lock:
        client.rooms.refresh()
        _settle_room_result(lobby, client)
        return _room_state(client)


def _current_room(client: ClientSession) -> Room:
    room = client.rooms.refresh()
    if room is None:
        raise HTTPException(status_code=404, detail="Not in a room")
    return room


@router.post("/session/{client_id}/room/move")
def room_move(client_id: str, body: MoveRequest, request: Request) -> Dict[str, object]:
    lobby = _lobby(request)
    client = lobby.get_client(client_id)
    username = client.session.username
    with client.lock:
        room = _current_room(client)
        state = room.game_state.to_state()
        if state.is_over or state.board[body.cell_index] is not None:
            return _room_state(client)
        if room.guest is None:
            raise HTTPException(status_code=409, detail="Waiting for an opponent to join")
        mark = room.mark_for(username)
        if mark is None or not room.is_my_turn(username):
            raise HTTPException(status_code=409, detail="Not your turn")
        try:
            state = apply_move(state, body.cell_index, mark)
        except InvalidMove:
            return _room_state(client)
        client.rooms.push(state)
        _settle_room_result(lobby, client)
        return _room_state(client)


@router.post("/session/{client_id}/room/reset")
def reset_room(client_id: str, request: Request) -> Dict[str, object]:
    lobby = _lobby(request)
    client = lobby.get_client(client_id)
    with client.lock:
        room_id = _current_room(client).id
    # The finished game must be counted for both sides before it is wiped.
    lobby.settle_room(room_id)
    with client.lock:
        if client.rooms.reset() is None:
            raise HTTPException(status_code=404, detail="Not in a room")
        return _room_state(client)


def default_storage() -> Storage:
    path = os.environ.get("ROOMXO_STORAGE_PATH")
    if path:
        return JsonFileStorage(path)
    return MemoryStorage()


def create_app(
    storage: Optional[Storage] = None, refresh_interval: float = ROOM_REFRESH_INTERVAL
) -> FastAPI:
    lobby = Lobby(storage if storage is not None else default_storage())

    async def refresh() -> None:
        # Storage I/O and session locks stay off the event loop.
        await run_in_threadpool(lobby.refresh_all)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        async with RoomPoller(refresh, refresh_interval):
            yield

    app = FastAPI(
        title="roomxo",
        description="Tic-tac-toe with local accounts and storage-shared rooms",
        lifespan=lifespan,
    )
    app.state.lobby = lobby
    app.include_router(router)
    return app


app = create_app()
