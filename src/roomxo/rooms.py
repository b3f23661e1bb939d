"""Multiplayer rooms shared through persistent storage.

Clients never talk to each other. Each one re-reads the ``ttt_rooms``
collection on a timer and overwrites whole records when it changes
something, so the last writer wins.
"""

from __future__ import annotations

import asyncio
import logging
import random
import string
import time
from typing import Awaitable, Callable, List, Optional, Union

from pydantic import ValidationError

from .errors import RoomFull, RoomNotFound
from .game import GameState
from .models import ROOMS_KEY, Room, RoomGameState
from .storage import Storage, read_list, write_json

logger = logging.getLogger(__name__)

ROOM_RETENTION_SECONDS = 60 * 60  # 1 hour
ROOM_REFRESH_INTERVAL = 5.0
ROOM_ID_SUFFIX_LENGTH = 9
_ID_ALPHABET = string.digits + string.ascii_lowercase


def _now_ms(clock: Callable[[], float]) -> int:
    return int(clock() * 1000)


class RoomDirectory:
    """All rooms, read and written as one collection."""

    def __init__(
        self,
        storage: Storage,
        clock: Callable[[], float] = time.time,
        retention: float = ROOM_RETENTION_SECONDS,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.storage = storage
        self.clock = clock
        self.retention = retention
        self.rng = rng or random.Random()

    def _load(self) -> List[Room]:
        rooms: List[Room] = []
        for raw in read_list(self.storage, ROOMS_KEY):
            try:
                rooms.append(Room.model_validate(raw))
            except ValidationError:
                logger.warning("Dropping malformed room record: %r", raw)
        return rooms

    def _save(self, rooms: List[Room]) -> None:
        write_json(self.storage, ROOMS_KEY, [r.dump() for r in rooms])

    def _generate_room_id(self) -> str:
        suffix = "".join(self.rng.choice(_ID_ALPHABET) for _ in range(ROOM_ID_SUFFIX_LENGTH))
        return f"room_{_now_ms(self.clock)}_{suffix}"

    def _is_listed(self, room: Room, now_ms: int) -> bool:
        return room.is_active and now_ms - room.created_at < self.retention * 1000

    def get(self, room_id: str) -> Optional[Room]:
        for room in self._load():
            if room.id == room_id:
                return room
        return None

    def list_active(self, now: Optional[float] = None) -> List[Room]:
        """Active rooms younger than the retention window.

        Closed and expired rooms are pruned from storage as a side effect.
        """

        now_ms = int((self.clock() if now is None else now) * 1000)
        rooms = self._load()
        active = [r for r in rooms if self._is_listed(r, now_ms)]
        if len(active) != len(rooms):
            logger.debug("Pruned %d room(s)", len(rooms) - len(active))
        self._save(active)
        return active

    def create(self, name: str, host: str) -> Room:
        name = name.strip()
        if not name:
            raise ValueError("Room name is required")

        room = Room(
            id=self._generate_room_id(),
            name=name,
            host=host,
            created_at=_now_ms(self.clock),
        )
        rooms = self._load()
        rooms.append(room)
        self._save(rooms)
        logger.info("%s opened room %s (%s)", host, room.name, room.id)
        return room

    def join(self, room_id: str, guest: str) -> Room:
        rooms = self._load()
        for room in rooms:
            if room.id != room_id:
                continue
            if not room.is_active:
                break
            if room.guest or room.host == guest:
                raise RoomFull(room_id)
            room.guest = guest
            self._save(rooms)
            logger.info("%s joined room %s", guest, room_id)
            return room
        raise RoomNotFound(room_id)

    def leave(self, room_id: str, username: str) -> Optional[Room]:
        """Host leaving closes the room; guest leaving reopens it."""

        rooms = self._load()
        for room in rooms:
            if room.id != room_id:
                continue
            if room.host == username:
                room.is_active = False
                logger.info("Host %s closed room %s", username, room_id)
            elif room.guest == username:
                room.guest = None
                logger.info("%s left room %s", username, room_id)
            else:
                return room
            self._save(rooms)
            return room
        return None

    def push_game_state(
        self, room_id: str, state: Union[GameState, RoomGameState]
    ) -> Optional[Room]:
        """Replace the embedded game wholesale. No merge, no version check."""

        rooms = self._load()
        for room in rooms:
            if room.id == room_id:
                if isinstance(state, GameState):
                    state = RoomGameState.from_state(state, room.game_state.game_number)
                room.game_state = state
                self._save(rooms)
                return room
        logger.debug("Game state for vanished room %s dropped", room_id)
        return None

    def reset_game(self, room_id: str) -> Optional[Room]:
        """Start a fresh game in the room under the next game number."""

        rooms = self._load()
        for room in rooms:
            if room.id == room_id:
                room.game_state = RoomGameState.from_state(
                    GameState.new(), room.game_state.game_number + 1
                )
                self._save(rooms)
                logger.info("Room %s started game %d", room_id, room.game_state.game_number)
                return room
        return None


class RoomView:
    """One client's picture of the lobby and of the room it sits in."""

    def __init__(self, directory: RoomDirectory, username: str) -> None:
        self.directory = directory
        self.username = username
        self.current_room: Optional[Room] = None
        self.available_rooms: List[Room] = []

    @property
    def in_room(self) -> bool:
        return self.current_room is not None

    def refresh(self) -> Optional[Room]:
        self.available_rooms = self.directory.list_active()
        if self.current_room is not None:
            room_id = self.current_room.id
            latest = next((r for r in self.available_rooms if r.id == room_id), None)
            if latest is None:
                logger.info("Room %s is gone for %s", room_id, self.username)
            self.current_room = latest
        return self.current_room

    def create(self, name: str) -> Room:
        self.current_room = self.directory.create(name, self.username)
        self.refresh()
        return self.current_room

    def join(self, room_id: str) -> Room:
        self.current_room = self.directory.join(room_id, self.username)
        self.refresh()
        return self.current_room

    def leave(self) -> None:
        if self.current_room is None:
            return
        self.directory.leave(self.current_room.id, self.username)
        self.current_room = None
        self.refresh()

    def push(self, state: Union[GameState, RoomGameState]) -> Optional[Room]:
        if self.current_room is None:
            return None
        room = self.directory.push_game_state(self.current_room.id, state)
        if room is not None:
            self.current_room = room
        return room

    def reset(self) -> Optional[Room]:
        if self.current_room is None:
            return None
        room = self.directory.reset_game(self.current_room.id)
        if room is not None:
            self.current_room = room
        return room


RefreshCallback = Callable[[], Union[None, Awaitable[None]]]


class RoomPoller:
    """Calls ``refresh`` every ``interval`` seconds until stopped."""

    def __init__(self, refresh: RefreshCallback, interval: float = ROOM_REFRESH_INTERVAL) -> None:
        self.refresh = refresh
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        while True:
            await self.tick()
            await asyncio.sleep(self.interval)

    async def tick(self) -> None:
        logger.debug("Refreshing rooms")
        try:
            result = self.refresh()
            if asyncio.iscoroutine(result):
                await result
        except Exception:
            logger.exception("Room refresh failed")

    async def __aenter__(self) -> "RoomPoller":
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()
