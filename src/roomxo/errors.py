"""Exceptions raised by the roomxo core."""

from __future__ import annotations


class RoomXOError(Exception):
    """Base class for every error raised by roomxo."""


class InvalidMove(RoomXOError, ValueError):
    """Occupied cell, wrong turn, out-of-range index, or finished game."""


class DuplicateAccountName(RoomXOError):
    def __init__(self, username: str) -> None:
        super().__init__(f"Username {username!r} is already taken")
        self.username = username


class InvalidCredentials(RoomXOError):
    def __init__(self) -> None:
        super().__init__("Invalid username or password")


class RoomNotFound(RoomXOError):
    def __init__(self, room_id: str) -> None:
        super().__init__(f"Room {room_id!r} not found")
        self.room_id = room_id


class RoomFull(RoomXOError):
    def __init__(self, room_id: str) -> None:
        super().__init__(f"Room {room_id!r} is full")
        self.room_id = room_id


class StorageUnavailable(RoomXOError):
    """The persistent key-value store could not be read or written."""
