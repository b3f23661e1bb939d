"""roomxo package exposing game rules, the AI opponent, accounts, rooms and the web app."""

from .accounts import AccountStore, Session
from .ai import HeuristicAI, choose_opponent_move
from .game import GameState, apply_move, evaluate_winner, is_draw
from .rooms import RoomDirectory, RoomPoller, RoomView
from .ui import app, create_app

__all__ = [
    "AccountStore",
    "GameState",
    "HeuristicAI",
    "RoomDirectory",
    "RoomPoller",
    "RoomView",
    "Session",
    "app",
    "apply_move",
    "choose_opponent_move",
    "create_app",
    "evaluate_winner",
    "is_draw",
]
