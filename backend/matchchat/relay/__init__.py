"""Matchmaking and session relay."""

from .hub import RelayHub
from .matchmaker import Matchmaker, select_pair
from .queues import QueueKind, QueueStore, WaitingEntry
from .registry import Connection, ConnectionRegistry
from .rooms import Room, RoomStore
from .router import router
from .session import ConnectionState, SessionRelay

__all__ = [
    "Connection",
    "ConnectionRegistry",
    "ConnectionState",
    "Matchmaker",
    "QueueKind",
    "QueueStore",
    "RelayHub",
    "Room",
    "RoomStore",
    "SessionRelay",
    "WaitingEntry",
    "router",
    "select_pair",
]
