"""
WebSocket transport for the strike team game.
"""

from .server import ConnectionManager, GameSocketManager

__all__ = ["ConnectionManager", "GameSocketManager"]
