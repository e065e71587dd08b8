"""
WebSocket gateway and event models for the Rummy server.
"""

from .server import ConnectionManager, GameGateway, create_app

__all__ = ["ConnectionManager", "GameGateway", "create_app"]
