"""Services module for handling external server connections."""

from .server import ServerManager
from .services import BaseServerHandler, WhisperServerHandler

__all__ = [
    "BaseServerHandler",
    "WhisperServerHandler",
    "ServerManager",
]
