"""
Server manager for the external services the bot depends on.

Only the speech recognition server is external today. The manager keeps the
handlers by name so health reporting and shutdown stay uniform.
"""

import logging
from typing import TYPE_CHECKING

from source.server.services import BaseServerHandler, WhisperServerHandler

if TYPE_CHECKING:
    from source.context import Context

logger = logging.getLogger(__name__)

# -------------------------------------------------------------- #
# Server Manager
# -------------------------------------------------------------- #


class ServerManager:
    """Owns the connections to external servers for the lifetime of the bot."""

    def __init__(self, context: "Context", whisper_server_client: WhisperServerHandler):
        self.context = context
        self._initialized = False
        self._whisper_server_client = whisper_server_client

        self._servers: dict[str, BaseServerHandler] = {
            "whisper_server": whisper_server_client,
        }

    # ------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------ #

    async def connect_all(self) -> None:
        """Connect every server and run its startup hook."""
        logger.info(f"[ServerManager] Connecting {len(self._servers)} server(s)...")

        for name, server in self._servers.items():
            await server.connect()
            await server.on_startup()
            logger.info(f"[ServerManager] '{name}' ready")

        self._initialized = True

    async def disconnect_all(self) -> None:
        """Run close hooks and disconnect. Safe to call more than once."""
        for name, server in self._servers.items():
            if not server.is_connected:
                continue
            await server.on_close()
            await server.disconnect()
            logger.info(f"[ServerManager] '{name}' disconnected")

        self._initialized = False

    async def health_check_all(self) -> dict[str, bool]:
        """
        Probe every registered server.

        Returns:
            Mapping of server name to health status
        """
        return {name: await server.health_check() for name, server in self._servers.items()}

    def list_servers(self) -> list[str]:
        return list(self._servers)

    # ------------------------------------------------------ #
    # Properties
    # ------------------------------------------------------ #

    @property
    def whisper_server_client(self) -> WhisperServerHandler:
        """The speech recognition server used by every transcription session."""
        return self._whisper_server_client

    @property
    def is_initialized(self) -> bool:
        return self._initialized
