from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import discord

    from source.config import TranscriptionConfig
    from source.server.server import ServerManager
    from source.services.manager import ServicesManager

# -------------------------------------------------------------- #
# Context Class
# -------------------------------------------------------------- #


class Context:
    """
    Shared handle to the bot, its server and service managers and the
    transcription config.

    Cogs and services reach each other through this object instead of
    importing one another.
    """

    def __init__(self):
        self.server_manager: ServerManager | None = None
        self.services_manager: ServicesManager | None = None
        self.bot: discord.Bot | None = None
        self.config: TranscriptionConfig | None = None
        self._shutting_down = False

    def set_server_manager(self, server_manager: "ServerManager") -> None:
        self.server_manager = server_manager

    def set_services_manager(self, services_manager: "ServicesManager") -> None:
        self.services_manager = services_manager

    def set_bot(self, bot: "discord.Bot") -> None:
        self.bot = bot

    def set_config(self, config: "TranscriptionConfig") -> None:
        """Set the config injected into every transcription session."""
        self.config = config

    def is_shutting_down(self) -> bool:
        """New transcription sessions are refused once shutdown has begun."""
        return self._shutting_down

    def mark_shutdown_started(self) -> None:
        self._shutting_down = True
