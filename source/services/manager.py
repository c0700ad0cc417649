from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from source.context import Context
    from source.services.transcript_file_manager.manager import TranscriptLog
    from source.services.transcription.models import AudioSegment
    from source.services.transcription.session import TranscriptionSession


# -------------------------------------------------------------- #
# Services Manager Class
# -------------------------------------------------------------- #


class ServicesManager:
    """Manager for handling multiple service instances."""

    def __init__(
        self,
        context: Context,
        logging_service: BaseAsyncLoggingService,
        transcript_file_service_manager: BaseTranscriptFileServiceManager,
        speech_recognition_service_manager: BaseSpeechRecognitionServiceManager,
        transcription_session_manager: BaseTranscriptionSessionServiceManager | None = None,
    ):
        self.context = context
        self.server = context.server_manager

        self.logging_service = logging_service

        # Files
        self.transcript_file_service_manager = transcript_file_service_manager

        # Recognition
        self.speech_recognition_service_manager = speech_recognition_service_manager

        # Live sessions
        self.transcription_session_manager = transcription_session_manager

    async def initialize_all(self) -> None:
        """Initialize all service managers."""

        # Logging
        await self.logging_service.on_start(self)

        # Services managers
        await self.transcript_file_service_manager.on_start(self)
        await self.speech_recognition_service_manager.on_start(self)

        # Live sessions
        if self.transcription_session_manager:
            await self.transcription_session_manager.on_start(self)

    async def shutdown_all(self, timeout: float = 60.0) -> None:
        """
        Gracefully shutdown all service managers.

        Active sessions are flushed and closed first so their buffered
        fragments reach the channel and the transcript logs before the
        recognizer and the servers go away.

        Args:
            timeout: Maximum time in seconds to wait for services to shutdown (default: 60s)
        """
        await self.logging_service.info("=" * 60)
        await self.logging_service.info("Starting graceful shutdown of all services...")

        if self.context:
            self.context.mark_shutdown_started()
            await self.logging_service.info("✓ Shutdown flag set - no new sessions will start")

        try:
            # Phase 1: Flush and close live transcription sessions
            await self.logging_service.info("Phase 1: Closing active transcription sessions...")
            if self.transcription_session_manager:
                await asyncio.wait_for(
                    self.transcription_session_manager.on_close(), timeout=timeout * 0.6
                )
                await self.logging_service.info("✓ All transcription sessions closed")

            # Phase 2: Stop recognition
            await self.logging_service.info("Phase 2: Closing speech recognition service...")
            await asyncio.wait_for(
                self.speech_recognition_service_manager.on_close(), timeout=timeout * 0.1
            )
            await self.logging_service.info("✓ Speech recognition service closed")

            # Phase 3: Close file managers (no timeout needed - should be fast)
            await self.logging_service.info("Phase 3: Closing file managers...")
            await self.transcript_file_service_manager.on_close()
            await self.logging_service.info("✓ File managers closed")

            # Phase 4: Disconnect from all servers
            await self.logging_service.info("Phase 4: Disconnecting from all servers...")
            if self.context and self.context.server_manager:
                await self.context.server_manager.disconnect_all()
                await self.logging_service.info("✓ All servers disconnected")

            await self.logging_service.info("✓ Graceful shutdown completed successfully")
            await self.logging_service.info("=" * 60)

        except asyncio.TimeoutError:
            await self.logging_service.error(
                f"⚠️  Shutdown timeout exceeded ({timeout}s) - forcing shutdown"
            )
        except Exception as e:
            await self.logging_service.error(f"⚠️  Error during shutdown: {e}")
            # Give logging a moment to flush the error
            await asyncio.sleep(0.1)

        # Phase 5: Always flush and close logging (even if there were errors)
        try:
            await asyncio.wait_for(self.logging_service.on_close(), timeout=5.0)
        except asyncio.TimeoutError:
            pass  # Don't wait forever for logging to flush


# -------------------------------------------------------------- #
# Base Service Manager Class
# -------------------------------------------------------------- #


class Manager(ABC):
    """Base class for all manager services."""

    def __init__(self, context: Context):
        self.context = context
        self.server = context.server_manager
        self.services = None

        # check if server has been initialized
        if self.server is not None and not self.server.is_initialized:
            raise RuntimeError(
                "ServerManager must be initialized before creating Manager instances."
            )

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services: ServicesManager) -> None:
        """Actions to perform on manager start."""
        self.services = services

    async def on_close(self) -> None:
        """Actions to perform on manager close."""
        pass


# -------------------------------------------------------------- #
# Specialized Manager Classes
# -------------------------------------------------------------- #


class BaseAsyncLoggingService(Manager):
    """Specialized manager for asynchronous logging services."""

    def __init__(self, context):
        super().__init__(context)

    @abstractmethod
    async def log(self, message: str, level: str = "INFO") -> None:
        """Log a message asynchronously."""
        pass

    @abstractmethod
    async def debug(self, message: str) -> None:
        """Log a debug message asynchronously."""
        pass

    @abstractmethod
    async def info(self, message: str) -> None:
        """Log an info message asynchronously."""
        pass

    @abstractmethod
    async def warning(self, message: str) -> None:
        """Log a warning message asynchronously."""
        pass

    @abstractmethod
    async def error(self, message: str) -> None:
        """Log an error message asynchronously."""
        pass

    @abstractmethod
    async def critical(self, message: str) -> None:
        """Log a critical message asynchronously."""
        pass


class BaseTranscriptFileServiceManager(Manager):
    """Specialized manager for per-session transcript log files."""

    def __init__(self, context):
        super().__init__(context)

    @abstractmethod
    def get_storage_path(self) -> str:
        """Get the absolute storage path."""
        pass

    @abstractmethod
    async def create_transcript_log(self, session_key: str) -> TranscriptLog:
        """Create and open the append-only log for a new session."""
        pass

    @abstractmethod
    async def delete_transcript_log(self, path: str) -> bool:
        """Delete a finalized transcript log."""
        pass


class BaseSpeechRecognitionServiceManager(Manager):
    """Specialized manager for speech recognition."""

    def __init__(self, context):
        super().__init__(context)

    @abstractmethod
    async def recognize(self, segment: AudioSegment, language: str | None = None) -> str | None:
        """
        Recognize one audio segment.

        Returns:
            The recognized text, or None if recognition failed or found no speech
        """
        pass


class BaseTranscriptionSessionServiceManager(Manager):
    """Specialized manager owning the live transcription sessions."""

    def __init__(self, context):
        super().__init__(context)

    @abstractmethod
    async def open_session(
        self, session_key: str, text_channel: Any, voice_client: Any | None = None
    ) -> TranscriptionSession:
        """Start a new transcription session."""
        pass

    @abstractmethod
    async def close_session(self, session_key: str, export: bool = True) -> TranscriptionSession:
        """Flush, finalize and remove a transcription session."""
        pass

    @abstractmethod
    def get_session(self, session_key: str) -> TranscriptionSession:
        """Get an active session."""
        pass
