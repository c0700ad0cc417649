"""
Transcription Session Manager Service.

Owns the registry of live transcription sessions, keyed by guild. At most
one session is active per key; opening a second one is rejected and looking
up or closing a missing one raises.
"""

from __future__ import annotations

import asyncio
import os
from typing import TYPE_CHECKING, Any

import discord

if TYPE_CHECKING:
    from source.config import TranscriptionConfig
    from source.context import Context
    from source.services.manager import ServicesManager

from source.services.manager import BaseTranscriptionSessionServiceManager
from source.services.transcription.capture import stop_capture
from source.services.transcription.errors import AlreadyActiveError, NotFoundError
from source.services.transcription.session import TranscriptionSession

EXPORT_MESSAGE = "Here's the transcription file:"


class TranscriptionSessionManagerService(BaseTranscriptionSessionServiceManager):
    """
    Manager for live transcription sessions.

    This class manages:
    - Session lifecycle (open, close)
    - Final forced flush and log finalization on close
    - Uploading the finished transcript to the session's channel
    """

    def __init__(self, context: Context, config: TranscriptionConfig):
        super().__init__(context)
        self.config = config

        self.sessions: dict[str, TranscriptionSession] = {}
        self._closing: set[str] = set()
        self._registry_lock = asyncio.Lock()

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services: ServicesManager) -> None:
        await super().on_start(services)
        await self.services.logging_service.info("Transcription Session Manager started")

    async def on_close(self) -> None:
        """Close every active session."""
        for session_key in list(self.sessions.keys()):
            try:
                await self.close_session(session_key)
            except NotFoundError:
                continue
            except Exception as e:
                await self.services.logging_service.error(
                    f"Failed to close transcription session {session_key}: {e}"
                )

        await self.services.logging_service.info("Transcription Session Manager stopped")

    # -------------------------------------------------------------- #
    # Session Management Methods
    # -------------------------------------------------------------- #

    async def open_session(
        self, session_key: str, text_channel: Any, voice_client: Any | None = None
    ) -> TranscriptionSession:
        """
        Start a new transcription session.

        Args:
            session_key: Guild the session belongs to
            text_channel: Channel receiving the transcript chunks
            voice_client: Voice connection being transcribed, if any

        Returns:
            The new session

        Raises:
            AlreadyActiveError: If a session is already active for ``session_key``
            LogFileError: If the transcript log cannot be created
        """
        async with self._registry_lock:
            if session_key in self.sessions or session_key in self._closing:
                raise AlreadyActiveError(session_key)

            transcript_log = (
                await self.services.transcript_file_service_manager.create_transcript_log(
                    session_key
                )
            )

            session = TranscriptionSession(
                session_key=session_key,
                text_channel=text_channel,
                transcript_log=transcript_log,
                config=self.config,
                logging_service=self.services.logging_service,
                recognizer=self.services.speech_recognition_service_manager,
                voice_client=voice_client,
            )
            self.sessions[session_key] = session

        await self.services.logging_service.info(
            f"Started transcription session {session_key}, logging to {transcript_log.path}"
        )
        return session

    async def close_session(self, session_key: str, export: bool = True) -> TranscriptionSession:
        """
        Flush, finalize and remove a transcription session.

        Steps:
        1. Stop capture and transcribe the utterances still in progress
        2. One forced flush of everything buffered
        3. Finalize the transcript log
        4. Upload the log to the channel (if enabled) and delete it (if enabled)

        Args:
            session_key: Session to close
            export: Upload the transcript file, subject to ``export_on_close``

        Returns:
            The closed session

        Raises:
            NotFoundError: If no session is active for ``session_key``
        """
        async with self._registry_lock:
            session = self.sessions.pop(session_key, None)
            if session is None:
                raise NotFoundError(session_key)
            # the key stays reserved until teardown finishes
            self._closing.add(session_key)

        try:
            try:
                await stop_capture(session)
            except Exception as e:
                await self.services.logging_service.error(
                    f"Failed to stop capture for session {session_key}: {e}"
                )
            await session.close()
        finally:
            self._closing.discard(session_key)

        if export and self.config.export_on_close:
            exported = await self._export_log_file(session)
            if exported and self.config.delete_log_after_export:
                await self.services.transcript_file_service_manager.delete_transcript_log(
                    session.log_path
                )

        await self.services.logging_service.info(f"Stopped transcription session {session_key}")
        return session

    def get_session(self, session_key: str) -> TranscriptionSession:
        """
        Get an active session.

        Raises:
            NotFoundError: If no session is active for ``session_key``
        """
        session = self.sessions.get(session_key)
        if session is None:
            raise NotFoundError(session_key)
        return session

    def has_session(self, session_key: str) -> bool:
        return session_key in self.sessions

    def get_all_active_sessions(self) -> dict[str, TranscriptionSession]:
        return dict(self.sessions)

    def export_transcript(self, session_key: str) -> str:
        """
        Everything delivered so far in an active session, one chunk per line.

        Raises:
            NotFoundError: If no session is active for ``session_key``
        """
        return "\n".join(self.get_session(session_key).transcript_lines)

    # -------------------------------------------------------------- #
    # Export
    # -------------------------------------------------------------- #

    async def _export_log_file(self, session: TranscriptionSession) -> bool:
        """Upload the finalized transcript log to the session's channel."""
        if not os.path.exists(session.log_path):
            await self.services.logging_service.warning(
                f"Transcript log missing, nothing to export: {session.log_path}"
            )
            return False

        try:
            await session.text_channel.send(
                content=EXPORT_MESSAGE, file=discord.File(session.log_path)
            )
        except Exception as e:
            await self.services.logging_service.error(
                f"Failed to upload transcript for session {session.session_key}: {e}"
            )
            return False

        await self.services.logging_service.info(
            f"Uploaded transcript for session {session.session_key}"
        )
        return True
