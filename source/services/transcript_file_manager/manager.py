from __future__ import annotations

import asyncio
import os
from typing import TYPE_CHECKING

import aiofiles

if TYPE_CHECKING:
    from aiofiles.threadpool.text import AsyncTextIOWrapper

    from source.context import Context

from source.services.manager import BaseTranscriptFileServiceManager
from source.services.transcription.errors import LogFileError
from source.utils import get_current_timestamp_est

# -------------------------------------------------------------- #
# Transcript Log
# -------------------------------------------------------------- #


class TranscriptLog:
    """
    Append-only, line-per-chunk transcript file owned by a single session.

    The handle stays open for the lifetime of the session; every append is
    flushed so the file is the durability backstop when channel delivery fails.
    """

    def __init__(self, path: str):
        self.path = path
        self._file: AsyncTextIOWrapper | None = None
        self._lock = asyncio.Lock()
        self._finalized = False
        self.lines_written = 0

    @property
    def is_open(self) -> bool:
        return self._file is not None

    @property
    def is_finalized(self) -> bool:
        return self._finalized

    async def open(self) -> None:
        """Create the file (truncating nothing) and keep the handle open.

        Raises:
            LogFileError: If the file cannot be created
        """
        if self._file is not None:
            return
        try:
            parent = os.path.dirname(self.path)
            if parent:
                os.makedirs(parent, exist_ok=True)
            self._file = await aiofiles.open(self.path, mode="a", encoding="utf-8")
        except OSError as e:
            raise LogFileError(f"Cannot open transcript log {self.path}: {e}") from e

    async def append(self, line: str) -> None:
        """Append one line.

        Raises:
            LogFileError: If the log is not open or the write fails
        """
        async with self._lock:
            if self._file is None:
                raise LogFileError(f"Transcript log {self.path} is not open")
            try:
                await self._file.write(line + "\n")
                await self._file.flush()
            except OSError as e:
                raise LogFileError(f"Failed to append to transcript log {self.path}: {e}") from e
            self.lines_written += 1

    async def close(self) -> None:
        """Finalize the log. Safe to call more than once."""
        async with self._lock:
            if self._file is None:
                self._finalized = True
                return
            try:
                await self._file.close()
            except OSError as e:
                raise LogFileError(f"Failed to close transcript log {self.path}: {e}") from e
            finally:
                self._file = None
                self._finalized = True


# -------------------------------------------------------------- #
# Transcript File Manager Service
# -------------------------------------------------------------- #


class TranscriptFileManagerService(BaseTranscriptFileServiceManager):
    """Service for creating and removing per-session transcript logs."""

    def __init__(self, context: Context, transcription_storage_path: str):
        super().__init__(context)
        self.transcription_storage_path = transcription_storage_path

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services):
        await super().on_start(services)

        loop = asyncio.get_running_loop()
        if not await loop.run_in_executor(None, os.path.exists, self.transcription_storage_path):
            await loop.run_in_executor(None, os.makedirs, self.transcription_storage_path)

        await self.services.logging_service.info(
            f"TranscriptFileManagerService initialized with storage path: {self.transcription_storage_path}"
        )
        return True

    async def on_close(self):
        await self.services.logging_service.info("TranscriptFileManagerService closed")
        return True

    # -------------------------------------------------------------- #
    # Transcript File Methods
    # -------------------------------------------------------------- #

    def get_storage_path(self) -> str:
        """Get the absolute storage path."""
        return os.path.abspath(self.transcription_storage_path)

    def _build_transcript_filename(self, session_key: str) -> str:
        """Build ``transcription_<session>_<timestamp>.txt``."""
        timestamp = get_current_timestamp_est().isoformat().replace(":", "-").replace(".", "-")
        return f"transcription_{session_key}_{timestamp}.txt"

    async def create_transcript_log(self, session_key: str) -> TranscriptLog:
        """
        Create and open the transcript log for a new session.

        Args:
            session_key: The session (guild) the log belongs to

        Returns:
            An open TranscriptLog

        Raises:
            LogFileError: If the file cannot be created
        """
        filename = self._build_transcript_filename(session_key)
        transcript_log = TranscriptLog(os.path.join(self.transcription_storage_path, filename))

        try:
            await transcript_log.open()
        except LogFileError as e:
            await self.services.logging_service.error(str(e))
            raise

        await self.services.logging_service.info(
            f"Created transcript log for session {session_key}: {transcript_log.path}"
        )
        return transcript_log

    async def delete_transcript_log(self, path: str) -> bool:
        """
        Delete a transcript log file.

        Returns:
            True if the file was deleted, False if it did not exist or could not be removed
        """
        loop = asyncio.get_running_loop()
        if not await loop.run_in_executor(None, os.path.exists, path):
            await self.services.logging_service.warning(f"Transcript log not found: {path}")
            return False

        try:
            await loop.run_in_executor(None, os.remove, path)
        except OSError as e:
            await self.services.logging_service.error(f"Error deleting transcript log {path}: {e}")
            return False

        await self.services.logging_service.info(f"Transcript log deleted: {path}")
        return True
