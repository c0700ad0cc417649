from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from source.services.manager import BaseAsyncLoggingService
    from source.services.transcript_file_manager.manager import TranscriptLog

from source.services.transcription.chunker import chunk_message
from source.services.transcription.errors import DeliveryFailure, LogFileError
from source.services.transcription.models import Message
from source.services.transcription.similarity import SimilarityDetector

# -------------------------------------------------------------- #
# Transcript Sink
# -------------------------------------------------------------- #


class TranscriptSink:
    """
    Delivers a session's chunks to its text channel and its transcript log.

    Per chunk, in order:
    1. Drop it if it is nearly identical to the previous delivered chunk
    2. Append it to the durable log
    3. Send it to the channel (at most once, failures are logged, never retried)
    4. Record it in the in-memory history used for on-demand export
    """

    def __init__(
        self,
        session_key: str,
        text_channel: Any,
        transcript_log: TranscriptLog,
        detector: SimilarityDetector,
        logging_service: BaseAsyncLoggingService,
    ):
        self.session_key = session_key
        self.text_channel = text_channel
        self.transcript_log = transcript_log
        self.detector = detector
        self.logging_service = logging_service

        self.history: list[str] = []
        self.last_chunk: str | None = None

        # Diagnostics
        self.dropped_chunks: list[str] = []
        self.failed_sends = 0
        self.failed_log_writes = 0

    async def deliver(self, chunk: str) -> bool:
        """
        Deliver one chunk.

        Returns:
            True if the chunk was delivered, False if it was dropped as a near duplicate
        """
        if self.last_chunk is not None and self.detector.similar(chunk, self.last_chunk):
            self.dropped_chunks.append(chunk)
            await self.logging_service.debug(
                f"[{self.session_key}] Dropped near-duplicate chunk: {chunk!r}"
            )
            return False

        try:
            await self.transcript_log.append(chunk)
        except LogFileError as e:
            self.failed_log_writes += 1
            await self.logging_service.error(f"[{self.session_key}] {e}")

        try:
            await self.text_channel.send(chunk)
        except Exception as e:
            failure = DeliveryFailure(self.session_key, chunk, e)
            self.failed_sends += 1
            await self.logging_service.error(str(failure))

        self.history.append(chunk)
        self.last_chunk = chunk
        return True

    async def deliver_message(self, message: Message, limit: int, reprefix: bool = True) -> int:
        """
        Chunk a message and deliver its chunks in order.

        Returns:
            Number of chunks delivered (near duplicates excluded)
        """
        delivered = 0
        for chunk in chunk_message(message.display_name, message.text, limit, reprefix=reprefix):
            if await self.deliver(chunk):
                delivered += 1
        return delivered
