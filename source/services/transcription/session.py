from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from source.config import TranscriptionConfig
    from source.services.manager import (
        BaseAsyncLoggingService,
        BaseSpeechRecognitionServiceManager,
    )
    from source.services.transcript_file_manager.manager import TranscriptLog

from source.config import resolve_display_name
from source.services.transcription.aggregator import UtteranceAggregator
from source.services.transcription.audio_segmenter import calculate_pcm_duration_ms, segment_audio
from source.services.transcription.errors import FormatError
from source.services.transcription.models import Fragment, Message
from source.services.transcription.similarity import SimilarityDetector
from source.services.transcription.sink import TranscriptSink
from source.utils import get_current_timestamp_est

# -------------------------------------------------------------- #
# Transcription Session
# -------------------------------------------------------------- #


class TranscriptionSession:
    """
    One live transcription of one voice room, delivered to one text channel.

    Wires utterance capture output through recognition, aggregation and
    delivery. Owns the session's aggregator, sink and transcript log.
    """

    def __init__(
        self,
        session_key: str,
        text_channel: Any,
        transcript_log: TranscriptLog,
        config: TranscriptionConfig,
        logging_service: BaseAsyncLoggingService,
        recognizer: BaseSpeechRecognitionServiceManager,
        voice_client: Any | None = None,
    ):
        self.session_key = session_key
        self.text_channel = text_channel
        self.transcript_log = transcript_log
        self.config = config
        self.logging_service = logging_service
        self.recognizer = recognizer
        self.voice_client = voice_client
        self.created_at = get_current_timestamp_est()

        # set by start_capture when recording from a live voice client
        self.capture_sink = None
        self.capture_task = None
        self.capture_resolve_name = str

        self.sink = TranscriptSink(
            session_key=session_key,
            text_channel=text_channel,
            transcript_log=transcript_log,
            detector=SimilarityDetector(config.similarity_threshold),
            logging_service=logging_service,
        )
        self.aggregator = UtteranceAggregator(
            session_key=session_key,
            on_message=self._deliver_message,
            logging_service=logging_service,
            buffer_window_ms=config.buffer_window_ms,
            silence_threshold_ms=config.silence_threshold_ms,
            display_name=self.display_name,
        )

    # -------------------------------------------------------------- #
    # Properties
    # -------------------------------------------------------------- #

    @property
    def log_path(self) -> str:
        return self.transcript_log.path

    @property
    def transcript_lines(self) -> list[str]:
        """Every chunk delivered so far, in order."""
        return list(self.sink.history)

    @property
    def is_closed(self) -> bool:
        return self.aggregator.is_closed

    def display_name(self, username: str) -> str:
        return resolve_display_name(username, self.config.username_mapping)

    # -------------------------------------------------------------- #
    # Pipeline
    # -------------------------------------------------------------- #

    def buffer_fragment(self, fragment: Fragment) -> bool:
        """Hand an already recognized fragment to the aggregator."""
        return self.aggregator.buffer(fragment)

    async def transcribe_utterance(
        self,
        speaker_id: str,
        speaker_name: str,
        pcm: bytes,
        start_time: float,
        end_time: float,
    ) -> int:
        """
        Recognize one captured utterance and buffer its fragments.

        Segments are recognized one after another so fragments from one
        utterance are buffered in time order. Utterances shorter than
        ``min_utterance_ms`` and malformed audio are dropped.

        Returns:
            Number of fragments buffered
        """
        duration_ms = calculate_pcm_duration_ms(
            len(pcm), sample_rate=self.config.sample_rate, channels=self.config.channels
        )
        if duration_ms < self.config.min_utterance_ms:
            await self.logging_service.debug(
                f"[{self.session_key}] Skipping {duration_ms}ms utterance from {speaker_name}"
            )
            return 0

        try:
            segments = segment_audio(
                pcm,
                start_time=start_time,
                end_time=end_time,
                sample_rate=self.config.sample_rate,
                max_segment_duration_seconds=self.config.max_segment_duration_seconds,
                channels=self.config.channels,
            )
        except FormatError as e:
            await self.logging_service.error(
                f"[{self.session_key}] Dropping utterance from {speaker_name}: {e}"
            )
            return 0

        buffered = 0
        for segment in segments:
            try:
                text = await self.recognizer.recognize(segment, language=self.config.language)
            except Exception as e:
                await self.logging_service.error(
                    f"[{self.session_key}] Recognition failed for segment of {speaker_name}: {e}"
                )
                continue

            if not text or not text.strip():
                continue

            fragment = Fragment(
                speaker_id=speaker_id,
                speaker_name=speaker_name,
                text=text,
                start_time=segment.start_time,
                end_time=segment.end_time,
            )
            if self.buffer_fragment(fragment):
                buffered += 1

        return buffered

    async def _deliver_message(self, message: Message) -> None:
        await self.sink.deliver_message(
            message,
            limit=self.config.message_char_limit,
            reprefix=self.config.reprefix_continuations,
        )

    # -------------------------------------------------------------- #
    # Lifecycle
    # -------------------------------------------------------------- #

    async def flush(self) -> list[Message]:
        return await self.aggregator.flush()

    async def close(self) -> list[Message]:
        """Drain everything buffered, then finalize the transcript log."""
        messages = await self.aggregator.close()
        await self.transcript_log.close()
        await self.logging_service.info(
            f"[{self.session_key}] Session closed: {len(self.sink.history)} chunk(s) delivered, "
            f"{len(self.sink.dropped_chunks)} dropped as duplicates, "
            f"{self.sink.failed_sends} failed send(s)"
        )
        return messages
