"""
Speech Recognition Service.

Sends one audio segment at a time to the Whisper server and reduces the
response to plain text. A failed request is logged and reported as "no
text" so one bad segment never interrupts a live session.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from source.context import Context
    from source.services.manager import ServicesManager
    from source.services.transcription.models import AudioSegment

from source.services.manager import BaseSpeechRecognitionServiceManager
from source.services.transcription.audio_segmenter import pcm_to_wav
from source.services.transcription.errors import RecognitionFailure


def extract_transcript(response: str | dict[str, Any]) -> str:
    """
    Reduce a Whisper response to transcript text.

    Segment texts are joined with newlines when the response carries
    segments, otherwise the top-level ``text`` field is used.

    Raises:
        RecognitionFailure: If the response does not have the expected shape
    """
    if isinstance(response, str):
        return response.strip()

    if not isinstance(response, dict):
        raise RecognitionFailure(f"Unexpected Whisper response type: {type(response).__name__}")

    segments = response.get("segments") or []
    if not isinstance(segments, list) or not all(isinstance(s, dict) for s in segments):
        raise RecognitionFailure(f"Malformed segments in Whisper response: {segments!r}")

    texts = [str(segment.get("text", "")).strip() for segment in segments]
    texts = [text for text in texts if text]
    if texts:
        return "\n".join(texts)

    return str(response.get("text", "")).strip()


class SpeechRecognitionManagerService(BaseSpeechRecognitionServiceManager):
    """Service wrapping the Whisper server client for per-segment recognition."""

    def __init__(self, context: Context, default_language: str = "en"):
        super().__init__(context)
        self.default_language = default_language

        # Diagnostics
        self.requests_sent = 0
        self.failures = 0

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services: ServicesManager) -> None:
        await super().on_start(services)
        await self.services.logging_service.info(
            f"SpeechRecognitionManagerService initialized (language={self.default_language})"
        )

    async def on_close(self) -> None:
        await self.services.logging_service.info(
            f"SpeechRecognitionManagerService closed after {self.requests_sent} request(s), "
            f"{self.failures} failure(s)"
        )

    # -------------------------------------------------------------- #
    # Recognition
    # -------------------------------------------------------------- #

    async def recognize(self, segment: AudioSegment, language: str | None = None) -> str | None:
        """
        Recognize one mono audio segment.

        Args:
            segment: Audio to recognize
            language: Language code, defaults to the service language

        Returns:
            Recognized text, or None if the request failed
        """
        if segment.num_samples == 0:
            return None

        filename = f"segment_{int(segment.start_time)}.wav"
        self.requests_sent += 1

        try:
            response = await self.server.whisper_server_client.inference(
                audio=pcm_to_wav(segment),
                filename=filename,
                language=language or self.default_language,
                response_format="json",
            )
            return extract_transcript(response)
        except RecognitionFailure as e:
            self.failures += 1
            await self.services.logging_service.error(f"Speech recognition failed: {e}")
            return None
