"""Whisper server client implementation."""

import json
import logging

import aiohttp

from source.server.services import WhisperServerHandler
from source.services.transcription.errors import RecognitionFailure

logger = logging.getLogger(__name__)


class WhisperServerClient(WhisperServerHandler):
    """Client for Whisper.cpp server."""

    def __init__(
        self,
        name: str = "whisper_server",
        endpoint: str = "http://localhost:50021",
        request_timeout: float = 60.0,
    ):
        """
        Initialize Whisper server client.

        Args:
            name: Name of the client
            endpoint: Whisper server endpoint URL
            request_timeout: Total timeout in seconds for one inference request
        """
        super().__init__(name, endpoint)
        self.request_timeout = request_timeout
        self.session: aiohttp.ClientSession | None = None

    # -------------------------------------------------------------- #
    # Server Management
    # -------------------------------------------------------------- #

    async def connect(self) -> None:
        """Open the HTTP session and probe the server."""
        self.session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.request_timeout)
        )
        self._connected = True

        # An unreachable server is not fatal at startup; each request reports its own failure
        if await self.health_check():
            logger.info(f"Connected to Whisper server at {self.endpoint}")
        else:
            logger.warning(f"Whisper server at {self.endpoint} did not pass health check")

    async def disconnect(self) -> None:
        """Close connection to Whisper server."""
        if self.session:
            await self.session.close()
            self.session = None
        self._connected = False
        logger.info("Disconnected from Whisper server")

    async def health_check(self) -> bool:
        """Check if Whisper server is healthy."""
        try:
            if not self.session:
                return False

            async with self.session.get(f"{self.endpoint}/health") as response:
                return response.status == 200
        except (aiohttp.ClientError, TimeoutError) as e:
            logger.error(f"Whisper server health check failed: {e}")
            return False

    # -------------------------------------------------------------- #
    # Handler Methods
    # -------------------------------------------------------------- #

    async def inference(
        self,
        audio: bytes,
        filename: str = "segment.wav",
        language: str = "en",
        response_format: str = "json",
    ) -> str | dict:
        """
        Perform transcription on an in-memory WAV file.

        Args:
            audio: WAV file contents
            filename: Name reported for the upload
            language: Language code (e.g., "en" for English)
            response_format: Format of the response ("json", "verbose_json" or "text")

        Returns:
            For "text" format: string with transcribed text
            For "json" or "verbose_json" format: dict with the parsed response

        Raises:
            RecognitionFailure: If the request fails or the server rejects it
        """
        if not self.session:
            raise RecognitionFailure("Not connected to Whisper server")

        # Default to JSON so we can safely parse it
        response_format = response_format or "json"

        data = aiohttp.FormData()
        data.add_field("file", audio, filename=filename, content_type="audio/wav")
        for key, value in {
            "response_format": response_format,
            "temperature": "0.0",
            "language": language,
        }.items():
            data.add_field(key, str(value))

        try:
            async with self.session.post(f"{self.endpoint}/inference", data=data) as response:
                body = await response.text()
        except (aiohttp.ClientError, TimeoutError) as e:
            logger.error(f"Inference request failed: {e}")
            raise RecognitionFailure(f"Inference request failed: {e}") from e

        if response.status != 200:
            raise RecognitionFailure(f"Inference failed ({response.status}): {body}")

        # Text-only response - return as plain string
        if response_format == "text":
            return body

        try:
            return json.loads(body)
        except json.JSONDecodeError as e:
            raise RecognitionFailure(f"Inference returned invalid JSON: {e}") from e


def construct_whisper_server_client(
    endpoint: str = "http://localhost:50021",
    request_timeout: float = 60.0,
) -> WhisperServerClient:
    """
    Construct and return a Whisper server client.

    Args:
        endpoint: Whisper server endpoint URL
        request_timeout: Total timeout in seconds for one inference request

    Returns:
        Configured WhisperServerClient instance
    """
    return WhisperServerClient(
        name="whisper_server", endpoint=endpoint, request_timeout=request_timeout
    )
