from abc import ABC, abstractmethod
from typing import Any

# -------------------------------------------------------------- #
# Base Server Handler
# -------------------------------------------------------------- #


class BaseServerHandler(ABC):
    """Abstract base class for all server handlers."""

    def __init__(self, name: str):
        self.name = name
        self._connected = False

    # -------------------------------------------------------------- #
    # Handler Methods
    # -------------------------------------------------------------- #

    async def on_startup(self) -> None:
        """Actions to perform on server startup."""
        pass

    async def on_close(self) -> None:
        """Actions to perform on server close."""
        pass

    # -------------------------------------------------------------- #
    # Abstract Methods
    # -------------------------------------------------------------- #

    @abstractmethod
    async def connect(self) -> None:
        """Establish connection to the server."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close connection to the server."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the server is healthy and responding."""
        pass

    @property
    def is_connected(self) -> bool:
        """Check if currently connected to the server."""
        return self._connected


# -------------------------------------------------------------- #
# Base Service Structures
# -------------------------------------------------------------- #


# Whisper Server Handler
class WhisperServerHandler(BaseServerHandler):
    """Whisper Server handler."""

    def __init__(self, name: str, endpoint: str):
        super().__init__(name)
        self.endpoint = endpoint

    # -------------------------------------------------------------- #
    # Methods
    # -------------------------------------------------------------- #

    @abstractmethod
    async def inference(
        self,
        audio: bytes,
        filename: str = "segment.wav",
        language: str = "en",
        response_format: str = "json",
    ) -> str | dict[str, Any]:
        """
        Perform transcription on an in-memory WAV file.

        Args:
            audio: WAV file contents
            filename: Name reported for the upload
            language: Language code (e.g., "en" for English)
            response_format: "json", "verbose_json" or "text"

        Returns:
            Plain text for "text", otherwise the parsed JSON response

        Raises:
            RecognitionFailure: If the server is unreachable or rejects the request
        """
        pass
