# -------------------------------------------------------------- #
# Transcription Errors
# -------------------------------------------------------------- #


class TranscriptionError(Exception):
    """Base class for all transcription pipeline errors."""


class FormatError(TranscriptionError):
    """Captured audio is malformed (not a whole number of PCM frames)."""


class RecognitionFailure(TranscriptionError):
    """The speech recognition service failed or returned nothing usable."""


class DeliveryFailure(TranscriptionError):
    """Sending a chunk to the output channel failed."""

    def __init__(self, session_key: str, chunk: str, cause: BaseException | None = None):
        self.session_key = session_key
        self.chunk = chunk
        self.cause = cause
        super().__init__(f"Failed to deliver chunk for session {session_key}: {cause}")


class AlreadyActiveError(TranscriptionError):
    """A session is already active for this session key."""

    def __init__(self, session_key: str):
        self.session_key = session_key
        super().__init__(f"A transcription session is already active for {session_key}")


class NotFoundError(TranscriptionError):
    """No active session exists for this session key."""

    def __init__(self, session_key: str):
        self.session_key = session_key
        super().__init__(f"No active transcription session for {session_key}")


class LogFileError(TranscriptionError):
    """The durable transcript log could not be opened or finalized."""
