import os
from typing import TYPE_CHECKING

from dotenv import load_dotenv

if TYPE_CHECKING:
    from source.context import Context

from source.server.common import whisper_server
from source.server.server import ServerManager

load_dotenv(dotenv_path=".env.local")

# -------------------------------------------------------------- #
# Constructor for Development Server Manager
# -------------------------------------------------------------- #


def load_whisper_server_client() -> whisper_server.WhisperServerClient:
    """Load and return the Whisper server client."""
    endpoint = os.getenv("WHISPER_ENDPOINT")

    # Fallback to host/port if no full endpoint is configured
    if not endpoint:
        host = os.getenv("WHISPER_HOST", "localhost")
        port = int(os.getenv("WHISPER_PORT", "50021"))
        endpoint = f"http://{host}:{port}"

    request_timeout = float(os.getenv("WHISPER_REQUEST_TIMEOUT", "60"))

    return whisper_server.construct_whisper_server_client(
        endpoint=endpoint, request_timeout=request_timeout
    )


def construct_server_manager(context: "Context") -> ServerManager:
    """
    Construct and return a ServerManager instance.

    Args:
        context: Context instance to pass to ServerManager

    Returns:
        Configured ServerManager instance
    """
    whisper_server_client = load_whisper_server_client()

    # create server manager
    server_manager = ServerManager(
        context=context,
        whisper_server_client=whisper_server_client,
    )

    return server_manager
