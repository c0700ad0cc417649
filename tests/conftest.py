"""
Pytest configuration and shared fixtures.

This file is automatically loaded by pytest and provides
fixtures and configuration that can be used across all tests.
"""

from collections.abc import Generator
from unittest.mock import AsyncMock, MagicMock

import pytest

# Configure pytest-asyncio
pytest_plugins = ("pytest_asyncio",)


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest with custom settings and markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow running tests")


def pytest_collection_modifyitems(config: pytest.Config, items: list) -> None:
    """Apply timeout to all tests except those marked as slow."""
    for item in items:
        if "slow" not in item.keywords:
            item.add_marker(pytest.mark.timeout(30))


# ============================================================================
# Fakes
# ============================================================================


class FakeTextChannel:
    """Stand-in for a Discord text channel that records what was sent."""

    def __init__(self, fail_on: set[str] | None = None):
        self.sent: list[str] = []
        self.files: list[tuple[str | None, str, bytes]] = []
        self.fail_on = fail_on or set()

    async def send(self, content=None, file=None):
        if file is not None:
            data = file.fp.read()
            file.close()
            self.files.append((content, file.filename, data))
            return

        if content in self.fail_on:
            raise RuntimeError("channel rejected the message")
        self.sent.append(content)


class StaticRecognizer:
    """Recognizer returning queued texts in order, then ``None``. Queued exceptions are raised."""

    def __init__(self, texts: list[str | None] | None = None):
        self.texts = list(texts or [])
        self.segments = []

    async def recognize(self, segment, language=None):
        self.segments.append(segment)
        text = self.texts.pop(0) if self.texts else None
        if isinstance(text, Exception):
            raise text
        return text


@pytest.fixture
def text_channel() -> FakeTextChannel:
    """Create a fake output channel."""
    return FakeTextChannel()


# ============================================================================
# Logging Fixtures
# ============================================================================


@pytest.fixture(scope="session")
def shared_test_log_file(tmp_path_factory) -> str:
    """
    Create a single shared log file for all tests in the session.

    This prevents creating a new timestamped log file for each test,
    consolidating all test logs into one file for easier debugging.

    Returns:
        str: Path to the shared log file
    """
    from datetime import datetime

    # Create a logs directory in the test temp directory
    logs_dir = tmp_path_factory.mktemp("logs")

    # Create a single log file with timestamp in the name
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = logs_dir / f"test_run_{timestamp}.log"

    return str(log_file)


@pytest.fixture
def logging_service(shared_test_log_file):
    """Async logging service without a writer task (writes go straight to the file)."""
    from source.context import Context
    from source.services.logger import AsyncLoggingService

    return AsyncLoggingService(
        context=Context(),
        log_file=shared_test_log_file,
        console_output=False,
        min_level="DEBUG",
    )


# ============================================================================
# Config Fixtures
# ============================================================================


@pytest.fixture
def transcription_config():
    """Pipeline config with short windows so timer-driven tests run quickly."""
    from source.config import TranscriptionConfig

    return TranscriptionConfig(
        buffer_window_ms=50,
        silence_threshold_ms=1000,
        message_char_limit=1900,
        username_mapping={"alice_99": "Alice"},
    )


# ============================================================================
# Mock Discord Fixtures
# ============================================================================


@pytest.fixture
def mock_discord_context() -> MagicMock:
    """Create a mock Discord application context (py-cord)."""
    ctx = MagicMock()
    ctx.author = MagicMock()
    ctx.author.name = "TestUser"
    ctx.author.id = 987654321
    ctx.author.voice = None
    ctx.guild = MagicMock()
    ctx.guild.id = 111222333
    ctx.guild.name = "Test Guild"
    ctx.channel = FakeTextChannel()
    ctx.defer = AsyncMock()
    ctx.respond = AsyncMock()
    ctx.edit = AsyncMock()
    ctx.followup = MagicMock()
    ctx.followup.send = AsyncMock()
    return ctx


@pytest.fixture
def mock_voice_channel() -> MagicMock:
    """Create a mock Discord voice channel."""
    channel = MagicMock()
    channel.id = 444555666
    channel.name = "Test Voice Channel"
    channel.mention = "<#444555666>"
    channel.guild = MagicMock()
    channel.connect = AsyncMock()
    return channel


@pytest.fixture
def mock_discord_user_in_voice(
    mock_discord_context: MagicMock,
    mock_voice_channel: MagicMock,
) -> MagicMock:
    """Create a mock Discord user in a voice channel."""
    mock_discord_context.author.voice = MagicMock()
    mock_discord_context.author.voice.channel = mock_voice_channel
    return mock_discord_context


# ============================================================================
# Cleanup Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def cleanup_after_test() -> Generator[None, None, None]:
    """Automatically cleanup after each test."""
    yield
    # Add any cleanup logic here if needed
    pass


# ============================================================================
# Testing Environment Fixtures (mock Whisper server)
# ============================================================================


@pytest.fixture
async def test_context(transcription_config):
    """
    Create a test context instance.

    Yields:
        Context: Test context instance
    """
    from source.context import Context

    context = Context()
    context.set_config(transcription_config)
    yield context


@pytest.fixture
async def test_server_manager(test_context):
    """
    Create and connect a test server manager backed by the mock Whisper server.

    Args:
        test_context: Test context from test_context fixture

    Yields:
        ServerManager: Connected test server manager instance
    """
    from source.constructor import ServerManagerType
    from source.server.constructor import construct_server_manager

    server = construct_server_manager(ServerManagerType.TESTING, test_context)
    test_context.set_server_manager(server)
    await server.connect_all()

    yield server

    await server.disconnect_all()


@pytest.fixture
async def test_whisper_client(test_server_manager):
    """
    Get the mock Whisper server client from test server manager.

    Yields:
        MockWhisperServerClient: Whisper client returning queued responses
    """
    yield test_server_manager.whisper_server_client


@pytest.fixture
async def services_manager(test_server_manager, tmp_path, shared_test_log_file):
    """
    Create and initialize a services manager with temporary storage.

    Args:
        test_server_manager: Connected test server manager
        tmp_path: Pytest's built-in temporary directory fixture
        shared_test_log_file: Session-scoped shared log file path

    Yields:
        ServicesManager: Initialized services manager instance
    """
    from source.constructor import ServerManagerType
    from source.services.constructor import construct_services_manager

    context = test_server_manager.context

    services = construct_services_manager(
        service_type=ServerManagerType.TESTING,
        context=context,
        transcription_storage_path=str(tmp_path / "data" / "transcriptions"),
        log_file=shared_test_log_file,  # Use shared log file
        use_timestamp_logs=False,  # Don't create timestamp-based logs
        min_log_level="DEBUG",
        console_output=False,
    )
    context.set_services_manager(services)

    await services.initialize_all()

    yield services

    # Close whatever sessions a test left open and stop the log writer
    if services.transcription_session_manager:
        await services.transcription_session_manager.on_close()
    await services.logging_service.on_close()


@pytest.fixture
def make_text_channel():
    """Factory for fake output channels (optionally failing on given messages)."""
    return FakeTextChannel


@pytest.fixture
def make_recognizer():
    """Factory for recognizers returning queued texts."""
    return StaticRecognizer
