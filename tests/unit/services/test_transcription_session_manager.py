import asyncio
import os

import pytest

from source.services.transcription.capture import UtteranceCaptureSink
from source.services.transcription.errors import AlreadyActiveError, NotFoundError
from source.services.transcription.models import Fragment
from source.services.transcription_session_manager.manager import EXPORT_MESSAGE


def _fragment(text: str, start: float, speaker_id: str = "1", speaker_name: str = "alice_99"):
    return Fragment(
        speaker_id=speaker_id,
        speaker_name=speaker_name,
        text=text,
        start_time=start,
        end_time=start + 400,
    )


@pytest.mark.unit
class TestTranscriptionSessionManagerService:
    """Test session registry lifecycle, final flush and transcript export."""

    @pytest.fixture
    def session_manager(self, services_manager):
        return services_manager.transcription_session_manager

    # ------------------------------------------------------------------ #
    # Registry
    # ------------------------------------------------------------------ #

    async def test_open_session_registers_and_creates_log(self, session_manager, text_channel):
        session = await session_manager.open_session("guild-1", text_channel)

        assert session_manager.has_session("guild-1")
        assert session_manager.get_session("guild-1") is session
        assert os.path.exists(session.log_path)
        assert os.path.basename(session.log_path).startswith("transcription_guild-1_")

    async def test_second_open_is_rejected(self, session_manager, text_channel):
        await session_manager.open_session("guild-1", text_channel)

        with pytest.raises(AlreadyActiveError):
            await session_manager.open_session("guild-1", text_channel)

        assert len(session_manager.get_all_active_sessions()) == 1

    async def test_sessions_for_different_keys_are_independent(
        self, session_manager, make_text_channel
    ):
        first = await session_manager.open_session("guild-1", make_text_channel())
        second = await session_manager.open_session("guild-2", make_text_channel())

        assert first is not second
        assert first.log_path != second.log_path
        assert set(session_manager.get_all_active_sessions()) == {"guild-1", "guild-2"}

    async def test_missing_session_raises_not_found(self, session_manager):
        with pytest.raises(NotFoundError):
            session_manager.get_session("nope")

        with pytest.raises(NotFoundError):
            await session_manager.close_session("nope")

        with pytest.raises(NotFoundError):
            session_manager.export_transcript("nope")

    # ------------------------------------------------------------------ #
    # Close
    # ------------------------------------------------------------------ #

    async def test_close_flushes_once_exports_and_deletes_log(self, session_manager, text_channel):
        session = await session_manager.open_session("guild-1", text_channel)
        session.aggregator.buffer_window_ms = 10_000

        session.buffer_fragment(_fragment("hello", 1_000))
        session.buffer_fragment(_fragment("there", 1_500))
        session.buffer_fragment(_fragment("friend", 2_000))

        closed = await session_manager.close_session("guild-1")

        assert closed is session
        assert session.is_closed
        assert session.aggregator.flush_count == 1
        assert text_channel.sent == ["Alice: hello there friend"]

        assert len(text_channel.files) == 1
        content, filename, data = text_channel.files[0]
        assert content == EXPORT_MESSAGE
        assert filename == os.path.basename(session.log_path)
        assert data.decode("utf-8") == "Alice: hello there friend\n"

        assert not os.path.exists(session.log_path)
        assert not session_manager.has_session("guild-1")

    async def test_close_without_export_keeps_log(self, session_manager, text_channel):
        session = await session_manager.open_session("guild-1", text_channel)
        session.buffer_fragment(_fragment("keep me", 1_000))

        await session_manager.close_session("guild-1", export=False)

        assert text_channel.files == []
        assert os.path.exists(session.log_path)
        with open(session.log_path, encoding="utf-8") as f:
            assert f.read() == "Alice: keep me\n"

    async def test_export_disabled_by_config(self, session_manager, text_channel):
        session_manager.config.export_on_close = False
        try:
            session = await session_manager.open_session("guild-1", text_channel)
            await session_manager.close_session("guild-1")
        finally:
            session_manager.config.export_on_close = True

        assert text_channel.files == []
        assert os.path.exists(session.log_path)

    async def test_key_is_reusable_after_close(self, session_manager, text_channel):
        await session_manager.open_session("guild-1", text_channel)
        await session_manager.close_session("guild-1", export=False)

        reopened = await session_manager.open_session("guild-1", text_channel)

        assert session_manager.get_session("guild-1") is reopened
        assert not reopened.is_closed

    async def test_failed_upload_keeps_log(self, session_manager, text_channel):
        async def failing_send(content=None, file=None):
            if file is not None:
                file.close()
                raise RuntimeError("upload rejected")
            text_channel.sent.append(content)

        text_channel.send = failing_send
        session = await session_manager.open_session("guild-1", text_channel)
        session.buffer_fragment(_fragment("still here", 1_000))

        await session_manager.close_session("guild-1")

        assert text_channel.sent == ["Alice: still here"]
        assert os.path.exists(session.log_path)

    async def test_close_still_flushes_when_stopping_capture_fails(
        self, session_manager, text_channel
    ):
        session = await session_manager.open_session("guild-1", text_channel)
        session.aggregator.buffer_window_ms = 10_000
        session.buffer_fragment(_fragment("before stop", 1_000))

        def unknown_member(user_id):
            raise KeyError(user_id)

        sink = UtteranceCaptureSink()
        sink.feed(42, bytes(48_000 * 4), received_at=2_000)
        session.capture_sink = sink
        session.capture_resolve_name = unknown_member

        await session_manager.close_session("guild-1", export=False)

        assert not session_manager.has_session("guild-1")
        assert session.is_closed
        assert not session.aggregator.is_flush_scheduled
        assert session.aggregator.pending_count == 0
        assert not session.transcript_log.is_open
        assert text_channel.sent == ["Alice: before stop"]

    async def test_slow_close_does_not_block_other_guilds(
        self, session_manager, make_text_channel
    ):
        slow_channel = make_text_channel()
        record_send = slow_channel.send

        async def slow_send(content=None, file=None):
            await asyncio.sleep(0.5)
            await record_send(content=content, file=file)

        slow_channel.send = slow_send
        session = await session_manager.open_session("guild-1", slow_channel)
        session.aggregator.buffer_window_ms = 10_000
        session.buffer_fragment(_fragment("slow goodbye", 1_000))

        closing = asyncio.create_task(session_manager.close_session("guild-1", export=False))
        await asyncio.sleep(0.05)

        loop = asyncio.get_running_loop()
        started = loop.time()
        await session_manager.open_session("guild-2", make_text_channel())
        assert loop.time() - started < 0.3

        # the closing key cannot be reopened until teardown finishes
        with pytest.raises(AlreadyActiveError):
            await session_manager.open_session("guild-1", make_text_channel())

        await closing
        assert slow_channel.sent == ["Alice: slow goodbye"]
        reopened = await session_manager.open_session("guild-1", make_text_channel())
        assert session_manager.get_session("guild-1") is reopened

    async def test_on_close_closes_every_session(self, session_manager, make_text_channel):
        first_channel = make_text_channel()
        second_channel = make_text_channel()
        first = await session_manager.open_session("guild-1", first_channel)
        second = await session_manager.open_session("guild-2", second_channel)
        first.buffer_fragment(_fragment("bye", 1_000))

        await session_manager.on_close()

        assert session_manager.get_all_active_sessions() == {}
        assert first.is_closed and second.is_closed
        assert first_channel.sent == ["Alice: bye"]
        assert len(first_channel.files) == 1

    # ------------------------------------------------------------------ #
    # Transcript access
    # ------------------------------------------------------------------ #

    async def test_export_transcript(self, session_manager, text_channel):
        session = await session_manager.open_session("guild-1", text_channel)
        assert session_manager.export_transcript("guild-1") == ""

        session.buffer_fragment(_fragment("first", 1_000))
        await session.flush()
        session.buffer_fragment(_fragment("second", 9_000, speaker_id="2", speaker_name="bob"))
        await session.flush()

        assert session_manager.export_transcript("guild-1") == "Alice: first\nbob: second"

    # ------------------------------------------------------------------ #
    # Full pipeline
    # ------------------------------------------------------------------ #

    async def test_utterance_to_channel_through_mock_whisper(
        self, session_manager, test_whisper_client, text_channel
    ):
        test_whisper_client.queue_transcription(" hello there ")
        session = await session_manager.open_session("guild-1", text_channel)

        # one second of stereo 16-bit silence at 48 kHz
        pcm = b"\x00\x00\x00\x00" * 48_000
        buffered = await session.transcribe_utterance("1", "alice_99", pcm, 10_000, 11_000)

        await session_manager.close_session("guild-1", export=False)

        assert buffered == 1
        assert len(test_whisper_client.requests) == 1
        assert test_whisper_client.requests[0]["language"] == "en"
        assert test_whisper_client.requests[0]["audio"][:4] == b"RIFF"
        assert text_channel.sent == ["Alice: hello there"]
