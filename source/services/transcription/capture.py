from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import discord

if TYPE_CHECKING:
    from source.services.transcription.session import TranscriptionSession

from source.utils import now_ms

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 0.2


# -------------------------------------------------------------- #
# Captured Utterance
# -------------------------------------------------------------- #


@dataclass
class CapturedUtterance:
    """Raw PCM for one speaker between the first packet and the following silence."""

    user_id: Any
    pcm: bytes
    start_time: float
    end_time: float


@dataclass
class _UserCapture:
    first_packet_ms: float
    last_packet_ms: float
    buffer: bytearray = field(default_factory=bytearray)


# -------------------------------------------------------------- #
# Utterance Capture Sink
# -------------------------------------------------------------- #


class UtteranceCaptureSink(discord.sinks.Sink):
    """
    Pycord sink that cuts each user's audio into utterances on silence.

    ``write`` runs on the voice receive thread, so per-user state is guarded by
    a threading lock. The event loop polls ``pop_finished`` for users whose
    packets stopped at least ``silence_duration_ms`` ago.
    """

    def __init__(
        self,
        silence_duration_ms: float = 1000,
        *,
        clock: Callable[[], float] = now_ms,
        filters=None,
    ):
        super().__init__(filters=filters)
        self.silence_duration_ms = silence_duration_ms
        self._clock = clock
        self._states: dict[Any, _UserCapture] = {}
        self._lock = threading.Lock()

    @discord.sinks.Filters.container
    def write(self, data, user):
        self.feed(user, data)

    def feed(self, user, data: bytes, received_at: float | None = None) -> None:
        """Append a decoded PCM packet to the user's open utterance."""
        now = self._clock() if received_at is None else received_at
        with self._lock:
            state = self._states.get(user)
            if state is None:
                state = _UserCapture(first_packet_ms=now, last_packet_ms=now)
                self._states[user] = state
            state.buffer.extend(data)
            state.last_packet_ms = now

    def pop_finished(self, now: float | None = None) -> list[CapturedUtterance]:
        """Take every utterance whose speaker has been silent long enough."""
        now = self._clock() if now is None else now
        with self._lock:
            finished = [
                user
                for user, state in self._states.items()
                if now - state.last_packet_ms >= self.silence_duration_ms
            ]
            return [self._pop(user) for user in finished]

    def pop_all(self) -> list[CapturedUtterance]:
        """Take every open utterance regardless of silence (used on stop)."""
        with self._lock:
            return [self._pop(user) for user in list(self._states)]

    def _pop(self, user) -> CapturedUtterance:
        state = self._states.pop(user)
        return CapturedUtterance(
            user_id=user,
            pcm=bytes(state.buffer),
            start_time=state.first_packet_ms,
            end_time=state.last_packet_ms,
        )

    def cleanup(self):
        self.finished = True


# -------------------------------------------------------------- #
# Capture Loop
# -------------------------------------------------------------- #


async def transcribe_captured(
    session: TranscriptionSession,
    utterances: list[CapturedUtterance],
    resolve_name: Callable[[Any], str],
) -> int:
    """Run captured utterances through the session pipeline, one at a time."""
    buffered = 0
    for utterance in utterances:
        buffered += await session.transcribe_utterance(
            speaker_id=str(utterance.user_id),
            speaker_name=resolve_name(utterance.user_id),
            pcm=utterance.pcm,
            start_time=utterance.start_time,
            end_time=utterance.end_time,
        )
    return buffered


async def run_capture_loop(
    session: TranscriptionSession,
    sink: UtteranceCaptureSink,
    resolve_name: Callable[[Any], str],
    poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
) -> None:
    """Poll the sink for completed utterances until recording finishes."""
    while not sink.finished:
        finished = sink.pop_finished()
        if finished:
            try:
                await transcribe_captured(session, finished, resolve_name)
            except Exception as e:
                logger.error(f"[{session.session_key}] Capture loop error: {e}")
        await asyncio.sleep(poll_interval)


async def _on_recording_finished(sink: UtteranceCaptureSink, session_key: str) -> None:
    logger.info(f"[{session_key}] Recording finished")


def start_capture(
    session: TranscriptionSession,
    voice_client: discord.VoiceClient,
    resolve_name: Callable[[Any], str],
    poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
) -> UtteranceCaptureSink:
    """Start recording ``voice_client`` into ``session``."""
    sink = UtteranceCaptureSink(silence_duration_ms=session.config.silence_duration_ms)
    voice_client.start_recording(sink, _on_recording_finished, session.session_key)

    session.voice_client = voice_client
    session.capture_sink = sink
    session.capture_resolve_name = resolve_name
    session.capture_task = asyncio.create_task(
        run_capture_loop(session, sink, resolve_name, poll_interval)
    )
    return sink


async def stop_capture(session: TranscriptionSession) -> int:
    """
    Stop recording and transcribe whatever was still being spoken.

    Returns:
        Number of fragments buffered from the final utterances
    """
    sink = session.capture_sink
    if sink is None:
        return 0

    voice_client = session.voice_client
    if voice_client is not None and getattr(voice_client, "recording", False):
        voice_client.stop_recording()
    sink.finished = True

    # the loop exits on its next poll once the sink is finished
    task = session.capture_task
    if task is not None:
        await task
    session.capture_task = None
    session.capture_sink = None

    return await transcribe_captured(session, sink.pop_all(), session.capture_resolve_name)
