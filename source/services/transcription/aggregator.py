from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Awaitable, Callable, Iterable
from contextlib import suppress
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from source.services.manager import BaseAsyncLoggingService

from source.services.transcription.models import Fragment, Message, SpeakerState

logger = logging.getLogger(__name__)

# -------------------------------------------------------------- #
# Grouping
# -------------------------------------------------------------- #


def group_fragments(
    fragments: Iterable[Fragment],
    silence_threshold_ms: float,
    display_name: Callable[[str], str] | None = None,
) -> list[Message]:
    """
    Group fragments into chronologically ordered messages.

    Fragments are sorted by start time (stable, so ties keep arrival order).
    Each speaker has at most one open message: a fragment joins it when it
    starts no more than ``silence_threshold_ms`` after that speaker's previous
    fragment, otherwise it opens a new one. Other speakers talking in between
    do not split a message. Messages come out ordered by their first fragment.

    Args:
        fragments: Fragments in arrival order
        silence_threshold_ms: Largest start-to-start gap within one message
        display_name: Maps a raw speaker name to the label shown in the message

    Returns:
        Messages in delivery order
    """
    resolve = display_name or (lambda name: name)
    ordered = sorted(
        (fragment for fragment in fragments if not fragment.is_empty),
        key=lambda fragment: fragment.start_time,
    )

    messages: list[Message] = []
    open_messages: dict[str, Message] = {}

    for fragment in ordered:
        current = open_messages.get(fragment.speaker_id)
        if (
            current is not None
            and fragment.start_time - current.last_start_time <= silence_threshold_ms
        ):
            current.fragments.append(fragment)
            continue

        message = Message(
            speaker_id=fragment.speaker_id,
            display_name=resolve(fragment.speaker_name),
            fragments=[fragment],
        )
        open_messages[fragment.speaker_id] = message
        messages.append(message)

    return messages


# -------------------------------------------------------------- #
# Utterance Aggregator
# -------------------------------------------------------------- #


class UtteranceAggregator:
    """
    Per-session buffer of recognized fragments with a debounced flush.

    Timer policy: the first fragment buffered while no flush is scheduled arms
    a single timer for ``buffer_window_ms``. Later fragments do not re-arm it,
    so no fragment waits longer than one window plus one flush.

    Flushes are serialized by a lock. The scheduled-timer marker is cleared at
    the start of the active flush, which is what keeps a session to one
    outstanding timer and one running flush.
    """

    def __init__(
        self,
        session_key: str,
        on_message: Callable[[Message], Awaitable[None]],
        logging_service: BaseAsyncLoggingService,
        buffer_window_ms: float,
        silence_threshold_ms: float,
        display_name: Callable[[str], str] | None = None,
    ):
        self.session_key = session_key
        self.on_message = on_message
        self.logging_service = logging_service
        self.buffer_window_ms = buffer_window_ms
        self.silence_threshold_ms = silence_threshold_ms
        self.display_name = display_name

        # Per-speaker pending fragments: {speaker_id: [(arrival_index, fragment)]}
        self._buffers: dict[str, list[tuple[int, Fragment]]] = {}
        self._arrivals = itertools.count()

        self._flush_task: asyncio.Task | None = None
        self._flush_lock = asyncio.Lock()
        self._closed = False

        self.flush_count = 0

    # -------------------------------------------------------------- #
    # State
    # -------------------------------------------------------------- #

    @property
    def pending_count(self) -> int:
        return sum(len(pending) for pending in self._buffers.values())

    @property
    def is_flush_scheduled(self) -> bool:
        return self._flush_task is not None and not self._flush_task.done()

    @property
    def is_closed(self) -> bool:
        return self._closed

    def speaker_state(self, speaker_id: str) -> SpeakerState:
        if self._buffers.get(speaker_id):
            return SpeakerState.BUFFERING
        return SpeakerState.IDLE

    # -------------------------------------------------------------- #
    # Buffering
    # -------------------------------------------------------------- #

    def buffer(self, fragment: Fragment) -> bool:
        """
        Queue a fragment for the next flush.

        Returns:
            False if the aggregator is closed and the fragment was rejected
        """
        if self._closed:
            return False

        self._buffers.setdefault(fragment.speaker_id, []).append((next(self._arrivals), fragment))

        if self._flush_task is None:
            self._schedule_flush()
        return True

    def _schedule_flush(self) -> None:
        self._flush_task = asyncio.create_task(self._flush_after_window())

    async def _flush_after_window(self) -> None:
        await asyncio.sleep(self.buffer_window_ms / 1000)
        try:
            await self.flush()
        except Exception as e:
            # the timer task is never awaited
            logger.error(f"[{self.session_key}] Scheduled flush failed: {e}")

    def _drain(self) -> list[Fragment]:
        """Take every pending fragment, in arrival order."""
        pending = [entry for entries in self._buffers.values() for entry in entries]
        self._buffers.clear()
        pending.sort(key=lambda entry: entry[0])
        return [fragment for _, fragment in pending]

    # -------------------------------------------------------------- #
    # Flushing
    # -------------------------------------------------------------- #

    async def flush(self) -> list[Message]:
        """
        Drain the buffers into ordered messages and hand each to ``on_message``.

        A failing delivery is logged and does not stop the remaining messages.

        Returns:
            The messages formed by this flush, in delivery order
        """
        async with self._flush_lock:
            timer = self._flush_task
            self._flush_task = None
            if timer is not None and timer is not asyncio.current_task() and not timer.done():
                # forced flush supersedes the pending timer
                timer.cancel()

            self.flush_count += 1
            messages = group_fragments(self._drain(), self.silence_threshold_ms, self.display_name)

            for message in messages:
                try:
                    await self.on_message(message)
                except Exception as e:
                    await self.logging_service.error(
                        f"[{self.session_key}] Failed to deliver message from "
                        f"{message.display_name}: {e}"
                    )

            # fragments buffered while delivering get their own flush
            if self._buffers and self._flush_task is None and not self._closed:
                self._schedule_flush()

        if messages:
            await self.logging_service.debug(
                f"[{self.session_key}] Flushed {len(messages)} message(s)"
            )
        return messages

    async def close(self) -> list[Message]:
        """
        Cancel the pending timer and drain everything in one forced flush.

        Fragments buffered after this point are rejected. A flush that is
        already running finishes first.

        Returns:
            The messages formed by the forced flush
        """
        if self._closed:
            return []
        self._closed = True

        timer = self._flush_task
        if timer is not None and not timer.done():
            timer.cancel()
            with suppress(asyncio.CancelledError):
                await timer

        return await self.flush()
