"""
Unit tests for the utterance aggregator.

Tests the following:
1. Grouping of one speaker's fragments within the silence threshold
2. Chronological ordering of messages across speakers
3. Debounced flush timer (armed once per window)
4. Forced flush and close semantics
5. Delivery failures do not abort a flush
"""

import asyncio

import pytest

from source.services.transcription.aggregator import UtteranceAggregator, group_fragments
from source.services.transcription.models import Fragment, SpeakerState


def frag(speaker: str, text: str, start: float, end: float | None = None) -> Fragment:
    return Fragment(
        speaker_id=speaker,
        speaker_name=speaker,
        text=text,
        start_time=start,
        end_time=start + 200 if end is None else end,
    )


@pytest.fixture
def delivered():
    return []


@pytest.fixture
def make_aggregator(logging_service, delivered):
    def _make(
        buffer_window_ms=10_000,
        silence_threshold_ms=1000,
        on_message=None,
        log_service=None,
        **kwargs,
    ):
        async def collect(message):
            delivered.append(message.render())

        return UtteranceAggregator(
            session_key="guild-1",
            on_message=on_message or collect,
            logging_service=log_service or logging_service,
            buffer_window_ms=buffer_window_ms,
            silence_threshold_ms=silence_threshold_ms,
            **kwargs,
        )

    return _make


# -------------------------------------------------------------- #
# Grouping
# -------------------------------------------------------------- #


def test_group_joins_fragments_within_threshold():
    messages = group_fragments([frag("A", "hello", 0), frag("A", "world", 300)], 1000)

    assert [m.render() for m in messages] == ["A: hello world"]


def test_group_gap_equal_to_threshold_still_joins():
    messages = group_fragments([frag("A", "one", 0), frag("A", "two", 1000)], 1000)
    assert [m.render() for m in messages] == ["A: one two"]


def test_group_gap_beyond_threshold_splits():
    messages = group_fragments([frag("A", "one", 0), frag("A", "two", 1001)], 1000)
    assert [m.render() for m in messages] == ["A: one", "A: two"]


def test_group_interleaved_speakers_do_not_split_a_message():
    messages = group_fragments(
        [frag("A", "hello", 0), frag("B", "hi", 100), frag("A", "world", 300)], 1000
    )
    assert [m.render() for m in messages] == ["A: hello world", "B: hi"]


def test_group_orders_by_first_fragment_start():
    messages = group_fragments([frag("B", "second", 500), frag("A", "first", 0)], 1000)
    assert [m.render() for m in messages] == ["A: first", "B: second"]


def test_group_ties_keep_arrival_order():
    messages = group_fragments([frag("B", "b", 0), frag("A", "a", 0)], 1000)
    assert [m.render() for m in messages] == ["B: b", "A: a"]


def test_group_drops_empty_fragments():
    messages = group_fragments([frag("A", "   ", 0), frag("B", "", 10)], 1000)
    assert messages == []


def test_group_resolves_display_names():
    messages = group_fragments([frag("alice_99", "hey", 0)], 1000, display_name=str.upper)
    assert [m.render() for m in messages] == ["ALICE_99: hey"]


def test_group_normalizes_whitespace():
    messages = group_fragments([frag("A", "  hello   there ", 0), frag("A", "you", 10)], 1000)
    assert messages[0].text == "hello there you"


# -------------------------------------------------------------- #
# Flush
# -------------------------------------------------------------- #


async def test_end_to_end_two_speakers(make_aggregator, delivered):
    aggregator = make_aggregator()
    aggregator.buffer(frag("A", "hello", 0))
    aggregator.buffer(frag("B", "hi", 100))
    aggregator.buffer(frag("A", "world", 300))

    messages = await aggregator.flush()

    assert delivered == ["A: hello world", "B: hi"]
    assert [m.speaker_id for m in messages] == ["A", "B"]
    assert aggregator.pending_count == 0


async def test_flush_on_empty_buffers_is_a_noop(make_aggregator, delivered):
    aggregator = make_aggregator()

    assert await aggregator.flush() == []
    assert await aggregator.flush() == []
    assert delivered == []
    assert not aggregator.is_flush_scheduled


async def test_speaker_state_transitions(make_aggregator):
    aggregator = make_aggregator()
    assert aggregator.speaker_state("A") is SpeakerState.IDLE

    aggregator.buffer(frag("A", "hello", 0))
    assert aggregator.speaker_state("A") is SpeakerState.BUFFERING
    assert aggregator.speaker_state("B") is SpeakerState.IDLE

    await aggregator.flush()
    assert aggregator.speaker_state("A") is SpeakerState.IDLE


async def test_timer_is_armed_once_per_window(make_aggregator, delivered):
    aggregator = make_aggregator(buffer_window_ms=50)

    aggregator.buffer(frag("A", "hello", 0))
    first_timer = aggregator._flush_task
    aggregator.buffer(frag("A", "world", 300))

    assert aggregator.is_flush_scheduled
    assert aggregator._flush_task is first_timer

    await asyncio.sleep(0.2)

    assert delivered == ["A: hello world"]
    assert not aggregator.is_flush_scheduled
    assert aggregator.flush_count == 1


async def test_new_fragment_after_timer_flush_arms_new_timer(make_aggregator, delivered):
    aggregator = make_aggregator(buffer_window_ms=30)

    aggregator.buffer(frag("A", "first", 0))
    await asyncio.sleep(0.1)
    aggregator.buffer(frag("A", "second", 5000))
    assert aggregator.is_flush_scheduled
    await asyncio.sleep(0.1)

    assert delivered == ["A: first", "A: second"]


async def test_forced_flush_cancels_pending_timer(make_aggregator, delivered):
    aggregator = make_aggregator(buffer_window_ms=10_000)
    aggregator.buffer(frag("A", "hello", 0))
    timer = aggregator._flush_task

    await aggregator.flush()
    await asyncio.sleep(0)

    assert delivered == ["A: hello"]
    assert timer.cancelled()
    assert not aggregator.is_flush_scheduled


async def test_concurrent_flushes_do_not_interleave(make_aggregator, delivered):
    async def slow_collect(message):
        delivered.append(("start", message.render()))
        await asyncio.sleep(0.01)
        delivered.append(("end", message.render()))

    aggregator = make_aggregator(on_message=slow_collect)
    aggregator.buffer(frag("A", "one", 0))
    aggregator.buffer(frag("B", "two", 5000))

    await asyncio.gather(aggregator.flush(), aggregator.flush())

    assert delivered == [
        ("start", "A: one"),
        ("end", "A: one"),
        ("start", "B: two"),
        ("end", "B: two"),
    ]


async def test_fragments_buffered_during_delivery_get_a_new_timer(make_aggregator, delivered):
    aggregator = None

    async def collect_and_buffer(message):
        delivered.append(message.render())
        if len(delivered) == 1:
            aggregator.buffer(frag("B", "late", 9000))

    aggregator = make_aggregator(buffer_window_ms=30, on_message=collect_and_buffer)
    aggregator.buffer(frag("A", "early", 0))

    await aggregator.flush()
    assert aggregator.is_flush_scheduled

    await asyncio.sleep(0.1)
    assert delivered == ["A: early", "B: late"]


async def test_delivery_failure_does_not_stop_flush(make_aggregator, delivered):
    async def flaky(message):
        if message.speaker_id == "A":
            raise RuntimeError("send failed")
        delivered.append(message.render())

    aggregator = make_aggregator(on_message=flaky)
    aggregator.buffer(frag("A", "lost", 0))
    aggregator.buffer(frag("B", "kept", 100))

    messages = await aggregator.flush()

    assert len(messages) == 2
    assert delivered == ["B: kept"]


async def test_scheduled_flush_failure_is_logged_not_leaked(make_aggregator, delivered, caplog):
    class FailingDebugLogger:
        async def debug(self, message):
            raise OSError("log disk full")

        async def error(self, message):
            pass

    aggregator = make_aggregator(buffer_window_ms=10, log_service=FailingDebugLogger())
    aggregator.buffer(frag("A", "hello", 0))
    timer = aggregator._flush_task

    await asyncio.sleep(0.1)

    assert delivered == ["A: hello"]
    assert timer.done()
    assert timer.exception() is None
    assert "Scheduled flush failed: log disk full" in caplog.text


# -------------------------------------------------------------- #
# Close
# -------------------------------------------------------------- #


async def test_close_forces_exactly_one_flush(make_aggregator, delivered):
    aggregator = make_aggregator(buffer_window_ms=10_000)
    aggregator.buffer(frag("A", "one", 0))
    aggregator.buffer(frag("A", "two", 100))
    aggregator.buffer(frag("B", "three", 200))

    await aggregator.close()

    assert aggregator.flush_count == 1
    assert delivered == ["A: one two", "B: three"]
    assert not aggregator.is_flush_scheduled
    assert aggregator.is_closed


async def test_close_rejects_new_fragments(make_aggregator, delivered):
    aggregator = make_aggregator()
    await aggregator.close()

    assert aggregator.buffer(frag("A", "too late", 0)) is False
    assert aggregator.pending_count == 0
    assert not aggregator.is_flush_scheduled


async def test_close_twice_is_harmless(make_aggregator):
    aggregator = make_aggregator()
    aggregator.buffer(frag("A", "hello", 0))

    assert len(await aggregator.close()) == 1
    assert await aggregator.close() == []
    assert aggregator.flush_count == 1
