# -------------------------------------------------------------- #
# Audio Segmenter
# -------------------------------------------------------------- #

import io
import sys
import wave
from array import array
from collections.abc import Iterator

from source.services.transcription.errors import FormatError
from source.services.transcription.models import AudioSegment

BYTES_PER_SAMPLE = 2  # signed 16-bit PCM


# -------------------------------------------------------------- #
# PCM Utility Functions
# -------------------------------------------------------------- #


def calculate_pcm_duration_ms(
    num_bytes: int,
    sample_rate: int = 48000,
    bits_per_sample: int = 16,
    channels: int = 2,
) -> int:
    """
    Calculate the duration in milliseconds for a given number of PCM bytes.

    Example:
        >>> calculate_pcm_duration_ms(192000)  # 1 second of Discord PCM
        1000
    """
    bytes_per_sample = bits_per_sample // 8
    bytes_per_second = sample_rate * bytes_per_sample * channels
    return int(num_bytes * 1000 / bytes_per_second)


def extract_mono(pcm: bytes, channels: int = 2, channel_index: int = 1) -> array:
    """
    Keep a single channel of interleaved 16-bit PCM.

    Args:
        pcm: Interleaved little-endian signed 16-bit samples
        channels: Number of interleaved channels
        channel_index: Which channel to keep

    Returns:
        Mono samples as an ``array('h')``

    Raises:
        FormatError: If the buffer is not a whole number of sample frames
    """
    if channels <= 0:
        raise ValueError("channels must be positive")
    if not 0 <= channel_index < channels:
        raise ValueError(f"channel_index must be in [0, {channels})")

    frame_bytes = channels * BYTES_PER_SAMPLE
    if len(pcm) % frame_bytes != 0:
        raise FormatError(
            f"PCM buffer of {len(pcm)} bytes is not a multiple of the {frame_bytes}-byte frame"
        )

    samples = array("h")
    samples.frombytes(pcm)
    if sys.byteorder == "big":
        samples.byteswap()

    if channels == 1:
        return samples
    return samples[channel_index::channels]


# -------------------------------------------------------------- #
# Segmentation
# -------------------------------------------------------------- #


def segment_audio(
    pcm: bytes,
    start_time: float,
    end_time: float,
    sample_rate: int,
    max_segment_duration_seconds: int,
    channels: int = 2,
    channel_index: int = 1,
) -> Iterator[AudioSegment]:
    """
    Slice one captured utterance into recognizer-sized mono segments.

    The buffer is validated eagerly, so a malformed utterance raises here rather
    than on first iteration. Segments are produced lazily, in time order, each
    holding at most ``max_segment_duration_seconds * sample_rate`` samples.
    Segment end times are capped at ``end_time`` so the last segment ends exactly
    when the utterance did. An empty buffer yields nothing.

    Args:
        pcm: Raw interleaved 16-bit PCM for one utterance
        start_time: Utterance start (ms since epoch)
        end_time: Utterance end (ms since epoch)
        sample_rate: Samples per second per channel
        max_segment_duration_seconds: Longest audio the recognizer accepts
        channels: Interleaved channels in ``pcm``
        channel_index: Channel kept when down-mixing to mono

    Raises:
        FormatError: If ``pcm`` is not a whole number of sample frames
        ValueError: If the timing or rate arguments are inconsistent
    """
    if sample_rate <= 0 or max_segment_duration_seconds <= 0:
        raise ValueError("sample_rate and max_segment_duration_seconds must be positive")
    if end_time < start_time:
        raise ValueError(f"Utterance end time {end_time} precedes start time {start_time}")

    mono = extract_mono(pcm, channels=channels, channel_index=channel_index)
    return _iter_segments(mono, start_time, end_time, sample_rate, max_segment_duration_seconds)


def _iter_segments(
    mono: array,
    start_time: float,
    end_time: float,
    sample_rate: int,
    max_segment_duration_seconds: int,
) -> Iterator[AudioSegment]:
    max_samples = max_segment_duration_seconds * sample_rate
    max_duration_ms = max_segment_duration_seconds * 1000

    for offset in range(0, len(mono), max_samples):
        segment_start = start_time + (offset / sample_rate) * 1000
        segment_end = min(segment_start + max_duration_ms, end_time)

        # wall-clock bounds shorter than the audio itself; keep end >= start
        segment_start = min(segment_start, segment_end)

        audio = mono[offset : offset + max_samples]
        if sys.byteorder == "big":
            audio.byteswap()

        yield AudioSegment(
            audio=audio.tobytes(),
            start_time=segment_start,
            end_time=segment_end,
            sample_rate=sample_rate,
        )


def pcm_to_wav(segment: AudioSegment) -> bytes:
    """Wrap a mono segment as an in-memory WAV file for upload."""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav_file:
        wav_file.setnchannels(1)
        wav_file.setsampwidth(BYTES_PER_SAMPLE)
        wav_file.setframerate(segment.sample_rate)
        wav_file.writeframes(segment.audio)
    return buffer.getvalue()
