"""
Transcription Services Package.

Live transcription pipeline: capture, segmentation, recognition results
aggregation, chunking and delivery.
"""

from source.services.transcription.aggregator import UtteranceAggregator, group_fragments
from source.services.transcription.chunker import chunk_message, split_message
from source.services.transcription.errors import (
    AlreadyActiveError,
    DeliveryFailure,
    FormatError,
    LogFileError,
    NotFoundError,
    RecognitionFailure,
    TranscriptionError,
)
from source.services.transcription.models import AudioSegment, Fragment, Message, SpeakerState
from source.services.transcription.session import TranscriptionSession
from source.services.transcription.sink import TranscriptSink

__all__ = [
    "AlreadyActiveError",
    "AudioSegment",
    "DeliveryFailure",
    "FormatError",
    "Fragment",
    "LogFileError",
    "Message",
    "NotFoundError",
    "RecognitionFailure",
    "SpeakerState",
    "TranscriptSink",
    "TranscriptionError",
    "TranscriptionSession",
    "UtteranceAggregator",
    "chunk_message",
    "group_fragments",
    "split_message",
]
