from dataclasses import dataclass, field
from enum import Enum

# -------------------------------------------------------------- #
# Transcription Data Model
# -------------------------------------------------------------- #


class SpeakerState(Enum):
    """Buffering state of one speaker within a session."""

    IDLE = "idle"
    BUFFERING = "buffering"


@dataclass(frozen=True)
class AudioSegment:
    """
    A contiguous slice of mono 16-bit PCM sized for one recognition call.

    Timestamps are absolute, in milliseconds since the epoch.
    """

    audio: bytes
    start_time: float
    end_time: float
    sample_rate: int

    @property
    def num_samples(self) -> int:
        return len(self.audio) // 2

    @property
    def duration_ms(self) -> float:
        return self.end_time - self.start_time


@dataclass(frozen=True)
class Fragment:
    """Recognized text for one audio segment of one speaker."""

    speaker_id: str
    speaker_name: str
    text: str
    start_time: float
    end_time: float

    def __post_init__(self):
        if self.end_time < self.start_time:
            raise ValueError(
                f"Fragment end time {self.end_time} precedes start time {self.start_time}"
            )

    @property
    def is_empty(self) -> bool:
        return not self.text or not self.text.strip()


@dataclass
class Message:
    """A run of fragments from one speaker, delivered as one logical turn."""

    speaker_id: str
    display_name: str
    fragments: list[Fragment] = field(default_factory=list)

    @property
    def start_time(self) -> float:
        return self.fragments[0].start_time

    @property
    def end_time(self) -> float:
        return max(fragment.end_time for fragment in self.fragments)

    @property
    def last_start_time(self) -> float:
        return self.fragments[-1].start_time

    @property
    def text(self) -> str:
        return " ".join(normalize_text(fragment.text) for fragment in self.fragments)

    def render(self) -> str:
        return f"{self.display_name}: {self.text}"


def normalize_text(text: str) -> str:
    """Collapse every whitespace run (newlines included) into one space.

    Word splitting never sees empty tokens and a chunk always fits on one log line.
    """
    return " ".join(text.split())
