"""Shared types and dataclasses for cross-module use."""

from dataclasses import dataclass, field
from enum import Enum

import numpy as np


@dataclass(frozen=True)
class AudioStream:
    """Decoded audio as per-channel float samples in [-1.0, 1.0].

    ``samples`` has shape ``(channels, frames)`` and is made read-only on
    construction so chunks rendered later always see the decoded data.
    """

    sample_rate: int
    samples: np.ndarray

    def __post_init__(self) -> None:
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.sample_rate}")
        if self.samples.ndim != 2 or self.samples.shape[0] == 0:
            raise ValueError(
                f"samples must have shape (channels, frames), got {self.samples.shape}"
            )
        self.samples.setflags(write=False)

    @property
    def channels(self) -> int:
        return int(self.samples.shape[0])

    @property
    def frame_count(self) -> int:
        return int(self.samples.shape[1])

    @property
    def duration(self) -> float:
        """Total duration in seconds."""
        return self.frame_count / self.sample_rate


@dataclass(frozen=True)
class ChunkRange:
    """A contiguous time slice of the original recording, in seconds."""

    index: int
    start: float
    end: float

    @property
    def duration(self) -> float:
        return self.end - self.start


@dataclass(frozen=True)
class EncodedChunk:
    """Container bytes for one chunk, ready for transport."""

    data: bytes
    range: ChunkRange
    mime_type: str = "audio/wav"


@dataclass(frozen=True)
class TransportPayload:
    """Text-safe representation of an encoded chunk."""

    data: str
    mime_type: str


@dataclass(frozen=True)
class OracleRequest:
    """Input for a single recognition call."""

    audio: str
    mime_type: str
    chunk_start: float = 0.0


@dataclass(frozen=True)
class TranscriptSegment:
    """A single utterance in the transcript.

    The timestamp is a display string such as ``[12:15]``. Speaker labels are
    only meaningful within the chunk that produced them.
    """

    timestamp: str
    speaker: str
    text: str


class Phase(Enum):
    """Pipeline driver state."""

    IDLE = "idle"
    DECODING = "decoding"
    CHUNKING = "chunking"
    TRANSCRIBING = "transcribing"
    MERGED = "merged"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class PipelineProgress:
    """Status event emitted by the pipeline driver."""

    phase: Phase
    percent: int
    message: str
    chunk_index: int | None = None
    total_chunks: int | None = None


@dataclass
class PipelineResult:
    """Outcome of one pipeline run.

    ``segments`` holds everything merged before the run ended, including when
    it failed part way through.
    """

    phase: Phase
    segments: list[TranscriptSegment] = field(default_factory=list)
    error: Exception | None = None
    total_chunks: int = 0
    completed_chunks: int = 0

    @property
    def ok(self) -> bool:
        return self.phase == Phase.COMPLETED and self.error is None
