"""Append-only transcript accumulation."""

import json
import logging
from collections.abc import Iterable

from transcribe_app._types import TranscriptSegment

logger = logging.getLogger(__name__)


class TranscriptAggregator:
    """Collects corrected segments in chunk order.

    Chunks must be appended in increasing index order; that alone keeps the
    transcript chronological, so nothing is sorted or deduplicated.
    """

    def __init__(self):
        self._segments: list[TranscriptSegment] = []
        self._last_chunk: int | None = None

    def __len__(self) -> int:
        return len(self._segments)

    @property
    def last_chunk(self) -> int | None:
        """Index of the most recently appended chunk."""
        return self._last_chunk

    def append(self, chunk_index: int, segments: Iterable[TranscriptSegment]) -> None:
        """Append one chunk's segments.

        Raises:
            ValueError: If chunks arrive out of order
        """
        if self._last_chunk is not None and chunk_index <= self._last_chunk:
            raise ValueError(
                f"Chunk {chunk_index} appended after chunk {self._last_chunk}"
            )
        batch = list(segments)
        self._segments.extend(batch)
        self._last_chunk = chunk_index
        logger.debug(
            "Merged %d segments from chunk %d (total %d)",
            len(batch),
            chunk_index,
            len(self._segments),
        )

    def snapshot(self) -> list[TranscriptSegment]:
        """Copy of the transcript so far."""
        return list(self._segments)

    def clear(self) -> None:
        self._segments.clear()
        self._last_chunk = None

    def to_text(self) -> str:
        return format_text(self._segments)

    def to_json(self, indent: int | None = 2) -> str:
        return format_json(self._segments, indent=indent)


def format_text(segments: Iterable[TranscriptSegment]) -> str:
    """Render one ``[MM:SS] Speaker: text`` line per segment."""
    return "\n".join(f"{seg.timestamp} {seg.speaker}: {seg.text}" for seg in segments)


def format_json(segments: Iterable[TranscriptSegment], indent: int | None = 2) -> str:
    return json.dumps(
        [
            {"timestamp": seg.timestamp, "speaker": seg.speaker, "text": seg.text}
            for seg in segments
        ],
        ensure_ascii=False,
        indent=indent,
    )
