"""Chunk planning for long recordings."""

import logging
import math

from transcribe_app._types import ChunkRange
from transcribe_app.errors import InvalidConfiguration

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHUNK_SECONDS = 600.0


def validate_max_chunk_seconds(max_chunk_seconds: float) -> None:
    """Reject chunk durations that cannot produce a plan.

    Raises:
        InvalidConfiguration: If the value is not a positive finite number
    """
    if (
        isinstance(max_chunk_seconds, bool)
        or not isinstance(max_chunk_seconds, (int, float))
        or not math.isfinite(max_chunk_seconds)
        or max_chunk_seconds <= 0
    ):
        raise InvalidConfiguration(
            f"max_chunk_seconds must be a positive number, got {max_chunk_seconds!r}"
        )


def plan(total_seconds: float, max_chunk_seconds: float = DEFAULT_MAX_CHUNK_SECONDS) -> list[ChunkRange]:
    """Split a recording into contiguous ranges of at most ``max_chunk_seconds``.

    Every range has length ``max_chunk_seconds`` except possibly the last,
    which covers whatever remains. A recording no longer than one chunk
    yields a single range spanning all of it.

    Args:
        total_seconds: Duration of the recording
        max_chunk_seconds: Upper bound on each range's length

    Returns:
        Ranges ordered by index, covering ``[0, total_seconds]`` exactly

    Raises:
        InvalidConfiguration: If either duration is not positive
    """
    validate_max_chunk_seconds(max_chunk_seconds)
    if not math.isfinite(total_seconds) or total_seconds <= 0:
        raise InvalidConfiguration(
            f"total duration must be positive, got {total_seconds!r}"
        )

    if total_seconds <= max_chunk_seconds:
        return [ChunkRange(index=0, start=0.0, end=float(total_seconds))]

    count = math.ceil(total_seconds / max_chunk_seconds)
    # Float division can land one chunk either side of the exact count.
    while count * max_chunk_seconds < total_seconds:
        count += 1
    while count > 1 and (count - 1) * max_chunk_seconds >= total_seconds:
        count -= 1

    ranges = [
        ChunkRange(
            index=i,
            start=float(i * max_chunk_seconds),
            end=float(min((i + 1) * max_chunk_seconds, total_seconds)),
        )
        for i in range(count)
    ]
    logger.debug(
        "Planned %d chunks for %.2f seconds (max %.2f s each)",
        count,
        total_seconds,
        max_chunk_seconds,
    )
    return ranges
