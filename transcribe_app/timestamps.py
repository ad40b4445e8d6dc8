"""Display timestamp parsing and formatting."""

import math
import re

from transcribe_app.errors import MalformedOracleResponse

_TIMESTAMP_RE = re.compile(
    r"^(?:(?P<hours>\d+):)?(?P<minutes>\d+):(?P<seconds>\d+(?:\.\d+)?)$"
)


def parse_timestamp(value: str) -> float:
    """Parse ``[MM:SS]``, ``MM:SS`` or ``HH:MM:SS`` into seconds.

    Raises:
        MalformedOracleResponse: If the string is not a recognised timestamp
    """
    if not isinstance(value, str):
        raise MalformedOracleResponse(f"Timestamp must be a string, got {value!r}")
    text = value.strip()
    if text.startswith("[") != text.endswith("]"):
        raise MalformedOracleResponse(f"Unbalanced brackets in timestamp: {value!r}")
    if text.startswith("["):
        text = text[1:-1].strip()
    match = _TIMESTAMP_RE.match(text)
    if not match:
        raise MalformedOracleResponse(f"Unrecognised timestamp: {value!r}")

    hours = int(match.group("hours") or 0)
    minutes = int(match.group("minutes"))
    seconds = float(match.group("seconds"))
    if seconds >= 60 or (match.group("hours") is not None and minutes >= 60):
        raise MalformedOracleResponse(f"Timestamp field out of range: {value!r}")
    return hours * 3600 + minutes * 60 + seconds


def format_timestamp(seconds: float) -> str:
    """Format seconds as ``[MM:SS]``; minutes keep counting past 59."""
    total = max(0, int(math.floor(seconds + 1e-9)))
    minutes, secs = divmod(total, 60)
    return f"[{minutes:02d}:{secs:02d}]"


def shift_timestamp(value: str, offset_seconds: float) -> str:
    """Move a chunk-local timestamp onto the recording's timeline."""
    return format_timestamp(parse_timestamp(value) + offset_seconds)
