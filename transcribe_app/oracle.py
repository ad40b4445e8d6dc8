"""Recognition service interface and response handling.

An oracle receives one chunk's audio as base64 text and returns the
utterances it heard, with timestamps relative to the start of that chunk.
The pipeline shifts them onto the full recording's timeline.
"""

import json
import logging
from typing import TYPE_CHECKING, Protocol

from transcribe_app._types import OracleRequest, TranscriptSegment
from transcribe_app.errors import MalformedOracleResponse
from transcribe_app.timestamps import parse_timestamp

if TYPE_CHECKING:
    from transcribe_app.config import Config

logger = logging.getLogger(__name__)

RESPONSE_SCHEMA = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "timestamp": {"type": "STRING", "description": "Format like [01:23]"},
            "speaker": {"type": "STRING", "description": "Speaker label"},
            "text": {"type": "STRING", "description": "Verbatim content"},
        },
        "required": ["timestamp", "speaker", "text"],
    },
}

USER_PROMPT = (
    "Transcribe this recording verbatim, including speaker labels and timestamps."
)


class Oracle(Protocol):
    """A speech recognition backend called once per chunk."""

    async def transcribe(self, request: OracleRequest) -> list[TranscriptSegment]:
        """Return chunk-local segments in spoken order."""
        ...

    async def shutdown(self) -> None:
        ...


def build_instruction(
    chunk_start: float,
    language: str = "Traditional Chinese",
    unintelligible_marker: str = "[inaudible]",
) -> str:
    """System instruction sent with every chunk."""
    return (
        "You are a professional stenographer. Produce a detailed verbatim "
        f"transcript of the provided audio in {language}.\n"
        "Rules:\n"
        "1. Give every utterance a timestamp in the format [MM:SS].\n"
        "2. Identify and label speakers where possible (e.g. Speaker A, Speaker B).\n"
        f"3. Mark any word you cannot make out as {unintelligible_marker}.\n"
        "4. Output must be a strict JSON array.\n"
        f"5. This clip starts {chunk_start:g} seconds into the full recording; "
        "timestamps must be relative to the start of this clip, beginning at [00:00]."
    )


def parse_oracle_response(text: str | None) -> list[TranscriptSegment]:
    """Validate a JSON array of ``{timestamp, speaker, text}`` objects.

    An empty response means the chunk had no speech.

    Raises:
        MalformedOracleResponse: If the text is not JSON or violates the shape
    """
    if text is None or not text.strip():
        return []

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedOracleResponse(f"Response is not valid JSON: {e}") from e

    if not isinstance(data, list):
        raise MalformedOracleResponse(
            f"Expected a JSON array, got {type(data).__name__}"
        )

    segments = []
    for position, item in enumerate(data):
        if not isinstance(item, dict):
            raise MalformedOracleResponse(f"Item {position} is not an object")
        missing = [key for key in ("timestamp", "speaker", "text") if key not in item]
        if missing:
            raise MalformedOracleResponse(
                f"Item {position} is missing {', '.join(missing)}"
            )
        if not all(isinstance(item[key], str) for key in ("timestamp", "speaker", "text")):
            raise MalformedOracleResponse(f"Item {position} has non-string fields")
        # Reject unparseable timestamps here rather than during merging.
        parse_timestamp(item["timestamp"])
        segments.append(
            TranscriptSegment(
                timestamp=item["timestamp"].strip(),
                speaker=item["speaker"].strip(),
                text=item["text"].strip(),
            )
        )

    logger.debug("Parsed %d segments from oracle response", len(segments))
    return segments


def create_oracle(config: "Config") -> Oracle:
    """Build the oracle selected by ``config.oracle.backend``.

    Raises:
        ValueError: If the backend is unknown
    """
    backend = config.oracle.backend
    if backend == "gemini":
        from transcribe_app.oracle_gemini import GeminiOracle

        return GeminiOracle(
            api_key=config.gemini.api_key,
            model=config.gemini.model,
            language=config.oracle.language,
            unintelligible_marker=config.oracle.unintelligible_marker,
            temperature=config.gemini.temperature,
            timeout=config.oracle.timeout,
        )
    if backend == "deepgram":
        from transcribe_app.oracle_deepgram import DeepgramOracle

        return DeepgramOracle(
            api_key=config.deepgram.api_key,
            model=config.deepgram.model,
            smart_format=config.deepgram.smart_format,
            punctuate=config.deepgram.punctuate,
            diarize=config.deepgram.diarize,
            language=config.deepgram.language,
            timeout=config.oracle.timeout,
        )
    raise ValueError(f"Unknown oracle backend: {backend}")
