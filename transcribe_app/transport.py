"""Text-safe transfer encoding for encoded chunks."""

import base64
import binascii
import logging
import mimetypes
from pathlib import Path

from transcribe_app._types import EncodedChunk, TransportPayload
from transcribe_app.errors import TransportFailure

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "audio/wav"


def to_transport(chunk: EncodedChunk) -> TransportPayload:
    """Base64-encode a chunk's bytes and pair them with its MIME type.

    Raises:
        TransportFailure: If the chunk carries no data or cannot be encoded
    """
    if not chunk.data:
        raise TransportFailure(f"Chunk {chunk.range.index} has no data to send")
    try:
        text = base64.b64encode(chunk.data).decode("ascii")
    except (TypeError, ValueError) as e:
        raise TransportFailure(f"Failed to encode chunk {chunk.range.index}: {e}") from e
    logger.debug(
        "Chunk %d encoded for transport: %d bytes -> %d chars (%s)",
        chunk.range.index,
        len(chunk.data),
        len(text),
        chunk.mime_type,
    )
    return TransportPayload(data=text, mime_type=chunk.mime_type or DEFAULT_MIME_TYPE)


def from_transport(payload: TransportPayload) -> bytes:
    """Recover raw bytes from a payload, for services that take binary bodies.

    Raises:
        TransportFailure: If the payload is not valid base64
    """
    try:
        return base64.b64decode(payload.data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise TransportFailure(f"Invalid base64 audio payload: {e}") from e


def guess_mime_type(path: str | Path) -> str:
    """MIME type for an audio file name, defaulting to WAV."""
    mime_type, _ = mimetypes.guess_type(str(path))
    if mime_type and (mime_type.startswith("audio/") or mime_type.startswith("video/")):
        return mime_type
    return DEFAULT_MIME_TYPE
