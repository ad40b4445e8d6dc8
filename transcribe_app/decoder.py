"""Audio decoding from arbitrary container bytes."""

import io
import logging

import numpy as np
import soundfile

from transcribe_app._types import AudioStream
from transcribe_app.errors import CorruptAudio, UnsupportedFormat
from transcribe_app.transport import DEFAULT_MIME_TYPE

logger = logging.getLogger(__name__)

__all__ = [
    "AudioDecoder",
    "sniff_format",
    "mime_type_for",
    "SOUNDFILE_FORMATS",
    "FFMPEG_FORMATS",
]

# Families libsndfile reads natively.
SOUNDFILE_FORMATS = frozenset({"wav", "flac", "ogg", "aiff", "mp3"})
# Families that need the ffmpeg runtime through pydub.
FFMPEG_FORMATS = frozenset({"mp4", "webm", "mp3", "aac"})

_MIME_FORMATS = {
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/wave": "wav",
    "audio/vnd.wave": "wav",
    "audio/flac": "flac",
    "audio/x-flac": "flac",
    "audio/ogg": "ogg",
    "audio/opus": "ogg",
    "audio/aiff": "aiff",
    "audio/x-aiff": "aiff",
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/mp4": "mp4",
    "audio/m4a": "mp4",
    "audio/x-m4a": "mp4",
    "audio/aac": "aac",
    "audio/webm": "webm",
    "video/mp4": "mp4",
    "video/webm": "webm",
}

_FORMAT_MIME_TYPES = {
    "wav": "audio/wav",
    "flac": "audio/flac",
    "ogg": "audio/ogg",
    "aiff": "audio/aiff",
    "mp3": "audio/mpeg",
    "mp4": "audio/mp4",
    "webm": "audio/webm",
    "aac": "audio/aac",
}


def sniff_format(data: bytes, mime_type: str | None = None) -> str | None:
    """Identify the container family from magic bytes.

    Falls back to the MIME type hint when the header is not recognised.

    Args:
        data: Raw file contents
        mime_type: Optional MIME type reported by the caller

    Returns:
        Short family name (``wav``, ``mp3``, ...) or None if unknown
    """
    head = data[:16]
    if head[:4] == b"RIFF" and head[8:12] == b"WAVE":
        return "wav"
    if head[:4] == b"fLaC":
        return "flac"
    if head[:4] == b"OggS":
        return "ogg"
    if head[:4] == b"FORM" and head[8:12] in (b"AIFF", b"AIFC"):
        return "aiff"
    if head[:3] == b"ID3":
        return "mp3"
    if head[4:8] == b"ftyp":
        return "mp4"
    if head[:4] == b"\x1a\x45\xdf\xa3":
        return "webm"
    if len(head) >= 2 and head[0] == 0xFF:
        # MPEG audio frame sync vs. ADTS AAC (layer bits zero)
        if head[1] & 0xF6 == 0xF0:
            return "aac"
        if head[1] & 0xE0 == 0xE0:
            return "mp3"

    if mime_type:
        return _MIME_FORMATS.get(mime_type.split(";")[0].strip().lower())
    return None


def mime_type_for(data: bytes) -> str:
    """MIME type of the container in ``data``, defaulting to WAV."""
    return _FORMAT_MIME_TYPES.get(sniff_format(data), DEFAULT_MIME_TYPE)


class AudioDecoder:
    """Turns container bytes into an AudioStream.

    Sample rate and channel layout are kept exactly as stored. libsndfile
    (through soundfile) handles the formats it knows; everything else goes
    through pydub, which needs ffmpeg on PATH.
    """

    def decode(self, data: bytes, mime_type: str | None = None) -> AudioStream:
        """Decode an in-memory audio file.

        Args:
            data: Raw file contents
            mime_type: Optional MIME type hint

        Returns:
            Decoded AudioStream

        Raises:
            UnsupportedFormat: If the container family is not recognised
            CorruptAudio: If decoding fails or yields no audio
        """
        if not data:
            raise CorruptAudio("Audio input is empty")

        fmt = sniff_format(data, mime_type)
        if fmt is None:
            raise UnsupportedFormat(
                f"Unrecognised audio container (mime_type={mime_type or 'unknown'})"
            )

        logger.debug("Decoding %d bytes as %s", len(data), fmt)

        errors: list[Exception] = []
        stream = None
        if fmt in SOUNDFILE_FORMATS:
            try:
                stream = self._decode_soundfile(data)
            except Exception as e:
                logger.debug("soundfile could not decode %s: %s", fmt, e)
                errors.append(e)
        if stream is None and fmt in FFMPEG_FORMATS:
            try:
                stream = self._decode_pydub(data, fmt)
            except Exception as e:
                logger.debug("pydub could not decode %s: %s", fmt, e)
                errors.append(e)

        if stream is None:
            detail = "; ".join(str(e) for e in errors) or "no decoder available"
            cause = errors[-1] if errors else None
            raise CorruptAudio(f"Failed to decode {fmt} audio: {detail}") from cause

        if stream.frame_count == 0:
            raise CorruptAudio(f"Decoded {fmt} audio contains no frames")

        logger.info(
            "Decoded %s audio: %d Hz, %d channels, %.2f seconds",
            fmt,
            stream.sample_rate,
            stream.channels,
            stream.duration,
        )
        return stream

    def _decode_soundfile(self, data: bytes) -> AudioStream:
        audio_data, sample_rate = soundfile.read(
            io.BytesIO(data), dtype="float32", always_2d=True
        )
        return AudioStream(
            sample_rate=int(sample_rate),
            samples=np.ascontiguousarray(audio_data.T),
        )

    def _decode_pydub(self, data: bytes, fmt: str) -> AudioStream:
        from pydub import AudioSegment

        segment = AudioSegment.from_file(io.BytesIO(data), format=fmt)
        channels = segment.channels
        scale = float(1 << (8 * segment.sample_width - 1))
        interleaved = np.array(segment.get_array_of_samples(), dtype=np.float32) / scale
        frames = interleaved.reshape(-1, channels).T
        return AudioStream(
            sample_rate=int(segment.frame_rate),
            samples=np.ascontiguousarray(frames),
        )
