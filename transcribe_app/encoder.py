"""Rendering chunk ranges into 16-bit PCM WAV containers."""

import io
import logging
import math
import wave

import numpy as np

from transcribe_app._types import AudioStream, ChunkRange, EncodedChunk
from transcribe_app.errors import InvalidConfiguration

logger = logging.getLogger(__name__)

WAV_MIME_TYPE = "audio/wav"
WAV_HEADER_SIZE = 44
SAMPLE_WIDTH = 2


def float_to_pcm16(samples: np.ndarray) -> np.ndarray:
    """Convert float samples to int16 without wraparound.

    Values are clamped to [-1.0, 1.0]; negatives scale by 32768 and
    non-negatives by 32767, then truncate toward zero. NaN becomes silence.
    """
    clipped = np.clip(np.nan_to_num(samples, nan=0.0), -1.0, 1.0)
    scaled = np.where(clipped < 0, clipped * 32768.0, clipped * 32767.0)
    return scaled.astype(np.int16)


def seconds_to_frame(seconds: float, sample_rate: int) -> int:
    """Nearest frame index for a time offset."""
    return int(round(seconds * sample_rate))


def frame_span(stream: AudioStream, chunk_range: ChunkRange) -> tuple[int, int]:
    """Frame indices ``[start, end)`` a range covers, clamped to the stream.

    A range shorter than half a frame maps to an empty span.
    """
    start = min(seconds_to_frame(chunk_range.start, stream.sample_rate), stream.frame_count)
    end = min(seconds_to_frame(chunk_range.end, stream.sample_rate), stream.frame_count)
    return start, max(start, end)


class WavEncoder:
    """Renders slices of an AudioStream as standalone WAV files.

    Optional per-chunk normalization (downmix to mono, resampling) happens
    here so the decoded stream itself is never altered.
    """

    def __init__(
        self,
        target_sample_rate: int | None = None,
        mono: bool = False,
    ):
        """Initialize encoder.

        Args:
            target_sample_rate: Resample each chunk to this rate (None keeps source rate)
            mono: Average all channels into one
        """
        if target_sample_rate is not None and target_sample_rate <= 0:
            raise InvalidConfiguration(
                f"target_sample_rate must be positive, got {target_sample_rate}"
            )
        self.target_sample_rate = target_sample_rate
        self.mono = mono

    def render(self, stream: AudioStream, chunk_range: ChunkRange) -> EncodedChunk:
        """Encode the samples in ``[chunk_range.start, chunk_range.end)``.

        Args:
            stream: Decoded source audio
            chunk_range: Time range to extract

        Returns:
            EncodedChunk holding a complete WAV file
        """
        start, end = frame_span(stream, chunk_range)
        frames = stream.samples[:, start:end]
        sample_rate = stream.sample_rate

        if self.mono and frames.shape[0] > 1:
            frames = frames.mean(axis=0, keepdims=True)

        if self.target_sample_rate and self.target_sample_rate != sample_rate:
            frames = self._resample(frames, sample_rate, self.target_sample_rate)
            sample_rate = self.target_sample_rate

        data = encode_wav(frames, sample_rate)
        logger.debug(
            "Rendered chunk %d: frames %d-%d, %d bytes",
            chunk_range.index,
            start,
            end,
            len(data),
        )
        return EncodedChunk(data=data, range=chunk_range, mime_type=WAV_MIME_TYPE)

    @staticmethod
    def _resample(frames: np.ndarray, source_rate: int, target_rate: int) -> np.ndarray:
        from scipy.signal import resample_poly

        if frames.shape[1] == 0:
            return frames
        divisor = math.gcd(source_rate, target_rate)
        logger.debug("Resampling chunk from %d Hz to %d Hz", source_rate, target_rate)
        return resample_poly(
            frames,
            target_rate // divisor,
            source_rate // divisor,
            axis=1,
        )


def encode_wav(frames: np.ndarray, sample_rate: int) -> bytes:
    """Serialize ``(channels, frames)`` float samples as a PCM WAV file.

    The result has the canonical 44-byte RIFF header followed by
    interleaved little-endian int16 frames.
    """
    channels = frames.shape[0]
    pcm = float_to_pcm16(frames)
    interleaved = np.ascontiguousarray(pcm.T)

    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav_file:
        wav_file.setnchannels(channels)
        wav_file.setsampwidth(SAMPLE_WIDTH)
        wav_file.setframerate(sample_rate)
        wav_file.setnframes(interleaved.shape[0])
        wav_file.writeframes(interleaved.tobytes())
    return buffer.getvalue()
