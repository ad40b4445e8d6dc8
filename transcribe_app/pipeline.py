"""Sequential chunked transcription driver."""

import asyncio
import logging
import math
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING

from transcribe_app import chunker
from transcribe_app._types import (
    AudioStream,
    ChunkRange,
    EncodedChunk,
    OracleRequest,
    Phase,
    PipelineProgress,
    PipelineResult,
    TranscriptSegment,
)
from transcribe_app.aggregator import TranscriptAggregator
from transcribe_app.decoder import AudioDecoder, mime_type_for
from transcribe_app.encoder import WavEncoder, frame_span
from transcribe_app.errors import PipelineCancelled, PipelineError, TransportFailure
from transcribe_app.oracle import Oracle
from transcribe_app.timestamps import shift_timestamp
from transcribe_app.transport import to_transport

if TYPE_CHECKING:
    from transcribe_app.config import Config

logger = logging.getLogger(__name__)

PROGRESS_DECODING = 10
PROGRESS_CHUNKING = 15
PROGRESS_TRANSCRIBE_BASELINE = 20
PROGRESS_TRANSCRIBE_SPAN = 60
PROGRESS_MERGED = 80
PROGRESS_COMPLETED = 100
PROGRESS_FAILED = 0

ProgressListener = Callable[[PipelineProgress], None]


class CancellationToken:
    """Token for stopping a run between chunks.

    The chunk whose oracle call is already in flight is allowed to finish;
    the driver checks the token before starting each chunk.
    """

    def __init__(self):
        """Initialize cancellation token in non-cancelled state."""
        self._cancelled = False

    def cancel(self) -> None:
        """Mark token as cancelled."""
        self._cancelled = True

    def is_cancelled(self) -> bool:
        """Check if token is cancelled.

        Returns:
            True if cancelled, False otherwise
        """
        return self._cancelled

    def reset(self) -> None:
        """Reset token to non-cancelled state."""
        self._cancelled = False


def transcribe_progress(completed: int, total: int) -> int:
    """Progress percentage once ``completed`` of ``total`` chunks are done."""
    return PROGRESS_TRANSCRIBE_BASELINE + math.floor(
        (completed / total) * PROGRESS_TRANSCRIBE_SPAN
    )


class TranscriptionPipeline:
    """Drives decode, chunk planning and one oracle call per chunk.

    Chunks are processed strictly one after another. Each chunk's segments are
    shifted onto the recording's timeline and appended to the aggregator, so a
    failure part way through still leaves every earlier chunk in the result.
    """

    def __init__(
        self,
        oracle: Oracle,
        decoder: AudioDecoder | None = None,
        encoder: WavEncoder | None = None,
        max_chunk_seconds: float = chunker.DEFAULT_MAX_CHUNK_SECONDS,
        passthrough_single_chunk: bool = False,
        executor: ThreadPoolExecutor | None = None,
    ):
        """Initialize pipeline with components.

        Args:
            oracle: Recognition backend called once per chunk
            decoder: AudioDecoder instance
            encoder: WavEncoder instance
            max_chunk_seconds: Upper bound on each chunk's duration
            passthrough_single_chunk: Send the original bytes when one chunk covers
                the whole recording instead of re-encoding it
            executor: Optional ThreadPoolExecutor for decode/render work
        """
        self.oracle = oracle
        self.decoder = decoder or AudioDecoder()
        self.encoder = encoder or WavEncoder()
        self.max_chunk_seconds = max_chunk_seconds
        self.passthrough_single_chunk = passthrough_single_chunk
        self.executor = executor or ThreadPoolExecutor(max_workers=1)
        self._executor_owned = executor is None

        self.phase = Phase.IDLE
        self.aggregator = TranscriptAggregator()
        self.cancel_token = CancellationToken()
        self.last_error: Exception | None = None
        self._listeners: list[ProgressListener] = []

        logger.info(
            "TranscriptionPipeline initialized: max_chunk_seconds=%s, passthrough=%s",
            max_chunk_seconds,
            passthrough_single_chunk,
        )

    @classmethod
    def from_config(cls, config: "Config", oracle: Oracle | None = None) -> "TranscriptionPipeline":
        """Build a pipeline and its oracle from configuration."""
        if oracle is None:
            from transcribe_app.oracle import create_oracle

            oracle = create_oracle(config)
        encoder = WavEncoder(
            target_sample_rate=config.encoder.sample_rate,
            mono=config.encoder.channels == 1,
        )
        return cls(
            oracle=oracle,
            encoder=encoder,
            max_chunk_seconds=config.chunking.max_chunk_seconds,
            passthrough_single_chunk=config.chunking.passthrough_single_chunk,
        )

    def add_listener(self, listener: ProgressListener) -> None:
        """Register a callback for progress events."""
        self._listeners.append(listener)

    def remove_listener(self, listener: ProgressListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def cancel(self) -> None:
        """Stop the run before its next chunk."""
        logger.info("Cancellation requested")
        self.cancel_token.cancel()

    async def run(self, data: bytes, mime_type: str | None = None) -> PipelineResult:
        """Transcribe a complete recording.

        Errors from the taxonomy in :mod:`transcribe_app.errors` do not
        propagate; they end the run in FAILED with the error on the result and
        whatever was merged before it.

        Args:
            data: Raw audio file contents
            mime_type: Optional MIME type of ``data``

        Returns:
            PipelineResult with final phase, segments and error

        Raises:
            RuntimeError: If the pipeline is already running
        """
        if self.phase not in (Phase.IDLE, Phase.COMPLETED, Phase.FAILED):
            raise RuntimeError(f"Pipeline already running (phase={self.phase.value})")

        self.phase = Phase.IDLE
        self.aggregator.clear()
        self.cancel_token.reset()
        self.last_error = None
        total_chunks = 0
        completed_chunks = 0

        try:
            chunker.validate_max_chunk_seconds(self.max_chunk_seconds)

            self._transition(Phase.DECODING, PROGRESS_DECODING, "Analyzing audio...")
            stream = await self._run_blocking(self.decoder.decode, data, mime_type)

            self._transition(
                Phase.CHUNKING,
                PROGRESS_CHUNKING,
                f"Splitting {stream.duration:.1f}s of audio into chunks...",
            )
            ranges = chunker.plan(stream.duration, self.max_chunk_seconds)
            total_chunks = len(ranges)

            for chunk_range in ranges:
                if self.cancel_token.is_cancelled():
                    raise PipelineCancelled(
                        f"Cancelled after {completed_chunks}/{total_chunks} chunks"
                    )

                self._transition(
                    Phase.TRANSCRIBING,
                    transcribe_progress(chunk_range.index, total_chunks),
                    f"Transcribing chunk {chunk_range.index + 1}/{total_chunks}...",
                    chunk_index=chunk_range.index,
                    total_chunks=total_chunks,
                )
                segments = await self._transcribe_chunk(
                    stream, chunk_range, total_chunks, data, mime_type
                )
                self.aggregator.append(chunk_range.index, segments)
                completed_chunks += 1
                self._emit(
                    PipelineProgress(
                        phase=Phase.TRANSCRIBING,
                        percent=transcribe_progress(completed_chunks, total_chunks),
                        message=(
                            f"Chunk {chunk_range.index + 1}/{total_chunks} done "
                            f"({len(segments)} segments)"
                        ),
                        chunk_index=chunk_range.index,
                        total_chunks=total_chunks,
                    )
                )

            self._transition(
                Phase.MERGED,
                PROGRESS_MERGED,
                f"Merged {len(self.aggregator)} segments from {total_chunks} chunks",
            )
            self._transition(Phase.COMPLETED, PROGRESS_COMPLETED, "Transcription complete")
            return PipelineResult(
                phase=Phase.COMPLETED,
                segments=self.aggregator.snapshot(),
                total_chunks=total_chunks,
                completed_chunks=completed_chunks,
            )

        except asyncio.CancelledError:
            logger.info("Pipeline task cancelled")
            self.phase = Phase.FAILED
            raise
        except PipelineError as e:
            logger.error("Pipeline failed in %s: %s", self.phase.value, e)
            return self._fail(e, total_chunks, completed_chunks)
        except Exception as e:
            logger.error("Unexpected pipeline error in %s: %s", self.phase.value, e, exc_info=True)
            return self._fail(e, total_chunks, completed_chunks)

    async def _transcribe_chunk(
        self,
        stream: AudioStream,
        chunk_range: ChunkRange,
        total_chunks: int,
        data: bytes,
        mime_type: str | None,
    ) -> list[TranscriptSegment]:
        """Render, encode and transcribe one chunk, then shift its timestamps.

        Raises:
            TransportFailure: If rendering or the oracle call fails
            MalformedOracleResponse: If the oracle output is unusable
        """
        if self.passthrough_single_chunk and total_chunks == 1:
            logger.debug("Single chunk, sending original bytes")
            chunk = EncodedChunk(
                data=data,
                range=chunk_range,
                mime_type=mime_type or mime_type_for(data),
            )
        else:
            start, end = frame_span(stream, chunk_range)
            if end <= start:
                logger.info(
                    "Chunk %d (%.3fs - %.3fs) covers no whole frame, skipping",
                    chunk_range.index,
                    chunk_range.start,
                    chunk_range.end,
                )
                return []

            try:
                chunk = await self._run_blocking(self.encoder.render, stream, chunk_range)
            except Exception as e:
                raise TransportFailure(
                    f"Failed to render chunk {chunk_range.index}: {e}"
                ) from e

        payload = to_transport(chunk)
        request = OracleRequest(
            audio=payload.data,
            mime_type=payload.mime_type,
            chunk_start=chunk_range.start,
        )

        try:
            raw_segments = await self.oracle.transcribe(request)
        except PipelineError:
            raise
        except Exception as e:
            raise TransportFailure(
                f"Oracle call failed for chunk {chunk_range.index}: {e}"
            ) from e

        return [
            TranscriptSegment(
                timestamp=shift_timestamp(seg.timestamp, chunk_range.start),
                speaker=seg.speaker,
                text=seg.text,
            )
            for seg in raw_segments
        ]

    async def _run_blocking(self, func, *args):
        return await asyncio.get_event_loop().run_in_executor(self.executor, func, *args)

    def _transition(self, phase: Phase, percent: int, message: str, **extra) -> None:
        if phase != self.phase:
            logger.info("State transition: %s -> %s", self.phase.name, phase.name)
        self.phase = phase
        self._emit(PipelineProgress(phase=phase, percent=percent, message=message, **extra))

    def _emit(self, progress: PipelineProgress) -> None:
        logger.debug("Progress %d%%: %s", progress.percent, progress.message)
        for listener in list(self._listeners):
            try:
                listener(progress)
            except Exception as e:
                logger.warning("Progress listener raised %s: %s", type(e).__name__, e)

    def _fail(self, error: Exception, total_chunks: int, completed_chunks: int) -> PipelineResult:
        self.last_error = error
        self._transition(Phase.FAILED, PROGRESS_FAILED, f"Error: {error}")
        return PipelineResult(
            phase=Phase.FAILED,
            segments=self.aggregator.snapshot(),
            error=error,
            total_chunks=total_chunks,
            completed_chunks=completed_chunks,
        )

    async def shutdown(self) -> None:
        """Shut down the oracle and owned executor."""
        logger.info("Pipeline shutdown starting")
        try:
            await self.oracle.shutdown()
            logger.debug("Oracle shut down")
        except Exception as e:
            logger.warning("Error shutting down oracle: %s", e)

        if self._executor_owned and self.executor:
            self.executor.shutdown(wait=True)
            logger.debug("Executor shut down")
        logger.info("Pipeline shutdown complete")
