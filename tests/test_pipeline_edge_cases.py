"""Tests for pipeline edge cases: bad input, cancellation, passthrough, listeners."""

import asyncio
import base64
from unittest.mock import AsyncMock, Mock

import numpy as np
import pytest

from transcribe_app._types import AudioStream, Phase, TranscriptSegment
from transcribe_app.decoder import AudioDecoder
from transcribe_app.encoder import WavEncoder
from transcribe_app.errors import (
    CorruptAudio,
    InvalidConfiguration,
    MalformedOracleResponse,
    PipelineCancelled,
    TransportFailure,
    UnsupportedFormat,
)
from transcribe_app.pipeline import TranscriptionPipeline


def _stream(seconds: float) -> AudioStream:
    return AudioStream(
        sample_rate=100,
        samples=np.zeros((2, int(round(seconds * 100))), dtype=np.float32),
    )


@pytest.fixture
def mock_decoder():
    """Create mock AudioDecoder returning a 30 second stereo stream."""
    mock = Mock(spec=AudioDecoder)
    mock.decode.return_value = _stream(30.0)
    return mock


@pytest.fixture
def mock_oracle():
    """Create mock oracle."""
    mock = AsyncMock()
    mock.transcribe = AsyncMock(
        return_value=[TranscriptSegment(timestamp="[00:01]", speaker="Speaker A", text="hi")]
    )
    mock.shutdown = AsyncMock()
    return mock


def _pipeline(oracle, decoder, **kwargs):
    kwargs.setdefault("max_chunk_seconds", 10.0)
    return TranscriptionPipeline(oracle=oracle, decoder=decoder, **kwargs)


class TestInvalidInput:
    """Tests for failures before any chunk is transcribed."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad", [0, -10.0, float("nan")])
    async def test_invalid_chunk_duration_fails_before_decode(self, mock_oracle, mock_decoder, bad):
        """Test bad max_chunk_seconds ends the run without decoding."""
        events = []
        pipeline = _pipeline(mock_oracle, mock_decoder, max_chunk_seconds=bad)
        pipeline.add_listener(events.append)

        result = await pipeline.run(b"x")

        assert result.phase == Phase.FAILED
        assert isinstance(result.error, InvalidConfiguration)
        mock_decoder.decode.assert_not_called()
        mock_oracle.transcribe.assert_not_called()
        assert [(e.phase, e.percent) for e in events] == [(Phase.FAILED, 0)]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error", [CorruptAudio("truncated"), UnsupportedFormat("text/plain")]
    )
    async def test_decode_failure(self, mock_oracle, mock_decoder, error):
        """Test decode errors fail the run with no segments and no oracle calls."""
        mock_decoder.decode.side_effect = error
        pipeline = _pipeline(mock_oracle, mock_decoder)

        result = await pipeline.run(b"x")

        assert result.phase == Phase.FAILED
        assert result.error is error
        assert result.segments == []
        assert result.total_chunks == 0
        mock_oracle.transcribe.assert_not_called()

    @pytest.mark.asyncio
    async def test_real_decoder_rejects_garbage(self, mock_oracle):
        """Test unrecognised bytes fail with UnsupportedFormat end to end."""
        pipeline = TranscriptionPipeline(oracle=mock_oracle)
        result = await pipeline.run(b"definitely not audio", "text/plain")
        assert isinstance(result.error, UnsupportedFormat)


class TestOracleErrors:
    """Tests for oracle misbehaviour."""

    @pytest.mark.asyncio
    async def test_malformed_response(self, mock_oracle, mock_decoder):
        mock_oracle.transcribe.side_effect = MalformedOracleResponse("Expected a JSON array")
        result = await _pipeline(mock_oracle, mock_decoder).run(b"x")
        assert isinstance(result.error, MalformedOracleResponse)

    @pytest.mark.asyncio
    async def test_unexpected_oracle_error_wrapped(self, mock_oracle, mock_decoder):
        """Test non-taxonomy oracle errors surface as TransportFailure."""
        mock_oracle.transcribe.side_effect = ConnectionResetError("reset by peer")
        result = await _pipeline(mock_oracle, mock_decoder).run(b"x")
        assert isinstance(result.error, TransportFailure)
        assert isinstance(result.error.__cause__, ConnectionResetError)

    @pytest.mark.asyncio
    async def test_bad_timestamp_from_oracle(self, mock_oracle, mock_decoder):
        """Test an unparseable timestamp fails the chunk as malformed."""
        mock_oracle.transcribe.return_value = [
            TranscriptSegment(timestamp="later", speaker="Speaker A", text="hi")
        ]
        result = await _pipeline(mock_oracle, mock_decoder).run(b"x")
        assert isinstance(result.error, MalformedOracleResponse)
        assert result.segments == []

    @pytest.mark.asyncio
    async def test_render_error_wrapped(self, mock_oracle, mock_decoder):
        encoder = Mock(spec=WavEncoder)
        encoder.render.side_effect = MemoryError("out of memory")
        pipeline = _pipeline(mock_oracle, mock_decoder, encoder=encoder)

        result = await pipeline.run(b"x")

        assert isinstance(result.error, TransportFailure)
        mock_oracle.transcribe.assert_not_called()


class TestCancellation:
    """Tests for cooperative and task cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_between_chunks(self, mock_oracle, mock_decoder):
        """Test cancel stops before the next chunk and keeps finished ones."""
        pipeline = _pipeline(mock_oracle, mock_decoder)

        def on_progress(progress):
            if progress.message.startswith("Chunk 1/3 done"):
                pipeline.cancel()

        pipeline.add_listener(on_progress)
        result = await pipeline.run(b"x")

        assert result.phase == Phase.FAILED
        assert isinstance(result.error, PipelineCancelled)
        assert mock_oracle.transcribe.call_count == 1
        assert result.completed_chunks == 1
        assert len(result.segments) == 1

    @pytest.mark.asyncio
    async def test_cancel_token_reset_on_next_run(self, mock_oracle, mock_decoder):
        pipeline = _pipeline(mock_oracle, mock_decoder)
        pipeline.cancel()
        result = await pipeline.run(b"x")
        assert result.ok

    @pytest.mark.asyncio
    async def test_task_cancellation_propagates(self, mock_oracle, mock_decoder):
        """Test asyncio task cancellation is re-raised after marking FAILED."""
        started = asyncio.Event()

        async def hang(request):
            started.set()
            await asyncio.sleep(3600)

        mock_oracle.transcribe.side_effect = hang
        pipeline = _pipeline(mock_oracle, mock_decoder)

        task = asyncio.create_task(pipeline.run(b"x"))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert pipeline.phase == Phase.FAILED


class TestTrailingSliver:
    """Tests for a last chunk too short to hold a frame."""

    @pytest.mark.asyncio
    async def test_empty_last_chunk_skips_oracle(self, mock_oracle, mock_decoder):
        mock_decoder.decode.return_value = _stream(1.0)
        pipeline = _pipeline(mock_oracle, mock_decoder, max_chunk_seconds=0.333)

        result = await pipeline.run(b"audio", "audio/wav")

        assert result.ok
        assert result.total_chunks == 4
        assert result.completed_chunks == 4
        assert mock_oracle.transcribe.await_count == 3
        starts = [call.args[0].chunk_start for call in mock_oracle.transcribe.call_args_list]
        assert starts == pytest.approx([0.0, 0.333, 0.666])
        assert len(result.segments) == 3


class TestPassthrough:
    """Tests for sending original bytes when a single chunk covers the recording."""

    @pytest.mark.asyncio
    async def test_single_chunk_passthrough(self, mock_oracle, mock_decoder):
        mock_decoder.decode.return_value = _stream(5.0)
        pipeline = _pipeline(mock_oracle, mock_decoder, passthrough_single_chunk=True)

        await pipeline.run(b"original-mp3-bytes", "audio/mpeg")

        request = mock_oracle.transcribe.call_args.args[0]
        assert base64.b64decode(request.audio) == b"original-mp3-bytes"
        assert request.mime_type == "audio/mpeg"
        assert request.chunk_start == 0.0

    @pytest.mark.asyncio
    async def test_passthrough_without_mime_type_uses_sniffed_format(self, mock_oracle, mock_decoder):
        mock_decoder.decode.return_value = _stream(5.0)
        pipeline = _pipeline(mock_oracle, mock_decoder, passthrough_single_chunk=True)

        await pipeline.run(b"ID3\x04\x00\x00\x00\x00\x00\x00frames", None)

        request = mock_oracle.transcribe.call_args.args[0]
        assert request.mime_type == "audio/mpeg"

    @pytest.mark.asyncio
    async def test_passthrough_ignored_for_multiple_chunks(self, mock_oracle, mock_decoder):
        pipeline = _pipeline(mock_oracle, mock_decoder, passthrough_single_chunk=True)
        await pipeline.run(b"original-mp3-bytes", "audio/mpeg")
        for call in mock_oracle.transcribe.call_args_list:
            assert call.args[0].mime_type == "audio/wav"

    @pytest.mark.asyncio
    async def test_single_chunk_reencoded_by_default(self, mock_oracle, mock_decoder):
        """Test a short recording is still rendered to WAV unless passthrough is on."""
        mock_decoder.decode.return_value = _stream(5.0)
        await _pipeline(mock_oracle, mock_decoder).run(b"original", "audio/mpeg")
        request = mock_oracle.transcribe.call_args.args[0]
        assert request.mime_type == "audio/wav"
        assert base64.b64decode(request.audio)[:4] == b"RIFF"


class TestListenersAndReentry:
    """Tests for listener isolation and re-running."""

    @pytest.mark.asyncio
    async def test_listener_error_does_not_abort_run(self, mock_oracle, mock_decoder):
        seen = []

        def broken(progress):
            raise RuntimeError("UI went away")

        pipeline = _pipeline(mock_oracle, mock_decoder)
        pipeline.add_listener(broken)
        pipeline.add_listener(seen.append)

        result = await pipeline.run(b"x")

        assert result.ok
        assert seen[-1].phase == Phase.COMPLETED

    @pytest.mark.asyncio
    async def test_concurrent_run_rejected(self, mock_oracle, mock_decoder):
        pipeline = _pipeline(mock_oracle, mock_decoder)
        pipeline.phase = Phase.TRANSCRIBING
        with pytest.raises(RuntimeError, match="already running"):
            await pipeline.run(b"x")

    @pytest.mark.asyncio
    async def test_rerun_after_failure_clears_state(self, mock_oracle, mock_decoder):
        """Test a second run starts from an empty aggregator."""
        pipeline = _pipeline(mock_oracle, mock_decoder)
        mock_oracle.transcribe.side_effect = [
            [TranscriptSegment("[00:01]", "Speaker A", "kept")],
            TransportFailure("boom"),
        ]
        first = await pipeline.run(b"x")
        assert len(first.segments) == 1

        mock_oracle.transcribe.side_effect = None
        second = await pipeline.run(b"x")

        assert second.ok
        assert pipeline.last_error is None
        assert len(second.segments) == 3
        assert len(first.segments) == 1

    @pytest.mark.asyncio
    async def test_logs_state_transitions(self, mock_oracle, mock_decoder, caplog):
        with caplog.at_level("INFO", logger="transcribe_app.pipeline"):
            await _pipeline(mock_oracle, mock_decoder).run(b"x")
        assert "State transition: IDLE -> DECODING" in caplog.text
        assert "State transition: MERGED -> COMPLETED" in caplog.text
