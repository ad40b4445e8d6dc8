"""Error taxonomy for the transcription pipeline."""

__all__ = [
    "PipelineError",
    "InvalidConfiguration",
    "UnsupportedFormat",
    "CorruptAudio",
    "TransportFailure",
    "MalformedOracleResponse",
    "PipelineCancelled",
]


class PipelineError(Exception):
    """Base class for errors that terminate a transcription run."""

    pass


class InvalidConfiguration(PipelineError):
    """Chunking parameters are unusable; raised before any decoding."""

    pass


class UnsupportedFormat(PipelineError):
    """Input bytes are not an audio container the decoder recognises."""

    pass


class CorruptAudio(PipelineError):
    """Input looks like a supported container but cannot be decoded."""

    pass


class TransportFailure(PipelineError):
    """Encoding a chunk or talking to the recognition service failed."""

    pass


class MalformedOracleResponse(TransportFailure):
    """Recognition service returned output that does not match the schema."""

    pass


class PipelineCancelled(PipelineError):
    """Run was stopped through its cancellation token."""

    pass
