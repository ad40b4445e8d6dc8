"""Chunk transcription via the Deepgram API."""

import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor

from transcribe_app._types import OracleRequest, TranscriptSegment, TransportPayload
from transcribe_app.errors import MalformedOracleResponse, TransportFailure
from transcribe_app.timestamps import format_timestamp
from transcribe_app.transport import from_transport

logger = logging.getLogger(__name__)

# Word fallback groups words into segments of roughly this many seconds.
WORD_GROUP_SECONDS = 5.0


def _speaker_label(speaker) -> str:
    if speaker is None:
        return "Speaker"
    return f"Speaker {speaker}"


class DeepgramOracle:
    """Encapsulates Deepgram API client and per-chunk transcription.

    Runs transcription inside a thread pool executor to avoid blocking the event loop.
    Lazy-initializes client on first transcription. Deepgram takes a binary
    request body, so the transport payload is decoded before sending.
    """

    def __init__(
        self,
        api_key: str | None,
        model: str = "nova-3",
        smart_format: bool = True,
        punctuate: bool = True,
        diarize: bool = True,
        language: str = "multi",
        timeout: float = 300.0,
        executor: ThreadPoolExecutor | None = None,
    ):
        """Initialize Deepgram oracle.

        Args:
            api_key: Deepgram API key
            model: Deepgram model (nova-3, nova-2, whisper-large, etc.)
            smart_format: Enable smart formatting (currency, dates, etc.)
            punctuate: Auto-add punctuation
            diarize: Label speakers
            language: Language code, or "multi" for multilingual detection
            timeout: API request timeout in seconds
            executor: Optional ThreadPoolExecutor for transcription tasks
        """
        self.api_key = api_key
        self.model = model
        self.smart_format = smart_format
        self.punctuate = punctuate
        self.diarize = diarize
        self.language = language
        self.timeout = timeout
        self.executor = executor or ThreadPoolExecutor(max_workers=1)
        self._executor_owned = executor is None
        self._client = None
        self._client_lock = asyncio.Lock()
        logger.info(
            "DeepgramOracle initialized: model=%s, smart_format=%s, punctuate=%s, diarize=%s",
            model,
            smart_format,
            punctuate,
            diarize,
        )

    async def _ensure_client_initialized(self) -> None:
        """Lazy-initialize Deepgram client on first use.

        Uses asyncio.Lock to prevent concurrent initialization attempts.

        Raises:
            TransportFailure: If client initialization fails
        """
        async with self._client_lock:
            if self._client is not None:
                return

            if not self.api_key:
                raise TransportFailure("Deepgram API key is not configured")

            logger.info("Initializing Deepgram client with model: %s", self.model)

            try:
                from deepgram import DeepgramClient

                start_time = time.perf_counter()
                self._client = DeepgramClient(api_key=self.api_key)
                duration = time.perf_counter() - start_time
                logger.info("Deepgram client initialized in %.3f seconds", duration)
            except Exception as e:
                logger.error("Failed to initialize Deepgram client: %s", e)
                raise TransportFailure(f"Failed to initialize Deepgram client: {e}") from e

    async def transcribe(self, request: OracleRequest) -> list[TranscriptSegment]:
        """Transcribe one chunk asynchronously using Deepgram API.

        Args:
            request: Base64 audio, MIME type and the chunk's start offset

        Returns:
            Segments with timestamps relative to the chunk start

        Raises:
            TransportFailure: If client initialization or transcription fails
        """
        await self._ensure_client_initialized()

        logger.info("Sending chunk at %.1fs to Deepgram (%s)", request.chunk_start, request.mime_type)

        try:
            segments = await asyncio.wait_for(
                asyncio.get_event_loop().run_in_executor(
                    self.executor,
                    self._transcribe_sync,
                    request,
                ),
                timeout=self.timeout,
            )
            logger.info("Deepgram returned %d segments", len(segments))
            return segments
        except asyncio.TimeoutError as e:
            logger.error("Transcription timed out after %.1f seconds", self.timeout)
            raise TransportFailure(
                f"Deepgram request timed out after {self.timeout} seconds"
            ) from e
        except TransportFailure:
            raise
        except Exception as e:
            logger.error("Transcription failed: %s", e, exc_info=True)
            raise TransportFailure(f"Deepgram transcription failed: {e}") from e

    def _transcribe_sync(self, request: OracleRequest) -> list[TranscriptSegment]:
        """Synchronous transcription using Deepgram API (runs in thread pool).

        Raises:
            TransportFailure: If the API rejects the request
            MalformedOracleResponse: If the response has no channels
        """
        if self._client is None:
            raise TransportFailure("Deepgram client not initialized")

        audio_bytes = from_transport(
            TransportPayload(data=request.audio, mime_type=request.mime_type)
        )

        options = {
            "model": self.model,
            "smart_format": self.smart_format,
            "punctuate": self.punctuate,
            "diarize": self.diarize,
            "utterances": True,
            "language": self.language,
        }
        logger.debug("Deepgram options: %s", options)

        from deepgram.core.api_error import ApiError

        try:
            response = self._client.listen.v1.media.transcribe_file(
                request=audio_bytes,
                **options
            )
        except ApiError as e:
            if e.status_code == 401:
                raise TransportFailure("Invalid Deepgram API key") from e
            elif e.status_code == 429:
                raise TransportFailure("Deepgram API rate limit exceeded") from e
            elif e.status_code >= 500:
                raise TransportFailure(f"Deepgram server error: {e.status_code}") from e
            else:
                raise TransportFailure(f"Deepgram API error ({e.status_code}): {e.body}") from e

        try:
            alternative = response.results.channels[0].alternatives[0]
        except (AttributeError, IndexError, TypeError) as e:
            raise MalformedOracleResponse(f"Deepgram response has no transcript: {e}") from e

        utterances = getattr(response.results, "utterances", None)
        if utterances:
            return [
                TranscriptSegment(
                    timestamp=format_timestamp(utt.start),
                    speaker=_speaker_label(getattr(utt, "speaker", None)),
                    text=utt.transcript.strip(),
                )
                for utt in utterances
                if utt.transcript and utt.transcript.strip()
            ]

        return self._segments_from_words(getattr(alternative, "words", None) or [])

    def _segments_from_words(self, words) -> list[TranscriptSegment]:
        """Group words into segments on speaker change or every few seconds."""
        segments = []
        current_words: list[str] = []
        current_start = None
        current_speaker = None

        for word in words:
            speaker = getattr(word, "speaker", None)
            if current_words and (
                speaker != current_speaker
                or word.start - current_start >= WORD_GROUP_SECONDS
            ):
                segments.append(
                    TranscriptSegment(
                        timestamp=format_timestamp(current_start),
                        speaker=_speaker_label(current_speaker),
                        text=" ".join(current_words),
                    )
                )
                current_words = []

            if not current_words:
                current_start = word.start
                current_speaker = speaker
            current_words.append(getattr(word, "punctuated_word", None) or word.word)

        if current_words:
            segments.append(
                TranscriptSegment(
                    timestamp=format_timestamp(current_start),
                    speaker=_speaker_label(current_speaker),
                    text=" ".join(current_words),
                )
            )
        return segments

    async def shutdown(self) -> None:
        """Clean up resources and shut down executor.

        Releases client reference and stops thread pool if owned by this instance.
        """
        logger.info("DeepgramOracle shutting down")
        self._client = None
        if self._executor_owned and self.executor:
            self.executor.shutdown(wait=True)
            logger.debug("Executor shut down")
