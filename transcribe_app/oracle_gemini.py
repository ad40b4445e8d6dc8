"""Chunk transcription via the Gemini API."""

import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor

from transcribe_app._types import OracleRequest, TranscriptSegment, TransportPayload
from transcribe_app.errors import TransportFailure
from transcribe_app.oracle import (
    RESPONSE_SCHEMA,
    USER_PROMPT,
    build_instruction,
    parse_oracle_response,
)
from transcribe_app.transport import from_transport

logger = logging.getLogger(__name__)


class GeminiOracle:
    """Encapsulates the Gemini client and per-chunk transcription.

    Runs the blocking SDK call inside a thread pool executor to avoid blocking
    the event loop. Lazy-initializes the client on first transcription.
    """

    def __init__(
        self,
        api_key: str | None,
        model: str = "gemini-2.5-flash",
        language: str = "Traditional Chinese",
        unintelligible_marker: str = "[inaudible]",
        temperature: float | None = None,
        timeout: float = 300.0,
        executor: ThreadPoolExecutor | None = None,
    ):
        """Initialize Gemini oracle.

        Args:
            api_key: Gemini API key
            model: Gemini model name
            language: Language the transcript should be written in
            unintelligible_marker: Text used for words that cannot be made out
            temperature: Optional sampling temperature
            timeout: Per-chunk request timeout in seconds
            executor: Optional ThreadPoolExecutor for API calls
        """
        self.api_key = api_key
        self.model = model
        self.language = language
        self.unintelligible_marker = unintelligible_marker
        self.temperature = temperature
        self.timeout = timeout
        self.executor = executor or ThreadPoolExecutor(max_workers=1)
        self._executor_owned = executor is None
        self._client = None
        self._client_lock = asyncio.Lock()
        logger.info(
            "GeminiOracle initialized: model=%s, language=%s, timeout=%.1fs",
            model,
            language,
            timeout,
        )

    async def _ensure_client_initialized(self) -> None:
        """Lazy-initialize Gemini client on first use.

        Raises:
            TransportFailure: If client initialization fails
        """
        async with self._client_lock:
            if self._client is not None:
                return

            if not self.api_key:
                raise TransportFailure("Gemini API key is not configured")

            logger.info("Initializing Gemini client for model: %s", self.model)

            try:
                from google import genai

                start_time = time.perf_counter()
                self._client = genai.Client(api_key=self.api_key)
                duration = time.perf_counter() - start_time
                logger.info("Gemini client initialized in %.3f seconds", duration)
            except Exception as e:
                logger.error("Failed to initialize Gemini client: %s", e)
                raise TransportFailure(f"Failed to initialize Gemini client: {e}") from e

    async def transcribe(self, request: OracleRequest) -> list[TranscriptSegment]:
        """Transcribe one chunk.

        Args:
            request: Base64 audio, MIME type and the chunk's start offset

        Returns:
            Segments with timestamps relative to the chunk start

        Raises:
            TransportFailure: If the API call fails or times out
            MalformedOracleResponse: If the output does not match the schema
        """
        await self._ensure_client_initialized()

        logger.info(
            "Sending chunk at %.1fs to Gemini (%s, %d chars)",
            request.chunk_start,
            request.mime_type,
            len(request.audio),
        )

        try:
            segments = await asyncio.wait_for(
                asyncio.get_event_loop().run_in_executor(
                    self.executor,
                    self._transcribe_sync,
                    request,
                ),
                timeout=self.timeout,
            )
            logger.info("Gemini returned %d segments", len(segments))
            return segments
        except asyncio.TimeoutError as e:
            logger.error("Gemini request timed out after %.1f seconds", self.timeout)
            raise TransportFailure(
                f"Gemini request timed out after {self.timeout} seconds"
            ) from e
        except TransportFailure:
            raise
        except Exception as e:
            logger.error("Gemini transcription failed: %s", e, exc_info=True)
            raise TransportFailure(f"Gemini transcription failed: {e}") from e

    def _transcribe_sync(self, request: OracleRequest) -> list[TranscriptSegment]:
        """Synchronous API call (runs in thread pool)."""
        if self._client is None:
            raise TransportFailure("Gemini client not initialized")

        from google.genai import errors, types

        audio_bytes = from_transport(
            TransportPayload(data=request.audio, mime_type=request.mime_type)
        )
        config = types.GenerateContentConfig(
            system_instruction=build_instruction(
                request.chunk_start,
                language=self.language,
                unintelligible_marker=self.unintelligible_marker,
            ),
            response_mime_type="application/json",
            response_schema=RESPONSE_SCHEMA,
            temperature=self.temperature,
        )

        try:
            response = self._client.models.generate_content(
                model=self.model,
                contents=[
                    types.Part.from_bytes(data=audio_bytes, mime_type=request.mime_type),
                    USER_PROMPT,
                ],
                config=config,
            )
        except errors.APIError as e:
            if e.code in (401, 403):
                raise TransportFailure("Invalid Gemini API key") from e
            elif e.code == 429:
                raise TransportFailure("Gemini API rate limit exceeded") from e
            elif e.code is not None and e.code >= 500:
                raise TransportFailure(f"Gemini server error: {e.code}") from e
            else:
                raise TransportFailure(f"Gemini API error ({e.code}): {e.message}") from e

        return parse_oracle_response(response.text)

    async def shutdown(self) -> None:
        """Release client reference and stop owned executor."""
        logger.info("GeminiOracle shutting down")
        self._client = None
        if self._executor_owned and self.executor:
            self.executor.shutdown(wait=True)
            logger.debug("Executor shut down")
