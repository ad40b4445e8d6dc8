"""Typer CLI entrypoint for transcribe-app."""

import asyncio
import json
import logging
from pathlib import Path

import typer

from transcribe_app import chunker
from transcribe_app._types import PipelineProgress
from transcribe_app.aggregator import format_json, format_text
from transcribe_app.config import (
    VALID_BACKENDS,
    Config,
    ConfigError,
    load_config,
    validate_chunking_config,
)
from transcribe_app.decoder import AudioDecoder
from transcribe_app.encoder import WavEncoder, frame_span
from transcribe_app.errors import PipelineError
from transcribe_app.oracle import create_oracle
from transcribe_app.pipeline import TranscriptionPipeline
from transcribe_app.transport import guess_mime_type

app = typer.Typer(help="Chunked speaker-annotated transcription for long recordings")

logger = logging.getLogger(__name__)

VALID_FORMATS = ("text", "json")


def _setup_logging(verbose: bool = False) -> None:
    """Setup logging configuration."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _merge_config_overrides(
    cfg: Config,
    *,
    max_chunk_seconds: float | None = None,
    backend: str | None = None,
    language: str | None = None,
    passthrough: bool | None = None,
) -> Config:
    """Apply CLI overrides to configuration.

    CLI options take precedence over config file values.

    Raises:
        ConfigError: If override values are invalid
    """
    if max_chunk_seconds is not None:
        logger.debug("Overriding max_chunk_seconds to %s", max_chunk_seconds)
        cfg.chunking.max_chunk_seconds = max_chunk_seconds

    if backend is not None:
        if backend not in VALID_BACKENDS:
            raise ConfigError(
                f"Invalid backend '{backend}'. Must be one of: {', '.join(VALID_BACKENDS)}"
            )
        logger.debug("Overriding backend to '%s'", backend)
        cfg.oracle.backend = backend

    if language is not None:
        logger.debug("Overriding language to '%s'", language)
        cfg.oracle.language = language

    if passthrough is not None:
        cfg.chunking.passthrough_single_chunk = passthrough

    return cfg


def _read_audio(audio_file: Path) -> bytes:
    if not audio_file.is_file():
        raise ConfigError(f"Audio file not found: {audio_file}")
    try:
        return audio_file.read_bytes()
    except OSError as e:
        raise ConfigError(f"Cannot read audio file {audio_file}: {e}") from e


def _print_progress(progress: PipelineProgress) -> None:
    typer.echo(f"[{progress.percent:3d}%] {progress.message}", err=True)


def _render(segments, output_format: str) -> str:
    if output_format == "json":
        return format_json(segments)
    return format_text(segments)


@app.command()
def transcribe(
    audio_file: Path = typer.Argument(..., help="Audio file to transcribe"),
    config: Path | None = typer.Option(
        None, "--config", help="Path to configuration file"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose logging"
    ),
    max_chunk_seconds: float | None = typer.Option(
        None, "--max-chunk-seconds", "-c", help="Override maximum chunk duration"
    ),
    backend: str | None = typer.Option(
        None, "--backend", "-b", help="Override recognition backend (gemini, deepgram)"
    ),
    language: str | None = typer.Option(
        None, "--language", "-l", help="Override transcript language"
    ),
    passthrough: bool | None = typer.Option(
        None,
        "--passthrough/--no-passthrough",
        help="Send short recordings unmodified instead of re-encoding",
    ),
    output: Path | None = typer.Option(
        None, "--output", "-o", help="Write transcript to file instead of stdout"
    ),
    output_format: str = typer.Option(
        "text", "--format", "-f", help="Output format (text, json)"
    ),
) -> None:
    """Transcribe an audio file chunk by chunk."""
    _setup_logging(verbose)
    try:
        if output_format not in VALID_FORMATS:
            raise ConfigError(
                f"Invalid format '{output_format}'. Must be one of: {', '.join(VALID_FORMATS)}"
            )
        cfg = load_config(config)
        cfg = _merge_config_overrides(
            cfg,
            max_chunk_seconds=max_chunk_seconds,
            backend=backend,
            language=language,
            passthrough=passthrough,
        )
        cfg.validate()
        logger.info("Configuration validated successfully")

        data = _read_audio(audio_file)
        oracle = create_oracle(cfg)
        pipeline = TranscriptionPipeline.from_config(cfg, oracle=oracle)
        pipeline.add_listener(_print_progress)

        async def _run():
            try:
                return await pipeline.run(data, guess_mime_type(audio_file))
            finally:
                await pipeline.shutdown()

        result = asyncio.run(_run())

    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        raise typer.Exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        raise typer.Exit(130)

    rendered = _render(result.segments, output_format)
    if output:
        output.write_text(rendered + "\n", encoding="utf-8")
        logger.info("Transcript written to %s", output)
    elif rendered:
        typer.echo(rendered)

    if not result.ok:
        logger.error(
            "Transcription failed after %d/%d chunks: %s",
            result.completed_chunks,
            result.total_chunks,
            result.error,
        )
        raise typer.Exit(1)


@app.command()
def plan(
    audio_file: Path = typer.Argument(..., help="Audio file to inspect"),
    max_chunk_seconds: float | None = typer.Option(
        None, "--max-chunk-seconds", "-c", help="Override maximum chunk duration"
    ),
    config: Path | None = typer.Option(
        None, "--config", help="Path to configuration file"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
    json_output: bool = typer.Option(
        False, "--json", help="Output as JSON instead of table"
    ),
) -> None:
    """Show how a recording would be split into chunks."""
    _setup_logging(verbose)
    try:
        cfg = _merge_config_overrides(load_config(config), max_chunk_seconds=max_chunk_seconds)
        validate_chunking_config(cfg.chunking)
        stream = AudioDecoder().decode(_read_audio(audio_file), guess_mime_type(audio_file))
        ranges = chunker.plan(stream.duration, cfg.chunking.max_chunk_seconds)
    except (ConfigError, PipelineError) as e:
        logger.error("Cannot plan chunks: %s", e)
        raise typer.Exit(1)

    if json_output:
        typer.echo(
            json.dumps(
                {
                    "sample_rate": stream.sample_rate,
                    "channels": stream.channels,
                    "duration": stream.duration,
                    "chunks": [
                        {"index": r.index, "start": r.start, "end": r.end}
                        for r in ranges
                    ],
                },
                indent=2,
            )
        )
    else:
        typer.echo(
            f"{audio_file.name}: {stream.duration:.2f}s, "
            f"{stream.sample_rate}Hz, {stream.channels}ch, {len(ranges)} chunk(s)"
        )
        for r in ranges:
            typer.echo(f"  [{r.index}] {r.start:.2f}s - {r.end:.2f}s ({r.duration:.2f}s)")


@app.command()
def split(
    audio_file: Path = typer.Argument(..., help="Audio file to split"),
    output_dir: Path = typer.Argument(..., help="Directory for chunk WAV files"),
    max_chunk_seconds: float | None = typer.Option(
        None, "--max-chunk-seconds", "-c", help="Override maximum chunk duration"
    ),
    config: Path | None = typer.Option(
        None, "--config", help="Path to configuration file"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Write each chunk as the WAV file that would be sent for recognition."""
    _setup_logging(verbose)
    try:
        cfg = _merge_config_overrides(load_config(config), max_chunk_seconds=max_chunk_seconds)
        validate_chunking_config(cfg.chunking)
        encoder = WavEncoder(
            target_sample_rate=cfg.encoder.sample_rate,
            mono=cfg.encoder.channels == 1,
        )
        stream = AudioDecoder().decode(_read_audio(audio_file), guess_mime_type(audio_file))
        ranges = chunker.plan(stream.duration, cfg.chunking.max_chunk_seconds)
    except (ConfigError, PipelineError) as e:
        logger.error("Cannot split audio: %s", e)
        raise typer.Exit(1)

    output_dir.mkdir(parents=True, exist_ok=True)
    for chunk_range in ranges:
        start, end = frame_span(stream, chunk_range)
        if end <= start:
            logger.info("Skipping chunk %d: covers no whole frame", chunk_range.index)
            continue
        chunk = encoder.render(stream, chunk_range)
        chunk_path = output_dir / f"chunk_{chunk_range.index:04d}.wav"
        chunk_path.write_bytes(chunk.data)
        typer.echo(f"{chunk_path} ({chunk_range.start:.2f}s - {chunk_range.end:.2f}s)")


if __name__ == "__main__":
    app()
