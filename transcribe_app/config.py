"""Configuration loader and validation."""

import logging
import math
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from transcribe_app.chunker import DEFAULT_MAX_CHUNK_SECONDS

logger = logging.getLogger(__name__)

__all__ = [
    "ChunkingConfig",
    "EncoderConfig",
    "OracleConfig",
    "GeminiConfig",
    "DeepgramConfig",
    "GeneralConfig",
    "Config",
    "ConfigError",
    "load_config",
    "VALID_BACKENDS",
]

VALID_BACKENDS = ("gemini", "deepgram")

_SECTIONS = ("chunking", "encoder", "oracle", "gemini", "deepgram", "general")


class ConfigError(Exception):
    """Configuration loading or validation error."""

    pass


@dataclass
class ChunkingConfig:
    """Chunk planning settings."""

    max_chunk_seconds: float = DEFAULT_MAX_CHUNK_SECONDS
    passthrough_single_chunk: bool = False


@dataclass
class EncoderConfig:
    """Per-chunk output format. None keeps the source value."""

    sample_rate: int | None = None
    channels: int | None = None


@dataclass
class OracleConfig:
    """Recognition service selection and prompt settings."""

    backend: str = "gemini"
    timeout: float = 300.0
    language: str = "Traditional Chinese"
    unintelligible_marker: str = "[inaudible]"


@dataclass
class GeminiConfig:
    """Gemini API configuration (for gemini backend)."""

    api_key: str | None = None
    model: str = "gemini-2.5-flash"
    temperature: float | None = None


@dataclass
class DeepgramConfig:
    """Deepgram API configuration (for deepgram backend)."""

    api_key: str | None = None
    model: str = "nova-3"
    smart_format: bool = True
    punctuate: bool = True
    diarize: bool = True
    language: str = "multi"


@dataclass
class GeneralConfig:
    """General application settings."""

    verbose: bool = False
    debug: bool = False


@dataclass
class Config:
    """Main configuration container."""

    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    encoder: EncoderConfig = field(default_factory=EncoderConfig)
    oracle: OracleConfig = field(default_factory=OracleConfig)
    gemini: GeminiConfig = field(default_factory=GeminiConfig)
    deepgram: DeepgramConfig = field(default_factory=DeepgramConfig)
    general: GeneralConfig = field(default_factory=GeneralConfig)

    @classmethod
    def from_toml(
        cls,
        path: Path | None = None,
        *,
        env: Mapping[str, str] | None = None,
    ) -> "Config":
        """Load configuration from TOML file with environment overrides.

        Args:
            path: Explicit config file path. If None, searches in order:
                  1. TRANSCRIBE_CONFIG env var
                  2. ./transcribe.toml
                  3. ~/.config/transcribe.toml
                  Defaults are used when none of these exist.
            env: Environment variables for overrides (defaults to os.environ)

        Returns:
            Loaded Config instance

        Raises:
            ConfigError: If an explicit file is missing or parsing fails
        """
        if env is None:
            import os

            env = os.environ

        resolved_path = _resolve_config_path(path, env)
        raw_data = _load_toml_file(resolved_path) if resolved_path else {}

        try:
            coerced = _coerce_config_values(raw_data, env)
            return cls(
                chunking=ChunkingConfig(**coerced["chunking"]),
                encoder=EncoderConfig(**coerced["encoder"]),
                oracle=OracleConfig(**coerced["oracle"]),
                gemini=GeminiConfig(**coerced["gemini"]),
                deepgram=DeepgramConfig(**coerced["deepgram"]),
                general=GeneralConfig(**coerced["general"]),
            )
        except TypeError as e:
            raise ConfigError(f"Invalid configuration values: {e}") from e

    def validate(self) -> None:
        """Validate configuration values.

        Raises:
            ConfigError: If any section is invalid
        """
        validate_chunking_config(self.chunking)
        validate_encoder_config(self.encoder)
        validate_oracle_config(self.oracle)
        validate_gemini_config(self.oracle, self.gemini)
        validate_deepgram_config(self.oracle, self.deepgram)


def _resolve_config_path(
    cli_path: Path | None,
    env: Mapping[str, str],
) -> Path | None:
    """Resolve configuration file path following search order.

    Search order:
    1. CLI-provided path
    2. TRANSCRIBE_CONFIG environment variable
    3. ./transcribe.toml (current directory)
    4. ~/.config/transcribe.toml (user config directory)

    Raises:
        ConfigError: If an explicitly requested file does not exist
    """
    if cli_path:
        cli_path = Path(cli_path)
        if cli_path.exists():
            logger.info("Using config file: %s", cli_path.resolve())
            return cli_path.resolve()
        raise ConfigError(f"Config file not found: {cli_path}")

    if env_path := env.get("TRANSCRIBE_CONFIG"):
        env_candidate = Path(env_path)
        if not env_candidate.exists():
            raise ConfigError(f"Config file from TRANSCRIBE_CONFIG not found: {env_candidate}")
        logger.info("Using config file: %s", env_candidate.resolve())
        return env_candidate.resolve()

    candidates = [Path("transcribe.toml"), Path.home() / ".config" / "transcribe.toml"]
    for candidate in candidates:
        if candidate.exists():
            logger.info("Using config file: %s", candidate.resolve())
            return candidate.resolve()

    logger.debug(
        "No config file found (searched: %s), using defaults",
        ", ".join(str(c) for c in candidates),
    )
    return None


def _load_toml_file(path: Path) -> dict:
    """Load and parse TOML configuration file.

    Raises:
        ConfigError: If file cannot be read or parsed
    """
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except Exception as e:
        raise ConfigError(f"Failed to parse config file {path}: {e}") from e


def _coerce_config_values(raw_data: dict, env: Mapping[str, str]) -> dict:
    """Normalize raw TOML data for dataclass instantiation.

    Fills API keys from the environment when the file leaves them unset.
    """
    coerced = {}

    for section in _SECTIONS:
        value = raw_data.get(section, {})
        if not isinstance(value, dict):
            raise ConfigError(f"Section [{section}] must be a table")
        coerced[section] = dict(value)

    unknown = set(raw_data) - set(_SECTIONS)
    if unknown:
        logger.warning("Ignoring unknown config sections: %s", ", ".join(sorted(unknown)))

    chunking = coerced["chunking"]
    if "max_chunk_seconds" in chunking and isinstance(chunking["max_chunk_seconds"], int):
        chunking["max_chunk_seconds"] = float(chunking["max_chunk_seconds"])

    gemini_section = coerced["gemini"]
    if not gemini_section.get("api_key"):
        gemini_section["api_key"] = env.get("GEMINI_API_KEY") or env.get("GOOGLE_API_KEY")

    deepgram_section = coerced["deepgram"]
    if not deepgram_section.get("api_key"):
        deepgram_section["api_key"] = env.get("DEEPGRAM_API_KEY")

    return coerced


def validate_chunking_config(chunking_cfg: ChunkingConfig) -> None:
    """Validate chunking configuration.

    Raises:
        ConfigError: If max_chunk_seconds is not a positive finite number
    """
    value = chunking_cfg.max_chunk_seconds
    if (
        isinstance(value, bool)
        or not isinstance(value, (int, float))
        or not math.isfinite(value)
        or value <= 0
    ):
        raise ConfigError(f"max_chunk_seconds must be positive, got {value!r}")


def validate_encoder_config(encoder_cfg: EncoderConfig) -> None:
    """Validate encoder configuration.

    Raises:
        ConfigError: If sample_rate or channels are invalid
    """
    if encoder_cfg.sample_rate is not None and encoder_cfg.sample_rate <= 0:
        raise ConfigError(f"encoder.sample_rate must be positive, got {encoder_cfg.sample_rate}")
    if encoder_cfg.channels not in (None, 1):
        raise ConfigError(
            f"encoder.channels may only be 1 (downmix) or unset, got {encoder_cfg.channels}"
        )


def validate_oracle_config(oracle_cfg: OracleConfig) -> None:
    """Validate recognition service selection.

    Raises:
        ConfigError: If backend is unknown or timeout is not positive
    """
    if oracle_cfg.backend not in VALID_BACKENDS:
        raise ConfigError(
            f"Invalid backend '{oracle_cfg.backend}'. "
            f"Must be one of: {', '.join(VALID_BACKENDS)}"
        )

    if oracle_cfg.timeout <= 0:
        raise ConfigError(f"oracle.timeout must be positive, got {oracle_cfg.timeout}")


def validate_gemini_config(oracle_cfg: OracleConfig, gemini_cfg: GeminiConfig) -> None:
    """Validate Gemini configuration when backend is gemini.

    Raises:
        ConfigError: If the API key is missing
    """
    if oracle_cfg.backend != "gemini":
        return

    if not gemini_cfg.api_key:
        raise ConfigError(
            "Gemini API key is required when backend is 'gemini'. "
            "Set it in config file or via GEMINI_API_KEY environment variable."
        )


def validate_deepgram_config(oracle_cfg: OracleConfig, deepgram_cfg: DeepgramConfig) -> None:
    """Validate Deepgram configuration when backend is deepgram.

    Raises:
        ConfigError: If the API key is missing
    """
    if oracle_cfg.backend != "deepgram":
        return

    if not deepgram_cfg.api_key:
        raise ConfigError(
            "Deepgram API key is required when backend is 'deepgram'. "
            "Set it in config file or via DEEPGRAM_API_KEY environment variable."
        )


def load_config(
    path: Path | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> Config:
    """Load configuration from TOML file.

    Convenience wrapper around Config.from_toml().

    Args:
        path: Explicit config file path (optional)
        env: Environment variables (defaults to os.environ)

    Returns:
        Loaded Config instance

    Raises:
        ConfigError: If config cannot be loaded
    """
    return Config.from_toml(path, env=env)
