"""Tests for config module."""

import tempfile
from pathlib import Path

import pytest

from transcribe_app.config import (
    ChunkingConfig,
    Config,
    ConfigError,
    EncoderConfig,
    OracleConfig,
    load_config,
    validate_chunking_config,
    validate_encoder_config,
    validate_oracle_config,
)


@pytest.fixture
def tmp_config_file():
    """Create a temporary TOML config file for testing."""

    def _create(content: str) -> Path:
        with tempfile.NamedTemporaryFile(mode="w", suffix=".toml", delete=False) as f:
            f.write(content)
            return Path(f.name)

    return _create


@pytest.fixture(autouse=True)
def isolated_cwd(tmp_path, monkeypatch):
    """Keep stray transcribe.toml files out of the search path."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))


@pytest.fixture
def full_config_content():
    """Full configuration with all sections."""
    return """
[chunking]
max_chunk_seconds = 300
passthrough_single_chunk = true

[encoder]
sample_rate = 16000
channels = 1

[oracle]
backend = "deepgram"
timeout = 120.0
language = "English"
unintelligible_marker = "[???]"

[gemini]
model = "gemini-2.5-pro"
temperature = 0.2

[deepgram]
api_key = "dg-from-file"
model = "nova-2"
diarize = false
language = "en"

[general]
verbose = true
"""


class TestConfigLoading:
    """Tests for loading TOML files."""

    def test_full_config(self, tmp_config_file, full_config_content):
        path = tmp_config_file(full_config_content)
        try:
            cfg = load_config(path, env={})
        finally:
            path.unlink()

        assert cfg.chunking.max_chunk_seconds == 300.0
        assert isinstance(cfg.chunking.max_chunk_seconds, float)
        assert cfg.chunking.passthrough_single_chunk is True
        assert cfg.encoder.sample_rate == 16000
        assert cfg.encoder.channels == 1
        assert cfg.oracle.backend == "deepgram"
        assert cfg.oracle.timeout == 120.0
        assert cfg.oracle.language == "English"
        assert cfg.oracle.unintelligible_marker == "[???]"
        assert cfg.gemini.model == "gemini-2.5-pro"
        assert cfg.gemini.temperature == 0.2
        assert cfg.deepgram.api_key == "dg-from-file"
        assert cfg.deepgram.diarize is False
        assert cfg.general.verbose is True
        cfg.validate()

    def test_defaults_without_file(self):
        """Test defaults are used when no config file exists."""
        cfg = load_config(env={})
        assert cfg.chunking.max_chunk_seconds == 600.0
        assert cfg.chunking.passthrough_single_chunk is False
        assert cfg.encoder.sample_rate is None
        assert cfg.oracle.backend == "gemini"
        assert cfg.gemini.api_key is None

    def test_cwd_config_discovered(self, tmp_path):
        (tmp_path / "transcribe.toml").write_text("[chunking]\nmax_chunk_seconds = 90.0\n")
        cfg = load_config(env={})
        assert cfg.chunking.max_chunk_seconds == 90.0

    def test_env_config_path(self, tmp_config_file):
        path = tmp_config_file('[oracle]\nlanguage = "Japanese"\n')
        try:
            cfg = load_config(env={"TRANSCRIBE_CONFIG": str(path)})
        finally:
            path.unlink()
        assert cfg.oracle.language == "Japanese"

    def test_explicit_path_missing(self):
        with pytest.raises(ConfigError, match="not found"):
            load_config(Path("/nonexistent/transcribe.toml"), env={})

    def test_env_path_missing(self):
        with pytest.raises(ConfigError, match="TRANSCRIBE_CONFIG"):
            load_config(env={"TRANSCRIBE_CONFIG": "/nonexistent/transcribe.toml"})

    def test_invalid_toml(self, tmp_config_file):
        path = tmp_config_file("[chunking\nmax_chunk_seconds = ")
        try:
            with pytest.raises(ConfigError, match="Failed to parse"):
                load_config(path, env={})
        finally:
            path.unlink()

    def test_unknown_key(self, tmp_config_file):
        """Test unknown keys inside a known section are rejected."""
        path = tmp_config_file("[chunking]\nchunk_size = 10\n")
        try:
            with pytest.raises(ConfigError, match="Invalid configuration values"):
                load_config(path, env={})
        finally:
            path.unlink()

    def test_section_not_table(self, tmp_config_file):
        path = tmp_config_file('chunking = "fast"\n')
        try:
            with pytest.raises(ConfigError, match="must be a table"):
                load_config(path, env={})
        finally:
            path.unlink()

    def test_unknown_section_warns(self, tmp_config_file, caplog):
        path = tmp_config_file("[model]\nname = \"base\"\n")
        try:
            with caplog.at_level("WARNING"):
                load_config(path, env={})
        finally:
            path.unlink()
        assert "unknown config sections: model" in caplog.text


class TestEnvironmentKeys:
    """Tests for API keys from the environment."""

    def test_gemini_key_from_env(self):
        cfg = load_config(env={"GEMINI_API_KEY": "g-env"})
        assert cfg.gemini.api_key == "g-env"

    def test_google_key_fallback(self):
        cfg = load_config(env={"GOOGLE_API_KEY": "google-env"})
        assert cfg.gemini.api_key == "google-env"

    def test_file_key_wins(self, tmp_config_file):
        path = tmp_config_file('[gemini]\napi_key = "g-file"\n')
        try:
            cfg = load_config(path, env={"GEMINI_API_KEY": "g-env"})
        finally:
            path.unlink()
        assert cfg.gemini.api_key == "g-file"

    def test_deepgram_key_from_env(self):
        cfg = load_config(env={"DEEPGRAM_API_KEY": "d-env"})
        assert cfg.deepgram.api_key == "d-env"


class TestValidation:
    """Tests for validation helpers."""

    @pytest.mark.parametrize("bad", [0, -1.0, float("inf"), float("nan"), True, "600"])
    def test_bad_max_chunk_seconds(self, bad):
        with pytest.raises(ConfigError, match="max_chunk_seconds"):
            validate_chunking_config(ChunkingConfig(max_chunk_seconds=bad))

    def test_good_max_chunk_seconds(self):
        validate_chunking_config(ChunkingConfig(max_chunk_seconds=0.5))

    def test_encoder_channels(self):
        validate_encoder_config(EncoderConfig(channels=1))
        with pytest.raises(ConfigError, match="channels"):
            validate_encoder_config(EncoderConfig(channels=2))

    def test_encoder_sample_rate(self):
        with pytest.raises(ConfigError, match="sample_rate"):
            validate_encoder_config(EncoderConfig(sample_rate=0))

    def test_unknown_backend(self):
        with pytest.raises(ConfigError, match="Invalid backend"):
            validate_oracle_config(OracleConfig(backend="whisper"))

    def test_timeout_positive(self):
        with pytest.raises(ConfigError, match="timeout"):
            validate_oracle_config(OracleConfig(timeout=0))

    def test_gemini_key_required(self):
        cfg = Config()
        with pytest.raises(ConfigError, match="GEMINI_API_KEY"):
            cfg.validate()

    def test_deepgram_key_required(self):
        cfg = Config()
        cfg.oracle.backend = "deepgram"
        cfg.gemini.api_key = "unused"
        with pytest.raises(ConfigError, match="DEEPGRAM_API_KEY"):
            cfg.validate()

    def test_valid_config(self):
        cfg = Config()
        cfg.gemini.api_key = "key"
        cfg.validate()
