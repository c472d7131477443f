"""Tests for configuration loading."""

from unittest.mock import patch

import pytest

from groundline.config import (
    GroundlineConfig,
    _find_repo_root,
    resolve_api_key,
)
from groundline.llm.client import DEFAULT_MODEL, DEFAULT_TIMEOUT_MS


def _write_config(root, body):
    config_dir = root / ".groundline"
    config_dir.mkdir(parents=True, exist_ok=True)
    config_file = config_dir / "config.toml"
    config_file.write_text(body)
    return config_file


def test_defaults_without_file(tmp_path, monkeypatch):
    """Test that defaults apply when no config file exists."""
    (tmp_path / ".git").mkdir()
    monkeypatch.chdir(tmp_path)

    with patch.dict("os.environ", {}, clear=True):
        config = GroundlineConfig.load()

    assert config.config_path is None
    assert config.model_call.model == DEFAULT_MODEL
    assert config.model_call.timeout_ms == DEFAULT_TIMEOUT_MS
    assert config.resolver.token_overlap_threshold == 0.6
    assert config.resolver.max_timestamp_distance_sec == 4.0
    assert config.resolver.min_transcript_segments == 3
    assert config.resolver.duplicate_window_sec == 0.2
    assert config.resolver.min_range_duration_sec == 5.0


def test_file_found_walking_upward(tmp_path, monkeypatch):
    """Test that .groundline/config.toml is discovered from a subdirectory."""
    (tmp_path / "pyproject.toml").write_text("")
    config_file = _write_config(
        tmp_path,
        "[model]\nmodel = \"test/model\"\ntimeout_ms = 5000\n\n"
        "[resolver]\ntoken_overlap_threshold = 0.75\nmax_timestamp_distance_sec = 2\n",
    )
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)
    monkeypatch.chdir(nested)

    with patch.dict("os.environ", {}, clear=True):
        config = GroundlineConfig.load()

    assert config.config_path.resolve() == config_file.resolve()
    assert config.model_call.model == "test/model"
    assert config.model_call.timeout_ms == 5000
    assert config.resolver.token_overlap_threshold == 0.75
    assert config.resolver.max_timestamp_distance_sec == 2.0


def test_explicit_path_must_exist(tmp_path):
    with pytest.raises(FileNotFoundError, match="does not exist"):
        GroundlineConfig.load(str(tmp_path / "missing.toml"))


def test_explicit_path(tmp_path):
    config_file = tmp_path / "custom.toml"
    config_file.write_text("[resolver]\nmin_transcript_segments = 5\n")

    with patch.dict("os.environ", {}, clear=True):
        config = GroundlineConfig.load(str(config_file))

    assert config.resolver.min_transcript_segments == 5
    assert config.resolver.to_ingest_config().min_segments == 5


def test_env_overrides_file(tmp_path):
    config_file = tmp_path / "custom.toml"
    config_file.write_text("[model]\nmodel = \"file/model\"\ntimeout_ms = 5000\n")

    with patch.dict("os.environ", {"GROUNDLINE_MODEL": "env/model", "GROUNDLINE_TIMEOUT_MS": "9000"}, clear=True):
        config = GroundlineConfig.load(str(config_file))

    assert config.model_call.model == "env/model"
    assert config.model_call.timeout_ms == 9000


def test_invalid_value_names_key(tmp_path):
    config_file = tmp_path / "custom.toml"
    config_file.write_text("[resolver]\nmax_timestamp_distance_sec = \"far\"\n")

    with patch.dict("os.environ", {}, clear=True):
        with pytest.raises(ValueError, match=r"\[resolver\].max_timestamp_distance_sec must be a float"):
            GroundlineConfig.load(str(config_file))


def test_bool_is_not_an_int(tmp_path):
    config_file = tmp_path / "custom.toml"
    config_file.write_text("[model]\nmax_tokens = true\n")

    with patch.dict("os.environ", {}, clear=True):
        with pytest.raises(ValueError, match="max_tokens must be an int"):
            GroundlineConfig.load(str(config_file))


def test_malformed_toml_falls_back_to_defaults(tmp_path, caplog):
    config_file = tmp_path / "broken.toml"
    config_file.write_text("[resolver\nthis is not toml")

    with patch.dict("os.environ", {}, clear=True):
        config = GroundlineConfig.load(str(config_file))

    assert config.config_path is None
    assert config.resolver.token_overlap_threshold == 0.6
    assert "Ignoring unreadable config file" in caplog.text


def test_conversions_carry_values():
    config = GroundlineConfig.from_dict(
        {
            "model": {"max_tokens": 900, "strict_temperature": 0},
            "resolver": {"min_range_duration_sec": 3, "min_quote_chars": 4},
        }
    )

    call_config = config.model_call.to_call_config()
    assert call_config.max_tokens == 900
    assert call_config.strict_temperature == 0.0
    assert config.resolver.to_timeline_config().min_duration_sec == 3.0
    assert config.resolver.to_text_config().min_quote_chars == 4


def test_find_repo_root(tmp_path):
    (tmp_path / ".git").mkdir()
    nested = tmp_path / "src" / "pkg"
    nested.mkdir(parents=True)
    assert _find_repo_root(nested) == tmp_path


class TestApiKey:
    """Tests for API key precedence."""

    def test_cli_wins(self):
        with patch.dict("os.environ", {"GROUNDLINE_API_KEY": "env"}, clear=True):
            assert resolve_api_key("cli") == "cli"

    def test_groundline_env_before_openrouter(self):
        env = {"GROUNDLINE_API_KEY": "gl", "OPENROUTER_API_KEY": "or"}
        with patch.dict("os.environ", env, clear=True):
            assert resolve_api_key() == "gl"

    def test_openrouter_fallback(self):
        with patch.dict("os.environ", {"OPENROUTER_API_KEY": " or "}, clear=True):
            assert resolve_api_key() == "or"

    def test_none(self):
        with patch.dict("os.environ", {"GROUNDLINE_API_KEY": "  "}, clear=True):
            assert resolve_api_key() is None
