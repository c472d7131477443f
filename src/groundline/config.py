"""Configuration management for Groundline."""

import logging
import os
import tomllib
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field

from .llm.client import DEFAULT_ENDPOINT, DEFAULT_MODEL, DEFAULT_TIMEOUT_MS, ModelCallConfig
from .resolve.text import TextMatchConfig
from .resolve.transcript import TimelineConfig, TranscriptIngestConfig

logger = logging.getLogger(__name__)

CONFIG_DIR_NAME = ".groundline"
CONFIG_FILE_NAME = "config.toml"


def _find_repo_root(start_dir: Path) -> Path:
    """Find repository root by walking upward looking for .git or pyproject.toml."""
    current_dir = start_dir

    while True:
        if (current_dir / ".git").exists() or (current_dir / "pyproject.toml").exists():
            return current_dir

        parent_dir = current_dir.parent

        # Stop if we reach filesystem root
        if parent_dir == current_dir:
            return start_dir

        current_dir = parent_dir


def _find_config_file(start_dir: Path) -> Optional[Path]:
    """Walk upward from start_dir to the repo root looking for .groundline/config.toml."""
    repo_root = _find_repo_root(start_dir)
    current_dir = start_dir

    while True:
        candidate = current_dir / CONFIG_DIR_NAME / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate
        if current_dir == repo_root or current_dir.parent == current_dir:
            return None
        current_dir = current_dir.parent


def _load_config_data(config_file: Path) -> Optional[dict]:
    """Load TOML config data; a malformed file is reported and ignored."""
    try:
        with open(config_file, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning(f"Ignoring unreadable config file {config_file}: {e}")
        return None


def _as_int(value: Any, *, name: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"Invalid config: {name} must be an int")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise ValueError(f"Invalid config: {name} must be an int")


def _as_float(value: Any, *, name: str) -> float:
    if isinstance(value, bool):
        raise ValueError(f"Invalid config: {name} must be a float")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            pass
    raise ValueError(f"Invalid config: {name} must be a float")


def _section(data: Optional[dict], name: str) -> dict:
    if not isinstance(data, dict):
        return {}
    section = data.get(name)
    return section if isinstance(section, dict) else {}


class ModelCallSettings(BaseModel):
    """Settings for the upstream completion endpoint."""

    endpoint: str = Field(default=DEFAULT_ENDPOINT)
    model: str = Field(default=DEFAULT_MODEL)
    timeout_ms: int = Field(default=DEFAULT_TIMEOUT_MS, gt=0)
    max_tokens: int = Field(default=1800, gt=0)
    relaxed_temperature: float = Field(default=0.1, ge=0.0)
    strict_temperature: float = Field(default=0.0, ge=0.0)
    app_title: str = Field(default="Groundline")

    def to_call_config(self) -> ModelCallConfig:
        return ModelCallConfig(
            endpoint=self.endpoint,
            model=self.model,
            max_tokens=self.max_tokens,
            relaxed_temperature=self.relaxed_temperature,
            strict_temperature=self.strict_temperature,
            app_title=self.app_title,
        )


class ResolverSettings(BaseModel):
    """Acceptance thresholds for citation resolution.

    Empirical defaults; none of them is derived from first principles.
    """

    token_overlap_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    min_quote_chars: int = Field(default=1, ge=1)
    max_timestamp_distance_sec: float = Field(default=4.0, ge=0.0)
    min_range_duration_sec: float = Field(default=5.0, gt=0.0)
    boundary_epsilon_sec: float = Field(default=1e-3, ge=0.0)
    min_transcript_segments: int = Field(default=3, ge=0)
    duplicate_window_sec: float = Field(default=0.2, ge=0.0)

    def to_text_config(self) -> TextMatchConfig:
        return TextMatchConfig(
            overlap_threshold=self.token_overlap_threshold,
            min_quote_chars=self.min_quote_chars,
        )

    def to_timeline_config(self) -> TimelineConfig:
        return TimelineConfig(
            max_distance_sec=self.max_timestamp_distance_sec,
            min_duration_sec=self.min_range_duration_sec,
            boundary_epsilon_sec=self.boundary_epsilon_sec,
        )

    def to_ingest_config(self) -> TranscriptIngestConfig:
        return TranscriptIngestConfig(
            min_segments=self.min_transcript_segments,
            duplicate_window_sec=self.duplicate_window_sec,
        )


class GroundlineConfig(BaseModel):
    """Configuration for model calls and citation resolution."""

    model_call: ModelCallSettings = Field(default_factory=ModelCallSettings)
    resolver: ResolverSettings = Field(default_factory=ResolverSettings)
    config_path: Optional[Path] = Field(default=None, description="File the settings came from")

    model_config = {"protected_namespaces": ()}

    @classmethod
    def load(cls, cli_config_path: Optional[str] = None) -> "GroundlineConfig":
        """Load configuration with the following precedence:

        1. CLI --config option (if provided; must exist)
        2. .groundline/config.toml found walking upward from CWD to the repo root
        3. Defaults

        GROUNDLINE_MODEL and GROUNDLINE_TIMEOUT_MS override file values.

        Raises:
            FileNotFoundError: If the CLI config path does not exist
            ValueError: If a config value has the wrong type
        """
        if cli_config_path:
            config_file: Optional[Path] = Path(cli_config_path).expanduser().resolve()
            if not config_file.exists():
                raise FileNotFoundError(f"Specified config file does not exist: {config_file}")
        else:
            config_file = _find_config_file(Path.cwd())

        data = _load_config_data(config_file) if config_file else None
        return cls.from_dict(data or {}, config_path=config_file if data is not None else None)

    @classmethod
    def from_dict(cls, data: dict, config_path: Optional[Path] = None) -> "GroundlineConfig":
        model_section = _section(data, "model")
        resolver_section = _section(data, "resolver")
        defaults = ResolverSettings()

        model_name = os.environ.get("GROUNDLINE_MODEL") or str(model_section.get("model", DEFAULT_MODEL))
        timeout_value = os.environ.get("GROUNDLINE_TIMEOUT_MS") or model_section.get("timeout_ms", DEFAULT_TIMEOUT_MS)

        model_call = ModelCallSettings(
            endpoint=str(model_section.get("endpoint", DEFAULT_ENDPOINT)),
            model=model_name,
            timeout_ms=_as_int(timeout_value, name="[model].timeout_ms"),
            max_tokens=_as_int(model_section.get("max_tokens", 1800), name="[model].max_tokens"),
            relaxed_temperature=_as_float(
                model_section.get("relaxed_temperature", 0.1),
                name="[model].relaxed_temperature",
            ),
            strict_temperature=_as_float(
                model_section.get("strict_temperature", 0.0),
                name="[model].strict_temperature",
            ),
            app_title=str(model_section.get("app_title", "Groundline")),
        )

        resolver = ResolverSettings(
            token_overlap_threshold=_as_float(
                resolver_section.get("token_overlap_threshold", defaults.token_overlap_threshold),
                name="[resolver].token_overlap_threshold",
            ),
            min_quote_chars=_as_int(
                resolver_section.get("min_quote_chars", defaults.min_quote_chars),
                name="[resolver].min_quote_chars",
            ),
            max_timestamp_distance_sec=_as_float(
                resolver_section.get("max_timestamp_distance_sec", defaults.max_timestamp_distance_sec),
                name="[resolver].max_timestamp_distance_sec",
            ),
            min_range_duration_sec=_as_float(
                resolver_section.get("min_range_duration_sec", defaults.min_range_duration_sec),
                name="[resolver].min_range_duration_sec",
            ),
            boundary_epsilon_sec=_as_float(
                resolver_section.get("boundary_epsilon_sec", defaults.boundary_epsilon_sec),
                name="[resolver].boundary_epsilon_sec",
            ),
            min_transcript_segments=_as_int(
                resolver_section.get("min_transcript_segments", defaults.min_transcript_segments),
                name="[resolver].min_transcript_segments",
            ),
            duplicate_window_sec=_as_float(
                resolver_section.get("duplicate_window_sec", defaults.duplicate_window_sec),
                name="[resolver].duplicate_window_sec",
            ),
        )

        return cls(model_call=model_call, resolver=resolver, config_path=config_path)


def resolve_api_key(cli_api_key: Optional[str] = None) -> Optional[str]:
    """API key precedence: CLI option, GROUNDLINE_API_KEY, OPENROUTER_API_KEY."""
    for value in (cli_api_key, os.environ.get("GROUNDLINE_API_KEY"), os.environ.get("OPENROUTER_API_KEY")):
        if value and value.strip():
            return value.strip()
    return None
