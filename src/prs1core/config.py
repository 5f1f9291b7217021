"""Configuration management for prs1core."""

import logging
import os
import tomllib

from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import tomli_w

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from prs1core.constants import (
    DEFAULT_APP_DIR,
    DEFAULT_CONFIG_FILE,
    AggregationConstants,
    BreathAnalysisConstants,
    EDFConstants,
    EpisodeConstants,
    FrameDecodingConstants,
    RecordDecodingConstants,
    WaveformIndexConstants,
)

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Raised when a configuration value cannot be parsed or validated."""


def get_config_path() -> Path:
    """
    Get the path to the configuration file.

    Returns:
        Path to ~/.prs1core/config.toml
    """
    return DEFAULT_APP_DIR / DEFAULT_CONFIG_FILE


def load_config() -> dict[str, Any]:
    """
    Load configuration from TOML file.

    Returns:
        Configuration dictionary. Returns empty dict if file doesn't exist
        or is corrupted.
    """
    config_path = get_config_path()

    if not config_path.exists():
        return {}

    try:
        with open(config_path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning(f"Failed to load config from {config_path}: {e}")
        logger.warning("Treating config as empty. Fix or delete the file to resolve.")
        return {}


def save_config(config: dict[str, Any]) -> None:
    """
    Save configuration to TOML file using atomic write.

    Args:
        config: Configuration dictionary to save

    Raises:
        PermissionError: If directory cannot be created or file cannot be written
    """
    config_path = get_config_path()

    config_dir = config_path.parent
    try:
        os.makedirs(config_dir, exist_ok=True)
    except PermissionError as e:
        raise PermissionError(
            f"Cannot create config directory {config_dir}: {e}"
        ) from e

    temp_path = config_path.with_suffix(".toml.tmp")

    try:
        with open(temp_path, "wb") as f:
            tomli_w.dump(config, f)

        os.replace(temp_path, config_path)

    except Exception:
        if temp_path.exists():
            temp_path.unlink()
        raise


# ============================================================================
# Typed settings
# ============================================================================


class DecoderSettings(BaseModel):
    """Frame and sub-record decoding options."""

    trust_frame_crc: bool = Field(
        default=True, description="Strip a matching trailing CRC16 from frames"
    )
    enforce_crc: bool = Field(
        default=False, description="Drop frames whose CRC does not match"
    )
    max_frames: int = Field(default=FrameDecodingConstants.MAX_FRAMES, gt=0)
    max_records_per_frame: int = Field(
        default=RecordDecodingConstants.MAX_RECORDS_PER_FRAME, gt=0
    )


class EDFSettings(BaseModel):
    """EDF channel classification keywords (case-insensitive substrings)."""

    flow_keywords: list[str] = Field(
        default_factory=lambda: list(EDFConstants.FLOW_KEYWORDS)
    )
    pressure_keywords: list[str] = Field(
        default_factory=lambda: list(EDFConstants.PRESSURE_KEYWORDS)
    )
    leak_keywords: list[str] = Field(
        default_factory=lambda: list(EDFConstants.LEAK_KEYWORDS)
    )
    relief_keywords: list[str] = Field(
        default_factory=lambda: list(EDFConstants.RELIEF_KEYWORDS)
    )


class BreathSettings(BaseModel):
    """Breath segmentation bounds and leak rejection."""

    min_breath_sec: float = Field(default=BreathAnalysisConstants.MIN_BREATH_SEC, gt=0)
    max_breath_sec: float = Field(default=BreathAnalysisConstants.MAX_BREATH_SEC, gt=0)
    min_insp_sec: float = Field(default=BreathAnalysisConstants.MIN_INSP_SEC, ge=0)
    zero_eps: float = Field(default=BreathAnalysisConstants.ZERO_EPS, ge=0)
    leak_over_threshold: float = Field(
        default=BreathAnalysisConstants.LEAK_OVER_THRESHOLD
    )
    leak_reject_fraction: float = Field(
        default=BreathAnalysisConstants.LEAK_REJECT_FRACTION, ge=0, le=1
    )
    flow_gain: float = Field(default=BreathAnalysisConstants.FLOW_GAIN, gt=0)

    @model_validator(mode="after")
    def check_bounds(self) -> "BreathSettings":
        if self.max_breath_sec < self.min_breath_sec:
            raise ValueError("max_breath_sec must be >= min_breath_sec")
        return self


class WaveformSettings(BaseModel):
    """Boundary normalization thresholds for the waveform index."""

    max_overlap_ms_snap: int = Field(
        default=WaveformIndexConstants.MAX_OVERLAP_MS_SNAP, ge=0
    )
    max_gap_ms_snap: int = Field(default=WaveformIndexConstants.MAX_GAP_MS_SNAP, ge=0)


class EpisodeSettings(BaseModel):
    """Episode gap tolerance and minimum duration."""

    leak_min_duration_sec: int = Field(
        default=EpisodeConstants.LEAK_MIN_DURATION_SEC, ge=0
    )
    leak_gap_tolerance_sec: int = Field(
        default=EpisodeConstants.LEAK_GAP_TOLERANCE_SEC, ge=0
    )
    snore_max_gap_sec: int = Field(default=EpisodeConstants.SNORE_MAX_GAP_SEC, ge=0)
    high_fl_min_duration_sec: int = Field(
        default=EpisodeConstants.MINUTE_BAND_MIN_DURATION_SEC, ge=0
    )


class AggregationSettings(BaseModel):
    """Daily aggregation options."""

    leak_over_threshold: float = Field(default=AggregationConstants.LEAK_OVER_THRESHOLD)
    min_sample_segment_seconds: int = Field(
        default=AggregationConstants.MIN_SAMPLE_SEGMENT_SECONDS, ge=0
    )
    rolling_windows_minutes: list[int] = Field(
        default_factory=lambda: list(AggregationConstants.ROLLING_WINDOWS_MINUTES)
    )
    timezone: str = Field(default="UTC", description="IANA zone for day buckets")

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown time zone {v!r}") from e
        return v


class Settings(BaseModel):
    """All recognised configuration sections."""

    decoder: DecoderSettings = Field(default_factory=DecoderSettings)
    edf: EDFSettings = Field(default_factory=EDFSettings)
    breath: BreathSettings = Field(default_factory=BreathSettings)
    waveform: WaveformSettings = Field(default_factory=WaveformSettings)
    episodes: EpisodeSettings = Field(default_factory=EpisodeSettings)
    aggregation: AggregationSettings = Field(default_factory=AggregationSettings)


def load_settings(config: dict[str, Any] | None = None) -> Settings:
    """
    Validate the config file (or an explicit dict) into typed settings.

    Unknown sections such as ``[logging]`` are ignored here.

    Raises:
        ConfigError: If a recognised section holds an invalid value
    """
    raw = load_config() if config is None else config
    known = {k: v for k, v in raw.items() if k in Settings.model_fields}
    try:
        return Settings.model_validate(known)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


def _parse_value(text: str) -> Any:
    """Parse a CLI value as a TOML scalar or array, falling back to a string."""
    try:
        return tomllib.loads(f"v = {text}")["v"]
    except tomllib.TOMLDecodeError:
        return text


def set_config_value(key: str, value: str) -> None:
    """
    Set ``section.name`` in the config file after validating it.

    Args:
        key: Dotted key, e.g. ``breath.max_breath_sec``
        value: Value as typed on the command line

    Raises:
        ConfigError: If the key is malformed or the value fails validation
    """
    section, _, name = key.partition(".")
    if not section or not name:
        raise ConfigError(f"Config key must look like section.name, got {key!r}")

    config = load_config()
    config.setdefault(section, {})[name] = _parse_value(value)

    if section in Settings.model_fields:
        load_settings(config)

    save_config(config)
    logger.debug(f"Set config {key}={config[section][name]!r}")


def unset_config_value(key: str) -> bool:
    """
    Remove ``section.name`` from the config file.

    Empty sections are removed, and the file is deleted once empty.

    Returns:
        True if the key existed
    """
    section, _, name = key.partition(".")
    config = load_config()

    if section not in config or name not in config[section]:
        return False

    del config[section][name]
    if not config[section]:
        del config[section]

    if not config:
        config_path = get_config_path()
        if config_path.exists():
            config_path.unlink()
    else:
        save_config(config)
    return True
