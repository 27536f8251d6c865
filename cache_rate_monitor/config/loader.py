"""
Configuration management and loading.

Holds the tunable constants of the monitor and loads overrides from YAML.
"""

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Tuple

import yaml


MINUTE_MS = 60_000

# Window shape
WINDOW_MINUTES = 60
RECENT_MINUTES = 15
COLD_START_MINUTES = 10
EVAL_INTERVAL_MS = MINUTE_MS

# Sufficiency floors. These count tokens, not requests.
BASELINE_DENOM_TOKENS_MIN = 10_000
RECENT_DENOM_TOKENS_MIN = 3_000
BASELINE_SAMPLES_MIN = 30
RECENT_SAMPLES_MIN = 10
COLD_RECENT_DENOM_TOKENS_MIN = 2_000
COLD_RECENT_SAMPLES_MIN = 5

# Rule thresholds
BASELINE_HIT_RATE_MIN = 0.05
DROP_RATIO_MIN = 0.25
DROP_ABS_MIN = 0.05
# 0.9 of non-creation tokens, expressed as a share of the full denominator
LEGACY_CREATE_SHARE_TARGET = 0.9
CREATE_SHARE_MIN = LEGACY_CREATE_SHARE_TARGET / (1 + LEGACY_CREATE_SHARE_TARGET)
CREATE_READ_IMBALANCE_MIN = 3.0
NO_READ_TOKENS_MAX = 0

# Correlation
SUPPORTED_CLI_KEYS = ("claude", "codex")
NON_CACHING_MODEL_KEYWORDS = ("haiku",)
PENDING_TTL_MS = 10 * MINUTE_MS
MODEL_NAME_MAX_LENGTH = 200

# Alerts
ALERT_COOLDOWN_MS = 30 * MINUTE_MS


@dataclass(frozen=True)
class WindowConfig:
    """Shape of the sliding window and evaluation cadence."""
    window_minutes: int = WINDOW_MINUTES
    recent_minutes: int = RECENT_MINUTES
    cold_start_minutes: int = COLD_START_MINUTES
    eval_interval_ms: int = EVAL_INTERVAL_MS

    def __post_init__(self):
        """Validate the window can be split into recent and baseline parts."""
        if self.window_minutes <= 0:
            raise ValueError("window_minutes must be > 0")
        if self.recent_minutes <= 0:
            raise ValueError("recent_minutes must be > 0")
        if self.recent_minutes >= self.window_minutes:
            raise ValueError("recent_minutes must be smaller than window_minutes")
        if self.cold_start_minutes < 0:
            raise ValueError("cold_start_minutes cannot be negative")
        if self.eval_interval_ms <= 0:
            raise ValueError("eval_interval_ms must be > 0")

    @property
    def baseline_minutes(self) -> int:
        return self.window_minutes - self.recent_minutes


@dataclass(frozen=True)
class ThresholdConfig:
    """Sufficiency floors and rule thresholds."""
    baseline_denom_tokens_min: int = BASELINE_DENOM_TOKENS_MIN
    recent_denom_tokens_min: int = RECENT_DENOM_TOKENS_MIN
    baseline_samples_min: int = BASELINE_SAMPLES_MIN
    recent_samples_min: int = RECENT_SAMPLES_MIN
    cold_recent_denom_tokens_min: int = COLD_RECENT_DENOM_TOKENS_MIN
    cold_recent_samples_min: int = COLD_RECENT_SAMPLES_MIN
    baseline_hit_rate_min: float = BASELINE_HIT_RATE_MIN
    drop_ratio_min: float = DROP_RATIO_MIN
    drop_abs_min: float = DROP_ABS_MIN
    create_share_min: float = CREATE_SHARE_MIN
    create_read_imbalance_min: float = CREATE_READ_IMBALANCE_MIN
    no_read_tokens_max: int = NO_READ_TOKENS_MAX

    def __post_init__(self):
        """Validate thresholds are within meaningful ranges."""
        for f in fields(self):
            if getattr(self, f.name) < 0:
                raise ValueError(f"{f.name} cannot be negative")
        for name in ("baseline_hit_rate_min", "drop_ratio_min", "drop_abs_min", "create_share_min"):
            if getattr(self, name) > 1:
                raise ValueError(f"{name} must be between 0 and 1")


@dataclass(frozen=True)
class CorrelationConfig:
    """Rules for matching request starts with their finish events."""
    supported_cli_keys: Tuple[str, ...] = SUPPORTED_CLI_KEYS
    non_caching_model_keywords: Tuple[str, ...] = NON_CACHING_MODEL_KEYWORDS
    pending_ttl_ms: int = PENDING_TTL_MS
    model_name_max_length: int = MODEL_NAME_MAX_LENGTH

    def __post_init__(self):
        """Validate correlation settings."""
        if not self.supported_cli_keys:
            raise ValueError("supported_cli_keys cannot be empty")
        if self.pending_ttl_ms <= 0:
            raise ValueError("pending_ttl_ms must be > 0")
        if self.model_name_max_length <= 0:
            raise ValueError("model_name_max_length must be > 0")


@dataclass(frozen=True)
class AlertConfig:
    """Alert deduplication settings."""
    cooldown_ms: int = ALERT_COOLDOWN_MS

    def __post_init__(self):
        if self.cooldown_ms < 0:
            raise ValueError("cooldown_ms cannot be negative")


@dataclass(frozen=True)
class MonitorConfig:
    """Complete monitor configuration."""
    window: WindowConfig = field(default_factory=WindowConfig)
    thresholds: ThresholdConfig = field(default_factory=ThresholdConfig)
    correlation: CorrelationConfig = field(default_factory=CorrelationConfig)
    alerts: AlertConfig = field(default_factory=AlertConfig)


_SECTIONS = {
    'window': WindowConfig,
    'thresholds': ThresholdConfig,
    'correlation': CorrelationConfig,
    'alerts': AlertConfig,
}

_TUPLE_KEYS = {'supported_cli_keys', 'non_caching_model_keywords'}


def load_monitor_config(path: str) -> MonitorConfig:
    """Load and validate monitor configuration from a YAML file.

    Every section and key is optional; anything left out keeps its default.
    Unknown keys are rejected so that a typo never silently falls back to a
    default threshold.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated MonitorConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Monitor config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if raw_config is None:
        return MonitorConfig()
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    unknown_keys = set(raw_config.keys()) - set(_SECTIONS)
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    sections = {}
    for name, section_cls in _SECTIONS.items():
        data = raw_config.get(name) or {}
        if not isinstance(data, dict):
            raise ValueError(f"'{name}' must be a dictionary")
        sections[name] = _parse_section(section_cls, data, name)

    return MonitorConfig(**sections)


def _parse_section(section_cls: type, data: Dict[str, Any], path: str) -> Any:
    """Parse one configuration section into its dataclass.

    Args:
        section_cls: Dataclass describing the section
        data: Raw section data
        path: Section name for error messages

    Returns:
        Validated section dataclass

    Raises:
        ValueError: If the section holds unknown keys or bad values
    """
    known = {f.name: f for f in fields(section_cls)}
    unknown_keys = set(data.keys()) - set(known)
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")

    values = {}
    for key, value in data.items():
        if key in _TUPLE_KEYS:
            if not isinstance(value, list) or not all(isinstance(v, str) and v for v in value):
                raise ValueError(f"'{key}' in {path} must be a list of non-empty strings")
            values[key] = tuple(v.strip().lower() for v in value)
            continue

        # bool is an int subclass; a YAML "yes" must not become a threshold
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"'{key}' in {path} must be a number")
        default = known[key].default
        values[key] = int(value) if isinstance(default, int) and float(value).is_integer() else value

    return section_cls(**values)
