#!/usr/bin/env python3
"""Configuration loader for the audio pulse detector."""
import json
from pathlib import Path
from typing import Dict, Any, Optional, Tuple

from logger import get_logger
from pulse.audio import SAMPLE_FORMATS
from pulse.detector import MAX_COOLDOWN_MS

log = get_logger(__name__)

BANDING_POLICIES = ("linear", "mel")
METRIC_POLICIES = ("euclidean", "cosine")
THRESHOLD_DIRECTIONS = ("below", "above")


def get_default_config() -> Dict[str, Any]:
    """Return default configuration values."""
    return {
        "audio": {
            "device": "default",
            "sample_rate": 44100,
            "channels": 1,
            "sample_format": "S16_LE",
            "tick_interval_ms": 50
        },
        "analysis": {
            "fft_size": 2048,
            "bands": 40,
            "banding": "mel",
            "metric": "euclidean",
            "min_freq_hz": 20.0,
            "ref_db": 100.0,
            "log_compression": True,
            "smoothing": 0.2
        },
        "detection": {
            "threshold": 0.20,
            "threshold_direction": "below",
            "cooldown_ms": 1500
        },
        "capture": {
            "duration_ms": 1500
        },
        "notification": {
            "webhook_url": "",
            "event_name": "gas_meter_click",
            "timeout_sec": 5.0
        },
        "storage": {
            "settings_file": "data/settings.json",
            "history_file": "data/detections.csv",
            "max_history_records": 1000
        },
        "logging": {
            "level": "INFO",
            "file": None
        }
    }


def validate_config(config: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    """Validate configuration structure and values."""
    defaults = get_default_config()

    for key in defaults.keys():
        if key not in config:
            return False, f"Missing required config section: {key}"

    audio = config.get("audio", {})
    if not isinstance(audio.get("sample_rate"), int) or audio.get("sample_rate") <= 0:
        return False, "audio.sample_rate must be a positive integer"
    if not isinstance(audio.get("tick_interval_ms"), (int, float)) or audio.get("tick_interval_ms") <= 0:
        return False, "audio.tick_interval_ms must be positive"
    if audio.get("sample_format") not in SAMPLE_FORMATS:
        return False, f"audio.sample_format must be one of {tuple(SAMPLE_FORMATS)}"

    analysis = config.get("analysis", {})
    fft_size = analysis.get("fft_size")
    if not isinstance(fft_size, int) or fft_size < 64 or fft_size & (fft_size - 1):
        return False, "analysis.fft_size must be a power of two >= 64"
    bands = analysis.get("bands")
    if not isinstance(bands, int) or not 4 <= bands <= 256:
        return False, "analysis.bands must be an integer between 4 and 256"
    if bands > fft_size // 2:
        return False, "analysis.bands must not exceed fft_size / 2"
    if analysis.get("banding") not in BANDING_POLICIES:
        return False, f"analysis.banding must be one of {BANDING_POLICIES}"
    if analysis.get("metric") not in METRIC_POLICIES:
        return False, f"analysis.metric must be one of {METRIC_POLICIES}"
    if not 0 <= analysis.get("min_freq_hz", 0) < audio["sample_rate"] / 2:
        return False, "analysis.min_freq_hz must be between 0 and the Nyquist frequency"
    if not 0 <= analysis.get("smoothing", 0) < 1:
        return False, "analysis.smoothing must be in [0, 1)"

    detection = config.get("detection", {})
    threshold = detection.get("threshold")
    if not isinstance(threshold, (int, float)) or not 0 <= threshold <= 1:
        return False, "detection.threshold must be between 0 and 1"
    if detection.get("threshold_direction") not in THRESHOLD_DIRECTIONS:
        return False, f"detection.threshold_direction must be one of {THRESHOLD_DIRECTIONS}"
    cooldown = detection.get("cooldown_ms")
    if not isinstance(cooldown, int) or not 0 <= cooldown <= MAX_COOLDOWN_MS:
        return False, f"detection.cooldown_ms must be an integer between 0 and {MAX_COOLDOWN_MS}"

    capture = config.get("capture", {})
    if not isinstance(capture.get("duration_ms"), int) or capture.get("duration_ms") <= 0:
        return False, "capture.duration_ms must be a positive integer"

    max_records = get_config_value(config, "storage.max_history_records", 0)
    if not isinstance(max_records, int) or isinstance(max_records, bool) or max_records < 0:
        return False, "storage.max_history_records must be a non-negative integer"

    notification = config.get("notification", {})
    if notification.get("timeout_sec", 0) <= 0:
        return False, "notification.timeout_sec must be positive"

    return True, None


def load_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load configuration from JSON file, merging with defaults.

    Args:
        config_path: Path to config file. If None, looks for config.json in current directory.

    Returns:
        Merged configuration dictionary.

    Raises:
        ValueError: If config is invalid.
    """
    defaults = get_default_config()

    if config_path is None:
        config_path = Path("config.json")

    if not config_path.exists():
        log.info("Config file %s not found, using defaults", config_path)
        return defaults

    try:
        with config_path.open() as f:
            config = json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in config file {config_path}: {e}")

    merged = _deep_merge(defaults, config)

    is_valid, error_msg = validate_config(merged)
    if not is_valid:
        raise ValueError(f"Invalid configuration: {error_msg}")

    log.info("Loaded configuration from %s", config_path)
    return merged


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries, with override taking precedence."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def get_config_value(config: Dict[str, Any], path: str, default: Any = None) -> Any:
    """
    Get nested config value using dot notation.

    Example: get_config_value(config, "analysis.bands")
    """
    keys = path.split(".")
    value = config
    for key in keys:
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return default
    return value
