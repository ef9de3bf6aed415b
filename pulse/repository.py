"""
Repository pattern for data persistence.

``SettingsRepository`` stores the configuration blob (detection settings
plus the reference fingerprint) as JSON. ``DetectionHistory`` appends
detection events to a CSV file.

Single Responsibility: Handle file I/O operations.
"""
import csv
import json
import math
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np

from logger import get_logger

from .detector import MAX_COOLDOWN_MS, DetectionConfig, DetectionEvent, ThresholdDirection

log = get_logger(__name__)

HISTORY_COLUMNS = ["timestamp", "distance", "threshold", "direction"]
DEFAULT_MAX_RECORDS = 1000


@dataclass
class Settings:
    """Operator settings that survive restarts."""
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    reference: Optional[List[float]] = None
    webhook_url: str = ""

    def to_blob(self) -> Dict[str, Any]:
        return {
            "threshold": self.detection.threshold,
            "thresholdDirection": self.detection.direction.value,
            "cooldownMs": self.detection.cooldown_ms,
            "referenceFingerprint": list(self.reference) if self.reference is not None else None,
            "webhookUrl": self.webhook_url,
        }


def _parse_threshold(blob: Dict[str, Any]) -> float:
    value = blob.get("threshold")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"not a number: {value!r}")
    if not math.isfinite(value) or not 0.0 <= value <= 1.0:
        raise ValueError(f"out of range: {value!r}")
    return float(value)


def _parse_direction(blob: Dict[str, Any]) -> ThresholdDirection:
    return ThresholdDirection(blob.get("thresholdDirection"))


def _parse_cooldown(blob: Dict[str, Any]) -> int:
    if "cooldownMs" in blob:
        value = blob["cooldownMs"]
    elif isinstance(blob.get("cooldownSeconds"), (int, float)) and math.isfinite(blob["cooldownSeconds"]):
        # Older blobs stored seconds
        value = round(blob["cooldownSeconds"] * 1000)
    else:
        raise ValueError("missing")
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value) or value != int(value):
        raise ValueError(f"not an integer: {value!r}")
    value = int(value)
    if not 0 <= value <= MAX_COOLDOWN_MS:
        raise ValueError(f"out of range: {value!r}")
    return value


def parse_reference(value: Any, expected_length: Optional[int] = None) -> Optional[List[float]]:
    """
    Validate a stored reference fingerprint.

    Raises:
        ValueError: If ``value`` is neither null nor a finite number list
    """
    if value is None:
        return None
    if not isinstance(value, list) or not value:
        raise ValueError("expected a non-empty list")
    if any(isinstance(v, bool) or not isinstance(v, (int, float)) for v in value):
        raise ValueError("expected numbers only")
    fp = [float(v) for v in value]
    if not all(math.isfinite(v) for v in fp):
        raise ValueError("contains non-finite values")
    if expected_length is not None and len(fp) != expected_length:
        raise ValueError(f"expected {expected_length} values, got {len(fp)}")
    return fp


def settings_from_blob(
    blob: Any,
    defaults: Optional[Settings] = None,
    expected_length: Optional[int] = None,
) -> Settings:
    """
    Build Settings from a decoded blob, field by field.

    Any missing or corrupt field falls back to its value in ``defaults``.
    """
    defaults = defaults or Settings()
    if not isinstance(blob, dict):
        log.warning("Settings blob is not an object; using defaults")
        return Settings(defaults.detection, defaults.reference, defaults.webhook_url)

    def field_or_default(name, parser, default):
        try:
            return parser(blob)
        except (ValueError, TypeError) as e:
            log.warning("Settings field %s invalid (%s); using default %r", name, e, default)
            return default

    threshold = field_or_default("threshold", _parse_threshold, defaults.detection.threshold)
    direction = field_or_default("thresholdDirection", _parse_direction, defaults.detection.direction)
    cooldown_ms = field_or_default("cooldownMs", _parse_cooldown, defaults.detection.cooldown_ms)
    reference = field_or_default(
        "referenceFingerprint",
        lambda b: parse_reference(b.get("referenceFingerprint"), expected_length),
        defaults.reference,
    )

    webhook_url = blob.get("webhookUrl", blob.get("haWebhookUrl", defaults.webhook_url))
    if not isinstance(webhook_url, str):
        log.warning("Settings field webhookUrl invalid; using default")
        webhook_url = defaults.webhook_url

    return Settings(
        detection=DetectionConfig(threshold=threshold, direction=direction, cooldown_ms=cooldown_ms),
        reference=reference,
        webhook_url=webhook_url,
    )


class SettingsRepository:
    """
    Repository for the settings blob.

    Single Responsibility: Settings JSON file operations.
    """

    def __init__(self, path, defaults: Optional[Settings] = None, expected_length: Optional[int] = None):
        """
        Initialize settings repository.

        Args:
            path: JSON file location
            defaults: Values used for missing or corrupt fields
            expected_length: Required reference length, if known
        """
        self.path = Path(path)
        self.defaults = defaults or Settings()
        self.expected_length = expected_length

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "SettingsRepository":
        defaults = Settings(
            detection=DetectionConfig.from_config(config),
            webhook_url=config["notification"].get("webhook_url") or "",
        )
        return cls(
            config["storage"]["settings_file"],
            defaults=defaults,
            expected_length=config["analysis"]["bands"],
        )

    def load(self) -> Settings:
        """Load settings; never fails, falls back to defaults instead."""
        if not self.path.exists():
            log.info("No settings file at %s; using defaults", self.path)
            return Settings(self.defaults.detection, self.defaults.reference, self.defaults.webhook_url)

        try:
            with self.path.open(encoding="utf-8") as f:
                blob = json.load(f)
        except (OSError, ValueError) as e:
            log.warning("Failed to read settings %s (%s); using defaults", self.path, e)
            blob = {}

        return settings_from_blob(blob, self.defaults, self.expected_length)

    def save(self, settings: Settings) -> None:
        """Write settings atomically."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".settings-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(settings.to_blob(), f, indent=2)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        log.debug("Saved settings to %s", self.path)


def reference_to_list(fingerprint) -> Optional[List[float]]:
    if fingerprint is None:
        return None
    return [float(v) for v in np.asarray(fingerprint).tolist()]


class DetectionHistory:
    """
    Repository for detection events.

    Single Responsibility: Detection CSV file operations.
    """

    def __init__(self, path, max_records: Optional[int] = DEFAULT_MAX_RECORDS):
        self.path = Path(path)
        self.max_records = max_records or None
        self._ensure_header()

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "DetectionHistory":
        storage = config["storage"]
        return cls(storage["history_file"], storage.get("max_history_records", DEFAULT_MAX_RECORDS))

    def _ensure_header(self) -> None:
        """Ensure CSV file has header row."""
        if not self.path.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("w", newline="") as f:
                csv.writer(f).writerow(HISTORY_COLUMNS)

    def save(self, event: DetectionEvent, config: DetectionConfig) -> None:
        """
        Append one event.

        Write errors are logged; a detection is never lost to the caller
        because of history I/O.
        """
        try:
            with self.path.open("a", newline="") as f:
                csv.writer(f).writerow([
                    event.isoformat(),
                    f"{event.distance:.4f}",
                    f"{config.threshold:.4f}",
                    config.direction.value,
                ])
            if self.max_records:
                self._trim()
        except OSError as e:
            log.error("Failed to write history file %s: %s", self.path, e)

    def _trim(self) -> None:
        """Keep only the newest ``max_records`` rows."""
        with self.path.open(newline="") as f:
            rows = list(csv.reader(f))
        if len(rows) - 1 <= self.max_records:
            return
        with self.path.open("w", newline="") as f:
            writer = csv.writer(f)
            writer.writerow(HISTORY_COLUMNS)
            writer.writerows(rows[-self.max_records:])

    def clear(self) -> None:
        """Drop all recorded events, keeping the header."""
        with self.path.open("w", newline="") as f:
            csv.writer(f).writerow(HISTORY_COLUMNS)
        log.info("Detection history cleared")
