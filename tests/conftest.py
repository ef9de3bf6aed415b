"""
Pytest configuration and shared fixtures.

This module provides:
- Common fixtures for test configuration
- Helper functions for test data creation
- A scripted frame source standing in for the microphone
"""
import json
import logging
import sys
import tempfile
import wave
from pathlib import Path
from typing import List, Optional, Tuple

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import config_loader
import pytest
import numpy as np

from pulse.features import compute_db_spectrum

# Test constants
TEST_SAMPLE_RATE = 44100
TEST_FREQUENCY = 1000  # Hz
TEST_DURATION = 0.5  # seconds
TEST_FFT_SIZE = 2048
INT16_FULL_SCALE = 32768.0


@pytest.fixture(autouse=True)
def restore_root_logger():
    """Undo setup_logging calls made by a test."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def config():
    """Default configuration for testing."""
    return config_loader.get_default_config()


@pytest.fixture
def tmp_config(tmp_path):
    """
    Configuration whose storage lives under ``tmp_path``.

    Returns:
        Tuple of (config_path, merged config)
    """
    overrides = {
        "storage": {
            "settings_file": str(tmp_path / "settings.json"),
            "history_file": str(tmp_path / "detections.csv"),
        },
        "audio": {"tick_interval_ms": 10},
    }
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps(overrides))
    return config_path, config_loader.load_config(config_path)


# Helper functions for test data creation

def create_test_audio_samples(
    sample_rate: int = TEST_SAMPLE_RATE,
    duration: float = TEST_DURATION,
    frequency: float = TEST_FREQUENCY,
    amplitude: float = 0.5
) -> np.ndarray:
    """
    Create test audio samples (sine wave).

    Args:
        sample_rate: Sample rate in Hz
        duration: Duration in seconds
        frequency: Frequency in Hz
        amplitude: Amplitude (0.0 to 1.0)

    Returns:
        int16 array of audio samples
    """
    t = np.arange(int(sample_rate * duration)) / sample_rate
    samples = (np.sin(2 * np.pi * frequency * t) * amplitude * INT16_FULL_SCALE).astype(np.int16)
    return samples


def create_test_wav_file(
    sample_rate: int = TEST_SAMPLE_RATE,
    duration: float = TEST_DURATION,
    frequency: float = TEST_FREQUENCY,
    amplitude: float = 0.5
) -> Tuple[Path, int]:
    """
    Create a temporary WAV file with test audio.

    Args:
        sample_rate: Sample rate in Hz
        duration: Duration in seconds
        frequency: Frequency in Hz
        amplitude: Amplitude (0.0 to 1.0)

    Returns:
        Tuple of (file_path, sample_rate)
    """
    with tempfile.NamedTemporaryFile(suffix=".wav", delete=False) as tmp:
        tmp_path = Path(tmp.name)

    samples = create_test_audio_samples(sample_rate, duration, frequency, amplitude)

    with wave.open(str(tmp_path), "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        wf.writeframes(samples.tobytes())

    return tmp_path, sample_rate


def create_test_csv_file(rows: list, headers: list = None) -> Path:
    """
    Create a temporary CSV file with test data.

    Args:
        rows: List of rows (each row is a list of values)
        headers: Optional list of header names

    Returns:
        Path to temporary CSV file
    """
    import csv

    with tempfile.NamedTemporaryFile(mode='w', suffix='.csv', delete=False, newline='') as tmp:
        tmp_path = Path(tmp.name)
        writer = csv.writer(tmp)

        if headers:
            writer.writerow(headers)

        for row in rows:
            writer.writerow(row)

    return tmp_path


def tone_frame(
    frequency: float = TEST_FREQUENCY,
    amplitude: float = 0.5,
    fft_size: int = TEST_FFT_SIZE,
    sample_rate: int = TEST_SAMPLE_RATE,
) -> np.ndarray:
    """SpectralFrame (dB) of a pure tone."""
    t = np.arange(fft_size) / sample_rate
    return compute_db_spectrum(amplitude * np.sin(2 * np.pi * frequency * t))


def silent_frame(fft_size: int = TEST_FFT_SIZE) -> np.ndarray:
    """SpectralFrame of digital silence: every bin is -inf."""
    return np.full(fft_size // 2, -np.inf)


class ScriptedSource:
    """
    Frame source that replays a fixed list of frames.

    The last frame repeats once the script runs out. ``fail_with`` makes
    ``start`` raise, like a device that refuses to open.
    """

    def __init__(self, frames: List[np.ndarray], fail_with: Optional[Exception] = None):
        self.frames = list(frames)
        self.fail_with = fail_with
        self.running = False
        self.start_calls = 0
        self.stop_calls = 0
        self.pumps = 0
        self._index = 0

    def start(self):
        self.start_calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        self.running = True

    def stop(self):
        self.stop_calls += 1
        self.running = False

    def is_running(self):
        return self.running

    def pump(self):
        self.pumps += 1
        return 0

    def current_frame(self):
        if not self.running or not self.frames:
            return None
        frame = self.frames[min(self._index, len(self.frames) - 1)]
        self._index += 1
        return frame


class StepClock:
    """Millisecond clock that advances by ``step_ms`` on every read."""

    def __init__(self, start_ms: float = 1_700_000_000_000.0, step_ms: float = 50.0):
        self.now = start_ms
        self.step_ms = step_ms

    def __call__(self):
        value = self.now
        self.now += self.step_ms
        return value
