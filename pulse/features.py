"""
Spectral front end and waveform decoding.

This module turns PCM samples into SpectralFrames: arrays of dB magnitudes
covering 0..Nyquist, one value per FFT bin (``fft_size / 2`` bins, the
Nyquist bin is dropped). The live analyser and the offline waveform import
both go through ``compute_db_spectrum`` so that references captured either
way stay comparable.

Single Responsibility: Audio to spectrum conversion.
"""
from pathlib import Path
from typing import BinaryIO, Optional, Tuple, Union

import numpy as np
import soundfile as sf

from .errors import DecodeFailure

# Level meter range in dB
LEVEL_FLOOR_DB = -100.0
LEVEL_RANGE_DB = 80.0


def hz_to_mel(hz):
    """Convert frequency in Hz to the mel scale: m = 2595 * log10(1 + f/700)."""
    return 2595.0 * np.log10(1.0 + np.asarray(hz, dtype=np.float64) / 700.0)


def bin_frequencies(n_bins: int, sample_rate: int) -> np.ndarray:
    """Centre frequency of each of ``n_bins`` bins spanning 0..Nyquist."""
    return np.arange(n_bins, dtype=np.float64) * (sample_rate / 2.0) / n_bins


def magnitude_spectrum(window: np.ndarray) -> np.ndarray:
    """
    Compute the Hann-windowed magnitude spectrum of one analysis window.

    Args:
        window: float samples, length ``fft_size``

    Returns:
        ``fft_size / 2`` linear magnitudes scaled by ``1 / fft_size``
    """
    n = window.shape[0]
    spec = np.abs(np.fft.rfft(window * np.hanning(n)))
    return spec[:n // 2] / n


def to_db(magnitudes: np.ndarray) -> np.ndarray:
    """Convert linear magnitudes to dB. Silent bins become ``-inf``."""
    with np.errstate(divide="ignore"):
        return 20.0 * np.log10(magnitudes)


def compute_db_spectrum(window: np.ndarray) -> np.ndarray:
    """Unsmoothed SpectralFrame for a single analysis window."""
    return to_db(magnitude_spectrum(np.asarray(window, dtype=np.float64)))


def frame_level(frame: np.ndarray) -> float:
    """
    Input level meter in [0, 1] for a SpectralFrame.

    Non-finite bins count as the -100 dB floor.
    """
    if frame.size == 0:
        return 0.0
    db = np.where(np.isfinite(frame), frame, LEVEL_FLOOR_DB)
    db = np.maximum(db, LEVEL_FLOOR_DB)
    level = float(np.mean(db - LEVEL_FLOOR_DB)) / LEVEL_RANGE_DB
    return min(1.0, max(0.0, level))


def find_peak_window(samples: np.ndarray, size: int) -> np.ndarray:
    """
    Locate the analysis window of ``size`` samples centred on the peak.

    The window is clamped to the waveform bounds; waveforms shorter than
    ``size`` are zero-padded at the end.

    Raises:
        ValueError: If ``samples`` is empty
    """
    if samples.size == 0:
        raise ValueError("Cannot locate a window in an empty waveform")

    peak = int(np.argmax(np.abs(samples)))
    start = peak - size // 2
    start = max(0, min(start, samples.shape[0] - size))
    window = samples[start:start + size]
    if window.shape[0] < size:
        window = np.pad(window, (0, size - window.shape[0]))
    return window


def load_waveform(source: Union[str, Path, BinaryIO]) -> Tuple[np.ndarray, int]:
    """
    Decode an audio file to mono float32 samples.

    Any container libsndfile understands (WAV, FLAC, OGG, ...) is accepted.

    Args:
        source: Path or binary file object

    Returns:
        Tuple of (samples, sample_rate)

    Raises:
        DecodeFailure: If the data cannot be decoded
    """
    if isinstance(source, Path):
        source = str(source)
    try:
        data, sr = sf.read(source, dtype="float32", always_2d=True)
    except (RuntimeError, OSError, ValueError, TypeError) as e:
        raise DecodeFailure(f"Could not decode audio: {e}") from e

    samples = data.mean(axis=1) if data.shape[1] > 1 else data[:, 0]
    return samples.astype(np.float32), int(sr)


class SpectrumAnalyser:
    """
    Rolling analyser producing the current SpectralFrame.

    Keeps only the latest ``fft_size`` samples; older audio is discarded.
    Successive frames are smoothed over time like a browser AnalyserNode:
    ``m = smoothing * previous + (1 - smoothing) * current``.
    """

    def __init__(self, fft_size: int = 2048, smoothing: float = 0.2):
        self.fft_size = fft_size
        self.smoothing = smoothing
        self._buffer = np.zeros(fft_size, dtype=np.float32)
        self._filled = 0
        self._previous: Optional[np.ndarray] = None

    def push(self, samples: np.ndarray) -> None:
        """Append samples, dropping the oldest beyond ``fft_size``."""
        n = samples.shape[0]
        if n == 0:
            return
        if n >= self.fft_size:
            self._buffer = samples[-self.fft_size:].astype(np.float32)
        else:
            self._buffer = np.concatenate([self._buffer[n:], samples.astype(np.float32)])
        self._filled = min(self.fft_size, self._filled + n)

    def frame(self) -> Optional[np.ndarray]:
        """Return the current smoothed dB frame, or None before any audio."""
        if self._filled == 0:
            return None
        magnitudes = magnitude_spectrum(self._buffer.astype(np.float64))
        if self.smoothing > 0 and self._previous is not None:
            magnitudes = self.smoothing * self._previous + (1.0 - self.smoothing) * magnitudes
        self._previous = magnitudes
        return to_db(magnitudes)

    def reset(self) -> None:
        """Forget buffered audio and smoothing history."""
        self._buffer = np.zeros(self.fft_size, dtype=np.float32)
        self._filled = 0
        self._previous = None
