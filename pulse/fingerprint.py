"""
Fingerprint extraction.

A fingerprint summarises one SpectralFrame as B band energies, optionally
log-compressed, then L2-normalised so that matching ignores absolute
loudness. Input with no detectable energy maps to the all-zero vector.

Single Responsibility: SpectralFrame -> Fingerprint.
"""
from typing import Any, Dict

import numpy as np

from .features import bin_frequencies, hz_to_mel

BANDING_LINEAR = "linear"
BANDING_MEL = "mel"

# Norms at or below this are treated as zero energy
NORM_EPS = 1e-12
# Cap on (db + ref_db) so band power cannot overflow float64 when squared
MAX_LEVEL_DB = 1000.0


class FingerprintExtractor:
    """
    Maps SpectralFrames to fixed-length unit fingerprints.

    Every setting is fixed for the lifetime of the instance so all
    fingerprints it produces are mutually comparable.

    Args:
        bands: Number of output bands (fingerprint length)
        banding: ``"mel"`` (perceptual) or ``"linear"``
        sample_rate: Sample rate of the audio behind the frames, in Hz
        min_freq_hz: Mel banding discards bins below this frequency
        ref_db: Calibration offset added before dB -> linear power
        log_compression: Apply ``log10(energy + 1)`` before normalising
    """

    def __init__(
        self,
        bands: int = 40,
        banding: str = BANDING_MEL,
        sample_rate: int = 44100,
        min_freq_hz: float = 20.0,
        ref_db: float = 100.0,
        log_compression: bool = True,
    ):
        if banding not in (BANDING_LINEAR, BANDING_MEL):
            raise ValueError(f"Unknown banding policy: {banding}")
        if bands <= 0:
            raise ValueError("bands must be positive")
        self.bands = bands
        self.banding = banding
        self.sample_rate = sample_rate
        self.min_freq_hz = min_freq_hz
        self.ref_db = ref_db
        self.log_compression = log_compression
        self._band_index_cache: Dict[int, np.ndarray] = {}

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "FingerprintExtractor":
        """Build an extractor from the ``analysis`` and ``audio`` sections."""
        analysis = config["analysis"]
        return cls(
            bands=analysis["bands"],
            banding=analysis["banding"],
            sample_rate=config["audio"]["sample_rate"],
            min_freq_hz=analysis["min_freq_hz"],
            ref_db=analysis["ref_db"],
            log_compression=analysis["log_compression"],
        )

    def accepts(self, frame) -> bool:
        """Whether ``frame`` is long enough to fill every band."""
        if frame is None:
            return False
        frame = np.asarray(frame)
        return frame.ndim == 1 and frame.shape[0] >= self.bands

    def band_indices(self, n_bins: int) -> np.ndarray:
        """
        Band index of each bin for a frame of ``n_bins`` bins.

        Discarded bins (below ``min_freq_hz`` under mel banding) get -1.
        """
        cached = self._band_index_cache.get(n_bins)
        if cached is not None:
            return cached

        if self.banding == BANDING_LINEAR:
            width = n_bins // self.bands
            indices = np.minimum(np.arange(n_bins) // width, self.bands - 1)
        else:
            freqs = bin_frequencies(n_bins, self.sample_rate)
            mel_min = hz_to_mel(self.min_freq_hz)
            mel_max = hz_to_mel(self.sample_rate / 2.0)
            position = (hz_to_mel(freqs) - mel_min) / (mel_max - mel_min)
            indices = np.clip(np.floor(position * self.bands), 0, self.bands - 1).astype(np.int64)
            indices[freqs < self.min_freq_hz] = -1

        indices = indices.astype(np.int64)
        self._band_index_cache[n_bins] = indices
        return indices

    def extract(self, frame) -> np.ndarray:
        """
        Compute the fingerprint of one SpectralFrame.

        Args:
            frame: 1-D array of dB magnitudes; ``-inf``/NaN bins carry no power

        Returns:
            float64 array of length ``bands`` with unit L2 norm, or all zeros

        Raises:
            ValueError: If the frame has fewer bins than bands
        """
        if not self.accepts(frame):
            raise ValueError(
                f"Frame must be 1-D with at least {self.bands} bins"
            )
        frame = np.asarray(frame, dtype=np.float64)
        indices = self.band_indices(frame.shape[0])

        finite = np.isfinite(frame)
        level = np.minimum(frame[finite] + self.ref_db, MAX_LEVEL_DB)
        power = np.zeros(frame.shape[0], dtype=np.float64)
        power[finite] = np.power(10.0, level / 20.0)

        used = indices >= 0
        energy = np.bincount(indices[used], weights=power[used], minlength=self.bands)

        if self.log_compression:
            energy = np.log10(energy + 1.0)

        norm = float(np.sqrt(np.dot(energy, energy)))
        if not np.isfinite(norm) or norm <= NORM_EPS:
            return np.zeros(self.bands, dtype=np.float64)
        return energy / max(norm, NORM_EPS)
