"""
Reference fingerprint storage and capture.

The store holds at most one reference. Both capture paths (a live window
and an offline waveform) feed the same FingerprintExtractor, and every
capture replaces the previous reference outright.

Live capture policy:
    - the most recent accepted frame seen in the window becomes the reference
    - cancelling keeps a partial-window snapshot if any frame was seen,
      otherwise the capture is aborted and the old reference stays
"""
import enum
from pathlib import Path
from typing import BinaryIO, Optional, Union

import numpy as np

from logger import get_logger

from .errors import DecodeFailure
from .features import compute_db_spectrum, find_peak_window, load_waveform
from .fingerprint import FingerprintExtractor

log = get_logger(__name__)


class CaptureOutcome(enum.Enum):
    COMPLETED = "completed"   # full window, reference replaced
    PARTIAL = "partial"       # cancelled, reference replaced from partial window
    ABORTED = "aborted"       # no usable frame, reference untouched


class LiveCapture:
    """
    One live capture window.

    Created by ``ReferenceStore.begin_live_capture``; fed one frame per tick
    through ``observe`` until the window expires or ``cancel`` is called.
    """

    def __init__(self, store: "ReferenceStore", duration_ms: int, started_ms: float):
        self._store = store
        self.duration_ms = duration_ms
        self.started_ms = started_ms
        self.frames_seen = 0
        self._latest: Optional[np.ndarray] = None
        self._outcome: Optional[CaptureOutcome] = None

    @property
    def active(self) -> bool:
        return self._outcome is None

    @property
    def outcome(self) -> Optional[CaptureOutcome]:
        return self._outcome

    def remaining_ms(self, now_ms: float) -> float:
        return max(0.0, self.duration_ms - (now_ms - self.started_ms))

    def observe(self, frame, now_ms: float) -> Optional[CaptureOutcome]:
        """
        Record a frame and close the window once it has expired.

        Returns:
            The outcome when this call completed the capture, else None
        """
        if not self.active:
            return self._outcome

        if self._store.extractor.accepts(frame):
            self._latest = np.array(frame, dtype=np.float64)
            self.frames_seen += 1

        if now_ms - self.started_ms >= self.duration_ms:
            return self._finish(CaptureOutcome.COMPLETED)
        return None

    def expire(self, now_ms: float) -> Optional[CaptureOutcome]:
        """Close the window if its duration has run out, without a new frame."""
        if not self.active:
            return self._outcome
        if now_ms - self.started_ms >= self.duration_ms:
            return self._finish(CaptureOutcome.COMPLETED)
        return None

    def cancel(self) -> CaptureOutcome:
        """Stop early, committing whatever the window has seen so far."""
        if not self.active:
            return self._outcome
        return self._finish(CaptureOutcome.PARTIAL)

    def _finish(self, outcome: CaptureOutcome) -> CaptureOutcome:
        if self._latest is None:
            log.warning("Live capture ended without a usable frame; reference unchanged")
            outcome = CaptureOutcome.ABORTED
        else:
            self._store.replace(self._store.extractor.extract(self._latest))
        self._outcome = outcome
        self._store._release(self)
        log.info("Live capture %s after %d frame(s)", outcome.value, self.frames_seen)
        return outcome


class ReferenceStore:
    """
    Holds the single active reference fingerprint.

    Args:
        extractor: Extractor shared with the live detection path
        fft_size: Analysis window length used for waveform imports
        fingerprint: Optional initial reference (e.g. from saved settings)
    """

    def __init__(
        self,
        extractor: FingerprintExtractor,
        fft_size: int = 2048,
        fingerprint: Optional[np.ndarray] = None,
    ):
        self.extractor = extractor
        self.fft_size = fft_size
        self._fingerprint: Optional[np.ndarray] = None
        self._session: Optional[LiveCapture] = None
        if fingerprint is not None:
            self.replace(fingerprint)

    @property
    def current(self) -> Optional[np.ndarray]:
        return self._fingerprint

    @property
    def has_reference(self) -> bool:
        return self._fingerprint is not None

    @property
    def live_capture(self) -> Optional[LiveCapture]:
        """The open capture window, if any."""
        return self._session

    def replace(self, fingerprint) -> None:
        """
        Atomically install a new reference.

        Raises:
            ValueError: If the fingerprint is not a finite 1-D vector
        """
        fp = np.array(fingerprint, dtype=np.float64)
        if fp.ndim != 1 or fp.size == 0 or not np.all(np.isfinite(fp)):
            raise ValueError("Reference fingerprint must be a non-empty finite 1-D vector")
        if fp.shape[0] != self.extractor.bands:
            log.warning(
                "Reference has %d bands but the extractor produces %d; it will never match",
                fp.shape[0], self.extractor.bands,
            )
        fp.setflags(write=False)
        self._fingerprint = fp

    def clear(self) -> None:
        """Remove the reference, disabling detection."""
        self._fingerprint = None
        log.info("Reference fingerprint cleared")

    def begin_live_capture(self, duration_ms: int, now_ms: float) -> LiveCapture:
        """
        Open a live capture window of ``duration_ms``.

        Raises:
            ValueError: If duration_ms is not positive
            RuntimeError: If a capture is already in progress
        """
        if duration_ms <= 0:
            raise ValueError("duration_ms must be positive")
        if self._session is not None:
            raise RuntimeError("A live capture is already in progress")
        self._session = LiveCapture(self, duration_ms, now_ms)
        log.info("Live capture started (%d ms)", duration_ms)
        return self._session

    def _release(self, session: LiveCapture) -> None:
        if self._session is session:
            self._session = None

    def capture_from_waveform(self, samples: np.ndarray, sample_rate: int) -> np.ndarray:
        """
        Replace the reference from a decoded PCM waveform.

        The analysis window is the ``fft_size`` samples centred on the peak
        absolute amplitude.

        Returns:
            The new reference fingerprint

        Raises:
            DecodeFailure: If the waveform is empty or carries no energy
        """
        samples = np.nan_to_num(np.asarray(samples, dtype=np.float64).reshape(-1))
        if samples.size == 0:
            raise DecodeFailure("Waveform contains no samples")

        if sample_rate != self.extractor.sample_rate:
            log.warning(
                "Waveform sample rate (%d Hz) doesn't match analysis sample rate (%d Hz). "
                "Matching may be inaccurate.",
                sample_rate, self.extractor.sample_rate,
            )

        window = find_peak_window(samples, self.fft_size)
        fingerprint = self.extractor.extract(compute_db_spectrum(window))
        if not np.any(fingerprint):
            raise DecodeFailure("Waveform carries no detectable energy")

        self.replace(fingerprint)
        log.info("Reference captured from waveform (%d samples @ %d Hz)", samples.size, sample_rate)
        return self.current

    def capture_from_file(self, source: Union[str, Path, BinaryIO]) -> np.ndarray:
        """Decode an audio file and capture the reference from it."""
        samples, sr = load_waveform(source)
        return self.capture_from_waveform(samples, sr)
