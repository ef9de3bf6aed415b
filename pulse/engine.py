"""
Per-tick detection pipeline.

One ``tick`` is one full pass: read the current frame, fingerprint it,
score it against the reference and advance the state machine. While a live
reference capture is open the frame goes to the capture window instead and
the state machine is not fed.

All engine state is touched only from the host loop calling ``tick``.
"""
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import numpy as np

from logger import get_logger

from .detector import DetectionConfig, DetectionEvent, DetectionStateMachine, Phase
from .features import frame_level
from .fingerprint import FingerprintExtractor
from .reference import CaptureOutcome, LiveCapture, ReferenceStore
from .similarity import MAX_DISTANCE, SimilarityScorer

log = get_logger(__name__)


def wall_clock_ms() -> float:
    return time.time() * 1000.0


@dataclass(frozen=True)
class DistanceSample:
    """Live feedback for one tick. Not authoritative detection state."""
    distance: float
    timestamp_ms: float
    level: float


@dataclass(frozen=True)
class TickResult:
    sample: DistanceSample
    event: Optional[DetectionEvent] = None
    capture_outcome: Optional[CaptureOutcome] = None


class PulseEngine:
    """
    Wires frame source, extractor, scorer, reference store and detector.

    Args:
        source: Object with ``start()``, ``stop()``, ``is_running()`` and
            ``current_frame()``
        extractor: Fingerprint extractor shared with the reference store
        scorer: Similarity scorer
        store: Reference store
        config: Initial detection config
        clock: Returns the current time in milliseconds
    """

    def __init__(
        self,
        source,
        extractor: FingerprintExtractor,
        scorer: SimilarityScorer,
        store: ReferenceStore,
        config: Optional[DetectionConfig] = None,
        clock: Callable[[], float] = wall_clock_ms,
    ):
        self.source = source
        self.extractor = extractor
        self.scorer = scorer
        self.store = store
        self.clock = clock
        self.detector = DetectionStateMachine(config, reference_present=store.has_reference)
        self._started = False

    @classmethod
    def from_config(cls, config: Dict[str, Any], source, reference=None, **kwargs) -> "PulseEngine":
        """Build an engine whose analysis settings come from ``config``."""
        extractor = FingerprintExtractor.from_config(config)
        store = ReferenceStore(extractor, config["analysis"]["fft_size"], fingerprint=reference)
        return cls(
            source,
            extractor,
            SimilarityScorer.from_config(config),
            store,
            DetectionConfig.from_config(config),
            **kwargs,
        )

    @property
    def detection_config(self) -> DetectionConfig:
        return self.detector.config

    @detection_config.setter
    def detection_config(self, config: DetectionConfig) -> None:
        self.detector.config = config

    @property
    def phase(self) -> Phase:
        return self.detector.phase

    @property
    def running(self) -> bool:
        return self._started and self.source.is_running()

    def start(self) -> None:
        """
        Acquire the capture resource.

        Raises:
            CaptureUnavailable: Reported once; the engine does not retry
        """
        if self._started:
            return
        self.source.start()
        self._started = True

    def stop(self) -> None:
        """Release the capture resource. Idempotent."""
        self._started = False
        self.source.stop()

    def begin_capture(self, duration_ms: int, now_ms: Optional[float] = None) -> LiveCapture:
        """Open a live reference capture window starting now."""
        now_ms = self.clock() if now_ms is None else now_ms
        return self.store.begin_live_capture(duration_ms, now_ms)

    def cancel_capture(self) -> Optional[CaptureOutcome]:
        """Cancel the open capture window, if any."""
        session = self.store.live_capture
        if session is None:
            return None
        outcome = session.cancel()
        self.detector.reference_present = self.store.has_reference
        return outcome

    def expire_capture(self, now_ms: Optional[float] = None) -> Optional[CaptureOutcome]:
        """Close the capture window once its duration has elapsed."""
        session = self.store.live_capture
        if session is None:
            return None
        outcome = session.expire(self.clock() if now_ms is None else now_ms)
        self.detector.reference_present = self.store.has_reference
        return outcome

    def clear_reference(self) -> None:
        self.store.clear()
        self.detector.reference_present = False

    def set_reference(self, fingerprint) -> None:
        self.store.replace(fingerprint)
        self.detector.reference_present = True

    def tick(self, now_ms: Optional[float] = None) -> Optional[TickResult]:
        """
        Run one pass of the pipeline.

        Returns:
            None when capture is not running or the frame is empty or too
            short; otherwise the tick's DistanceSample plus any event or
            finished capture
        """
        if not self.running:
            return None

        frame = self.source.current_frame()
        if not self.extractor.accepts(frame):
            return None

        now_ms = self.clock() if now_ms is None else now_ms
        frame = np.asarray(frame, dtype=np.float64)
        level = frame_level(frame)

        session = self.store.live_capture
        if session is not None:
            outcome = session.observe(frame, now_ms)
            self.detector.reference_present = self.store.has_reference
            return TickResult(
                sample=DistanceSample(MAX_DISTANCE, now_ms, level),
                capture_outcome=outcome,
            )

        fingerprint = self.extractor.extract(frame)
        reference = self.store.current
        distance = self.scorer.compare(reference, fingerprint) if reference is not None else MAX_DISTANCE

        self.detector.reference_present = reference is not None
        event = self.detector.on_tick(distance, now_ms)
        if event is not None:
            log.info("Detection at %s (distance %.3f)", event.isoformat(), event.distance)
        return TickResult(sample=DistanceSample(distance, now_ms, level), event=event)
