"""
Core components of the audio pulse detector.

The pipeline per tick is SpectralFrame -> FingerprintExtractor ->
SimilarityScorer -> DetectionStateMachine; everything else is a thin
collaborator around it.
"""

from .errors import PulseError, CaptureUnavailable, DecodeFailure, DeliveryFailure
from .features import (
    SpectrumAnalyser,
    compute_db_spectrum,
    find_peak_window,
    frame_level,
    load_waveform,
)
from .fingerprint import FingerprintExtractor
from .similarity import SimilarityScorer, MAX_DISTANCE
from .detector import (
    DetectionConfig,
    DetectionEvent,
    DetectionStateMachine,
    DetectorState,
    Phase,
    ThresholdDirection,
    TickInput,
    tick,
)
from .reference import CaptureOutcome, LiveCapture, ReferenceStore
from .audio import AudioCapture, LiveSpectrumSource
from .engine import DistanceSample, PulseEngine, TickResult
from .notify import WebhookNotifier, build_payload, get_webhook_config, send_webhook
from .repository import DetectionHistory, Settings, SettingsRepository, settings_from_blob
from .reporting import load_history, filter_recent, hourly_counts, generate_report

__all__ = [
    # Errors
    'PulseError',
    'CaptureUnavailable',
    'DecodeFailure',
    'DeliveryFailure',
    # Features
    'SpectrumAnalyser',
    'compute_db_spectrum',
    'find_peak_window',
    'frame_level',
    'load_waveform',
    # Fingerprint / similarity
    'FingerprintExtractor',
    'SimilarityScorer',
    'MAX_DISTANCE',
    # Detector
    'DetectionConfig',
    'DetectionEvent',
    'DetectionStateMachine',
    'DetectorState',
    'Phase',
    'ThresholdDirection',
    'TickInput',
    'tick',
    # Reference
    'CaptureOutcome',
    'LiveCapture',
    'ReferenceStore',
    # Audio
    'AudioCapture',
    'LiveSpectrumSource',
    # Engine
    'DistanceSample',
    'PulseEngine',
    'TickResult',
    # Notification
    'WebhookNotifier',
    'build_payload',
    'get_webhook_config',
    'send_webhook',
    # Repository
    'DetectionHistory',
    'Settings',
    'SettingsRepository',
    'settings_from_blob',
    # Reporting
    'load_history',
    'filter_recent',
    'hourly_counts',
    'generate_report',
]
