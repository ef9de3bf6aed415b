#!/usr/bin/env python3
"""
Host loop for the pulse detector.

``run_monitor`` drives the engine at a fixed tick interval and hands
detections to the history file and the webhook. ``run_capture`` records a
new reference from the microphone.
"""
import datetime
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import config_loader
from logger import get_logger
from pulse import (
    CaptureOutcome,
    CaptureUnavailable,
    DetectionHistory,
    LiveSpectrumSource,
    PulseEngine,
    Settings,
    SettingsRepository,
    WebhookNotifier,
)
from pulse.repository import reference_to_list

log = get_logger(__name__)


@dataclass
class Runtime:
    """Components shared by the monitor and capture commands."""
    config: Dict[str, Any]
    settings_repo: SettingsRepository
    settings: Settings
    engine: PulseEngine

    def save_reference(self) -> None:
        self.settings.reference = reference_to_list(self.engine.store.current)
        self.settings_repo.save(self.settings)


def build_runtime(config: Dict[str, Any], source=None, clock: Optional[Callable[[], float]] = None) -> Runtime:
    """
    Wire up settings, frame source and engine from the config.

    Args:
        config: Loaded configuration
        source: Frame source; defaults to the live microphone
        clock: Millisecond clock for the engine
    """
    settings_repo = SettingsRepository.from_config(config)
    settings = settings_repo.load()
    source = source or LiveSpectrumSource(config)
    kwargs = {"clock": clock} if clock is not None else {}
    engine = PulseEngine.from_config(config, source, reference=settings.reference, **kwargs)
    engine.detection_config = settings.detection
    return Runtime(config, settings_repo, settings, engine)


def _load_config(config_path: Optional[Path]) -> Dict[str, Any]:
    try:
        return config_loader.load_config(config_path)
    except Exception as e:
        log.error("Failed to load configuration: %s", e)
        log.error("Check that config.json exists and is valid JSON")
        raise


def _start_engine(engine: PulseEngine) -> None:
    try:
        engine.start()
    except CaptureUnavailable as e:
        log.error("Failed to start audio capture: %s", e)
        log.error("Check the device with 'arecord -l' and that your user is in the 'audio' group")
        raise


def run_monitor(
    config_path: Optional[Path] = None,
    debug: bool = False,
    source=None,
    clock: Optional[Callable[[], float]] = None,
    sleep: Callable[[float], None] = time.sleep,
    max_ticks: Optional[int] = None,
) -> int:
    """
    Run the detection loop until interrupted or capture ends.

    Args:
        config_path: Optional path to config.json (defaults to ./config.json)
        debug: If True, print every tick's metrics
        source: Frame source override (tests)
        clock: Millisecond clock override (tests)
        sleep: Sleep function between ticks
        max_ticks: Stop after this many ticks (None runs forever)

    Returns:
        Number of detections raised
    """
    config = _load_config(config_path)
    runtime = build_runtime(config, source, clock)
    engine = runtime.engine

    history = DetectionHistory.from_config(config)
    notification = dict(config["notification"])
    if runtime.settings.webhook_url:
        notification["webhook_url"] = runtime.settings.webhook_url
    notifier = WebhookNotifier.from_config({"notification": notification})

    _log_startup_info(config, runtime, notifier)
    _start_engine(engine)

    interval_ms = config_loader.get_config_value(config, "audio.tick_interval_ms")
    metrics_every = 1 if debug else max(1, round(1000 / interval_ms))
    ticks = 0
    detections = 0

    try:
        while engine.running:
            engine.source.pump()
            result = engine.tick()

            if result is not None:
                if result.event is not None:
                    detections += 1
                    history.save(result.event, engine.detection_config)
                    notifier.notify(result.event, engine.detection_config.threshold)
                if ticks % metrics_every == 0:
                    _print_metrics(result, engine, detections)

            ticks += 1
            if max_ticks is not None and ticks >= max_ticks:
                break
            sleep(interval_ms / 1000.0)
        else:
            log.info("Audio stream ended")
    except KeyboardInterrupt:
        log.info("Stopping monitor (Ctrl+C received)...")
    finally:
        engine.stop()
        log.info("Monitor stopped after %d detection(s).", detections)

    return detections


def run_capture(
    config_path: Optional[Path] = None,
    duration_ms: Optional[int] = None,
    source=None,
    clock: Optional[Callable[[], float]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> CaptureOutcome:
    """
    Record a new reference fingerprint from the live input.

    Ctrl+C during the window keeps a partial-window snapshot when one is
    available. The settings file is only rewritten when the reference
    actually changed.
    """
    config = _load_config(config_path)
    runtime = build_runtime(config, source, clock)
    engine = runtime.engine
    duration_ms = duration_ms or config_loader.get_config_value(config, "capture.duration_ms")
    interval = config_loader.get_config_value(config, "audio.tick_interval_ms") / 1000.0

    _start_engine(engine)
    outcome: Optional[CaptureOutcome] = None
    try:
        session = engine.begin_capture(duration_ms)
        print(f"Recording reference for {duration_ms} ms... make the sound now.", flush=True)
        while outcome is None:
            if not engine.running:
                outcome = engine.cancel_capture()
                break
            engine.source.pump()
            result = engine.tick()
            if result is not None and result.capture_outcome is not None:
                outcome = result.capture_outcome
            elif result is None and session.remaining_ms(engine.clock()) <= 0:
                outcome = engine.expire_capture()
            else:
                sleep(interval)
    except KeyboardInterrupt:
        log.info("Capture interrupted")
        outcome = engine.cancel_capture()
    finally:
        engine.stop()

    if outcome is None:
        outcome = CaptureOutcome.ABORTED
    if outcome is not CaptureOutcome.ABORTED:
        runtime.save_reference()
        log.info("Reference saved to %s", runtime.settings_repo.path)
    return outcome


def _log_startup_info(config: Dict[str, Any], runtime: Runtime, notifier: WebhookNotifier) -> None:
    """Log startup information."""
    audio = config["audio"]
    analysis = config["analysis"]
    detection = runtime.engine.detection_config

    log.info("=" * 60)
    log.info("PULSE DETECTOR - Starting Monitor")
    log.info("=" * 60)
    log.info("Audio Device: %s", audio["device"])
    log.info("Sample Rate: %d Hz, tick every %s ms", audio["sample_rate"], audio["tick_interval_ms"])
    log.info(
        "Fingerprint: %d %s bands, %s distance",
        analysis["bands"], analysis["banding"], analysis["metric"],
    )
    log.info(
        "Match when distance %s %.3f, cooldown %d ms",
        "<=" if detection.direction.value == "below" else ">=",
        detection.threshold, detection.cooldown_ms,
    )
    log.info("History: %s", Path(config["storage"]["history_file"]).resolve())
    log.info("Webhook: %s", notifier.url if notifier.enabled else "DISABLED")
    if not runtime.engine.store.has_reference:
        log.warning("No reference fingerprint set; detection disabled until one is captured")
    log.info("=" * 60)


def _print_metrics(result, engine: PulseEngine, detections: int) -> None:
    """Print live monitoring metrics."""
    sample = result.sample
    timestamp_str = datetime.datetime.fromtimestamp(sample.timestamp_ms / 1000.0).strftime("%Y-%m-%dT%H:%M:%S")
    similarity = f"{100 - sample.distance * 100:5.1f}%" if engine.store.has_reference else "  -- "

    print(
        f"{timestamp_str} | level: {sample.level:4.2f} | "
        f"distance: {sample.distance:5.3f} | "
        f"similarity: {similarity} | "
        f"detections: {detections} | "
        f"{engine.phase.value.upper()}",
        flush=True
    )
