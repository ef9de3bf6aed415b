#!/usr/bin/env python3
"""Command line entry point for the audio pulse detector."""
import argparse
import sys
from pathlib import Path
from typing import List, Optional

import numpy as np

import config_loader
import monitor
from logger import configure_from_config, get_logger, log_system_info
from pulse import (
    CaptureOutcome,
    CaptureUnavailable,
    DecodeFailure,
    DetectionHistory,
    FingerprintExtractor,
    ReferenceStore,
    SettingsRepository,
    generate_report,
    load_history,
)
from pulse.repository import reference_to_list

log = get_logger(__name__)


def import_reference(config: dict, audio_file: Path) -> bool:
    """Replace the stored reference with one taken from ``audio_file``."""
    settings_repo = SettingsRepository.from_config(config)
    settings = settings_repo.load()
    store = ReferenceStore(FingerprintExtractor.from_config(config), config["analysis"]["fft_size"])
    try:
        store.capture_from_file(audio_file)
    except DecodeFailure as e:
        log.error("Could not import %s: %s", audio_file, e)
        return False

    settings.reference = reference_to_list(store.current)
    settings_repo.save(settings)
    log.info("Reference imported from %s", audio_file)
    return True


def clear_reference(config: dict) -> None:
    settings_repo = SettingsRepository.from_config(config)
    settings = settings_repo.load()
    settings.reference = None
    settings_repo.save(settings)
    log.info("Reference cleared; detection disabled")


def show_settings(config: dict) -> None:
    """Print the active detection settings."""
    settings = SettingsRepository.from_config(config).load()
    detection = settings.detection
    print(f"Threshold:   {detection.threshold:.3f} (match {detection.direction.value})")
    print(f"Cooldown:    {detection.cooldown_ms} ms")
    print(f"Webhook:     {settings.webhook_url or '(from config)'}")
    if settings.reference is None:
        print("Reference:   not set")
    else:
        fp = np.asarray(settings.reference)
        print(f"Reference:   {fp.size} bands, peak band {int(np.argmax(fp))}")


def show_report(config: dict, hours: int) -> None:
    df = load_history(Path(config["storage"]["history_file"]))
    print(generate_report(df, hours))


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Pulse Detector - count a recurring sound by matching it against a recorded reference",
        epilog="""
Examples:
  python3 pulse_detector.py capture              # Record the reference sound
  python3 pulse_detector.py import click.wav     # Take the reference from a file
  python3 pulse_detector.py monitor              # Start detecting
  python3 pulse_detector.py report --hours 6     # Summarise recent detections
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "mode",
        choices=["monitor", "capture", "import", "clear", "show", "report", "clear-history"],
        help="What to do",
    )
    parser.add_argument("file", nargs="?", type=Path, help="Audio file for 'import'")
    parser.add_argument("--config", type=Path, help="Path to config.json file")
    parser.add_argument("--duration-ms", type=int, help="Capture window length for 'capture'")
    parser.add_argument("--hours", type=int, default=24, help="Report period for 'report'")
    parser.add_argument("--debug", action="store_true", help="Enable debug mode (verbose logging)")

    args = parser.parse_args(argv)

    try:
        config = config_loader.load_config(args.config)
    except ValueError as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return 2

    configure_from_config(config, debug=args.debug)
    log_system_info(log)

    mode = args.mode
    try:
        if mode == "monitor":
            monitor.run_monitor(args.config, debug=args.debug)
        elif mode == "capture":
            outcome = monitor.run_capture(args.config, args.duration_ms)
            if outcome is CaptureOutcome.ABORTED:
                return 1
        elif mode == "import":
            if args.file is None:
                parser.error("'import' needs an audio file")
            if not import_reference(config, args.file):
                return 1
        elif mode == "clear":
            clear_reference(config)
        elif mode == "show":
            show_settings(config)
        elif mode == "report":
            show_report(config, args.hours)
        elif mode == "clear-history":
            DetectionHistory.from_config(config).clear()
    except CaptureUnavailable:
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
