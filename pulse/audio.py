"""
Audio capture abstraction.

``AudioCapture`` owns the ``arecord`` subprocess. ``LiveSpectrumSource``
pairs it with a ``SpectrumAnalyser`` and exposes the current SpectralFrame
on demand: each ``pump`` drains whatever audio is buffered without blocking
and keeps only the newest window, so a slow consumer skips audio instead of
queueing it.

Single Responsibility: Audio input from hardware.
"""
import os
import subprocess
import time
from typing import Any, Dict, Optional

import numpy as np

from logger import get_logger

from .errors import CaptureUnavailable
from .features import SpectrumAnalyser

log = get_logger(__name__)

# arecord -f name -> (numpy dtype, full-scale value)
SAMPLE_FORMATS = {
    "S16_LE": ("<i2", 32768.0),
    "S32_LE": ("<i4", 2147483648.0),
    "FLOAT_LE": ("<f4", 1.0),
}

# Upper bound on bytes drained per read call
_READ_SIZE = 65536


class AudioCapture:
    """
    Handles audio capture from ALSA arecord.

    Single Responsibility: Audio I/O operations.
    """

    ERROR_HINTS = {
        "Device or resource busy": "Audio device is in use by another process",
        "No such file or directory": "Audio device not found. Check with 'arecord -l'",
        "Permission denied": "No permission to access audio device. Add user to the 'audio' group",
        "Invalid argument": "Invalid audio device or sample format",
    }

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize audio capture.

        Args:
            config: Configuration dictionary with audio settings
        """
        self.audio_config = config["audio"]
        self.sample_rate = self.audio_config["sample_rate"]
        self.channels = self.audio_config["channels"]

        sample_format = self.audio_config["sample_format"]
        if sample_format not in SAMPLE_FORMATS:
            raise ValueError(f"Unsupported sample format: {sample_format!r}")
        dtype, self.full_scale = SAMPLE_FORMATS[sample_format]
        self.dtype = np.dtype(dtype)

        self._process: Optional[subprocess.Popen] = None
        self._pending = b""

    def start(self) -> None:
        """
        Start the arecord process.

        Raises:
            CaptureUnavailable: If the device cannot be opened
        """
        if self._process is not None:
            return

        device = self.audio_config["device"]
        if not device or not isinstance(device, str):
            raise CaptureUnavailable(f"Invalid audio device configuration: {device!r}")

        cmd = [
            "arecord",
            "-D", device,
            "-f", self.audio_config["sample_format"],
            "-r", str(self.sample_rate),
            "-c", str(self.channels),
            "-q",
            "-t", "raw"
        ]

        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE
            )
        except FileNotFoundError:
            raise CaptureUnavailable(
                "arecord command not found. Install alsa-utils: "
                "sudo apt-get install alsa-utils"
            )
        except OSError as e:
            raise CaptureUnavailable(f"Failed to start arecord ({' '.join(cmd)}): {e}")

        # Give the device a moment to refuse us
        time.sleep(0.1)

        if process.poll() is not None:
            stderr_msg = ""
            if process.stderr:
                stderr_msg = process.stderr.read().decode(errors="ignore").strip()
            hint = ""
            for key, msg in self.ERROR_HINTS.items():
                if key in stderr_msg:
                    hint = f" Hint: {msg}"
                    break
            raise CaptureUnavailable(
                f"arecord failed to start. Device: {device}. Error: {stderr_msg}.{hint}"
            )

        os.set_blocking(process.stdout.fileno(), False)
        self._process = process
        self._pending = b""
        log.info("Audio capture started on %s (%d Hz, %d ch)", device, self.sample_rate, self.channels)

    def read_available(self) -> np.ndarray:
        """
        Drain all buffered audio without blocking.

        Returns:
            Mono float32 samples in [-1.0, 1.0); empty if nothing is buffered
        """
        if self._process is None or self._process.stdout is None:
            return np.zeros(0, dtype=np.float32)

        fd = self._process.stdout.fileno()
        parts = [self._pending]
        while True:
            try:
                data = os.read(fd, _READ_SIZE)
            except BlockingIOError:
                break
            if not data:
                break
            parts.append(data)
        raw = b"".join(parts)

        frame_bytes = self.dtype.itemsize * self.channels
        usable = len(raw) - len(raw) % frame_bytes
        self._pending = raw[usable:]
        if usable == 0:
            return np.zeros(0, dtype=np.float32)

        samples = np.frombuffer(raw[:usable], dtype=self.dtype).astype(np.float32) / self.full_scale
        if self.channels > 1:
            samples = samples.reshape(-1, self.channels).mean(axis=1)
        return samples

    def is_running(self) -> bool:
        """Check if capture process is still running."""
        if self._process is None:
            return False
        return self._process.poll() is None

    def stop(self) -> None:
        """Stop the capture process. Safe to call repeatedly."""
        process, self._process = self._process, None
        self._pending = b""
        if process is None:
            return

        if process.poll() is None:
            process.terminate()
            try:
                process.wait(timeout=0.5)
            except subprocess.TimeoutExpired:
                process.kill()
                process.wait()
        log.info("Audio capture stopped")

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()


class LiveSpectrumSource:
    """
    SpectralFrameSource backed by the live microphone.

    Args:
        config: Configuration dictionary (``audio`` and ``analysis`` sections)
        capture: Optional AudioCapture to use instead of building one
    """

    def __init__(self, config: Dict[str, Any], capture: Optional[AudioCapture] = None):
        analysis = config["analysis"]
        self.capture = capture or AudioCapture(config)
        self.analyser = SpectrumAnalyser(analysis["fft_size"], analysis["smoothing"])

    def start(self) -> None:
        self.analyser.reset()
        self.capture.start()

    def stop(self) -> None:
        self.capture.stop()

    def is_running(self) -> bool:
        return self.capture.is_running()

    def pump(self) -> int:
        """Move buffered audio into the analyser; returns samples consumed."""
        samples = self.capture.read_available()
        self.analyser.push(samples)
        return samples.shape[0]

    def current_frame(self) -> Optional[np.ndarray]:
        """The current SpectralFrame, or None before any audio arrived."""
        if not self.is_running():
            return None
        return self.analyser.frame()
