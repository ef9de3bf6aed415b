"""
Tests for pulse.audio module.

The arecord subprocess is replaced by a fake process whose stdout is a
real pipe, so the non-blocking drain runs against an actual descriptor.
"""
import os
import subprocess

import pytest
import numpy as np

from pulse.audio import AudioCapture, LiveSpectrumSource
from pulse.errors import CaptureUnavailable


class FakeProcess:
    """Stands in for the arecord Popen object."""

    def __init__(self, returncode=None, stderr=b""):
        read_fd, self.write_fd = os.pipe()
        self.stdout = os.fdopen(read_fd, "rb", buffering=0)
        self.stderr = _Stream(stderr)
        self.returncode = returncode
        self.terminated = False
        self.killed = False

    def poll(self):
        return self.returncode

    def terminate(self):
        self.terminated = True
        self.returncode = -15

    def kill(self):
        self.killed = True
        self.returncode = -9

    def wait(self, timeout=None):
        return self.returncode

    def feed(self, data: bytes):
        os.write(self.write_fd, data)

    def close(self):
        os.close(self.write_fd)
        self.stdout.close()


class _Stream:
    def __init__(self, data):
        self.data = data

    def read(self):
        return self.data


@pytest.fixture
def no_sleep(monkeypatch):
    monkeypatch.setattr("pulse.audio.time.sleep", lambda seconds: None)


@pytest.fixture
def fake_process(monkeypatch, no_sleep):
    process = FakeProcess()
    calls = []

    def popen(cmd, **kwargs):
        calls.append(cmd)
        return process

    monkeypatch.setattr("pulse.audio.subprocess.Popen", popen)
    process.calls = calls
    yield process
    process.close()


def pcm(values):
    return np.asarray(values, dtype="<i2").tobytes()


class TestAudioCaptureStart:
    """Test acquiring the capture device."""

    def test_arecord_missing(self, config, monkeypatch, no_sleep):
        def popen(cmd, **kwargs):
            raise FileNotFoundError("arecord")

        monkeypatch.setattr("pulse.audio.subprocess.Popen", popen)

        with pytest.raises(CaptureUnavailable, match="alsa-utils"):
            AudioCapture(config).start()

    def test_device_refused(self, config, monkeypatch, no_sleep):
        process = FakeProcess(returncode=1, stderr=b"arecord: Device or resource busy")
        monkeypatch.setattr("pulse.audio.subprocess.Popen", lambda cmd, **kw: process)

        try:
            with pytest.raises(CaptureUnavailable, match="in use by another process"):
                AudioCapture(config).start()
        finally:
            process.close()

    def test_invalid_device(self, config):
        config["audio"]["device"] = ""
        with pytest.raises(CaptureUnavailable):
            AudioCapture(config).start()

    def test_command_line(self, config, fake_process):
        capture = AudioCapture(config)
        capture.start()

        cmd = fake_process.calls[0]
        assert cmd[0] == "arecord"
        assert cmd[cmd.index("-r") + 1] == "44100"
        assert cmd[cmd.index("-f") + 1] == "S16_LE"
        assert capture.is_running()

    def test_start_is_idempotent(self, config, fake_process):
        capture = AudioCapture(config)
        capture.start()
        capture.start()

        assert len(fake_process.calls) == 1


class TestReadAvailable:
    """Test the non-blocking drain."""

    def test_nothing_buffered(self, config, fake_process):
        capture = AudioCapture(config)
        capture.start()

        assert capture.read_available().shape == (0,)

    def test_drains_everything_buffered(self, config, fake_process):
        capture = AudioCapture(config)
        capture.start()
        fake_process.feed(pcm([0, 16384, -16384]))
        fake_process.feed(pcm([32767]))

        samples = capture.read_available()

        assert samples.dtype == np.float32
        assert np.allclose(samples, [0.0, 0.5, -0.5, 32767 / 32768])
        assert capture.read_available().shape == (0,)

    def test_partial_sample_kept_for_next_read(self, config, fake_process):
        capture = AudioCapture(config)
        capture.start()
        data = pcm([100, 200])
        fake_process.feed(data[:3])

        assert capture.read_available().shape == (1,)

        fake_process.feed(data[3:])
        samples = capture.read_available()
        assert np.allclose(samples, [200 / 32768])

    def test_stereo_downmixed(self, config, fake_process):
        config["audio"]["channels"] = 2
        capture = AudioCapture(config)
        capture.start()
        fake_process.feed(pcm([16384, 0, -16384, 0]))

        assert np.allclose(capture.read_available(), [0.25, -0.25])

    def test_not_started(self, config):
        assert AudioCapture(config).read_available().shape == (0,)


class TestAudioCaptureStop:
    """Test releasing the capture device."""

    def test_stop_without_start(self, config):
        capture = AudioCapture(config)
        capture.stop()
        capture.stop()

        assert not capture.is_running()

    def test_stop_terminates_once(self, config, fake_process):
        capture = AudioCapture(config)
        capture.start()
        capture.stop()
        capture.stop()

        assert fake_process.terminated
        assert not capture.is_running()

    def test_kill_when_terminate_hangs(self, config, fake_process):
        def wait(timeout=None):
            if timeout is not None:
                raise subprocess.TimeoutExpired("arecord", timeout)
            return fake_process.returncode

        fake_process.terminate = lambda: None
        fake_process.wait = wait

        capture = AudioCapture(config)
        capture.start()
        capture.stop()

        assert fake_process.killed

    def test_context_manager(self, config, fake_process):
        with AudioCapture(config) as capture:
            assert capture.is_running()
        assert not capture.is_running()


class TestLiveSpectrumSource:
    """Test the microphone-backed frame source."""

    def test_frames_from_pumped_audio(self, config, fake_process):
        source = LiveSpectrumSource(config)
        source.start()

        assert source.current_frame() is None

        t = np.arange(4096) / 44100
        fake_process.feed(pcm((0.5 * 32767 * np.sin(2 * np.pi * 1000 * t)).astype(np.int16)))
        assert source.pump() == 4096

        frame = source.current_frame()
        assert frame.shape == (config["analysis"]["fft_size"] // 2,)
        assert abs(int(np.argmax(frame)) - 46) <= 1

    def test_no_frame_after_stop(self, config, fake_process):
        source = LiveSpectrumSource(config)
        source.start()
        fake_process.feed(pcm([1000] * 100))
        source.pump()
        source.stop()

        assert not source.is_running()
        assert source.current_frame() is None


class TestSampleFormats:
    """Test decoding of the configured arecord sample format."""

    def test_s32_decoded(self, config, fake_process):
        config["audio"]["sample_format"] = "S32_LE"
        capture = AudioCapture(config)
        capture.start()
        fake_process.feed(np.asarray([1 << 30, -(1 << 30)], dtype="<i4").tobytes())

        assert np.allclose(capture.read_available(), [0.5, -0.5])
        assert "S32_LE" in fake_process.calls[0]

    def test_float_decoded(self, config, fake_process):
        config["audio"]["sample_format"] = "FLOAT_LE"
        capture = AudioCapture(config)
        capture.start()
        fake_process.feed(np.asarray([0.25, -0.75], dtype="<f4").tobytes())

        assert np.allclose(capture.read_available(), [0.25, -0.75])

    def test_unknown_format_rejected(self, config):
        config["audio"]["sample_format"] = "S24_3LE"
        with pytest.raises(ValueError, match="S24_3LE"):
            AudioCapture(config)
