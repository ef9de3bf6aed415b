"""
Tests for pulse.fingerprint module.

Tests band assignment, normalisation and degenerate input handling.
"""
import pytest
import numpy as np

from pulse.fingerprint import FingerprintExtractor

from tests.conftest import tone_frame, silent_frame, TEST_FFT_SIZE

N_BINS = TEST_FFT_SIZE // 2


class TestBandIndices:
    """Test bin -> band assignment."""

    def test_linear_bands_are_equal_width(self):
        extractor = FingerprintExtractor(bands=40, banding="linear")
        indices = extractor.band_indices(N_BINS)

        assert indices[0] == 0
        assert indices[24] == 0
        assert indices[25] == 1
        # Remainder bins fold into the last band
        assert indices[-1] == 39
        assert set(indices.tolist()) == set(range(40))

    def test_mel_discards_bins_below_min_freq(self):
        extractor = FingerprintExtractor(bands=40, banding="mel", min_freq_hz=20.0)
        indices = extractor.band_indices(N_BINS)

        # Bin 0 is DC, bin 1 is ~21.5 Hz at 44.1 kHz
        assert indices[0] == -1
        assert indices[1] >= 0
        assert indices[-1] == 39

    def test_mel_indices_are_monotonic(self):
        extractor = FingerprintExtractor(bands=40, banding="mel")
        indices = extractor.band_indices(N_BINS)
        used = indices[indices >= 0]

        assert np.all(np.diff(used) >= 0)

    def test_mel_low_bands_are_narrower(self):
        """Perceptual banding spends more bands on low frequencies."""
        extractor = FingerprintExtractor(bands=40, banding="mel")
        indices = extractor.band_indices(N_BINS)
        counts = np.bincount(indices[indices >= 0], minlength=40)

        assert counts[:10].sum() < counts[30:].sum()

    def test_band_indices_cached(self):
        extractor = FingerprintExtractor()
        assert extractor.band_indices(N_BINS) is extractor.band_indices(N_BINS)

    def test_unknown_banding_rejected(self):
        with pytest.raises(ValueError):
            FingerprintExtractor(banding="bark")


class TestExtract:
    """Test fingerprint extraction."""

    @pytest.mark.parametrize("banding", ["linear", "mel"])
    def test_unit_norm(self, banding):
        extractor = FingerprintExtractor(banding=banding)
        fp = extractor.extract(tone_frame())

        assert fp.shape == (40,)
        assert abs(np.linalg.norm(fp) - 1.0) < 1e-6

    def test_silence_gives_zero_vector(self):
        fp = FingerprintExtractor().extract(silent_frame())

        assert fp.shape == (40,)
        assert not np.any(fp)
        assert not np.any(np.isnan(fp))

    def test_nan_bins_carry_no_power(self):
        frame = tone_frame()
        frame[::3] = np.nan
        fp = FingerprintExtractor().extract(frame)

        assert not np.any(np.isnan(fp))
        assert abs(np.linalg.norm(fp) - 1.0) < 1e-6

    def test_huge_levels_do_not_overflow(self):
        frame = np.full(N_BINS, 1e6)
        fp = FingerprintExtractor().extract(frame)

        assert np.all(np.isfinite(fp))
        assert abs(np.linalg.norm(fp) - 1.0) < 1e-6

    def test_peak_band_follows_tone(self):
        extractor = FingerprintExtractor(banding="mel")
        fp = extractor.extract(tone_frame(frequency=1000))
        indices = extractor.band_indices(N_BINS)

        # 1 kHz lands between bins 46 and 47
        assert int(np.argmax(fp)) in indices[44:50].tolist()

    def test_loudness_invariant_without_compression(self):
        extractor = FingerprintExtractor(log_compression=False)
        loud = extractor.extract(tone_frame(amplitude=0.5))
        quiet = extractor.extract(tone_frame(amplitude=0.05))

        assert np.allclose(loud, quiet, atol=1e-9)

    def test_different_tones_differ(self):
        extractor = FingerprintExtractor()
        low = extractor.extract(tone_frame(frequency=300))
        high = extractor.extract(tone_frame(frequency=5000))

        assert np.linalg.norm(low - high) > 0.1

    def test_deterministic(self):
        extractor = FingerprintExtractor()
        frame = tone_frame()
        assert np.array_equal(extractor.extract(frame), extractor.extract(frame))

    def test_frame_exactly_bands_long(self):
        extractor = FingerprintExtractor(bands=40, banding="linear")
        fp = extractor.extract(np.linspace(-60, -20, 40))

        assert abs(np.linalg.norm(fp) - 1.0) < 1e-6


class TestAccepts:
    """Test frame shape checks."""

    def test_short_frame_rejected(self):
        extractor = FingerprintExtractor(bands=40)
        short = np.zeros(39)

        assert not extractor.accepts(short)
        with pytest.raises(ValueError):
            extractor.extract(short)

    def test_none_and_2d_rejected(self):
        extractor = FingerprintExtractor()

        assert not extractor.accepts(None)
        assert not extractor.accepts(np.zeros((2, N_BINS)))

    def test_from_config(self, config):
        extractor = FingerprintExtractor.from_config(config)

        assert extractor.bands == config["analysis"]["bands"]
        assert extractor.banding == config["analysis"]["banding"]
        assert extractor.sample_rate == config["audio"]["sample_rate"]
