"""
BPM E2E Model — Spectral Synthesis Tests
=========================================

Fourier-series conventions, noise realization and minimum-phase
construction.

Run with:
    pytest tests/test_spectral.py -v
"""

import numpy as np
import pytest


# ============================================================
# 1. Frequency grid
# ============================================================

class TestFrequencyGrid:

    def test_derived_quantities(self):
        from spectral import FrequencyGrid
        grid = FrequencyGrid.from_frequencies(np.arange(5) * 10.0)
        assert grid.df == 10.0
        assert grid.n_bins == 5
        assert grid.f_max == 40.0
        assert grid.sampling_rate == 90.0
        assert grid.record_length == 9
        np.testing.assert_allclose(grid.time_vector, np.arange(9) / 90.0)

    def test_grid_must_start_at_dc(self):
        from spectral import FrequencyGrid
        with pytest.raises(ValueError, match='DC'):
            FrequencyGrid.from_frequencies(np.arange(1, 6) * 10.0)

    def test_grid_must_be_uniform(self):
        from spectral import FrequencyGrid
        with pytest.raises(ValueError, match='uniform'):
            FrequencyGrid.from_frequencies([0.0, 1.0, 2.0, 4.0])

    def test_grid_must_increase(self):
        from spectral import FrequencyGrid
        with pytest.raises(ValueError):
            FrequencyGrid.from_frequencies([0.0, -1.0, -2.0])


# ============================================================
# 2. Fourier series <-> time record
# ============================================================

class TestFourierSeries:

    def test_round_trip_odd_record(self):
        """to_frequency then to_time reproduces the waveform."""
        from spectral import FrequencyGrid, to_frequency, to_time
        rng = np.random.default_rng(7)
        fs = 1.0e3
        x = rng.normal(size=101)
        amp, ph = to_frequency(x, fs)
        grid = FrequencyGrid(df=fs / 101, n_bins=51)
        np.testing.assert_allclose(to_time(amp, ph, grid), x, atol=1e-12)

    def test_single_harmonic_is_peak_cosine(self):
        from spectral import FrequencyGrid, to_time
        grid = FrequencyGrid(df=1.0, n_bins=8)
        amp = np.zeros(8)
        ph = np.zeros(8)
        amp[3], ph[3] = 2.0, 0.5
        t = grid.time_vector
        np.testing.assert_allclose(to_time(amp, ph, grid),
                                   2.0 * np.cos(2 * np.pi * 3 * t + 0.5), atol=1e-12)

    def test_dc_bin_with_phase(self):
        from spectral import FrequencyGrid, to_time
        grid = FrequencyGrid(df=1.0, n_bins=4)
        amp = np.array([1.5, 0, 0, 0])
        np.testing.assert_allclose(to_time(amp, np.zeros(4), grid), 1.5, atol=1e-12)
        np.testing.assert_allclose(to_time(amp, np.array([np.pi, 0, 0, 0]), grid),
                                   -1.5, atol=1e-12)

    def test_even_record_nyquist_amplitude(self):
        from spectral import to_frequency
        x = np.cos(np.pi * np.arange(8))
        amp, _ = to_frequency(x, 8.0)
        assert amp.size == 5
        assert abs(amp[-1] - 1.0) < 1e-12
        np.testing.assert_allclose(amp[:-1], 0.0, atol=1e-12)

    def test_bin_frequencies(self):
        from spectral import fourier_frequencies
        np.testing.assert_allclose(fourier_frequencies(9, 90.0), np.arange(5) * 10.0)

    def test_complex_helpers_match(self):
        from spectral import FrequencyGrid, spectrum_to_time, time_to_spectrum
        grid = FrequencyGrid(df=2.0, n_bins=16)
        rng = np.random.default_rng(3)
        S = rng.normal(size=16) + 1j * rng.normal(size=16)
        S[0] = S[0].real
        x = spectrum_to_time(S, grid)
        np.testing.assert_allclose(time_to_spectrum(x, grid.sampling_rate), S, atol=1e-12)

    def test_shape_mismatch_raises(self):
        from spectral import FrequencyGrid, to_time
        grid = FrequencyGrid(df=1.0, n_bins=4)
        with pytest.raises(ValueError):
            to_time(np.ones(5), np.zeros(5), grid)


# ============================================================
# 3. Noise realization
# ============================================================

class TestNoiseRealization:

    def test_seeded_realization_is_reproducible(self):
        from spectral import FrequencyGrid, realize_noise
        grid = FrequencyGrid(df=1.0, n_bins=33)
        a = realize_noise(np.ones(33), grid, np.random.default_rng(11))
        b = realize_noise(np.ones(33), grid, np.random.default_rng(11))
        np.testing.assert_array_equal(a, b)

    def test_zero_psd_gives_zero_noise(self):
        from spectral import FrequencyGrid, realize_noise
        grid = FrequencyGrid(df=1.0, n_bins=33)
        noise = realize_noise(np.zeros(33), grid, np.random.default_rng(0))
        np.testing.assert_array_equal(noise, 0.0)

    def test_negative_psd_raises(self):
        from spectral import FrequencyGrid, realize_noise
        grid = FrequencyGrid(df=1.0, n_bins=4)
        with pytest.raises(ValueError):
            realize_noise(np.array([1.0, -1.0, 1.0, 1.0]), grid)

    def test_mean_square_follows_psd(self):
        """E[x^2] = df * (psd[0] + 2 sum(psd[1:]))."""
        from spectral import FrequencyGrid, realize_noise, spectrum_to_time
        grid = FrequencyGrid(df=1.0, n_bins=2001)
        psd = np.full(2001, 1e-3)
        x = spectrum_to_time(realize_noise(psd, grid, np.random.default_rng(5)), grid)
        expected = grid.df * (psd[0] + 2 * psd[1:].sum())
        assert abs(np.mean(x**2) / expected - 1.0) < 0.1

    def test_realized_magnitude_tracks_psd_shape(self):
        """Bins with zero PSD stay empty."""
        from spectral import FrequencyGrid, realize_noise
        grid = FrequencyGrid(df=1.0, n_bins=64)
        psd = np.where(np.arange(64) < 32, 1.0, 0.0)
        noise = realize_noise(psd, grid, np.random.default_rng(2))
        assert np.all(noise[32:] == 0)
        assert np.all(np.abs(noise[1:32]) > 0)


# ============================================================
# 4. Minimum phase
# ============================================================

class TestMinimumPhase:

    def test_magnitude_is_preserved(self):
        from spectral import minimum_phase
        f = np.arange(257) * 1e6
        mag = 1.0 / np.sqrt(1.0 + (f / 50e6)**4)
        H = minimum_phase(mag)
        np.testing.assert_allclose(np.abs(H), mag, rtol=1e-9)
        assert np.max(np.abs(np.angle(H))) > 1e-3

    def test_flat_magnitude_has_zero_phase(self):
        from spectral import minimum_phase
        H = minimum_phase(np.full(64, 0.5))
        np.testing.assert_allclose(H, 0.5, atol=1e-12)

    def test_floor_clips_zeros(self):
        from spectral import minimum_phase
        mag = np.ones(32)
        mag[20:] = 0.0
        H = minimum_phase(mag, floor_db=-100.0)
        np.testing.assert_allclose(np.abs(H[20:]), 1e-5, rtol=1e-9)
