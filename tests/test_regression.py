"""
BPM E2E Model — Regression Test Suite
======================================

End-to-end checks of the SIRIUS button BPM front end: stage order,
device models, beam spectrum and the command-line entry point.
Small grids keep the suite fast.

Run with:
    pytest tests/test_regression.py -v
"""

import numpy as np
import pytest


FRONT_END_STAGES = [
    'Beam current',
    'BPM button current',
    'BPM button voltage',
    'Coax. cable (BPM to RFFE)',
    'RFFE LPF #1',
    'RFFE BPF #1',
    'RFFE Amp #1',
    'RFFE Att #1',
    'RFFE LPF #2',
    'RFFE Amp #2',
    'RFFE LPF #3',
    'RFFE-FMC ADC coax. cable',
    'ADC analog front-end',
    'ADC input',
]


@pytest.fixture(scope='module')
def small_grid():
    from front_end import SIRIUS_MACHINE, default_frequency_grid
    return default_frequency_grid(SIRIUS_MACHINE['frf'], bins_per_harmonic=20, n_harmonics=4)


@pytest.fixture(scope='module')
def beam(small_grid):
    from front_end import SIRIUS_MACHINE, bunch_train_spectrum
    return bunch_train_spectrum(small_grid, 0.1, 8.7e-12, SIRIUS_MACHINE['frf'])


def run(beam, f, attenuation_db=0.0, position=(0.0, 0.0), seed=0, **kwargs):
    from front_end import simulate_bpm_response
    return simulate_bpm_response(beam, f, np.asarray(position), attenuation_db,
                                 rng=np.random.default_rng(seed), n_coverage=101, **kwargs)


# ============================================================
# 1. Module imports
# ============================================================

class TestImports:

    def test_import_spectral(self):
        import spectral  # noqa: F401

    def test_import_chamber_geometry(self):
        import chamber_geometry  # noqa: F401

    def test_import_beam_coverage(self):
        import beam_coverage  # noqa: F401

    def test_import_cascade(self):
        import cascade  # noqa: F401

    def test_import_front_end(self):
        import front_end  # noqa: F401

    def test_package_version(self):
        import bpm_e2e
        assert bpm_e2e.__version__ == "1.0.0"


# ============================================================
# 2. Device models
# ============================================================

class TestDeviceModels:

    def test_db_conversions(self):
        from front_end import db_to_amplitude, db_to_power
        assert db_to_amplitude(20.0) == pytest.approx(10.0)
        assert db_to_power(10.0) == pytest.approx(10.0)
        assert db_to_amplitude(-6.0) == pytest.approx(0.501187, rel=1e-5)

    def test_button_impedance(self):
        from front_end import button_impedance
        Z = button_impedance(np.array([0.0, 1e9]), 50.0, 2.6e-12)
        assert Z[0] == pytest.approx(50.0)
        assert abs(Z[1]) < 50.0
        assert np.angle(Z[1]) < 0

    def test_cable_attenuation(self):
        from front_end import cable_response
        H = cable_response(np.array([0.0, 3.7e8]), 3.7e8, 30.5)
        assert H[0] == pytest.approx(1.0)
        assert abs(H[1]) == pytest.approx(np.exp(-1.0))
        assert np.angle(H[1]) == pytest.approx(-1.0)

    def test_button_current_is_derivative(self):
        from front_end import beam_to_button_current
        H = beam_to_button_current(np.array([0.0, 1e8, 2e8]), 0.0625, 6e-3, 1.0)
        assert H[0] == 0
        assert abs(H[2]) == pytest.approx(2 * abs(H[1]))
        assert np.angle(H[1]) == pytest.approx(np.pi / 2)

    def test_attenuator(self):
        from front_end import attenuator_response
        assert attenuator_response(0.0, 1.5) == pytest.approx(10**(-1.5 / 20))
        assert attenuator_response(10.0, 1.5) == pytest.approx(10**(-11.5 / 20))

    def test_filters_are_passive(self, small_grid):
        from front_end import (BPF_TABLE_DB, LPF_TABLE_DB, LPF_TABLE_HZ,
                               bpf_table_hz, tabulated_response)
        lpf = tabulated_response(small_grid, LPF_TABLE_HZ, LPF_TABLE_DB)
        bpf = tabulated_response(small_grid, bpf_table_hz(499.664e6), BPF_TABLE_DB)
        assert np.all(np.abs(lpf) <= 1.0 + 1e-9)
        assert np.all(np.abs(bpf) <= 1.0 + 1e-9)
        # Pass band of the BPF is at f_RF (bin 20 of the small grid)
        assert 20 * np.log10(abs(bpf[20])) == pytest.approx(-2.0, abs=0.1)


# ============================================================
# 3. Beam spectrum
# ============================================================

class TestBunchTrain:

    def test_lines_on_rf_harmonics(self, small_grid, beam):
        nonzero = np.flatnonzero(beam)
        np.testing.assert_array_equal(nonzero, np.arange(0, small_grid.size, 20))

    def test_line_amplitudes(self, beam):
        frf = 499.664e6
        assert beam[0] == pytest.approx(0.1)
        expected = 0.2 * np.exp(-(2 * np.pi * frf * 8.7e-12)**2 / 2)
        assert beam[20] == pytest.approx(expected)
        assert abs(beam[40]) < abs(beam[20])

    def test_default_grid(self):
        from front_end import default_frequency_grid
        f = default_frequency_grid(500e6, bins_per_harmonic=10, n_harmonics=3)
        assert f.size == 31
        assert f[0] == 0.0
        assert f[-1] == pytest.approx(1.5e9)


# ============================================================
# 4. Front-end signal path
# ============================================================

class TestFrontEnd:

    def test_stage_names_and_order(self, small_grid):
        from front_end import build_front_end_stages
        stages = build_front_end_stages(small_grid, 0.0625, 0.0)
        assert [s.name for s in stages] == FRONT_END_STAGES

    def test_smoke(self, small_grid, beam):
        results, t = run(beam, small_grid)
        assert [r.name for r in results] == FRONT_END_STAGES
        assert t.size == 2 * small_grid.size - 1
        for r in results:
            assert np.all(np.isfinite(r.noise_psd))
            assert np.all(r.noise_psd >= 0)
            assert np.all(np.isfinite(r.signal_waveform))
        assert np.max(np.abs(results[-1].signal_waveform)) > 0
        assert np.all(results[0].noise_psd == 0)
        assert np.any(results[2].noise_psd > 0)

    def test_time_vector_maps_back_to_grid(self, small_grid, beam):
        """Bin frequencies recovered from t are the simulation grid."""
        from spectral import fourier_frequencies
        results, t = run(beam, small_grid)
        f = fourier_frequencies(t.size, 1.0 / (t[1] - t[0]))
        assert f.size == results[-1].noise_psd.size
        np.testing.assert_allclose(f, small_grid, rtol=1e-9, atol=1e-3)

    def test_signal_chain_figure(self, small_grid, beam, tmp_path):
        import matplotlib
        matplotlib.use('Agg')
        from front_end import make_fig_signal_chain
        results, t = run(beam, small_grid)
        path = make_fig_signal_chain(results, t, output_dir=str(tmp_path))
        assert (tmp_path / 'fig_signal_chain.png').exists()
        assert path.endswith('fig_signal_chain.png')

    def test_amplifiers_flagged_nonlinear(self, small_grid, beam):
        results, _ = run(beam, small_grid)
        flagged = [r.name for r in results if r.nonlinear]
        assert flagged == ['RFFE Amp #1', 'RFFE Amp #2', 'ADC input']

    def test_attenuation_scales_signal(self, small_grid, beam):
        a, _ = run(beam, small_grid, attenuation_db=0.0)
        b, _ = run(beam, small_grid, attenuation_db=6.0)
        k = 10**(-6.0 / 20)
        for i in range(FRONT_END_STAGES.index('RFFE Att #1'), len(FRONT_END_STAGES)):
            np.testing.assert_allclose(b[i].signal_spectrum, a[i].signal_spectrum * k,
                                       rtol=1e-12, atol=0)
        for i in range(FRONT_END_STAGES.index('RFFE Att #1')):
            np.testing.assert_array_equal(b[i].signal_spectrum, a[i].signal_spectrum)

    def test_centred_beam_uses_closed_form_coverage(self, small_grid):
        from front_end import SIRIUS_MACHINE, build_front_end_stages
        stages = build_front_end_stages(small_grid, 0.0625, 0.0, SIRIUS_MACHINE)
        results, _ = run(np.ones(small_grid.size, dtype=complex), small_grid)
        np.testing.assert_allclose(results[1].response, stages[1].response, rtol=1e-10)

    def test_offset_beam_increases_signal(self, small_grid, beam):
        a, _ = run(beam, small_grid)
        b, _ = run(beam, small_grid, position=(2e-3, 2e-3))
        idx = FRONT_END_STAGES.index('BPM button voltage')
        assert np.max(np.abs(b[idx].signal_waveform)) > np.max(np.abs(a[idx].signal_waveform))

    def test_seeded_runs_are_reproducible(self, small_grid, beam):
        a, _ = run(beam, small_grid, seed=3)
        b, _ = run(beam, small_grid, seed=3)
        np.testing.assert_array_equal(a[-1].noise_waveform, b[-1].noise_waveform)

    def test_friis_mode_runs(self, small_grid, beam):
        a, _ = run(beam, small_grid, noise_mode='friis')
        b, _ = run(beam, small_grid, noise_mode='squared')
        assert np.all(a[-1].noise_psd >= 0)
        assert not np.allclose(a[-1].noise_psd, b[-1].noise_psd, rtol=1e-3, atol=0)


# ============================================================
# 5. Command line
# ============================================================

class TestCommandLine:

    def test_main_runs(self, capsys):
        from bpm_e2e.__main__ import main
        results = main(['--seed', '1', '--n-points', '101', '--x', '1.0'])
        assert len(results) == len(FRONT_END_STAGES)
        out = capsys.readouterr().out
        assert 'Signal path budget' in out
        assert 'Beam coverage factors' in out

    def test_main_writes_figures(self, tmp_path, monkeypatch):
        import matplotlib
        matplotlib.use('Agg')
        from bpm_e2e.__main__ import main
        monkeypatch.delenv('BPM_OUTPUT_DIR', raising=False)
        main(['--seed', '2', '--n-points', '101', '--figures',
              '--output-dir', str(tmp_path)])
        assert (tmp_path / 'fig_signal_chain.png').exists()
        assert (tmp_path / 'fig_coverage_map.png').exists()
