"""
BPM E2E Signal Path Model — Button BPM RF Front End
====================================================

Builds the signal path of a button BPM, from beam current to ADC
input, as an ordered list of ``cascade.Stage`` objects and runs the
cascade engine over it.

Signal path (SIRIUS RFFE v2 baseline)
-------------------------------------
    Beam current
      -> BPM button current      coverage * bd / (beta c) * j 2 pi f
      -> BPM button voltage      R0 / (1 + j 2 pi f R0 Cb),  F = 1 + 1/|Z|^2
      -> Coax. cable             exp(-(1 + j sgn f) sqrt(|f|/fe) L / 30.5)
      -> RFFE LPF #1             Mini-Circuits LFCN-530 (minimum phase)
      -> RFFE BPF #1             TAI-SAW TA1113A around f_RF (minimum phase)
      -> RFFE Amp #1             Mini-Circuits TAMP-72LN, 20 dB, NF 1 dB, nonlinear
      -> RFFE Att #1             Mini-Circuits DAT-31R5-SP, 1.5 dB IL + setting
      -> RFFE LPF #2
      -> RFFE Amp #2
      -> RFFE LPF #3
      -> RFFE-FMC ADC coax. cable   0.5 dB IL
      -> ADC analog front-end       2.5 dB IL
      -> ADC input                  ADC nonlinearity

Stages without an explicit noise factor are passive (F = 1/G).

Device values
-------------
``SIRIUS_MACHINE`` and the filter tables below are representative
datasheet values; swap the dict (or pass your own) to model another
front end.  Cable length unit is metres; the attenuation model is
referred to 30.5 m (100 ft) of cable.
"""

from __future__ import annotations

import os
from typing import List, Optional

import numpy as np
from numpy.typing import ArrayLike, NDArray
from scipy.constants import speed_of_light

from beam_coverage import beam_coverage
from cascade import Stage, propagate
from spectral import FrequencyGrid, fourier_frequencies, minimum_phase


# ============================================================================
# Machine / pickup configuration
# ============================================================================

PICKUP_TEMPLATE: dict = {
    'button': {
        'diameter': 6.0e-3,     # [m]
        'type': 'round',
    },
    'chamber': {
        'type': 'circular',
        'radius': 12.0e-3,      # [m]
    },
}
"""Storage-ring button BPM: 6 mm round buttons in a 24 mm round pipe."""

SIRIUS_MACHINE: dict = {
    'name': 'SIRIUS storage ring',
    'beta': 0.99999998,                 # 3 GeV electrons
    'frf': 499.664e6,                   # [Hz]
    'R0': 50.0,                         # [Ohm] reference impedance
    'pickup': PICKUP_TEMPLATE,
    'button_capacitance': 2.6e-12,      # [F] measured
    'cable': {
        'fe': 3.70e8,                   # [Hz] LMR195, ~10 dB / 30.5 m at 500 MHz
        'length': 20.0,                 # [m]
    },
    'amplifier': {
        'gain': 10.0,                   # amplitude gain (20 dB)
        'noise_figure_db': 1.0,
        'nonlinearity': (-0.048634, 1.0, 0.0),
    },
    'attenuator_insertion_loss_db': 1.5,
    'adc_cable_insertion_loss_db': 0.5,
    'adc_afe_insertion_loss_db': 2.5,
    'adc_nonlinearity': (-0.001, 1.0, 0.0),
}

# Mini-Circuits LFCN-530 low-pass filter
LPF_TABLE_HZ = 1e6 * np.array([0, 1, 100, 500, 530, 670, 700, 815, 820, 945,
                               1315, 2140, 3000, 1e9])
LPF_TABLE_DB = np.array([0, -0.05, -0.22, -0.73, -0.81, -1.95, -2.89, -26.41,
                         -28.41, -44.98, -39.77, -57.51, -60, -60])

# TAI-SAW TA1113A band-pass filter, gain vs frequency relative to f_RF
BPF_TABLE_DB = np.array([-80, -80, -70, -60, -55, -52, -2, -2, -55, -55])


def bpf_table_hz(frf: float) -> NDArray:
    return np.array([0, 300e3, 100e6, 200e6, 300e6,
                     frf - 20e6, frf - 10e6, frf + 10e6, frf + 40e6, 1e15])


# ============================================================================
# Device responses
# ============================================================================

def db_to_amplitude(db: ArrayLike) -> NDArray:
    return 10.0**(np.asarray(db, dtype=float) / 20.0)


def db_to_power(db: ArrayLike) -> NDArray:
    return 10.0**(np.asarray(db, dtype=float) / 10.0)


def beam_to_button_current(f: ArrayLike, coverage: float,
                           button_diameter: float, beta: float) -> NDArray:
    """Image current on the button per unit beam current."""
    f = np.asarray(f, dtype=float)
    return coverage * button_diameter / (beta * speed_of_light) * (1j * 2 * np.pi * f)


def button_impedance(f: ArrayLike, R0: float, Cb: float) -> NDArray:
    """Button capacitance in parallel with the R0 load [Ohm]."""
    f = np.asarray(f, dtype=float)
    return R0 / (1 + 1j * 2 * np.pi * f * R0 * Cb)


def cable_response(f: ArrayLike, fe: float, length: float) -> NDArray:
    """Skin-effect coax model, attenuation and phase ~ sqrt(f)."""
    f = np.asarray(f, dtype=float)
    return np.exp(-(1 + np.sign(f) * 1j) * np.sqrt(np.abs(f) / fe) * length / 30.5)


def tabulated_response(f: ArrayLike, table_hz: ArrayLike, table_db: ArrayLike) -> NDArray:
    """Minimum-phase response from a gain table (dB, linear interpolation)."""
    gain = np.interp(np.asarray(f, dtype=float), table_hz, table_db)
    return minimum_phase(db_to_amplitude(gain))


def attenuator_response(attenuation_db: float, insertion_loss_db: float = 1.5) -> float:
    return float(db_to_amplitude(-insertion_loss_db - attenuation_db))


# ============================================================================
# Signal path
# ============================================================================

def build_front_end_stages(frequencies: ArrayLike,
                           coverage: float,
                           attenuation_db: float,
                           machine: dict = SIRIUS_MACHINE) -> List[Stage]:
    """Signal path stages from beam current to ADC input.

    Parameters
    ----------
    frequencies : array
        DC-anchored uniform frequency grid [Hz].
    coverage : float
        Coverage factor of the button being modelled.
    attenuation_db : float
        RFFE step attenuator setting [dB].
    machine : dict
        Machine configuration (see ``SIRIUS_MACHINE``).
    """
    f = np.asarray(frequencies, dtype=float)
    R0 = machine['R0']
    bd = machine['pickup']['button']['diameter']
    amp = machine['amplifier']

    Zbutton = button_impedance(f, R0, machine['button_capacitance'])
    LPF = tabulated_response(f, LPF_TABLE_HZ, LPF_TABLE_DB)
    BPF = tabulated_response(f, bpf_table_hz(machine['frf']), BPF_TABLE_DB)
    amp_F = float(db_to_power(amp['noise_figure_db']))
    amp_nl = tuple(amp['nonlinearity'])

    return [
        Stage('Beam current'),
        Stage('BPM button current',
              beam_to_button_current(f, coverage, bd, machine['beta']),
              noise_factor=1.0),
        Stage('BPM button voltage', Zbutton,
              noise_factor=1 + 1 / np.abs(Zbutton)**2),
        Stage('Coax. cable (BPM to RFFE)',
              cable_response(f, machine['cable']['fe'], machine['cable']['length'])),
        Stage('RFFE LPF #1', LPF),
        Stage('RFFE BPF #1', BPF),
        Stage('RFFE Amp #1', amp['gain'], noise_factor=amp_F, nonlinearity=amp_nl),
        Stage('RFFE Att #1',
              attenuator_response(attenuation_db, machine['attenuator_insertion_loss_db'])),
        Stage('RFFE LPF #2', LPF),
        Stage('RFFE Amp #2', amp['gain'], noise_factor=amp_F, nonlinearity=amp_nl),
        Stage('RFFE LPF #3', LPF),
        Stage('RFFE-FMC ADC coax. cable',
              float(db_to_amplitude(-machine['adc_cable_insertion_loss_db']))),
        Stage('ADC analog front-end',
              float(db_to_amplitude(-machine['adc_afe_insertion_loss_db']))),
        Stage('ADC input', 1.0, nonlinearity=tuple(machine['adc_nonlinearity'])),
    ]


def simulate_bpm_response(beam_current_spectrum: ArrayLike,
                          frequencies: ArrayLike,
                          beam_position: ArrayLike,
                          attenuation_db: float,
                          machine: dict = SIRIUS_MACHINE,
                          rng: Optional[np.random.Generator] = None,
                          n_coverage: int = 500,
                          noise_mode: str = 'squared',
                          verbose: bool = False):
    """Button BPM response from beam current to ADC input.

    The button with the largest coverage factor at ``beam_position``
    is modelled.

    Parameters
    ----------
    beam_current_spectrum : complex array (M,)
        One-sided beam current spectrum [A].
    frequencies : array (M,)
        DC-anchored uniform frequency grid [Hz].
    beam_position : (x, y)
        Beam offset [m].
    attenuation_db : float
        RFFE step attenuator setting [dB].
    machine : dict
        Machine configuration.
    rng : numpy Generator or None
        Random source for the noise waveforms (None = unseeded).
    n_coverage : int
        Chamber discretization for the coverage factor.
    noise_mode : {'squared', 'friis'}
    verbose : bool
        Print the coverage factors and the stage budget.

    Returns
    -------
    results : tuple of CascadeStageResult
    t : ndarray
        Time vector of the waveforms [s].
    """
    grid = FrequencyGrid.from_frequencies(frequencies)
    CovF = beam_coverage(machine['pickup'], beam_position, n_coverage, verbose=verbose)[0]

    stages = build_front_end_stages(grid.frequencies, float(np.max(CovF)),
                                    attenuation_db, machine)
    results = propagate(stages, beam_current_spectrum, np.zeros(grid.n_bins), grid,
                        machine['R0'], rng=rng, noise_mode=noise_mode, verbose=verbose)
    return results, grid.time_vector


# ============================================================================
# Beam current spectrum
# ============================================================================

def bunch_train_spectrum(frequencies: ArrayLike,
                         average_current: float,
                         bunch_length: float,
                         frf: float) -> NDArray:
    """One-sided spectrum of a uniformly filled train of Gaussian bunches.

    Lines sit at the RF harmonics only: DC carries the average current,
    harmonic k carries 2 I exp(-(2 pi k f_RF sigma_t)^2 / 2).  Choose
    the grid spacing as f_RF / integer so the harmonics land on bins.

    Parameters
    ----------
    frequencies : array [Hz]
    average_current : float [A]
    bunch_length : float
        RMS bunch length [s].
    frf : float
        Bunch repetition (RF) frequency [Hz].
    """
    f = np.asarray(frequencies, dtype=float)
    k = f / frf
    on_harmonic = np.isclose(k, np.round(k), rtol=0.0, atol=1e-6)
    envelope = 2 * average_current * np.exp(-(2 * np.pi * f * bunch_length)**2 / 2)
    spectrum = np.where(on_harmonic, envelope, 0.0).astype(complex)
    spectrum[f == 0] = average_current
    return spectrum


def default_frequency_grid(frf: float = SIRIUS_MACHINE['frf'],
                           bins_per_harmonic: int = 100,
                           n_harmonics: int = 12) -> NDArray:
    """DC-anchored grid with f_RF / bins_per_harmonic spacing."""
    df = frf / bins_per_harmonic
    return np.arange(bins_per_harmonic * n_harmonics + 1) * df


# ============================================================================
# Figures
# ============================================================================

def make_fig_signal_chain(results, t, stage_names=None, output_dir=None):
    """Waveforms and noise PSD along the signal path."""
    import matplotlib.pyplot as plt

    if output_dir is None:
        output_dir = os.environ.get('BPM_OUTPUT_DIR', os.getcwd())
    if stage_names is None:
        stage_names = ['BPM button voltage', 'RFFE BPF #1', 'RFFE Amp #2', 'ADC input']
    shown = [r for r in results if r.name in stage_names]
    f_mhz = fourier_frequencies(t.size, 1.0 / (t[1] - t[0])) / 1e6

    fig, (ax_t, ax_n) = plt.subplots(2, 1, figsize=(10, 8))
    for r in shown:
        peak = np.max(np.abs(r.signal_waveform))
        ax_t.plot(t * 1e9, r.signal_waveform / (peak if peak > 0 else 1.0),
                  label=r.name)
        ax_n.semilogy(f_mhz, np.maximum(r.noise_psd, 1e-40), label=r.name)

    ax_t.set_xlabel('Time (ns)')
    ax_t.set_ylabel('Normalised signal')
    ax_t.set_title('Signal waveform along the BPM front end')
    ax_t.legend(loc='upper right', fontsize=8)
    ax_n.set_xlabel('Frequency (MHz)')
    ax_n.set_ylabel('Noise PSD (W/Hz)')
    ax_n.legend(loc='upper right', fontsize=8)

    fig.tight_layout()
    path = os.path.join(output_dir, 'fig_signal_chain.png')
    fig.savefig(path)
    plt.close(fig)
    print(f"[OK] Signal chain figure saved: {path}")
    return path
