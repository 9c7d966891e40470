"""
BPM E2E Signal Path Model — Cascaded Signal and Noise Propagation
==================================================================

Propagates a beam-induced signal spectrum and a noise PSD through an
ordered chain of frequency-domain stages, recording the cumulative
response, signal and noise at the output of every stage.

Stage model
-----------
Each ``Stage`` carries its own complex response H (scalar or per
frequency bin), an optional noise factor F and an optional static
nonlinearity (``np.polyval`` coefficients, highest power first).

The first stage labels the raw input; it must have unit response and
no nonlinearity.  For every following stage i:

    G_i        = |H_i|^2
    H_cum,i    = H_cum,i-1 * H_i
    S_i        = H_cum,i * S_0                    (signal spectrum)
    s_i(t)     = synth(S_i), then p_i(s_i(t)) when nonlinear

    F_i        = 1 / G_i when not given (passive stage)
    Na_i       = (F_i - 1) * k T0 * G_i           (added noise PSD, T0 = 290 K)
    NiG_i      = (N_i-1 * |H_i|)^2                (noise_mode='squared')
               = N_i-1 * G_i                      (noise_mode='friis')
    N_i        = NiG_i + Na_i
    Vrms_i     = sqrt(N_i * R0 * df)              (per bin)

The nonlinearity only acts on the time waveform of its own stage; the
frequency-domain record and the following stages stay linear.

Noise waveforms are realized alongside: the added noise is drawn fresh
from ``Na_i``, the previous stage's complex noise spectrum is scaled by
sqrt(G_i), both are synthesized and summed in time, and the sum is
transformed back so the next stage consumes a self-consistent complex
noise spectrum.

The default ``'squared'`` propagation squares the previous stage PSD
together with |H_i|.  ``'friis'`` is the textbook cascade and is kept
for cross-checking the two.

Randomness
----------
Noise realizations consume the ``rng`` passed to ``propagate``.  With
``rng=None`` an unseeded generator is used and the noise waveforms are
not reproducible between calls; PSDs and RMS values are deterministic
either way.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np
from numpy.typing import ArrayLike, NDArray
from scipy.constants import Boltzmann

from spectral import (
    FrequencyGrid,
    realize_noise,
    spectrum_to_time,
    time_to_spectrum,
)


T_REF: float = 290.0    # [K] IEEE noise factor reference temperature

NOISE_MODES = ('squared', 'friis')


# ============================================================
# SECTION 1: Stage and result records
# ============================================================

@dataclass(frozen=True, eq=False)
class Stage:
    """One element of the signal path.

    Attributes
    ----------
    name : descriptive name
    response : complex scalar or per-bin complex array (amplitude response)
    noise_factor : scalar or per-bin array, None = 1/G (passive element)
    nonlinearity : polynomial coefficients applied to the time waveform,
        highest power first; None = linear
    """
    name: str
    response: Any = 1.0
    noise_factor: Optional[Any] = None
    nonlinearity: Optional[Tuple[float, ...]] = None

    def response_on(self, n_bins: int) -> NDArray:
        return _per_bin(self.response, n_bins, complex, f"response of stage '{self.name}'")

    def noise_factor_on(self, n_bins: int) -> Optional[NDArray]:
        if self.noise_factor is None:
            return None
        return _per_bin(np.real(self.noise_factor), n_bins, float,
                        f"noise factor of stage '{self.name}'")


@dataclass(frozen=True, eq=False)
class CascadeStageResult:
    """Signal and noise at the output of one stage (read-only arrays)."""
    name: str
    response: NDArray
    cumulative_response: NDArray
    signal_spectrum: NDArray
    signal_waveform: NDArray
    noise_psd: NDArray
    added_noise_psd: NDArray
    noise_spectrum: NDArray
    noise_waveform: NDArray
    noise_rms: NDArray
    nonlinear: bool = False


def _per_bin(value, n_bins: int, dtype, what: str) -> NDArray:
    arr = np.asarray(value, dtype=dtype)
    if arr.ndim == 0:
        return np.full(n_bins, arr, dtype=dtype)
    arr = arr.ravel()
    if arr.size != n_bins:
        raise ValueError(f"{what} has {arr.size} bins, grid has {n_bins}")
    return arr.copy()


def _frozen(arr: ArrayLike) -> NDArray:
    arr = np.array(arr)
    arr.setflags(write=False)
    return arr


def _as_grid(grid) -> FrequencyGrid:
    if isinstance(grid, FrequencyGrid):
        return grid
    return FrequencyGrid.from_frequencies(grid)


# ============================================================
# SECTION 2: Propagation
# ============================================================

def added_noise_psd(G: NDArray, F: Optional[NDArray], name: str = '') -> NDArray:
    """Noise PSD added by a stage of power gain G and noise factor F [W/Hz].

    F = None is the passive default F = 1/G, which reduces to
    k T0 (1 - G) and requires G <= 1.
    """
    kT0 = Boltzmann * T_REF
    if F is None:
        if np.any(G > 1.0 + 1e-9):
            raise ValueError(
                f"Stage '{name}' has power gain above unity and no noise factor")
        return np.clip(kT0 * (1.0 - G), 0.0, None)
    if np.any(F < 1.0):
        raise ValueError(f"Noise factor of stage '{name}' is below unity")
    return (F - 1.0) * kT0 * G


def propagate(stages: Sequence[Stage],
              input_signal: ArrayLike,
              input_noise_psd: ArrayLike,
              grid,
              reference_impedance: float,
              rng: Optional[np.random.Generator] = None,
              noise_mode: str = 'squared',
              verbose: bool = False) -> Tuple[CascadeStageResult, ...]:
    """Propagate signal and noise through a chain of stages.

    Parameters
    ----------
    stages : sequence of Stage
        Ordered chain; ``stages[0]`` labels the raw input.
    input_signal : complex array (M,)
        One-sided signal spectrum at the chain input.
    input_noise_psd : array (M,) or scalar
        Noise PSD at the chain input [W/Hz], usually zero.
    grid : FrequencyGrid or frequency array
    reference_impedance : float
        R0 used to convert noise PSD to RMS voltage [Ohm].
    rng : numpy Generator or None
        Random source for the noise waveforms.
    noise_mode : {'squared', 'friis'}
        Propagation rule for the noise PSD of the previous stage.
    verbose : bool
        Print the stage budget.

    Returns
    -------
    results : tuple of CascadeStageResult
        One record per stage, in chain order.
    """
    if noise_mode not in NOISE_MODES:
        raise ValueError(f"Unknown noise_mode: {noise_mode}. Use 'squared' or 'friis'.")
    if len(stages) == 0:
        raise ValueError("The stage list is empty")
    grid = _as_grid(grid)
    if rng is None:
        rng = np.random.default_rng()

    n = grid.n_bins
    fs = grid.sampling_rate
    signal = _per_bin(input_signal, n, complex, "input signal")
    psd = _per_bin(input_noise_psd, n, float, "input noise PSD")
    if np.any(psd < 0):
        raise ValueError("Input noise PSD must be non-negative")

    first = stages[0]
    if not np.allclose(first.response_on(n), 1.0) or first.nonlinearity is not None:
        raise ValueError(
            f"First stage '{first.name}' is the raw input and must be an identity stage")

    noise_spectrum = realize_noise(psd, grid, rng)
    results: List[CascadeStageResult] = [CascadeStageResult(
        name=first.name,
        response=_frozen(np.ones(n, dtype=complex)),
        cumulative_response=_frozen(np.ones(n, dtype=complex)),
        signal_spectrum=_frozen(signal),
        signal_waveform=_frozen(spectrum_to_time(signal, grid)),
        noise_psd=_frozen(psd),
        added_noise_psd=_frozen(np.zeros(n)),
        noise_spectrum=_frozen(noise_spectrum),
        noise_waveform=_frozen(spectrum_to_time(noise_spectrum, grid)),
        noise_rms=_frozen(np.sqrt(psd * reference_impedance * grid.df)),
    )]

    for stage in stages[1:]:
        prev = results[-1]
        H = stage.response_on(n)
        G = np.abs(H)**2

        cumulative = prev.cumulative_response * H
        signal_i = cumulative * signal
        waveform = spectrum_to_time(signal_i, grid)
        if stage.nonlinearity is not None:
            waveform = np.polyval(stage.nonlinearity, waveform)

        Na_psd = added_noise_psd(G, stage.noise_factor_on(n), stage.name)
        if noise_mode == 'squared':
            NiG_psd = (prev.noise_psd * np.abs(H))**2
        else:
            NiG_psd = prev.noise_psd * G
        psd_i = NiG_psd + Na_psd

        # Uncorrelated contributions: independent draw for the added noise
        Na_time = spectrum_to_time(realize_noise(Na_psd, grid, rng), grid)
        NiG_time = spectrum_to_time(prev.noise_spectrum * np.sqrt(G), grid)
        noise_time = Na_time + NiG_time

        results.append(CascadeStageResult(
            name=stage.name,
            response=_frozen(H),
            cumulative_response=_frozen(cumulative),
            signal_spectrum=_frozen(signal_i),
            signal_waveform=_frozen(waveform),
            noise_psd=_frozen(psd_i),
            added_noise_psd=_frozen(Na_psd),
            noise_spectrum=_frozen(time_to_spectrum(noise_time, fs)),
            noise_waveform=_frozen(noise_time),
            noise_rms=_frozen(np.sqrt(psd_i * reference_impedance * grid.df)),
            nonlinear=stage.nonlinearity is not None,
        ))

    results = tuple(results)
    if verbose:
        print_budget(results, grid)
    return results


# ============================================================
# SECTION 3: Reporting
# ============================================================

def integrated_noise_rms(result: CascadeStageResult) -> float:
    """Total RMS noise voltage of a stage, summed over all bins."""
    return float(np.sqrt(np.sum(result.noise_rms**2)))


def print_budget(results: Sequence[CascadeStageResult],
                 grid,
                 ref_frequency: Optional[float] = None) -> None:
    """Print the stage-by-stage gain / signal / noise budget.

    Gains are read at ``ref_frequency`` (default: the bin carrying the
    largest input signal outside DC).
    """
    grid = _as_grid(grid)
    if ref_frequency is None:
        idx = 1 + int(np.argmax(np.abs(results[0].signal_spectrum[1:])))
    else:
        idx = int(np.argmin(np.abs(grid.frequencies - ref_frequency)))
    f_ref = grid.frequencies[idx]

    print("=" * 84)
    print(f"Signal path budget at f = {f_ref / 1e6:.3f} MHz")
    print("=" * 84)
    print(f"{'Stage':<28} {'|H| [dB]':>10} {'Cum. [dB]':>10} "
          f"{'Signal pk':>11} {'Noise rms':>11} {'SNR [dB]':>9}")
    print("-" * 84)
    for r in results:
        own = 20 * np.log10(max(abs(r.response[idx]), 1e-300))
        cum = 20 * np.log10(max(abs(r.cumulative_response[idx]), 1e-300))
        peak = float(np.max(np.abs(r.signal_waveform)))
        noise = integrated_noise_rms(r)
        snr = 20 * np.log10(peak / np.sqrt(2) / noise) if noise > 0 and peak > 0 else np.inf
        nl = '*' if r.nonlinear else ' '
        print(f"{r.name:<27}{nl} {own:10.2f} {cum:10.2f} "
              f"{peak:11.4e} {noise:11.4e} {snr:9.1f}")
    print("-" * 84)
    print("  * nonlinear stage (waveform only)")
    print("=" * 84)
