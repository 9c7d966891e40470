"""
BPM E2E Signal Path Model — Spectral Synthesis Library
=======================================================

Canonical Fourier-series conversions for every module of the BPM
signal path model.  The cascade engine and the front-end builder
import from here.

Record convention
-----------------
A one-sided spectrum on a uniform grid ``f = 0, df, ..., (M-1)*df``
describes a real, periodic waveform sampled at

    Fs = 2*f_max + df = (2M - 1) * df

over an odd-length record of ``N = 2M - 1`` samples.  Amplitudes are
*peak* cosine amplitudes:

    x(t) = a_0 cos(phi_0) + sum_k a_k cos(2 pi f_k t + phi_k)

so a complex bin value ``a_k exp(j phi_k)`` is read directly as the
phasor of the k-th harmonic.  Odd-length records round-trip exactly
through ``to_frequency`` / ``to_time``.

Randomness
----------
``realize_noise`` draws from the ``numpy.random.Generator`` it is
given.  Passing ``rng=None`` uses a fresh, unseeded generator, so the
realized waveforms then differ from call to call.

Sections
--------
=====  ============================================================
S      Contents
=====  ============================================================
1      FrequencyGrid
2      Fourier series <-> time record
3      Pseudorandom noise realization from a target PSD
4      Minimum-phase spectrum from a magnitude response
=====  ============================================================
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from numpy.typing import ArrayLike, NDArray


# ======================================================================
# S1  FREQUENCY GRID
# ======================================================================

@dataclass(frozen=True)
class FrequencyGrid:
    """Uniform one-sided frequency grid starting at DC.

    Attributes
    ----------
    df : float
        Bin spacing [Hz].
    n_bins : int
        Number of bins M (DC included).
    """
    df: float
    n_bins: int

    def __post_init__(self):
        if self.n_bins < 2:
            raise ValueError(f"FrequencyGrid needs at least 2 bins, got {self.n_bins}")
        if not self.df > 0:
            raise ValueError(f"FrequencyGrid spacing must be positive, got {self.df}")

    @classmethod
    def from_frequencies(cls, frequencies: ArrayLike,
                         rtol: float = 1e-6) -> 'FrequencyGrid':
        """Validate an explicit frequency vector and wrap it.

        The vector must start at DC and be strictly increasing with a
        uniform spacing (relative tolerance ``rtol``).
        """
        f = np.asarray(frequencies, dtype=float).ravel()
        if f.size < 2:
            raise ValueError("Frequency grid needs at least 2 points")
        df = f[1] - f[0]
        if not df > 0:
            raise ValueError("Frequency grid must be strictly increasing")
        if abs(f[0]) > rtol * df:
            raise ValueError(f"Frequency grid must start at DC, got f[0] = {f[0]}")
        if not np.allclose(np.diff(f), df, rtol=rtol, atol=0.0):
            raise ValueError("Frequency grid is not uniformly spaced")
        return cls(df=float(df), n_bins=int(f.size))

    @property
    def frequencies(self) -> NDArray:
        return np.arange(self.n_bins) * self.df

    @property
    def f_max(self) -> float:
        return (self.n_bins - 1) * self.df

    @property
    def sampling_rate(self) -> float:
        """Effective sampling rate Fs = 2*f_max + df."""
        return 2.0 * self.f_max + self.df

    @property
    def record_length(self) -> int:
        """Number of time samples, 2M - 1 (always odd)."""
        return 2 * self.n_bins - 1

    @property
    def time_vector(self) -> NDArray:
        return np.arange(self.record_length) / self.sampling_rate


# ======================================================================
# S2  FOURIER SERIES <-> TIME RECORD
# ======================================================================

def to_time(amplitude: ArrayLike,
            phase: ArrayLike,
            grid: FrequencyGrid) -> NDArray:
    """Synthesize the real periodic waveform of a one-sided spectrum.

    Parameters
    ----------
    amplitude : array (M,)
        Peak cosine amplitude per bin.
    phase : array (M,)
        Phase per bin [rad].
    grid : FrequencyGrid
        Grid the spectrum lives on.

    Returns
    -------
    x : ndarray (2M - 1,)
        Real time record sampled at ``grid.sampling_rate``.
    """
    amplitude = np.asarray(amplitude, dtype=float)
    phase = np.asarray(phase, dtype=float)
    if amplitude.shape != (grid.n_bins,) or phase.shape != (grid.n_bins,):
        raise ValueError(
            f"Spectrum shape {amplitude.shape}/{phase.shape} does not match "
            f"grid of {grid.n_bins} bins")

    n = grid.record_length
    X = amplitude * np.exp(1j * phase) * (n / 2.0)
    X[0] *= 2.0
    return np.fft.irfft(X, n=n)


def to_frequency(waveform: ArrayLike,
                 sampling_rate: float) -> Tuple[NDArray, NDArray]:
    """Fourier-series amplitude and phase of a real time record.

    Inverse of ``to_time`` for odd-length records.  For an even-length
    record the last bin is the Nyquist bin, whose cosine amplitude is
    ``|X|/N`` rather than ``2|X|/N``.

    Returns
    -------
    amplitude, phase : ndarray
        Peak cosine amplitudes and phases on the bins
        ``k * sampling_rate / N``.
    """
    x = np.asarray(waveform, dtype=float)
    n = x.size
    X = np.fft.rfft(x)
    amplitude = 2.0 * np.abs(X) / n
    amplitude[0] /= 2.0
    if n % 2 == 0:
        amplitude[-1] /= 2.0
    return amplitude, np.angle(X)


def fourier_frequencies(n_samples: int, sampling_rate: float) -> NDArray:
    """Bin frequencies returned by ``to_frequency`` for a record of n samples."""
    return np.fft.rfftfreq(n_samples, d=1.0 / sampling_rate)


def spectrum_to_time(spectrum: ArrayLike, grid: FrequencyGrid) -> NDArray:
    """Complex one-sided spectrum -> time record."""
    spectrum = np.asarray(spectrum, dtype=complex)
    return to_time(np.abs(spectrum), np.angle(spectrum), grid)


def time_to_spectrum(waveform: ArrayLike, sampling_rate: float) -> NDArray:
    """Time record -> complex one-sided spectrum."""
    amplitude, phase = to_frequency(waveform, sampling_rate)
    return amplitude * np.exp(1j * phase)


# ======================================================================
# S3  NOISE REALIZATION
# ======================================================================

def realize_noise(psd: ArrayLike,
                  grid: FrequencyGrid,
                  rng: Optional[np.random.Generator] = None) -> NDArray:
    """Pseudorandom complex noise spectrum with a target PSD.

    White normal samples scaled by sqrt(Fs) are transformed to the
    frequency domain; each bin keeps its drawn phase and has its
    magnitude scaled by sqrt(PSD).

    In expectation the synthesized waveform has mean square
    ``df * (psd[0] + 2 * sum(psd[1:]))``.

    Parameters
    ----------
    psd : array (M,) or scalar
        Target one-sided PSD per bin (non-negative).
    grid : FrequencyGrid
    rng : numpy Generator or None
        Random source.  ``None`` means an unseeded generator.

    Returns
    -------
    noise : complex ndarray (M,)
    """
    psd = np.broadcast_to(np.asarray(psd, dtype=float), (grid.n_bins,))
    if np.any(psd < 0):
        raise ValueError("Noise PSD must be non-negative")
    if rng is None:
        rng = np.random.default_rng()

    fs = grid.sampling_rate
    white = rng.standard_normal(grid.record_length) * np.sqrt(fs)
    return time_to_spectrum(white, fs) * np.sqrt(psd)


# ======================================================================
# S4  MINIMUM-PHASE SPECTRUM
# ======================================================================

def minimum_phase(magnitude: ArrayLike, floor_db: float = -100.0) -> NDArray:
    """Minimum-phase complex response with a given one-sided magnitude.

    Folded real-cepstrum construction on the Hermitian extension of the
    one-sided grid.  Magnitudes below ``floor_db`` relative to the peak
    are clipped to the floor before taking the logarithm.

    Parameters
    ----------
    magnitude : array (M,)
        Linear magnitude response on a DC-anchored uniform grid.
    floor_db : float
        Clipping floor [dB re peak].

    Returns
    -------
    H : complex ndarray (M,)
        Response with ``|H| == max(magnitude, floor)``.
    """
    mag = np.abs(np.asarray(magnitude, dtype=float))
    floor = mag.max() * 10.0**(floor_db / 20.0)
    mag = np.maximum(mag, floor)

    full = np.concatenate([mag, mag[:0:-1]])
    n = full.size
    cepstrum = np.fft.ifft(np.log(full)).real

    # Fold the anticausal half of the cepstrum onto the causal half
    fold = np.zeros(n)
    fold[0] = 1.0
    fold[1:(n + 1) // 2] = 2.0
    if n % 2 == 0:
        fold[n // 2] = 1.0

    H = np.exp(np.fft.fft(fold * cepstrum))
    return H[:mag.size]
