"""
BPM E2E Signal Path Model — Beam Coverage Factors
==================================================

Fraction of the image charge induced on the vacuum chamber wall by
an off-centre, relativistic beam that is intercepted by each of the
four BPM pickup buttons.

Button convention
-----------------
    CovF[0]  button at +x, +y
    CovF[1]  button at -x, +y
    CovF[2]  button at -x, -y
    CovF[3]  button at +x, -y

Methods
-------
Circular chamber (closed form)
    Image-charge angular density of a line charge at polar offset
    (d, theta) inside a grounded pipe of radius r,

        j(phi) = (r^2 - d^2) / (2 pi (r^2 + d^2 - 2 r d cos(phi - theta)))

    integrated over the button aperture bd/r centred on pi/4, 3pi/4,
    5pi/4, 7pi/4.

Arbitrary chamber (boundary element)
    The contour is cut into m straight segments with midpoints r_i and
    lengths sl_i.  With the 2D Laplace single-layer kernel -log|r|,

        G[i, j] = -log|r_i - r_j| * sl_j         (i != j)
        G[j, j] = 2 sl_j (1 - log sl_j)          (self term)
        B[i]    = -log|r_beam - r_i|

    and G sigma = B gives the induced line density sigma.  The matrix
    depends on the geometry only, so it is LU-factored once and every
    beam position is a back-substitution.

    On the closed contour the trapezoidal rule is the plain sum
    sum(sl * sigma), which must come out within 1 % of unity; otherwise
    an ``InaccurateCoverageWarning`` is issued (increase n).

Both raw results are divided by the button shape correction, the
ratio between a square of side bd and the button area (4/pi for round
buttons).

References
----------
- A. Stella, "Analysis of the DAFNE beam position monitor with a
  boundary element method", DAFNE Note CD-10 (1997)
- T. Shintake et al., "Sensitivity calculation of beam position
  monitor", NIM A254 (1987) 146-150
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from typing import Tuple

import numpy as np
from numpy.typing import ArrayLike, NDArray
from matplotlib.path import Path
from scipy.integrate import trapezoid
from scipy.linalg import lu_factor, lu_solve

from chamber_geometry import (
    Chamber,
    ChamberContour,
    CircularChamber,
    OctagonalChamber,
    chamber_from_dict,
    generate_contour,
    round_discretization,
)


BUTTON_ANGLES = np.array([np.pi / 4, 3 * np.pi / 4, 5 * np.pi / 4, 7 * np.pi / 4])

# Allowed deviation of the full-contour charge integral from unity
CONTOUR_TOLERANCE: float = 1e-2


class UnknownButtonShapeWarning(UserWarning):
    """Button shape not recognised; no shape correction applied."""


class InaccurateCoverageWarning(UserWarning):
    """Boundary-element contour integral too far from unity."""


# ============================================================
# SECTION 1: Pickup description
# ============================================================

@dataclass(frozen=True)
class PickupButton:
    """Pickup button.

    Attributes
    ----------
    diameter : button diameter [m]
    shape : 'round' or anything else (no shape correction)
    """
    diameter: float
    shape: str = 'round'

    def __post_init__(self):
        if not self.diameter > 0:
            raise ValueError(f"Button diameter must be positive, got {self.diameter}")

    @property
    def correction_factor(self) -> float:
        """Area ratio square(bd) / button; 1 with a warning for unknown shapes."""
        if str(self.shape).lower() == 'round':
            return 4.0 / np.pi
        warnings.warn(f"Unknown type of pickup button: {self.shape!r}. "
                      f"Coverage factors are not shape corrected.",
                      UnknownButtonShapeWarning, stacklevel=3)
        return 1.0


@dataclass(frozen=True)
class Pickup:
    button: PickupButton
    chamber: Chamber


def pickup_from_dict(config: dict) -> Pickup:
    """Build a Pickup from ``{'button': {...}, 'chamber': {...}}``.

    The button dict needs ``diameter``; ``type`` (shape) is optional.
    """
    if isinstance(config, Pickup):
        return config
    for key in ('button', 'chamber'):
        if key not in config:
            raise ValueError(f"'{key}' field is not present in the pickup structure.")
    button = config['button']
    if 'diameter' not in button:
        raise ValueError("The button field 'diameter' is not present in the pickup structure.")
    return Pickup(
        button=PickupButton(diameter=float(button['diameter']),
                            shape=button.get('type', button.get('shape', 'unknown'))),
        chamber=chamber_from_dict(config['chamber']),
    )


def _as_positions(beam_positions: ArrayLike) -> NDArray:
    pos = np.atleast_2d(np.asarray(beam_positions, dtype=float))
    if pos.ndim != 2 or pos.shape[1] != 2:
        raise ValueError(f"Beam positions must be (x, y) pairs, got shape {pos.shape}")
    return pos


# ============================================================
# SECTION 2: Circular chamber, closed form
# ============================================================

def axial_density(d, theta, r, phi):
    """Image-charge angular density times pipe radius (circular chamber)."""
    return (r**2 - d**2) / (2.0 * np.pi * (r**2 + d**2 - 2.0 * r * d * np.cos(phi - theta)))


def analytic_coverage(button: PickupButton,
                      chamber: CircularChamber,
                      positions: NDArray,
                      n: int) -> NDArray:
    """Raw (uncorrected) button coupling from the closed-form density.

    Each aperture is sampled with n points and integrated with the
    trapezoidal rule.
    """
    r = chamber.radius
    bd = button.diameter
    d = np.hypot(positions[:, 0], positions[:, 1])
    theta = np.arctan2(positions[:, 1], positions[:, 0])
    if np.any(d >= r):
        raise ValueError("Beam position outside the circular chamber")

    dphi = bd / r * np.linspace(-0.5, 0.5, n)
    step = bd / r / (n - 1)

    # (positions, buttons, aperture samples)
    phi = BUTTON_ANGLES[None, :, None] + dphi[None, None, :]
    density = axial_density(d[:, None, None], theta[:, None, None], r, phi)
    return trapezoid(density, dx=step, axis=-1)


# ============================================================
# SECTION 3: Boundary element method
# ============================================================

def influence_matrix(xm: NDArray, ym: NDArray, sl: NDArray) -> NDArray:
    """Dense single-layer influence matrix of the segment midpoints."""
    dist = np.hypot(xm[:, None] - xm[None, :], ym[:, None] - ym[None, :])
    np.fill_diagonal(dist, 1.0)
    G = -np.log(dist) * sl[None, :]
    np.fill_diagonal(G, 2.0 * sl * (1.0 - np.log(sl)))
    return G


def button_borders(button: PickupButton, chamber: Chamber) -> Tuple[float, float]:
    """Inner and outer button edges projected on the horizontal axis.

    Octagonal: buttons sit on the flat faces, ``button_distance`` apart.
    Circular: aperture bd/r centred 45 deg from the vertical axis.
    """
    bd = button.diameter
    if isinstance(chamber, OctagonalChamber):
        bcs = chamber.button_distance
        return bcs / 2 - bd / 2, bcs / 2 + bd / 2
    if isinstance(chamber, CircularChamber):
        r = chamber.radius
        aperture = bd / r
        return (np.sin(np.pi / 4 - aperture / 2) * r,
                np.sin(np.pi / 4 + aperture / 2) * r)
    raise ValueError(f"Unknown chamber kind: {type(chamber).__name__}")


def _overlap_fraction(x0: NDArray, x1: NDArray, lo: float, hi: float) -> NDArray:
    """Fraction of each segment's x-projection that falls inside (lo, hi)."""
    a = np.minimum(x0, x1)
    b = np.maximum(x0, x1)
    span = b - a
    inside = np.clip(np.minimum(b, hi) - np.maximum(a, lo), 0.0, None)
    vertical = span <= 1e-12 * max(abs(hi), abs(lo), 1.0)
    frac = np.where(vertical, 0.0, inside / np.where(vertical, 1.0, span))
    mid = 0.5 * (a + b)
    return np.where(vertical, ((mid > lo) & (mid < hi)).astype(float), frac)


def button_weights(contour: ChamberContour, bx1: float, bx2: float) -> NDArray:
    """Per-segment weights (4, m) selecting each button's part of the contour.

    Buttons 1 and 2 are looked for in the upper half of the contour,
    3 and 4 in the lower half.  Segments entirely inside a button
    border weigh 1; the two boundary segments weigh the fraction of
    their horizontal projection inside the border.
    """
    m = contour.n_segments
    half = m // 2
    x0, x1 = contour.x[:-1], contour.x[1:]
    upper = np.arange(m) < half

    weights = np.zeros((4, m))
    ranges = [(bx1, bx2, upper), (-bx2, -bx1, upper),
              (-bx2, -bx1, ~upper), (bx1, bx2, ~upper)]
    for k, (lo, hi, in_half) in enumerate(ranges):
        weights[k] = _overlap_fraction(x0, x1, lo, hi) * in_half
    return weights


def bem_coverage(button: PickupButton,
                 chamber: Chamber,
                 positions: NDArray,
                 n: int) -> Tuple[NDArray, NDArray]:
    """Raw button coupling and contour totals from the boundary-element solve.

    Returns
    -------
    Q : ndarray (npts, 4)
        Raw per-button coupling.
    total : ndarray (npts,)
        Full-contour charge integral per position.
    """
    contour = generate_contour(chamber, n)
    xm, ym = contour.midpoints
    sl = contour.segment_lengths

    inside = Path(contour.vertices).contains_points(positions)
    if not np.all(inside):
        bad = positions[~inside]
        raise ValueError(f"Beam position(s) outside the chamber contour: {bad.tolist()}")

    lu = lu_factor(influence_matrix(xm, ym, sl))

    # (m, npts) right-hand sides, one column per beam position
    B = -np.log(np.hypot(positions[None, :, 0] - xm[:, None],
                         positions[None, :, 1] - ym[:, None]))
    sigma = lu_solve(lu, B)

    charge = sl[:, None] * sigma
    weights = button_weights(contour, *button_borders(button, chamber))
    Q = (weights @ charge).T
    total = charge.sum(axis=0)
    return Q, total


# ============================================================
# SECTION 4: Public entry point
# ============================================================

def beam_coverage(pickup, beam_positions: ArrayLike,
                  n: int = 101,
                  method: str = 'auto',
                  verbose: bool = False) -> NDArray:
    """Coverage factor of the four buttons for one or more beam positions.

    Parameters
    ----------
    pickup : Pickup or dict
        Button and chamber description.
    beam_positions : (2,) or (npts, 2) array
        Horizontal and vertical beam offsets [m]; each row is solved
        independently.
    n : int
        Number of points describing the chamber (rounded to 4k + 1).
        Closed form: aperture quadrature points.
    method : {'auto', 'analytic', 'bem'}
        ``'auto'`` uses the closed form for circular chambers and the
        boundary element method otherwise.
    verbose : bool
        Print a coverage table.

    Returns
    -------
    CovF : ndarray (npts, 4)
        Coverage factors, button order (+x+y, -x+y, -x-y, +x-y).
    """
    pickup = pickup_from_dict(pickup)
    positions = _as_positions(beam_positions)
    n = round_discretization(n)
    chamber = pickup.chamber

    if method == 'auto':
        method = 'analytic' if isinstance(chamber, CircularChamber) else 'bem'

    if method == 'analytic':
        if not isinstance(chamber, CircularChamber):
            raise ValueError("The closed-form coverage is only valid for circular chambers")
        Q = analytic_coverage(pickup.button, chamber, positions, n)
    elif method == 'bem':
        Q, total = bem_coverage(pickup.button, chamber, positions, n)
        for p, t in zip(positions, total):
            if abs(1.0 - t) > CONTOUR_TOLERANCE:
                warnings.warn(
                    f"Inaccurate calculation at beam position {tuple(p)} "
                    f"(contour integral = {t:.5f}). Increase n.",
                    InaccurateCoverageWarning, stacklevel=2)
    else:
        raise ValueError(f"Unknown method: {method}. Use 'auto', 'analytic' or 'bem'.")

    CovF = Q / pickup.button.correction_factor

    if verbose:
        _print_coverage(positions, CovF, method)
    return CovF


def delta_over_sigma(CovF: ArrayLike) -> NDArray:
    """Normalised horizontal and vertical difference-over-sum.

    Returns (npts, 2): ((A+D)-(B+C))/S and ((A+B)-(C+D))/S with buttons
    A..D in the CovF order.
    """
    q = np.atleast_2d(np.asarray(CovF, dtype=float))
    a, b, c, d = q.T
    s = a + b + c + d
    return np.column_stack([((a + d) - (b + c)) / s, ((a + b) - (c + d)) / s])


def _print_coverage(positions: NDArray, CovF: NDArray, method: str) -> None:
    print("=" * 70)
    print(f"Beam coverage factors ({method})")
    print("=" * 70)
    print(f"  {'x [mm]':>8} {'y [mm]':>8}   {'+x+y':>9} {'-x+y':>9} {'-x-y':>9} {'+x-y':>9}")
    print("-" * 70)
    for (x, y), q in zip(positions, CovF):
        print(f"  {x * 1e3:8.3f} {y * 1e3:8.3f}   " + " ".join(f"{v:9.5f}" for v in q))
    print("=" * 70)


# ============================================================
# SECTION 5: Figures
# ============================================================

def make_fig_coverage_map(pickup, extent: float = 4e-3, n_grid: int = 9,
                          n: int = 101, output_dir=None):
    """Difference-over-sum map of a square grid of beam positions."""
    import os
    import matplotlib.pyplot as plt

    if output_dir is None:
        output_dir = os.environ.get('BPM_OUTPUT_DIR', os.getcwd())
    pickup = pickup_from_dict(pickup)

    u = np.linspace(-extent, extent, n_grid)
    xx, yy = np.meshgrid(u, u)
    positions = np.column_stack([xx.ravel(), yy.ravel()])
    ds = delta_over_sigma(beam_coverage(pickup, positions, n))

    fig, (ax_p, ax_d) = plt.subplots(1, 2, figsize=(12, 5.5))
    ax_p.plot(positions[:, 0] * 1e3, positions[:, 1] * 1e3, 'o', ms=3, color='steelblue')
    contour = generate_contour(pickup.chamber, n)
    ax_p.plot(contour.x * 1e3, contour.y * 1e3, '-', color='gray', lw=1)
    ax_p.set_aspect('equal')
    ax_p.set_xlabel('x (mm)')
    ax_p.set_ylabel('y (mm)')
    ax_p.set_title('Beam positions')

    ax_d.plot(ds[:, 0], ds[:, 1], 'o', ms=3, color='coral')
    ax_d.set_xlabel(r'$\Delta_x / \Sigma$')
    ax_d.set_ylabel(r'$\Delta_y / \Sigma$')
    ax_d.set_title('Difference over sum')

    fig.tight_layout()
    path = os.path.join(output_dir, 'fig_coverage_map.png')
    fig.savefig(path)
    plt.close(fig)
    print(f"[OK] Coverage map saved: {path}")
    return path
