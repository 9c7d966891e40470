"""
BPM E2E Signal Path Model — Vacuum Chamber Geometry
====================================================

Boundary contours of BPM vacuum chamber cross-sections, discretized
into ordered line segments for the boundary-element coverage solver.

All lengths are SI metres.

Chamber kinds
-------------
``CircularChamber``   radius
``OctagonalChamber``  up, down, left, right, height, width, button_distance

    up / down        length of the top / bottom flat faces
    left / right     length of the vertical side walls
    height / width   overall inner height / width
    button_distance  horizontal distance between the two button
                     centres on the same flat face

Both kinds are four-fold symmetric (mirror in x and in y) when
``up == down`` and ``left == right``.  The discretization keeps that
symmetry: the requested point count is rounded to the nearest
``4k + 1``.

Configuration dicts (``{'type': 'circular', 'radius': 0.012}``) are
turned into the dataclasses by ``chamber_from_dict``, which fails
fast on an unknown type or a missing field.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Union

import numpy as np
from numpy.typing import NDArray


# Points on each long flat face of the octagon (top and bottom)
OCTAGON_FLAT_POINTS: int = 161

# Smallest contour point count accepted after rounding
MIN_DISCRETIZATION: int = 5


# ======================================================================
# 1. Chamber kinds
# ======================================================================

@dataclass(frozen=True)
class CircularChamber:
    radius: float

    kind = 'circular'

    def __post_init__(self):
        if not self.radius > 0:
            raise ValueError(f"Chamber radius must be positive, got {self.radius}")


@dataclass(frozen=True)
class OctagonalChamber:
    up: float
    down: float
    left: float
    right: float
    height: float
    width: float
    button_distance: float

    kind = 'octagonal'

    def __post_init__(self):
        for f in fields(self):
            if not getattr(self, f.name) > 0:
                raise ValueError(
                    f"Octagonal chamber field '{f.name}' must be positive, "
                    f"got {getattr(self, f.name)}")
        if self.up > self.width or self.down > self.width:
            raise ValueError("Octagon flat faces cannot be wider than the chamber")
        if self.left > self.height or self.right > self.height:
            raise ValueError("Octagon side walls cannot be taller than the chamber")


Chamber = Union[CircularChamber, OctagonalChamber]

# Config-dict key -> dataclass field
_OCTAGON_KEYS = {
    'up': 'up',
    'down': 'down',
    'left': 'left',
    'right': 'right',
    'height': 'height',
    'width': 'width',
    'buttonDistance': 'button_distance',
}


def chamber_from_dict(config: dict) -> Chamber:
    """Build a chamber from a configuration dict.

    Accepts ``'circular'`` and ``'octagonal'`` (also the legacy
    ``'octogonal'`` spelling), case-insensitive.  The button distance
    may be given as ``buttonDistance`` or ``button_distance``.

    Raises
    ------
    ValueError
        Missing ``type`` field, unknown type, or missing geometry field.
    """
    if isinstance(config, (CircularChamber, OctagonalChamber)):
        return config
    if 'type' not in config:
        raise ValueError("'type' field is not present in the chamber structure.")

    kind = str(config['type']).lower()
    if kind == 'circular':
        if 'radius' not in config:
            raise ValueError(
                "The chamber field 'radius' is not present in the chamber structure.")
        return CircularChamber(radius=float(config['radius']))

    if kind in ('octagonal', 'octogonal'):
        values = {}
        missing = []
        for key, name in _OCTAGON_KEYS.items():
            if key in config:
                values[name] = float(config[key])
            elif name in config:
                values[name] = float(config[name])
            else:
                missing.append(key)
        if missing:
            raise ValueError(
                f"Chamber fields {missing} for octagonal chamber are not "
                f"present in the chamber structure.")
        return OctagonalChamber(**values)

    raise ValueError(f"Unknown chamber type: {config['type']!r}. "
                     f"Use 'circular' or 'octagonal'.")


# ======================================================================
# 2. Discretized contour
# ======================================================================

@dataclass(frozen=True)
class ChamberContour:
    """Closed polygonal chamber boundary.

    ``x[-1] == x[0]`` and ``y[-1] == y[0]``; segment j joins vertex j
    to vertex j+1.  The first half of the segments lies in y >= 0 and
    the second half in y <= 0.
    """
    x: NDArray
    y: NDArray

    @property
    def n_segments(self) -> int:
        return self.x.size - 1

    @property
    def midpoints(self):
        xm = 0.5 * (self.x[:-1] + self.x[1:])
        ym = 0.5 * (self.y[:-1] + self.y[1:])
        return xm, ym

    @property
    def segment_lengths(self) -> NDArray:
        return np.hypot(np.diff(self.x), np.diff(self.y))

    @property
    def vertices(self) -> NDArray:
        """(n, 2) array of the closed vertex sequence."""
        return np.column_stack([self.x, self.y])


def round_discretization(n: int) -> int:
    """Nearest 4k + 1 (halves rounded up) so every quadrant gets the same points.

    Raises ValueError when the result is below ``MIN_DISCRETIZATION``.
    """
    rounded = int(np.floor(n / 4.0 + 0.5)) * 4 + 1
    if rounded < MIN_DISCRETIZATION:
        raise ValueError(f"Discretization n = {n} rounds to {rounded}; "
                         f"at least {MIN_DISCRETIZATION} points are needed")
    return rounded


def _open_linspace(a: float, b: float, n: int) -> NDArray:
    """n points from a towards b, end point excluded."""
    return np.linspace(a, b, n + 1)[:n]


def circular_contour(radius: float, n: int) -> ChamberContour:
    """n vertices uniformly spaced in angle, first == last."""
    phi = np.linspace(0.0, 2.0 * np.pi, n)
    x = radius * np.cos(phi)
    y = radius * np.sin(phi)
    x[-1], y[-1] = x[0], y[0]
    return ChamberContour(x, y)


def octagonal_contour(chamber: OctagonalChamber, n: int) -> ChamberContour:
    """Octagon traversed counter-clockwise from (-width/2, 0).

    Each side wall half and each diagonal gets n points, the flat
    faces ``OCTAGON_FLAT_POINTS``.
    """
    c = chamber
    w2, h2 = c.width / 2, c.height / 2
    nf = OCTAGON_FLAT_POINTS
    L = _open_linspace

    # Top half: left wall (upper), upper-left diagonal, top face,
    # upper-right diagonal, right wall (upper)
    x_top = [L(-w2, -w2, n), L(-w2, -c.up / 2, n), L(-c.up / 2, c.up / 2, nf),
             L(c.up / 2, w2, n), L(w2, w2, n)]
    y_top = [L(0, c.left / 2, n), L(c.left / 2, h2, n), L(h2, h2, nf),
             L(h2, c.right / 2, n), L(c.right / 2, 0, n)]

    # Bottom half: right wall (lower), lower-right diagonal, bottom face,
    # lower-left diagonal, left wall (lower)
    x_bot = [L(w2, w2, n), L(w2, c.down / 2, n), L(c.down / 2, -c.down / 2, nf),
             L(-c.down / 2, -w2, n), L(-w2, -w2, n)]
    y_bot = [-L(0, c.right / 2, n), -L(c.right / 2, h2, n), -L(h2, h2, nf),
             -L(h2, c.left / 2, n), -L(c.left / 2, 0, n)]

    x = np.concatenate(x_top + x_bot)
    y = np.concatenate(y_top + y_bot)
    return ChamberContour(np.append(x, x[0]), np.append(y, y[0]))


def generate_contour(chamber, n: int = 101) -> ChamberContour:
    """Discretize a chamber boundary.

    Parameters
    ----------
    chamber : CircularChamber, OctagonalChamber or dict
        Chamber description; dicts go through ``chamber_from_dict``.
    n : int
        Requested number of points, rounded to the nearest 4k + 1.
        For circular chambers this is the vertex count of the closed
        contour, for octagonal chambers the points per wall/diagonal.

    Returns
    -------
    contour : ChamberContour
    """
    chamber = chamber_from_dict(chamber)
    n = round_discretization(n)

    if isinstance(chamber, CircularChamber):
        return circular_contour(chamber.radius, n)
    if isinstance(chamber, OctagonalChamber):
        return octagonal_contour(chamber, n)
    raise ValueError(f"Unknown chamber kind: {type(chamber).__name__}")
