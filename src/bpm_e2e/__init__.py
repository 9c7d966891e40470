"""
BPM E2E — Button Beam Position Monitor Signal Path Model
=========================================================

Stage-by-stage model of the analog signal path of a button BPM:
beam-induced signal, cumulative frequency response and propagated
thermal/electronic noise through the RF front end, plus the
electrostatic coverage factors of the four pickup buttons for an
off-centre beam.

Modules
-------
spectral         : Fourier series <-> time record, noise realization, minimum phase
chamber_geometry : Vacuum chamber kinds and boundary discretization
beam_coverage    : Button coverage factors (closed form / boundary element)
cascade          : Cascaded signal and noise propagation engine
front_end        : Button BPM RF front end (SIRIUS RFFE v2) and simulate_bpm_response
"""

__version__ = "1.0.0"
