"""
BPM E2E Signal Path Model — Command-line Entry Point
====================================================

Run the default SIRIUS button BPM signal path with:

    python -m bpm_e2e [--x MM] [--y MM] [--attenuation DB] [--seed N]
                      [--n-points N] [--figures] [--output-dir DIR]

Options:
    --x, --y        Beam offset in mm (default: 0, 0)
    --attenuation   RFFE step attenuator setting in dB (default: 0)
    --seed          Seed of the noise generator (default: unseeded)
    --n-points      Chamber discretization for the coverage factor (default: 500)
    --noise-mode    'squared' (default) or 'friis' noise propagation
    --figures       Save figures to the output directory
    --output-dir    Directory for figures (default: ./figures)
"""

import argparse
import os
import sys
import time

# Add package directory to sys.path so bare imports (from cascade ...)
# work the same as when running modules standalone.
_PKG_DIR = os.path.dirname(os.path.abspath(__file__))
if _PKG_DIR not in sys.path:
    sys.path.insert(0, _PKG_DIR)


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog='python -m bpm_e2e',
        description='Button BPM signal path model — signal, noise and coverage factors',
    )
    parser.add_argument('--x', type=float, default=0.0, help='Horizontal beam offset [mm]')
    parser.add_argument('--y', type=float, default=0.0, help='Vertical beam offset [mm]')
    parser.add_argument('--attenuation', type=float, default=0.0,
                        help='RFFE attenuator setting [dB] (default: 0)')
    parser.add_argument('--seed', type=int, default=None,
                        help='Noise generator seed (default: unseeded)')
    parser.add_argument('--n-points', type=int, default=500,
                        help='Chamber discretization points (default: 500)')
    parser.add_argument('--noise-mode', choices=('squared', 'friis'), default='squared',
                        help="Noise PSD propagation rule (default: 'squared')")
    parser.add_argument('--figures', action='store_true', help='Save figures')
    parser.add_argument('--output-dir', default='./figures',
                        help='Output directory for figures (default: ./figures)')
    args = parser.parse_args(argv)

    import numpy as np
    from front_end import (SIRIUS_MACHINE, bunch_train_spectrum,
                           default_frequency_grid, simulate_bpm_response)

    machine = SIRIUS_MACHINE
    beam_position = np.array([args.x, args.y]) * 1e-3

    print('=' * 70)
    print('  BPM E2E — Button BPM Signal Path Model')
    print('=' * 70)
    print(f"  Machine            : {machine['name']}")
    print(f"  Beam position      : ({args.x:.3f}, {args.y:.3f}) mm")
    print(f"  Attenuator         : {args.attenuation:.1f} dB")
    print(f"  Noise seed         : {args.seed}")
    print('=' * 70)
    print()

    t_start = time.time()
    f = default_frequency_grid(machine['frf'])
    beam = bunch_train_spectrum(f, average_current=0.1, bunch_length=8.7e-12,
                                frf=machine['frf'])
    rng = np.random.default_rng(args.seed)

    results, t = simulate_bpm_response(beam, f, beam_position, args.attenuation,
                                       machine=machine, rng=rng,
                                       n_coverage=args.n_points,
                                       noise_mode=args.noise_mode, verbose=True)

    if args.figures:
        import matplotlib
        matplotlib.use('Agg')
        from beam_coverage import make_fig_coverage_map
        from front_end import make_fig_signal_chain

        output_dir = os.path.abspath(args.output_dir)
        os.makedirs(output_dir, exist_ok=True)
        os.environ['BPM_OUTPUT_DIR'] = output_dir
        make_fig_signal_chain(results, t, output_dir=output_dir)
        make_fig_coverage_map(machine['pickup'], output_dir=output_dir)

    print()
    print(f'  Total time: {time.time() - t_start:.1f} s')
    return results


if __name__ == '__main__':
    main()
