#!/usr/bin/env python3
"""
Run the step-selection GAM analysis on a GPS track and a raster covariate.

Fits the linear, smooth, spatial, varying-coefficient and tensor-product
movement kernel models and writes summaries, coefficient tables, derived
quantities (movement kernel, relative selection strength) and figures.

Usage:
    python scripts/run_ssf_analysis.py --fixes-file data/petrel.csv \\
        --raster-file data/bathymetry.tif [--output-dir results]
"""

import argparse
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from stepgam.analysis import MODEL_NAMES, PROPOSALS, AnalysisConfig, SSFAnalysis
from stepgam.models.fitting import ModelFitError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def parse_point(value: str):
    """Parse "x,y" into a float pair."""
    try:
        x, y = (float(part) for part in value.split(","))
    except ValueError:
        raise argparse.ArgumentTypeError(f"Expected 'x,y', got '{value}'")
    return x, y


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Step-selection GAM analysis of an animal track"
    )
    parser.add_argument(
        '--fixes-file',
        type=str,
        required=True,
        help='CSV file with one GPS fix per row'
    )
    parser.add_argument(
        '--raster-file',
        type=str,
        required=True,
        help='GeoTIFF covariate raster in the same projection as the fixes'
    )
    parser.add_argument(
        '--output-dir',
        type=str,
        default='results',
        help='Directory for tables and figures (default: results)'
    )
    parser.add_argument('--x-column', type=str, default='x', help='Easting column (default: x)')
    parser.add_argument('--y-column', type=str, default='y', help='Northing column (default: y)')
    parser.add_argument('--time-column', type=str, default='time', help='Timestamp column (default: time)')
    parser.add_argument('--id-column', type=str, default=None, help='Animal id column for multi-animal data')
    parser.add_argument(
        '--covariate-name',
        type=str,
        default='depth',
        help='Name of the raster covariate in the models (default: depth)'
    )
    parser.add_argument(
        '--covariate-scale',
        type=float,
        default=-0.001,
        help='Multiplier for raster values (default: -0.001, elevation in m to depth in km)'
    )
    parser.add_argument('--covariate-offset', type=float, default=0.0, help='Added to scaled raster values')
    parser.add_argument(
        '--n-control',
        type=int,
        default=100,
        help='Control steps per observed step (default: 100)'
    )
    parser.add_argument(
        '--n-random',
        type=int,
        default=100_000,
        help='Size of the proposal pools control steps are drawn from (default: 100000)'
    )
    parser.add_argument('--seed', type=int, default=25, help='Random seed (default: 25)')
    parser.add_argument(
        '--proposal',
        type=str,
        choices=PROPOSALS,
        default='uniform',
        help='Control step proposal distribution (default: uniform)'
    )
    parser.add_argument(
        '--step-length-scale',
        type=float,
        default=0.001,
        help='Multiplier for step lengths before fitting (default: 0.001, m to km)'
    )
    parser.add_argument(
        '--models',
        nargs='+',
        choices=MODEL_NAMES,
        default=list(MODEL_NAMES),
        help='Models to fit (default: all)'
    )
    parser.add_argument(
        '--varying-k',
        type=int,
        default=12,
        help='Basis size of the time-varying coefficient (default: 12)'
    )
    parser.add_argument(
        '--spatial-reference',
        type=parse_point,
        nargs=2,
        metavar='X,Y',
        default=None,
        help='Two locations compared with the spatial model'
    )
    parser.add_argument('--no-figures', action='store_true', help='Skip writing figures')
    parser.add_argument('--verbose', action='store_true', help='Enable debug logging')
    return parser


def main():
    """Main function to run the analysis."""
    args = build_parser().parse_args()
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    config = AnalysisConfig(
        fixes_path=args.fixes_file,
        raster_path=args.raster_file,
        output_dir=args.output_dir,
        x_column=args.x_column,
        y_column=args.y_column,
        time_column=args.time_column,
        id_column=args.id_column,
        covariate_name=args.covariate_name,
        covariate_scale=args.covariate_scale,
        covariate_offset=args.covariate_offset,
        n_control=args.n_control,
        n_random=args.n_random,
        seed=args.seed,
        proposal=args.proposal,
        step_length_scale=args.step_length_scale,
        models=args.models,
        varying_k=args.varying_k,
        spatial_reference=args.spatial_reference,
        make_figures=not args.no_figures
    )

    try:
        analysis = SSFAnalysis(config)
        derived = analysis.run()
    except (FileNotFoundError, ValueError, KeyError) as e:
        logger.error(f"Invalid input: {e}")
        return 1
    except ModelFitError as e:
        logger.error(f"Model fitting failed: {e}")
        return 1

    logger.info("=" * 60)
    logger.info("ANALYSIS COMPLETE")
    logger.info("=" * 60)
    for name, values in derived.items():
        logger.info(f"  {name}: AIC {values['aic']:.2f}")
    logger.info(f"Outputs written to {config.output_dir}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
