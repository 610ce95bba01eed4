#!/usr/bin/env python3
"""
Script to benchmark LP-SIFT and OpenCV detectors on image stitching
"""

import argparse
import logging
import os
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from lpsift.benchmark.detectors import DETECTOR_NAMES
from lpsift.benchmark.reporter import print_summary_table, summarize, write_csv
from lpsift.benchmark.runner import BenchmarkRunner
from lpsift.utils.config import detector_options, load_config, runner_options
from lpsift.utils.visualization import LPSIFTVisualizer

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def parse_args():
    parser = argparse.ArgumentParser(description='Benchmark feature detectors on image stitching')
    parser.add_argument('image_dir', help='Directory with one sub-directory per image pair')
    parser.add_argument('--output_dir', default='./benchmark_results',
                        help='Directory for the CSV report, mosaics and plots')
    parser.add_argument('--config', default='configs/lpsift/benchmark.py',
                        help='Configuration file')
    parser.add_argument('--image_sets', nargs='+', default=None,
                        help='Only benchmark these image sets')
    parser.add_argument('--detectors', nargs='+', default=None,
                        help=f'Only run these detectors ({", ".join(DETECTOR_NAMES)})')
    parser.add_argument('--matcher', choices=['brute_force', 'flann'], default=None,
                        help='Override the configured matcher')
    parser.add_argument('--csv', default='benchmark_results.csv',
                        help='CSV report file name (inside output_dir)')
    parser.add_argument('--save_mosaics', action='store_true',
                        help='Write every stitched mosaic')
    parser.add_argument('--plot', action='store_true',
                        help='Save a summary plot')

    return parser.parse_args()


def main():
    args = parse_args()

    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    if os.path.exists(args.config):
        config = load_config(args.config)
    else:
        logger.warning("Configuration %s not found, using defaults", args.config)
        config = load_config()

    if args.matcher:
        config["matching"]["matcher_type"] = args.matcher

    detector_names = args.detectors or config["benchmark"]["detectors"]

    runner = BenchmarkRunner(**runner_options(config))
    records = runner.run_on_directory(
        args.image_dir,
        image_sets=args.image_sets,
        detector_names=detector_names,
        output_dir=output_dir / 'mosaics' if args.save_mosaics else None,
        window_size_table=config["window_sizes"],
        detector_options=detector_options(config),
        reference_name=config["benchmark"]["reference_image"],
        registered_name=config["benchmark"]["registered_image"],
    )

    if not records:
        logger.error("No benchmark runs completed")
        return 1

    write_csv(records, output_dir / args.csv)
    print_summary_table(records)

    if args.plot:
        LPSIFTVisualizer.plot_benchmark_summary(summarize(records),
                                                save_path=str(output_dir / 'benchmark_summary.png'))

    print(f"\nResults saved to: {output_dir}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
