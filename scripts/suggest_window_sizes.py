#!/usr/bin/env python3
"""
Script to suggest interrogation window sizes from an image's spectrum
"""

import argparse
import logging
import os
import sys

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from lpsift.benchmark.geometry import load_image
from lpsift.models.components.preprocessing import to_grayscale
from lpsift.models.components.window_sizes import get_image_size_category, suggest_window_sizes
from lpsift.utils.config import load_config
from lpsift.utils.visualization import LPSIFTVisualizer

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def parse_args():
    parser = argparse.ArgumentParser(description='Suggest LP-SIFT window sizes from the FFT of an image')
    parser.add_argument('images', nargs='+', help='Images to analyse')
    parser.add_argument('--config', default='configs/lpsift/benchmark.py',
                        help='Configuration file')
    parser.add_argument('--num_peaks', type=int, default=None,
                        help='Number of spectral peaks to convert (overrides the config)')
    parser.add_argument('--plot_dir', default=None,
                        help='Save a spectrum plot per image into this directory')

    return parser.parse_args()


def main():
    args = parse_args()
    config = load_config(args.config if os.path.exists(args.config) else None)
    options = dict(config["window_suggestion"])
    if args.num_peaks is not None:
        options["num_peaks"] = args.num_peaks

    if args.plot_dir:
        os.makedirs(args.plot_dir, exist_ok=True)

    for path in args.images:
        image = load_image(path)
        if image is None:
            continue

        gray = to_grayscale(image)
        h, w = gray.shape
        windows, peaks, log_magnitude = suggest_window_sizes(gray, **options)
        print(f"{path}: {w}x{h} ({get_image_size_category(w, h)}) -> suggested window sizes: "
              f"{', '.join(str(size) for size in windows)}")

        if args.plot_dir:
            name = os.path.splitext(os.path.basename(path))[0]
            LPSIFTVisualizer.plot_spectrum(log_magnitude, peaks, windows,
                                           title=name,
                                           save_path=os.path.join(args.plot_dir, f"{name}_spectrum.png"))


if __name__ == "__main__":
    main()
