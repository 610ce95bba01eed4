"""LP-SIFT - Local-Peak Scale-Invariant Feature Transform and stitching benchmark"""

__version__ = "1.0.0"
__author__ = "LP-SIFT Team"

from .models.lpsift import Feature2D, LocalPeakFeature2D, OpenCVFeature2D
from .models.components.window_sizes import WindowSizeSet, suggest_window_sizes
from .benchmark.runner import BenchmarkRunner
from .utils.visualization import LPSIFTVisualizer

__all__ = ['Feature2D', 'LocalPeakFeature2D', 'OpenCVFeature2D', 'WindowSizeSet',
           'suggest_window_sizes', 'BenchmarkRunner', 'LPSIFTVisualizer']
