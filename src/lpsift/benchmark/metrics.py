import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np

from ..models.components.window_sizes import ImageSizeCategory


class Stage(Enum):
    """Stages of one benchmark run, in execution order"""
    PREPROCESS = "Preprocess"
    DETECT = "Detect"
    CHECK_KEYPOINTS = "CheckKeypoints"
    DESCRIBE = "Describe"
    CHECK_DESCRIPTORS = "CheckDescriptors"
    MATCH = "Match"
    CHECK_MATCH_COUNT = "CheckMatchCount"
    FIT_HOMOGRAPHY = "FitHomography"
    CHECK_HOMOGRAPHY = "CheckHomography"
    WARP = "Warp"
    SUCCESS = "Success"

    def __str__(self):
        return self.value


class Timer:
    """High resolution stopwatch reporting elapsed seconds"""

    def __init__(self):
        self._start = None
        self._end = None

    def start(self) -> 'Timer':
        self._start = time.perf_counter()
        self._end = None
        return self

    def stop(self) -> float:
        self._end = time.perf_counter()
        return self.elapsed_seconds

    @property
    def elapsed_seconds(self) -> float:
        if self._start is None:
            return 0.0
        end = self._end if self._end is not None else time.perf_counter()
        return end - self._start

    @property
    def elapsed_milliseconds(self) -> float:
        return self.elapsed_seconds * 1000.0

    def __enter__(self):
        return self.start()

    def __exit__(self, exc_type, exc, tb):
        self.stop()
        return False


def format_time(seconds: float) -> str:
    """Seconds with 1/100 precision"""
    return f"{seconds:.2f}"


def format_homography(H: Optional[np.ndarray]) -> str:
    """Render a matrix as [[a, b, c], [...]] with 4 decimals, or '' when missing"""
    if H is None:
        return ""
    rows = [", ".join(f"{value:.4f}" for value in row) for row in np.asarray(H, dtype=np.float64)]
    return "[" + ", ".join(f"[{row}]" for row in rows) + "]"


@dataclass
class StitchingMetrics:
    """
    Everything measured for one (image pair, algorithm) run

    Filled stage by stage while the run progresses and finalized exactly once
    with finish().
    """
    dataset_name: str = ""
    algorithm_name: str = ""
    size_category: ImageSizeCategory = ImageSizeCategory.SMALL

    reference_width: int = 0
    reference_height: int = 0
    registered_width: int = 0
    registered_height: int = 0

    window_sizes: str = ""

    # Counts straight from detect() and after compute() dropped unusable keypoints
    detected_keypoints_reference: int = 0
    detected_keypoints_registered: int = 0
    num_keypoints_reference: int = 0
    num_keypoints_registered: int = 0
    num_matches: int = 0
    num_inliers: int = 0

    # Seconds
    detection_time_reference: float = 0.0
    detection_time_registered: float = 0.0
    descriptor_time_reference: float = 0.0
    descriptor_time_registered: float = 0.0
    matching_time: float = 0.0
    homography_time: float = 0.0
    warping_time: float = 0.0
    total_stitching_time: float = 0.0

    homography: Optional[np.ndarray] = None
    baseline_homography: Optional[np.ndarray] = None
    reprojection_error: float = 0.0

    stitching_success: bool = False
    failure_reason: str = ""
    stage: Stage = Stage.PREPROCESS
    finalized: bool = False

    @property
    def reference_resolution(self) -> str:
        return f"{self.reference_width}x{self.reference_height}"

    @property
    def registered_resolution(self) -> str:
        return f"{self.registered_width}x{self.registered_height}"

    @property
    def homography_delta(self) -> Optional[np.ndarray]:
        """Difference between this run's homography and the baseline, when both exist"""
        if self.homography is None or self.baseline_homography is None:
            return None
        return np.asarray(self.homography) - np.asarray(self.baseline_homography)

    def finish(self, total_seconds: float, stage: Stage, reason: str = "") -> 'StitchingMetrics':
        """
        Finalize the record

        Args:
            total_seconds: Wall time of the whole run
            stage: Stage.SUCCESS, or the stage that failed
            reason: Failure description (empty on success)
        """
        if self.finalized:
            raise RuntimeError(f"Metrics for {self.dataset_name}/{self.algorithm_name} already finalized")

        self.total_stitching_time = total_seconds
        self.stage = stage
        self.stitching_success = stage is Stage.SUCCESS
        self.failure_reason = "" if self.stitching_success else reason
        self.finalized = True
        return self
