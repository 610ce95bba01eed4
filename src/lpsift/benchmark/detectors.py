import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Union

import cv2

from ..models.lpsift import Feature2D, LocalPeakFeature2D, OpenCVFeature2D
from ..models.components.gradient_descriptor import GradientHistogramDescriptor
from ..models.components.window_sizes import WindowSizeSet
from .geometry import MatcherType

logger = logging.getLogger(__name__)

ORB_BASELINE_FEATURES = 250000

# Stable sweep order; the reference algorithm comes first
DETECTOR_NAMES = ("SIFT", "ORB", "BRISK", "SURF", "AKAZE", "LP-SIFT", "LP-ORB", "LP-DXDY")


@dataclass(frozen=True)
class DetectorConfig:
    """A named feature algorithm together with how its descriptors are matched"""
    name: str
    detector: Feature2D
    norm: int
    matcher_type: MatcherType = MatcherType.BRUTE_FORCE


def _opencv_baseline(name: str) -> Callable[..., Feature2D]:
    factories = {
        "SIFT": lambda: OpenCVFeature2D("SIFT", cv2.SIFT_create(), cv2.NORM_L2),
        "ORB": lambda: OpenCVFeature2D("ORB", cv2.ORB_create(ORB_BASELINE_FEATURES), cv2.NORM_HAMMING),
        "BRISK": lambda: OpenCVFeature2D("BRISK", cv2.BRISK_create(), cv2.NORM_HAMMING),
        # Non-free, only present in contrib builds compiled with OPENCV_ENABLE_NONFREE
        "SURF": lambda: OpenCVFeature2D("SURF", cv2.xfeatures2d.SURF_create(), cv2.NORM_L2),
        "AKAZE": lambda: OpenCVFeature2D("AKAZE", cv2.AKAZE_create(), cv2.NORM_HAMMING),
    }
    return factories[name]


def build_detectors(window_sizes: Union[WindowSizeSet, Sequence[int]],
                    names: Optional[Sequence[str]] = None,
                    linear_noise_alpha: float = 1e-6,
                    uniqueness_filter: bool = False,
                    max_keypoints: Optional[int] = None,
                    matcher_type: Union[str, MatcherType] = MatcherType.BRUTE_FORCE,
                    descriptor_options: Optional[Dict] = None) -> List[DetectorConfig]:
    """
    Build the detectors to benchmark

    Args:
        window_sizes: Window sizes for the local-peak variants
        names: Subset of DETECTOR_NAMES (None builds all); order follows DETECTOR_NAMES
        linear_noise_alpha: Ramp step for the local-peak variants
        uniqueness_filter: Enable the 3x3 uniqueness filter for local-peak variants
        max_keypoints: Per-image keypoint cap for local-peak variants
        matcher_type: Matcher shared by every detector
        descriptor_options: Extra GradientHistogramDescriptor arguments for LP-DXDY

    Returns:
        List of DetectorConfig. Unavailable algorithms (SURF without the
        non-free module) are skipped with a warning.
    """
    if not isinstance(window_sizes, WindowSizeSet):
        window_sizes = WindowSizeSet.from_iterable(window_sizes)
    matcher_type = MatcherType.parse(matcher_type)

    if names is None:
        requested = list(DETECTOR_NAMES)
    else:
        lookup = {name.upper(): name for name in DETECTOR_NAMES}
        unknown = [name for name in names if name.upper() not in lookup]
        if unknown:
            raise ValueError(f"Unknown detector(s): {', '.join(unknown)}. "
                             f"Available: {', '.join(DETECTOR_NAMES)}")
        wanted = {name.upper() for name in names}
        requested = [name for name in DETECTOR_NAMES if name in wanted]

    configs = []
    for name in requested:
        try:
            if name.startswith("LP-"):
                descriptor = name[3:].lower()
                if descriptor == "dxdy" and descriptor_options:
                    descriptor = GradientHistogramDescriptor(window_sizes, **descriptor_options)
                detector = LocalPeakFeature2D(window_sizes=window_sizes,
                                              linear_noise_alpha=linear_noise_alpha,
                                              descriptor=descriptor,
                                              uniqueness_filter=uniqueness_filter,
                                              max_keypoints=max_keypoints,
                                              name=name)
            else:
                detector = _opencv_baseline(name)()
        except (cv2.error, AttributeError) as e:
            logger.warning("Skipping %s: not available in this OpenCV build (%s)", name, e)
            continue

        configs.append(DetectorConfig(name=name, detector=detector,
                                      norm=detector.norm, matcher_type=matcher_type))

    logger.info("Built %d detectors: %s", len(configs), ", ".join(c.name for c in configs))
    return configs
