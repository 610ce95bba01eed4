import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np
import cv2

from .components.keypoints import (Keypoint, filter_well_formed, from_cv_keypoints,
                                   to_cv_keypoints)
from .components.preprocessing import to_grayscale, to_uint8
from .components.peak_detector import WindowedPeakDetector
from .components.gradient_descriptor import GradientHistogramDescriptor
from .components.window_sizes import WindowSizeSet

logger = logging.getLogger(__name__)


def empty_descriptors(size: int, dtype) -> np.ndarray:
    return np.empty((0, size), dtype=dtype)


class Feature2D(ABC):
    """
    Common capability of every benchmarked feature algorithm

    The benchmark only talks to this interface, so local-peak detectors and
    OpenCV baselines are interchangeable.
    """

    name = "Feature2D"

    @property
    @abstractmethod
    def norm(self) -> int:
        """Distance used to match this algorithm's descriptors (cv2.NORM_*)"""

    @abstractmethod
    def detect(self, image: np.ndarray) -> List[Keypoint]:
        """Detect keypoints in an image"""

    @abstractmethod
    def compute(self, image: np.ndarray,
                keypoints: List[Keypoint]) -> Tuple[List[Keypoint], np.ndarray]:
        """
        Describe keypoints

        Returns:
            The keypoints that were actually described (extractors may drop
            some) and their descriptors [N, D]
        """

    def detect_and_compute(self, image: np.ndarray,
                           keypoints: Optional[List[Keypoint]] = None,
                           use_provided_keypoints: bool = False) -> Tuple[List[Keypoint], np.ndarray]:
        """
        Detect and describe in one call

        Args:
            image: Input image
            keypoints: Caller-supplied keypoints, used when use_provided_keypoints is True
            use_provided_keypoints: Skip detection and describe the given keypoints

        Returns:
            keypoints, descriptors
        """
        if use_provided_keypoints:
            keypoints = list(keypoints or [])
        else:
            keypoints = self.detect(image)
        return self.compute(image, keypoints)

    def __repr__(self):
        return f"{type(self).__name__}(name={self.name!r})"


class DelegatedDescriptor:
    """Describe local-peak keypoints with an OpenCV extractor (SIFT, ORB, ...)"""

    def __init__(self, extractor, name: str, norm: int):
        self.extractor = extractor
        self.name = name
        self.norm = norm

    @classmethod
    def sift(cls) -> 'DelegatedDescriptor':
        return cls(cv2.SIFT_create(), "SIFT", cv2.NORM_L2)

    @classmethod
    def orb(cls) -> 'DelegatedDescriptor':
        return cls(cv2.ORB_create(), "ORB", cv2.NORM_HAMMING)

    @property
    def descriptor_size(self) -> int:
        return self.extractor.descriptorSize()

    @property
    def descriptor_type(self):
        return np.uint8 if self.extractor.descriptorType() == cv2.CV_8U else np.float32

    def compute(self, gray: np.ndarray, keypoints: List[Keypoint]) -> Tuple[List[Keypoint], np.ndarray]:
        if len(keypoints) == 0:
            return [], empty_descriptors(self.descriptor_size, self.descriptor_type)

        cv_keypoints, descriptors = self.extractor.compute(gray, to_cv_keypoints(keypoints))
        if descriptors is None or len(cv_keypoints) == 0:
            return [], empty_descriptors(self.descriptor_size, self.descriptor_type)

        return from_cv_keypoints(cv_keypoints), descriptors


class LocalPeakFeature2D(Feature2D):
    """
    Local-peak feature algorithm (LP-SIFT family)

    Main class that binds the pipeline stages:
    1. Grayscale conversion and linear ramp
    2. Windowed local-peak detection over several window sizes
    3. Descriptor computation, either delegated to OpenCV or with the
       64-d gradient histogram
    """

    def __init__(self,
                 window_sizes: Union[WindowSizeSet, Sequence[int]] = (16, 32, 64, 128, 256),
                 linear_noise_alpha: float = 1e-6,
                 descriptor: Union[str, DelegatedDescriptor, GradientHistogramDescriptor] = "sift",
                 uniqueness_filter: bool = False,
                 max_keypoints: Optional[int] = None,
                 name: Optional[str] = None):
        """
        Initialize local-peak feature algorithm

        Args:
            window_sizes: Interrogation window sizes L
            linear_noise_alpha: Ramp step used to break intensity ties
            descriptor: "sift", "orb", "dxdy" or a descriptor object
            uniqueness_filter: Reject peaks that are not unique in their 3x3 neighborhood
            max_keypoints: Keep only the strongest peaks (None keeps all)
            name: Display name; derived from the descriptor when omitted
        """
        if not isinstance(window_sizes, WindowSizeSet):
            window_sizes = WindowSizeSet.from_iterable(window_sizes)
        self.window_sizes = window_sizes
        self.linear_noise_alpha = linear_noise_alpha

        self.detector = WindowedPeakDetector(window_sizes, linear_noise_alpha,
                                             uniqueness_filter, max_keypoints)
        self.descriptor = self._make_descriptor(descriptor)
        self.name = name or f"LP-{self.descriptor.name}"

    def _make_descriptor(self, descriptor):
        if not isinstance(descriptor, str):
            return descriptor
        key = descriptor.lower()
        if key == "sift":
            return DelegatedDescriptor.sift()
        if key == "orb":
            return DelegatedDescriptor.orb()
        if key == "dxdy":
            return GradientHistogramDescriptor(self.window_sizes)
        raise ValueError(f"Unknown descriptor: {descriptor!r} (expected 'sift', 'orb' or 'dxdy')")

    @property
    def norm(self) -> int:
        return self.descriptor.norm

    def detect(self, image: np.ndarray) -> List[Keypoint]:
        if image is None or image.size == 0:
            return []
        gray = to_grayscale(image)
        return self.detector.detect(gray)

    def compute(self, image: np.ndarray,
                keypoints: List[Keypoint]) -> Tuple[List[Keypoint], np.ndarray]:
        if image is None or image.size == 0 or len(keypoints) == 0:
            return [], empty_descriptors(self.descriptor.descriptor_size, self.descriptor.descriptor_type)

        gray = to_uint8(to_grayscale(image))
        h, w = gray.shape[:2]

        valid = filter_well_formed(keypoints, w, h)
        if len(valid) < len(keypoints):
            logger.debug("%s: dropped %d malformed keypoints", self.name, len(keypoints) - len(valid))

        return self.descriptor.compute(gray, valid)


class OpenCVFeature2D(Feature2D):
    """Baseline wrapper around an OpenCV Feature2D algorithm"""

    def __init__(self, name: str, algorithm, norm: int):
        self.name = name
        self.algorithm = algorithm
        self._norm = norm

    @property
    def norm(self) -> int:
        return self._norm

    def _descriptor_dtype(self):
        return np.uint8 if self.algorithm.descriptorType() == cv2.CV_8U else np.float32

    def detect(self, image: np.ndarray) -> List[Keypoint]:
        if image is None or image.size == 0:
            return []
        gray = to_uint8(to_grayscale(image))
        return [Keypoint.from_cv(kp) for kp in self.algorithm.detect(gray, None)]

    def compute(self, image: np.ndarray,
                keypoints: List[Keypoint]) -> Tuple[List[Keypoint], np.ndarray]:
        empty = empty_descriptors(self.algorithm.descriptorSize(), self._descriptor_dtype())
        if image is None or image.size == 0 or len(keypoints) == 0:
            return [], empty

        gray = to_uint8(to_grayscale(image))
        cv_keypoints = [kp.to_cv() for kp in keypoints]
        cv_keypoints, descriptors = self.algorithm.compute(gray, cv_keypoints)
        if descriptors is None or len(cv_keypoints) == 0:
            return [], empty

        return [Keypoint.from_cv(kp) for kp in cv_keypoints], descriptors
