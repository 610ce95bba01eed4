import numpy as np
import cv2
from dataclasses import dataclass
from typing import List, Optional, Tuple, Iterable

# Orientation value meaning "let the descriptor stage decide"
UNSET_ANGLE = -1.0


@dataclass
class Keypoint:
    """
    Canonical keypoint record shared by every detector

    Local-peak keypoints carry the interrogation window size that produced
    them in ``size`` and the index of that size in the window size set in
    ``window_index``. Baseline OpenCV keypoints keep their own octave packing
    so their descriptor extractor can read it back.
    """
    x: float
    y: float
    size: float
    response: float = 0.0
    window_index: int = -1
    angle: float = UNSET_ANGLE
    octave: int = 0

    @property
    def pt(self) -> Tuple[float, float]:
        return (self.x, self.y)

    def is_within(self, width: int, height: int) -> bool:
        """True when the keypoint lies inside a width x height image and has a positive size"""
        return 0 <= self.x < width and 0 <= self.y < height and self.size > 0

    def to_cv(self) -> cv2.KeyPoint:
        return cv2.KeyPoint(float(self.x), float(self.y), float(self.size),
                            float(self.angle), float(self.response),
                            int(self.octave), int(self.window_index))

    @classmethod
    def from_cv(cls, kp: cv2.KeyPoint, window_index: int = -1) -> 'Keypoint':
        return cls(x=float(kp.pt[0]), y=float(kp.pt[1]), size=float(kp.size),
                   response=float(kp.response), window_index=window_index,
                   angle=float(kp.angle), octave=int(kp.octave))


def to_cv_keypoints(keypoints: Iterable[Keypoint]) -> List[cv2.KeyPoint]:
    return [kp.to_cv() for kp in keypoints]


def from_cv_keypoints(keypoints: Iterable[cv2.KeyPoint]) -> List[Keypoint]:
    """Convert OpenCV keypoints, keeping the class id written by local-peak detectors"""
    return [Keypoint.from_cv(kp, window_index=int(kp.class_id)) for kp in keypoints]


def keypoints_to_array(keypoints: List[Keypoint]) -> np.ndarray:
    """
    Stack keypoint positions into an array

    Args:
        keypoints: Keypoint list

    Returns:
        Points array [N, 2] in (x, y) order, float32
    """
    if len(keypoints) == 0:
        return np.empty((0, 2), dtype=np.float32)
    return np.array([kp.pt for kp in keypoints], dtype=np.float32)


def filter_well_formed(keypoints: List[Keypoint], width: int, height: int) -> List[Keypoint]:
    """Drop keypoints that fall outside the image or have a non-positive size"""
    return [kp for kp in keypoints if kp.is_within(width, height)]


def sort_by_response(keypoints: List[Keypoint], max_keypoints: Optional[int] = None) -> List[Keypoint]:
    """
    Order keypoints by descending response, optionally keeping only the strongest

    The sort is stable so equal responses keep their detection order.
    """
    ordered = sorted(keypoints, key=lambda kp: -kp.response)
    if max_keypoints is not None and len(ordered) > max_keypoints:
        ordered = ordered[:max_keypoints]
    return ordered
