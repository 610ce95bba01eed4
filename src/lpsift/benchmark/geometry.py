"""
Thin wrappers over the OpenCV operations the benchmark depends on:
image loading, descriptor matching, RANSAC homography fitting and warping.
"""

import logging
from enum import Enum
from pathlib import Path
from typing import List, NamedTuple, Optional, Tuple, Union

import numpy as np
import cv2

logger = logging.getLogger(__name__)

# BFMatcher indexes train descriptors with a 16 bit image index (IMGIDX_ONE),
# keep well below it
MAX_KEYPOINTS_BF = 50000

MIN_MATCHES = 4
RANSAC_THRESHOLD = 3.0
RNG_SEED = 12345

# Refuse to allocate mosaics larger than this many times the input area
MAX_CANVAS_FACTOR = 16

FLANN_INDEX_KDTREE = 1
FLANN_INDEX_LSH = 6


class MatcherType(Enum):
    BRUTE_FORCE = "brute_force"  # exact, limited to MAX_KEYPOINTS_BF per side
    FLANN = "flann"              # approximate, no practical limit

    @classmethod
    def parse(cls, value: Union[str, 'MatcherType']) -> 'MatcherType':
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(f"Unknown matcher type: {value!r}")


class Match(NamedTuple):
    query_idx: int
    train_idx: int
    distance: float


def load_image(path: Union[str, Path]) -> Optional[np.ndarray]:
    """Read a color image, returning None when it cannot be decoded"""
    image = cv2.imread(str(path), cv2.IMREAD_COLOR)
    if image is None:
        logger.warning("Could not read image: %s", path)
    return image


def matcher_capacity(matcher_type: MatcherType) -> Optional[int]:
    """Maximum descriptors per side the matcher accepts (None when unbounded)"""
    if MatcherType.parse(matcher_type) is MatcherType.BRUTE_FORCE:
        return MAX_KEYPOINTS_BF
    return None


def _create_matcher(norm: int, matcher_type: MatcherType):
    if matcher_type is MatcherType.BRUTE_FORCE:
        return cv2.BFMatcher(norm)

    if norm in (cv2.NORM_HAMMING, cv2.NORM_HAMMING2):
        index_params = dict(algorithm=FLANN_INDEX_LSH, table_number=6, key_size=12, multi_probe_level=1)
    else:
        index_params = dict(algorithm=FLANN_INDEX_KDTREE, trees=5)
    return cv2.FlannBasedMatcher(index_params, dict(checks=50))


def match_nearest_neighbor(desc_a: np.ndarray, desc_b: np.ndarray, norm: int,
                           matcher_type: MatcherType = MatcherType.BRUTE_FORCE) -> List[Match]:
    """
    Match every descriptor of desc_a to its nearest neighbor in desc_b

    No ratio test and no cross check: each query descriptor yields at most
    one match.

    Args:
        desc_a: Query (reference image) descriptors [N, D]
        desc_b: Train (registered image) descriptors [M, D]
        norm: cv2.NORM_L2 for float descriptors, cv2.NORM_HAMMING for binary ones
        matcher_type: Brute force or FLANN

    Returns:
        List of matches ordered by query index
    """
    if desc_a is None or desc_b is None or len(desc_a) == 0 or len(desc_b) == 0:
        return []

    matcher_type = MatcherType.parse(matcher_type)
    if matcher_type is MatcherType.FLANN and norm not in (cv2.NORM_HAMMING, cv2.NORM_HAMMING2):
        desc_a = desc_a.astype(np.float32)
        desc_b = desc_b.astype(np.float32)

    matcher = _create_matcher(norm, matcher_type)
    matches = matcher.match(desc_a, desc_b)
    return [Match(m.queryIdx, m.trainIdx, float(m.distance)) for m in matches]


def fit_robust_homography(points_a: np.ndarray, points_b: np.ndarray,
                          seed: int = RNG_SEED,
                          threshold: float = RANSAC_THRESHOLD) -> Tuple[Optional[np.ndarray], np.ndarray]:
    """
    Estimate the homography mapping points_a onto points_b with RANSAC

    OpenCV's RNG is reseeded before the fit so repeated runs give identical
    results.

    Args:
        points_a: Source points [N, 2] (x, y)
        points_b: Destination points [N, 2] (x, y)
        seed: RNG seed
        threshold: RANSAC reprojection threshold in pixels

    Returns:
        H: 3x3 float64 matrix, or None when no valid model was found
        inlier_mask: Boolean mask [N]
    """
    points_a = np.asarray(points_a, dtype=np.float32).reshape(-1, 2)
    points_b = np.asarray(points_b, dtype=np.float32).reshape(-1, 2)
    inliers = np.zeros(len(points_a), dtype=bool)

    if len(points_a) < MIN_MATCHES or len(points_a) != len(points_b):
        return None, inliers

    cv2.setRNGSeed(seed)
    H, mask = cv2.findHomography(points_a, points_b, cv2.RANSAC, threshold)

    if mask is not None:
        inliers = mask.ravel().astype(bool)

    if H is None or H.shape != (3, 3) or not np.all(np.isfinite(H)):
        return None, inliers

    return H.astype(np.float64), inliers


def reprojection_error(points_a: np.ndarray, points_b: np.ndarray, H: np.ndarray,
                       mask: Optional[np.ndarray] = None) -> float:
    """Mean distance between H(points_a) and points_b over the masked points"""
    points_a = np.asarray(points_a, dtype=np.float64).reshape(-1, 2)
    points_b = np.asarray(points_b, dtype=np.float64).reshape(-1, 2)
    if mask is not None:
        points_a, points_b = points_a[mask], points_b[mask]
    if len(points_a) == 0:
        return 0.0

    projected = cv2.perspectiveTransform(points_a.reshape(-1, 1, 2), H).reshape(-1, 2)
    return float(np.mean(np.linalg.norm(projected - points_b, axis=1)))


def warp_perspective(image: np.ndarray, H: np.ndarray, size: Tuple[int, int]) -> np.ndarray:
    """Warp an image with H into a canvas of size (width, height)"""
    return cv2.warpPerspective(image, H, size)


def composite(base: np.ndarray, warped: np.ndarray, offset: Tuple[int, int]) -> np.ndarray:
    """Paste base over the warped canvas with its top-left corner at offset (x, y)"""
    canvas = warped.copy()
    ox, oy = offset
    h = min(base.shape[0], canvas.shape[0] - oy)
    w = min(base.shape[1], canvas.shape[1] - ox)
    canvas[oy:oy + h, ox:ox + w] = base[:h, :w]
    return canvas


def _image_corners(image: np.ndarray) -> np.ndarray:
    h, w = image.shape[:2]
    return np.float32([[0, 0], [w, 0], [w, h], [0, h]]).reshape(-1, 1, 2)


def warp_and_blend(base: np.ndarray, moving: np.ndarray, H: np.ndarray) -> np.ndarray:
    """
    Stitch two images into one mosaic

    The moving image is warped into the base frame with H and the base image
    is composited on top at the offset that keeps both fully visible.

    Args:
        base: Image that stays fixed (registered image)
        moving: Image mapped by H into the base frame (reference image)
        H: Homography from moving to base coordinates

    Returns:
        Stitched mosaic
    """
    if moving.ndim != base.ndim:
        raise ValueError("Images to stitch must have the same number of channels")

    warped_corners = cv2.perspectiveTransform(_image_corners(moving), H)
    all_corners = np.concatenate([_image_corners(base), warped_corners]).reshape(-1, 2)

    min_x, min_y = all_corners.min(axis=0)
    max_x, max_y = all_corners.max(axis=0)

    offset_x = int(-min_x) if min_x < 0 else 0
    offset_y = int(-min_y) if min_y < 0 else 0
    width = int(max_x - min_x + 1)
    height = int(max_y - min_y + 1)

    limit = MAX_CANVAS_FACTOR * (base.shape[0] * base.shape[1] + moving.shape[0] * moving.shape[1])
    if width <= 0 or height <= 0 or width * height > limit:
        raise ValueError(f"Degenerate mosaic size {width}x{height}")

    T = np.array([[1, 0, offset_x],
                  [0, 1, offset_y],
                  [0, 0, 1]], dtype=np.float64)

    warped = warp_perspective(moving, T @ H, (width, height))
    return composite(base, warped, (offset_x, offset_y))
