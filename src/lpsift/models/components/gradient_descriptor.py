import numpy as np
import cv2
from typing import List, Optional, Sequence, Tuple

from .keypoints import Keypoint

_EPS = 1e-12


def normalize_descriptor(descriptor: np.ndarray, clip_ratio: float = 0.2) -> np.ndarray:
    """
    L2-normalize, clip every component to +/- clip_ratio * norm, then re-normalize

    Args:
        descriptor: Descriptor vector [D] or matrix [N, D]
        clip_ratio: Clip threshold relative to the first norm

    Returns:
        Array of the same shape. Rows whose norm is ~0 are returned unchanged;
        rows whose clipped norm is ~0 are returned clipped but unnormalized.
    """
    vectors = np.atleast_2d(np.asarray(descriptor, dtype=np.float64)).copy()

    norm = np.linalg.norm(vectors, axis=1)
    valid = norm > _EPS
    limit = (clip_ratio * norm)[:, None]
    vectors[valid] = np.clip(vectors[valid], -limit[valid], limit[valid])

    clipped_norm = np.linalg.norm(vectors, axis=1)
    valid &= clipped_norm > _EPS
    vectors[valid] /= clipped_norm[valid, None]

    return vectors.reshape(np.shape(descriptor))


class GradientHistogramDescriptor:
    """
    64-dimensional signed-gradient descriptor for local-peak keypoints

    Each keypoint is described inside the interrogation window (block) that
    produced it. A square patch around the keypoint is split into
    spatial_bins x spatial_bins cells and every cell accumulates four sums of
    central differences: positive dx, positive dy, negative dx and negative dy.
    The negative bins hold the (negative) sums themselves.
    """

    name = "DXDY"
    norm = cv2.NORM_L2

    def __init__(self,
                 window_sizes: Optional[Sequence[int]] = None,
                 spatial_bins: int = 4,
                 clip_ratio: float = 0.2):
        """
        Initialize gradient histogram descriptor

        Args:
            window_sizes: Window size set the keypoints were detected with;
                window_index is resolved against it (keypoint size is used otherwise)
            spatial_bins: Cells per patch side
            clip_ratio: Component clip threshold relative to the descriptor norm
        """
        self.window_sizes = tuple(window_sizes) if window_sizes is not None else None
        self.spatial_bins = spatial_bins
        self.gradient_bins = 4
        self.clip_ratio = clip_ratio

    @property
    def descriptor_size(self) -> int:
        return self.spatial_bins * self.spatial_bins * self.gradient_bins

    @property
    def descriptor_type(self):
        return np.float32

    def _window_size(self, kp: Keypoint) -> int:
        if self.window_sizes is not None and 0 <= kp.window_index < len(self.window_sizes):
            return int(self.window_sizes[kp.window_index])
        return max(2, int(round(kp.size)))

    @staticmethod
    def gradient_integrals(gray: np.ndarray) -> np.ndarray:
        """
        Integral images of the positive and negative central differences

        Returns:
            Array [4, H+1, W+1] stacking +dx, +dy, -dx, -dy integrals
        """
        image = gray.astype(np.float64)
        dx = np.zeros_like(image)
        dy = np.zeros_like(image)
        dx[:, 1:-1] = image[:, 2:] - image[:, :-2]
        # Rows grow downward, so "up minus down" is previous row minus next row
        dy[1:-1, :] = image[:-2, :] - image[2:, :]

        maps = (np.maximum(dx, 0), np.maximum(dy, 0), np.minimum(dx, 0), np.minimum(dy, 0))
        return np.stack([cv2.integral(m, sdepth=cv2.CV_64F) for m in maps])

    def describe(self, gray: np.ndarray, keypoints: List[Keypoint]) -> np.ndarray:
        """
        Compute descriptors for multiple keypoints

        Args:
            gray: 8-bit single-channel image
            keypoints: Keypoints inside the image

        Returns:
            Array of descriptors [N, 64], float32
        """
        if len(keypoints) == 0 or gray.size == 0:
            return np.empty((0, self.descriptor_size), dtype=np.float32)

        h, w = gray.shape[:2]
        d = self.spatial_bins

        ys = np.array([int(kp.y) for kp in keypoints])
        xs = np.array([int(kp.x) for kp in keypoints])
        sizes = np.array([self._window_size(kp) for kp in keypoints])

        # Containing block, clipped to the image
        block_y = (ys // sizes) * sizes
        block_x = (xs // sizes) * sizes
        block_h = np.minimum(sizes, h - block_y)
        block_w = np.minimum(sizes, w - block_x)

        radius = np.rint(3.0 * np.sqrt(np.log2(sizes)) * d).astype(int)
        radius = np.minimum(radius, np.minimum(block_h, block_w))
        radius = np.maximum(radius, d)

        # Cell edges covering [kp - radius, kp + radius]
        steps = np.arange(d + 1) / d
        offsets = np.rint(-radius[:, None] + (2 * radius + 1)[:, None] * steps[None, :]).astype(int)

        # Samples must stay one pixel inside the block
        row_edges = np.clip(ys[:, None] + offsets, (block_y + 1)[:, None], (block_y + block_h - 1)[:, None])
        col_edges = np.clip(xs[:, None] + offsets, (block_x + 1)[:, None], (block_x + block_w - 1)[:, None])
        r0, r1 = row_edges[:, :-1, None], row_edges[:, 1:, None]
        c0, c1 = col_edges[:, None, :-1], col_edges[:, None, 1:]

        integrals = self.gradient_integrals(gray)
        sums = (integrals[:, r1, c1] - integrals[:, r0, c1]
                - integrals[:, r1, c0] + integrals[:, r0, c0])

        # [4, N, d, d] -> [N, d, d, 4] so each cell keeps its four bins together
        descriptors = sums.transpose(1, 2, 3, 0).reshape(len(keypoints), self.descriptor_size)

        degenerate = (block_h < 2) | (block_w < 2)
        descriptors[degenerate] = 0.0

        return normalize_descriptor(descriptors, self.clip_ratio).astype(np.float32)

    def compute(self, gray: np.ndarray, keypoints: List[Keypoint]) -> Tuple[List[Keypoint], np.ndarray]:
        return list(keypoints), self.describe(gray, keypoints)
