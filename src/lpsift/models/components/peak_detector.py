import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .keypoints import Keypoint, sort_by_response
from .preprocessing import add_linear_ramp
from .window_sizes import WindowSizeSet

logger = logging.getLogger(__name__)


def count_tiles(shape: Tuple[int, int], window_size: int) -> Tuple[int, int]:
    """Number of tile rows and columns covering an image, boundary tiles included"""
    h, w = shape[:2]
    return -(-h // window_size), -(-w // window_size)


@dataclass
class TilePeaks:
    """Per-tile extrema of one window size, each array shaped [tile_rows, tile_cols]"""
    window_size: int
    max_y: np.ndarray
    max_x: np.ndarray
    min_y: np.ndarray
    min_x: np.ndarray
    response: np.ndarray

    @property
    def num_tiles(self) -> int:
        return int(self.response.size)

    @property
    def coincident(self) -> np.ndarray:
        """Tiles whose minimum and maximum are the same pixel"""
        return (self.max_y == self.min_y) & (self.max_x == self.min_x)


def find_tile_peaks(ramped: np.ndarray, window_size: int) -> TilePeaks:
    """
    Locate the minimum and maximum of every L x L tile

    Tiles on the right and bottom border are clipped to the image rather
    than skipped. Ties resolve to the first pixel in raster order.

    Args:
        ramped: Single-channel float image (normally after add_linear_ramp)
        window_size: Tile side L

    Returns:
        TilePeaks with global pixel coordinates
    """
    h, w = ramped.shape
    L = window_size
    tile_rows, tile_cols = count_tiles(ramped.shape, L)

    # Pad to whole tiles; padding never wins an argmax/argmin
    buffer = np.full((tile_rows * L, tile_cols * L), -np.inf, dtype=np.float64)
    buffer[:h, :w] = ramped
    tiles = buffer.reshape(tile_rows, L, tile_cols, L).transpose(0, 2, 1, 3).reshape(tile_rows, tile_cols, L * L)
    max_idx = tiles.argmax(axis=2)
    max_val = np.take_along_axis(tiles, max_idx[..., None], axis=2)[..., 0]

    buffer[h:, :] = np.inf
    buffer[:, w:] = np.inf
    tiles = buffer.reshape(tile_rows, L, tile_cols, L).transpose(0, 2, 1, 3).reshape(tile_rows, tile_cols, L * L)
    min_idx = tiles.argmin(axis=2)
    min_val = np.take_along_axis(tiles, min_idx[..., None], axis=2)[..., 0]

    origin_y = (np.arange(tile_rows) * L)[:, None]
    origin_x = (np.arange(tile_cols) * L)[None, :]

    return TilePeaks(
        window_size=L,
        max_y=origin_y + max_idx // L,
        max_x=origin_x + max_idx % L,
        min_y=origin_y + min_idx // L,
        min_x=origin_x + min_idx % L,
        response=max_val - min_val,
    )


def unique_in_neighborhood(image: np.ndarray, ys: np.ndarray, xs: np.ndarray) -> np.ndarray:
    """
    Check that each pixel's value occurs exactly once in its 3x3 neighborhood

    The neighborhood is clipped at the image border.

    Args:
        image: Unramped single-channel image
        ys, xs: Pixel coordinates to test

    Returns:
        Boolean mask, True where the pixel value is unique
    """
    if len(ys) == 0:
        return np.zeros(0, dtype=bool)

    padded = np.pad(image.astype(np.float64), 1, mode='constant', constant_values=np.nan)
    values = image[ys, xs].astype(np.float64)
    counts = np.zeros(len(ys), dtype=int)
    for dy in range(3):
        for dx in range(3):
            counts += padded[ys + dy, xs + dx] == values
    return counts == 1


class WindowedPeakDetector:
    """
    Multi-scale local-peak detector

    The image is tiled with interrogation windows of every configured size and
    the brightest and darkest pixel of each tile become keypoints. A tiny
    linear ramp is added first so flat regions still yield a deterministic
    extremum.
    """

    def __init__(self,
                 window_sizes: Sequence[int],
                 linear_noise_alpha: float = 1e-6,
                 uniqueness_filter: bool = False,
                 max_keypoints: Optional[int] = None):
        """
        Initialize local-peak detector

        Args:
            window_sizes: Interrogation window sizes L
            linear_noise_alpha: Ramp step added in raster order (<= 0 disables it)
            uniqueness_filter: Reject peaks whose value repeats in their 3x3 neighborhood
            max_keypoints: Keep only the strongest peaks by response (None keeps all)
        """
        if not isinstance(window_sizes, WindowSizeSet):
            window_sizes = WindowSizeSet.from_iterable(window_sizes)
        self.window_sizes = window_sizes
        self.linear_noise_alpha = linear_noise_alpha
        self.uniqueness_filter = uniqueness_filter
        self.max_keypoints = max_keypoints

    def detect(self, gray: np.ndarray) -> List[Keypoint]:
        """
        Extract local-peak keypoints

        Args:
            gray: Single-channel image

        Returns:
            Keypoints, tile by tile in raster order and window size order
            (max before min), or sorted by response when max_keypoints is set
        """
        if gray.size == 0:
            return []

        ramped = add_linear_ramp(gray, self.linear_noise_alpha)

        keypoints = []
        for window_index, L in enumerate(self.window_sizes):
            peaks = find_tile_peaks(ramped, L)
            keypoints.extend(self._peaks_to_keypoints(gray, peaks, window_index))

        logger.debug("Detected %d local peaks over window sizes %s", len(keypoints), self.window_sizes)

        if self.max_keypoints is not None:
            keypoints = sort_by_response(keypoints, self.max_keypoints)

        return keypoints

    def _peaks_to_keypoints(self, gray: np.ndarray, peaks: TilePeaks,
                            window_index: int) -> List[Keypoint]:
        """Interleave max and min candidates per tile, dropping duplicates and non-unique peaks"""
        max_y, max_x = peaks.max_y.ravel(), peaks.max_x.ravel()
        min_y, min_x = peaks.min_y.ravel(), peaks.min_x.ravel()
        response = peaks.response.ravel()

        keep_max = np.ones(len(response), dtype=bool)
        keep_min = ~peaks.coincident.ravel()

        if self.uniqueness_filter:
            keep_max &= unique_in_neighborhood(gray, max_y, max_x)
            keep_min &= unique_in_neighborhood(gray, min_y, min_x)

        # Column 0 holds the tile maximum, column 1 the minimum
        ys = np.stack([max_y, min_y], axis=1).ravel()
        xs = np.stack([max_x, min_x], axis=1).ravel()
        keep = np.stack([keep_max, keep_min], axis=1).ravel()
        responses = np.repeat(response, 2)

        size = float(peaks.window_size)
        return [
            Keypoint(x=float(x), y=float(y), size=size, response=float(r), window_index=window_index)
            for x, y, r in zip(xs[keep], ys[keep], responses[keep])
        ]
