import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np
from scipy import fft as sp_fft
from skimage.feature import peak_local_max

logger = logging.getLogger(__name__)

SMALL_MAX_PIXELS = 1_000_000
MEDIUM_MAX_PIXELS = 3_000_000


class ImageSizeCategory(Enum):
    """Image size classes used when reporting results (by megapixel count)"""
    SMALL = "Small"    # < 1 MP
    MEDIUM = "Medium"  # 1-3 MP
    LARGE = "Large"    # >= 3 MP

    def __str__(self):
        return self.value


def get_image_size_category(width: int, height: int) -> ImageSizeCategory:
    pixels = int(width) * int(height)
    if pixels < SMALL_MAX_PIXELS:
        return ImageSizeCategory.SMALL
    if pixels < MEDIUM_MAX_PIXELS:
        return ImageSizeCategory.MEDIUM
    return ImageSizeCategory.LARGE


@dataclass(frozen=True)
class WindowSizeSet:
    """
    Ordered set of interrogation window sizes used for one detection pass

    Raises ValueError when empty, when a size is not an integer greater
    than one, or when a size repeats.
    """
    sizes: Tuple[int, ...]

    def __post_init__(self):
        sizes = tuple(self.sizes)
        if len(sizes) == 0:
            raise ValueError("Window size set must not be empty")
        for size in sizes:
            if isinstance(size, bool) or int(size) != size:
                raise ValueError(f"Window sizes must be integers, got {size!r}")
            if size <= 1:
                raise ValueError(f"Window sizes must be greater than 1, got {size}")
        if len(set(sizes)) != len(sizes):
            raise ValueError(f"Window sizes must be distinct, got {list(sizes)}")
        object.__setattr__(self, 'sizes', tuple(int(s) for s in sizes))

    @classmethod
    def from_iterable(cls, sizes: Iterable[int]) -> 'WindowSizeSet':
        return cls(tuple(sizes))

    @classmethod
    def parse(cls, text: str) -> 'WindowSizeSet':
        """Parse a comma separated list such as '16,32,64'"""
        tokens = [token.strip() for token in text.split(',') if token.strip()]
        try:
            sizes = tuple(int(token) for token in tokens)
        except ValueError:
            raise ValueError(f"Could not parse window sizes from {text!r}")
        return cls(sizes)

    def index(self, size: int) -> int:
        return self.sizes.index(size)

    def __iter__(self):
        return iter(self.sizes)

    def __len__(self):
        return len(self.sizes)

    def __getitem__(self, idx: int) -> int:
        return self.sizes[idx]

    def __str__(self):
        return ",".join(str(s) for s in self.sizes)


DEFAULT_WINDOW_SIZES = {
    ImageSizeCategory.SMALL: (16, 32, 64),
    ImageSizeCategory.MEDIUM: (16, 32, 64, 128),
    ImageSizeCategory.LARGE: (16, 32, 64, 128, 256),
}


def select_window_sizes(width: int, height: int,
                        table: Optional[Dict] = None) -> WindowSizeSet:
    """
    Pick the window sizes for an image from its size category

    Args:
        width, height: Image resolution
        table: Mapping from category (enum or lowercase name) to sizes

    Returns:
        WindowSizeSet for this resolution
    """
    category = get_image_size_category(width, height)
    table = table or DEFAULT_WINDOW_SIZES

    sizes = table.get(category)
    if sizes is None:
        sizes = table.get(category.name.lower())
    if sizes is None:
        sizes = DEFAULT_WINDOW_SIZES[category]

    return WindowSizeSet.from_iterable(sizes)


def _log_magnitude_spectrum(gray: np.ndarray) -> np.ndarray:
    """Centered log-magnitude spectrum of the image, zero padded to a fast FFT size"""
    rows, cols = gray.shape[:2]
    padded_shape = (sp_fft.next_fast_len(rows), sp_fft.next_fast_len(cols))

    spectrum = sp_fft.fft2(gray.astype(np.float64), s=padded_shape)
    spectrum = sp_fft.fftshift(spectrum)
    return np.log(np.abs(spectrum) + 1.0)


def window_from_frequency(dx: int, dy: int, rows: int, cols: int) -> int:
    """
    Convert a spectrum offset from DC into a spatial window size

    Returns:
        Window size in [2, min(rows, cols)]
    """
    extent = min(rows, cols)
    radius = np.hypot(dx, dy)
    if radius <= 0:
        return extent
    period = extent / radius
    return int(round(float(np.clip(period, 2.0, extent))))


def suggest_window_sizes(gray: np.ndarray, num_peaks: int = 2,
                         suppress_radius: int = 6,
                         dc_radius: int = 4) -> Tuple[List[int], np.ndarray, np.ndarray]:
    """
    Suggest window sizes from the strongest spatial frequencies of an image

    Args:
        gray: Single-channel image
        num_peaks: Number of spectral peaks to convert
        suppress_radius: Minimum distance between reported peaks
        dc_radius: Radius around DC that is ignored

    Returns:
        windows: Suggested window sizes, de-duplicated, strongest first
        peaks: Peak coordinates in the centered spectrum [K, 2] as (row, col)
        log_magnitude: The spectrum that was searched (for plotting)
    """
    if gray.ndim != 2 or gray.size == 0:
        raise ValueError("suggest_window_sizes expects a non-empty single-channel image")

    rows, cols = gray.shape
    log_magnitude = _log_magnitude_spectrum(gray)

    center_row, center_col = log_magnitude.shape[0] // 2, log_magnitude.shape[1] // 2
    yy, xx = np.ogrid[:log_magnitude.shape[0], :log_magnitude.shape[1]]
    dc_mask = (yy - center_row) ** 2 + (xx - center_col) ** 2 <= dc_radius ** 2
    log_magnitude[dc_mask] = 0.0

    peaks = peak_local_max(log_magnitude,
                           min_distance=max(1, suppress_radius),
                           threshold_abs=0.0,
                           exclude_border=False,
                           num_peaks=max(1, num_peaks))

    windows = []
    for peak_row, peak_col in peaks:
        size = window_from_frequency(peak_col - center_col, peak_row - center_row, rows, cols)
        if size not in windows:
            windows.append(size)

    logger.debug("Spectrum peaks %s -> windows %s", peaks.tolist(), windows)
    return windows, peaks, log_magnitude
