import numpy as np
import cv2


def to_grayscale(image: np.ndarray) -> np.ndarray:
    """
    Convert an image to a single channel copy

    Args:
        image: Input image (BGR, BGRA or grayscale)

    Returns:
        Grayscale image with the input dtype; the input is never modified
    """
    if image is None or image.size == 0:
        return np.empty((0, 0), dtype=np.uint8)

    if image.ndim == 3:
        channels = image.shape[2]
        if channels == 3:
            return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        if channels == 4:
            return cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
        if channels == 1:
            return image[:, :, 0].copy()
        raise ValueError(f"Unsupported channel count: {channels}")

    return image.copy()


def to_uint8(image: np.ndarray) -> np.ndarray:
    """Bring an image to 8-bit, saturating out-of-range values"""
    if image.dtype == np.uint8:
        return image
    return np.clip(np.rint(image), 0, 255).astype(np.uint8)


def add_linear_ramp(image: np.ndarray, alpha: float) -> np.ndarray:
    """
    Add a tiny raster-order ramp so no two pixels compare equal

    Each pixel receives alpha * (row * width + col). Flat plateaus then have
    a unique minimum at their first raster pixel and a unique maximum at
    their last one.

    Args:
        image: Single-channel image
        alpha: Ramp step, expected << 1 (e.g. 1e-6)

    Returns:
        float64 working copy; ramp skipped when alpha <= 0 or the image is empty
    """
    working = np.array(image, dtype=np.float64, copy=True)
    if alpha <= 0 or working.size == 0:
        return working

    h, w = working.shape[:2]
    ramp = np.arange(h * w, dtype=np.float64).reshape(h, w) * alpha
    working += ramp
    return working
