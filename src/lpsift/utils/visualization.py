import logging
from typing import List, Optional, Sequence

import matplotlib.pyplot as plt
import numpy as np
import cv2

from ..models.components.keypoints import Keypoint, keypoints_to_array

logger = logging.getLogger(__name__)


def _to_rgb(image: np.ndarray) -> np.ndarray:
    """OpenCV images are BGR; matplotlib expects RGB"""
    if image.ndim == 3 and image.shape[2] == 3:
        return cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
    if image.ndim == 3 and image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2RGBA)
    return image


def _finish(fig, save_path: Optional[str], what: str):
    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info("%s saved to: %s", what, save_path)
        plt.close(fig)
    else:
        plt.show()


class LPSIFTVisualizer:
    """Visualization utilities for local-peak features and benchmark results"""

    @staticmethod
    def plot_keypoints(image: np.ndarray, keypoints: List[Keypoint],
                       window_sizes: Optional[Sequence[int]] = None,
                       title: str = "Local-Peak Keypoints", figsize: tuple = (12, 8),
                       save_path: Optional[str] = None):
        """
        Plot keypoints on an image, colored by the window size that produced them

        Args:
            image: Input image
            keypoints: Keypoints to draw
            window_sizes: Window sizes used for detection (legend labels)
            title: Plot title
            figsize: Figure size
            save_path: Path to save the figure (optional)
        """
        fig, ax = plt.subplots(figsize=figsize)
        ax.imshow(_to_rgb(image), cmap='gray' if image.ndim == 2 else None)

        groups = {}
        for kp in keypoints:
            groups.setdefault(kp.window_index, []).append(kp)

        colors = plt.cm.viridis(np.linspace(0, 1, max(len(groups), 1)))
        for color, (window_index, group) in zip(colors, sorted(groups.items())):
            points = keypoints_to_array(group)
            if window_sizes is not None and 0 <= window_index < len(window_sizes):
                label = f"L={window_sizes[window_index]} ({len(group)})"
            else:
                label = f"{len(group)} keypoints"
            ax.scatter(points[:, 0], points[:, 1], s=12, color=color, alpha=0.7, label=label)

        ax.set_title(f"{title} ({len(keypoints)})", fontsize=14, fontweight='bold')
        if groups:
            ax.legend(loc='upper right')
        ax.axis('off')
        fig.tight_layout()
        _finish(fig, save_path, "Keypoints plot")
        return fig

    @staticmethod
    def plot_matches(image1: np.ndarray, image2: np.ndarray,
                     points1: np.ndarray, points2: np.ndarray,
                     inliers: Optional[np.ndarray] = None,
                     title: str = "Matches", figsize: tuple = (16, 8),
                     max_lines: int = 500, save_path: Optional[str] = None):
        """
        Plot matches side by side with connecting lines

        Args:
            image1, image2: Input images
            points1, points2: Matched (x, y) coordinates [N, 2]
            inliers: Optional boolean mask; inliers green, outliers red
            title: Plot title
            figsize: Figure size
            max_lines: Draw at most this many connections
            save_path: Path to save the figure (optional)
        """
        image1, image2 = _to_rgb(image1), _to_rgb(image2)
        h1, w1 = image1.shape[:2]
        h2, w2 = image2.shape[:2]

        if image1.ndim == 3 or image2.ndim == 3:
            image1 = image1 if image1.ndim == 3 else np.dstack([image1] * 3)
            image2 = image2 if image2.ndim == 3 else np.dstack([image2] * 3)
            combined = np.zeros((max(h1, h2), w1 + w2, 3), dtype=image1.dtype)
        else:
            combined = np.zeros((max(h1, h2), w1 + w2), dtype=image1.dtype)
        combined[:h1, :w1] = image1[..., :3] if image1.ndim == 3 else image1
        combined[:h2, w1:w1 + w2] = image2[..., :3] if image2.ndim == 3 else image2

        fig, ax = plt.subplots(figsize=figsize)
        ax.imshow(combined, cmap='gray' if combined.ndim == 2 else None)

        points1 = np.asarray(points1).reshape(-1, 2)
        points2 = np.asarray(points2).reshape(-1, 2)
        if inliers is None:
            inliers = np.ones(len(points1), dtype=bool)

        for i in range(min(len(points1), max_lines)):
            color = 'g' if inliers[i] else 'r'
            ax.plot([points1[i, 0], points2[i, 0] + w1], [points1[i, 1], points2[i, 1]],
                    color=color, alpha=0.6, linewidth=0.8)

        ax.set_title(f"{title} ({int(np.sum(inliers))}/{len(points1)} inliers)",
                     fontsize=14, fontweight='bold')
        ax.axis('off')
        fig.tight_layout()
        _finish(fig, save_path, "Matches plot")
        return fig

    @staticmethod
    def plot_mosaic(mosaic: np.ndarray, title: str = "Stitched Mosaic",
                    figsize: tuple = (12, 8), save_path: Optional[str] = None):
        """Show a stitched mosaic"""
        fig, ax = plt.subplots(figsize=figsize)
        ax.imshow(_to_rgb(mosaic), cmap='gray' if mosaic.ndim == 2 else None)
        ax.set_title(title, fontsize=14, fontweight='bold')
        ax.axis('off')
        fig.tight_layout()
        _finish(fig, save_path, "Mosaic")
        return fig

    @staticmethod
    def plot_spectrum(log_magnitude: np.ndarray, peaks: Optional[np.ndarray] = None,
                      windows: Optional[Sequence[int]] = None,
                      title: str = "Log-Magnitude Spectrum", figsize: tuple = (10, 8),
                      save_path: Optional[str] = None):
        """
        Plot the spectrum searched by suggest_window_sizes() with its peaks

        Args:
            log_magnitude: Centered log-magnitude spectrum
            peaks: Peak coordinates [K, 2] as (row, col)
            windows: Window sizes derived from the peaks
            title: Plot title
            figsize: Figure size
            save_path: Path to save the figure (optional)
        """
        fig, ax = plt.subplots(figsize=figsize)
        im = ax.imshow(log_magnitude, cmap='magma')
        fig.colorbar(im, ax=ax, fraction=0.046, pad=0.04)

        if peaks is not None and len(peaks) > 0:
            ax.scatter(peaks[:, 1], peaks[:, 0], s=80, facecolors='none', edgecolors='cyan', linewidths=1.5)

        if windows:
            title = f"{title} - suggested L: {', '.join(str(w) for w in windows)}"
        ax.set_title(title, fontsize=14, fontweight='bold')
        ax.axis('off')
        fig.tight_layout()
        _finish(fig, save_path, "Spectrum plot")
        return fig

    @staticmethod
    def plot_benchmark_summary(summary, figsize: tuple = (15, 6), save_path: Optional[str] = None):
        """
        Plot success rate and timing per algorithm

        Args:
            summary: DataFrame from lpsift.benchmark.reporter.summarize()
            figsize: Figure size
            save_path: Path to save the figure (optional)
        """
        fig, (ax1, ax2) = plt.subplots(1, 2, figsize=figsize)
        algorithms = list(summary.index)
        x = np.arange(len(algorithms))

        rates = summary["Success Rate (%)"].to_numpy()
        bars = ax1.bar(x, rates, color='lightgreen', alpha=0.8)
        ax1.set_title('Success Rate', fontweight='bold')
        ax1.set_ylabel('%')
        ax1.set_ylim(0, 110)
        ax1.set_xticks(x)
        ax1.set_xticklabels(algorithms, rotation=30, ha='right')
        for bar, rate in zip(bars, rates):
            ax1.text(bar.get_x() + bar.get_width() / 2, bar.get_height() + 1,
                     f'{rate:.0f}', ha='center', va='bottom', fontweight='bold')

        avg = np.nan_to_num(summary["Avg Time (s)"].to_numpy(dtype=float))
        low = np.nan_to_num(summary["Min Time (s)"].to_numpy(dtype=float))
        high = np.nan_to_num(summary["Max Time (s)"].to_numpy(dtype=float))
        ax2.bar(x, avg, yerr=[avg - low, high - avg], color='lightblue', alpha=0.8, capsize=4)
        ax2.set_title('Total Stitching Time (successful runs)', fontweight='bold')
        ax2.set_ylabel('Seconds')
        ax2.set_xticks(x)
        ax2.set_xticklabels(algorithms, rotation=30, ha='right')

        fig.suptitle('Benchmark Summary', fontsize=16, fontweight='bold')
        fig.tight_layout()
        _finish(fig, save_path, "Benchmark summary")
        return fig
