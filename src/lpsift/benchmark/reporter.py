import csv
import logging
import os
from typing import Iterable

import numpy as np
import pandas as pd

from .metrics import StitchingMetrics, format_homography, format_time

logger = logging.getLogger(__name__)

TIME_COLUMNS = [
    ("Detection Time Ref (s)", "detection_time_reference"),
    ("Detection Time Reg (s)", "detection_time_registered"),
    ("Descriptor Time Ref (s)", "descriptor_time_reference"),
    ("Descriptor Time Reg (s)", "descriptor_time_registered"),
    ("Matching Time (s)", "matching_time"),
    ("Homography Time (s)", "homography_time"),
    ("Warping Time (s)", "warping_time"),
    ("Total Stitching Time (s)", "total_stitching_time"),
]

COLUMNS = (["Dataset", "Size Category", "Algorithm", "Reference Resolution", "Registered Resolution",
            "Keypoints (Reference)", "Keypoints (Registered)", "Detected Keypoints (Reference)",
            "Detected Keypoints (Registered)", "Matches", "Inliers", "Window Size (L)"]
           + [column for column, _ in TIME_COLUMNS]
           + ["Reprojection Error (px)", "Homography", "Homography Delta", "Success", "Failure Reason"])

SUMMARY_WIDTH = 120
STATUS_WIDTH = 28


def _row(metrics: StitchingMetrics) -> dict:
    row = {
        "Dataset": metrics.dataset_name,
        "Size Category": str(metrics.size_category),
        "Algorithm": metrics.algorithm_name,
        "Reference Resolution": metrics.reference_resolution,
        "Registered Resolution": metrics.registered_resolution,
        "Keypoints (Reference)": metrics.num_keypoints_reference,
        "Keypoints (Registered)": metrics.num_keypoints_registered,
        "Detected Keypoints (Reference)": metrics.detected_keypoints_reference,
        "Detected Keypoints (Registered)": metrics.detected_keypoints_registered,
        "Matches": metrics.num_matches,
        "Inliers": metrics.num_inliers,
        "Window Size (L)": metrics.window_sizes,
    }
    for column, attribute in TIME_COLUMNS:
        row[column] = format_time(getattr(metrics, attribute))

    row["Reprojection Error (px)"] = f"{metrics.reprojection_error:.4f}" if metrics.stitching_success else ""
    row["Homography"] = format_homography(metrics.homography)
    row["Homography Delta"] = format_homography(metrics.homography_delta)
    row["Success"] = "Yes" if metrics.stitching_success else "No"
    row["Failure Reason"] = metrics.failure_reason
    return row


def metrics_to_frame(records: Iterable[StitchingMetrics]) -> pd.DataFrame:
    """One row per benchmark run, columns in report order"""
    return pd.DataFrame([_row(m) for m in records], columns=COLUMNS)


def write_csv(records: Iterable[StitchingMetrics], path: str) -> pd.DataFrame:
    """
    Write the benchmark report

    Args:
        records: Finalized metrics
        path: Output CSV file

    Returns:
        The DataFrame that was written
    """
    frame = metrics_to_frame(records)
    directory = os.path.dirname(str(path))
    if directory:
        os.makedirs(directory, exist_ok=True)
    frame.to_csv(path, index=False, quoting=csv.QUOTE_ALL)
    logger.info("Results saved to %s", path)
    return frame


def summarize(records: Iterable[StitchingMetrics]) -> pd.DataFrame:
    """
    Per-algorithm aggregate

    Returns:
        DataFrame indexed by algorithm with runs, successes, success rate (%)
        and average/min/max total time over successful runs
    """
    records = list(records)
    frame = pd.DataFrame({
        "Algorithm": [m.algorithm_name for m in records],
        "Success": [m.stitching_success for m in records],
        "Total Time": [m.total_stitching_time for m in records],
    }, columns=["Algorithm", "Success", "Total Time"])

    grouped = frame.groupby("Algorithm", sort=False)
    summary = pd.DataFrame({
        "Runs": grouped.size(),
        "Successes": grouped["Success"].sum().astype(int),
    })
    summary["Success Rate (%)"] = 100.0 * summary["Successes"] / summary["Runs"]

    successful = frame[frame["Success"]].groupby("Algorithm", sort=False)["Total Time"]
    summary["Avg Time (s)"] = successful.mean()
    summary["Min Time (s)"] = successful.min()
    summary["Max Time (s)"] = successful.max()
    return summary


def _cell(value, success: bool, fmt: str = "{}") -> str:
    return fmt.format(value) if success else "x"


def print_summary_table(records: Iterable[StitchingMetrics]) -> None:
    """Print one line per run followed by the per-algorithm summary"""
    records = list(records)

    print("=" * SUMMARY_WIDTH)
    print("BENCHMARK RESULTS")
    print("=" * SUMMARY_WIDTH)
    print(f"{'Dataset':<20}{'Algorithm':<12}{'Size':<8}{'KP Ref':>10}{'KP Reg':>10}"
          f"{'Matches':>10}{'Inliers':>10}{'Time (s)':>10}  {'Status':<{STATUS_WIDTH}}")
    print("-" * SUMMARY_WIDTH)

    for m in records:
        ok = m.stitching_success
        status = "Success" if ok else f"Failed: {m.failure_reason}"
        print(f"{m.dataset_name[:19]:<20}{m.algorithm_name:<12}{str(m.size_category):<8}"
              f"{_cell(m.num_keypoints_reference, ok):>10}{_cell(m.num_keypoints_registered, ok):>10}"
              f"{_cell(m.num_matches, ok):>10}{_cell(m.num_inliers, ok):>10}"
              f"{_cell(m.total_stitching_time, ok, '{:.2f}'):>10}  {status[:STATUS_WIDTH]}")

    print("=" * SUMMARY_WIDTH)
    if not records:
        print("No benchmark runs")
        return

    summary = summarize(records)
    print(f"{'Algorithm':<12}{'Runs':>8}{'Success':>10}{'Rate (%)':>10}"
          f"{'Avg (s)':>10}{'Min (s)':>10}{'Max (s)':>10}")
    print("-" * SUMMARY_WIDTH)
    for algorithm, row in summary.iterrows():
        times = [row[c] for c in ("Avg Time (s)", "Min Time (s)", "Max Time (s)")]
        rendered = ["Failed" if np.isnan(t) else f"{t:.2f}" for t in times]
        print(f"{algorithm:<12}{int(row['Runs']):>8}{int(row['Successes']):>10}"
              f"{row['Success Rate (%)']:>10.1f}{rendered[0]:>10}{rendered[1]:>10}{rendered[2]:>10}")
    print("=" * SUMMARY_WIDTH)
