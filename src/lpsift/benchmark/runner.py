"""
Benchmark orchestration: runs every detector over image pairs through the
staged detect / describe / match / fit / warp pipeline and records metrics.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import cv2

from ..models.components.keypoints import keypoints_to_array
from ..models.components.window_sizes import (WindowSizeSet, get_image_size_category,
                                              select_window_sizes)
from ..datasets.image_pairs import ImagePairDataset
from .detectors import DetectorConfig, build_detectors
from .geometry import (MIN_MATCHES, RANSAC_THRESHOLD, RNG_SEED, MatcherType,
                       fit_robust_homography, match_nearest_neighbor, matcher_capacity,
                       reprojection_error, warp_and_blend)
from .metrics import Stage, StitchingMetrics, Timer

logger = logging.getLogger(__name__)

REFERENCE_ALGORITHM = "SIFT"


@dataclass(frozen=True)
class StageOutcome:
    """Result of one stage: ok, or a failure with its reason"""
    ok: bool
    reason: str = ""

    @classmethod
    def success(cls) -> 'StageOutcome':
        return cls(True)

    @classmethod
    def failure(cls, reason: str) -> 'StageOutcome':
        return cls(False, reason)


class BenchmarkRunner:
    """
    Staged benchmark of one detector on one image pair

    Collaborators (matcher, homography fitter, warper) are injectable so each
    stage can be exercised in isolation.
    """

    def __init__(self,
                 match_fn: Callable = match_nearest_neighbor,
                 homography_fn: Callable = fit_robust_homography,
                 warp_fn: Callable = warp_and_blend,
                 ransac_threshold: float = RANSAC_THRESHOLD,
                 rng_seed: int = RNG_SEED,
                 max_keypoints: Optional[int] = None,
                 reference_algorithm: str = REFERENCE_ALGORITHM):
        """
        Initialize benchmark runner

        Args:
            match_fn: (desc_a, desc_b, norm, matcher_type) -> list of matches
            homography_fn: (points_a, points_b, seed=, threshold=) -> (H, inlier mask)
            warp_fn: (base, moving, H) -> mosaic
            ransac_threshold: RANSAC reprojection threshold in pixels
            rng_seed: Seed passed to the homography fitter
            max_keypoints: Override of the matcher capacity (None uses the matcher's own)
            reference_algorithm: Detector whose homography becomes the baseline
        """
        self.match_fn = match_fn
        self.homography_fn = homography_fn
        self.warp_fn = warp_fn
        self.ransac_threshold = ransac_threshold
        self.rng_seed = rng_seed
        self.max_keypoints = max_keypoints
        self.reference_algorithm = reference_algorithm

    def _capacity(self, matcher_type: MatcherType) -> Optional[int]:
        if self.max_keypoints is not None:
            return self.max_keypoints
        return matcher_capacity(matcher_type)

    def run_single_benchmark(self,
                             dataset_name: str,
                             reference: np.ndarray,
                             registered: np.ndarray,
                             config: DetectorConfig,
                             window_sizes: Union[WindowSizeSet, str] = "",
                             baseline_homography: Optional[np.ndarray] = None,
                             output_dir: Optional[Union[str, Path]] = None) -> StitchingMetrics:
        """
        Run one detector on one image pair

        Args:
            dataset_name: Name of the image pair
            reference: Reference image (source of the homography)
            registered: Registered image (destination of the homography)
            config: Detector to run
            window_sizes: Window sizes in use, recorded in the metrics
            baseline_homography: Homography of the reference algorithm, if any
            output_dir: Directory for the stitched mosaic (not written when None)

        Returns:
            Finalized StitchingMetrics; failures are recorded, never raised
        """
        metrics = StitchingMetrics(dataset_name=dataset_name,
                                   algorithm_name=config.name,
                                   window_sizes=str(window_sizes),
                                   baseline_homography=baseline_homography)
        total = Timer().start()
        stage = Stage.PREPROCESS

        state = {"reference": reference, "registered": registered}
        try:
            stages = (
                (Stage.PREPROCESS, lambda: self._preprocess(metrics, reference, registered)),
                (Stage.DETECT, lambda: self._detect(metrics, state, config)),
                (Stage.CHECK_KEYPOINTS, lambda: self._check_keypoints(metrics, state, config)),
                (Stage.DESCRIBE, lambda: self._describe(metrics, state, config)),
                (Stage.CHECK_DESCRIPTORS, lambda: self._check_descriptors(state)),
                (Stage.MATCH, lambda: self._match(metrics, state, config)),
                (Stage.CHECK_MATCH_COUNT, lambda: self._check_match_count(metrics)),
                (Stage.FIT_HOMOGRAPHY, lambda: self._fit_homography(metrics, state)),
                (Stage.CHECK_HOMOGRAPHY, lambda: self._check_homography(state)),
                (Stage.WARP, lambda: self._warp(metrics, state, config, output_dir)),
            )

            for stage, run_stage in stages:
                outcome = run_stage()
                if not outcome.ok:
                    logger.info("%s / %s failed at %s: %s",
                                dataset_name, config.name, stage, outcome.reason)
                    return metrics.finish(total.stop(), stage, outcome.reason)

        except Exception as e:
            logger.debug("%s / %s raised at %s", dataset_name, config.name, stage, exc_info=True)
            logger.warning("%s / %s: %s", dataset_name, config.name, e)
            return metrics.finish(total.stop(), stage, f"Exception: {e}")

        metrics.homography = state["H"]
        return metrics.finish(total.stop(), Stage.SUCCESS)

    # Stages

    def _preprocess(self, metrics: StitchingMetrics, reference: np.ndarray,
                    registered: np.ndarray) -> StageOutcome:
        # Unreadable or empty images fall through to the keypoint check
        if reference is not None:
            metrics.reference_height, metrics.reference_width = reference.shape[:2]
        if registered is not None:
            metrics.registered_height, metrics.registered_width = registered.shape[:2]
        metrics.size_category = get_image_size_category(metrics.reference_width,
                                                        metrics.reference_height)
        return StageOutcome.success()

    def _detect(self, metrics: StitchingMetrics, state: Dict, config: DetectorConfig) -> StageOutcome:
        detector = config.detector

        with Timer() as timer:
            state["kp_ref"] = detector.detect(state["reference"])
        metrics.detection_time_reference = timer.elapsed_seconds

        with Timer() as timer:
            state["kp_reg"] = detector.detect(state["registered"])
        metrics.detection_time_registered = timer.elapsed_seconds

        metrics.detected_keypoints_reference = len(state["kp_ref"])
        metrics.detected_keypoints_registered = len(state["kp_reg"])
        return StageOutcome.success()

    def _check_keypoints(self, metrics: StitchingMetrics, state: Dict,
                         config: DetectorConfig) -> StageOutcome:
        n_ref = metrics.detected_keypoints_reference
        n_reg = metrics.detected_keypoints_registered
        if n_ref == 0 or n_reg == 0:
            return StageOutcome.failure("Empty keypoints")

        limit = self._capacity(config.matcher_type)
        if limit is not None and (n_ref > limit or n_reg > limit):
            return StageOutcome.failure(f"Too many keypoints (ref={n_ref}, reg={n_reg}, limit={limit})")
        return StageOutcome.success()

    def _describe(self, metrics: StitchingMetrics, state: Dict, config: DetectorConfig) -> StageOutcome:
        detector = config.detector

        with Timer() as timer:
            state["kp_ref"], state["desc_ref"] = detector.compute(state["reference"], state["kp_ref"])
        metrics.descriptor_time_reference = timer.elapsed_seconds

        with Timer() as timer:
            state["kp_reg"], state["desc_reg"] = detector.compute(state["registered"], state["kp_reg"])
        metrics.descriptor_time_registered = timer.elapsed_seconds

        metrics.num_keypoints_reference = len(state["kp_ref"])
        metrics.num_keypoints_registered = len(state["kp_reg"])
        return StageOutcome.success()

    def _check_descriptors(self, state: Dict) -> StageOutcome:
        for key in ("desc_ref", "desc_reg"):
            descriptors = state[key]
            if descriptors is None or len(descriptors) == 0:
                return StageOutcome.failure("Empty descriptors")
        return StageOutcome.success()

    def _match(self, metrics: StitchingMetrics, state: Dict, config: DetectorConfig) -> StageOutcome:
        with Timer() as timer:
            state["matches"] = self.match_fn(state["desc_ref"], state["desc_reg"],
                                             config.norm, config.matcher_type)
        metrics.matching_time = timer.elapsed_seconds
        metrics.num_matches = len(state["matches"])
        return StageOutcome.success()

    def _check_match_count(self, metrics: StitchingMetrics) -> StageOutcome:
        if metrics.num_matches < MIN_MATCHES:
            return StageOutcome.failure(f"Insufficient matches (<{MIN_MATCHES})")
        return StageOutcome.success()

    def _fit_homography(self, metrics: StitchingMetrics, state: Dict) -> StageOutcome:
        points_ref, points_reg = self._matched_points(state)

        with Timer() as timer:
            H, inliers = self.homography_fn(points_ref, points_reg,
                                            seed=self.rng_seed, threshold=self.ransac_threshold)
        metrics.homography_time = timer.elapsed_seconds

        inliers = np.asarray(inliers, dtype=bool).ravel()
        metrics.num_inliers = int(inliers.sum())
        state["H"] = H
        state["points"] = (points_ref, points_reg, inliers)
        return StageOutcome.success()

    def _check_homography(self, state: Dict) -> StageOutcome:
        H = state["H"]
        if H is None or np.size(H) == 0 or not np.all(np.isfinite(H)):
            return StageOutcome.failure("Homography computation failed")
        return StageOutcome.success()

    def _warp(self, metrics: StitchingMetrics, state: Dict, config: DetectorConfig,
              output_dir: Optional[Union[str, Path]]) -> StageOutcome:
        H = state["H"]
        points_ref, points_reg, inliers = state["points"]
        if len(inliers) == len(points_ref):
            metrics.reprojection_error = reprojection_error(points_ref, points_reg, H, inliers)

        with Timer() as timer:
            # H maps reference -> registered, so the registered image stays fixed
            mosaic = self.warp_fn(state["registered"], state["reference"], H)
        metrics.warping_time = timer.elapsed_seconds

        if output_dir is not None and mosaic is not None:
            os.makedirs(output_dir, exist_ok=True)
            path = os.path.join(str(output_dir), f"{metrics.dataset_name}_{config.name}_stitched.jpg")
            cv2.imwrite(path, mosaic)
            logger.info("Saved mosaic to %s", path)
        return StageOutcome.success()

    @staticmethod
    def _matched_points(state: Dict) -> Tuple[np.ndarray, np.ndarray]:
        coords_ref = keypoints_to_array(state["kp_ref"])
        coords_reg = keypoints_to_array(state["kp_reg"])
        query = np.array([m.query_idx for m in state["matches"]], dtype=int)
        train = np.array([m.train_idx for m in state["matches"]], dtype=int)
        return coords_ref[query], coords_reg[train]

    # Sweeps

    def run_all_detectors(self,
                          dataset_name: str,
                          reference: np.ndarray,
                          registered: np.ndarray,
                          configs: Sequence[DetectorConfig],
                          window_sizes: Union[WindowSizeSet, str] = "",
                          output_dir: Optional[Union[str, Path]] = None) -> List[StitchingMetrics]:
        """
        Run every detector on one image pair

        The reference algorithm runs first and its homography is handed to
        the other runs as their baseline. When it is absent or fails, the
        other runs carry no baseline.

        Returns:
            One finalized StitchingMetrics per detector, reference first
        """
        ordered = sorted(configs, key=lambda c: c.name != self.reference_algorithm)

        results = []
        baseline = None
        for config in ordered:
            logger.info("Running %s on %s", config.name, dataset_name)
            metrics = self.run_single_benchmark(dataset_name, reference, registered, config,
                                                window_sizes=window_sizes,
                                                baseline_homography=baseline,
                                                output_dir=output_dir)
            if config.name == self.reference_algorithm and metrics.stitching_success:
                baseline = metrics.homography
                metrics.baseline_homography = baseline
            results.append(metrics)
        return results

    def run_on_directory(self,
                         image_dir: Union[str, Path],
                         image_sets: Optional[Sequence[str]] = None,
                         detector_names: Optional[Sequence[str]] = None,
                         output_dir: Optional[Union[str, Path]] = None,
                         window_size_table: Optional[Dict] = None,
                         detector_options: Optional[Dict] = None,
                         reference_name: str = "reference.jpg",
                         registered_name: str = "registered.jpg") -> List[StitchingMetrics]:
        """
        Benchmark every image pair found under a directory

        Args:
            image_dir: Directory with one sub-directory per image pair
            image_sets: Only run these pairs (None runs all)
            detector_names: Only run these detectors (None runs all)
            output_dir: Directory for stitched mosaics
            window_size_table: Window sizes per size category (defaults when None)
            detector_options: Extra build_detectors() arguments
            reference_name: File name of the reference image in each pair
            registered_name: File name of the registered image in each pair

        Returns:
            Metrics of every run, pair by pair
        """
        dataset = ImagePairDataset(image_dir, image_sets=image_sets,
                                   reference_name=reference_name,
                                   registered_name=registered_name)
        detector_options = dict(detector_options or {})

        results = []
        for name in dataset.names:
            pair = dataset.load(name)
            if pair is None:
                logger.warning("Skipping image set %s: images could not be read", name)
                continue

            h, w = pair.reference.shape[:2]
            window_sizes = select_window_sizes(w, h, window_size_table)
            logger.info("Image set %s: %dx%d (%s), window sizes %s",
                        name, w, h, get_image_size_category(w, h), window_sizes)

            configs = build_detectors(window_sizes, names=detector_names, **detector_options)
            results.extend(self.run_all_detectors(name, pair.reference, pair.registered, configs,
                                                  window_sizes=window_sizes, output_dir=output_dir))
        return results
