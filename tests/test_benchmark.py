import pytest
import numpy as np
import cv2
import sys
import os

import matplotlib
matplotlib.use('Agg')

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from lpsift.models.lpsift import Feature2D
from lpsift.models.components.keypoints import Keypoint
from lpsift.models.components.window_sizes import ImageSizeCategory, WindowSizeSet
from lpsift.benchmark.detectors import DETECTOR_NAMES, DetectorConfig, build_detectors
from lpsift.benchmark.geometry import (MAX_KEYPOINTS_BF, Match, MatcherType, fit_robust_homography,
                                       match_nearest_neighbor, matcher_capacity, reprojection_error,
                                       warp_and_blend)
from lpsift.benchmark.metrics import Stage, StitchingMetrics, format_homography, format_time
from lpsift.benchmark.reporter import (COLUMNS, SUMMARY_WIDTH, metrics_to_frame, print_summary_table,
                                       summarize, write_csv)
from lpsift.benchmark.runner import BenchmarkRunner
from lpsift.datasets.image_pairs import ImagePairDataset
from lpsift.utils.config import DEFAULT_CONFIG, detector_options, load_config, runner_options
from lpsift.utils.visualization import LPSIFTVisualizer


def make_texture(height, width, seed=42):
    """Smooth random texture with plenty of distinct extrema"""
    rng = np.random.RandomState(seed)
    texture = cv2.GaussianBlur(rng.rand(height, width).astype(np.float32), (0, 0), 2.0)
    texture = (texture - texture.min()) / (texture.max() - texture.min()) * 255
    return texture.astype(np.uint8)


def make_pair(height, width, dx, dy, seed=42):
    """Two overlapping crops of one scene; the registered crop starts at (dx, dy)"""
    scene = make_texture(height + dy, width + dx, seed)
    return scene[:height, :width].copy(), scene[dy:dy + height, dx:dx + width].copy()


class FakeFeature2D(Feature2D):
    """Feature algorithm returning canned keypoints and descriptors"""

    def __init__(self, name="FAKE", num_keypoints=10, descriptors=None):
        self.name = name
        self.num_keypoints = num_keypoints
        self.descriptors = descriptors
        self.compute_calls = 0

    @property
    def norm(self):
        return cv2.NORM_L2

    def detect(self, image):
        return [Keypoint(x=float(i), y=float(i), size=16.0) for i in range(self.num_keypoints)]

    def compute(self, image, keypoints):
        self.compute_calls += 1
        if self.descriptors is not None:
            return keypoints, self.descriptors
        return keypoints, np.eye(len(keypoints), 8, dtype=np.float32)


def fake_config(name="FAKE", **kwargs):
    detector = FakeFeature2D(name, **kwargs)
    return DetectorConfig(name=name, detector=detector, norm=detector.norm)


def identity_matches(desc_a, desc_b, norm, matcher_type):
    return [Match(i, i, 0.0) for i in range(min(len(desc_a), len(desc_b)))]


def identity_homography(points_a, points_b, seed, threshold):
    return np.eye(3), np.ones(len(points_a), dtype=bool)


def passthrough_warp(base, moving, H):
    return base


@pytest.fixture
def image():
    return make_texture(64, 64)


@pytest.fixture
def fake_runner():
    return BenchmarkRunner(match_fn=identity_matches,
                           homography_fn=identity_homography,
                           warp_fn=passthrough_warp)


class TestBenchmarkRunner:
    """Test cases for the staged benchmark runner"""

    def test_success(self, fake_runner, image):
        metrics = fake_runner.run_single_benchmark("pair", image, image, fake_config(), "16,32")

        assert metrics.stitching_success
        assert metrics.stage is Stage.SUCCESS
        assert metrics.failure_reason == ""
        assert metrics.num_matches == 10
        assert metrics.num_inliers == 10
        assert np.array_equal(metrics.homography, np.eye(3))
        assert metrics.window_sizes == "16,32"
        assert metrics.reference_resolution == "64x64"
        assert metrics.size_category is ImageSizeCategory.SMALL
        assert metrics.total_stitching_time >= metrics.matching_time

    def test_empty_keypoints(self, fake_runner, image):
        config = fake_config(num_keypoints=0)
        metrics = fake_runner.run_single_benchmark("pair", image, image, config)

        assert not metrics.stitching_success
        assert metrics.failure_reason == "Empty keypoints"
        assert metrics.stage is Stage.CHECK_KEYPOINTS
        assert config.detector.compute_calls == 0

    def test_too_many_keypoints(self, image):
        runner = BenchmarkRunner(match_fn=identity_matches, max_keypoints=5)
        config = fake_config(num_keypoints=10)

        metrics = runner.run_single_benchmark("pair", image, image, config)

        assert metrics.failure_reason == "Too many keypoints (ref=10, reg=10, limit=5)"
        assert metrics.stage is Stage.CHECK_KEYPOINTS
        assert config.detector.compute_calls == 0
        assert metrics.descriptor_time_reference == 0.0

        row = metrics_to_frame([metrics]).iloc[0]
        assert row["Detected Keypoints (Reference)"] == 10
        assert row["Detected Keypoints (Registered)"] == 10
        assert row["Keypoints (Reference)"] == 0

    def test_brute_force_capacity(self):
        assert matcher_capacity(MatcherType.BRUTE_FORCE) == MAX_KEYPOINTS_BF == 50000
        assert matcher_capacity("flann") is None

    def test_empty_descriptors(self, fake_runner, image):
        config = fake_config(descriptors=np.empty((0, 8), dtype=np.float32))
        metrics = fake_runner.run_single_benchmark("pair", image, image, config)

        assert metrics.failure_reason == "Empty descriptors"
        assert metrics.stage is Stage.CHECK_DESCRIPTORS
        assert metrics.matching_time == 0.0

    def test_insufficient_matches(self, image):
        runner = BenchmarkRunner(match_fn=lambda a, b, norm, kind: [Match(i, i, 0.0) for i in range(3)],
                                 homography_fn=identity_homography,
                                 warp_fn=passthrough_warp)

        metrics = runner.run_single_benchmark("pair", image, image, fake_config())

        assert metrics.failure_reason == "Insufficient matches (<4)"
        assert metrics.stage is Stage.CHECK_MATCH_COUNT
        assert metrics.num_matches == 3
        assert metrics.homography_time == 0.0
        assert metrics.warping_time == 0.0
        assert metrics.homography is None

    def test_homography_failed(self, image):
        runner = BenchmarkRunner(match_fn=identity_matches,
                                 homography_fn=lambda a, b, seed, threshold: (None, np.zeros(len(a), dtype=bool)),
                                 warp_fn=passthrough_warp)

        metrics = runner.run_single_benchmark("pair", image, image, fake_config())

        assert metrics.failure_reason == "Homography computation failed"
        assert metrics.stage is Stage.CHECK_HOMOGRAPHY
        assert metrics.warping_time == 0.0

    def test_non_finite_homography(self, image):
        H = np.eye(3)
        H[0, 2] = np.nan
        runner = BenchmarkRunner(match_fn=identity_matches,
                                 homography_fn=lambda a, b, seed, threshold: (H, np.ones(len(a), dtype=bool)),
                                 warp_fn=passthrough_warp)

        metrics = runner.run_single_benchmark("pair", image, image, fake_config())
        assert metrics.failure_reason == "Homography computation failed"

    def test_collaborator_exception(self, image):
        def broken_matcher(desc_a, desc_b, norm, matcher_type):
            raise RuntimeError("matcher exploded")

        runner = BenchmarkRunner(match_fn=broken_matcher)
        metrics = runner.run_single_benchmark("pair", image, image, fake_config())

        assert not metrics.stitching_success
        assert metrics.failure_reason == "Exception: matcher exploded"
        assert metrics.stage is Stage.MATCH
        assert metrics.finalized

    def test_seed_and_threshold_forwarded(self, image):
        seen = {}

        def recording_homography(points_a, points_b, seed, threshold):
            seen.update(seed=seed, threshold=threshold)
            return np.eye(3), np.ones(len(points_a), dtype=bool)

        runner = BenchmarkRunner(match_fn=identity_matches, homography_fn=recording_homography,
                                 warp_fn=passthrough_warp, ransac_threshold=2.5, rng_seed=7)
        runner.run_single_benchmark("pair", image, image, fake_config())

        assert seen == {"seed": 7, "threshold": 2.5}

    def test_mosaic_written(self, fake_runner, image, tmp_path):
        fake_runner.run_single_benchmark("pair", image, image, fake_config(), output_dir=tmp_path)
        assert (tmp_path / "pair_FAKE_stitched.jpg").exists()

    def test_metrics_finalized_once(self):
        metrics = StitchingMetrics(dataset_name="pair", algorithm_name="FAKE")
        metrics.finish(1.0, Stage.SUCCESS)
        with pytest.raises(RuntimeError):
            metrics.finish(2.0, Stage.MATCH, "again")


class TestBaselineHomography:
    """Test cases for the reference algorithm baseline hand-off"""

    def test_reference_runs_first(self, fake_runner, image):
        configs = [fake_config("LP-FAKE"), fake_config("SIFT")]
        results = fake_runner.run_all_detectors("pair", image, image, configs)

        assert [m.algorithm_name for m in results] == ["SIFT", "LP-FAKE"]
        assert np.array_equal(results[0].baseline_homography, results[0].homography)
        assert np.array_equal(results[1].baseline_homography, results[0].homography)
        assert np.allclose(results[1].homography_delta, np.zeros((3, 3)))

    def test_failed_reference_gives_no_baseline(self, fake_runner, image):
        configs = [fake_config("SIFT", num_keypoints=0), fake_config("LP-FAKE")]
        results = fake_runner.run_all_detectors("pair", image, image, configs)

        assert not results[0].stitching_success
        assert results[1].stitching_success
        assert results[1].baseline_homography is None
        assert results[1].homography_delta is None

    def test_missing_reference_gives_no_baseline(self, fake_runner, image):
        results = fake_runner.run_all_detectors("pair", image, image, [fake_config("LP-FAKE")])
        assert results[0].baseline_homography is None


class TestStitchingScenario:
    """End-to-end runs on overlapping synthetic images"""

    @pytest.mark.parametrize("name", ["LP-SIFT", "LP-DXDY"])
    def test_overlapping_pair(self, name):
        reference, registered = make_pair(600, 800, 64, 64)
        window_sizes = WindowSizeSet((16, 32, 64))
        config = build_detectors(window_sizes, names=[name])[0]

        metrics = BenchmarkRunner().run_single_benchmark("synthetic", reference, registered,
                                                         config, window_sizes)

        assert metrics.stitching_success, metrics.failure_reason
        # one match per reference descriptor; registered neighbours may repeat
        assert metrics.num_inliers <= metrics.num_matches <= metrics.num_keypoints_reference
        assert metrics.num_inliers >= 4
        assert metrics.homography[0, 2] == pytest.approx(-64, abs=1.0)
        assert metrics.homography[1, 2] == pytest.approx(-64, abs=1.0)
        assert metrics.reprojection_error < 3.0
        assert metrics.size_category is ImageSizeCategory.SMALL

    def test_run_on_directory(self, tmp_path):
        for name, seed in (("alpha", 1), ("beta", 2)):
            reference, registered = make_pair(160, 200, 32, 32, seed)
            os.makedirs(tmp_path / name)
            cv2.imwrite(str(tmp_path / name / "reference.jpg"), reference)
            cv2.imwrite(str(tmp_path / name / "registered.jpg"), registered)
        os.makedirs(tmp_path / "incomplete")

        records = BenchmarkRunner().run_on_directory(tmp_path, detector_names=["LP-DXDY"])

        assert [m.dataset_name for m in records] == ["alpha", "beta"]
        assert all(m.algorithm_name == "LP-DXDY" for m in records)
        assert all(m.window_sizes == "16,32,64" for m in records)
        assert all(m.finalized for m in records)

    def test_run_on_directory_filters_sets(self, tmp_path):
        reference, registered = make_pair(160, 200, 32, 32)
        for name in ("alpha", "beta"):
            os.makedirs(tmp_path / name)
            cv2.imwrite(str(tmp_path / name / "reference.jpg"), reference)
            cv2.imwrite(str(tmp_path / name / "registered.jpg"), registered)

        records = BenchmarkRunner().run_on_directory(tmp_path, image_sets=["beta"],
                                                     detector_names=["LP-DXDY"])
        assert [m.dataset_name for m in records] == ["beta"]


class TestDetectorRegistry:
    """Test cases for the detector registry"""

    def test_order_follows_registry(self):
        configs = build_detectors((16, 32), names=["LP-SIFT", "sift"])
        assert [c.name for c in configs] == ["SIFT", "LP-SIFT"]
        assert configs[0].norm == cv2.NORM_L2

    def test_all_detectors(self):
        configs = build_detectors((16, 32))
        names = [c.name for c in configs]

        assert set(names) <= set(DETECTOR_NAMES)
        assert set(DETECTOR_NAMES) - set(names) <= {"SURF"}
        norms = {c.name: c.norm for c in configs}
        assert norms["ORB"] == cv2.NORM_HAMMING
        assert norms["LP-ORB"] == cv2.NORM_HAMMING
        assert norms["LP-DXDY"] == cv2.NORM_L2

    def test_unknown_detector(self):
        with pytest.raises(ValueError):
            build_detectors((16, 32), names=["FAST"])

    def test_invalid_window_sizes(self):
        with pytest.raises(ValueError):
            build_detectors((16, 16))


class TestGeometry:
    """Test cases for matching, homography fitting and warping"""

    def test_nearest_neighbor(self):
        rng = np.random.RandomState(0)
        desc = rng.rand(20, 32).astype(np.float32)

        matches = match_nearest_neighbor(desc, desc, cv2.NORM_L2)
        assert [(m.query_idx, m.train_idx) for m in matches] == [(i, i) for i in range(20)]

        flann = match_nearest_neighbor(desc, desc, cv2.NORM_L2, MatcherType.FLANN)
        assert len(flann) == 20

        assert match_nearest_neighbor(desc[:0], desc, cv2.NORM_L2) == []

    def test_binary_descriptors(self):
        rng = np.random.RandomState(0)
        desc = rng.randint(0, 256, (15, 32)).astype(np.uint8)

        matches = match_nearest_neighbor(desc, desc, cv2.NORM_HAMMING)
        assert all(m.distance == 0 for m in matches)

    def test_fit_translation(self):
        rng = np.random.RandomState(0)
        points_a = rng.rand(50, 2) * 500
        points_b = points_a + [12.0, -7.0]

        H, inliers = fit_robust_homography(points_a, points_b)

        assert H.shape == (3, 3)
        assert inliers.all()
        assert H[0, 2] == pytest.approx(12.0, abs=1e-3)
        assert H[1, 2] == pytest.approx(-7.0, abs=1e-3)
        assert reprojection_error(points_a, points_b, H, inliers) < 1e-3

    def test_fit_needs_four_points(self):
        H, inliers = fit_robust_homography(np.zeros((3, 2)), np.zeros((3, 2)))
        assert H is None
        assert len(inliers) == 3 and not inliers.any()

    def test_fit_is_deterministic(self):
        rng = np.random.RandomState(1)
        points_a = rng.rand(60, 2) * 400
        points_b = points_a + [5.0, 5.0]
        points_b[:15] = rng.rand(15, 2) * 400

        H1, mask1 = fit_robust_homography(points_a, points_b)
        H2, mask2 = fit_robust_homography(points_a, points_b)
        assert np.array_equal(H1, H2)
        assert np.array_equal(mask1, mask2)

    def test_warp_and_blend(self):
        base = np.full((100, 100), 50, dtype=np.uint8)
        moving = np.full((100, 100), 200, dtype=np.uint8)
        H = np.array([[1, 0, -20], [0, 1, -10], [0, 0, 1]], dtype=np.float64)

        mosaic = warp_and_blend(base, moving, H)

        assert mosaic.shape == (111, 121)
        assert mosaic[10 + 50, 20 + 50] == 50
        assert mosaic[5, 5] == 200

    def test_warp_rejects_channel_mismatch(self):
        with pytest.raises(ValueError):
            warp_and_blend(np.zeros((10, 10), np.uint8), np.zeros((10, 10, 3), np.uint8), np.eye(3))


def make_record(name, algorithm, success, total, H=None, baseline=None):
    metrics = StitchingMetrics(dataset_name=name, algorithm_name=algorithm,
                               reference_width=800, reference_height=600,
                               registered_width=800, registered_height=600,
                               window_sizes="16,32,64", num_keypoints_reference=100,
                               num_keypoints_registered=90, num_matches=80, num_inliers=60,
                               matching_time=0.123456, homography=H, baseline_homography=baseline)
    if success:
        return metrics.finish(total, Stage.SUCCESS)
    return metrics.finish(total, Stage.CHECK_MATCH_COUNT, "Insufficient matches (<4)")


@pytest.fixture
def records():
    H = np.array([[1.0, 0.0, -64.0], [0.0, 1.0, -64.0], [0.0, 0.0, 1.0]])
    return [
        make_record("pair1", "SIFT", True, 2.0, H, H),
        make_record("pair1", "LP-SIFT", True, 1.0, H + 0.5, H),
        make_record("pair2", "SIFT", True, 4.0, H, H),
        make_record("pair2", "LP-SIFT", False, 0.5, None, H),
    ]


class TestReporter:
    """Test cases for the metrics reporter"""

    def test_format_helpers(self):
        assert format_time(1.234) == "1.23"
        assert format_homography(None) == ""
        assert format_homography(np.eye(3)) == \
            "[[1.0000, 0.0000, 0.0000], [0.0000, 1.0000, 0.0000], [0.0000, 0.0000, 1.0000]]"

    def test_frame(self, records):
        frame = metrics_to_frame(records)

        assert list(frame.columns) == COLUMNS
        assert len(frame) == 4
        assert frame.loc[0, "Matching Time (s)"] == "0.12"
        assert frame.loc[0, "Reference Resolution"] == "800x600"
        assert frame.loc[0, "Size Category"] == "Small"
        assert frame.loc[1, "Homography Delta"].startswith("[[0.5000, 0.5000, 0.5000]")
        assert frame.loc[3, "Homography"] == ""
        assert frame.loc[3, "Success"] == "No"
        assert frame.loc[3, "Failure Reason"] == "Insufficient matches (<4)"

    def test_frame_does_not_mutate(self, records):
        before = [(m.stitching_success, m.failure_reason, m.total_stitching_time) for m in records]
        metrics_to_frame(records)
        summarize(records)
        assert before == [(m.stitching_success, m.failure_reason, m.total_stitching_time) for m in records]

    def test_write_csv(self, records, tmp_path):
        path = tmp_path / "out" / "results.csv"
        write_csv(records, path)

        lines = path.read_text().splitlines()
        assert lines[0].startswith('"Dataset","Size Category","Algorithm"')
        assert len(lines) == 5
        assert '"Insufficient matches (<4)"' in lines[4]

    def test_summarize(self, records):
        summary = summarize(records)

        assert summary.loc["SIFT", "Runs"] == 2
        assert summary.loc["SIFT", "Success Rate (%)"] == pytest.approx(100.0)
        assert summary.loc["SIFT", "Avg Time (s)"] == pytest.approx(3.0)
        assert summary.loc["SIFT", "Min Time (s)"] == pytest.approx(2.0)
        assert summary.loc["SIFT", "Max Time (s)"] == pytest.approx(4.0)
        assert summary.loc["LP-SIFT", "Success Rate (%)"] == pytest.approx(50.0)
        assert summary.loc["LP-SIFT", "Avg Time (s)"] == pytest.approx(1.0)

    def test_summary_without_successes(self):
        summary = summarize([make_record("pair", "ORB", False, 1.0)])
        assert summary.loc["ORB", "Successes"] == 0
        assert np.isnan(summary.loc["ORB", "Avg Time (s)"])

    def test_print_summary_table(self, records, capsys):
        print_summary_table(records + [make_record("pair3", "ORB", False, 1.0)])
        out = capsys.readouterr().out

        assert "BENCHMARK RESULTS" in out
        assert "Failed: Insufficient matches (<4)" in out
        assert " x" in out
        assert "LP-SIFT" in out
        assert "Failed" in out.splitlines()[-2]

    def test_summary_rows_fit_width(self, capsys):
        reason = "Too many keypoints (ref=123456, reg=654321, limit=50000)"
        record = StitchingMetrics(dataset_name="a_rather_long_dataset_name", algorithm_name="LP-DXDY")
        print_summary_table([record.finish(1.0, Stage.CHECK_KEYPOINTS, reason)])
        out = capsys.readouterr().out

        assert all(len(line) <= SUMMARY_WIDTH for line in out.splitlines())


class TestConfig:
    """Test cases for configuration loading"""

    def test_defaults(self):
        config = load_config()
        assert config == DEFAULT_CONFIG
        assert config is not DEFAULT_CONFIG

    def test_merge(self, tmp_path):
        path = tmp_path / "custom.py"
        path.write_text('config = {"detector": {"uniqueness_filter": True}, "matching": {"matcher_type": "flann"}}\n')

        config = load_config(str(path))

        assert config["detector"]["uniqueness_filter"] is True
        assert config["detector"]["linear_noise_alpha"] == 1e-6
        assert config["matching"]["matcher_type"] == "flann"
        assert DEFAULT_CONFIG["matching"]["matcher_type"] == "brute_force"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "missing.py"))

    def test_file_without_config(self, tmp_path):
        path = tmp_path / "empty.py"
        path.write_text("settings = {}\n")
        with pytest.raises(ValueError):
            load_config(str(path))

    def test_shipped_config(self):
        path = os.path.join(os.path.dirname(__file__), '..', 'configs', 'lpsift', 'benchmark.py')
        config = load_config(path)

        runner = BenchmarkRunner(**runner_options(config))
        assert runner.rng_seed == 12345
        assert runner.reference_algorithm == "SIFT"

        configs = build_detectors((16, 32), names=["LP-DXDY"], **detector_options(config))
        assert configs[0].matcher_type is MatcherType.BRUTE_FORCE


class TestImagePairDataset:
    """Test cases for image pair discovery"""

    def test_discovery(self, tmp_path, image):
        for name in ("b_set", "a_set"):
            os.makedirs(tmp_path / name)
            cv2.imwrite(str(tmp_path / name / "reference.jpg"), image)
            cv2.imwrite(str(tmp_path / name / "registered.jpg"), image)
        os.makedirs(tmp_path / "c_set")
        (tmp_path / "notes.txt").write_text("not an image set")

        dataset = ImagePairDataset(str(tmp_path))

        assert dataset.names == ["a_set", "b_set", "c_set"]
        pair = dataset.load("a_set")
        assert pair.reference.shape == (64, 64, 3)
        assert dataset.load("c_set") is None
        with pytest.raises(ValueError):
            dataset[2]

    def test_missing_directory(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ImagePairDataset(str(tmp_path / "missing"))

    def test_transform(self, tmp_path, image):
        os.makedirs(tmp_path / "set")
        cv2.imwrite(str(tmp_path / "set" / "reference.jpg"), image)
        cv2.imwrite(str(tmp_path / "set" / "registered.jpg"), image)

        dataset = ImagePairDataset(str(tmp_path),
                                   transform=lambda pair: pair._replace(reference=pair.reference[:32]))
        assert dataset[0].reference.shape[0] == 32


class TestVisualizer:
    """Test cases for saving plots"""

    def test_plots_saved(self, tmp_path, records):
        reference, registered = make_pair(96, 128, 16, 16)
        keypoints = [Keypoint(10, 10, 16, window_index=0), Keypoint(40, 20, 32, window_index=1)]
        points = np.array([[10.0, 10.0], [40.0, 20.0]])

        LPSIFTVisualizer.plot_keypoints(reference, keypoints, (16, 32),
                                        save_path=str(tmp_path / "keypoints.png"))
        LPSIFTVisualizer.plot_matches(reference, registered, points, points - 16,
                                      np.array([True, False]), save_path=str(tmp_path / "matches.png"))
        LPSIFTVisualizer.plot_mosaic(reference, save_path=str(tmp_path / "mosaic.png"))
        LPSIFTVisualizer.plot_spectrum(np.random.rand(32, 32), np.array([[4, 5]]), [16],
                                       save_path=str(tmp_path / "spectrum.png"))
        LPSIFTVisualizer.plot_benchmark_summary(summarize(records),
                                                save_path=str(tmp_path / "summary.png"))

        for name in ("keypoints", "matches", "mosaic", "spectrum", "summary"):
            assert (tmp_path / f"{name}.png").exists()
