# Configuration for the LP-SIFT stitching benchmark

config = {
    "detector": {
        "linear_noise_alpha": 1e-6,  # ramp step that breaks intensity ties
        "uniqueness_filter": False,
        "max_keypoints": None,
    },

    "window_sizes": {
        "small": [16, 32, 64],             # < 1 MP
        "medium": [16, 32, 64, 128],       # 1 - 3 MP
        "large": [16, 32, 64, 128, 256],   # >= 3 MP
    },

    "descriptor": {
        "spatial_bins": 4,
        "clip_ratio": 0.2,
    },

    "matching": {
        "matcher_type": "brute_force",
        "max_keypoints": None,
    },

    "homography": {
        "ransac_threshold": 3.0,  # pixels
        "rng_seed": 12345,
    },

    "benchmark": {
        "reference_algorithm": "SIFT",
        "detectors": ["SIFT", "ORB", "BRISK", "SURF", "AKAZE", "LP-SIFT", "LP-ORB", "LP-DXDY"],
        "reference_image": "reference.jpg",
        "registered_image": "registered.jpg",
    },

    "window_suggestion": {
        "num_peaks": 2,
        "suppress_radius": 6,
        "dc_radius": 4,
    },
}
