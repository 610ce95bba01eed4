import copy
import importlib.util
import logging
import os
from typing import Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = {
    "detector": {
        "linear_noise_alpha": 1e-6,
        "uniqueness_filter": False,
        "max_keypoints": None,
    },

    # Interrogation window sizes per image size category
    "window_sizes": {
        "small": [16, 32, 64],
        "medium": [16, 32, 64, 128],
        "large": [16, 32, 64, 128, 256],
    },

    "descriptor": {
        "spatial_bins": 4,
        "clip_ratio": 0.2,
    },

    "matching": {
        "matcher_type": "brute_force",  # or "flann"
        "max_keypoints": None,  # None uses the matcher's own capacity
    },

    "homography": {
        "ransac_threshold": 3.0,  # pixels
        "rng_seed": 12345,
    },

    "benchmark": {
        "reference_algorithm": "SIFT",
        "detectors": None,  # None runs every available detector
        "reference_image": "reference.jpg",
        "registered_image": "registered.jpg",
    },

    "window_suggestion": {
        "num_peaks": 2,
        "suppress_radius": 6,
        "dc_radius": 4,
    },
}


def merge_config(base: Dict, override: Dict) -> Dict:
    """Recursively merge override into a copy of base"""
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def load_config(path: Optional[str] = None) -> Dict:
    """
    Load a Python configuration file defining a module-level `config` dict

    Args:
        path: Configuration file; None returns the defaults

    Returns:
        DEFAULT_CONFIG deep-merged with the file's config
    """
    if path is None:
        return copy.deepcopy(DEFAULT_CONFIG)

    if not os.path.exists(path):
        raise FileNotFoundError(f"Configuration file not found: {path}")

    spec = importlib.util.spec_from_file_location("config", path)
    config_module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(config_module)

    config = getattr(config_module, "config", None)
    if not isinstance(config, dict):
        raise ValueError(f"{path} does not define a `config` dict")

    logger.info("Loaded configuration from %s", path)
    return merge_config(DEFAULT_CONFIG, config)


def runner_options(config: Dict) -> Dict:
    """BenchmarkRunner arguments from a configuration"""
    return {
        "ransac_threshold": config["homography"]["ransac_threshold"],
        "rng_seed": config["homography"]["rng_seed"],
        "max_keypoints": config["matching"]["max_keypoints"],
        "reference_algorithm": config["benchmark"]["reference_algorithm"],
    }


def detector_options(config: Dict) -> Dict:
    """build_detectors() keyword arguments from a configuration"""
    detector = config["detector"]
    return {
        "linear_noise_alpha": detector["linear_noise_alpha"],
        "uniqueness_filter": detector["uniqueness_filter"],
        "max_keypoints": detector["max_keypoints"],
        "matcher_type": config["matching"]["matcher_type"],
        "descriptor_options": dict(config["descriptor"]),
    }
