import os
import logging
from typing import Callable, List, NamedTuple, Optional, Sequence

import numpy as np
import cv2

logger = logging.getLogger(__name__)


class ImagePair(NamedTuple):
    name: str
    reference: np.ndarray
    registered: np.ndarray
    reference_path: str
    registered_path: str


class ImagePairDataset:
    """
    Directory of overlapping image pairs

    Every sub-directory of data_dir is one image set holding a reference
    and a registered image, e.g.

        data_dir/
            campus/reference.jpg
            campus/registered.jpg
            harbor/reference.jpg
            harbor/registered.jpg
    """

    def __init__(self,
                 data_dir: str,
                 image_sets: Optional[Sequence[str]] = None,
                 reference_name: str = "reference.jpg",
                 registered_name: str = "registered.jpg",
                 transform: Optional[Callable[[ImagePair], ImagePair]] = None):
        """
        Initialize image pair dataset

        Args:
            data_dir: Directory containing one sub-directory per image set
            image_sets: Only keep these set names (None keeps all)
            reference_name: File name of the reference image
            registered_name: File name of the registered image
            transform: Optional transform applied to every loaded pair
        """
        if not os.path.isdir(data_dir):
            raise FileNotFoundError(f"Image directory does not exist: {data_dir}")

        self.data_dir = str(data_dir)
        self.reference_name = reference_name
        self.registered_name = registered_name
        self.transform = transform
        self.names = self._discover_image_sets(image_sets)

    def _discover_image_sets(self, image_sets: Optional[Sequence[str]]) -> List[str]:
        """Sorted sub-directories, filtered by name"""
        names = sorted(entry for entry in os.listdir(self.data_dir)
                       if os.path.isdir(os.path.join(self.data_dir, entry)))

        if image_sets:
            wanted = set(image_sets)
            missing = wanted.difference(names)
            if missing:
                logger.warning("Requested image sets not found: %s", ", ".join(sorted(missing)))
            names = [name for name in names if name in wanted]

        logger.info("Found %d image sets in %s", len(names), self.data_dir)
        return names

    def paths(self, name: str):
        folder = os.path.join(self.data_dir, name)
        return (os.path.join(folder, self.reference_name),
                os.path.join(folder, self.registered_name))

    def load(self, name: str) -> Optional[ImagePair]:
        """Load one image set, or None when either image is missing or unreadable"""
        reference_path, registered_path = self.paths(name)
        if not (os.path.isfile(reference_path) and os.path.isfile(registered_path)):
            logger.warning("Image set %s is missing %s or %s",
                           name, self.reference_name, self.registered_name)
            return None

        reference = cv2.imread(reference_path, cv2.IMREAD_COLOR)
        registered = cv2.imread(registered_path, cv2.IMREAD_COLOR)
        if reference is None or registered is None:
            logger.warning("Could not decode images of set %s", name)
            return None

        pair = ImagePair(name, reference, registered, reference_path, registered_path)
        if self.transform:
            pair = self.transform(pair)
        return pair

    def __len__(self):
        return len(self.names)

    def __getitem__(self, idx):
        pair = self.load(self.names[idx])
        if pair is None:
            raise ValueError(f"Could not load image set: {self.names[idx]}")
        return pair
