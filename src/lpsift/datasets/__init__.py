from .image_pairs import ImagePair, ImagePairDataset
