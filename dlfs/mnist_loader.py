"""
mnist_loader.py
~~~~~~~~~~~~~~~

Loads MNIST from the compressed ``.npz`` layout and serves batches as
matrices for the network.

Images are flattened to 784 floats scaled into [0, 1]; labels are
encoded one-hot with width 10.
"""

import logging
import os
from typing import Optional, Tuple

import numpy as np

from dlfs.errors import ShapeError
from dlfs.matrix import Matrix

logger = logging.getLogger(__name__)

IMAGE_SIZE = 28 * 28
NUM_CLASSES = 10
DEFAULT_PATH = os.path.join('data', 'mnist.npz')


def one_hot(labels: np.ndarray, num_classes: int = NUM_CLASSES) -> np.ndarray:
    """
    Encode integer class labels as one-hot rows.

    Args:
        labels: 1-D array of class indices
        num_classes: Width of each one-hot row

    Returns:
        np.ndarray: Array of shape (len(labels), num_classes)
    """
    labels = np.asarray(labels, dtype=int)
    if labels.size and (labels.min() < 0 or labels.max() >= num_classes):
        raise ValueError(f"Labels must lie in [0, {num_classes})")
    encoded = np.zeros((labels.shape[0], num_classes))
    encoded[np.arange(labels.shape[0]), labels] = 1.0
    return encoded


class MnistDataset:
    """
    An in-memory set of ``(image, one-hot label)`` pairs.
    """

    def __init__(self, images: np.ndarray, labels: np.ndarray):
        """
        Args:
            images: Array of shape (n, 784) with values in [0, 1]
            labels: Either class indices of shape (n,) or one-hot rows
        """
        images = np.asarray(images, dtype=float)
        labels = np.asarray(labels)
        if images.ndim != 2:
            images = images.reshape(images.shape[0], -1)
        if labels.ndim == 1:
            labels = one_hot(labels)
        if images.shape[0] != labels.shape[0]:
            raise ShapeError(
                f"{images.shape[0]} images but {labels.shape[0]} labels"
            )
        self.images = images
        self.labels = labels.astype(float)

    def __len__(self) -> int:
        return self.images.shape[0]

    @property
    def image_size(self) -> int:
        return self.images.shape[1]

    @property
    def label_size(self) -> int:
        return self.labels.shape[1]

    def image(self, index: int) -> np.ndarray:
        return self.images[index]

    def label(self, index: int) -> np.ndarray:
        return self.labels[index]

    def sample_batch(
        self,
        batch_size: int,
        rng: Optional[np.random.Generator] = None
    ) -> Tuple[Matrix, Matrix]:
        """
        Draw ``batch_size`` examples uniformly with replacement.

        Returns:
            tuple: ``(x, t)`` matrices with one example per row
        """
        if len(self) == 0:
            raise ValueError("Cannot sample from an empty dataset")
        if rng is None:
            rng = np.random.default_rng()
        indices = rng.integers(0, len(self), size=batch_size)
        return (
            Matrix.from_numpy(self.images[indices]),
            Matrix.from_numpy(self.labels[indices]),
        )

    def as_matrices(self, limit: Optional[int] = None) -> Tuple[Matrix, Matrix]:
        """Return the first ``limit`` examples (all by default) as matrices."""
        end = len(self) if limit is None else min(limit, len(self))
        return (
            Matrix.from_numpy(self.images[:end]),
            Matrix.from_numpy(self.labels[:end]),
        )


def _normalize(images: np.ndarray) -> np.ndarray:
    images = images.reshape(images.shape[0], -1)
    if images.dtype == np.uint8:
        return images.astype(float) / 255.0
    return images.astype(float)


def load_data(
    path: Optional[str] = None
) -> Tuple[MnistDataset, MnistDataset, MnistDataset]:
    """
    Load the training, validation and test sets.

    Args:
        path: Location of ``mnist.npz``; falls back to the ``MNIST_PATH``
            environment variable, then ``data/mnist.npz``

    Returns:
        tuple: (training, validation, test) datasets

    Raises:
        FileNotFoundError: If the file does not exist
    """
    path = path or os.getenv('MNIST_PATH', DEFAULT_PATH)
    if not os.path.exists(path):
        raise FileNotFoundError(f"MNIST data not found at {path}")

    logger.info(f"Loading MNIST data from {path}")
    with np.load(path) as data:
        training = MnistDataset(_normalize(data['train_images']), data['train_labels'])
        validation = MnistDataset(_normalize(data['val_images']), data['val_labels'])
        test = MnistDataset(_normalize(data['test_images']), data['test_labels'])

    logger.info(
        f"Loaded {len(training)} training, {len(validation)} validation, "
        f"{len(test)} test images"
    )
    return training, validation, test
