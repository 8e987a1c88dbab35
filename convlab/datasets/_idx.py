"""
Reader for the IDX files of the MNIST handwritten digit database.

Labels file: magic 2049, item count, then one unsigned byte per label.
Images file: magic 2051, image count, rows, columns, then row-major
unsigned byte pixels. All header fields are big-endian int32.
"""
import gzip
import logging
import os
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from ..exceptions import DatasetError

logger = logging.getLogger(__name__)

LABELS_MAGIC = 2049
IMAGES_MAGIC = 2051

MNIST_FILES = {
    'train_images': 'train-images-idx3-ubyte',
    'train_labels': 'train-labels-idx1-ubyte',
    'test_images': 't10k-images-idx3-ubyte',
    'test_labels': 't10k-labels-idx1-ubyte',
}


@dataclass
class Dataset:
    """
    Images of shape (N, width * height) in [0, 1] paired with int labels.

    :param training: (images, labels) used for SGD
    :param validation: (images, labels) held out from the training files,
        None when no validation split was requested
    :param test: (images, labels) from the test files
    :param image_shape: (width, height) of every image
    """
    training: Tuple[np.ndarray, np.ndarray]
    validation: Optional[Tuple[np.ndarray, np.ndarray]]
    test: Tuple[np.ndarray, np.ndarray]
    image_shape: Tuple[int, int]


def _read_bytes(path):
    opener = gzip.open if str(path).endswith('.gz') else open
    try:
        with opener(path, 'rb') as f:
            return f.read()
    except OSError as e:
        raise DatasetError(f"Cannot read {path}: {e}") from e


def _read_header(data, path, magic, n_fields):
    size = 4 * (n_fields + 1)
    if len(data) < size:
        raise DatasetError(f"{path} is too short for an IDX header")
    header = np.frombuffer(data, dtype='>i4', count=n_fields + 1)
    if header[0] != magic:
        raise DatasetError(
            f"{path} has magic number {header[0]}, expected {magic}")
    return [int(v) for v in header[1:]], size


def read_idx_labels(path, limit=None):
    """
    Read an IDX labels file.

    Args:
        path (str): Plain or gzip-compressed file
        limit (int, optional): Read at most this many labels

    Returns:
        ndarray: Labels as int64
    """
    data = _read_bytes(path)
    (count,), offset = _read_header(data, path, LABELS_MAGIC, 1)
    if limit is not None:
        count = min(count, limit)
    if len(data) < offset + count:
        raise DatasetError(f"{path} is truncated: expected {count} labels")
    labels = np.frombuffer(data, dtype=np.uint8, count=count, offset=offset)
    return labels.astype(np.int64)


def read_idx_images(path, limit=None):
    """
    Read an IDX images file.

    Args:
        path (str): Plain or gzip-compressed file
        limit (int, optional): Read at most this many images

    Returns:
        tuple: (images of shape (N, rows * cols) as float32 in [0, 1],
        (width, height))
    """
    data = _read_bytes(path)
    (count, rows, cols), offset = _read_header(data, path, IMAGES_MAGIC, 3)
    if limit is not None:
        count = min(count, limit)
    n_pixels = rows * cols
    if len(data) < offset + count * n_pixels:
        raise DatasetError(f"{path} is truncated: expected {count} images")
    pixels = np.frombuffer(data, dtype=np.uint8, count=count * n_pixels,
                           offset=offset)
    images = pixels.reshape(count, n_pixels).astype(np.float32) / 255.0
    return images, (cols, rows)


def _find(directory, name):
    for candidate in (name, name + '.gz'):
        path = os.path.join(directory, candidate)
        if os.path.exists(path):
            return path
    raise DatasetError(f"Neither {name} nor {name}.gz found in {directory}")


def _read_pair(directory, images_name, labels_name, limit):
    images, image_shape = read_idx_images(_find(directory, images_name), limit)
    labels = read_idx_labels(_find(directory, labels_name), limit)
    if len(images) != len(labels):
        raise DatasetError(
            f"{len(images)} images but {len(labels)} labels in {directory}")
    return images, labels, image_shape


def load_mnist(directory, n_training=None, n_test=None, validation_size=0):
    """
    Load the MNIST training and test files from a directory.

    The validation split is taken from the tail of the (possibly truncated)
    training set.

    Args:
        directory (str): Directory holding the four IDX files
        n_training (int, optional): Read at most this many training samples,
            validation included
        n_test (int, optional): Read at most this many test samples
        validation_size (int): Samples moved from training to validation

    Returns:
        Dataset
    """
    train_images, train_labels, image_shape = _read_pair(
        directory, MNIST_FILES['train_images'], MNIST_FILES['train_labels'],
        n_training)
    test_images, test_labels, test_shape = _read_pair(
        directory, MNIST_FILES['test_images'], MNIST_FILES['test_labels'],
        n_test)
    if test_shape != image_shape:
        raise DatasetError(
            f"Training images are {image_shape}, test images {test_shape}")
    if not 0 <= validation_size < len(train_images):
        raise DatasetError(
            f"validation_size must be in [0, {len(train_images)}), "
            f"got {validation_size}")

    validation = None
    if validation_size:
        split = len(train_images) - validation_size
        validation = (train_images[split:], train_labels[split:])
        train_images, train_labels = train_images[:split], train_labels[:split]

    logger.info("Loaded %d training, %d validation and %d test images of %dx%d",
                len(train_images), validation_size, len(test_images),
                *image_shape)
    return Dataset(training=(train_images, train_labels),
                   validation=validation,
                   test=(test_images, test_labels),
                   image_shape=image_shape)
