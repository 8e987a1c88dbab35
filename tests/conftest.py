"""
conftest.py
~~~~~~~~~~~

Shared fixtures: small toy datasets, IDX file writers and network factories.
"""

import gzip
import struct

import numpy as np
import pytest

from convlab.config import Hyperparameters
from convlab.neural_networks import DenseLayer, InputLayer, Network, SoftmaxLayer


def write_idx_labels(path, labels, magic=2049):
    """Write labels in IDX format, gzip-compressed when path ends in .gz."""
    payload = struct.pack('>ii', magic, len(labels)) + bytes(bytearray(labels))
    opener = gzip.open if str(path).endswith('.gz') else open
    with opener(path, 'wb') as f:
        f.write(payload)


def write_idx_images(path, images, magic=2051):
    """Write uint8 images of shape (N, rows, cols) in IDX format."""
    images = np.asarray(images, dtype=np.uint8)
    count, rows, cols = images.shape
    payload = struct.pack('>iiii', magic, count, rows, cols) + images.tobytes()
    opener = gzip.open if str(path).endswith('.gz') else open
    with opener(path, 'wb') as f:
        f.write(payload)


def make_toy_images(n, width=4, height=4, seed=0):
    """
    Two separable classes: class 0 is bright in the left half of the image,
    class 1 in the right half.
    """
    rng = np.random.default_rng(seed)
    labels = np.arange(n) % 2
    images = rng.uniform(0.0, 0.1, size=(n, height, width)).astype(np.float32)
    half = width // 2
    images[labels == 0, :, :half] += 0.9
    images[labels == 1, :, half:] += 0.9
    return images.reshape(n, -1), labels


@pytest.fixture
def toy_data():
    """40 separable 4x4 images with labels 0 and 1."""
    return make_toy_images(40)


@pytest.fixture
def mnist_dir(tmp_path):
    """
    Directory with MNIST-named IDX files: 30 training and 10 test images of
    8x6 (width x height) pixels, gzip-compressed training files.
    """
    rng = np.random.default_rng(1)
    for prefix, count, suffix in (('train', 30, '.gz'), ('t10k', 10, '')):
        images = rng.integers(0, 256, size=(count, 6, 8), dtype=np.uint8)
        labels = np.arange(count) % 10
        write_idx_images(tmp_path / f"{prefix}-images-idx3-ubyte{suffix}", images)
        write_idx_labels(tmp_path / f"{prefix}-labels-idx1-ubyte{suffix}", labels)
    return tmp_path


@pytest.fixture
def hyperparameters():
    return Hyperparameters(learning_rate=0.5, l2_lambda=0.0, minibatch_size=5,
                           epochs=1, seed=3)


@pytest.fixture
def dense_network(hyperparameters):
    """4x4 input -> dense 8 -> softmax 2, serial execution."""
    network = Network((4, 4), [DenseLayer(8, 16), SoftmaxLayer(2, 8)],
                      hyperparameters, n_jobs=1)
    yield network
    network.close()


@pytest.fixture
def make_input():
    """Factory for a standalone input layer holding one image in slot 0."""
    def _make(image, width, height, capacity=1):
        layer = InputLayer(width, height)
        layer.allocate(capacity)
        layer.load_sample(np.asarray(image, dtype=np.float32).ravel(), 0)
        return layer
    return _make
