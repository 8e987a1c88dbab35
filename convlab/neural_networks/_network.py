"""
Network orchestrator: assembles layers into a pipeline and trains it with
minibatch stochastic gradient descent.
"""
import logging
import time

import numpy as np
from tqdm import tqdm

from ..base import BaseClassifier
from ..config import Hyperparameters
from ..exceptions import TopologyError
from ..monitoring import MonitorRecord
from ._parallel import MinibatchExecutor
from ._units import DTYPE
from .layers import InputLayer, SoftmaxLayer
from .optimizers import get_optimizer

logger = logging.getLogger(__name__)


class Network(BaseClassifier):
    """
    Feed-forward image classifier built from an ordered list of layers.

    The network owns a dedicated input layer, the given layers and one
    random generator, seeded once, that drives weight initialization and
    the per-epoch shuffles. The last layer must be a SoftmaxLayer.
    """

    def __init__(self, input_shape, layers, hyperparameters=None, n_jobs=None,
                 verbose=False):
        """
        Args:
            input_shape (tuple): Image extents (width, height)
            layers (list): Layers in forward order, ending with a SoftmaxLayer
            hyperparameters (Hyperparameters, optional): Training settings
            n_jobs (int, optional): Worker threads per minibatch, defaults to
                the number of CPUs
            verbose (bool): Show progress bars and per-epoch summaries
        """
        if hyperparameters is None:
            hyperparameters = Hyperparameters()
        self.hyperparameters = hyperparameters.validate()
        width, height = input_shape
        self.input_shape = (int(width), int(height))
        self.layers = list(layers)
        self.n_jobs = n_jobs
        self.verbose = verbose

        self.rng_ = np.random.default_rng(self.hyperparameters.seed)
        self.input_layer_ = InputLayer(width, height, name='input')
        self.optimizer_ = get_optimizer(
            'sgd', lr=self.hyperparameters.learning_rate,
            lmbda=self.hyperparameters.l2_lambda)
        self.history_ = []
        self.n_epochs_ = 0
        self._executor = MinibatchExecutor(n_jobs)

        self._assemble()

    @property
    def capacity(self):
        """Number of minibatch slots every layer holds."""
        return self.hyperparameters.minibatch_size

    @property
    def output_layer_(self):
        return self.layers[-1]

    def _assemble(self):
        """Wire, allocate and initialize the layers in forward order."""
        if not self.layers:
            raise TopologyError("A network needs at least an output layer")
        if not isinstance(self.layers[-1], SoftmaxLayer):
            raise TopologyError(
                f"The last layer must be a SoftmaxLayer, got "
                f"{type(self.layers[-1]).__name__}")
        if len({id(layer) for layer in self.layers}) != len(self.layers):
            raise TopologyError("The same layer appears twice in the network")
        for layer in self.layers[:-1]:
            if isinstance(layer, (SoftmaxLayer, InputLayer)):
                raise TopologyError(
                    f"{type(layer).__name__} cannot be a hidden layer")

        self.input_layer_.allocate(self.capacity)
        predecessor = self.input_layer_
        for layer in self.layers:
            layer.set_predecessor(predecessor)
            if predecessor is not self.input_layer_:
                predecessor.set_successor(layer)
            predecessor = layer

        for layer in self.layers:
            layer.allocate(self.capacity)
            if layer.optimizer is None:
                layer.optimizer = self.optimizer_
            layer.initialize_weights(self.rng_)
            logger.debug("Assembled %r with %d units", layer, layer.unit_count())

    # Forward and backward passes

    def forward(self, mb):
        """Forward pass through all layers for slot ``mb``"""
        for layer in self.layers:
            layer.forward(mb)

    def backward(self, image, label, mb):
        """
        Run one sample through the network and backpropagate its error.

        Only slot ``mb`` of the unit state is written, parameters are only
        read.
        """
        self.input_layer_.load_sample(image, mb)
        self.forward(mb)
        output = self.output_layer_
        output.compute_output_error(label, mb)
        hidden = self.layers[:-1]
        if not hidden:
            return
        output.route_error_to_predecessor(mb)
        # The input layer takes no error, so the first hidden layer stops
        # after computing its own.
        for i in range(len(hidden) - 1, -1, -1):
            hidden[i].backward(mb)
            if i > 0:
                hidden[i].route_error_to_predecessor(mb)

    def update_minibatch(self, images, labels, total_training_set_size):
        """
        Backpropagate every sample of a minibatch, then update every layer once.

        Args:
            images (ndarray): Up to ``capacity`` images
            labels (ndarray): Their labels
            total_training_set_size (int): Size of the whole training set,
                used by the weight decay
        """
        n = len(images)
        if not 1 <= n <= self.capacity:
            raise ValueError(
                f"Minibatch of {n} samples does not fit {self.capacity} slots")
        if len(labels) != n:
            raise ValueError("images and labels must have the same length")

        self._executor.map_slots(
            lambda mb: self.backward(images[mb], labels[mb], mb), n)
        # Every slot has finished; parameters may change now.
        for layer in reversed(self.layers):
            layer.update_parameters(total_training_set_size, active_slots=n)

    # Training loop

    def shuffle(self, images, labels):
        """
        Apply the same random permutation to images and labels.

        The permutation comes from a fresh seed drawn from the network's
        generator.

        Returns:
            tuple: (shuffled images, shuffled labels, permutation)
        """
        seed = int(self.rng_.integers(2 ** 32))
        permutation = np.random.default_rng(seed).permutation(len(images))
        return images[permutation], labels[permutation], permutation

    def run_epochs(self, training_data, epochs=None, evaluation_data=None):
        """
        Train with minibatch SGD.

        Args:
            training_data (tuple): (images, labels)
            epochs (int, optional): Overrides hyperparameters.epochs
            evaluation_data (tuple, optional): Held-out (images, labels) for
                monitoring

        Returns:
            self
        """
        images, labels = self._validate_data(*training_data)
        if evaluation_data is not None:
            evaluation_data = self._validate_data(*evaluation_data)
        if epochs is None:
            epochs = self.hyperparameters.epochs
        interval = self.hyperparameters.monitor_interval
        n_total = len(images)
        n_batches = -(-n_total // self.capacity)

        for _ in range(epochs):
            epoch = self.n_epochs_
            epoch_start = time.perf_counter()
            shuffled_images, shuffled_labels, _ = self.shuffle(images, labels)
            batches = tqdm(range(n_batches), desc=f"Epoch {epoch}",
                           unit='minibatch', disable=not self.verbose,
                           leave=False)
            for batch in batches:
                batch_start = time.perf_counter()
                start = batch * self.capacity
                stop = start + self.capacity
                self.update_minibatch(shuffled_images[start:stop],
                                      shuffled_labels[start:stop], n_total)
                if logger.isEnabledFor(logging.DEBUG):
                    elapsed = time.perf_counter() - batch_start
                    logger.debug("Minibatch %d / %d (%.0f imgs/s)", batch + 1,
                                 n_batches, (stop - start) / max(elapsed, 1e-9))
                if interval and (batch + 1) % interval == 0 and batch + 1 < n_batches:
                    self._monitor(epoch, batch + 1, (images, labels),
                                  evaluation_data)
            self.n_epochs_ += 1
            self._monitor(epoch, n_batches, (images, labels), evaluation_data)
            log = logger.info if self.verbose else logger.debug
            log("Epoch %d complete in %.1f s", epoch,
                time.perf_counter() - epoch_start)
        return self

    def _monitor(self, epoch, minibatch, training_data, evaluation_data):
        """Evaluate the metrics enabled in hyperparameters.monitor."""
        flags = self.hyperparameters.monitor
        checks = (
            ('evaluation', evaluation_data, flags.evaluation_accuracy,
             flags.evaluation_cost),
            ('training', training_data, flags.training_accuracy,
             flags.training_cost),
        )
        for dataset, data, accuracy, cost in checks:
            if data is None:
                if accuracy or cost:
                    logger.debug("No %s data to monitor", dataset)
                continue
            total = len(data[0])
            if accuracy:
                correct = self.evaluate_accuracy(*data)
                self._record(MonitorRecord(epoch, minibatch, dataset,
                                           'accuracy', correct, total))
            if cost:
                value = self.evaluate_cost(*data)
                self._record(MonitorRecord(epoch, minibatch, dataset, 'cost',
                                           value, total))

    def _record(self, record):
        self.history_.append(record)
        logger.info("Epoch %d, minibatch %d: %s", record.epoch,
                    record.minibatch, record.describe())

    # Evaluation

    def _predict_slot(self, image, mb):
        self.input_layer_.load_sample(image, mb)
        self.forward(mb)
        return self.output_layer_.read_output(mb)

    def _sample_cost(self, image, label, mb):
        self.input_layer_.load_sample(image, mb)
        self.forward(mb)
        return self.output_layer_.compute_output_cost(label, mb)

    def _chunks(self, n):
        for start in range(0, n, self.capacity):
            yield start, min(self.capacity, n - start)

    def evaluate_accuracy(self, images, labels):
        """Number of correctly classified samples."""
        images, labels = self._validate_data(images, labels)
        correct = 0
        for start, size in self._chunks(len(images)):
            correct += self._executor.sum_slots(
                lambda mb: int(self._predict_slot(images[start + mb], mb)
                               == labels[start + mb]), size)
        return correct

    def evaluate_cost(self, images, labels):
        """
        Mean cost over a dataset plus the L2 term
        0.5 * (lambda / n) * sum of squared weights.
        """
        images, labels = self._validate_data(images, labels)
        n = len(images)
        total = 0.0
        for start, size in self._chunks(n):
            total += self._executor.sum_slots(
                lambda mb: self._sample_cost(images[start + mb],
                                             labels[start + mb], mb), size)
        regularization = (0.5 * (self.hyperparameters.l2_lambda / n)
                          * self.sum_squared_weights())
        return total / n + regularization

    def sum_squared_weights(self):
        """Sum of squared weights over every weighted layer."""
        return sum(layer.sum_squared_weights() for layer in self.layers
                   if hasattr(layer, 'sum_squared_weights'))

    # Estimator interface

    def fit(self, X, y):
        """Training: fit(X, y) -> self"""
        return self.run_epochs((X, y))

    def predict(self, X):
        """Prediction: predict(X) -> ndarray of class indices"""
        images = self._validate_images(X)
        predictions = np.empty(len(images), dtype=np.int64)
        for start, size in self._chunks(len(images)):
            predictions[start:start + size] = self._executor.map_slots(
                lambda mb: self._predict_slot(images[start + mb], mb), size)
        return predictions

    def predict_proba(self, X):
        """Softmax outputs of shape (N, n_classes)"""
        images = self._validate_images(X)
        probabilities = np.empty((len(images), self.output_layer_.unit_count()),
                                 dtype=DTYPE)

        def run(mb, start):
            self.input_layer_.load_sample(images[start + mb], mb)
            self.forward(mb)
            return self.output_layer_.units.activation[mb].copy()

        for start, size in self._chunks(len(images)):
            rows = self._executor.map_slots(lambda mb: run(mb, start), size)
            probabilities[start:start + size] = rows
        return probabilities

    def trainable_parameters(self):
        params = {}
        for i, layer in enumerate(self.layers):
            if getattr(layer, 'weight_', None) is not None:
                params[f"{i}.{layer.name}.weight"] = layer.weight_
                params[f"{i}.{layer.name}.bias"] = layer.bias_
        return params

    def _validate_images(self, X):
        images = np.asarray(X, dtype=DTYPE)
        n_pixels = self.input_shape[0] * self.input_shape[1]
        if images.ndim == 3:
            images = images.reshape(images.shape[0], -1)
        if images.ndim != 2 or images.shape[1] != n_pixels:
            raise ValueError(
                f"Expected images of shape (N, {n_pixels}), got {images.shape}")
        return images

    def _validate_data(self, images, labels):
        images = self._validate_images(images)
        labels = np.asarray(labels)
        if labels.ndim != 1 or len(labels) != len(images):
            raise ValueError(
                "labels must be a 1D array with one label per image")
        if len(images) == 0:
            raise ValueError("Empty dataset")
        labels = labels.astype(np.int64)
        n_classes = self.output_layer_.unit_count()
        if labels.min() < 0 or labels.max() >= n_classes:
            raise ValueError(f"Labels must lie in [0, {n_classes})")
        return images, labels

    # Resources

    def close(self):
        """Stop the worker threads."""
        self._executor.shutdown()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    def __repr__(self):
        layers = ', '.join(repr(layer) for layer in self.layers)
        return f"Network(input_shape={self.input_shape}, layers=[{layers}])"
