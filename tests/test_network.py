"""
test_network.py
~~~~~~~~~~~~~~~

Tests for network assembly, backpropagation and the SGD training loop.
"""

import numpy as np
import pytest

from convlab.config import Hyperparameters, MonitorFlags
from convlab.exceptions import ConfigurationError, TopologyError
from convlab.monitoring import MonitorRecord, classification_summary
from convlab.neural_networks import (
    ConvLayer,
    DenseLayer,
    MaxPoolLayer,
    Network,
    SoftmaxLayer
)


def numerical_gradient(network, layer, attribute, image, label, eps=1e-2):
    """Central-difference gradient of one sample's cost w.r.t. a parameter."""
    values = getattr(layer, attribute)
    gradient = np.zeros(values.shape)
    for index in np.ndindex(values.shape):
        original = values[index]
        values[index] = original + eps
        plus = network.evaluate_cost(image[None], [label])
        values[index] = original - eps
        minus = network.evaluate_cost(image[None], [label])
        values[index] = original
        gradient[index] = (plus - minus) / (2 * eps)
    return gradient


def analytic_gradients(network, layer, image, label):
    network.backward(image, label, 0)
    return layer.parameter_gradients(active_slots=1)


def conv_network(hyperparameters, n_jobs=1):
    """4x4 input -> conv 3x3 (2 maps) -> pool 2x2 -> softmax 2."""
    layers = [ConvLayer(3, (4, 4, 1), n_feature_maps=2, activation='sigmoid'),
              MaxPoolLayer(2, (2, 2, 2)),
              SoftmaxLayer(2, 2)]
    return Network((4, 4), layers, hyperparameters, n_jobs=n_jobs)


@pytest.mark.unit
class TestAssembly:
    """Test wiring, allocation and initialization of a network."""

    def test_links_and_capacity(self, dense_network):
        hidden, output = dense_network.layers
        assert hidden.predecessor is dense_network.input_layer_
        assert hidden.successor is output
        assert output.predecessor is hidden
        assert output.successor is None
        assert hidden.units.capacity == dense_network.capacity == 5
        assert dense_network.input_layer_.units.capacity == 5

    def test_optimizer_attached(self, dense_network):
        for layer in dense_network.layers:
            assert layer.optimizer is dense_network.optimizer_
        assert dense_network.optimizer_.lr == 0.5

    def test_same_seed_same_weights(self, hyperparameters):
        first = Network((4, 4), [DenseLayer(8, 16), SoftmaxLayer(2, 8)],
                        hyperparameters, n_jobs=1)
        second = Network((4, 4), [DenseLayer(8, 16), SoftmaxLayer(2, 8)],
                         hyperparameters, n_jobs=1)
        for a, b in zip(first.layers, second.layers):
            np.testing.assert_array_equal(a.weight_, b.weight_)
            np.testing.assert_array_equal(a.bias_, b.bias_)

    def test_last_layer_must_be_softmax(self, hyperparameters):
        with pytest.raises(TopologyError):
            Network((4, 4), [DenseLayer(2, 16)], hyperparameters)

    def test_softmax_must_be_last(self, hyperparameters):
        with pytest.raises(TopologyError):
            Network((4, 4), [SoftmaxLayer(4, 16), SoftmaxLayer(2, 4)],
                    hyperparameters)

    def test_empty_network(self, hyperparameters):
        with pytest.raises(TopologyError):
            Network((4, 4), [], hyperparameters)

    def test_worker_count_must_be_positive(self, hyperparameters):
        with pytest.raises(ConfigurationError):
            Network((4, 4), [SoftmaxLayer(2, 16)], hyperparameters, n_jobs=0)

    def test_size_mismatch(self, hyperparameters):
        with pytest.raises(TopologyError):
            Network((4, 4), [DenseLayer(8, 15), SoftmaxLayer(2, 8)],
                    hyperparameters)

    def test_conv_after_dense(self, hyperparameters):
        with pytest.raises(TopologyError):
            Network((4, 4), [DenseLayer(9, 16), ConvLayer(2, (3, 3, 1)),
                             SoftmaxLayer(2, 4)], hyperparameters)

    def test_trainable_parameters(self, dense_network):
        params = dense_network.get_params('trainable')
        assert len(params) == 4
        assert all(isinstance(v, np.ndarray) for v in params.values())

    def test_non_trainable_parameters(self, dense_network):
        params = dense_network.get_params('non_trainable')
        assert 'hyperparameters' in params
        assert 'history_' not in params


@pytest.mark.unit
class TestBackpropagation:
    """Compare analytic gradients against finite differences."""

    @pytest.fixture
    def no_decay(self):
        return Hyperparameters(learning_rate=0.1, l2_lambda=0.0,
                               minibatch_size=2, seed=7)

    def test_dense_gradients(self, no_decay, toy_data):
        images, labels = toy_data
        network = Network((4, 4), [DenseLayer(5, 16), SoftmaxLayer(2, 5)],
                          no_decay, n_jobs=1)
        for layer in network.layers:
            weight_grad, bias_grad = analytic_gradients(
                network, layer, images[0], labels[0])
            np.testing.assert_allclose(
                numerical_gradient(network, layer, 'weight_', images[0],
                                   labels[0]),
                weight_grad, rtol=5e-2, atol=2e-3)
            np.testing.assert_allclose(
                numerical_gradient(network, layer, 'bias_', images[0],
                                   labels[0]),
                bias_grad, rtol=5e-2, atol=2e-3)

    def test_conv_gradients(self, no_decay, toy_data):
        images, labels = toy_data
        layers = [ConvLayer(2, (4, 4, 1), n_feature_maps=2,
                            activation='sigmoid'),
                  SoftmaxLayer(2, 18)]
        network = Network((4, 4), layers, no_decay, n_jobs=1)
        conv = network.layers[0]
        weight_grad, bias_grad = analytic_gradients(network, conv, images[1],
                                                    labels[1])
        np.testing.assert_allclose(
            numerical_gradient(network, conv, 'weight_', images[1], labels[1]),
            weight_grad, rtol=5e-2, atol=2e-3)
        np.testing.assert_allclose(
            numerical_gradient(network, conv, 'bias_', images[1], labels[1]),
            bias_grad, rtol=5e-2, atol=2e-3)

    def test_softmax_only_network(self, no_decay, toy_data):
        """Test a network whose only layer is the output layer trains."""
        images, labels = toy_data
        network = Network((4, 4), [SoftmaxLayer(2, 16)], no_decay, n_jobs=1)
        before = network.layers[0].weight_.copy()
        network.update_minibatch(images[:2], labels[:2], len(images))
        assert not np.array_equal(before, network.layers[0].weight_)

    def test_oversized_minibatch(self, dense_network, toy_data):
        images, labels = toy_data
        with pytest.raises(ValueError):
            dense_network.update_minibatch(images[:6], labels[:6], 40)


@pytest.mark.unit
class TestShuffle:
    """Test the per-epoch shuffle."""

    def test_permutation_is_bijection(self, dense_network, toy_data):
        images, labels = toy_data
        shuffled_images, shuffled_labels, permutation = dense_network.shuffle(
            images, labels)
        np.testing.assert_array_equal(np.sort(permutation), np.arange(40))
        np.testing.assert_array_equal(shuffled_images, images[permutation])
        np.testing.assert_array_equal(shuffled_labels, labels[permutation])

    def test_successive_shuffles_differ(self, dense_network, toy_data):
        images, labels = toy_data
        _, _, first = dense_network.shuffle(images, labels)
        _, _, second = dense_network.shuffle(images, labels)
        assert not np.array_equal(first, second)


@pytest.mark.integration
class TestTraining:
    """Test the SGD training loop end to end."""

    def test_cost_decreases_and_separates(self, hyperparameters, toy_data):
        images, labels = toy_data
        with Network((4, 4), [DenseLayer(8, 16), SoftmaxLayer(2, 8)],
                     hyperparameters.replace(epochs=30), n_jobs=1) as network:
            before = network.evaluate_cost(images, labels)
            network.fit(images, labels)
            after = network.evaluate_cost(images, labels)
            assert after < before
            assert network.score(images, labels) >= 0.9
            assert network.n_epochs_ == 30

    def test_conv_network_cost_decreases(self, toy_data):
        images, labels = toy_data
        params = Hyperparameters(learning_rate=0.5, l2_lambda=0.0,
                                 minibatch_size=4, epochs=20, seed=5)
        with conv_network(params) as network:
            before = network.evaluate_cost(images, labels)
            network.run_epochs((images, labels))
            assert network.evaluate_cost(images, labels) < before

    def test_parallel_matches_serial(self, hyperparameters, toy_data):
        """Test the thread count does not change the result."""
        images, labels = toy_data
        with conv_network(hyperparameters, n_jobs=1) as serial, \
                conv_network(hyperparameters, n_jobs=4) as parallel:
            serial.run_epochs((images, labels), epochs=2)
            parallel.run_epochs((images, labels), epochs=2)
            for a, b in zip(serial.layers, parallel.layers):
                if hasattr(a, 'weight_'):
                    np.testing.assert_allclose(a.weight_, b.weight_, rtol=1e-6)
            assert (serial.evaluate_accuracy(images, labels)
                    == parallel.evaluate_accuracy(images, labels))

    def test_short_final_minibatch(self, hyperparameters, toy_data):
        """Test a training set that is not a multiple of the minibatch size."""
        images, labels = toy_data
        with Network((4, 4), [DenseLayer(8, 16), SoftmaxLayer(2, 8)],
                     hyperparameters.replace(minibatch_size=7),
                     n_jobs=2) as network:
            network.run_epochs((images[:23], labels[:23]), epochs=1)
            assert network.n_epochs_ == 1
            assert np.all(np.isfinite(network.layers[0].weight_))

    def test_weight_decay_shrinks_weights(self, toy_data):
        images, labels = toy_data
        params = Hyperparameters(learning_rate=0.1, l2_lambda=50.0,
                                 minibatch_size=10, seed=2)
        with Network((4, 4), [DenseLayer(8, 16), SoftmaxLayer(2, 8)], params,
                     n_jobs=1) as network:
            before = network.sum_squared_weights()
            network.run_epochs((images, labels), epochs=5)
            assert network.sum_squared_weights() < before

    def test_evaluate_cost_includes_regularization(self, toy_data):
        images, labels = toy_data
        params = Hyperparameters(l2_lambda=4.0, minibatch_size=5)
        with Network((4, 4), [SoftmaxLayer(2, 16)], params,
                     n_jobs=1) as network:
            unregularized = np.mean([
                network._sample_cost(image, label, 0)
                for image, label in zip(images, labels)])
            expected = (unregularized
                        + 0.5 * (4.0 / 40) * network.sum_squared_weights())
            assert network.evaluate_cost(images, labels) == pytest.approx(
                expected, rel=1e-5)

    def test_monitoring_history(self, hyperparameters, toy_data):
        images, labels = toy_data
        params = hyperparameters.replace(
            epochs=2, monitor_interval=4,
            monitor=MonitorFlags(evaluation_accuracy=True, training_cost=True))
        with Network((4, 4), [DenseLayer(8, 16), SoftmaxLayer(2, 8)], params,
                     n_jobs=1) as network:
            network.run_epochs((images[:30], labels[:30]),
                               evaluation_data=(images[30:], labels[30:]))
        # 6 minibatches per epoch: after minibatch 4 and at the end
        assert len(network.history_) == 8
        record = network.history_[0]
        assert isinstance(record, MonitorRecord)
        assert (record.epoch, record.minibatch) == (0, 4)
        assert record.dataset == 'evaluation'
        assert record.metric == 'accuracy'
        assert record.total == 10
        assert 0 <= record.value <= 10
        assert [r.metric for r in network.history_[:2]] == ['accuracy', 'cost']
        assert network.history_[-1].minibatch == 6

    def test_predictions(self, dense_network, toy_data):
        images, labels = toy_data
        dense_network.fit(images, labels)
        probabilities = dense_network.predict_proba(images)
        assert probabilities.shape == (40, 2)
        np.testing.assert_allclose(probabilities.sum(axis=1), 1.0, rtol=1e-5)
        np.testing.assert_array_equal(dense_network.predict(images),
                                      probabilities.argmax(axis=1))
        assert dense_network.evaluate_accuracy(images, labels) == int(
            np.sum(dense_network.predict(images) == labels))

    def test_classification_summary(self, dense_network, toy_data):
        images, labels = toy_data
        matrix, report = classification_summary(dense_network, images, labels)
        assert matrix.shape == (2, 2)
        assert matrix.sum() == 40
        assert 'precision' in report

    def test_invalid_labels(self, dense_network, toy_data):
        images, _ = toy_data
        with pytest.raises(ValueError):
            dense_network.evaluate_accuracy(images, np.full(40, 2))
