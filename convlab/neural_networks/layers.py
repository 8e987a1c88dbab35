"""
Neural network layers implementation.

Every layer keeps its units in a UnitStore with one slot per minibatch
element and talks to its neighbours through the same small protocol:

- ``forward(mb)`` reads the predecessor's activations for slot ``mb``
- ``route_error_to_predecessor(mb)`` fills the buffer returned by
  ``routed_error(mb)``, addressed like the predecessor's units
- ``backward(mb)`` turns the successor's routed error into this layer's error
- ``update_parameters(n)`` applies one SGD step after a full minibatch

Each call only touches slot ``mb``, so distinct slots may run concurrently.
"""
import numpy as np

from ..exceptions import TopologyError, UnsupportedOperationError
from ._indexing import flatten_volume, to_coordinates, unflatten_vector
from ._units import DTYPE, UnitStore
from .activations import get_activation
from .costs import get_cost


class Layer:
    """Base class for all neural network layers."""

    def __init__(self, shape, input_size=None, name=None):
        """
        Args:
            shape (tuple): Unit extents, (n,) or (dim_x, dim_y, dim_z)
            input_size (int, optional): Number of units the predecessor must have
            name (str, optional): Name used in messages and reports
        """
        self.shape = tuple(int(d) for d in shape)
        self.input_size = input_size
        self.name = name or type(self).__name__
        self.predecessor = None
        self.successor = None
        self.optimizer = None
        self.units = None
        self._routed = None

    # Wiring

    def set_predecessor(self, layer):
        """Link the layer this one reads its input from."""
        if self.input_size is not None and layer.unit_count() != self.input_size:
            raise TopologyError(
                f"{self.name} expects {self.input_size} inputs but "
                f"{layer.name} has {layer.unit_count()} units")
        self.predecessor = layer

    def set_successor(self, layer):
        """Link the layer this one receives its error from."""
        self.successor = layer

    def allocate(self, capacity):
        """Create the unit store for ``capacity`` minibatch slots."""
        self.units = UnitStore(self.shape, capacity)

    @property
    def capacity(self):
        return self._require_units().capacity

    def initialize_weights(self, rng):
        """Parameterless layers have nothing to initialize."""

    # Forward and backward protocol

    def forward(self, mb):
        raise UnsupportedOperationError(self, 'forward')

    def route_error_to_predecessor(self, mb):
        raise UnsupportedOperationError(self, 'route_error_to_predecessor')

    def backward(self, mb):
        raise UnsupportedOperationError(self, 'backward')

    def update_parameters(self, total_training_set_size, active_slots=None):
        raise UnsupportedOperationError(self, 'update_parameters')

    def routed_error(self, mb):
        """
        Error routed to the predecessor for slot ``mb``.

        Returns:
            ndarray: Shaped like the predecessor's units for 3-D routing,
            a flat vector in linear index order for 1-D routing
        """
        if self._routed is None:
            raise UnsupportedOperationError(self, 'routed_error')
        return self._routed[mb]

    def get_routed_error(self, mb, *address):
        """Routed error for one predecessor unit, by index or by (x, y, z)."""
        routed = self.routed_error(mb)
        if len(address) == 1 and routed.ndim == 3:
            address = to_coordinates(address[0], routed.shape)
        elif len(address) != routed.ndim:
            raise UnsupportedOperationError(
                self, f'get_routed_error with a {len(address)}-D address')
        return float(routed[tuple(address)])

    def incoming_error(self, mb):
        """The successor's routed error for slot ``mb``, in this layer's shape."""
        if self.successor is None:
            raise TopologyError(f"{self.name} has no successor to take error from")
        routed = self.successor.routed_error(mb)
        if routed.shape == self.shape:
            return routed
        if routed.ndim == 1 and len(self.shape) == 3:
            return unflatten_vector(routed, self.shape)
        raise TopologyError(
            f"{self.successor.name} routes error of shape {routed.shape} "
            f"to {self.name} of shape {self.shape}")

    # Introspection

    def unit_count(self):
        return int(np.prod(self.shape))

    def dimension_count(self):
        return len(self.shape)

    def dimension_extent(self, axis):
        if not 0 <= axis < len(self.shape):
            raise IndexError(
                f"{self.name} is {len(self.shape)}-D, no axis {axis}")
        return self.shape[axis]

    def get_unit(self, *address):
        """Return the unit at a linear index or, for 3-D layers, at (x, y, z)."""
        if len(address) == 3 and len(self.shape) == 1:
            raise UnsupportedOperationError(self, 'get_unit(x, y, z)')
        return self._require_units().unit(*address)

    def activation_vector(self, mb):
        """Activations of slot ``mb`` in linear index order."""
        activation = self._require_units().activation[mb]
        if activation.ndim == 3:
            return flatten_volume(activation)
        return activation

    def activation_vectors(self, active_slots):
        """Activations of slots [0, active_slots) as (n, unit_count)."""
        activation = self._require_units().activation[:active_slots]
        if activation.ndim == 4:
            return flatten_volume(activation)
        return activation

    def activation_volume(self, mb):
        """Activations of slot ``mb`` as an (x, y, z) volume."""
        if len(self.shape) != 3:
            raise UnsupportedOperationError(self, 'activation_volume')
        return self._require_units().activation[mb]

    def activation_volumes(self, active_slots):
        if len(self.shape) != 3:
            raise UnsupportedOperationError(self, 'activation_volumes')
        return self._require_units().activation[:active_slots]

    # Helpers

    def _require_units(self):
        if self.units is None:
            raise TopologyError(
                f"{self.name} has no unit storage; allocate it first")
        return self.units

    def _require_optimizer(self):
        if self.optimizer is None:
            raise TopologyError(f"{self.name} has no optimizer attached")
        return self.optimizer

    def _active(self, active_slots):
        capacity = self.capacity
        if active_slots is None:
            return capacity
        if not 1 <= active_slots <= capacity:
            raise ValueError(
                f"active_slots must be in [1, {capacity}], got {active_slots}")
        return active_slots

    def __repr__(self):
        return f"{type(self).__name__}(name={self.name!r}, shape={self.shape})"


class InputLayer(Layer):
    """
    Holds the pixels of the current samples, one unit per pixel at (x, y, 0).
    """

    def __init__(self, width, height, name=None):
        """Constructor"""
        super().__init__((width, height, 1), name=name)
        self.width = int(width)
        self.height = int(height)

    def load_sample(self, image, mb):
        """
        Copy a row-major image into the activations of slot ``mb``.

        Args:
            image (ndarray): width * height intensities, image[y * width + x]
            mb (int): Minibatch slot
        """
        units = self._require_units()
        units.check_slot(mb)
        image = np.asarray(image, dtype=DTYPE)
        if image.size != self.width * self.height:
            raise ValueError(
                f"Invalid image size {image.size}, expected "
                f"{self.width * self.height}")
        units.activation[mb] = image.reshape(self.height, self.width).T[:, :, None]

    def set_predecessor(self, layer):
        raise UnsupportedOperationError(self, 'set_predecessor')

    def set_successor(self, layer):
        raise UnsupportedOperationError(self, 'set_successor')


class DenseLayer(Layer):
    """
    Fully connected layer: every unit sees every predecessor unit.
    """

    def __init__(self, n_units, n_inputs, activation='sigmoid', optimizer=None,
                 name=None):
        """
        Initialize the dense layer.

        Args:
            n_units (int): Number of units in this layer
            n_inputs (int): Number of units in the predecessor
            activation (str): Activation function ('sigmoid', 'relu')
            optimizer (SGDOptimizer, optional): Update rule; the network
                attaches its own when omitted
            name (str, optional): Layer name
        """
        super().__init__((n_units,), input_size=n_inputs, name=name)
        self.n_units = int(n_units)
        self.n_inputs = int(n_inputs)
        self.activation = get_activation(activation)
        self.optimizer = optimizer
        self.weight_ = None
        self.bias_ = None

    def allocate(self, capacity):
        super().allocate(capacity)
        self._routed = np.zeros((capacity, self.n_inputs), dtype=DTYPE)

    def initialize_weights(self, rng):
        """
        Normal weights scaled by 1/sqrt(fan-in), standard normal biases.

        Args:
            rng (np.random.Generator): The network's random generator
        """
        scale = DTYPE(np.sqrt(self.n_inputs))
        self.weight_ = rng.standard_normal(
            (self.n_units, self.n_inputs), dtype=DTYPE) / scale
        self.bias_ = rng.standard_normal(self.n_units, dtype=DTYPE)

    def weighted_input(self, mb):
        """W @ a_prev + b for slot ``mb``."""
        inputs = self.predecessor.activation_vector(mb)
        return self.weight_ @ inputs + self.bias_

    def forward(self, mb):
        """Forward pass: activation(weight . input + bias)"""
        z = self.weighted_input(mb)
        self.units.pre_activation[mb] = z
        self.units.activation[mb] = self.activation.compute(z)

    def route_error_to_predecessor(self, mb):
        """Weighted sum of this layer's errors for each predecessor unit."""
        self._routed[mb] = self.weight_.T @ self.units.error[mb]

    def backward(self, mb):
        """Routed error times the activation derivative."""
        z = self.units.pre_activation[mb]
        self.units.error[mb] = (self.incoming_error(mb)
                                * self.activation.derivative(z))

    def parameter_gradients(self, active_slots=None):
        """
        Cost gradients averaged over the active minibatch slots.

        Returns:
            tuple: (weight_grad, bias_grad) shaped like weight_ and bias_
        """
        n = self._active(active_slots)
        inputs = self.predecessor.activation_vectors(n)
        errors = self.units.error[:n]
        weight_grad = errors.T @ inputs / n
        bias_grad = errors.sum(axis=0) / n
        return weight_grad, bias_grad

    def update_parameters(self, total_training_set_size, active_slots=None):
        """Apply one decayed SGD step from the accumulated errors."""
        weight_grad, bias_grad = self.parameter_gradients(active_slots)
        self._require_optimizer().update(weight_grad, bias_grad, self.weight_,
                                         self.bias_, total_training_set_size)

    def sum_squared_weights(self):
        return float(np.sum(self.weight_ ** 2))

    def __repr__(self):
        return (f"{type(self).__name__}(n_units={self.n_units}, "
                f"n_inputs={self.n_inputs})")


class SoftmaxLayer(DenseLayer):
    """
    Softmax output layer. Always the last layer of a network.
    """

    def __init__(self, n_classes, n_inputs, cost='cross_entropy',
                 optimizer=None, name=None):
        """
        Args:
            n_classes (int): Number of output classes
            n_inputs (int): Number of units in the predecessor
            cost (str): Cost function ('cross_entropy', 'quadratic')
            optimizer (SGDOptimizer, optional): Update rule
            name (str, optional): Layer name
        """
        super().__init__(n_classes, n_inputs, activation='sigmoid',
                         optimizer=optimizer, name=name)
        self.activation = None
        self.cost = get_cost(cost)

    def set_successor(self, layer):
        raise UnsupportedOperationError(self, 'set_successor')

    def forward(self, mb):
        """Forward pass: softmax of the weighted inputs"""
        z = self.weighted_input(mb)
        self.units.pre_activation[mb] = z
        # Shift by the max so exp cannot overflow
        exp_z = np.exp(z - np.max(z))
        self.units.activation[mb] = exp_z / np.sum(exp_z)

    def backward(self, mb):
        raise UnsupportedOperationError(self, 'backward')

    def one_hot(self, label):
        label = int(label)
        if not 0 <= label < self.n_units:
            raise ValueError(
                f"Label {label} out of range for {self.n_units} classes")
        y = np.zeros(self.n_units, dtype=DTYPE)
        y[label] = 1
        return y

    def compute_output_error(self, label, mb):
        """Output error of slot ``mb`` against ``label``."""
        units = self.units
        units.error[mb] = self.cost.delta(units.pre_activation[mb],
                                          units.activation[mb],
                                          self.one_hot(label))

    def compute_output_cost(self, label, mb):
        """Cost of slot ``mb`` against ``label``."""
        return self.cost.compute(self.units.activation[mb], self.one_hot(label))

    def read_output(self, mb):
        """Predicted class: index of the largest activation, first one on ties."""
        return int(np.argmax(self.units.activation[mb]))

    def __repr__(self):
        return (f"SoftmaxLayer(n_classes={self.n_units}, "
                f"n_inputs={self.n_inputs}, cost={self.cost.name!r})")
