"""
Convolutional and max pooling layers for image classification.

Both layers address their units as (x, y, z) with z the feature map (or
input channel for pooling), and expect a 3-D predecessor.
"""
import numpy as np

from ..exceptions import ConfigurationError, TopologyError
from ._units import DTYPE
from .activations import get_activation
from .layers import Layer


# Helper Functions
def get_patches(arr, patch_shape):
    """
    Extract sliding window patches for valid-mode convolution, stride 1.

    Args:
        arr: Input array of shape (x, y, channels) or (batch, x, y, channels)
        patch_shape: Tuple (patch_x, patch_y)

    Returns:
        Read-only view of shape (out_x, out_y, channels, patch_x, patch_y),
        with a leading batch axis for 4-D input
    """
    if arr.ndim == 3:
        axes = (0, 1)
    elif arr.ndim == 4:
        axes = (1, 2)
    else:
        raise ValueError(f"Unsupported array dimension: {arr.ndim}")
    return np.lib.stride_tricks.sliding_window_view(arr, patch_shape, axis=axes)


def _pair(value):
    return tuple(value) if isinstance(value, (tuple, list)) else (value, value)


def _check_volume_predecessor(layer, predecessor):
    if predecessor.dimension_count() != 3:
        raise TopologyError(
            f"{layer.name} needs a 3-D predecessor, {predecessor.name} is "
            f"{predecessor.dimension_count()}-D")
    if tuple(predecessor.shape) != layer.input_shape:
        raise TopologyError(
            f"{layer.name} expects input of shape {layer.input_shape} but "
            f"{predecessor.name} has shape {tuple(predecessor.shape)}")


class ConvLayer(Layer):
    """
    Convolutional layer for feature extraction with learnable filters.

    Each feature map shares one kernel of shape (kernel_x, kernel_y,
    input_depth) and one bias across all output positions.
    """

    def __init__(self, kernel_size, input_shape, n_feature_maps=1,
                 activation='relu', optimizer=None, name=None):
        """
        Args:
            kernel_size (int or tuple): Kernel extents (kernel_x, kernel_y)
            input_shape (tuple): Predecessor extents (x, y, depth)
            n_feature_maps (int): Number of output feature maps
            activation (str): Activation function ('sigmoid', 'relu')
            optimizer (SGDOptimizer, optional): Update rule
            name (str, optional): Layer name
        """
        self.kernel_size = tuple(int(k) for k in _pair(kernel_size))
        self.input_shape = tuple(int(d) for d in input_shape)
        if len(self.input_shape) != 3:
            raise ConfigurationError(
                f"input_shape must be (x, y, depth), got {input_shape}")
        kernel_x, kernel_y = self.kernel_size
        input_x, input_y, input_z = self.input_shape
        if not (1 <= kernel_x <= input_x and 1 <= kernel_y <= input_y):
            raise ConfigurationError(
                f"Kernel {self.kernel_size} does not fit input {self.input_shape}")
        if n_feature_maps < 1:
            raise ConfigurationError("n_feature_maps must be positive")
        self.n_feature_maps = int(n_feature_maps)
        # Valid-mode convolution, no padding
        shape = (input_x - kernel_x + 1, input_y - kernel_y + 1,
                 self.n_feature_maps)
        super().__init__(shape, input_size=input_x * input_y * input_z,
                         name=name)
        self.activation = get_activation(activation)
        self.optimizer = optimizer
        self.weight_ = None
        self.bias_ = None

    def set_predecessor(self, layer):
        _check_volume_predecessor(self, layer)
        super().set_predecessor(layer)

    def allocate(self, capacity):
        super().allocate(capacity)
        self._routed = np.zeros((capacity,) + self.input_shape, dtype=DTYPE)

    def initialize_weights(self, rng):
        """Normal weights scaled by 1/sqrt(kernel volume), normal biases."""
        kernel_x, kernel_y = self.kernel_size
        depth = self.input_shape[2]
        scale = DTYPE(np.sqrt(kernel_x * kernel_y * depth))
        self.weight_ = rng.standard_normal(
            (self.n_feature_maps, kernel_x, kernel_y, depth), dtype=DTYPE) / scale
        self.bias_ = rng.standard_normal(self.n_feature_maps, dtype=DTYPE)

    def forward(self, mb):
        """Forward pass: convolution + bias + activation"""
        patches = get_patches(self.predecessor.activation_volume(mb),
                              self.kernel_size)
        # patches: (out_x, out_y, depth, kernel_x, kernel_y)
        # weight_: (feature, kernel_x, kernel_y, depth)
        z = np.tensordot(patches, self.weight_, axes=([2, 3, 4], [3, 1, 2]))
        z += self.bias_
        self.units.pre_activation[mb] = z
        self.units.activation[mb] = self.activation.compute(z)

    def route_error_to_predecessor(self, mb):
        """
        Gather, for every predecessor unit, the errors of the output units
        whose receptive field covers it.

        routed[ix, iy, c] = sum over f, a, b of weight_[f, a, b, c] *
        error[ix - a, iy - b, f], for shifted positions inside the output.
        Zero padding the error by kernel - 1 and correlating with the
        flipped kernel computes exactly that sum.
        """
        kernel_x, kernel_y = self.kernel_size
        padded = np.pad(self.units.error[mb],
                        ((kernel_x - 1, kernel_x - 1),
                         (kernel_y - 1, kernel_y - 1), (0, 0)))
        patches = get_patches(padded, self.kernel_size)
        flipped = self.weight_[:, ::-1, ::-1, :]
        # patches: (input_x, input_y, feature, kernel_x, kernel_y)
        self._routed[mb] = np.tensordot(patches, flipped,
                                        axes=([2, 3, 4], [0, 1, 2]))

    def backward(self, mb):
        """Routed error times the activation derivative."""
        z = self.units.pre_activation[mb]
        self.units.error[mb] = (self.incoming_error(mb)
                                * self.activation.derivative(z))

    def parameter_gradients(self, active_slots=None):
        """
        Shared-weight gradients, summed over output positions and averaged
        over the active minibatch slots.

        Returns:
            tuple: (weight_grad, bias_grad) shaped like weight_ and bias_
        """
        n = self._active(active_slots)
        patches = get_patches(self.predecessor.activation_volumes(n),
                              self.kernel_size)
        errors = self.units.error[:n]
        # patches: (n, out_x, out_y, depth, kernel_x, kernel_y)
        # errors:  (n, out_x, out_y, feature)
        weight_grad = np.tensordot(errors, patches, axes=([0, 1, 2], [0, 1, 2]))
        weight_grad = weight_grad.transpose(0, 2, 3, 1) / n
        bias_grad = errors.sum(axis=(0, 1, 2)) / n
        return weight_grad, bias_grad

    def update_parameters(self, total_training_set_size, active_slots=None):
        """Parameter updates"""
        weight_grad, bias_grad = self.parameter_gradients(active_slots)
        self._require_optimizer().update(weight_grad, bias_grad, self.weight_,
                                         self.bias_, total_training_set_size)

    def sum_squared_weights(self):
        return float(np.sum(self.weight_ ** 2))

    def __repr__(self):
        return (f"ConvLayer(kernel_size={self.kernel_size}, "
                f"input_shape={self.input_shape}, "
                f"n_feature_maps={self.n_feature_maps})")


class MaxPoolLayer(Layer):
    """
    Max pooling layer for spatial dimension reduction.

    Pools non-overlapping windows of each input channel. The layer has no
    error of its own: ``routed_error`` hands the successor's error for a
    pooled unit straight to the positions of its window. With
    ``error_routing='argmax'`` only the first maximal position receives it;
    ``'uniform'`` gives it to every position of the window.
    """

    ERROR_ROUTINGS = ('argmax', 'uniform')

    def __init__(self, pool_size, input_shape, error_routing='argmax',
                 name=None):
        """Constructor"""
        self.pool_size = tuple(int(p) for p in _pair(pool_size))
        self.input_shape = tuple(int(d) for d in input_shape)
        if len(self.input_shape) != 3:
            raise ConfigurationError(
                f"input_shape must be (x, y, depth), got {input_shape}")
        if error_routing not in self.ERROR_ROUTINGS:
            raise ConfigurationError(
                f"Unknown error_routing: {error_routing}. "
                f"Choose from {self.ERROR_ROUTINGS}")
        pool_x, pool_y = self.pool_size
        input_x, input_y, input_z = self.input_shape
        if pool_x < 1 or pool_y < 1:
            raise ConfigurationError("pool_size must be positive")
        if input_x % pool_x or input_y % pool_y:
            raise TopologyError(
                f"Input extents {self.input_shape[:2]} are not divisible by "
                f"pool size {self.pool_size}")
        super().__init__((input_x // pool_x, input_y // pool_y, input_z),
                         input_size=input_x * input_y * input_z, name=name)
        self.error_routing = error_routing
        self._winners = None

    def set_predecessor(self, layer):
        _check_volume_predecessor(self, layer)
        super().set_predecessor(layer)

    def allocate(self, capacity):
        super().allocate(capacity)
        if self.error_routing == 'argmax':
            self._winners = np.zeros((capacity,) + self.input_shape, dtype=bool)

    def _windows(self, volume):
        """(x, y, z) volume -> (out_x, out_y, z, pool_x * pool_y) windows"""
        out_x, out_y, depth = self.shape
        pool_x, pool_y = self.pool_size
        blocks = volume.reshape(out_x, pool_x, out_y, pool_y, depth)
        return blocks.transpose(0, 2, 4, 1, 3).reshape(out_x, out_y, depth, -1)

    def _unwindow(self, windows):
        """Inverse of _windows."""
        out_x, out_y, depth = self.shape
        pool_x, pool_y = self.pool_size
        blocks = windows.reshape(out_x, out_y, depth, pool_x, pool_y)
        return blocks.transpose(0, 3, 1, 4, 2).reshape(self.input_shape)

    def forward(self, mb):
        """Forward pass: max pooling"""
        windows = self._windows(self.predecessor.activation_volume(mb))
        pooled = windows.max(axis=-1)
        self.units.pre_activation[mb] = pooled
        self.units.activation[mb] = pooled
        if self._winners is not None:
            # argmax picks the first maximal position of each window
            winners = np.zeros(windows.shape, dtype=bool)
            np.put_along_axis(winners, windows.argmax(axis=-1)[..., None],
                              True, axis=-1)
            self._winners[mb] = self._unwindow(winners)

    def route_error_to_predecessor(self, mb):
        """Nothing to do: routed_error reads the successor lazily."""

    def backward(self, mb):
        """Nothing to do: pooling units carry no error of their own."""

    def update_parameters(self, total_training_set_size, active_slots=None):
        """No parameters to update."""

    def routed_error(self, mb):
        """Successor error of each pooled unit, spread over its window."""
        pooled = self.incoming_error(mb)
        pool_x, pool_y = self.pool_size
        spread = np.repeat(np.repeat(pooled, pool_x, axis=0), pool_y, axis=1)
        if self._winners is not None:
            spread = spread * self._winners[mb]
        return spread

    def __repr__(self):
        return (f"MaxPoolLayer(pool_size={self.pool_size}, "
                f"input_shape={self.input_shape}, "
                f"error_routing={self.error_routing!r})")
