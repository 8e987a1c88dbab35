"""
Per-unit state shared by every layer: weighted input, activation and error
for each minibatch slot.
"""
from collections import namedtuple

import numpy as np

from ._indexing import to_coordinates

DTYPE = np.float32

# Each field is a length-capacity view into the owning UnitStore.
Unit = namedtuple('Unit', ['pre_activation', 'activation', 'error'])


class UnitStore:
    """
    Storage for all units of one layer.

    The three arrays have shape (capacity,) + shape, so ``activation[mb]``
    is the whole layer's activation for minibatch slot ``mb``. A slot's
    pre-activation and activation are valid once the layer ran forward for
    that slot, its error once the layer ran backward.
    """

    def __init__(self, shape, capacity):
        """
        Args:
            shape (tuple): Layer extents, (n,) for 1-D layers or
                (dim_x, dim_y, dim_z) for 3-D layers
            capacity (int): Number of minibatch slots
        """
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.shape = tuple(int(d) for d in shape)
        self.capacity = int(capacity)
        full_shape = (self.capacity,) + self.shape
        self.pre_activation = np.zeros(full_shape, dtype=DTYPE)
        self.activation = np.zeros(full_shape, dtype=DTYPE)
        self.error = np.zeros(full_shape, dtype=DTYPE)

    def __len__(self):
        return int(np.prod(self.shape))

    def unit(self, *address):
        """
        Return the unit at a linear index or at (x, y, z).

        A single index on a 3-D store is mapped to coordinates.
        """
        if len(address) == 1 and len(self.shape) == 3:
            address = to_coordinates(address[0], self.shape)
        if len(address) != len(self.shape):
            raise IndexError(
                f"Address {address} does not match unit shape {self.shape}")
        for value, extent in zip(address, self.shape):
            if not 0 <= value < extent:
                raise IndexError(
                    f"Address {address} out of range for shape {self.shape}")
        key = (slice(None),) + tuple(address)
        return Unit(self.pre_activation[key], self.activation[key],
                    self.error[key])

    def check_slot(self, mb):
        """Raise IndexError for a slot outside [0, capacity)."""
        if not 0 <= mb < self.capacity:
            raise IndexError(
                f"Minibatch slot {mb} out of range [0, {self.capacity})")
