"""
test_indexing.py
~~~~~~~~~~~~~~~~

Unit tests for index mapping helpers and the unit state store.
"""

import numpy as np
import pytest

from convlab.neural_networks._indexing import (
    flatten_volume,
    get_index,
    get_x,
    get_y,
    get_z,
    to_coordinates,
    to_index,
    unflatten_vector
)
from convlab.neural_networks._units import UnitStore


@pytest.mark.unit
class TestIndexMapping:
    """Test linear index <-> (x, y, z) conversions."""

    def test_x_varies_fastest(self):
        """Test the linear numbering x, then y, then z."""
        assert get_index(1, 0, 0, 3, 2) == 1
        assert get_index(0, 1, 0, 3, 2) == 3
        assert get_index(0, 0, 1, 3, 2) == 6
        assert get_index(2, 1, 1, 3, 2) == 11

    def test_coordinates_of_index(self):
        """Test the single-axis helpers on a known index."""
        assert get_x(11, 3) == 2
        assert get_y(11, 3, 2) == 1
        assert get_z(11, 3, 2) == 1

    def test_every_index_maps_back(self):
        """Test to_coordinates and to_index are inverse on a whole shape."""
        shape = (3, 2, 4)
        for index in range(24):
            assert to_index(to_coordinates(index, shape), shape) == index

    def test_out_of_range(self):
        """Test out-of-range indices and coordinates raise IndexError."""
        with pytest.raises(IndexError):
            to_coordinates(24, (3, 2, 4))
        with pytest.raises(IndexError):
            to_index((3, 0, 0), (3, 2, 4))

    def test_flatten_volume_follows_linear_index(self):
        """Test flatten_volume puts unit (x, y, z) at get_index(x, y, z)."""
        volume = np.arange(24).reshape(3, 2, 4)
        flat = flatten_volume(volume)
        for x in range(3):
            for y in range(2):
                for z in range(4):
                    assert flat[get_index(x, y, z, 3, 2)] == volume[x, y, z]

    def test_flatten_stack(self):
        """Test a stack of volumes is flattened per volume."""
        stack = np.arange(48).reshape(2, 3, 2, 4)
        flat = flatten_volume(stack)
        assert flat.shape == (2, 24)
        np.testing.assert_array_equal(flat[1], flatten_volume(stack[1]))

    def test_unflatten_inverts_flatten(self):
        """Test unflatten_vector restores the original volume."""
        volume = np.arange(24).reshape(3, 2, 4)
        np.testing.assert_array_equal(
            unflatten_vector(flatten_volume(volume), (3, 2, 4)), volume)

    def test_unflatten_size_mismatch(self):
        """Test a vector of the wrong length is rejected."""
        with pytest.raises(ValueError):
            unflatten_vector(np.zeros(5), (3, 2, 1))


@pytest.mark.unit
class TestUnitStore:
    """Test per-slot unit storage."""

    def test_arrays_per_slot(self):
        """Test the three arrays have one slot per minibatch element."""
        store = UnitStore((3, 2, 4), capacity=5)
        assert store.activation.shape == (5, 3, 2, 4)
        assert store.error.dtype == np.float32
        assert len(store) == 24

    def test_unit_views(self):
        """Test a unit exposes writable views of length capacity."""
        store = UnitStore((3, 2, 4), capacity=5)
        unit = store.unit(2, 1, 3)
        unit.activation[4] = 7.0
        assert store.activation[4, 2, 1, 3] == 7.0
        assert unit.error.shape == (5,)

    def test_unit_by_linear_index(self):
        """Test a single index on a 3-D store is mapped to coordinates."""
        store = UnitStore((3, 2, 4), capacity=2)
        store.pre_activation[1, 2, 1, 1] = 3.0
        assert store.unit(get_index(2, 1, 1, 3, 2)).pre_activation[1] == 3.0

    def test_unit_out_of_range(self):
        """Test out-of-range addresses raise IndexError."""
        store = UnitStore((4,), capacity=2)
        with pytest.raises(IndexError):
            store.unit(4)
        with pytest.raises(IndexError):
            store.check_slot(2)

    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            UnitStore((4,), capacity=0)
