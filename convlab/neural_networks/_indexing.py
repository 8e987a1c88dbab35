"""
Conversions between linear unit indices and (x, y, z) coordinates.

A 3-D layer of extents (dim_x, dim_y, dim_z) numbers its units with x
varying fastest, then y, then z:

    index = (dim_x * dim_y) * z + dim_x * y + x

The same numbering is used whenever a 3-D layer feeds a 1-D layer or a
1-D buffer has to be read back in 3-D.
"""
import numpy as np


def get_x(index, dim_x):
    """x coordinate of a linear index."""
    return index % dim_x


def get_y(index, dim_x, dim_y):
    """y coordinate of a linear index."""
    return (index // dim_x) % dim_y


def get_z(index, dim_x, dim_y):
    """z coordinate of a linear index."""
    return index // (dim_x * dim_y)


def get_index(x, y, z, dim_x, dim_y):
    """Linear index of the unit at (x, y, z)."""
    return (dim_x * dim_y) * z + dim_x * y + x


def to_coordinates(index, shape):
    """
    Map a linear index onto a 3-D shape.

    Args:
        index (int): Linear unit index
        shape (tuple): Layer extents (dim_x, dim_y, dim_z)

    Returns:
        tuple: (x, y, z)
    """
    dim_x, dim_y, dim_z = shape
    if not 0 <= index < dim_x * dim_y * dim_z:
        raise IndexError(f"Unit index {index} out of range for shape {shape}")
    return (get_x(index, dim_x), get_y(index, dim_x, dim_y),
            get_z(index, dim_x, dim_y))


def to_index(coordinates, shape):
    """Inverse of to_coordinates."""
    x, y, z = coordinates
    dim_x, dim_y, dim_z = shape
    if not (0 <= x < dim_x and 0 <= y < dim_y and 0 <= z < dim_z):
        raise IndexError(
            f"Coordinates {coordinates} out of range for shape {shape}")
    return get_index(x, y, z, dim_x, dim_y)


def flatten_volume(volume):
    """
    Flatten the trailing (x, y, z) axes of an array into linear index order.

    Works for a single volume of shape (X, Y, Z) as well as for a stack of
    shape (N, X, Y, Z), which becomes (N, X*Y*Z).
    """
    volume = np.asarray(volume)
    if volume.ndim < 3:
        raise ValueError(f"Expected at least 3 dimensions, got {volume.shape}")
    # (..., x, y, z) -> (..., z, y, x) so that C order makes x fastest
    reordered = np.swapaxes(volume, -1, -3)
    return reordered.reshape(volume.shape[:-3] + (-1,))


def unflatten_vector(vector, shape):
    """
    Inverse of flatten_volume.

    Args:
        vector (ndarray): Array whose last axis holds X*Y*Z values in linear
            index order
        shape (tuple): Target extents (dim_x, dim_y, dim_z)

    Returns:
        ndarray: Array of shape vector.shape[:-1] + shape
    """
    vector = np.asarray(vector)
    dim_x, dim_y, dim_z = shape
    if vector.shape[-1] != dim_x * dim_y * dim_z:
        raise ValueError(
            f"Cannot map {vector.shape[-1]} values onto shape {shape}")
    stacked = vector.reshape(vector.shape[:-1] + (dim_z, dim_y, dim_x))
    return np.swapaxes(stacked, -1, -3)
