"""
Dataset loaders.
"""
from ._idx import (
    Dataset,
    load_mnist,
    read_idx_images,
    read_idx_labels
)

__all__ = [
    'Dataset',
    'load_mnist',
    'read_idx_images',
    'read_idx_labels'
]
