"""
Neural networks module: layers, update rule and the network orchestrator.
"""
from .layers import (
    Layer,
    InputLayer,
    DenseLayer,
    SoftmaxLayer
)
from ._cnn import (
    ConvLayer,
    MaxPoolLayer
)
from ._network import Network
from ._builder import (DEFAULT_LAYERS, build_layers)
from .optimizers import (
    SGDOptimizer,
    get_optimizer
)

__all__ = [
    'Layer',
    'InputLayer',
    'DenseLayer',
    'SoftmaxLayer',
    'ConvLayer',
    'MaxPoolLayer',
    'Network',
    'DEFAULT_LAYERS',
    'build_layers',
    'SGDOptimizer',
    'get_optimizer'
]
