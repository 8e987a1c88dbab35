"""
Build layers from plain descriptors, as found in JSON config files.
"""
from ..exceptions import ConfigurationError, TopologyError
from ._cnn import ConvLayer, MaxPoolLayer
from .layers import DenseLayer, SoftmaxLayer

# conv 5x5 (1 feature map) -> max pool 2x2 -> dense 100 -> softmax 10
DEFAULT_LAYERS = [
    {'type': 'conv', 'kernel': [5, 5], 'feature_maps': 1, 'activation': 'relu'},
    {'type': 'maxpool', 'pool': [2, 2]},
    {'type': 'dense', 'units': 100, 'activation': 'sigmoid'},
    {'type': 'softmax', 'units': 10, 'cost': 'cross_entropy'},
]


def _conv(settings, shape, name):
    if len(shape) != 3:
        raise TopologyError(f"conv layer needs a 3-D input, got shape {shape}")
    return ConvLayer(settings.pop('kernel'), shape,
                     n_feature_maps=settings.pop('feature_maps', 1),
                     activation=settings.pop('activation', 'relu'), name=name)


def _maxpool(settings, shape, name):
    if len(shape) != 3:
        raise TopologyError(f"maxpool layer needs a 3-D input, got shape {shape}")
    return MaxPoolLayer(settings.pop('pool'), shape,
                        error_routing=settings.pop('error_routing', 'argmax'),
                        name=name)


def _dense(settings, shape, name):
    return DenseLayer(settings.pop('units'), _fan_in(settings, shape),
                      activation=settings.pop('activation', 'sigmoid'), name=name)


def _softmax(settings, shape, name):
    return SoftmaxLayer(settings.pop('units'), _fan_in(settings, shape),
                        cost=settings.pop('cost', 'cross_entropy'), name=name)


def _fan_in(settings, shape):
    n_inputs = 1
    for extent in shape:
        n_inputs *= extent
    declared = settings.pop('inputs', None)
    if declared is not None and declared != n_inputs:
        raise TopologyError(
            f"Layer declares {declared} inputs but its predecessor has "
            f"{n_inputs} units")
    return n_inputs


LAYER_BUILDERS = {
    'conv': _conv,
    'maxpool': _maxpool,
    'dense': _dense,
    'softmax': _softmax,
}


def build_layers(descriptors, input_shape):
    """
    Turn layer descriptors into connected-size layers.

    Each layer's input size comes from the previous layer's output, starting
    from an input image of ``input_shape`` = (width, height).

    Args:
        descriptors (list): Dicts with a ``type`` key and per-type settings
        input_shape (tuple): Image extents (width, height)

    Returns:
        list: Layers ready to be passed to Network
    """
    width, height = input_shape
    shape = (int(width), int(height), 1)
    layers = []
    for i, descriptor in enumerate(descriptors):
        if not isinstance(descriptor, dict) or 'type' not in descriptor:
            raise ConfigurationError(
                f"Layer descriptor {i} must be a mapping with a 'type' key")
        settings = dict(descriptor)
        layer_type = settings.pop('type')
        if layer_type not in LAYER_BUILDERS:
            raise ConfigurationError(
                f"Unknown layer type: {layer_type}. "
                f"Choose from {sorted(LAYER_BUILDERS)}")
        name = settings.pop('name', f"{layer_type}{i}")
        try:
            layer = LAYER_BUILDERS[layer_type](settings, shape, name)
        except KeyError as e:
            raise ConfigurationError(
                f"Layer descriptor {i} ({layer_type}) is missing {e}") from e
        if settings:
            raise ConfigurationError(
                f"Unknown settings for {layer_type} layer {i}: {sorted(settings)}")
        layers.append(layer)
        shape = layer.shape
    return layers
