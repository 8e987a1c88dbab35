"""
Exceptions raised by convlab.
"""


class ConvlabError(Exception):
    """Base class for all errors raised by convlab."""


class ConfigurationError(ConvlabError, ValueError):
    """Invalid hyperparameters, layer descriptors or strategy names."""


class TopologyError(ConfigurationError):
    """The layers do not form a valid pipeline."""


class UnsupportedOperationError(TopologyError):
    """An operation was called on a layer variant that does not support it."""

    def __init__(self, layer, operation):
        self.layer = layer
        self.operation = operation
        super().__init__(
            f"{type(layer).__name__} does not support '{operation}'")


class DatasetError(ConvlabError, IOError):
    """A dataset file is missing, truncated or malformed."""
