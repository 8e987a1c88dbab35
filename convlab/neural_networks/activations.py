"""
Activation functions applied by the dense and convolutional layers.
"""
import numpy as np

from ..exceptions import ConfigurationError


class Sigmoid:
    """Logistic sigmoid, 1 / (1 + exp(-z))."""

    name = 'sigmoid'

    @staticmethod
    def compute(z):
        """Forward pass: sigmoid(z)"""
        # Clip input to prevent overflow
        z_clipped = np.clip(z, -500, 500)
        return 1 / (1 + np.exp(-z_clipped))

    @staticmethod
    def derivative(z):
        """sigmoid(z) * (1 - sigmoid(z))"""
        s = Sigmoid.compute(z)
        return s * (1 - s)


class ReLU:
    """Rectified linear unit, max(0, z)."""

    name = 'relu'

    @staticmethod
    def compute(z):
        """Forward pass: max(0, z)"""
        return np.maximum(z, 0)

    @staticmethod
    def derivative(z):
        """1 where z > 0, else 0"""
        return (z > 0).astype(np.asarray(z).dtype)


ACTIVATIONS = {
    Sigmoid.name: Sigmoid,
    ReLU.name: ReLU,
}


def get_activation(activation='sigmoid'):
    """
    Factory function to get activation strategies.

    Args:
        activation (str or class): 'sigmoid', 'relu' or an object exposing
            compute and derivative

    Returns:
        Activation strategy
    """
    if not isinstance(activation, str):
        return activation
    try:
        return ACTIVATIONS[activation]
    except KeyError:
        raise ConfigurationError(
            f"Unknown activation: {activation}. "
            f"Choose from {sorted(ACTIVATIONS)}") from None
