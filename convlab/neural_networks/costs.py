"""
Cost functions evaluated on the softmax output.

``compute`` returns the cost of one sample, ``delta`` the output-layer
error for that sample. ``y`` is the one-hot label vector.
"""
import numpy as np

from ..exceptions import ConfigurationError
from .activations import Sigmoid


class CrossEntropyCost:
    """Log-likelihood of the labelled class, -sum(y * ln(a))."""

    name = 'cross_entropy'

    @staticmethod
    def compute(activation, y):
        """Cross-entropy between the output distribution and the label."""
        return float(-np.sum(y * np.log(activation + 1e-15)))

    @staticmethod
    def delta(z, activation, y):
        """Softmax combined with cross-entropy reduces to a - y."""
        return activation - y


class QuadraticCost:
    """Half squared error, 0.5 * sum((a - y)^2)."""

    name = 'quadratic'

    @staticmethod
    def compute(activation, y):
        """Half squared Euclidean distance to the label."""
        return float(0.5 * np.sum((activation - y) ** 2))

    @staticmethod
    def delta(z, activation, y):
        """Residual weighted by the sigmoid derivative of the weighted input."""
        return (activation - y) * Sigmoid.derivative(z)


COSTS = {
    CrossEntropyCost.name: CrossEntropyCost,
    QuadraticCost.name: QuadraticCost,
}


def get_cost(cost='cross_entropy'):
    """
    Factory function to get cost strategies.

    Args:
        cost (str or class): 'cross_entropy', 'quadratic' or an object
            exposing compute and delta

    Returns:
        Cost strategy
    """
    if not isinstance(cost, str):
        return cost
    try:
        return COSTS[cost]
    except KeyError:
        raise ConfigurationError(
            f"Unknown cost: {cost}. Choose from {sorted(COSTS)}") from None
