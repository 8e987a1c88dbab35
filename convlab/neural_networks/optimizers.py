"""
Parameter update rule shared by the weighted layers.
"""
from ..exceptions import ConfigurationError


class SGDOptimizer:
    """
    Plain stochastic gradient descent with L2 weight decay.
    """

    def __init__(self, lr=0.1, lmbda=0.0):
        """
        Initialize SGD optimizer.

        Args:
            lr (float): Learning rate
            lmbda (float): L2 regularization strength
        """
        self.lr = lr
        self.lmbda = lmbda

    def decay_factor(self, n_samples):
        """Multiplicative weight shrink for a training set of n_samples."""
        return 1.0 - self.lr * (self.lmbda / n_samples)

    def update(self, weight_grad, bias_grad, weights, bias, n_samples):
        """
        Update weights and bias in place.

        The weights are first shrunk by the decay factor and then moved
        against their gradient; the bias is not decayed.

        Args:
            weight_grad (ndarray): Weight gradients, averaged over the minibatch
            bias_grad (ndarray): Bias gradients, averaged over the minibatch
            weights (ndarray): Current weights
            bias (ndarray): Current bias
            n_samples (int): Size of the whole training set

        Returns:
            tuple: Updated weights and bias
        """
        weights *= self.decay_factor(n_samples)
        weights -= self.lr * weight_grad
        bias -= self.lr * bias_grad
        return weights, bias

    def __repr__(self):
        return f"SGDOptimizer(lr={self.lr}, lmbda={self.lmbda})"


def get_optimizer(solver='sgd', **kwargs):
    """
    Factory function to get optimizer instances.

    Args:
        solver (str): Optimizer type ('sgd')
        **kwargs: Optimizer-specific parameters

    Returns:
        Optimizer instance
    """
    if solver == 'sgd':
        return SGDOptimizer(**kwargs)
    raise ConfigurationError(f"Unknown solver: {solver}")
