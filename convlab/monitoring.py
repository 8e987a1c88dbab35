"""
Training records and evaluation reports.
"""
from dataclasses import dataclass

import numpy as np
from sklearn.metrics import classification_report, confusion_matrix


@dataclass
class MonitorRecord:
    """
    One monitored metric at one point of training.

    :param epoch: zero-based epoch the record was taken in
    :param minibatch: number of minibatches of that epoch already applied
    :param dataset: 'training' or 'evaluation'
    :param metric: 'accuracy' (value is a correct count) or 'cost'
    :param value: the measured value
    :param total: number of samples evaluated
    """
    epoch: int
    minibatch: int
    dataset: str
    metric: str
    value: float
    total: int

    @property
    def rate(self):
        """Accuracy as a fraction, None for cost records."""
        if self.metric != 'accuracy':
            return None
        return self.value / self.total

    def describe(self):
        if self.metric == 'accuracy':
            return (f"{self.dataset} accuracy {int(self.value)} / {self.total} "
                    f"({100 * self.rate:.2f}%)")
        return f"{self.dataset} cost {self.value:.6f}"


def classification_summary(network, images, labels):
    """
    Confusion matrix and per-class report of a trained network.

    Args:
        network (Network): Trained network
        images (ndarray): Images of shape (N, width * height)
        labels (ndarray): True class indices

    Returns:
        tuple: (confusion matrix, classification report text)
    """
    labels = np.asarray(labels)
    predictions = network.predict(images)
    classes = list(range(network.output_layer_.unit_count()))
    matrix = confusion_matrix(labels, predictions, labels=classes)
    report = classification_report(labels, predictions, labels=classes,
                                   zero_division=0)
    return matrix, report
