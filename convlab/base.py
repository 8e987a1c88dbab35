# pylint: disable=missing-docstring
from abc import abstractmethod
from typing import Any
import numpy as np


# pylint: disable=too-many-instance-attributes, invalid-name line-too-long missing-docstring
class BaseEstimator:
    @abstractmethod
    def fit(self, X: np.ndarray, y: np.ndarray) -> Any:
        """
        :param X: numpy array of shape (N, d) with N being the number of samples and d being the number of pixels per image
        :param y: numpy array of shape (N,) holding the class index of every sample
        :return:
        """
        raise NotImplementedError

    @abstractmethod
    def trainable_parameters(self) -> dict:
        """
        :return: Dictionary of parameter names mapped to the weight and bias arrays they name
        """
        raise NotImplementedError

    def get_params(self, mode: str = "all") -> Any:
        """
        Get parameters for this estimator.

        :param mode: Specifies which parameters to return. Options are:
            - "all": Return all parameters.
            - "trainable": Return only trainable parameters (weights and biases).
            - "non_trainable": Return only non-trainable parameters (e.g., configuration settings).
        :return: Dictionary of parameter names mapped to their values.
        """
        if mode == "all":
            return self.__dict__
        if mode == "trainable":
            return self.trainable_parameters()
        if mode == "non_trainable":
            return {k: v for k, v in self.__dict__.items() if not k.endswith("_")}

        raise ValueError(
            f"Invalid mode '{mode}'. Choose from 'all', 'trainable', or 'non_trainable'."
        )


class BaseClassifier(BaseEstimator):
    @abstractmethod
    def predict(self, X: np.ndarray) -> np.ndarray:
        """
        :param X: np array of shape (N, d)
        :return: np array of shape (N,) with the predicted class indices
        """
        raise NotImplementedError

    def score(self, X: np.ndarray, y: np.ndarray) -> float:
        """
        :param X: numpy array of shape (N, d) with N being the number of samples and d being the number of pixels per image
        :param y: numpy array of shape (N,) with the true class indices
        :return: accuracy
        """
        y_pred = self.predict(X)
        return float(np.mean(y_pred == np.asarray(y)))
