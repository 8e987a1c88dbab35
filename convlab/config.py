"""
Training hyperparameters and configuration files.
"""
import json
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List, Optional, Tuple

from .exceptions import ConfigurationError


def _number(name, value):
    # bool is an int subclass but never a valid setting
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(
            f"{name} must be a number, got {type(value).__name__} {value!r}")
    return float(value)


def _integer(name, value):
    """Integral value as int; 5.0 is accepted, 5.5 is not."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    value = _number(name, value)
    if not value.is_integer():
        raise ConfigurationError(f"{name} must be an integer, got {value}")
    return int(value)


@dataclass
class MonitorFlags:
    """Which metrics to report while training."""
    evaluation_accuracy: bool = False
    evaluation_cost: bool = False
    training_accuracy: bool = False
    training_cost: bool = False

    def any(self) -> bool:
        return any(getattr(self, f.name) for f in fields(self))


@dataclass
class Hyperparameters:
    """
    Hyperparameters of the SGD training loop.

    :param learning_rate: step size of every parameter update
    :param l2_lambda: L2 regularization strength
    :param minibatch_size: samples per parameter update, also the number of
        unit-state slots allocated by every layer
    :param epochs: number of passes over the training set
    :param seed: seed of the network's random generator
    :param monitor_interval: evaluate every this many minibatches; 0 only
        evaluates at the end of each epoch
    :param monitor: which metrics to evaluate
    """
    learning_rate: float = 0.1
    l2_lambda: float = 5.0
    minibatch_size: int = 10
    epochs: int = 30
    seed: int = 0
    monitor_interval: int = 0
    monitor: MonitorFlags = field(default_factory=MonitorFlags)

    def validate(self) -> "Hyperparameters":
        """
        Check every field and normalize integral settings to int.

        :raise ConfigurationError: on a wrongly typed or out-of-range value
        """
        self.learning_rate = _number('learning_rate', self.learning_rate)
        self.l2_lambda = _number('l2_lambda', self.l2_lambda)
        self.minibatch_size = _integer('minibatch_size', self.minibatch_size)
        self.epochs = _integer('epochs', self.epochs)
        self.seed = _integer('seed', self.seed)
        self.monitor_interval = _integer('monitor_interval', self.monitor_interval)
        if self.learning_rate <= 0:
            raise ConfigurationError(
                f"learning_rate must be positive, got {self.learning_rate}")
        if self.l2_lambda < 0:
            raise ConfigurationError(
                f"l2_lambda must be non-negative, got {self.l2_lambda}")
        if self.minibatch_size < 1:
            raise ConfigurationError(
                f"minibatch_size must be positive, got {self.minibatch_size}")
        if self.epochs < 0:
            raise ConfigurationError(
                f"epochs must be non-negative, got {self.epochs}")
        if self.seed < 0:
            raise ConfigurationError(f"seed must be non-negative, got {self.seed}")
        if self.monitor_interval < 0:
            raise ConfigurationError(
                f"monitor_interval must be non-negative, got {self.monitor_interval}")
        if not isinstance(self.monitor, MonitorFlags):
            raise ConfigurationError(
                f"monitor must be MonitorFlags, got {type(self.monitor).__name__}")
        for flag in fields(MonitorFlags):
            if not isinstance(getattr(self.monitor, flag.name), bool):
                raise ConfigurationError(
                    f"monitor flag {flag.name} must be true or false")
        return self

    @classmethod
    def from_dict(cls, params: Dict[str, Any]) -> "Hyperparameters":
        """
        Build hyperparameters from a mapping, rejecting unknown keys.

        :param params: keys named like the dataclass fields; ``monitor`` may
            be a mapping of MonitorFlags fields
        """
        if not isinstance(params, dict):
            raise ConfigurationError(
                f"hyperparameters must be a mapping, got {type(params).__name__}")
        params = dict(params)
        known = {f.name for f in fields(cls)}
        unknown = set(params) - known
        if unknown:
            raise ConfigurationError(
                f"Unknown hyperparameters: {sorted(unknown)}")
        monitor = params.pop('monitor', None)
        if isinstance(monitor, dict):
            flag_names = {f.name for f in fields(MonitorFlags)}
            bad = set(monitor) - flag_names
            if bad:
                raise ConfigurationError(f"Unknown monitor flags: {sorted(bad)}")
            params['monitor'] = MonitorFlags(**monitor)
        elif isinstance(monitor, MonitorFlags):
            params['monitor'] = monitor
        elif monitor is not None:
            raise ConfigurationError(
                f"monitor must be a mapping of flags, got {monitor!r}")
        return cls(**params).validate()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def replace(self, **changes) -> "Hyperparameters":
        """Copy with the given fields changed; None values are ignored."""
        params = self.to_dict()
        params.update({k: v for k, v in changes.items() if v is not None})
        return Hyperparameters.from_dict(params)


def load_config(path) -> Tuple[Hyperparameters, Optional[List[Dict[str, Any]]]]:
    """
    Read a JSON configuration file.

    The file may hold a ``"hyperparameters"`` mapping and a ``"layers"``
    list of layer descriptors; both are optional.

    :return: (hyperparameters, layer descriptors or None)
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            document = json.load(f)
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {path}: {e}") from e
    if not isinstance(document, dict):
        raise ConfigurationError(f"{path} must contain a JSON object")
    unknown = set(document) - {'hyperparameters', 'layers'}
    if unknown:
        raise ConfigurationError(f"Unknown config sections: {sorted(unknown)}")
    hyperparameters = Hyperparameters.from_dict(
        document.get('hyperparameters', {}))
    layers = document.get('layers')
    if layers is not None and not isinstance(layers, list):
        raise ConfigurationError("'layers' must be a list of descriptors")
    return hyperparameters, layers
