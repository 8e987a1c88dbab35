"""
Command line entry point: python -m convlab train --data-dir DIR
"""
import argparse
import logging
import sys
from dataclasses import fields

from .common.utils import configure_logging
from .config import Hyperparameters, MonitorFlags, load_config
from .datasets import load_mnist
from .exceptions import ConvlabError
from .monitoring import classification_summary
from .neural_networks import DEFAULT_LAYERS, Network, build_layers

logger = logging.getLogger(__name__)

MONITOR_CHOICES = [f.name for f in fields(MonitorFlags)]


def parse_args(argv=None):
    ap = argparse.ArgumentParser(
        prog='convlab',
        description="Train a convolutional network on MNIST IDX files.")
    commands = ap.add_subparsers(dest='command', required=True)

    train = commands.add_parser('train', help="Train and evaluate a network")
    train.add_argument('--data-dir', required=True,
                       help="Directory with the four MNIST IDX files (optionally .gz)")
    train.add_argument('--config', default=None,
                       help="JSON file with 'hyperparameters' and 'layers' sections")
    train.add_argument('--epochs', type=int, default=None)
    train.add_argument('--learning-rate', type=float, default=None)
    train.add_argument('--l2-lambda', type=float, default=None)
    train.add_argument('--minibatch-size', type=int, default=None)
    train.add_argument('--seed', type=int, default=None)
    train.add_argument('--monitor-interval', type=int, default=None,
                       help="Evaluate every N minibatches (0: end of epoch only)")
    train.add_argument('--monitor', nargs='*', choices=MONITOR_CHOICES,
                       default=None, help="Metrics to report while training")
    train.add_argument('--n-training', type=int, default=None,
                       help="Read at most N training samples")
    train.add_argument('--n-test', type=int, default=None,
                       help="Read at most N test samples")
    train.add_argument('--validation-size', type=int, default=0,
                       help="Hold out the last N training samples for monitoring")
    train.add_argument('--jobs', type=int, default=None,
                       help="Worker threads per minibatch (default: CPU count)")
    train.add_argument('-v', '--verbose', action='store_true',
                       help="Progress bars and debug logging")
    return ap.parse_args(argv)


def _hyperparameters(args):
    if args.config:
        hyperparameters, descriptors = load_config(args.config)
    else:
        hyperparameters, descriptors = Hyperparameters(), None
    monitor = None
    if args.monitor is not None:
        monitor = MonitorFlags(**{name: True for name in args.monitor})
    hyperparameters = hyperparameters.replace(
        epochs=args.epochs, learning_rate=args.learning_rate,
        l2_lambda=args.l2_lambda, minibatch_size=args.minibatch_size,
        seed=args.seed, monitor_interval=args.monitor_interval,
        monitor=monitor)
    return hyperparameters, descriptors or DEFAULT_LAYERS


def train(args):
    hyperparameters, descriptors = _hyperparameters(args)
    dataset = load_mnist(args.data_dir, n_training=args.n_training,
                         n_test=args.n_test,
                         validation_size=args.validation_size)
    layers = build_layers(descriptors, dataset.image_shape)
    # Without a validation split the test set is the evaluation data.
    evaluation = dataset.validation or dataset.test

    with Network(dataset.image_shape, layers, hyperparameters,
                 n_jobs=args.jobs, verbose=args.verbose) as network:
        logger.info("Training %r", network)
        network.run_epochs(dataset.training, evaluation_data=evaluation)
        test_images, test_labels = dataset.test
        correct = network.evaluate_accuracy(test_images, test_labels)
        logger.info("Test accuracy: %d / %d (%.2f%%)", correct,
                    len(test_labels), 100.0 * correct / len(test_labels))
        _, report = classification_summary(network, test_images, test_labels)
        logger.info("Classification report:\n%s", report)
    return 0


def main(argv=None):
    args = parse_args(argv)
    configure_logging('DEBUG' if args.verbose else None)
    try:
        return train(args)
    except ConvlabError as e:
        logger.error("%s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
