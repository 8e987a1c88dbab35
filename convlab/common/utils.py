import logging
import os

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(level=None):
    """
    Set up logging for the command line.

    The level defaults to the LOG_LEVEL environment variable, then INFO.
    """
    if level is None:
        level = os.getenv('LOG_LEVEL', 'INFO')
    log_level = getattr(logging, str(level).upper(), logging.INFO)

    logging.basicConfig(level=log_level, format=LOG_FORMAT)
    # basicConfig is a no-op when the root logger already has handlers
    logger = logging.getLogger('convlab')
    logger.setLevel(log_level)
    return logger
