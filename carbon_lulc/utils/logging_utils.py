"""
Logging setup and timing helpers for the Carbon LULC pipeline.
"""

import logging
import time
from contextlib import contextmanager
from typing import Optional


def setup_logging(config=None, level: Optional[str] = None) -> logging.Logger:
    """
    Configure the ``carbon_lulc`` logger from the ``logging`` config section.

    Args:
        config: ConfigManager or dict holding a ``logging`` section
        level: Explicit level overriding the configuration

    Returns:
        logging.Logger: The package logger
    """
    log_config = {} if config is None else (config.get('logging', {}) or {})

    level_name = (level or log_config.get('level') or 'INFO').upper()
    fmt = log_config.get('format', '%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    package_logger = logging.getLogger('carbon_lulc')
    package_logger.setLevel(getattr(logging, level_name, logging.INFO))

    for handler in list(package_logger.handlers):
        if getattr(handler, '_carbon_lulc', False):
            package_logger.removeHandler(handler)

    handlers = []
    if log_config.get('console', True):
        handlers.append(logging.StreamHandler())
    if log_config.get('file'):
        handlers.append(logging.FileHandler(log_config['file']))

    for handler in handlers:
        handler.setFormatter(logging.Formatter(fmt))
        handler._carbon_lulc = True
        package_logger.addHandler(handler)

    return package_logger


@contextmanager
def timer(task_name: str, logger: Optional[logging.Logger] = None):
    """
    Log how long the wrapped block took.

    Example:
        >>> with timer("Temporal composite"):
        ...     compositor.composite(scenes)
    """
    logger = logger or logging.getLogger('carbon_lulc')
    start = time.time()
    try:
        yield
    finally:
        logger.info(f"{task_name} completed in {time.time() - start:.2f} seconds")
