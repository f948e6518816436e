"""
Logging setup shared by the memory journal services.
"""

import logging
import sys
from typing import Optional

from .config import AppConfig

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Client libraries that log every request at INFO
QUIET_LOGGERS = ('botocore', 'boto3', 'urllib3', 'opensearch', 'sqlalchemy.engine')


def resolve_level(config: Optional[AppConfig] = None) -> int:
    """
    Numeric level for the configured LOG_LEVEL.

    Unknown level names fall back to INFO.
    """
    if config is None:
        from .config import config as default_config
        config = default_config

    level = getattr(logging, str(config.log_level).upper(), None)
    return level if isinstance(level, int) else logging.INFO


def setup_logging(config: Optional[AppConfig] = None) -> None:
    """
    Configure the root logger once and quiet the client libraries.

    Args:
        config: AppConfig instance, uses default if None
    """
    level = resolve_level(config)
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=[logging.StreamHandler(sys.stdout)])

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def get_logger(name: str, config: Optional[AppConfig] = None) -> logging.Logger:
    """
    Get a module logger at the configured level.

    Args:
        name: Logger name (usually __name__)
        config: AppConfig instance, uses default if None
    """
    logger = logging.getLogger(name)
    logger.setLevel(resolve_level(config))
    return logger
