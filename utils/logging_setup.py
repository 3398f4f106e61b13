"""
Process-wide logging configuration
"""

import logging
import sys

from config import Config

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

NOISY_LOGGERS = ("httpx", "stripe", "apscheduler.executors.default", "sqlalchemy.engine", "multipart")

_configured = False


def setup_logging(level: str = None) -> None:
    """Configure the root handler once; later calls only adjust the level"""
    global _configured
    log_level = getattr(logging, (level or Config.LOG_LEVEL).upper(), logging.INFO)

    if not _configured:
        logging.basicConfig(
            level=log_level,
            format=LOG_FORMAT,
            handlers=[logging.StreamHandler(sys.stdout)]
        )
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
        _configured = True
    else:
        logging.getLogger().setLevel(log_level)
