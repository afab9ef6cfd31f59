import os
import logging
from logging.handlers import RotatingFileHandler
from typing import Optional


__version__ = '1.2.0'


def configure_logging(verbose: bool = False, log_file: Optional[str] = None):
    """Configure application logging"""

    log_level = logging.DEBUG if verbose else logging.INFO

    # Console handler (stderr)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)
    handlers = [console_handler]

    if log_file:
        log_dir = os.path.dirname(os.path.abspath(log_file))
        os.makedirs(log_dir, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=10485760,  # 10MB
            backupCount=10
        )
        file_handler.setLevel(log_level)
        file_formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
        )
        file_handler.setFormatter(file_formatter)
        handlers.append(file_handler)

    # Configure root logger
    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    # paramiko is chatty at DEBUG; keep it at WARNING unless explicitly raised
    logging.getLogger('paramiko').setLevel(logging.WARNING)

    logging.getLogger(__name__).debug(f"Logging configured (level: {logging.getLevelName(log_level)})")
