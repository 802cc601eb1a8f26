"""Logging setup for the raffle operator.

``get_logger(name)`` configures the root logger on first use:
- level from ``LOG_LEVEL`` (default INFO)
- console output always
- file output to ``LOG_FILE``, or ``<project-root>/logs/raffle_operator.log``
  when unset; ``LOG_FILE=-`` disables the file handler
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from threading import Lock
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DEFAULT_LOG_FILE = Path(__file__).resolve().parents[3] / 'logs' / 'raffle_operator.log'

# RPC and HTTP client chatter drowns raffle events at DEBUG
NOISY_LOGGERS = ('web3', 'urllib3', 'asyncio', 'websockets')

_configured = False
_configure_lock = Lock()


def configure_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> None:
    """Install handlers on the root logger. Later calls are no-ops."""
    global _configured
    with _configure_lock:
        if _configured:
            return

        level_name = (level or os.getenv('LOG_LEVEL', 'INFO')).upper()
        numeric_level = getattr(logging, level_name, logging.INFO)
        formatter = logging.Formatter(LOG_FORMAT)

        root = logging.getLogger()
        root.setLevel(numeric_level)

        console = logging.StreamHandler()
        console.setFormatter(formatter)
        root.addHandler(console)

        target = log_file if log_file is not None else os.getenv('LOG_FILE', '')
        if target != '-':
            log_path = Path(target) if target else DEFAULT_LOG_FILE
            try:
                log_path.parent.mkdir(parents=True, exist_ok=True)
                file_handler = logging.FileHandler(log_path, encoding='utf-8')
            except OSError as e:
                root.warning(f'Cannot write log file {log_path} ({e}); logging to console only')
            else:
                file_handler.setFormatter(formatter)
                root.addHandler(file_handler)

        if numeric_level <= logging.DEBUG:
            for name in NOISY_LOGGERS:
                logging.getLogger(name).setLevel(logging.INFO)

        _configured = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)
