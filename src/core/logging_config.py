# src/core/logging_config.py
"""Logging configuration shared by the API process and the tests"""

import os
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

AUDIT_LOGGER_NAME = "audit"


def setup_logging(log_level: Optional[str] = None, log_dir: Optional[str] = None):
    """Configure root logger with console and rotating file output"""
    log_level = (log_level or os.getenv("LOG_LEVEL", "INFO")).upper()
    log_dir = Path(log_dir or os.getenv("LOG_DIR", "logs"))

    log_dir.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # Console handler (attach once)
    if not any(isinstance(h, logging.StreamHandler) and not isinstance(h, RotatingFileHandler)
               for h in root_logger.handlers):
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    # Rotating file handler, 5 MB per file, 5 backups
    log_file = (log_dir / 'admission_gate.log').resolve()
    if not any(isinstance(h, RotatingFileHandler) and h.baseFilename == str(log_file) for h in root_logger.handlers):
        file_handler = RotatingFileHandler(
            filename=str(log_file),
            maxBytes=5 * 1024 * 1024,
            backupCount=5,
            encoding='utf-8'
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("redis").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    return root_logger


def get_audit_logger() -> logging.Logger:
    """Logger that receives every authorization grant and denial"""
    return logging.getLogger(AUDIT_LOGGER_NAME)
