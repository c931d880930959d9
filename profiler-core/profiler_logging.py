#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Logging setup shared by the CLI and the HTTP service.
"""

import logging
import os
from logging.handlers import RotatingFileHandler


def configure_logging(log_name='mongo-profiler.log'):
    """Console plus rotating file handler on the root logger. Safe to call twice."""

    # Configure logging with both console and file handlers
    log_level = os.getenv('LOG_LEVEL', 'INFO')
    log_dir = os.getenv('LOG_DIR', 'logs')
    log_file = os.path.join(log_dir, log_name)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    if getattr(root_logger, '_mongo_profiler_configured', False):
        return root_logger

    # Create logs directory if it doesn't exist
    os.makedirs(log_dir, exist_ok=True)

    log_formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    # Console handler (stdout)
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(log_formatter)
    root_logger.addHandler(console_handler)

    # File handler with rotation (10MB max, keep 5 backups)
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=10*1024*1024,  # 10MB
        backupCount=5,
        encoding='utf-8'
    )
    file_handler.setFormatter(log_formatter)
    root_logger.addHandler(file_handler)

    root_logger._mongo_profiler_configured = True
    return root_logger
