"""
Logging Configuration
Sets up centralized logging for the application, writing to console and files.
Storage drift events (orphaned objects, failed compensating deletes) are also
written to a dedicated storage.log so they can be matched against scan reports.
"""

import os
import sys
import logging
import logging.config
from pathlib import Path

STORAGE_AUDIT_LOGGER = "app.storage.audit"


def setup_logging(log_dir: str = "/var/log/mogallery", log_level: str = "INFO"):
    """
    Configure logging for the application.

    Args:
        log_dir: Directory to store log files.
        log_level: Logging level (default: INFO)
    """
    Path(log_dir).mkdir(parents=True, exist_ok=True)

    log_file_path = os.path.join(log_dir, "app.log")
    storage_log_path = os.path.join(log_dir, "storage.log")

    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "stream": sys.stdout,
                "formatter": "default",
                "level": log_level,
            },
            "file": {
                "class": "logging.handlers.RotatingFileHandler",
                "filename": log_file_path,
                "maxBytes": 10 * 1024 * 1024,  # 10 MB
                "backupCount": 5,
                "formatter": "default",
                "level": log_level,
                "encoding": "utf8",
            },
            "storage_file": {
                "class": "logging.handlers.RotatingFileHandler",
                "filename": storage_log_path,
                "maxBytes": 10 * 1024 * 1024,
                "backupCount": 5,
                "formatter": "default",
                "level": "INFO",
                "encoding": "utf8",
            },
        },
        "loggers": {
            "": {  # Root logger
                "handlers": ["console", "file"],
                "level": log_level,
                "propagate": True,
            },
            "uvicorn": {
                "handlers": ["console", "file"],
                "level": "INFO",
                "propagate": False,
            },
            "uvicorn.access": {
                "handlers": ["console", "file"],
                "level": "INFO",
                "propagate": False,
            },
            "celery": {
                "handlers": ["console", "file"],
                "level": "INFO",
                "propagate": False,
            },
            "app": {
                "handlers": ["console", "file"],
                "level": log_level,
                "propagate": False,
            },
            STORAGE_AUDIT_LOGGER: {
                "handlers": ["console", "file", "storage_file"],
                "level": "INFO",
                "propagate": False,
            },
            # boto3/botocore are chatty at INFO
            "botocore": {
                "level": "WARNING",
            },
            "httpx": {
                "level": "WARNING",
            },
        },
    }

    logging.config.dictConfig(logging_config)

    logger = logging.getLogger("app")
    logger.info(f"Logging initialized. Writing logs to {log_file_path}")
