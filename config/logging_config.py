"""Logging configuration for the monitoring service."""

import logging.config
from typing import Any, Dict, Optional

from .monitoring_config import MonitoringSettings, monitoring_settings


def build_logging_config(settings: MonitoringSettings) -> Dict[str, Any]:
    """Build a dictConfig mapping from settings."""
    formatter = "json" if settings.log_json else "default"
    level = settings.log_level.upper()

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            },
            "json": {
                "class": "pythonjsonlogger.jsonlogger.JsonFormatter",
                "format": "%(asctime)s %(name)s %(levelname)s %(message)s"
            }
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": formatter,
                "stream": "ext://sys.stdout"
            }
        },
        "loggers": {
            "": {
                "level": level,
                "handlers": ["console"]
            },
            "uvicorn.access": {
                "handlers": ["console"],
                "level": "INFO",
                "propagate": False
            },
            "sqlalchemy.engine": {
                "level": "WARNING"
            },
            "apscheduler": {
                "level": "WARNING"
            }
        }
    }


def configure_logging(settings: Optional[MonitoringSettings] = None) -> None:
    """Apply logging configuration. Call once at process startup."""
    logging.config.dictConfig(build_logging_config(settings or monitoring_settings))
