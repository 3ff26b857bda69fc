"""Configuration module for the metrics monitoring service."""

from .monitoring_config import MonitoringSettings, monitoring_settings
from .logging_config import build_logging_config, configure_logging

__all__ = [
    "MonitoringSettings",
    "monitoring_settings",
    "build_logging_config",
    "configure_logging",
]
