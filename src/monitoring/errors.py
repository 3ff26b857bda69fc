"""Exceptions raised by the monitoring service."""


class MonitoringError(Exception):
    """Base class for monitoring service errors."""
    pass


class InvalidQueryError(MonitoringError, ValueError):
    """Raised when caller-supplied query parameters cannot be honored."""
    pass
