"""FastAPI dependencies for the monitoring API."""

import logging
from typing import List, Optional, Set

from fastapi import HTTPException, Request, status

from config.monitoring_config import monitoring_settings
from src.database.repositories import MetricsRepository
from src.monitoring.collector import MetricsCollector
from src.monitoring.summaries import MetricsSummaryService
from src.monitoring.tracking import ErrorTracker

logger = logging.getLogger(__name__)


def parse_roles(raw: str) -> Set[str]:
    """Split a comma separated role header into a set of role names."""
    return {role.strip().lower() for role in raw.split(",") if role.strip()}


def check_permission(user_roles: Set[str], required_roles: List[str], require_all: bool = False) -> bool:
    """
    Check if the caller has the required roles.

    Args:
        user_roles: Roles asserted for the caller
        required_roles: Role names required
        require_all: If True, caller must have all roles. If False, any role is sufficient

    Returns:
        True if caller has required permissions
    """
    if not required_roles:
        return True

    if require_all:
        return all(role in user_roles for role in required_roles)
    return any(role in user_roles for role in required_roles)


class RoleChecker:
    """
    Dependency class for role-based access control.

    Roles are asserted by the upstream gateway in a trusted request header
    (``MONITORING_ROLES_HEADER``); authentication happens before this service.
    The header name and, when ``roles_setting`` is given, the allowed roles
    are read from the settings the application was created with.

    Usage:
        @router.get("/summary", dependencies=[Depends(RoleChecker(["admin"]))])
        @router.get("/summary", dependencies=[Depends(RoleChecker(roles_setting="monitoring_viewer_roles"))])
    """

    def __init__(
        self,
        allowed_roles: Optional[List[str]] = None,
        require_all: bool = False,
        roles_setting: Optional[str] = None
    ):
        self.allowed_roles = allowed_roles
        self.require_all = require_all
        self.roles_setting = roles_setting

    def __call__(self, request: Request) -> Set[str]:
        settings = getattr(request.app.state, "settings", monitoring_settings)
        allowed_roles = self.allowed_roles
        if allowed_roles is None:
            allowed_roles = getattr(settings, self.roles_setting) if self.roles_setting else []

        raw = request.headers.get(settings.monitoring_roles_header)
        if not raw:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Authentication required"
            )

        user_roles = parse_roles(raw)
        if not check_permission(user_roles, allowed_roles, self.require_all):
            logger.warning(f"Access denied for roles {sorted(user_roles)} on {request.url.path}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Insufficient permissions. Required roles: {', '.join(allowed_roles)}"
            )
        return user_roles


# Predefined role checkers
require_viewer = RoleChecker(roles_setting="monitoring_viewer_roles")
require_admin = RoleChecker(roles_setting="monitoring_admin_roles")


def get_collector(request: Request) -> MetricsCollector:
    return request.app.state.collector


def get_repository(request: Request) -> MetricsRepository:
    return request.app.state.repository


def get_summary_service(request: Request) -> MetricsSummaryService:
    return request.app.state.summary_service


def get_error_tracker(request: Request) -> ErrorTracker:
    return request.app.state.error_tracker
