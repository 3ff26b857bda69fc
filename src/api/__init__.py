from .performance_endpoints import router as performance_router
from .health_endpoints import router as health_router
from .middleware import setup_middleware

__all__ = [
    "performance_router",
    "health_router",
    "setup_middleware",
]
