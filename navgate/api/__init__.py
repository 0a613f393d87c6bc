"""FastAPI adapters: route-guard dependency, navigation router and error handling."""

from .dependencies import get_navigation_session, register_exception_handlers, require_feature
from .routes import router

__all__ = [
    "get_navigation_session",
    "register_exception_handlers",
    "require_feature",
    "router",
]
