"""
Survey Review Hub - Routes Package

Modular API routers for the Review Hub.
"""

from .auth import router as auth_router, set_dependencies as set_auth_deps
from .records import (
    router as records_router,
    workflow_router,
    set_dependencies as set_records_deps,
)
from .dashboard import router as dashboard_router, set_dependencies as set_dashboard_deps

__all__ = [
    'auth_router', 'set_auth_deps',
    'records_router', 'workflow_router', 'set_records_deps',
    'dashboard_router', 'set_dashboard_deps',
]
