"""
SLA Interfaces Layer
====================

FastAPI route handlers for tickets, SLA status and SLA reporting.

This is the outermost layer - handles HTTP requests/responses and
delegates to application services.
"""

from sla.interfaces.controllers import router as tickets_router
from sla.interfaces.reports import profiles_router, reports_router

__all__ = ["tickets_router", "profiles_router", "reports_router"]
