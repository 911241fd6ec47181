"""
Automation Interfaces Layer
===========================

FastAPI route handlers for automation operations.
"""

from automation.interfaces.controllers import router as automation_router

__all__ = ["automation_router"]
