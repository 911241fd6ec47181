"""
Shared Kernel Module
====================

Generic infrastructure used by the sla and automation modules: structured
logging and API middleware.

DO NOT add ticket, SLA or automation business logic to the shared kernel.
"""

__version__ = "1.0.0"
